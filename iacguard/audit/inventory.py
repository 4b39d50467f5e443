"""Live-resource inventory records.

An account scanner (outside this package) hands over already-normalized
resources. They are converted to ResourceRecords so the same policies and
cost analysis serve both templates and live accounts.
"""

from typing import Any

from pydantic import BaseModel, Field

from iacguard.parser import ParsedConfig, ResourceRecord


class LiveResource(BaseModel):
    """One resource discovered in a cloud account."""

    resource_type: str
    resource_id: str
    name: str | None = None
    region: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.resource_id

    def to_record(self) -> ResourceRecord:
        """Convert to a ResourceRecord (no source text, no line numbers)."""
        return ResourceRecord(
            type=self.resource_type,
            name=self.display_name,
            properties=dict(self.metadata),
        )


def to_parsed_config(resources: list[LiveResource]) -> ParsedConfig:
    """Build a ParsedConfig from inventory records, first record per name wins."""
    parsed = ParsedConfig()
    seen: set[str] = set()
    for resource in resources:
        record = resource.to_record()
        if record.full_name in seen:
            parsed.warnings.append(f"duplicate live resource {record.full_name} dropped")
            continue
        seen.add(record.full_name)
        parsed.resources.append(record)
    return parsed
