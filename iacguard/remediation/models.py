"""Remediation data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from iacguard.policies import PolicyCategory, Severity


class ChangeStatus(str, Enum):
    """Lifecycle of a proposed change."""

    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    APPLIED = "applied"


class FixSource(str, Enum):
    """Where a fix came from."""

    STATIC = "static"  # Per-policy template
    AI = "ai"  # Text-suggestion collaborator
    MANUAL = "manual"  # Placeholder describing a manual step


@dataclass(frozen=True)
class FixDiff:
    """A text edit. Empty ``before`` means append ``after`` as a new block."""

    before: str
    after: str

    @property
    def is_append(self) -> bool:
        return self.before == ""

    def to_dict(self) -> dict[str, str]:
        return {"before": self.before, "after": self.after}


@dataclass(frozen=True)
class FixImpact:
    """Expected effect of applying a fix."""

    security_score_change: int = 0
    monthly_cost_change: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "security_score_change": self.security_score_change,
            "monthly_cost_change": self.monthly_cost_change,
        }


@dataclass
class Remediation:
    """A proposed fix for one violation instance."""

    id: str
    policy_code: str
    title: str
    description: str
    severity: Severity
    category: PolicyCategory
    resource_ref: str
    diff: FixDiff
    impact: FixImpact = field(default_factory=FixImpact)
    status: ChangeStatus = ChangeStatus.PROPOSED
    source: FixSource = FixSource.STATIC
    confidence: float = 0.9

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "policy_code": self.policy_code,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "category": self.category.value,
            "resource_ref": self.resource_ref,
            "diff": self.diff.to_dict(),
            "impact": self.impact.to_dict(),
            "status": self.status.value,
            "source": self.source.value,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of checking a fix against content."""

    valid: bool
    result_content: str
    error: str | None = None
    duplicates: tuple[str, ...] = ()
