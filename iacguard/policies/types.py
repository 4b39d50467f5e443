"""Policy model shared by the registry, the audit engine and remediation.

A policy is metadata plus a pure check function:

1. **code** is the stable join key used for diffing and persistence
2. **check** reads a ParsedConfig (and the raw text) and returns results
3. **severity** drives both ordering and the audit score
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from iacguard.parser import ParsedConfig

TEMPLATE_REF = "template"


class PolicyCategory(str, Enum):
    """What a policy protects."""

    SECURITY = "SECURITY"
    COST = "COST"
    RELIABILITY = "RELIABILITY"
    PERFORMANCE = "PERFORMANCE"
    COMPLIANCE = "COMPLIANCE"


class Severity(str, Enum):
    """How bad a violation is."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Sort position, most severe first."""
        return SEVERITY_ORDER.index(self)


SEVERITY_ORDER = [
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
]


@dataclass(frozen=True)
class PolicyResult:
    """A single violation found by a policy check."""

    resource_ref: str
    resource_type: str
    message: str
    suggestion: str = ""
    auto_fixable: bool = False
    line: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_ref": self.resource_ref,
            "resource_type": self.resource_type,
            "message": self.message,
            "suggestion": self.suggestion,
            "auto_fixable": self.auto_fixable,
            "line": self.line,
            "metadata": self.metadata,
        }


PolicyCheck = Callable[[ParsedConfig, str], list[PolicyResult]]


@dataclass(frozen=True)
class PolicyDefinition:
    """A registered policy."""

    code: str
    name: str
    description: str
    category: PolicyCategory
    severity: Severity
    check: PolicyCheck
    provider: str = "aws"

    def applies_to(self, provider: str) -> bool:
        return self.provider == provider or self.provider == "all"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "severity": self.severity.value,
            "provider": self.provider,
        }
