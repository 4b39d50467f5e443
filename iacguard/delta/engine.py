"""Delta Engine - compares two versions of one configuration.

The comparison:
1. Builds a unified text patch of the raw content
2. Audits both sides concurrently and joins the results
3. Diffs violations by ``code:resource_ref`` identity, not by position
4. Reports score and monthly cost deltas
"""

import asyncio
import difflib
from dataclasses import dataclass, field
from typing import Any

import structlog

from iacguard.audit import AuditEngine, AuditResult, PolicyViolations

logger = structlog.get_logger()

OLD_LABEL = "Current Version"
NEW_LABEL = "New Version"


@dataclass
class SecurityDelta:
    """Violation-identity diff between two audits."""

    new_violations: list[PolicyViolations] = field(default_factory=list)
    fixed_violations: list[PolicyViolations] = field(default_factory=list)
    unchanged_violations: list[PolicyViolations] = field(default_factory=list)
    total_issues_change: int = 0
    score_change: int = 0

    @property
    def is_regression(self) -> bool:
        return self.score_change < 0 or bool(self.new_violations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "new_violations": [v.to_dict() for v in self.new_violations],
            "fixed_violations": [v.to_dict() for v in self.fixed_violations],
            "unchanged_violations": [v.to_dict() for v in self.unchanged_violations],
            "total_issues_change": self.total_issues_change,
            "score_change": self.score_change,
        }


@dataclass
class DiffResult:
    """Outcome of comparing two configuration versions."""

    patch: str
    cost_delta: float
    security_delta: SecurityDelta
    old_audit: AuditResult | None = None
    new_audit: AuditResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "patch": self.patch,
            "cost_delta": self.cost_delta,
            "security_delta": self.security_delta.to_dict(),
        }


def unified_patch(old: str, new: str) -> str:
    """Line-based unified diff of two raw texts."""
    lines = difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=OLD_LABEL,
        tofile=NEW_LABEL,
    )
    return "".join(
        line if line.endswith("\n") else line + "\n"
        for line in lines
    )


def _select(violations: list[PolicyViolations], keys: set[str]) -> list[PolicyViolations]:
    selected = []
    for group in violations:
        kept = group.filtered(keys)
        if kept is not None:
            selected.append(kept)
    return selected


def diff_audits(old: AuditResult, new: AuditResult) -> SecurityDelta:
    """Set-diff two audits on violation identity."""
    old_keys = old.violation_keys()
    new_keys = new.violation_keys()

    return SecurityDelta(
        new_violations=_select(new.violations, new_keys - old_keys),
        fixed_violations=_select(old.violations, old_keys - new_keys),
        unchanged_violations=_select(new.violations, new_keys & old_keys),
        total_issues_change=new.total_issues - old.total_issues,
        score_change=new.score - old.score,
    )


class DeltaEngine:
    """Compares configuration versions through the audit engine."""

    def __init__(self, audit_engine: AuditEngine | None = None):
        self.audit_engine = audit_engine or AuditEngine()
        self._logger = logger.bind(component="DeltaEngine")

    async def compare(
        self,
        old_content: str,
        new_content: str,
        provider: str | None = None,
    ) -> DiffResult:
        """Compare two versions of a configuration.

        Args:
            old_content: The current text
            new_content: The proposed text
            provider: Provider scope for both audits

        Returns:
            Patch, cost delta and violation-identity delta

        Raises:
            ParseError: If either side is not text
        """
        old_audit, new_audit = await asyncio.gather(
            self.audit_engine.audit(old_content, provider),
            self.audit_engine.audit(new_content, provider),
        )

        security_delta = diff_audits(old_audit, new_audit)
        cost_delta = round(new_audit.cost.total_monthly - old_audit.cost.total_monthly, 2)

        await self._logger.ainfo(
            "Delta computed",
            new=sum(len(v.results) for v in security_delta.new_violations),
            fixed=sum(len(v.results) for v in security_delta.fixed_violations),
            score_change=security_delta.score_change,
            cost_delta=cost_delta,
        )

        return DiffResult(
            patch=unified_patch(old_content, new_content),
            cost_delta=cost_delta,
            security_delta=security_delta,
            old_audit=old_audit,
            new_audit=new_audit,
        )
