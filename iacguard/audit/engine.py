"""Audit Engine - runs active policies against one configuration.

The engine:
1. Parses the content once
2. Runs every active policy in isolation (a failing policy is logged and skipped)
3. Groups violations by policy, ordered by severity then code
4. Scores the result and attaches a cost estimate
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

import structlog

from iacguard.config import Settings, get_settings
from iacguard.errors import PolicyExecutionError
from iacguard.parser import ConfigParser, ParsedConfig
from iacguard.policies import (
    PolicyActivation,
    PolicyCategory,
    PolicyRegistry,
    PolicyResult,
    SettingsPolicyActivation,
    Severity,
    default_registry,
)

from .cost import CostBreakdown, CostService
from .inventory import LiveResource, to_parsed_config

logger = structlog.get_logger()

SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
    Severity.INFO: 0,
}


def violation_key(code: str, resource_ref: str) -> str:
    """Identity of a violation across independent audit runs."""
    return f"{code}:{resource_ref}"


@dataclass
class PolicyViolations:
    """All results of one policy in one audit."""

    code: str
    name: str
    category: PolicyCategory
    severity: Severity
    results: list[PolicyResult] = field(default_factory=list)

    def keys(self) -> set[str]:
        return {violation_key(self.code, r.resource_ref) for r in self.results}

    def filtered(self, keys: set[str]) -> "PolicyViolations | None":
        """Copy holding only results whose key is in ``keys``."""
        kept = [r for r in self.results if violation_key(self.code, r.resource_ref) in keys]
        if not kept:
            return None
        return PolicyViolations(self.code, self.name, self.category, self.severity, kept)

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy_code": self.code,
            "policy_name": self.name,
            "category": self.category.value,
            "severity": self.severity.value,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class AuditSummary:
    """Violation counts per severity."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low + self.info

    def count(self, severity: Severity) -> int:
        return getattr(self, severity.value.lower())

    @classmethod
    def from_violations(cls, violations: Iterable[PolicyViolations]) -> "AuditSummary":
        summary = cls()
        for group in violations:
            attr = group.severity.value.lower()
            setattr(summary, attr, getattr(summary, attr) + len(group.results))
        return summary

    def to_dict(self) -> dict[str, int]:
        return {
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
            "info": self.info,
            "total": self.total,
        }


def compute_score(summary: AuditSummary) -> int:
    """Score 0-100; INFO findings do not cost points."""
    penalty = sum(
        weight * summary.count(severity) for severity, weight in SEVERITY_WEIGHTS.items()
    )
    return max(0, min(100, 100 - penalty))


@dataclass
class AuditResult:
    """Point-in-time outcome of one audit."""

    violations: list[PolicyViolations]
    score: int
    summary: AuditSummary
    cost: CostBreakdown
    passed_checks: int
    provider: str
    failed_policies: list[str] = field(default_factory=list)
    resource_count: int = 0
    template_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_issues(self) -> int:
        return self.summary.total

    def violation_keys(self) -> set[str]:
        keys: set[str] = set()
        for group in self.violations:
            keys |= group.keys()
        return keys

    def get_violations(self, code: str) -> PolicyViolations | None:
        for group in self.violations:
            if group.code == code:
                return group
        return None

    def auto_fixable(self) -> list[tuple[PolicyViolations, PolicyResult]]:
        """Auto-fixable results paired with their policy group, in audit order."""
        return [
            (group, result)
            for group in self.violations
            for result in group.results
            if result.auto_fixable
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "template_id": self.template_id,
            "provider": self.provider,
            "timestamp": self.timestamp.isoformat(),
            "score": self.score,
            "summary": self.summary.to_dict(),
            "passed_checks": self.passed_checks,
            "failed_policies": self.failed_policies,
            "resource_count": self.resource_count,
            "violations": [v.to_dict() for v in self.violations],
            "cost": self.cost.to_dict(),
        }


class AuditEngine:
    """Runs the policy registry against configurations."""

    def __init__(
        self,
        registry: PolicyRegistry | None = None,
        cost_service: CostService | None = None,
        activation: PolicyActivation | None = None,
        settings: Settings | None = None,
        parser: ConfigParser | None = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or default_registry()
        self.cost_service = cost_service or CostService()
        self.activation = activation or SettingsPolicyActivation(self.settings)
        self.parser = parser or ConfigParser()
        self._logger = logger.bind(component="AuditEngine")

    def run_policies(
        self,
        parsed: ParsedConfig,
        provider: str,
    ) -> tuple[list[PolicyViolations], int, list[str]]:
        """Run all active policies with per-policy failure isolation.

        Args:
            parsed: The parsed configuration
            provider: Provider used to select policies

        Returns:
            (violation groups in severity/code order, passed check count,
            codes of policies that raised)
        """
        violations: list[PolicyViolations] = []
        failed: list[str] = []
        passed = 0

        for policy in self.registry.get_active(provider, self.activation):
            try:
                results = list(policy.check(parsed, parsed.raw_content))
            except Exception as e:
                error = PolicyExecutionError(policy.code, e)
                self._logger.error(
                    "Policy check failed",
                    policy=policy.code,
                    error=error.message,
                    exc_info=True,
                )
                failed.append(policy.code)
                continue

            if not results:
                passed += 1
                continue

            violations.append(PolicyViolations(
                code=policy.code,
                name=policy.name,
                category=policy.category,
                severity=policy.severity,
                results=results,
            ))

        violations.sort(key=lambda v: (v.severity.rank, v.code))
        return violations, passed, failed

    async def _build_result(
        self,
        parsed: ParsedConfig,
        provider: str,
        cost: CostBreakdown,
        template_id: str | None,
    ) -> AuditResult:
        violations, passed, failed = self.run_policies(parsed, provider)
        summary = AuditSummary.from_violations(violations)
        result = AuditResult(
            violations=violations,
            score=compute_score(summary),
            summary=summary,
            cost=cost,
            passed_checks=passed,
            provider=provider,
            failed_policies=failed,
            resource_count=len(parsed.resources),
            template_id=template_id,
        )

        await self._logger.ainfo(
            "Audit complete",
            template_id=template_id,
            resources=result.resource_count,
            score=result.score,
            total_issues=result.total_issues,
            failed_policies=len(failed),
            monthly_cost=cost.total_monthly,
        )
        return result

    async def audit(
        self,
        content: str,
        provider: str | None = None,
        template_id: str | None = None,
        region: str | None = None,
    ) -> AuditResult:
        """Audit configuration text.

        Args:
            content: Raw configuration text
            provider: Provider scope (defaults to settings)
            template_id: Optional id carried into the result
            region: Pricing region (defaults to settings)

        Returns:
            A fresh AuditResult

        Raises:
            ParseError: If ``content`` is not text
        """
        provider = provider or self.settings.default_provider
        parsed = self.parser.parse(content)
        cost = await self.cost_service.analyze_template_cost(
            parsed.resources,
            region or self.settings.default_region,
        )
        return await self._build_result(parsed, provider, cost, template_id)

    async def audit_resources(
        self,
        resources: list[LiveResource],
        provider: str | None = None,
        region: str | None = None,
    ) -> AuditResult:
        """Audit live inventory resources through the same policy path."""
        provider = provider or self.settings.default_provider
        parsed = to_parsed_config(resources)
        cost = await self.cost_service.analyze_live_resources(
            resources,
            region or self.settings.default_region,
        )
        return await self._build_result(parsed, provider, cost, None)
