"""Remediation Planner - turns auto-fixable violations into text edits.

For each violation result the planner tries, in order:
1. The static template registered for the policy code
2. The AI suggester, bounded by a timeout
3. A manual placeholder comment describing the required change
"""

import asyncio
from typing import Any
from uuid import uuid4

import structlog

from iacguard.audit import SEVERITY_WEIGHTS, PolicyViolations
from iacguard.config import Settings, get_settings
from iacguard.errors import FixGenerationError
from iacguard.policies import PolicyCategory, PolicyResult

from .models import FixDiff, FixImpact, FixSource, Remediation
from .suggester import AnthropicFixSuggester, FixSuggester
from .templates import STATIC_FIXES

logger = structlog.get_logger()

SAVINGS_KEYS = ("estimated_savings", "monthly_savings", "potential_savings")

CONFIDENCE = {
    FixSource.STATIC: 0.95,
    FixSource.AI: 0.7,
    FixSource.MANUAL: 0.2,
}


def estimate_impact(violation: PolicyViolations, result: PolicyResult) -> FixImpact:
    """Expected score gain or monthly cost change from fixing one result."""
    security_change = 0
    cost_change = 0.0

    if violation.category == PolicyCategory.SECURITY:
        security_change = SEVERITY_WEIGHTS[violation.severity]

    if violation.category == PolicyCategory.COST:
        for key in SAVINGS_KEYS:
            value = result.metadata.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                cost_change = -round(float(value), 2)
                break

    return FixImpact(security_score_change=security_change, monthly_cost_change=cost_change)


def manual_placeholder(violation: PolicyViolations, result: PolicyResult) -> FixDiff:
    instruction = result.suggestion or result.message
    return FixDiff(
        before="",
        after=f"# MANUAL FIX REQUIRED [{violation.code}] {result.resource_ref}: {instruction}",
    )


class RemediationPlanner:
    """Generates Remediations for audit violations."""

    def __init__(
        self,
        suggester: FixSuggester | None = None,
        settings: Settings | None = None,
        templates: dict[str, Any] | None = None,
    ):
        self.settings = settings or get_settings()
        self.templates = STATIC_FIXES if templates is None else templates
        if suggester is None and self.settings.ai_enabled:
            suggester = AnthropicFixSuggester(self.settings)
        self.suggester = suggester
        self._logger = logger.bind(component="RemediationPlanner")

    def _static_fix(self, content: str, violation: PolicyViolations, result: PolicyResult) -> FixDiff | None:
        template = self.templates.get(violation.code)
        if template is None:
            return None
        try:
            return template(result, content)
        except Exception as e:
            self._logger.warning(
                "Static fix template failed",
                policy=violation.code,
                resource=result.resource_ref,
                error=str(e),
            )
            return None

    async def _ai_fix(
        self,
        content: str,
        violation: PolicyViolations,
        result: PolicyResult,
    ) -> tuple[FixDiff, str] | None:
        if self.suggester is None:
            return None
        try:
            suggestion = await asyncio.wait_for(
                self.suggester.suggest_fix(content, violation, result),
                timeout=self.settings.ai_timeout_seconds,
            )
            if suggestion.before and suggestion.before not in content:
                raise FixGenerationError(
                    "Suggested 'before' text is not in the template",
                    policy=violation.code,
                )
        except asyncio.TimeoutError:
            await self._logger.awarning(
                "AI fix timed out",
                policy=violation.code,
                resource=result.resource_ref,
                timeout=self.settings.ai_timeout_seconds,
            )
            return None
        except Exception as e:
            await self._logger.awarning(
                "AI fix generation failed",
                policy=violation.code,
                resource=result.resource_ref,
                error=str(e),
            )
            return None
        return FixDiff(before=suggestion.before, after=suggestion.after), suggestion.description

    async def generate_fix(
        self,
        content: str,
        violation: PolicyViolations,
        result: PolicyResult,
    ) -> Remediation:
        """Generate a fix for one violation result.

        Args:
            content: Current configuration text
            violation: The policy group the result belongs to
            result: The violation instance to fix

        Returns:
            A proposed Remediation; never fails for a bad template or AI response
        """
        diff = self._static_fix(content, violation, result)
        if diff is not None:
            source = FixSource.STATIC
            description = result.suggestion or f"Apply automated fix for {violation.name}"
        else:
            ai_fix = await self._ai_fix(content, violation, result)
            if ai_fix is not None:
                source = FixSource.AI
                diff, description = ai_fix
            else:
                source = FixSource.MANUAL
                diff = manual_placeholder(violation, result)
                description = result.suggestion or f"Manual fix required for {violation.name}"

        remediation = Remediation(
            id=f"fix-{violation.code}-{uuid4().hex[:12]}",
            policy_code=violation.code,
            title=f"Fix: {violation.name}",
            description=description,
            severity=violation.severity,
            category=violation.category,
            resource_ref=result.resource_ref,
            diff=diff,
            impact=estimate_impact(violation, result),
            source=source,
            confidence=CONFIDENCE[source],
        )

        await self._logger.adebug(
            "Fix generated",
            id=remediation.id,
            policy=violation.code,
            resource=result.resource_ref,
            source=source.value,
        )
        return remediation

    async def generate_batch_fixes(
        self,
        content: str,
        violations: list[PolicyViolations],
    ) -> list[Remediation]:
        """Generate fixes for every auto-fixable result, in audit order.

        A failure on one result is logged and skipped.
        """
        remediations: list[Remediation] = []
        for violation in violations:
            for result in violation.results:
                if not result.auto_fixable:
                    continue
                try:
                    remediations.append(await self.generate_fix(content, violation, result))
                except Exception as e:
                    await self._logger.aerror(
                        "Failed to generate fix",
                        policy=violation.code,
                        resource=result.resource_ref,
                        error=str(e),
                        exc_info=True,
                    )

        await self._logger.ainfo(
            "Batch fixes generated",
            count=len(remediations),
            static=sum(1 for r in remediations if r.source == FixSource.STATIC),
        )
        return remediations
