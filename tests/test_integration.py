"""End-to-end integration tests for the audit and remediation pipeline.

Tests the complete flow:
1. Audit -> scored violations and cost for a template
2. Delta -> what a proposed edit fixes and what it costs
3. Plan -> reviewable changes in a session
4. Apply -> versioned content, with stale and concurrent edits handled
"""

import asyncio

import pytest

from iacguard.agents import ChangePlanOrchestrator
from iacguard.audit import ReportFormat, ReportGenerator
from iacguard.delta import DeltaEngine
from iacguard.errors import SessionStateConflictError
from iacguard.models import SessionStatus
from iacguard.policies import Severity


class TestAuditScenario:
    """A lone S3 bucket."""

    @pytest.mark.asyncio
    async def test_bucket_without_protection(self, audit_engine, bucket_only_template: str):
        """The bucket is flagged for public access and logging, the template for CloudTrail."""
        result = await audit_engine.audit(bucket_only_template)

        sec001 = result.get_violations("SEC001")
        assert sec001.severity == Severity.CRITICAL
        assert sec001.results[0].auto_fixable
        assert sec001.results[0].resource_ref == "aws_s3_bucket.data"
        assert result.get_violations("SEC006").severity == Severity.HIGH
        assert result.get_violations("SEC009").severity == Severity.MEDIUM
        assert result.score == 55

    @pytest.mark.asyncio
    async def test_report_for_failed_audit(self, audit_engine, bucket_only_template: str):
        """A report over the audit lists every violation."""
        result = await audit_engine.audit(bucket_only_template, template_id="main.tf")

        report = ReportGenerator().generate([result], ReportFormat.MARKDOWN)

        for code in ("SEC001", "SEC006", "SEC009"):
            assert code in report


class TestDeltaScenario:
    """Switching a volume from gp2 to gp3."""

    @pytest.mark.asyncio
    async def test_gp2_to_gp3_saves_money(
        self,
        audit_engine,
        gp2_volume_template: str,
        gp3_volume_template: str,
    ):
        """The switch fixes COST005 and lowers the monthly cost."""
        diff = await DeltaEngine(audit_engine).compare(gp2_volume_template, gp3_volume_template)

        assert diff.cost_delta < 0
        assert diff.cost_delta == -2.0
        assert "COST005" in {g.code for g in diff.security_delta.fixed_violations}
        assert not diff.security_delta.is_regression


class TestPlanAndApplyScenario:
    """Planning, then applying after someone else edited the template."""

    @pytest.mark.asyncio
    async def test_stale_edit_is_skipped(
        self,
        orchestrator: ChangePlanOrchestrator,
        template_store,
        audit_engine,
        bucket_and_volume_template: str,
    ):
        """The append still applies; the edit of the changed volume does not."""
        plan = await orchestrator.analyze_and_plan("infra", bucket_and_volume_template)
        assert [c.policy_code for c in plan.changes] == ["SEC001", "SEC004"]

        await template_store.set_content(
            "infra",
            bucket_and_volume_template.replace("size              = 50", "size              = 80"),
        )
        result = await orchestrator.apply_changes(plan.session_id, [c.id for c in plan.changes])

        assert result.success
        assert result.applied_count == 1
        assert result.session.status == SessionStatus.COMPLETED

        content = await template_store.get_content("infra")
        assert 'resource "aws_s3_bucket_public_access_block" "logs_public_access"' in content
        assert "encrypted = true" not in content

        audit = await audit_engine.audit(content)
        assert audit.get_violations("SEC001") is None
        assert audit.get_violations("SEC004") is not None

    @pytest.mark.asyncio
    async def test_delta_of_applied_plan(
        self,
        orchestrator: ChangePlanOrchestrator,
        audit_engine,
        bucket_and_volume_template: str,
    ):
        """The delta between the baseline and the agent version shows the fixes."""
        plan = await orchestrator.analyze_and_plan("infra", bucket_and_volume_template)
        await orchestrator.apply_changes(plan.session_id, [c.id for c in plan.changes])
        baseline, applied = await orchestrator.get_template_versions("infra")

        diff = await DeltaEngine(audit_engine).compare(baseline.content, applied.content)

        fixed = {g.code for g in diff.security_delta.fixed_violations}
        assert fixed == {"SEC001", "SEC004"}
        session = plan.session
        assert diff.security_delta.score_change == (
            session.projected_score.security - session.original_score.security
        )
        assert "+  encrypted = true\n" in diff.patch


class TestConcurrentApplyScenario:
    """Two applies racing on one session."""

    @pytest.mark.asyncio
    async def test_exactly_one_apply_wins(
        self,
        orchestrator: ChangePlanOrchestrator,
        template_store,
        bucket_only_template: str,
    ):
        """One apply succeeds, the other sees a state conflict, and one version is written."""
        plan = await orchestrator.analyze_and_plan("infra", bucket_only_template)
        ids = [c.id for c in plan.changes]

        first, second = await asyncio.gather(
            orchestrator.apply_changes(plan.session_id, ids),
            orchestrator.apply_changes(plan.session_id, ids),
            return_exceptions=True,
        )

        outcomes = [first, second]
        assert sum(isinstance(o, SessionStateConflictError) for o in outcomes) == 1
        winner = next(o for o in outcomes if not isinstance(o, Exception))
        assert winner.success
        assert winner.version.version == 2

        versions = await template_store.list_versions("infra")
        assert [v.version for v in versions] == [1, 2]
        assert versions[0].content == bucket_only_template

        session = await orchestrator.get_session(plan.session_id)
        assert session.status == SessionStatus.COMPLETED
