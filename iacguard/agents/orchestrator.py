"""Change-Plan Orchestrator.

Drives one agent session per plan:

1. analyze_and_plan: audit, generate fixes and project the outcome
   (a langgraph workflow), then hand the plan to the user for review
2. apply_changes: apply the accepted subset in proposal order, each change
   validated against the accumulated content, and record a new version
3. restore_template_version: move the content back to an earlier version
   by appending new versions, never by rewriting history

The session status doubles as the apply gate: REVIEWING -> APPLYING is a
store-level compare-and-set, so concurrent applies cannot both proceed.
Version writes are additionally serialized per template.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

import structlog
from langgraph.graph import END, StateGraph

from iacguard.audit import AuditEngine
from iacguard.config import Settings, get_settings
from iacguard.errors import TemplateNotFoundError
from iacguard.models import (
    AgentChange,
    AgentSession,
    ApplyResult,
    ChangePlan,
    ScoreSnapshot,
    SessionStatus,
    SkippedChange,
    TemplateVersion,
    VersionAuthor,
)
from iacguard.remediation import ChangeStatus, RemediationPlanner, apply_fix, validate_fix
from iacguard.store import InMemorySessionStore, InMemoryTemplateStore, SessionStore, TemplateStore

from .state import PlanningState

logger = structlog.get_logger()

BASELINE_CHANGE_LOG = "Original template (pre-agent)"
NOTHING_APPLIED = "None of the accepted changes could be applied"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _final_status(change_id: str, accepted: set[str], applied: list[str]) -> ChangeStatus:
    """Status of a change once its session completes.

    Accepted changes that failed validation stay ACCEPTED; only changes the
    user left out are REJECTED.
    """
    if change_id in applied:
        return ChangeStatus.APPLIED
    if change_id in accepted:
        return ChangeStatus.ACCEPTED
    return ChangeStatus.REJECTED


def project_scores(
    original: ScoreSnapshot,
    changes: list[AgentChange],
) -> tuple[ScoreSnapshot, float]:
    """Projected snapshot if every proposed change were applied, and the savings."""
    security_gain = sum(c.impact.security_score_change for c in changes)
    savings = round(sum(abs(c.impact.monthly_cost_change) for c in changes), 2)
    projected = ScoreSnapshot(
        security=min(100, original.security + security_gain),
        monthly_cost=max(0.0, round(original.monthly_cost - savings, 2)),
    )
    return projected, savings


class ChangePlanOrchestrator:
    """Plans, applies and rolls back template changes through sessions."""

    def __init__(
        self,
        template_store: TemplateStore | None = None,
        session_store: SessionStore | None = None,
        audit_engine: AuditEngine | None = None,
        planner: RemediationPlanner | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.templates = template_store or InMemoryTemplateStore()
        self.sessions = session_store or InMemorySessionStore()
        self.audit_engine = audit_engine or AuditEngine(settings=self.settings)
        self.planner = planner or RemediationPlanner(settings=self.settings)
        self._template_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._graph = self.create_graph().compile()
        self._logger = logger.bind(component="ChangePlanOrchestrator")

    # ==================== Planning graph ====================

    def create_graph(self) -> StateGraph:
        """Create the audit_template -> remediate -> project workflow."""
        workflow = StateGraph(PlanningState)

        workflow.add_node("audit_template", self._audit_node)
        workflow.add_node("remediate", self._remediate_node)
        workflow.add_node("project", self._project_node)

        workflow.set_entry_point("audit_template")
        workflow.add_edge("audit_template", "remediate")
        workflow.add_edge("remediate", "project")
        workflow.add_edge("project", END)

        return workflow

    async def _audit_node(self, state: PlanningState) -> PlanningState:
        audit = await self.audit_engine.audit(
            state["content"],
            provider=state["provider"],
            template_id=state["template_id"],
        )
        return {"audit": audit}

    async def _remediate_node(self, state: PlanningState) -> PlanningState:
        remediations = await self.planner.generate_batch_fixes(
            state["content"],
            state["audit"].violations,
        )
        return {
            "remediations": remediations,
            "changes": [AgentChange.from_remediation(r) for r in remediations],
        }

    async def _project_node(self, state: PlanningState) -> PlanningState:
        audit = state["audit"]
        original = ScoreSnapshot(security=audit.score, monthly_cost=audit.cost.total_monthly)
        projected, savings = project_scores(original, state["changes"])
        return {
            "original_score": original,
            "projected_score": projected,
            "total_estimated_savings": savings,
        }

    # ==================== Sessions ====================

    async def analyze_and_plan(
        self,
        template_id: str,
        content: str | None = None,
        provider: str | None = None,
    ) -> ChangePlan:
        """Audit a template and build a reviewable change plan.

        Args:
            template_id: Template to plan for
            content: Content to audit; defaults to the stored content. When
                the template has no stored content yet, this becomes it.
            provider: Provider scope (defaults to settings)

        Returns:
            The plan with its session in REVIEWING

        Raises:
            TemplateNotFoundError: If no content is given or stored
            ParseError: If the content is not text
        """
        provider = provider or self.settings.default_provider
        if content is None:
            content = await self.templates.get_content(template_id)
        else:
            await self._register_template(template_id, content)

        session = await self.sessions.create(
            AgentSession(template_id=template_id, provider=provider)
        )
        await self._logger.ainfo("Planning started", session_id=session.id, template_id=template_id)

        try:
            state = await self._graph.ainvoke({
                "template_id": template_id,
                "content": content,
                "provider": provider,
            })
            session = await self.sessions.transition(
                session.id,
                SessionStatus.PLANNING,
                SessionStatus.REVIEWING,
                change_plan=state["changes"],
                original_score=state["original_score"],
                projected_score=state["projected_score"],
                total_estimated_savings=state["total_estimated_savings"],
            )
        except Exception as e:
            await self._logger.aerror(
                "Planning failed",
                session_id=session.id,
                template_id=template_id,
                error=str(e),
                exc_info=True,
            )
            await self._cancel_failed_plan(session.id, str(e))
            raise

        await self._logger.ainfo(
            "Plan ready",
            session_id=session.id,
            changes=len(session.change_plan),
            original_score=state["original_score"].security,
            projected_score=state["projected_score"].security,
            savings=state["total_estimated_savings"],
        )
        return ChangePlan(session=session, audit=state["audit"], changes=session.change_plan)

    async def _register_template(self, template_id: str, content: str) -> None:
        try:
            await self.templates.get_content(template_id)
        except TemplateNotFoundError:
            await self.templates.set_content(template_id, content)

    async def _cancel_failed_plan(self, session_id: str, error: str) -> None:
        try:
            await self.sessions.transition(
                session_id,
                SessionStatus.PLANNING,
                SessionStatus.CANCELLED,
                error=error,
                completed_at=_now(),
            )
        except Exception as e:
            await self._logger.aerror(
                "Could not cancel failed session",
                session_id=session_id,
                error=str(e),
            )

    @asynccontextmanager
    async def _template_lock(self, template_id: str) -> AsyncIterator[None]:
        async with self._template_locks[template_id]:
            yield

    async def apply_changes(self, session_id: str, accepted_ids: list[str]) -> ApplyResult:
        """Apply the accepted changes of a reviewed plan.

        Changes are applied in the order they were proposed. A change whose
        ``before`` text is no longer present, or that would drop resources,
        is skipped. If nothing applies, the session returns to REVIEWING and
        nothing is written.

        Args:
            session_id: Session in REVIEWING
            accepted_ids: Ids of the changes to apply

        Returns:
            ApplyResult with the new version on success

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionStateConflictError: If the session is not in REVIEWING, or
                another apply for the same template is in flight
        """
        session = await self.sessions.transition(
            session_id,
            SessionStatus.REVIEWING,
            SessionStatus.APPLYING,
            error=None,
        )

        try:
            return await self._apply(session, set(accepted_ids))
        except Exception as e:
            await self._logger.aerror(
                "Apply failed",
                session_id=session_id,
                error=str(e),
                exc_info=True,
            )
            try:
                await self.sessions.transition(
                    session_id,
                    SessionStatus.APPLYING,
                    SessionStatus.REVIEWING,
                    error=str(e),
                )
            except Exception as revert_error:
                await self._logger.aerror(
                    "Could not revert session",
                    session_id=session_id,
                    error=str(revert_error),
                )
            raise

    async def _apply(self, session: AgentSession, accepted: set[str]) -> ApplyResult:
        template_id = session.template_id

        async with self._template_lock(template_id):
            original = await self.templates.get_content(template_id)
            content = original
            applied: list[str] = []
            skipped: list[SkippedChange] = []

            planned_ids = {c.id for c in session.change_plan}
            for change_id in sorted(accepted - planned_ids):
                skipped.append(SkippedChange(change_id=change_id, reason="Change is not in the plan"))

            for change in session.change_plan:
                if change.id not in accepted:
                    continue
                validation = validate_fix(content, change.diff.to_fix_diff())
                if not validation.valid:
                    skipped.append(SkippedChange(change_id=change.id, reason=validation.error or "invalid"))
                    await self._logger.awarning(
                        "Change skipped",
                        session_id=session.id,
                        change_id=change.id,
                        reason=validation.error,
                    )
                    continue
                if validation.duplicates:
                    await self._logger.awarning(
                        "Change re-declares existing resources",
                        session_id=session.id,
                        change_id=change.id,
                        resources=list(validation.duplicates),
                    )
                content = apply_fix(content, change.diff.to_fix_diff())
                applied.append(change.id)

            if not applied:
                session = await self.sessions.transition(
                    session.id,
                    SessionStatus.APPLYING,
                    SessionStatus.REVIEWING,
                    error=NOTHING_APPLIED,
                )
                await self._logger.awarning(
                    "No changes applied",
                    session_id=session.id,
                    accepted=len(accepted),
                )
                return ApplyResult(
                    success=False,
                    session=session,
                    skipped=skipped,
                    error=NOTHING_APPLIED,
                )

            await self.templates.ensure_baseline(template_id, original, BASELINE_CHANGE_LOG)
            codes = sorted({c.policy_code for c in session.change_plan if c.id in applied})
            version = await self.templates.create_version(
                template_id,
                content,
                f"Applied {len(applied)} agent change(s): {', '.join(codes)}",
                VersionAuthor.AGENT,
            )
            await self.templates.set_content(template_id, content)

        plan = [
            change.model_copy(update={"status": _final_status(change.id, accepted, applied)})
            for change in session.change_plan
        ]
        session = await self.sessions.transition(
            session.id,
            SessionStatus.APPLYING,
            SessionStatus.COMPLETED,
            change_plan=plan,
            applied_change_ids=applied,
            completed_at=_now(),
        )

        await self._logger.ainfo(
            "Changes applied",
            session_id=session.id,
            template_id=template_id,
            applied=len(applied),
            skipped=len(skipped),
            version=version.version,
        )
        return ApplyResult(
            success=True,
            session=session,
            applied_count=len(applied),
            applied_change_ids=applied,
            skipped=skipped,
            version=version,
            updated_content=content,
        )

    async def cancel_session(self, session_id: str) -> AgentSession:
        """Cancel a session awaiting review.

        Raises:
            SessionStateConflictError: If the session is not in REVIEWING
        """
        session = await self.sessions.transition(
            session_id,
            SessionStatus.REVIEWING,
            SessionStatus.CANCELLED,
            completed_at=_now(),
        )
        await self._logger.ainfo("Session cancelled", session_id=session_id)
        return session

    async def get_session(self, session_id: str) -> AgentSession:
        return await self.sessions.get(session_id)

    async def list_sessions(self, template_id: str) -> list[AgentSession]:
        return await self.sessions.list_for_template(template_id)

    # ==================== Versions ====================

    async def get_template_versions(self, template_id: str) -> list[TemplateVersion]:
        return await self.templates.list_versions(template_id)

    async def restore_template_version(self, template_id: str, version: int) -> TemplateVersion:
        """Restore an earlier version by appending new versions.

        The current content is first saved as a pre-restore snapshot, then
        the restored content becomes the latest version and the current
        content.

        Raises:
            VersionNotFoundError: If ``version`` does not exist
            TemplateNotFoundError: If the template has no content
        """
        async with self._template_lock(template_id):
            target = await self.templates.get_version(template_id, version)
            current = await self.templates.get_content(template_id)

            await self.templates.create_version(
                template_id,
                current,
                f"Pre-restore snapshot (before reverting to version {version})",
                VersionAuthor.USER,
            )
            restored = await self.templates.create_version(
                template_id,
                target.content,
                f"Restored from version {version}",
                VersionAuthor.USER,
            )
            await self.templates.set_content(template_id, target.content)

        await self._logger.ainfo(
            "Template restored",
            template_id=template_id,
            from_version=version,
            new_version=restored.version,
        )
        return restored
