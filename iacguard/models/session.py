"""Agent session models.

A session moves through:

    PLANNING  -> REVIEWING  (plan built)
    PLANNING  -> CANCELLED  (build failed)
    REVIEWING -> CANCELLED  (cancel)
    REVIEWING -> APPLYING   (apply requested)
    APPLYING  -> COMPLETED  (at least one change applied)
    APPLYING  -> REVIEWING  (nothing applied)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from iacguard.audit import AuditResult
from iacguard.policies import PolicyCategory
from iacguard.remediation.models import ChangeStatus, FixDiff, FixSource, Remediation

from .version import TemplateVersion


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Session lifecycle states."""

    PLANNING = "PLANNING"
    REVIEWING = "REVIEWING"
    APPLYING = "APPLYING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


ALLOWED_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.PLANNING: {SessionStatus.REVIEWING, SessionStatus.CANCELLED},
    SessionStatus.REVIEWING: {SessionStatus.APPLYING, SessionStatus.CANCELLED},
    SessionStatus.APPLYING: {SessionStatus.COMPLETED, SessionStatus.REVIEWING},
    SessionStatus.COMPLETED: set(),
    SessionStatus.CANCELLED: set(),
}


class ChangeType(str, Enum):
    """What kind of improvement a change makes."""

    SECURITY_FIX = "security_fix"
    COST_OPTIMIZATION = "cost_optimization"
    RELIABILITY = "reliability"
    BEST_PRACTICE = "best_practice"

    @classmethod
    def for_category(cls, category: PolicyCategory) -> "ChangeType":
        match category:
            case PolicyCategory.SECURITY:
                return cls.SECURITY_FIX
            case PolicyCategory.COST:
                return cls.COST_OPTIMIZATION
            case PolicyCategory.RELIABILITY:
                return cls.RELIABILITY
            case _:
                return cls.BEST_PRACTICE


class ChangeDiff(BaseModel):
    before: str = ""
    after: str

    def to_fix_diff(self) -> FixDiff:
        return FixDiff(before=self.before, after=self.after)


class ChangeImpact(BaseModel):
    security_score_change: int = 0
    monthly_cost_change: float = 0.0


class AgentChange(BaseModel):
    """One proposed edit inside a session's change plan."""

    id: str
    policy_code: str
    title: str
    description: str = ""
    severity: str
    category: str
    change_type: ChangeType
    resource_ref: str
    diff: ChangeDiff
    impact: ChangeImpact = Field(default_factory=ChangeImpact)
    status: ChangeStatus = ChangeStatus.PROPOSED
    source: FixSource = FixSource.STATIC
    confidence: float = 0.9

    @classmethod
    def from_remediation(cls, remediation: Remediation) -> "AgentChange":
        return cls(
            id=remediation.id,
            policy_code=remediation.policy_code,
            title=remediation.title,
            description=remediation.description,
            severity=remediation.severity.value,
            category=remediation.category.value,
            change_type=ChangeType.for_category(remediation.category),
            resource_ref=remediation.resource_ref,
            diff=ChangeDiff(before=remediation.diff.before, after=remediation.diff.after),
            impact=ChangeImpact(
                security_score_change=remediation.impact.security_score_change,
                monthly_cost_change=remediation.impact.monthly_cost_change,
            ),
            status=remediation.status,
            source=remediation.source,
            confidence=remediation.confidence,
        )


class ScoreSnapshot(BaseModel):
    """Security score and monthly cost at one point."""

    security: int = Field(..., ge=0, le=100)
    monthly_cost: float = Field(..., ge=0)


class AgentSession(BaseModel):
    """A plan/review/apply session for one template."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    template_id: str
    provider: str = "aws"
    status: SessionStatus = SessionStatus.PLANNING
    change_plan: list[AgentChange] = Field(default_factory=list)
    original_score: ScoreSnapshot | None = None
    projected_score: ScoreSnapshot | None = None
    total_estimated_savings: float = 0.0
    applied_change_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None
    error: str | None = None

    def get_change(self, change_id: str) -> AgentChange | None:
        for change in self.change_plan:
            if change.id == change_id:
                return change
        return None


class ChangePlan(BaseModel):
    """Result of planning: the session, its audit and the proposed changes."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session: AgentSession
    audit: AuditResult
    changes: list[AgentChange] = Field(default_factory=list)

    @property
    def session_id(self) -> str:
        return self.session.id


class SkippedChange(BaseModel):
    change_id: str
    reason: str


class ApplyResult(BaseModel):
    """Outcome of applying accepted changes."""

    success: bool
    session: AgentSession
    applied_count: int = 0
    applied_change_ids: list[str] = Field(default_factory=list)
    skipped: list[SkippedChange] = Field(default_factory=list)
    version: TemplateVersion | None = None
    updated_content: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
