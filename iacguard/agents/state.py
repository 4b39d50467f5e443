"""State flowing through the planning graph.

1. audit -> AuditResult for the current content
2. remediate -> proposed Remediations for auto-fixable violations
3. project -> score/cost snapshots before and after the plan
"""

from typing import TypedDict

from iacguard.audit import AuditResult
from iacguard.models import AgentChange, ScoreSnapshot
from iacguard.remediation import Remediation


class PlanningState(TypedDict, total=False):
    """State for the audit -> remediate -> project workflow."""

    # Input
    template_id: str
    content: str
    provider: str

    # Audit
    audit: AuditResult

    # Remediation
    remediations: list[Remediation]
    changes: list[AgentChange]

    # Projection
    original_score: ScoreSnapshot
    projected_score: ScoreSnapshot
    total_estimated_savings: float
