"""Agent session orchestration."""

from .orchestrator import BASELINE_CHANGE_LOG, ChangePlanOrchestrator, project_scores
from .state import PlanningState

__all__ = [
    "BASELINE_CHANGE_LOG",
    "ChangePlanOrchestrator",
    "PlanningState",
    "project_scores",
]
