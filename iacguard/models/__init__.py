"""Data models for sessions and template history."""

from .session import (
    ALLOWED_TRANSITIONS,
    AgentChange,
    AgentSession,
    ApplyResult,
    ChangeDiff,
    ChangeImpact,
    ChangePlan,
    ChangeType,
    ScoreSnapshot,
    SessionStatus,
    SkippedChange,
)
from .version import TemplateVersion, VersionAuthor

__all__ = [
    # Session
    "ALLOWED_TRANSITIONS",
    "AgentChange",
    "AgentSession",
    "ApplyResult",
    "ChangeDiff",
    "ChangeImpact",
    "ChangePlan",
    "ChangeType",
    "ScoreSnapshot",
    "SessionStatus",
    "SkippedChange",
    # Version
    "TemplateVersion",
    "VersionAuthor",
]
