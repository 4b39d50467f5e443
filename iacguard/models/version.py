"""Template version history models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class VersionAuthor(str, Enum):
    """Who produced a template version."""

    USER = "user"
    AGENT = "agent"
    SYNC = "sync"


class TemplateVersion(BaseModel):
    """Immutable snapshot of a template's content."""

    template_id: str
    version: int = Field(..., ge=1, description="Per-template, gap-free, starting at 1")
    content: str
    change_log: str = ""
    created_by: VersionAuthor = VersionAuthor.USER
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}
