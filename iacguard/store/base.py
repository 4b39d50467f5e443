"""Storage interfaces for template content, versions and sessions.

Implementations must allocate version numbers atomically and perform
session status transitions as compare-and-set operations.
"""

from abc import ABC, abstractmethod
from typing import Any

from iacguard.models import AgentSession, SessionStatus, TemplateVersion, VersionAuthor


class TemplateStore(ABC):
    """Current content pointer plus append-only version history."""

    @abstractmethod
    async def get_content(self, template_id: str) -> str:
        """Current content.

        Raises:
            TemplateNotFoundError: If the template has no content
        """

    @abstractmethod
    async def set_content(self, template_id: str, content: str) -> None:
        """Replace the current content, creating the template if needed."""

    @abstractmethod
    async def get_latest_version(self, template_id: str) -> TemplateVersion | None:
        ...

    @abstractmethod
    async def get_version(self, template_id: str, version: int) -> TemplateVersion:
        """Raises VersionNotFoundError when absent."""

    @abstractmethod
    async def list_versions(self, template_id: str) -> list[TemplateVersion]:
        """All versions, oldest first."""

    @abstractmethod
    async def create_version(
        self,
        template_id: str,
        content: str,
        change_log: str,
        created_by: VersionAuthor,
    ) -> TemplateVersion:
        """Append a version numbered latest + 1 (atomic)."""

    @abstractmethod
    async def ensure_baseline(
        self,
        template_id: str,
        content: str,
        change_log: str,
        created_by: VersionAuthor = VersionAuthor.USER,
    ) -> TemplateVersion:
        """Create version 1 if the template has no versions yet.

        Returns:
            The existing or newly created version 1
        """


class SessionStore(ABC):
    """Agent sessions with compare-and-set status transitions."""

    @abstractmethod
    async def create(self, session: AgentSession) -> AgentSession:
        ...

    @abstractmethod
    async def get(self, session_id: str) -> AgentSession:
        """Raises SessionNotFoundError when absent."""

    @abstractmethod
    async def save(self, session: AgentSession) -> AgentSession:
        """Persist non-status fields of a session."""

    @abstractmethod
    async def transition(
        self,
        session_id: str,
        expected: SessionStatus,
        target: SessionStatus,
        **updates: Any,
    ) -> AgentSession:
        """Atomically move a session from ``expected`` to ``target``.

        ``updates`` are written in the same step. Moving to APPLYING also
        requires that no other session of the same template is APPLYING.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionStateConflictError: If the session is not in ``expected``,
                the transition is not allowed, or the template is busy
        """

    @abstractmethod
    async def list_for_template(self, template_id: str) -> list[AgentSession]:
        """Sessions of a template, oldest first."""
