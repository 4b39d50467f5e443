"""In-memory stores.

All mutations run under one asyncio.Lock per store, which makes version
allocation and status compare-and-set atomic within the event loop.
Returned models are copies.
"""

import asyncio
from typing import Any

import structlog

from iacguard.errors import (
    SessionNotFoundError,
    SessionStateConflictError,
    TemplateNotFoundError,
    VersionNotFoundError,
)
from iacguard.models import (
    ALLOWED_TRANSITIONS,
    AgentSession,
    SessionStatus,
    TemplateVersion,
    VersionAuthor,
)

from .base import SessionStore, TemplateStore

logger = structlog.get_logger()


class InMemoryTemplateStore(TemplateStore):
    """Template content and history held in process memory."""

    def __init__(self, templates: dict[str, str] | None = None):
        self._content: dict[str, str] = dict(templates or {})
        self._versions: dict[str, list[TemplateVersion]] = {}
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="InMemoryTemplateStore")

    async def get_content(self, template_id: str) -> str:
        try:
            return self._content[template_id]
        except KeyError:
            raise TemplateNotFoundError(template_id) from None

    async def set_content(self, template_id: str, content: str) -> None:
        async with self._lock:
            self._content[template_id] = content

    async def get_latest_version(self, template_id: str) -> TemplateVersion | None:
        versions = self._versions.get(template_id)
        return versions[-1] if versions else None

    async def get_version(self, template_id: str, version: int) -> TemplateVersion:
        for entry in self._versions.get(template_id, []):
            if entry.version == version:
                return entry
        raise VersionNotFoundError(template_id, version)

    async def list_versions(self, template_id: str) -> list[TemplateVersion]:
        return list(self._versions.get(template_id, []))

    def _append(
        self,
        template_id: str,
        content: str,
        change_log: str,
        created_by: VersionAuthor,
    ) -> TemplateVersion:
        history = self._versions.setdefault(template_id, [])
        version = TemplateVersion(
            template_id=template_id,
            version=len(history) + 1,
            content=content,
            change_log=change_log,
            created_by=created_by,
        )
        history.append(version)
        return version

    async def create_version(
        self,
        template_id: str,
        content: str,
        change_log: str,
        created_by: VersionAuthor,
    ) -> TemplateVersion:
        async with self._lock:
            version = self._append(template_id, content, change_log, created_by)

        await self._logger.ainfo(
            "Version created",
            template_id=template_id,
            version=version.version,
            created_by=created_by.value,
        )
        return version

    async def ensure_baseline(
        self,
        template_id: str,
        content: str,
        change_log: str,
        created_by: VersionAuthor = VersionAuthor.USER,
    ) -> TemplateVersion:
        async with self._lock:
            history = self._versions.get(template_id)
            if history:
                return history[0]
            return self._append(template_id, content, change_log, created_by)


class InMemorySessionStore(SessionStore):
    """Agent sessions held in process memory."""

    def __init__(self):
        self._sessions: dict[str, AgentSession] = {}
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="InMemorySessionStore")

    def _require(self, session_id: str) -> AgentSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    async def create(self, session: AgentSession) -> AgentSession:
        async with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)
        return session.model_copy(deep=True)

    async def get(self, session_id: str) -> AgentSession:
        return self._require(session_id).model_copy(deep=True)

    async def save(self, session: AgentSession) -> AgentSession:
        async with self._lock:
            stored = self._require(session.id)
            updated = session.model_copy(update={"status": stored.status}, deep=True)
            self._sessions[session.id] = updated
        return updated.model_copy(deep=True)

    async def transition(
        self,
        session_id: str,
        expected: SessionStatus,
        target: SessionStatus,
        **updates: Any,
    ) -> AgentSession:
        async with self._lock:
            session = self._require(session_id)

            if session.status != expected:
                raise SessionStateConflictError(session_id, expected.value, session.status.value)
            if target not in ALLOWED_TRANSITIONS[expected]:
                raise SessionStateConflictError(
                    session_id,
                    expected.value,
                    session.status.value,
                    reason=f"Transition {expected.value} -> {target.value} is not allowed",
                )
            if target == SessionStatus.APPLYING:
                busy = [
                    s.id for s in self._sessions.values()
                    if s.template_id == session.template_id
                    and s.status == SessionStatus.APPLYING
                    and s.id != session_id
                ]
                if busy:
                    raise SessionStateConflictError(
                        session_id,
                        expected.value,
                        session.status.value,
                        reason=f"Template {session.template_id} is being applied by session {busy[0]}",
                    )

            updated = AgentSession.model_validate({
                **session.model_dump(),
                **updates,
                "status": target,
            })
            self._sessions[session_id] = updated

        await self._logger.adebug(
            "Session transition",
            session_id=session_id,
            from_status=expected.value,
            to_status=target.value,
        )
        return updated.model_copy(deep=True)

    async def list_for_template(self, template_id: str) -> list[AgentSession]:
        sessions = [s for s in self._sessions.values() if s.template_id == template_id]
        return [s.model_copy(deep=True) for s in sorted(sessions, key=lambda s: s.created_at)]
