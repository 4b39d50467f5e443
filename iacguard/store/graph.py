"""Neo4j-backed stores.

Graph layout:

    (:Template {id, content, version_counter})-[:HAS_VERSION]->(:TemplateVersion)
    (:AgentSession {id, template_id, status, ...})
    (:TemplateApplyLock {template_id})

Version numbers come from ``version_counter`` incremented inside the
creating statement. Every statement that reads before it writes first sets
a property on the node it guards, taking the write lock so concurrent
transactions serialize on it. Session transitions lock the template's
TemplateApplyLock node, then compare and set ``status`` in one statement.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import TypeAdapter

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
from .client import GraphClient

logger = structlog.get_logger()

SCHEMA_STATEMENTS = (
    "CREATE CONSTRAINT template_id IF NOT EXISTS FOR (t:Template) REQUIRE t.id IS UNIQUE",
    "CREATE CONSTRAINT agent_session_id IF NOT EXISTS FOR (s:AgentSession) REQUIRE s.id IS UNIQUE",
    "CREATE CONSTRAINT template_apply_lock IF NOT EXISTS "
    "FOR (l:TemplateApplyLock) REQUIRE l.template_id IS UNIQUE",
)

# Session fields stored as JSON strings
JSON_FIELDS = ("change_plan", "original_score", "projected_score")
_JSON = TypeAdapter(Any)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def ensure_schema(client: GraphClient) -> None:
    """Create the uniqueness constraints the stores rely on."""
    for statement in SCHEMA_STATEMENTS:
        await client.write(statement)


# ==================== Templates ====================


CREATE_VERSION_QUERY = """
MERGE (t:Template {id: $template_id})
SET t._lock = true
WITH t
SET t.version_counter = coalesce(t.version_counter, 0) + 1
CREATE (t)-[:HAS_VERSION]->(v:TemplateVersion)
SET v = $props, v.template_id = t.id, v.version = t.version_counter
RETURN properties(v) AS version
"""

ENSURE_BASELINE_QUERY = """
MERGE (t:Template {id: $template_id})
SET t._lock = true
WITH t
WHERE coalesce(t.version_counter, 0) = 0
SET t.version_counter = 1
CREATE (t)-[:HAS_VERSION]->(v:TemplateVersion)
SET v = $props, v.template_id = t.id, v.version = 1
RETURN properties(v) AS version
"""


def _version_props(content: str, change_log: str, created_by: VersionAuthor) -> dict[str, Any]:
    return {
        "content": content,
        "change_log": change_log,
        "created_by": created_by.value,
        "created_at": _now(),
    }


class Neo4jTemplateStore(TemplateStore):
    """Template content and history in Neo4j."""

    def __init__(self, client: GraphClient):
        self._client = client
        self._logger = logger.bind(component="Neo4jTemplateStore")

    async def get_content(self, template_id: str) -> str:
        rows = await self._client.read(
            "MATCH (t:Template {id: $template_id}) RETURN t.content AS content",
            {"template_id": template_id},
        )
        if not rows or rows[0]["content"] is None:
            raise TemplateNotFoundError(template_id)
        return rows[0]["content"]

    async def set_content(self, template_id: str, content: str) -> None:
        await self._client.write(
            """
            MERGE (t:Template {id: $template_id})
            SET t.content = $content, t.updated_at = $now
            """,
            {"template_id": template_id, "content": content, "now": _now()},
        )

    async def get_latest_version(self, template_id: str) -> TemplateVersion | None:
        rows = await self._client.read(
            """
            MATCH (:Template {id: $template_id})-[:HAS_VERSION]->(v:TemplateVersion)
            RETURN properties(v) AS version
            ORDER BY v.version DESC
            LIMIT 1
            """,
            {"template_id": template_id},
        )
        return TemplateVersion.model_validate(rows[0]["version"]) if rows else None

    async def get_version(self, template_id: str, version: int) -> TemplateVersion:
        rows = await self._client.read(
            """
            MATCH (:Template {id: $template_id})-[:HAS_VERSION]->(v:TemplateVersion {version: $version})
            RETURN properties(v) AS version
            """,
            {"template_id": template_id, "version": version},
        )
        if not rows:
            raise VersionNotFoundError(template_id, version)
        return TemplateVersion.model_validate(rows[0]["version"])

    async def list_versions(self, template_id: str) -> list[TemplateVersion]:
        rows = await self._client.read(
            """
            MATCH (:Template {id: $template_id})-[:HAS_VERSION]->(v:TemplateVersion)
            RETURN properties(v) AS version
            ORDER BY v.version
            """,
            {"template_id": template_id},
        )
        return [TemplateVersion.model_validate(row["version"]) for row in rows]

    async def create_version(
        self,
        template_id: str,
        content: str,
        change_log: str,
        created_by: VersionAuthor,
    ) -> TemplateVersion:
        rows = await self._client.write(
            CREATE_VERSION_QUERY,
            {
                "template_id": template_id,
                "props": _version_props(content, change_log, created_by),
            },
        )
        version = TemplateVersion.model_validate(rows[0]["version"])

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
        rows = await self._client.write(
            ENSURE_BASELINE_QUERY,
            {
                "template_id": template_id,
                "props": _version_props(content, change_log, created_by),
            },
        )
        if rows:
            return TemplateVersion.model_validate(rows[0]["version"])
        return await self.get_version(template_id, 1)


# ==================== Sessions ====================


TRANSITION_QUERY = """
MATCH (s:AgentSession {id: $session_id})
MERGE (lock:TemplateApplyLock {template_id: s.template_id})
SET lock.touched_at = $now
WITH s
OPTIONAL MATCH (other:AgentSession {template_id: s.template_id, status: $applying})
WHERE other.id <> s.id
WITH s, s.status AS actual, count(other) AS busy
WITH s, actual, busy, (actual = $expected AND (busy = 0 OR $target <> $applying)) AS allowed
FOREACH (_ IN CASE WHEN allowed THEN [1] ELSE [] END |
    SET s += $updates, s.status = $target
)
RETURN actual, busy, allowed, properties(s) AS session
"""


def to_property(name: str, value: Any) -> Any:
    """Convert one session field to a Neo4j property value."""
    if name in JSON_FIELDS:
        return None if value is None else json.dumps(_JSON.dump_python(value, mode="json"))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def session_properties(session: AgentSession) -> dict[str, Any]:
    return {name: to_property(name, getattr(session, name)) for name in AgentSession.model_fields}


def session_from_properties(props: dict[str, Any]) -> AgentSession:
    data = {k: v for k, v in props.items() if not k.startswith("_")}
    for name in JSON_FIELDS:
        raw = data.get(name)
        data[name] = json.loads(raw) if raw else ([] if name == "change_plan" else None)
    return AgentSession.model_validate(data)


class Neo4jSessionStore(SessionStore):
    """Agent sessions in Neo4j."""

    def __init__(self, client: GraphClient):
        self._client = client
        self._logger = logger.bind(component="Neo4jSessionStore")

    async def create(self, session: AgentSession) -> AgentSession:
        await self._client.write(
            "CREATE (s:AgentSession) SET s = $props",
            {"props": session_properties(session)},
        )
        return session

    async def get(self, session_id: str) -> AgentSession:
        rows = await self._client.read(
            "MATCH (s:AgentSession {id: $session_id}) RETURN properties(s) AS session",
            {"session_id": session_id},
        )
        if not rows:
            raise SessionNotFoundError(session_id)
        return session_from_properties(rows[0]["session"])

    async def save(self, session: AgentSession) -> AgentSession:
        props = session_properties(session)
        props.pop("status")
        rows = await self._client.write(
            """
            MATCH (s:AgentSession {id: $session_id})
            SET s += $props
            RETURN properties(s) AS session
            """,
            {"session_id": session.id, "props": props},
        )
        if not rows:
            raise SessionNotFoundError(session.id)
        return session_from_properties(rows[0]["session"])

    async def transition(
        self,
        session_id: str,
        expected: SessionStatus,
        target: SessionStatus,
        **updates: Any,
    ) -> AgentSession:
        if target not in ALLOWED_TRANSITIONS[expected]:
            raise SessionStateConflictError(
                session_id,
                expected.value,
                None,
                reason=f"Transition {expected.value} -> {target.value} is not allowed",
            )

        rows = await self._client.write(
            TRANSITION_QUERY,
            {
                "session_id": session_id,
                "expected": expected.value,
                "target": target.value,
                "applying": SessionStatus.APPLYING.value,
                "updates": {name: to_property(name, value) for name, value in updates.items()},
                "now": _now(),
            },
        )
        if not rows:
            raise SessionNotFoundError(session_id)

        row = rows[0]
        if not row["allowed"]:
            if row["actual"] != expected.value:
                raise SessionStateConflictError(session_id, expected.value, row["actual"])
            raise SessionStateConflictError(
                session_id,
                expected.value,
                row["actual"],
                reason=f"Another session is applying changes to this template ({row['busy']} active)",
            )

        await self._logger.adebug(
            "Session transition",
            session_id=session_id,
            from_status=expected.value,
            to_status=target.value,
        )
        return session_from_properties(row["session"])

    async def list_for_template(self, template_id: str) -> list[AgentSession]:
        rows = await self._client.read(
            """
            MATCH (s:AgentSession {template_id: $template_id})
            RETURN properties(s) AS session
            ORDER BY s.created_at
            """,
            {"template_id": template_id},
        )
        return [session_from_properties(row["session"]) for row in rows]
