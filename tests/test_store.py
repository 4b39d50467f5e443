"""Tests for template and session stores."""

import asyncio
import json
from unittest.mock import ANY, AsyncMock, MagicMock

import pytest

from iacguard.errors import (
    SessionNotFoundError,
    SessionStateConflictError,
    TemplateNotFoundError,
    VersionNotFoundError,
)
from iacguard.models import (
    AgentChange,
    AgentSession,
    ChangeDiff,
    ChangeType,
    ScoreSnapshot,
    SessionStatus,
    VersionAuthor,
)
from iacguard.store import (
    GraphClient,
    InMemorySessionStore,
    InMemoryTemplateStore,
    Neo4jSessionStore,
    Neo4jSettings,
    Neo4jTemplateStore,
    ensure_schema,
)
from iacguard.store.graph import (
    CREATE_VERSION_QUERY,
    SCHEMA_STATEMENTS,
    TRANSITION_QUERY,
    session_from_properties,
    session_properties,
)


def make_session(template_id: str = "tpl-1", **kwargs) -> AgentSession:
    return AgentSession(template_id=template_id, **kwargs)


def make_change() -> AgentChange:
    return AgentChange(
        id="fix-SEC004-abc",
        policy_code="SEC004",
        title="Fix: EBS Volumes Encrypted",
        severity="HIGH",
        category="SECURITY",
        change_type=ChangeType.SECURITY_FIX,
        resource_ref="aws_ebs_volume.cache",
        diff=ChangeDiff(before="a", after="b"),
    )


@pytest.fixture
def mock_client() -> MagicMock:
    client = MagicMock(spec=GraphClient)
    client.read = AsyncMock(return_value=[])
    client.write = AsyncMock(return_value=[])
    return client


@pytest.fixture
def mock_driver() -> tuple[MagicMock, AsyncMock]:
    session = AsyncMock()
    driver = MagicMock()
    driver.session.return_value.__aenter__.return_value = session
    driver.close = AsyncMock()
    return driver, session


class TestGraphClient:
    """Tests for GraphClient over an injected driver."""

    @pytest.mark.asyncio
    async def test_read_uses_managed_read_transaction(self, mock_driver):
        driver, session = mock_driver
        session.execute_read.return_value = [{"n": 1}]
        client = GraphClient(Neo4jSettings(neo4j_database="iac"), driver=driver)

        rows = await client.read("RETURN $n AS n", {"n": 1})

        assert rows == [{"n": 1}]
        driver.session.assert_called_once_with(database="iac")
        session.execute_read.assert_awaited_once_with(ANY, "RETURN $n AS n", {"n": 1})
        session.execute_write.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_write_defaults_parameters(self, mock_driver):
        driver, session = mock_driver
        session.execute_write.return_value = []
        client = GraphClient(Neo4jSettings(), driver=driver)

        assert await client.write("CREATE (:Template)") == []
        session.execute_write.assert_awaited_once_with(ANY, "CREATE (:Template)", {})

    @pytest.mark.asyncio
    async def test_close_releases_driver(self, mock_driver):
        driver, _ = mock_driver

        async with GraphClient(Neo4jSettings(), driver=driver):
            pass

        driver.close.assert_awaited_once()


class TestInMemoryTemplateStore:
    """Tests for InMemoryTemplateStore."""

    @pytest.mark.asyncio
    async def test_content(self, template_store: InMemoryTemplateStore):
        with pytest.raises(TemplateNotFoundError):
            await template_store.get_content("missing")

        await template_store.set_content("tpl-1", "a")
        await template_store.set_content("tpl-1", "b")

        assert await template_store.get_content("tpl-1") == "b"

    @pytest.mark.asyncio
    async def test_initial_templates(self):
        store = InMemoryTemplateStore({"tpl-1": "content"})

        assert await store.get_content("tpl-1") == "content"

    @pytest.mark.asyncio
    async def test_versions_numbered_from_one(self, template_store: InMemoryTemplateStore):
        assert await template_store.get_latest_version("tpl-1") is None

        v1 = await template_store.create_version("tpl-1", "a", "first", VersionAuthor.USER)
        v2 = await template_store.create_version("tpl-1", "b", "second", VersionAuthor.AGENT)
        other = await template_store.create_version("tpl-2", "x", "other", VersionAuthor.SYNC)

        assert (v1.version, v2.version, other.version) == (1, 2, 1)
        assert (await template_store.get_latest_version("tpl-1")).content == "b"
        assert (await template_store.get_version("tpl-1", 1)).change_log == "first"
        assert [v.version for v in await template_store.list_versions("tpl-1")] == [1, 2]

    @pytest.mark.asyncio
    async def test_missing_version(self, template_store: InMemoryTemplateStore):
        with pytest.raises(VersionNotFoundError):
            await template_store.get_version("tpl-1", 3)

    @pytest.mark.asyncio
    async def test_ensure_baseline_once(self, template_store: InMemoryTemplateStore):
        first = await template_store.ensure_baseline("tpl-1", "original", "baseline")
        again = await template_store.ensure_baseline("tpl-1", "changed", "baseline")

        assert first.version == 1
        assert again.content == "original"
        assert len(await template_store.list_versions("tpl-1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_versions_gap_free(self, template_store: InMemoryTemplateStore):
        versions = await asyncio.gather(*[
            template_store.create_version("tpl-1", f"c{i}", "", VersionAuthor.AGENT)
            for i in range(20)
        ])

        assert sorted(v.version for v in versions) == list(range(1, 21))

    def test_version_is_frozen(self):
        from pydantic import ValidationError

        from iacguard.models import TemplateVersion

        version = TemplateVersion(template_id="t", version=1, content="c")
        with pytest.raises(ValidationError):
            version.content = "changed"
        with pytest.raises(ValidationError):
            TemplateVersion(template_id="t", version=0, content="c")


class TestInMemorySessionStore:
    """Tests for InMemorySessionStore."""

    @pytest.mark.asyncio
    async def test_create_and_get_are_copies(self, session_store: InMemorySessionStore):
        session = await session_store.create(make_session())
        session.error = "mutated locally"

        stored = await session_store.get(session.id)

        assert stored.error is None
        assert stored.status == SessionStatus.PLANNING

    @pytest.mark.asyncio
    async def test_get_missing(self, session_store: InMemorySessionStore):
        with pytest.raises(SessionNotFoundError):
            await session_store.get("nope")

    @pytest.mark.asyncio
    async def test_transition_with_updates(self, session_store: InMemorySessionStore):
        session = await session_store.create(make_session())

        updated = await session_store.transition(
            session.id,
            SessionStatus.PLANNING,
            SessionStatus.REVIEWING,
            change_plan=[make_change()],
            original_score=ScoreSnapshot(security=55, monthly_cost=0.5),
        )

        assert updated.status == SessionStatus.REVIEWING
        assert updated.change_plan[0].id == "fix-SEC004-abc"
        assert updated.original_score.security == 55

    @pytest.mark.asyncio
    async def test_transition_from_wrong_state(self, session_store: InMemorySessionStore):
        session = await session_store.create(make_session())

        with pytest.raises(SessionStateConflictError) as exc_info:
            await session_store.transition(session.id, SessionStatus.REVIEWING, SessionStatus.APPLYING)

        assert exc_info.value.actual == "PLANNING"
        assert exc_info.value.expected == "REVIEWING"

    @pytest.mark.asyncio
    async def test_disallowed_transition(self, session_store: InMemorySessionStore):
        session = await session_store.create(make_session())

        with pytest.raises(SessionStateConflictError, match="not allowed"):
            await session_store.transition(session.id, SessionStatus.PLANNING, SessionStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_one_applying_session_per_template(self, session_store: InMemorySessionStore):
        first = await session_store.create(make_session(status=SessionStatus.REVIEWING))
        second = await session_store.create(make_session(status=SessionStatus.REVIEWING))
        elsewhere = await session_store.create(make_session("tpl-2", status=SessionStatus.REVIEWING))

        await session_store.transition(first.id, SessionStatus.REVIEWING, SessionStatus.APPLYING)

        with pytest.raises(SessionStateConflictError, match="being applied"):
            await session_store.transition(second.id, SessionStatus.REVIEWING, SessionStatus.APPLYING)
        await session_store.transition(elsewhere.id, SessionStatus.REVIEWING, SessionStatus.APPLYING)

    @pytest.mark.asyncio
    async def test_concurrent_transition_single_winner(self, session_store: InMemorySessionStore):
        session = await session_store.create(make_session(status=SessionStatus.REVIEWING))

        outcomes = await asyncio.gather(
            session_store.transition(session.id, SessionStatus.REVIEWING, SessionStatus.APPLYING),
            session_store.transition(session.id, SessionStatus.REVIEWING, SessionStatus.CANCELLED),
            return_exceptions=True,
        )

        assert sum(isinstance(o, AgentSession) for o in outcomes) == 1
        assert sum(isinstance(o, SessionStateConflictError) for o in outcomes) == 1

    @pytest.mark.asyncio
    async def test_save_keeps_status(self, session_store: InMemorySessionStore):
        session = await session_store.create(make_session())
        session.status = SessionStatus.COMPLETED
        session.error = "note"

        saved = await session_store.save(session)

        assert saved.status == SessionStatus.PLANNING
        assert saved.error == "note"

    @pytest.mark.asyncio
    async def test_list_for_template(self, session_store: InMemorySessionStore):
        a = await session_store.create(make_session())
        b = await session_store.create(make_session())
        await session_store.create(make_session("tpl-2"))

        sessions = await session_store.list_for_template("tpl-1")

        assert [s.id for s in sessions] == [a.id, b.id]


class TestNeo4jTemplateStore:
    """Tests for Neo4jTemplateStore against a mocked client."""

    @pytest.mark.asyncio
    async def test_get_content_missing(self, mock_client):
        store = Neo4jTemplateStore(mock_client)

        with pytest.raises(TemplateNotFoundError):
            await store.get_content("tpl-1")

    @pytest.mark.asyncio
    async def test_get_content(self, mock_client):
        mock_client.read.return_value = [{"content": "resource {}"}]
        store = Neo4jTemplateStore(mock_client)

        assert await store.get_content("tpl-1") == "resource {}"

    @pytest.mark.asyncio
    async def test_create_version_uses_counter_query(self, mock_client):
        mock_client.write.return_value = [{
            "version": {
                "template_id": "tpl-1",
                "version": 3,
                "content": "c",
                "change_log": "log",
                "created_by": "agent",
                "created_at": "2025-01-01T00:00:00+00:00",
            }
        }]
        store = Neo4jTemplateStore(mock_client)

        version = await store.create_version("tpl-1", "c", "log", VersionAuthor.AGENT)

        assert version.version == 3
        assert version.created_by == VersionAuthor.AGENT
        query, params = mock_client.write.call_args.args
        assert query == CREATE_VERSION_QUERY
        assert params["props"]["created_by"] == "agent"
        assert "version" not in params["props"]

    @pytest.mark.asyncio
    async def test_ensure_baseline_existing(self, mock_client):
        existing = {
            "template_id": "tpl-1",
            "version": 1,
            "content": "original",
            "created_by": "user",
            "created_at": "2025-01-01T00:00:00+00:00",
        }
        mock_client.read.return_value = [{"version": existing}]
        store = Neo4jTemplateStore(mock_client)

        version = await store.ensure_baseline("tpl-1", "new", "baseline")

        assert version.content == "original"
        mock_client.write.assert_awaited_once()
        mock_client.read.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_version(self, mock_client):
        store = Neo4jTemplateStore(mock_client)

        with pytest.raises(VersionNotFoundError):
            await store.get_version("tpl-1", 9)
        assert await store.get_latest_version("tpl-1") is None

    @pytest.mark.asyncio
    async def test_ensure_schema(self, mock_client):
        await ensure_schema(mock_client)

        assert mock_client.write.await_count == len(SCHEMA_STATEMENTS)


class TestNeo4jSessionStore:
    """Tests for Neo4jSessionStore against a mocked client."""

    def test_properties_round_trip(self):
        session = make_session(
            change_plan=[make_change()],
            original_score=ScoreSnapshot(security=40, monthly_cost=12.5),
        )

        props = session_properties(session)
        restored = session_from_properties({**props, "_lock": True})

        assert isinstance(props["change_plan"], str)
        assert json.loads(props["change_plan"])[0]["policy_code"] == "SEC004"
        assert props["status"] == "PLANNING"
        assert props["projected_score"] is None
        assert restored == session

    def test_missing_optional_properties(self):
        session = make_session()
        props = {
            k: v for k, v in session_properties(session).items()
            if v is not None
        }
        props.pop("change_plan")

        restored = session_from_properties(props)

        assert restored.change_plan == []
        assert restored.original_score is None

    @pytest.mark.asyncio
    async def test_transition_applies(self, mock_client):
        session = make_session(status=SessionStatus.REVIEWING)
        applied = session_properties(session.model_copy(update={"status": SessionStatus.APPLYING}))
        mock_client.write.return_value = [
            {"actual": "REVIEWING", "busy": 0, "allowed": True, "session": applied}
        ]
        store = Neo4jSessionStore(mock_client)

        result = await store.transition(
            session.id,
            SessionStatus.REVIEWING,
            SessionStatus.APPLYING,
            error=None,
        )

        assert result.status == SessionStatus.APPLYING
        query, params = mock_client.write.call_args.args
        assert query == TRANSITION_QUERY
        assert params["expected"] == "REVIEWING"
        assert params["target"] == "APPLYING"
        assert params["updates"] == {"error": None}

    @pytest.mark.asyncio
    async def test_transition_wrong_state(self, mock_client):
        session = make_session(status=SessionStatus.COMPLETED)
        mock_client.write.return_value = [
            {"actual": "COMPLETED", "busy": 0, "allowed": False, "session": session_properties(session)}
        ]
        store = Neo4jSessionStore(mock_client)

        with pytest.raises(SessionStateConflictError) as exc_info:
            await store.transition(session.id, SessionStatus.REVIEWING, SessionStatus.APPLYING)

        assert exc_info.value.actual == "COMPLETED"

    @pytest.mark.asyncio
    async def test_transition_template_busy(self, mock_client):
        session = make_session(status=SessionStatus.REVIEWING)
        mock_client.write.return_value = [
            {"actual": "REVIEWING", "busy": 1, "allowed": False, "session": session_properties(session)}
        ]
        store = Neo4jSessionStore(mock_client)

        with pytest.raises(SessionStateConflictError, match="Another session"):
            await store.transition(session.id, SessionStatus.REVIEWING, SessionStatus.APPLYING)

    @pytest.mark.asyncio
    async def test_transition_not_allowed_skips_query(self, mock_client):
        store = Neo4jSessionStore(mock_client)

        with pytest.raises(SessionStateConflictError, match="not allowed"):
            await store.transition("s", SessionStatus.COMPLETED, SessionStatus.APPLYING)

        mock_client.write.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transition_missing_session(self, mock_client):
        store = Neo4jSessionStore(mock_client)

        with pytest.raises(SessionNotFoundError):
            await store.transition("s", SessionStatus.REVIEWING, SessionStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_save_excludes_status(self, mock_client):
        session = make_session()
        mock_client.write.return_value = [{"session": session_properties(session)}]
        store = Neo4jSessionStore(mock_client)

        await store.save(session)

        _, params = mock_client.write.call_args.args
        assert "status" not in params["props"]
        assert params["session_id"] == session.id
