"""Neo4j access for the persistent template and session stores.

Every store statement runs in a managed transaction, so the driver retries
it on transient failures such as deadlocks between two concurrent version
writes. Statements return their rows as plain dictionaries.
"""

from typing import Any

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction
from pydantic_settings import BaseSettings

logger = structlog.get_logger()


class Neo4jSettings(BaseSettings):
    """Connection settings, read from ``NEO4J_URI``, ``NEO4J_USER`` and friends."""

    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "neo4j"
    neo4j_database: str = "neo4j"

    class Config:
        env_prefix = ""
        case_sensitive = False


async def _collect(
    tx: AsyncManagedTransaction,
    query: str,
    parameters: dict[str, Any],
) -> list[dict[str, Any]]:
    result = await tx.run(query, parameters)
    return await result.data()


class GraphClient:
    """Runs store statements against one Neo4j database.

    Usable as an async context manager; the driver is created lazily on the
    first statement otherwise. An existing driver can be injected and is
    then owned by the client.
    """

    def __init__(self, settings: Neo4jSettings | None = None, driver: AsyncDriver | None = None):
        self.settings = settings or Neo4jSettings()
        self._driver = driver
        self._logger = logger.bind(component="GraphClient", database=self.settings.neo4j_database)

    async def connect(self) -> None:
        if self._driver is not None:
            return

        self._driver = AsyncGraphDatabase.driver(
            self.settings.neo4j_uri,
            auth=(self.settings.neo4j_user, self.settings.neo4j_password),
        )
        await self._driver.verify_connectivity()
        await self._logger.ainfo("Store connected", uri=self.settings.neo4j_uri)

    async def close(self) -> None:
        if self._driver:
            await self._driver.close()
            self._driver = None
            await self._logger.ainfo("Store disconnected")

    async def __aenter__(self) -> "GraphClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _driver_for_use(self) -> AsyncDriver:
        if self._driver is None:
            await self.connect()
        assert self._driver is not None
        return self._driver

    async def read(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run a read-only statement and return its rows."""
        driver = await self._driver_for_use()
        async with driver.session(database=self.settings.neo4j_database) as session:
            return await session.execute_read(_collect, query, parameters or {})

    async def write(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run a statement that writes and return its rows.

        Compare-and-set statements report their outcome through the returned
        rows, so writes return data just like reads.
        """
        driver = await self._driver_for_use()
        async with driver.session(database=self.settings.neo4j_database) as session:
            return await session.execute_write(_collect, query, parameters or {})
