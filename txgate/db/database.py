from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Sequence

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import Executable

from txgate.models import Base

from . import queries  # noqa: F401  (registers the security statements)
from .catalog import QUERY_CATALOG, NamedQuery, lookup_query

Row = dict[str, Any]


def _engine_options(url: str) -> dict[str, Any]:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database in (None, "", ":memory:"):
            return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        return {}
    return {"pool_pre_ping": True}


def _as_param_list(params: Any) -> list[Any]:
    if params is None:
        return []
    if isinstance(params, (str, bytes)) or isinstance(params, Mapping):
        return [params]
    if isinstance(params, Sequence):
        return list(params)
    return [params]


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


async def _fetch(connection: AsyncConnection, statement: Executable) -> list[Row]:
    result = await connection.execute(statement)
    if not result.returns_rows:
        return []
    return [dict(row._mapping) for row in result.all()]


class Transaction:
    def __init__(self, database: "Database", connection: AsyncConnection) -> None:
        self.database = database
        self.connection = connection

    async def execute(self, schema: str, query_name: str, params: Any = None) -> list[Row]:
        return await _fetch(self.connection, self.database.bind(schema, query_name, params))


class Database:
    """Runs named statements: ``execute(schema, query_name, params) -> rows``."""

    def __init__(
        self,
        url: str,
        engine: AsyncEngine | None = None,
        catalog: Mapping[str, Mapping[str, NamedQuery]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.url = url
        self.engine = engine or create_async_engine(url, **_engine_options(url))
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.catalog = catalog if catalog is not None else QUERY_CATALOG
        self.logger = logger or logging.getLogger("txgate.db")

    def bind(self, schema: str, query_name: str, params: Any = None) -> Executable:
        return lookup_query(self.catalog, schema, query_name).bind(_as_param_list(params))

    async def execute(self, schema: str, query_name: str, params: Any = None) -> list[Row]:
        statement = self.bind(schema, query_name, params)
        async with self.engine.begin() as connection:
            return await _fetch(connection, statement)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Run several named statements on one connection; any error rolls all of them back."""
        async with self.engine.begin() as connection:
            yield Transaction(self, connection)

    async def execute_one(self, schema: str, query_name: str, params: Any = None) -> Row | None:
        rows = await self.execute(schema, query_name, params)
        return rows[0] if rows else None

    async def create_schema(self) -> None:
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        self.logger.info("Database schema ensured for %s", make_url(self.url).render_as_string(hide_password=True))

    async def dispose(self) -> None:
        await self.engine.dispose()
