"""Async SQLite adapter.

Provides ``AsyncSQLiteAdapter``, an implementation of the ``DatabaseClient``
protocol on SQLAlchemy's async engine with the ``aiosqlite`` driver.

The pysqlite driver normally defers ``BEGIN`` until the first DML statement,
which would leave DDL outside the transaction.  The adapter disables that
behaviour and emits ``BEGIN`` itself, so ``DROP``/``CREATE`` statements
replayed during a restore roll back together with the inserts.

Usage:
    from sqlvault.adapters.sqlite import AsyncSQLiteAdapter

    adapter = AsyncSQLiteAdapter("sqlite:///shop.db")
    rows = await adapter.fetch_page("products", offset=0, limit=1000)
    await adapter.close()
"""

import re
from typing import Any

from sqlalchemy import event

from sqlvault.adapters.sql import AsyncSqlAdapter
from sqlvault.dump.dialect import SQLITE

_WITHOUT_ROWID = re.compile(r"\bWITHOUT\s+ROWID\b", re.IGNORECASE)


def normalize_sqlite_url(database_url: str) -> str:
    """Normalize ``sqlite://`` URLs to ``sqlite+aiosqlite://``."""
    if database_url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + database_url[len("sqlite://"):]
    return database_url


class AsyncSQLiteAdapter(AsyncSqlAdapter):
    """Async SQLite implementation of the ``DatabaseClient`` protocol.

    Args:
        database_url: ``sqlite:///path.db`` or ``sqlite+aiosqlite:///path.db``.
        foreign_keys: Turn on SQLite foreign-key enforcement for the session
            (SQLite leaves it off by default).
        **engine_kwargs: Forwarded to ``create_async_engine``.
    """

    dialect = SQLITE

    def __init__(
        self,
        database_url: str,
        foreign_keys: bool = False,
        **engine_kwargs: Any,
    ) -> None:
        super().__init__(normalize_sqlite_url(database_url), **engine_kwargs)
        self.foreign_keys = foreign_keys

        @event.listens_for(self._engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Take over transaction control from the driver
            dbapi_connection.isolation_level = None
            if foreign_keys:
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys = ON")
                cursor.close()

        @event.listens_for(self._engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    async def list_tables(self) -> list[str]:
        rows = await self.fetch_all(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' "
            "ORDER BY name"
        )
        return [row["name"] for row in rows]

    async def get_create_statement(self, table: str) -> str:
        rows = await self.fetch_all(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name",
            {"name": table},
        )
        if not rows or not rows[0]["sql"]:
            raise LookupError(f"Table not found: {table}")
        return rows[0]["sql"]

    async def get_dependent_statements(self, table: str) -> list[str]:
        # Automatic indexes (UNIQUE/PRIMARY KEY constraints) have no sql
        rows = await self.fetch_all(
            "SELECT sql FROM sqlite_master "
            "WHERE type IN ('index', 'trigger') AND tbl_name = :name AND sql IS NOT NULL "
            "ORDER BY CASE type WHEN 'index' THEN 0 ELSE 1 END, name",
            {"name": table},
        )
        return [row["sql"] for row in rows]

    async def _order_clause(self, table: str) -> str:
        create_sql = await self.get_create_statement(table)
        # Table options follow the closing parenthesis of the column list
        if not _WITHOUT_ROWID.search(create_sql[create_sql.rfind(")"):]):
            return " ORDER BY rowid"
        rows = await self.fetch_all(
            f"PRAGMA table_info({self.dialect.quote_identifier(table)})"
        )
        pk = sorted((r for r in rows if r["pk"]), key=lambda r: r["pk"])
        return " ORDER BY " + ", ".join(self.dialect.quote_identifier(r["name"]) for r in pk)

    async def set_integrity_checks(self, enabled: bool) -> None:
        # PRAGMA foreign_keys is a no-op inside a transaction; deferring
        # moves the checks to COMMIT instead.
        await self.execute(f"PRAGMA defer_foreign_keys = {'OFF' if enabled else 'ON'}")
