"""Shared SQLAlchemy async machinery for the concrete adapters.

``AsyncSqlAdapter`` owns an ``AsyncEngine`` and pins one
``AsyncConnection`` for its lifetime.  Outside an explicit transaction every
call is committed straight away (autocommit behaviour); between ``begin()``
and ``commit()``/``rollback()`` statements accumulate in one transaction on
that same connection.

Subclasses supply the engine URL normalization and the catalog queries
(``list_tables``, ``get_create_statement``, index and trigger definitions,
paging order, integrity directives).
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from sqlvault.dump.dialect import SqlDialect

logger = logging.getLogger(__name__)


class AsyncSqlAdapter:
    """Base class for single-session SQLAlchemy async adapters.

    Args:
        database_url: SQLAlchemy URL with an async driver.
        dialect: Dump dialect matching the engine.
        **engine_kwargs: Forwarded to ``create_async_engine``.
    """

    dialect: SqlDialect

    def __init__(self, database_url: str, **engine_kwargs: Any) -> None:
        defaults: dict[str, Any] = {"echo": False}
        merged = {**defaults, **engine_kwargs}
        self._engine: AsyncEngine = create_async_engine(database_url, **merged)
        self._conn: AsyncConnection | None = None
        self._in_transaction = False

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    async def _connection(self) -> AsyncConnection:
        if self._conn is None:
            self._conn = await self._engine.connect()
        return self._conn

    async def _finish_implicit(self, conn: AsyncConnection) -> None:
        """Commit the autobegun transaction when no explicit one is open."""
        if not self._in_transaction and conn.in_transaction():
            await conn.commit()

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> int:
        conn = await self._connection()
        try:
            if params:
                result = await conn.execute(text(sql), params)
            else:
                result = await conn.exec_driver_sql(
                    sql, execution_options={"no_parameters": True}
                )
            rowcount = result.rowcount
        except Exception:
            if not self._in_transaction and conn.in_transaction():
                await conn.rollback()
            raise
        await self._finish_implicit(conn)
        return rowcount

    async def fetch_all(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict]:
        conn = await self._connection()
        try:
            result = await conn.execute(text(sql), params or {})
            col_names = list(result.keys())
            rows = [dict(zip(col_names, row)) for row in result.fetchall()]
        except Exception:
            if not self._in_transaction and conn.in_transaction():
                await conn.rollback()
            raise
        await self._finish_implicit(conn)
        return rows

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def begin(self) -> None:
        conn = await self._connection()
        if conn.in_transaction():
            await conn.commit()
        await conn.begin()
        self._in_transaction = True
        logger.debug("Transaction started")

    async def commit(self) -> None:
        conn = await self._connection()
        try:
            await conn.commit()
        finally:
            self._in_transaction = False
        logger.debug("Transaction committed")

    async def rollback(self) -> None:
        conn = await self._connection()
        try:
            await conn.rollback()
        finally:
            self._in_transaction = False
        logger.debug("Transaction rolled back")

    async def get_dependent_statements(self, table: str) -> list[str]:
        return []

    # ------------------------------------------------------------------
    # Paging
    # ------------------------------------------------------------------

    async def _order_clause(self, table: str) -> str:
        """ORDER BY clause giving a stable row order for ``table``."""
        return ""

    async def fetch_page(self, table: str, offset: int, limit: int) -> list[dict]:
        order = await self._order_clause(table)
        sql = (
            f"SELECT * FROM {self.dialect.quote_identifier(table)}"
            f"{order} LIMIT :limit OFFSET :offset"
        )
        return await self.fetch_all(sql, {"limit": limit, "offset": offset})

    # ------------------------------------------------------------------
    # Health / lifecycle
    # ------------------------------------------------------------------

    async def test_connection(self) -> bool:
        rows = await self.fetch_all("SELECT 1 AS ok")
        return bool(rows) and rows[0]["ok"] == 1

    async def close(self) -> None:
        """Close the pinned connection and dispose of the connection pool."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
        self._in_transaction = False
        await self._engine.dispose()
