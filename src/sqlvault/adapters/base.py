"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that the backup and recovery
engines are written against.  Engines receive a client at construction and
never reach for a global connection.  All I/O methods are ``async def``.

Usage:
    from sqlvault.adapters.base import DatabaseClient

    async def dump_names(client: DatabaseClient) -> None:
        for table in await client.list_tables():
            ddl = await client.get_create_statement(table)
            page = await client.fetch_page(table, offset=0, limit=1000)
"""

from typing import Any, Protocol, runtime_checkable

from sqlvault.dump.dialect import SqlDialect


@runtime_checkable
class DatabaseClient(Protocol):
    """Storage access interface required by the backup/recovery engines.

    Implementations hold a single session so that session directives
    (``set_integrity_checks``) and an explicit transaction (``begin`` ..
    ``commit``/``rollback``) apply to the same connection.
    """

    dialect: SqlDialect

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """Execute a statement and return the affected-row count.

        Without ``params`` the text is sent to the driver verbatim, so
        literal values containing ``:`` or ``%`` are safe.  Outside an
        explicit transaction the statement is committed immediately.

        Raises:
            Exception: Driver/database error for rejected statements.
        """
        ...

    async def fetch_all(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict]:
        """Run a read query and return rows as dicts.

        Example:
            rows = await client.fetch_all(
                "SELECT COUNT(*) AS n FROM products WHERE price > :p",
                {"p": 10},
            )
        """
        ...

    async def begin(self) -> None:
        """Start an explicit transaction (autocommit off until commit/rollback)."""
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...

    async def list_tables(self) -> list[str]:
        """List base table names (no views, no engine-internal tables)."""
        ...

    async def get_create_statement(self, table: str) -> str:
        """Return the statement that recreates ``table`` (no trailing ``;``)."""
        ...

    async def get_dependent_statements(self, table: str) -> list[str]:
        """Index and trigger definitions on ``table`` missing from its create statement.

        Statements carry no trailing ``;``.  They are written after the row
        data, so triggers don't fire while rows are restored.
        """
        ...

    async def fetch_page(self, table: str, offset: int, limit: int) -> list[dict]:
        """Fetch rows ``offset .. offset+limit`` of ``table`` in a stable order."""
        ...

    async def set_integrity_checks(self, enabled: bool) -> None:
        """Enable or disable referential-integrity enforcement for the session."""
        ...

    async def test_connection(self) -> bool:
        """Return ``True`` if the database answers ``SELECT 1``."""
        ...

    async def close(self) -> None:
        """Close the session and dispose of the engine."""
        ...
