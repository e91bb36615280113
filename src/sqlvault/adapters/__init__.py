"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and concrete async adapter
implementations for MySQL/MariaDB and SQLite.

``AsyncMySQLAdapter`` needs the ``aiomysql`` driver (``mysql`` extra) only
when an engine actually connects; importing it never requires the driver.

Usage:
    from sqlvault.adapters import DatabaseClient, AsyncSQLiteAdapter
"""

from sqlvault.adapters.base import DatabaseClient
from sqlvault.adapters.mysql import AsyncMySQLAdapter
from sqlvault.adapters.sql import AsyncSqlAdapter
from sqlvault.adapters.sqlite import AsyncSQLiteAdapter

__all__ = [
    "DatabaseClient",
    "AsyncSqlAdapter",
    "AsyncMySQLAdapter",
    "AsyncSQLiteAdapter",
]
