"""Dump codec: SQL dialects, artifact writer and statement reader.

Usage:
    from sqlvault.dump import DumpWriter, iter_statements, MYSQL, SQLITE
"""

from sqlvault.dump.dialect import DIALECTS, MYSQL, SQLITE, SqlDialect, get_dialect
from sqlvault.dump.markers import COMPLETION_MARKER, HEADER_MARKER
from sqlvault.dump.reader import (
    Comment,
    Statement,
    StatementKind,
    StatementScanner,
    classify,
    iter_elements,
    iter_statements,
    open_artifact,
)
from sqlvault.dump.writer import DumpWriter

__all__ = [
    "SqlDialect",
    "MYSQL",
    "SQLITE",
    "DIALECTS",
    "get_dialect",
    "HEADER_MARKER",
    "COMPLETION_MARKER",
    "DumpWriter",
    "Statement",
    "Comment",
    "StatementKind",
    "StatementScanner",
    "classify",
    "iter_elements",
    "iter_statements",
    "open_artifact",
]
