"""Dump writer: serializes table structure and rows into a replayable stream.

The writer only formats text.  Paging through table rows and deciding which
sections to emit is the backup engine's job.

Usage:
    from sqlvault.dump.dialect import MYSQL
    from sqlvault.dump.writer import DumpWriter

    with open("backup.sql", "w", encoding="utf-8") as f:
        writer = DumpWriter(f, MYSQL)
        writer.write_header(description="Nightly", options={"compress": False})
        writer.write_structure("products", create_sql)
        writer.write_rows("products", rows)
        writer.write_footer()
"""

import json
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, TextIO
from uuid import UUID

from sqlvault.dump.dialect import SqlDialect
from sqlvault.dump.markers import (
    COMPLETION_MARKER,
    DESCRIPTION_PREFIX,
    DIALECT_PREFIX,
    GENERATED_PREFIX,
    HEADER_LINE,
    OPTIONS_PREFIX,
)


def _single_line(text: str) -> str:
    """Collapse text onto one line so it can live in a ``--`` comment."""
    return " ".join(text.split())


def _format_duration(value: timedelta) -> str:
    """Format a timedelta as ``[-]HH:MM:SS[.ffffff]`` (MySQL TIME columns)."""
    sign = "-" if value < timedelta(0) else ""
    value = abs(value)
    hours, remainder = divmod(value.days * 86400 + value.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    if value.microseconds:
        text += f".{value.microseconds:06d}"
    return text


class DumpWriter:
    """Writes the sections of a dump artifact to a text stream.

    Args:
        stream: Writable text stream (UTF-8).
        dialect: Quoting and directive rules of the source database.
    """

    def __init__(self, stream: TextIO, dialect: SqlDialect) -> None:
        self._stream = stream
        self.dialect = dialect
        self.statements_written = 0

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def write_header(
        self,
        description: str = "",
        options: dict[str, Any] | None = None,
        generated_at: datetime | None = None,
    ) -> None:
        """Write the header comment block and the prologue directives."""
        generated_at = generated_at or datetime.now(timezone.utc)
        lines = [
            HEADER_LINE,
            f"{GENERATED_PREFIX}{generated_at.isoformat()}",
            f"{DIALECT_PREFIX}{self.dialect.name}",
            f"{DESCRIPTION_PREFIX}{_single_line(description)}",
            f"{OPTIONS_PREFIX}{json.dumps(options or {}, sort_keys=True, default=str)}",
            "",
        ]
        self._stream.write("\n".join(lines) + "\n")
        for directive in self.dialect.prologue:
            self._write_statement(directive)
        self._stream.write("\n")

    def write_structure(self, table: str, create_sql: str) -> None:
        """Write the drop + create pair for one table."""
        quoted = self.dialect.quote_identifier(table)
        self._stream.write(f"-- Table structure for {quoted}\n")
        self._write_statement(self.dialect.drop_table.format(table=quoted))
        self._write_statement(create_sql)
        self._stream.write("\n")

    def write_definitions(self, table: str, statements: list[str]) -> None:
        """Write index or trigger definitions that belong to ``table``."""
        if not statements:
            return
        self._stream.write(
            f"-- Indexes and triggers for {self.dialect.quote_identifier(table)}\n"
        )
        for sql in statements:
            self._write_statement(sql)
        self._stream.write("\n")

    def write_data_comment(self, table: str) -> None:
        self._stream.write(f"-- Data for table {self.dialect.quote_identifier(table)}\n")

    def write_no_data(self, table: str) -> None:
        self._stream.write(
            f"-- No data for table {self.dialect.quote_identifier(table)}\n\n"
        )

    def write_rows(self, table: str, rows: list[dict[str, Any]]) -> int:
        """Write one multi-row INSERT for a page of rows.

        All rows of a page are expected to share the column set of the first
        row (they come from one ``SELECT *``).

        Returns:
            Number of rows written.
        """
        if not rows:
            return 0

        columns = list(rows[0].keys())
        column_list = ", ".join(self.dialect.quote_identifier(c) for c in columns)
        values = [
            "(" + ", ".join(self.encode_value(row.get(c)) for c in columns) + ")"
            for row in rows
        ]
        statement = (
            f"INSERT INTO {self.dialect.quote_identifier(table)} ({column_list}) VALUES\n"
            + ",\n".join(values)
        )
        self._write_statement(statement)
        return len(rows)

    def write_footer(self) -> None:
        """Write the commit, the completion marker and the epilogue directives."""
        self._stream.write("\n")
        self._write_statement("COMMIT")
        self._stream.write(f"{COMPLETION_MARKER}\n")
        for directive in self.dialect.epilogue:
            self._write_statement(directive)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode_value(self, value: Any) -> str:
        """Encode one column value as a SQL literal.

        ``None`` becomes ``NULL``; every other scalar becomes escaped text,
        except ``bytes`` which are written as a hex literal.
        """
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "'1'" if value else "'0'"
        if isinstance(value, (bytes, bytearray, memoryview)):
            return f"X'{bytes(value).hex()}'"
        if isinstance(value, (datetime, date, time)):
            text = value.isoformat(sep=" ") if isinstance(value, datetime) else value.isoformat()
        elif isinstance(value, timedelta):
            text = _format_duration(value)
        elif isinstance(value, (Decimal, UUID)):
            text = str(value)
        elif isinstance(value, (dict, list)):
            text = json.dumps(value)
        else:
            text = str(value)
        return self.dialect.quote_string(text)

    def _write_statement(self, sql: str) -> None:
        self._stream.write(sql.rstrip().rstrip(";").rstrip() + ";\n")
        self.statements_written += 1
