"""Tests for the dump writer and SQL dialects.

Covers header/footer layout, structure sections, multi-row INSERT
formatting and value encoding for the MySQL and SQLite dialects.
"""

import io
import json
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from sqlvault.dump.dialect import MYSQL, SQLITE, get_dialect
from sqlvault.dump.markers import COMPLETION_MARKER, HEADER_LINE
from sqlvault.dump.writer import DumpWriter


def _writer(dialect=MYSQL) -> tuple[DumpWriter, io.StringIO]:
    stream = io.StringIO()
    return DumpWriter(stream, dialect), stream


# ------------------------------------------------------------------
# Dialects
# ------------------------------------------------------------------


class TestDialect:
    """Quoting rules per dialect."""

    def test_mysql_quotes_identifiers_with_backticks(self):
        """Backtick quoting doubles embedded backticks."""
        assert MYSQL.quote_identifier("order items") == "`order items`"
        assert MYSQL.quote_identifier("we`ird") == "`we``ird`"

    def test_sqlite_quotes_identifiers_with_double_quotes(self):
        """Double-quote quoting doubles embedded double quotes."""
        assert SQLITE.quote_identifier('say "hi"') == '"say ""hi"""'

    def test_mysql_escapes_backslash_and_control_chars(self):
        """MySQL literals escape backslash, NUL, newline, CR and ^Z."""
        assert MYSQL.quote_string("a\\b") == "'a\\\\b'"
        assert MYSQL.quote_string("line1\nline2\r") == "'line1\\nline2\\r'"
        assert MYSQL.quote_string("nul\0z\x1a") == "'nul\\0z\\Z'"

    def test_sqlite_keeps_backslash_and_newline(self):
        """SQLite literals only double single quotes."""
        assert SQLITE.quote_string("a\\b\nc") == "'a\\b\nc'"

    def test_single_quotes_doubled_in_both_dialects(self):
        """Embedded single quotes are doubled."""
        assert MYSQL.quote_string("O'Brien") == "'O''Brien'"
        assert SQLITE.quote_string("O'Brien") == "'O''Brien'"

    def test_get_dialect_unknown_raises(self):
        """Unknown dialect names raise KeyError."""
        assert get_dialect("sqlite") is SQLITE
        with pytest.raises(KeyError):
            get_dialect("oracle")


# ------------------------------------------------------------------
# Sections
# ------------------------------------------------------------------


class TestHeaderAndFooter:
    """Header comment block, prologue and footer order."""

    def test_header_first_line_is_marker(self):
        """Line 1 is the format header marker."""
        writer, stream = _writer()
        writer.write_header(description="Nightly")
        assert stream.getvalue().splitlines()[0] == HEADER_LINE

    def test_header_records_dialect_description_and_options(self):
        """Header comments carry dialect, description and options JSON."""
        writer, stream = _writer(SQLITE)
        generated = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        writer.write_header(
            description="Before\nmigration",
            options={"compress": True},
            generated_at=generated,
        )
        lines = stream.getvalue().splitlines()
        assert "-- Generated: 2025-01-02T03:04:05+00:00" in lines
        assert "-- Dialect: sqlite" in lines
        assert "-- Description: Before migration" in lines
        options_line = next(line for line in lines if line.startswith("-- Options: "))
        assert json.loads(options_line[len("-- Options: "):]) == {"compress": True}

    def test_header_writes_prologue_directives(self):
        """MySQL prologue disables FK checks and opens a transaction."""
        writer, stream = _writer(MYSQL)
        writer.write_header()
        text = stream.getvalue()
        assert "SET FOREIGN_KEY_CHECKS = 0;\n" in text
        assert "START TRANSACTION;\n" in text
        assert writer.statements_written == len(MYSQL.prologue)

    def test_footer_order(self):
        """COMMIT, then the completion marker, then the epilogue."""
        writer, stream = _writer(MYSQL)
        writer.write_footer()
        lines = [line for line in stream.getvalue().splitlines() if line]
        assert lines == ["COMMIT;", COMPLETION_MARKER, "SET FOREIGN_KEY_CHECKS = 1;"]

    def test_sqlite_footer_reenables_foreign_keys(self):
        """SQLite epilogue turns foreign keys back on."""
        writer, stream = _writer(SQLITE)
        writer.write_footer()
        assert stream.getvalue().rstrip().endswith("PRAGMA foreign_keys = ON;")


class TestStructureAndRows:
    """Structure sections and INSERT pages."""

    def test_structure_writes_drop_then_create(self):
        """Structure section is comment, DROP IF EXISTS, CREATE."""
        writer, stream = _writer(MYSQL)
        writer.write_structure("products", "CREATE TABLE `products` (`id` int)")
        lines = [line for line in stream.getvalue().splitlines() if line]
        assert lines == [
            "-- Table structure for `products`",
            "DROP TABLE IF EXISTS `products`;",
            "CREATE TABLE `products` (`id` int);",
        ]

    def test_create_statement_with_trailing_semicolon_not_doubled(self):
        """A CREATE that already ends with ';' gets exactly one terminator."""
        writer, stream = _writer(SQLITE)
        writer.write_structure("t", "CREATE TABLE t (id INTEGER);  ")
        assert "CREATE TABLE t (id INTEGER);\n" in stream.getvalue()
        assert ";;" not in stream.getvalue()

    def test_rows_become_one_multi_row_insert(self):
        """A page of rows is one INSERT with an explicit column list."""
        writer, stream = _writer(MYSQL)
        count = writer.write_rows(
            "products",
            [{"id": 1, "name": "Lamp"}, {"id": 2, "name": None}],
        )
        assert count == 2
        assert stream.getvalue() == (
            "INSERT INTO `products` (`id`, `name`) VALUES\n"
            "('1', 'Lamp'),\n"
            "('2', NULL);\n"
        )
        assert writer.statements_written == 1

    def test_empty_page_writes_nothing(self):
        """No rows, no INSERT."""
        writer, stream = _writer()
        assert writer.write_rows("products", []) == 0
        assert stream.getvalue() == ""

    def test_no_data_comment(self):
        """Empty tables get a '-- No data' comment."""
        writer, stream = _writer(SQLITE)
        writer.write_no_data("products")
        assert stream.getvalue().startswith('-- No data for table "products"')


# ------------------------------------------------------------------
# Value encoding
# ------------------------------------------------------------------


class TestEncodeValue:
    """Column values become SQL literals."""

    @pytest.fixture
    def writer(self) -> DumpWriter:
        return _writer(MYSQL)[0]

    def test_none_is_null(self, writer):
        assert writer.encode_value(None) == "NULL"

    def test_bool_is_quoted_digit(self, writer):
        assert writer.encode_value(True) == "'1'"
        assert writer.encode_value(False) == "'0'"

    def test_numbers_are_quoted_text(self, writer):
        """Numbers are written as quoted text (the engine coerces them)."""
        assert writer.encode_value(42) == "'42'"
        assert writer.encode_value(1.5) == "'1.5'"
        assert writer.encode_value(Decimal("10.50")) == "'10.50'"

    def test_bytes_are_hex_literals(self, writer):
        assert writer.encode_value(b"\x00\xffA") == "X'00ff41'"

    def test_datetime_uses_space_separator(self, writer):
        assert writer.encode_value(datetime(2024, 5, 6, 7, 8, 9)) == "'2024-05-06 07:08:09'"
        assert writer.encode_value(date(2024, 5, 6)) == "'2024-05-06'"

    def test_timedelta_formats_as_time(self, writer):
        """MySQL TIME values arrive as timedelta."""
        assert writer.encode_value(timedelta(hours=26, minutes=3, seconds=4)) == "'26:03:04'"
        assert writer.encode_value(timedelta(seconds=-90)) == "'-00:01:30'"

    def test_uuid_and_json(self, writer):
        uid = UUID("12345678-1234-5678-1234-567812345678")
        assert writer.encode_value(uid) == "'12345678-1234-5678-1234-567812345678'"
        assert writer.encode_value({"a": 1}) == "'{\"a\": 1}'"

    def test_string_with_semicolon_and_quote(self, writer):
        """Statement terminators inside values stay inside the literal."""
        assert writer.encode_value("x'; DROP TABLE t; --") == "'x''; DROP TABLE t; --'"
