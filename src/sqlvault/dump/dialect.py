"""SQL dialect rules used by the dump writer and reader.

A dialect captures how identifiers are quoted, whether backslash is an
escape character inside string literals, and which session directives
bracket a dump.  Dumps are replayed into the same engine they came from, so
there is no translation between dialects.

Usage:
    from sqlvault.dump.dialect import MYSQL
    MYSQL.quote_identifier("order items")   # '`order items`'
"""

from pydantic import BaseModel, ConfigDict


class SqlDialect(BaseModel):
    """Quoting, escaping and session-directive rules for one engine."""

    model_config = ConfigDict(frozen=True)

    name: str
    identifier_quote: str = '"'
    backslash_escapes: bool = False
    prologue: tuple[str, ...] = ()      # written after the header, before the first table
    epilogue: tuple[str, ...] = ()      # written after the completion marker
    drop_table: str = "DROP TABLE IF EXISTS {table}"

    def quote_identifier(self, name: str) -> str:
        """Quote a table or column name, doubling embedded quote chars."""
        q = self.identifier_quote
        return f"{q}{name.replace(q, q + q)}{q}"

    def quote_string(self, value: str) -> str:
        """Quote a string literal for this dialect."""
        if self.backslash_escapes:
            value = (
                value.replace("\\", "\\\\")
                .replace("\0", "\\0")
                .replace("\n", "\\n")
                .replace("\r", "\\r")
                .replace("\x1a", "\\Z")
            )
        return "'" + value.replace("'", "''") + "'"


MYSQL = SqlDialect(
    name="mysql",
    identifier_quote="`",
    backslash_escapes=True,
    prologue=(
        "SET FOREIGN_KEY_CHECKS = 0",
        "SET SQL_MODE = 'NO_AUTO_VALUE_ON_ZERO'",
        "SET AUTOCOMMIT = 0",
        "START TRANSACTION",
    ),
    epilogue=("SET FOREIGN_KEY_CHECKS = 1",),
)

SQLITE = SqlDialect(
    name="sqlite",
    identifier_quote='"',
    backslash_escapes=False,
    prologue=(
        "PRAGMA foreign_keys = OFF",
        "BEGIN TRANSACTION",
    ),
    epilogue=("PRAGMA foreign_keys = ON",),
)

DIALECTS: dict[str, SqlDialect] = {d.name: d for d in (MYSQL, SQLITE)}


def get_dialect(name: str) -> SqlDialect:
    """Look up a dialect by name.

    Raises:
        KeyError: If the dialect is unknown.
    """
    try:
        return DIALECTS[name.strip().lower()]
    except KeyError:
        raise KeyError(
            f"Unknown SQL dialect '{name}'. Available: {', '.join(DIALECTS)}"
        ) from None
