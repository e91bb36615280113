"""Dump reader: turns an artifact back into discrete executable statements.

Statements are reassembled by a small character-level state machine that
tracks string literals, quoted identifiers and comments, so a ``;`` inside a
value never ends a statement and multi-line statements need no special
casing.  Comment lines between statements are surfaced as ``Comment``
elements (the verifier looks for the completion marker among them) and are
never part of a statement.

Usage:
    from sqlvault.dump.reader import iter_statements, StatementKind

    for stmt in iter_statements("backups/backup_x.sql.gz"):
        if stmt.kind is StatementKind.SESSION:
            continue
        print(stmt.ordinal, stmt.table, stmt.text[:40])
"""

import gzip
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum, StrEnum
from pathlib import Path
from typing import TextIO

from sqlvault.dump.dialect import get_dialect
from sqlvault.dump.markers import DIALECT_PREFIX, GZIP_MAGIC
from sqlvault.errors import CodecError

SESSION_KEYWORDS = frozenset({"SET", "START", "BEGIN", "COMMIT", "ROLLBACK", "PRAGMA"})


class StatementKind(StrEnum):
    CREATE_TABLE = "create_table"
    CREATE_INDEX = "create_index"
    CREATE_TRIGGER = "create_trigger"
    DROP_TABLE = "drop_table"
    INSERT = "insert"
    SESSION = "session"
    OTHER = "other"


@dataclass(frozen=True)
class Statement:
    """One terminator-delimited statement.

    Attributes:
        text: Statement text including the trailing ``;``.
        ordinal: 1-based position among all statements of the stream.
        line: 1-based line on which the statement starts.
        kind: Classification from the leading keywords.
        table: Target table for CREATE/DROP/INSERT statements (the
            ``ON`` table for indexes and triggers), else ``None``.
    """

    text: str
    ordinal: int
    line: int
    kind: StatementKind
    table: str | None = None


@dataclass(frozen=True)
class Comment:
    """A ``--`` comment line found between statements."""

    text: str
    line: int


class _State(Enum):
    OUTSIDE = 0
    SINGLE_QUOTE = 1
    DOUBLE_QUOTE = 2
    BACKTICK = 3
    BLOCK_COMMENT = 4


_QUOTE_STATES = {"'": _State.SINGLE_QUOTE, '"': _State.DOUBLE_QUOTE, "`": _State.BACKTICK}
_QUOTE_CHARS = {state: char for char, state in _QUOTE_STATES.items()}


# ---------------------------------------------------------------------------
# Leading-token lexer (classification)
# ---------------------------------------------------------------------------


def _read_identifier(text: str, i: int) -> tuple[str | None, int]:
    """Read one (possibly quoted) identifier starting at ``i``."""
    n = len(text)
    if i >= n:
        return None, i
    ch = text[i]
    closing = {"`": "`", '"': '"', "[": "]"}.get(ch)
    if closing:
        parts: list[str] = []
        i += 1
        while i < n:
            if text[i] == closing:
                if i + 1 < n and text[i + 1] == closing and closing != "]":
                    parts.append(closing)
                    i += 2
                    continue
                return "".join(parts), i + 1
            parts.append(text[i])
            i += 1
        return None, n
    start = i
    while i < n and (text[i].isalnum() or text[i] in "_$"):
        i += 1
    if i == start:
        return None, i
    return text[start:i], i


def _leading_words(text: str, count: int) -> list[str]:
    """Return up to ``count`` leading words/identifiers of a statement.

    Qualified names (``schema.table``) collapse to their last part, quoted
    identifiers are unquoted.
    """
    words: list[str] = []
    i, n = 0, len(text)
    while len(words) < count and i < n:
        while i < n and text[i].isspace():
            i += 1
        word, i = _read_identifier(text, i)
        if word is None:
            break
        while i < n and text[i] == ".":
            part, i = _read_identifier(text, i + 1)
            if part is None:
                break
            word = part
        words.append(word)
    return words


def _words(text: str, backslash_escapes: bool = False) -> Iterator[tuple[str, bool]]:
    """Yield ``(word, quoted)`` for identifiers and keywords outside literals.

    String literals and comments are skipped; qualified names collapse to
    their last part.
    """
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch == "'":
            i += 1
            while i < n:
                if text[i] == "\\" and backslash_escapes:
                    i += 2
                    continue
                if text[i] == "'":
                    if i + 1 < n and text[i + 1] == "'":
                        i += 2
                        continue
                    break
                i += 1
            i += 1
            continue
        if text.startswith("--", i):
            end = text.find("\n", i)
            i = n if end < 0 else end + 1
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
            continue
        if ch.isalnum() or ch in '_$`"[':
            word, i = _read_identifier(text, i)
            if word is None:
                return
            while i < n and text[i] == ".":
                part, i = _read_identifier(text, i + 1)
                if part is None:
                    break
                word = part
            yield word, ch in '`"['
            continue
        i += 1


def _table_after_on(text: str) -> str | None:
    """Table named after the first bare ``ON`` keyword (index/trigger targets)."""
    seen_on = False
    for word, quoted in _words(text):
        if seen_on:
            return word
        if not quoted and word.upper() == "ON":
            seen_on = True
    return None


def _is_trigger(text: str) -> bool:
    upper = [w.upper() for w in _leading_words(text, 3)]
    if upper[:1] != ["CREATE"]:
        return False
    if upper[1:2] in (["TEMP"], ["TEMPORARY"]):
        return upper[2:3] == ["TRIGGER"]
    return upper[1:2] == ["TRIGGER"]


def _open_blocks(text: str, backslash_escapes: bool = False) -> int:
    """Nesting depth of ``BEGIN``/``CASE`` .. ``END`` at the end of ``text``."""
    depth = 0
    for word, quoted in _words(text, backslash_escapes):
        if quoted:
            continue
        upper = word.upper()
        if upper in ("BEGIN", "CASE"):
            depth += 1
        elif upper == "END":
            depth -= 1
    return depth


def classify(text: str) -> tuple[StatementKind, str | None]:
    """Classify a statement and extract its target table.

    Recognizes ``CREATE [TEMPORARY] TABLE [IF NOT EXISTS] t``,
    ``DROP TABLE [IF EXISTS] t``, ``INSERT|REPLACE [IGNORE] INTO t``,
    ``CREATE [UNIQUE] INDEX .. ON t``, ``CREATE [TEMP] TRIGGER .. ON t`` and
    the session-control keywords.
    """
    words = _leading_words(text, 7)
    if not words:
        return StatementKind.OTHER, None
    upper = [w.upper() for w in words]
    head = upper[0]

    if head in SESSION_KEYWORDS:
        return StatementKind.SESSION, None

    if head == "CREATE":
        idx = 1
        if upper[1:3] == ["UNIQUE", "INDEX"] or upper[1:2] == ["INDEX"]:
            table = _table_after_on(text)
            if table is not None:
                return StatementKind.CREATE_INDEX, table
            return StatementKind.OTHER, None
        if _is_trigger(text):
            table = _table_after_on(text)
            if table is not None:
                return StatementKind.CREATE_TRIGGER, table
            return StatementKind.OTHER, None
        if idx < len(upper) and upper[idx] in ("TEMPORARY", "TEMP"):
            idx += 1
        if idx < len(upper) and upper[idx] == "TABLE":
            idx += 1
            if upper[idx:idx + 3] == ["IF", "NOT", "EXISTS"]:
                idx += 3
            if idx < len(words):
                return StatementKind.CREATE_TABLE, words[idx]
        return StatementKind.OTHER, None

    if head == "DROP" and len(upper) > 1 and upper[1] == "TABLE":
        idx = 2
        if upper[idx:idx + 2] == ["IF", "EXISTS"]:
            idx += 2
        if idx < len(words):
            return StatementKind.DROP_TABLE, words[idx]
        return StatementKind.OTHER, None

    if head in ("INSERT", "REPLACE"):
        idx = 1
        if idx < len(upper) and upper[idx] in ("IGNORE", "OR"):
            idx += 2 if upper[idx] == "OR" else 1
        if idx < len(upper) and upper[idx] == "INTO":
            idx += 1
            if idx < len(words):
                return StatementKind.INSERT, words[idx]
        return StatementKind.OTHER, None

    return StatementKind.OTHER, None


# ---------------------------------------------------------------------------
# Statement scanner
# ---------------------------------------------------------------------------


class StatementScanner:
    """Incremental statement splitter.

    Feed lines in order with ``feed()``; each call returns the comments and
    completed statements found in that line.  Call ``finish()`` at end of
    input to reject a dangling, unterminated statement.

    Args:
        backslash_escapes: Whether ``\\`` escapes the next character inside
            string literals (MySQL).  May be switched before the first
            statement once the artifact's dialect is known.
    """

    def __init__(self, backslash_escapes: bool = True) -> None:
        self.backslash_escapes = backslash_escapes
        self._state = _State.OUTSIDE
        self._buffer: list[str] = []
        self._has_content = False
        self._start_line = 0
        self._ordinal = 0
        self._line_no = 0

    @property
    def pending(self) -> bool:
        """True while a statement has started but not been terminated."""
        return self._has_content or self._state is not _State.OUTSIDE

    def feed(self, line: str) -> list[Statement | Comment]:
        self._line_no += 1
        line_no = self._line_no
        out: list[Statement | Comment] = []

        if not self.pending:
            stripped = line.strip()
            if stripped.startswith("--"):
                out.append(Comment(text=stripped, line=line_no))
                return out

        i, n = 0, len(line)
        while i < n:
            ch = line[i]
            state = self._state

            if state is _State.OUTSIDE:
                if ch == "-" and line.startswith("--", i):
                    # Trailing comment: keep the newline so tokens stay apart
                    self._append("\n", line_no, content=False)
                    break
                if ch == "/" and line.startswith("/*", i):
                    self._append("/*", line_no)
                    self._state = _State.BLOCK_COMMENT
                    i += 2
                    continue
                if ch in _QUOTE_STATES:
                    self._append(ch, line_no)
                    self._state = _QUOTE_STATES[ch]
                elif ch == ";":
                    self._append(ch, line_no)
                    if self._in_trigger_body():
                        i += 1
                        continue
                    stmt = self._emit()
                    if stmt is not None:
                        out.append(stmt)
                else:
                    self._append(ch, line_no, content=not ch.isspace())
                i += 1
                continue

            if state is _State.BLOCK_COMMENT:
                if ch == "*" and line.startswith("*/", i):
                    self._append("*/", line_no)
                    self._state = _State.OUTSIDE
                    i += 2
                    continue
                self._append(ch, line_no)
                i += 1
                continue

            # Inside a quoted literal or identifier
            quote = _QUOTE_CHARS[state]
            if ch == "\\" and self.backslash_escapes and state is not _State.BACKTICK:
                self._append(line[i:i + 2], line_no)
                i += 2
                continue
            self._append(ch, line_no)
            if ch == quote:
                if i + 1 < n and line[i + 1] == quote:
                    self._append(quote, line_no)
                    i += 2
                    continue
                self._state = _State.OUTSIDE
            i += 1

        return out

    def finish(self) -> None:
        """Signal end of input.

        Raises:
            CodecError: If a statement is still open (missing terminator or
                unbalanced quote/comment).
        """
        if self.pending:
            if self._state is not _State.OUTSIDE:
                detail = f"unterminated {self._state.name.lower().replace('_', ' ')}"
            else:
                detail = "missing statement terminator"
            raise CodecError(
                f"Malformed statement stream: {detail} in statement starting "
                f"at line {self._start_line}"
            )

    def _in_trigger_body(self) -> bool:
        """True while a CREATE TRIGGER statement is inside its BEGIN .. END body."""
        if not _is_trigger("".join(self._buffer[:200])):
            return False
        return _open_blocks("".join(self._buffer), self.backslash_escapes) > 0

    def _append(self, text: str, line_no: int, content: bool = True) -> None:
        if content and not self._has_content:
            self._has_content = True
            self._start_line = line_no
        if self._has_content:
            self._buffer.append(text)

    def _emit(self) -> Statement | None:
        text = "".join(self._buffer).strip()
        self._buffer.clear()
        self._has_content = False
        if text == ";":
            return None
        self._ordinal += 1
        kind, table = classify(text)
        return Statement(
            text=text,
            ordinal=self._ordinal,
            line=self._start_line,
            kind=kind,
            table=table,
        )


# ---------------------------------------------------------------------------
# Artifact access
# ---------------------------------------------------------------------------


def is_compressed(path: str | Path) -> bool:
    """Detect a gzip artifact by its magic bytes."""
    with open(path, "rb") as f:
        return f.read(2) == GZIP_MAGIC


@contextmanager
def open_artifact(path: str | Path) -> Iterator[TextIO]:
    """Open an artifact for text reading, decompressing on the fly if needed."""
    if is_compressed(path):
        f = gzip.open(path, "rt", encoding="utf-8", newline="")
    else:
        f = open(path, "r", encoding="utf-8", newline="")
    try:
        yield f
    finally:
        f.close()


def read_first_line(path: str | Path) -> str:
    """Read only the first line of an artifact."""
    with open_artifact(path) as f:
        return f.readline().rstrip("\r\n")


def scan_lines(
    lines: Iterable[str],
    max_lines: int | None = None,
) -> Iterator[Statement | Comment]:
    """Split lines into comments and statements.

    The backslash-escape rule is taken from the ``-- Dialect:`` header
    comment when present (MySQL rules otherwise).

    Args:
        lines: Text lines including their line endings.
        max_lines: Stop after this many lines.  A bounded scan does not
            check for a dangling final statement.

    Raises:
        CodecError: On an unterminated final statement (unbounded scans).
    """
    scanner = StatementScanner()
    seen_statement = False
    for count, line in enumerate(lines, start=1):
        if max_lines is not None and count > max_lines:
            return
        for element in scanner.feed(line):
            if isinstance(element, Comment) and not seen_statement:
                if element.text.startswith(DIALECT_PREFIX.strip()):
                    name = element.text[len(DIALECT_PREFIX.strip()):].strip()
                    try:
                        scanner.backslash_escapes = get_dialect(name).backslash_escapes
                    except KeyError as e:
                        raise CodecError(str(e)) from None
            elif isinstance(element, Statement):
                seen_statement = True
            yield element
    scanner.finish()


def iter_elements(
    path: str | Path,
    max_lines: int | None = None,
) -> Iterator[Statement | Comment]:
    """Stream comments and statements from an artifact file."""
    try:
        with open_artifact(path) as f:
            yield from scan_lines(f, max_lines=max_lines)
    except UnicodeDecodeError as e:
        raise CodecError(f"Artifact is not valid UTF-8: {e}") from e


def iter_statements(
    path: str | Path,
    max_lines: int | None = None,
) -> Iterator[Statement]:
    """Stream statements (comments dropped) from an artifact file."""
    for element in iter_elements(path, max_lines=max_lines):
        if isinstance(element, Statement):
            yield element
