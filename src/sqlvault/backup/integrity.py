"""Integrity verification for dump artifacts.

Everything here only reads the artifact.  ``verify_artifact`` runs the full
check list and reports the outcome instead of raising, so the same call
serves the backup engine (post-write check), the recovery engine
(pre-restore check) and the ``sqlvault verify`` command.

Usage:
    from sqlvault.backup.integrity import verify_artifact

    report = verify_artifact(path, expected_tables=3, expected_checksum=record.checksum)
    if not report.valid:
        print(report.reason)
"""

import hashlib
import logging
import zlib
from pathlib import Path

from sqlvault.backup.models import VerificationReport
from sqlvault.dump.markers import COMPLETION_MARKER, HEADER_MARKER
from sqlvault.dump.reader import Comment, StatementKind, iter_elements, read_first_line
from sqlvault.errors import CodecError

logger = logging.getLogger(__name__)

CHUNK_BYTES = 64 * 1024


def compute_checksum(path: str | Path) -> str:
    """Hex SHA-256 of the artifact bytes, read in 64 KiB blocks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_BYTES), b""):
            digest.update(block)
    return digest.hexdigest()


def check_header(path: str | Path) -> bool:
    """True if the first line of the artifact carries the header marker."""
    return read_first_line(path).startswith(HEADER_MARKER)


def _scan_structure(path: Path) -> tuple[int, bool, str | None]:
    """Walk the statement stream once.

    Returns:
        (CREATE TABLE count, completion marker seen, problem or None).
    """
    tables = 0
    completed = False
    for element in iter_elements(path):
        if isinstance(element, Comment):
            if element.text == COMPLETION_MARKER:
                completed = True
            continue
        if completed and element.kind is not StatementKind.SESSION:
            return tables, completed, (
                f"Unexpected statement after completion marker at line {element.line}"
            )
        if element.kind is StatementKind.CREATE_TABLE:
            tables += 1
    return tables, completed, None


def verify_artifact(
    path: str | Path,
    expected_tables: int | None = None,
    expected_checksum: str | None = None,
) -> VerificationReport:
    """Check an artifact end to end.

    Checks, in order: the file exists and is non-empty, the checksum matches
    (when ``expected_checksum`` is given), the header marker is on the first
    line, the statement stream parses and ends with the completion marker
    followed only by session directives, and the CREATE TABLE count equals
    ``expected_tables`` (when given).

    Args:
        path: Artifact file (plain or gzip).
        expected_tables: Table count recorded at backup time.
        expected_checksum: Hex SHA-256 recorded at backup time.

    Returns:
        VerificationReport; ``reason`` names the first failed check.
    """
    path = Path(path)
    checks: dict[str, bool] = {}

    def fail(check: str, reason: str, **extra) -> VerificationReport:
        checks[check] = False
        logger.debug(f"Verification of {path.name} failed: {reason}")
        return VerificationReport(valid=False, reason=reason, checks=checks, **extra)

    try:
        if not path.is_file():
            return fail("exists", f"Artifact not found: {path}")
        checks["exists"] = True

        if path.stat().st_size == 0:
            return fail("non_empty", "Artifact is empty")
        checks["non_empty"] = True

        checksum = compute_checksum(path)
        if expected_checksum is not None:
            if checksum != expected_checksum:
                return fail("checksum", "Checksum mismatch", checksum=checksum)
            checks["checksum"] = True

        if not check_header(path):
            return fail("header", "Header marker missing", checksum=checksum)
        checks["header"] = True

        try:
            tables, completed, problem = _scan_structure(path)
        except CodecError as e:
            return fail("parse", e.message, checksum=checksum)
        checks["parse"] = True

        if not completed:
            return fail("footer", "Completion marker missing (truncated artifact?)",
                        checksum=checksum, tables_found=tables)
        if problem:
            return fail("footer", problem, checksum=checksum, tables_found=tables)
        checks["footer"] = True

        if expected_tables is not None:
            if tables != expected_tables:
                return fail(
                    "tables",
                    f"Table count mismatch: expected {expected_tables}, found {tables}",
                    checksum=checksum,
                    tables_found=tables,
                )
            checks["tables"] = True

    except (OSError, EOFError, UnicodeDecodeError, zlib.error) as e:
        # Truncated gzip streams surface as EOFError
        return fail("readable", f"Artifact unreadable: {e}")

    return VerificationReport(
        valid=True, checksum=checksum, tables_found=tables, checks=checks
    )
