"""Recovery engine: replays a cataloged artifact into the live database.

A restore runs these steps in order:

1. look the backup up in the catalog
2. verify the artifact (checksum, header, footer, table count)
3. take a safety snapshot of the current state
4. replay every retained statement inside one transaction with integrity
   checks deferred, rolling back on the first rejected statement
5. sanity-check the database afterwards

A dry run stops after parsing: statements are counted, never executed.
Post-restore verification failures are reported with kind ``verification``;
the restore itself is already committed at that point and the safety
snapshot is the way back.

Usage:
    from sqlvault.backup import BackupEngine, RecoveryEngine, RecoveryOptions

    recovery = RecoveryEngine(adapter, BackupEngine(adapter))
    result = await recovery.restore(backup_id, RecoveryOptions(tables=["orders"]))
    if not result.success:
        print(result.error.kind, result.error.position, result.error.message)
"""

import logging
import time
from pathlib import Path
from uuid import uuid4

from sqlvault.adapters.base import DatabaseClient
from sqlvault.backup.engine import BackupEngine, to_operation_error
from sqlvault.backup.integrity import verify_artifact
from sqlvault.backup.models import (
    BackupRecord,
    CoverageReport,
    RecoveryOptions,
    RestoreResult,
)
from sqlvault.config.models import RestoreSettings
from sqlvault.dump.reader import (
    Statement,
    StatementKind,
    iter_statements,
    open_artifact,
    scan_lines,
)
from sqlvault.errors import (
    ExecutionError,
    IntegrityError,
    ValidationError,
    VerificationFailed,
    error_from,
)

logger = logging.getLogger(__name__)

SNAPSHOT_DESCRIPTION = "Pre-recovery backup before restoring {backup_id}"

_TABLE_KINDS = (
    StatementKind.CREATE_TABLE,
    StatementKind.CREATE_INDEX,
    StatementKind.CREATE_TRIGGER,
    StatementKind.DROP_TABLE,
    StatementKind.INSERT,
)
_COVERAGE_KINDS = (StatementKind.CREATE_TABLE, StatementKind.INSERT)


def snapshot_description(backup_id: str) -> str:
    return SNAPSHOT_DESCRIPTION.format(backup_id=backup_id)


def retained_statements(
    path: str | Path,
    tables: list[str] | None = None,
):
    """Statements a restore would execute, in artifact order.

    Session directives are always dropped (the engine controls the
    transaction and integrity checks itself).  With an allow-list, DROP,
    CREATE (table, index, trigger) and INSERT statements for other tables
    are dropped too.
    """
    allowed = set(tables) if tables is not None else None
    for stmt in iter_statements(path):
        if stmt.kind is StatementKind.SESSION:
            continue
        if allowed is not None and stmt.kind in _TABLE_KINDS and stmt.table not in allowed:
            continue
        yield stmt


def _validate_tables(tables) -> list[str]:
    if not isinstance(tables, (list, tuple)) or not tables:
        raise ValidationError("Table list must be a non-empty list of table names")
    for table in tables:
        if not isinstance(table, str) or not table.strip():
            raise ValidationError(f"Invalid table name: {table!r}")
    return list(tables)


class RecoveryEngine:
    """Restores backups created by a ``BackupEngine``.

    Args:
        client: Database adapter implementing ``DatabaseClient``; must be
            connected to the same engine type the backups came from.
        backups: Backup engine supplying the catalog, safety snapshots and
            the shared run lock.
        settings: Restore defaults (coverage scan bound, verification flags).
    """

    def __init__(
        self,
        client: DatabaseClient,
        backups: BackupEngine,
        settings: RestoreSettings | None = None,
    ) -> None:
        self.client = client
        self.backups = backups
        self.settings = settings or RestoreSettings()

    def default_options(self, **overrides) -> RecoveryOptions:
        """``RecoveryOptions`` seeded from the ``[restore]`` settings."""
        values = {
            "verify_before": self.settings.verify_before,
            "verify_after": self.settings.verify_after,
            "create_backup": self.settings.create_backup,
        }
        values.update(overrides)
        return RecoveryOptions(**values)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(
        self,
        backup_id: str,
        options: RecoveryOptions | None = None,
    ) -> RestoreResult:
        """Restore a backup, fully or for an allow-list of tables.

        Args:
            backup_id: Catalog id of the backup to restore.
            options: Restore options (default: ``default_options()``).

        Returns:
            RestoreResult.  On failure ``error.kind`` is ``not_found``,
            ``integrity``, ``codec``, ``execution`` (with ``position`` and
            ``line``), ``io`` or ``verification``; everything but
            ``verification`` means the database was left as it was.
        """
        options = options or self.default_options()
        async with self.backups.lock:
            return await self._restore(backup_id, options)

    async def _restore(self, backup_id: str, options: RecoveryOptions) -> RestoreResult:
        op_id = uuid4().hex[:8]
        started = time.monotonic()
        result = RestoreResult(success=False, backup_id=backup_id, dry_run=options.dry_run)

        logger.info(
            f"[{op_id}] Restore of {backup_id} started"
            f"{' (dry run)' if options.dry_run else ''}"
            f"{f' for tables {options.tables}' if options.tables is not None else ''}"
        )

        try:
            record = self.backups.require_backup(backup_id)

            if options.verify_before:
                self._verify_before(record)

            if options.create_backup:
                # The snapshot's retention run must not evict the artifact
                # about to be replayed
                snapshot = await self.backups._create_backup(
                    self.backups.default_options(
                        description=options.description or snapshot_description(backup_id)
                    ),
                    protect=frozenset({backup_id}),
                )
                if not snapshot.success:
                    raise error_from(snapshot.error, "Safety backup failed, restore aborted: ")
                result.recovery_backup_id = snapshot.backup_id
                logger.info(f"[{op_id}] Safety backup {snapshot.backup_id} created")

            if options.dry_run:
                count, tables = self._count(record, options.tables)
            else:
                count, tables = await self._replay(record, options.tables, op_id)
            result.statements_executed = count
            result.tables_restored = tables

            if options.verify_after and not options.dry_run:
                await self._verify_after(record, tables, options.tables is not None)

        except Exception as e:
            elapsed = time.monotonic() - started
            result.duration = round(elapsed, 3)
            result.error = to_operation_error(e, "Restore failed: ")
            logger.error(
                f"[{op_id}] Restore of {backup_id} failed after {elapsed:.2f}s: "
                f"{result.error.message}"
                + (
                    f" (safety backup: {result.recovery_backup_id})"
                    if result.recovery_backup_id
                    else ""
                )
            )
            return result

        result.success = True
        result.duration = round(time.monotonic() - started, 3)
        logger.info(
            f"[{op_id}] Restore of {backup_id} completed in {result.duration:.2f}s "
            f"({result.statements_executed} statements"
            f"{', nothing executed' if options.dry_run else ''})"
        )
        return result

    def _verify_before(self, record: BackupRecord) -> None:
        """Raise ``IntegrityError`` unless the artifact matches its record."""
        report = verify_artifact(
            record.path,
            expected_tables=record.tables_count if record.options.include_structure else None,
            expected_checksum=record.checksum,
        )
        if not report.valid:
            raise IntegrityError(f"Pre-restore verification failed: {report.reason}")

    def _count(
        self, record: BackupRecord, tables: list[str] | None
    ) -> tuple[int, list[str]]:
        """Dry run: parse the whole artifact, count what would execute."""
        count = 0
        touched: dict[str, None] = {}
        for stmt in retained_statements(record.path, tables):
            count += 1
            if stmt.table is not None:
                touched.setdefault(stmt.table)
        return count, list(touched)

    async def _replay(
        self,
        record: BackupRecord,
        tables: list[str] | None,
        op_id: str,
    ) -> tuple[int, list[str]]:
        """Execute retained statements in one transaction.

        Any failure (rejected statement, malformed stream, cancellation)
        rolls the transaction back.  Integrity checks are re-enabled on
        every path.
        """
        executed = 0
        touched: dict[str, None] = {}

        await self.client.begin()
        try:
            await self.client.set_integrity_checks(False)
            for stmt in retained_statements(record.path, tables):
                position = executed + 1
                await self._execute(stmt, position)
                executed = position
                if stmt.table is not None:
                    touched.setdefault(stmt.table)
        except BaseException:
            logger.warning(f"[{op_id}] Rolling back after {executed} statements")
            await self.client.rollback()
            raise
        else:
            await self.client.commit()
        finally:
            await self.client.set_integrity_checks(True)

        return executed, list(touched)

    async def _execute(self, stmt: Statement, position: int) -> None:
        try:
            await self.client.execute(stmt.text)
        except Exception as e:
            raise ExecutionError(
                f"Statement {position} (line {stmt.line}) failed: {e}",
                position=position,
                line=stmt.line,
            ) from e
        logger.debug(f"Executed statement {position} (line {stmt.line})")

    async def _verify_after(
        self,
        record: BackupRecord,
        restored: list[str],
        selective: bool,
    ) -> None:
        """Sanity-check the database after a committed restore.

        Raises:
            VerificationFailed: Connection test fails, tables are missing,
                or a table can't be counted.
        """
        try:
            if not await self.client.test_connection():
                raise VerificationFailed("Connection test failed after restore")

            live = await self.client.list_tables()
            if selective:
                missing = [t for t in restored if t not in live]
                if missing:
                    raise VerificationFailed(f"Restored tables missing: {missing}")
            elif len(live) < record.tables_count:
                raise VerificationFailed(
                    f"Expected at least {record.tables_count} tables, found {len(live)}"
                )

            quote = self.client.dialect.quote_identifier
            for table in live:
                await self.client.fetch_all(f"SELECT COUNT(*) AS n FROM {quote(table)}")
        except VerificationFailed:
            raise
        except Exception as e:
            raise VerificationFailed(f"Post-restore check failed: {e}") from e

    # ------------------------------------------------------------------
    # Variants
    # ------------------------------------------------------------------

    async def test_restore(self, backup_id: str) -> RestoreResult:
        """Validate an artifact end to end without touching the database."""
        return await self.restore(
            backup_id,
            self.default_options(dry_run=True, create_backup=False),
        )

    async def restore_specific_tables(
        self,
        backup_id: str,
        tables: list[str],
        options: RecoveryOptions | None = None,
    ) -> RestoreResult:
        """Restore only ``tables`` from a backup.

        The list is validated before the catalog is consulted: it must be
        non-empty and contain only non-blank strings.
        """
        try:
            tables = _validate_tables(tables)
        except ValidationError as e:
            return RestoreResult(success=False, backup_id=backup_id, error=e.to_error())

        base = options or self.default_options()
        return await self.restore(backup_id, base.model_copy(update={"tables": tables}))

    async def analyze_coverage(self, backup_id: str) -> CoverageReport:
        """Tables a backup can restore, from a bounded scan of its artifact.

        Only the first ``coverage_scan_lines`` lines are read; ``truncated``
        says whether the bound was hit before the end of the artifact.
        """
        limit = self.settings.coverage_scan_lines
        lines_read = 0

        def counted(lines):
            nonlocal lines_read
            for line in lines:
                lines_read += 1
                yield line

        try:
            record = self.backups.require_backup(backup_id)
            tables: dict[str, None] = {}
            with open_artifact(record.path) as f:
                for element in scan_lines(counted(f), max_lines=limit):
                    if isinstance(element, Statement) and element.kind in _COVERAGE_KINDS:
                        tables.setdefault(element.table)
            truncated = lines_read > limit
        except Exception as e:
            return CoverageReport(
                success=False,
                backup_id=backup_id,
                error=to_operation_error(e, "Coverage analysis failed: "),
            )

        return CoverageReport(
            success=True,
            backup_id=backup_id,
            tables=list(tables),
            backup=record,
            recovery_options={
                "full_restore": True,
                "selective_restore": bool(tables),
                "test_restore": True,
            },
            truncated=truncated,
        )

    # ------------------------------------------------------------------
    # Recovery points
    # ------------------------------------------------------------------

    async def create_recovery_point(self, description: str = "Manual recovery point"):
        """Take a verified backup to return to later."""
        return await self.backups.create_backup(
            self.backups.default_options(description=description, verify=True)
        )

    def list_recovery_points(self) -> list[BackupRecord]:
        return self.backups.list_backups()
