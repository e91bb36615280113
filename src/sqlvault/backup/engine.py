"""Backup engine: dumps a database into a verified, cataloged artifact.

One ``create_backup`` run enumerates the base tables, writes structure and
row pages through ``DumpWriter``, optionally gzips and verifies the
artifact, checksums the final bytes, records a ``BackupRecord`` and applies
the retention policy.  Nothing is cataloged unless every step succeeded.

Runs are serialized per engine by an ``asyncio.Lock`` that the recovery
engine shares, so a backup and a restore never interleave inside one
process.

Usage:
    from sqlvault.adapters import AsyncSQLiteAdapter
    from sqlvault.backup import BackupEngine, BackupOptions
    from sqlvault.config import BackupSettings

    adapter = AsyncSQLiteAdapter("sqlite:///shop.db")
    engine = BackupEngine(adapter, BackupSettings(directory="backups"))
    result = await engine.create_backup(BackupOptions(description="Nightly"))
    if not result.success:
        print(result.error.kind, result.error.message)
"""

import asyncio
import gzip
import logging
import secrets
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlvault.adapters.base import DatabaseClient
from sqlvault.backup.catalog import Catalog
from sqlvault.backup.integrity import CHUNK_BYTES, compute_checksum, verify_artifact
from sqlvault.backup.models import (
    BackupOptions,
    BackupRecord,
    BackupResult,
    BackupStatus,
    OperationResult,
    RetentionPolicy,
    VerificationReport,
)
from sqlvault.backup.scheduler import load_schedule
from sqlvault.config.models import BackupSettings
from sqlvault.dump.reader import StatementKind, classify
from sqlvault.dump.writer import DumpWriter
from sqlvault.errors import (
    ErrorKind,
    IntegrityError,
    NotFoundError,
    OperationError,
    SqlVaultError,
    StorageIOError,
)

logger = logging.getLogger(__name__)

HTACCESS_CONTENT = "Deny from all\n"


def new_backup_id(now: datetime | None = None) -> str:
    """Time-ordered unique id: ``backup_<YYYYmmdd>_<HHMMSS>_<micros>_<hex>``."""
    now = now or datetime.now(timezone.utc)
    return f"backup_{now:%Y%m%d_%H%M%S}_{now.microsecond:06d}_{secrets.token_hex(4)}"


def ensure_backup_directory(directory: Path) -> None:
    """Create the backup directory (0750) and its ``.htaccess`` guard."""
    directory.mkdir(mode=0o750, parents=True, exist_ok=True)
    htaccess = directory / ".htaccess"
    if not htaccess.exists():
        htaccess.write_text(HTACCESS_CONTENT, encoding="utf-8")


def compress_artifact(path: Path) -> Path:
    """Gzip ``path`` into ``<path>.gz`` in one streaming pass and delete it."""
    gz_path = path.with_name(path.name + ".gz")
    with open(path, "rb") as src, gzip.open(gz_path, "wb") as dst:
        shutil.copyfileobj(src, dst, CHUNK_BYTES)
    path.unlink()
    return gz_path


def to_operation_error(exc: Exception, prefix: str = "") -> OperationError:
    """Map an exception caught at an operation boundary to an ``OperationError``."""
    if isinstance(exc, SqlVaultError):
        return exc.to_error(prefix)
    return OperationError(kind=ErrorKind.IO, message=f"{prefix}{exc}")


class BackupEngine:
    """Creates, lists, verifies and deletes backups of one database.

    Args:
        client: Database adapter implementing ``DatabaseClient``.
        settings: Backup directory, retention and paging settings.
        catalog: Catalog to record into (default: one in ``settings.directory``).
        lock: Lock serializing runs (default: a new one owned by this engine).

    Raises:
        OSError: If the backup directory can't be created.
    """

    def __init__(
        self,
        client: DatabaseClient,
        settings: BackupSettings | None = None,
        catalog: Catalog | None = None,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or BackupSettings()
        self.directory = Path(self.settings.directory).resolve()
        ensure_backup_directory(self.directory)
        self.catalog = catalog or Catalog(self.directory)
        self.lock = lock or asyncio.Lock()

    def default_options(self, **overrides) -> BackupOptions:
        """``BackupOptions`` seeded from the configured compress/verify flags."""
        values = {"compress": self.settings.compress, "verify": self.settings.verify}
        values.update(overrides)
        return BackupOptions(**values)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_backup(self, options: BackupOptions | None = None) -> BackupResult:
        """Dump the database into a new cataloged artifact.

        Args:
            options: What to capture (default: ``default_options()``).

        Returns:
            BackupResult with the new record, or ``success=False`` and an
            ``error`` whose kind tells which step failed.
        """
        async with self.lock:
            return await self._create_backup(options or self.default_options())

    async def _create_backup(
        self,
        options: BackupOptions,
        protect: frozenset[str] = frozenset(),
    ) -> BackupResult:
        """``create_backup`` body; callers must hold ``self.lock``.

        Ids in ``protect`` are exempt from the retention run that follows.
        """
        op_id = uuid4().hex[:8]
        started = time.monotonic()
        created_at = datetime.now(timezone.utc)
        backup_id = new_backup_id(created_at)
        sql_path = self.directory / f"{backup_id}.sql"

        logger.info(f"[{op_id}] Backup {backup_id} started: {options.description}")

        try:
            tables, row_counts, chunks = await self._dump(sql_path, options, op_id)

            final_path = sql_path
            if options.compress:
                final_path = compress_artifact(sql_path)

            if options.verify:
                report = verify_artifact(
                    final_path,
                    expected_tables=len(tables) if options.include_structure else None,
                )
                if not report.valid:
                    raise IntegrityError(f"Verification failed: {report.reason}")

            record = BackupRecord(
                backup_id=backup_id,
                file=final_path.name,
                path=str(final_path),
                size=final_path.stat().st_size,
                created_at=created_at,
                duration=round(time.monotonic() - started, 3),
                tables_count=len(tables),
                row_counts=row_counts,
                checksum=compute_checksum(final_path),
                compressed=options.compress,
                options=options,
            )
            evicted = self.catalog.add(
                record,
                RetentionPolicy(max_backups=self.settings.max_backups),
                protect=protect,
            )

        except Exception as e:
            elapsed = time.monotonic() - started
            logger.error(
                f"[{op_id}] Backup {backup_id} failed after {elapsed:.2f}s: {e}"
            )
            return BackupResult(
                success=False,
                duration=round(elapsed, 3),
                error=to_operation_error(e, "Backup failed: "),
            )

        logger.info(
            f"[{op_id}] Backup {backup_id} completed in {record.duration:.2f}s "
            f"({len(tables)} tables, {chunks} chunks, {record.size_human})"
        )
        return BackupResult(
            success=True,
            record=record,
            duration=record.duration,
            chunks=chunks,
            evicted=[r.backup_id for r in evicted],
        )

    async def _dump(
        self,
        path: Path,
        options: BackupOptions,
        op_id: str,
    ) -> tuple[list[str], dict[str, int], int]:
        """Write the plain-text artifact.

        Returns:
            (tables in enumeration order, rows per table, INSERT chunks).
        """
        tables = await self.client.list_tables()
        row_counts: dict[str, int] = {}
        triggers: dict[str, list[str]] = {}
        chunks = 0

        with open(path, "w", encoding="utf-8", newline="\n") as f:
            writer = DumpWriter(f, self.client.dialect)
            writer.write_header(
                description=options.description,
                options=options.model_dump(exclude={"description"}),
            )
            for table in tables:
                if options.include_structure:
                    create_sql = await self.client.get_create_statement(table)
                    writer.write_structure(table, create_sql)
                if options.include_data:
                    rows, pages = await self._dump_rows(writer, table, op_id)
                    row_counts[table] = rows
                    chunks += pages
                if options.include_structure:
                    indexes = []
                    for sql in await self.client.get_dependent_statements(table):
                        if classify(sql)[0] is StatementKind.CREATE_TRIGGER:
                            triggers.setdefault(table, []).append(sql)
                        else:
                            indexes.append(sql)
                    writer.write_definitions(table, indexes)
                logger.info(f"[{op_id}] Dumped {table}: {row_counts.get(table, 0)} rows")
            # Triggers last, so none fires while other tables are restored
            for table, statements in triggers.items():
                writer.write_definitions(table, statements)
            writer.write_footer()

        return tables, row_counts, chunks

    async def _dump_rows(
        self, writer: DumpWriter, table: str, op_id: str
    ) -> tuple[int, int]:
        """Page through ``table`` in stable order until a short page."""
        limit = self.settings.chunk_size
        offset = 0
        total = 0
        pages = 0
        while True:
            rows = await self.client.fetch_page(table, offset, limit)
            if rows:
                if total == 0:
                    writer.write_data_comment(table)
                total += writer.write_rows(table, rows)
                pages += 1
                logger.debug(f"[{op_id}] {table}: chunk {pages} ({len(rows)} rows)")
            if len(rows) < limit:
                break
            offset += limit

        if total == 0:
            writer.write_no_data(table)
        return total, pages

    # ------------------------------------------------------------------
    # Catalog operations
    # ------------------------------------------------------------------

    def list_backups(self) -> list[BackupRecord]:
        """All cataloged backups, newest first.

        Raises:
            StorageIOError: If the catalog index is unreadable.
        """
        return self.catalog.list_records()

    def get_backup(self, backup_id: str) -> BackupRecord | None:
        return self.catalog.get(backup_id)

    def require_backup(self, backup_id: str) -> BackupRecord:
        """Catalog record whose artifact is on disk.

        Raises:
            NotFoundError: Unknown id or missing artifact file.
        """
        record = self.catalog.get(backup_id)
        if record is None:
            raise NotFoundError(f"Backup not found: {backup_id}")
        if not Path(record.path).is_file():
            raise NotFoundError(f"Backup artifact missing: {record.path}")
        return record

    async def delete_backup(self, backup_id: str) -> OperationResult:
        """Delete an artifact and its catalog entry."""
        async with self.lock:
            try:
                record = self.catalog.get(backup_id)
                if record is None:
                    raise NotFoundError(f"Backup not found: {backup_id}")
                try:
                    Path(record.path).unlink(missing_ok=True)
                except OSError as e:
                    raise StorageIOError(f"Could not delete {record.path}: {e}") from e
                self.catalog.remove(backup_id)
            except SqlVaultError as e:
                logger.error(f"Delete of {backup_id} failed: {e.message}")
                return OperationResult(success=False, error=e.to_error())

        logger.info(f"Deleted backup {backup_id}")
        return OperationResult(success=True, message=f"Deleted backup {backup_id}")

    def verify_backup(self, backup_id: str) -> VerificationReport:
        """Full integrity check of a cataloged artifact against its record."""
        try:
            record = self.require_backup(backup_id)
        except SqlVaultError as e:
            return VerificationReport(valid=False, reason=e.message)
        return verify_artifact(
            record.path,
            expected_tables=record.tables_count if record.options.include_structure else None,
            expected_checksum=record.checksum,
        )

    def status(self) -> BackupStatus:
        """Backup count, latest record, bytes on disk and schedule."""
        records = self.catalog.list_records()
        total_size = 0
        for record in records:
            path = Path(record.path)
            if path.is_file():
                total_size += path.stat().st_size
        return BackupStatus(
            directory=str(self.directory),
            total_backups=len(records),
            total_size=total_size,
            latest=records[0] if records else None,
            schedule=load_schedule(self.directory),
        )
