"""Tests for BackupEngine against a mocked database client.

The mock serves rows from an in-memory dict so paging, chunking and
failure paths can be checked without a database.
"""

from unittest.mock import AsyncMock, patch

import pytest

from sqlvault.backup.engine import (
    HTACCESS_CONTENT,
    BackupEngine,
    compress_artifact,
    new_backup_id,
)
from sqlvault.backup.integrity import compute_checksum, verify_artifact
from sqlvault.backup.models import BackupOptions, ScheduleState, VerificationReport
from sqlvault.backup.scheduler import save_schedule
from sqlvault.config.models import BackupSettings
from sqlvault.dump.dialect import SQLITE
from sqlvault.dump.reader import (
    Comment,
    StatementKind,
    is_compressed,
    iter_elements,
    iter_statements,
)
from sqlvault.errors import ErrorKind, NotFoundError, StorageIOError


def _make_mock_client(tables: dict[str, list[dict]] | None = None) -> AsyncMock:
    """AsyncMock client serving ``tables`` (name -> rows) page by page."""
    if tables is None:
        tables = {
            "customers": [{"id": 1, "name": "Ada"}],
            "products": [{"id": i, "name": f"Item {i}"} for i in range(1, 4)],
        }
    client = AsyncMock()
    client.dialect = SQLITE
    client.list_tables.return_value = list(tables)
    client.get_create_statement.side_effect = (
        lambda t: f'CREATE TABLE "{t}" (id INTEGER PRIMARY KEY, name TEXT)'
    )
    client.fetch_page.side_effect = (
        lambda t, offset, limit: tables[t][offset:offset + limit]
    )
    client.get_dependent_statements.return_value = []
    return client


def _engine(tmp_path, client=None, **settings) -> BackupEngine:
    return BackupEngine(
        client or _make_mock_client(),
        BackupSettings(directory=str(tmp_path / "backups"), **settings),
    )


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


class TestHelpers:
    """Module-level helpers."""

    def test_backup_ids_are_unique(self):
        """Two ids in the same microsecond still differ."""
        ids = {new_backup_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(i.startswith("backup_") for i in ids)

    def test_directory_gets_htaccess(self, tmp_path):
        """Constructing an engine creates the directory and its guard file."""
        engine = _engine(tmp_path)
        assert (engine.directory / ".htaccess").read_text() == HTACCESS_CONTENT

    def test_compress_artifact_replaces_plain_file(self, tmp_path):
        plain = tmp_path / "a.sql"
        plain.write_text("SELECT 1;\n" * 100, encoding="utf-8")
        packed = compress_artifact(plain)
        assert packed.name == "a.sql.gz"
        assert not plain.exists()
        assert is_compressed(packed)

    def test_default_options_follow_settings(self, tmp_path):
        engine = _engine(tmp_path, compress=False, verify=False)
        options = engine.default_options(description="x")
        assert (options.compress, options.verify, options.description) == (False, False, "x")


# ------------------------------------------------------------------
# create_backup
# ------------------------------------------------------------------


class TestCreateBackup:
    """Successful runs."""

    async def test_creates_verified_cataloged_backup(self, tmp_path):
        """A default run produces a compressed artifact that verifies."""
        engine = _engine(tmp_path)
        result = await engine.create_backup(BackupOptions(description="Nightly"))

        assert result.success, result.error
        record = result.record
        assert record.compressed
        assert record.file.endswith(".sql.gz")
        assert record.tables_count == 2
        assert record.row_counts == {"customers": 1, "products": 3}
        assert record.checksum == compute_checksum(record.path)
        assert engine.get_backup(record.backup_id) == record
        assert verify_artifact(record.path, 2, record.checksum).valid

    async def test_uncompressed_backup(self, tmp_path):
        engine = _engine(tmp_path)
        result = await engine.create_backup(BackupOptions(compress=False))
        assert result.success
        assert result.record.file.endswith(".sql")
        assert not is_compressed(result.record.path)

    async def test_compressed_run_leaves_no_plain_intermediate(self, tmp_path):
        engine = _engine(tmp_path)
        result = await engine.create_backup()
        assert result.success
        assert list(engine.directory.glob("*.sql")) == []

    async def test_pages_by_offset_and_limit(self, tmp_path):
        """2,500 rows at chunk size 1,000 are three pages and three INSERTs."""
        client = _make_mock_client({"big": [{"id": i} for i in range(2500)]})
        engine = _engine(tmp_path, client)

        result = await engine.create_backup(BackupOptions(compress=False))

        assert result.success
        assert result.chunks == 3
        offsets = [c.args[1] for c in client.fetch_page.call_args_list]
        assert offsets == [0, 1000, 2000]
        inserts = [
            s for s in iter_statements(result.record.path) if s.kind is StatementKind.INSERT
        ]
        assert len(inserts) == 3
        assert result.record.row_counts == {"big": 2500}

    async def test_exact_multiple_of_chunk_size(self, tmp_path):
        """2,000 rows need a third (empty) fetch but only two chunks."""
        client = _make_mock_client({"big": [{"id": i} for i in range(2000)]})
        result = await _engine(tmp_path, client).create_backup()
        assert result.chunks == 2
        assert client.fetch_page.call_count == 3

    async def test_custom_chunk_size(self, tmp_path):
        client = _make_mock_client({"t": [{"id": i} for i in range(10)]})
        result = await _engine(tmp_path, client, chunk_size=4).create_backup()
        assert result.chunks == 3

    async def test_empty_table_gets_no_data_comment(self, tmp_path):
        """An empty table keeps its structure and gets a '-- No data' note."""
        client = _make_mock_client({"products": []})
        result = await _engine(tmp_path, client).create_backup(BackupOptions(compress=False))

        assert result.success
        assert result.chunks == 0
        comments = [e.text for e in iter_elements(result.record.path) if isinstance(e, Comment)]
        assert '-- No data for table "products"' in comments
        kinds = [s.kind for s in iter_statements(result.record.path)]
        assert StatementKind.CREATE_TABLE in kinds
        assert StatementKind.INSERT not in kinds

    async def test_indexes_follow_data_and_triggers_come_last(self, tmp_path):
        """Index definitions follow their table's rows; triggers close the dump."""
        client = _make_mock_client()
        client.get_dependent_statements.side_effect = lambda t: {
            "customers": [
                'CREATE TRIGGER "trg_customers" AFTER INSERT ON "customers" '
                "BEGIN UPDATE stats SET n = n + 1; END"
            ],
            "products": ['CREATE UNIQUE INDEX "ux_name" ON "products" (name)'],
        }[t]

        result = await _engine(tmp_path, client).create_backup(BackupOptions(compress=False))

        assert result.success, result.error
        stmts = [
            (s.kind, s.table)
            for s in iter_statements(result.record.path)
            if s.kind is not StatementKind.SESSION
        ]
        assert stmts == [
            (StatementKind.DROP_TABLE, "customers"),
            (StatementKind.CREATE_TABLE, "customers"),
            (StatementKind.INSERT, "customers"),
            (StatementKind.DROP_TABLE, "products"),
            (StatementKind.CREATE_TABLE, "products"),
            (StatementKind.INSERT, "products"),
            (StatementKind.CREATE_INDEX, "products"),
            (StatementKind.CREATE_TRIGGER, "customers"),
        ]

    async def test_data_only_backup(self, tmp_path):
        """Without structure, no DROP/CREATE is written and table count isn't checked."""
        engine = _engine(tmp_path)
        result = await engine.create_backup(
            BackupOptions(include_structure=False, compress=False)
        )
        assert result.success, result.error
        kinds = {s.kind for s in iter_statements(result.record.path)}
        assert StatementKind.CREATE_TABLE not in kinds
        assert StatementKind.DROP_TABLE not in kinds
        engine.client.get_dependent_statements.assert_not_called()

    async def test_structure_only_backup(self, tmp_path):
        client = _make_mock_client()
        result = await _engine(tmp_path, client).create_backup(
            BackupOptions(include_data=False)
        )
        assert result.success
        assert result.record.row_counts == {}
        client.fetch_page.assert_not_called()

    async def test_retention_applied_after_success(self, tmp_path):
        """With max_backups=2 the third run evicts the first."""
        engine = _engine(tmp_path, max_backups=2)
        first = await engine.create_backup()
        await engine.create_backup()
        third = await engine.create_backup()

        assert third.evicted == [first.backup_id]
        assert len(engine.list_backups()) == 2
        assert not (engine.directory / first.record.file).exists()


class TestCreateBackupFailures:
    """Failed runs catalog nothing."""

    async def test_enumeration_failure_is_io_error(self, tmp_path):
        client = _make_mock_client()
        client.list_tables.side_effect = RuntimeError("connection lost")
        engine = _engine(tmp_path, client)

        result = await engine.create_backup()

        assert not result.success
        assert result.error.kind is ErrorKind.IO
        assert result.error.message == "Backup failed: connection lost"
        assert engine.list_backups() == []

    async def test_page_failure_mid_dump(self, tmp_path):
        """A failing page aborts the run; nothing is cataloged."""
        client = _make_mock_client()
        client.fetch_page.side_effect = OSError("read timeout")
        engine = _engine(tmp_path, client)

        result = await engine.create_backup()

        assert not result.success
        assert "read timeout" in result.error.message
        assert engine.list_backups() == []

    async def test_verification_failure_is_integrity_error(self, tmp_path):
        engine = _engine(tmp_path)
        bad = VerificationReport(valid=False, reason="Checksum mismatch")
        with patch("sqlvault.backup.engine.verify_artifact", return_value=bad):
            result = await engine.create_backup()

        assert not result.success
        assert result.error.kind is ErrorKind.INTEGRITY
        assert "Checksum mismatch" in result.error.message
        assert engine.list_backups() == []

    async def test_failed_catalog_write_catalogs_nothing(self, tmp_path):
        """An index write failure leaves the catalog and older artifacts as they were."""
        engine = _engine(tmp_path, max_backups=1)
        first = await engine.create_backup()

        with patch.object(engine.catalog, "save", side_effect=StorageIOError("disk full")):
            result = await engine.create_backup()

        assert not result.success
        assert result.error.kind is ErrorKind.IO
        assert [r.backup_id for r in engine.list_backups()] == [first.backup_id]
        assert (engine.directory / first.record.file).exists()

    async def test_skip_verify_never_calls_verifier(self, tmp_path):
        engine = _engine(tmp_path)
        with patch("sqlvault.backup.engine.verify_artifact") as verifier:
            result = await engine.create_backup(BackupOptions(verify=False))
        assert result.success
        verifier.assert_not_called()


# ------------------------------------------------------------------
# Catalog operations
# ------------------------------------------------------------------


class TestCatalogOperations:
    """delete / verify / status / require."""

    async def test_delete_backup(self, tmp_path):
        engine = _engine(tmp_path)
        created = await engine.create_backup()

        result = await engine.delete_backup(created.backup_id)

        assert result.success
        assert result.message == f"Deleted backup {created.backup_id}"
        assert engine.get_backup(created.backup_id) is None
        assert not (engine.directory / created.record.file).exists()

    async def test_delete_unknown_backup(self, tmp_path):
        result = await _engine(tmp_path).delete_backup("backup_nope")
        assert not result.success
        assert result.error.kind is ErrorKind.NOT_FOUND

    async def test_verify_backup(self, tmp_path):
        engine = _engine(tmp_path)
        created = await engine.create_backup()
        report = engine.verify_backup(created.backup_id)
        assert report.valid
        assert report.checks["checksum"]

    async def test_verify_detects_tampering(self, tmp_path):
        engine = _engine(tmp_path)
        created = await engine.create_backup(BackupOptions(compress=False))
        with open(created.record.path, "a", encoding="utf-8") as f:
            f.write("-- edited\n")
        report = engine.verify_backup(created.backup_id)
        assert not report.valid
        assert report.reason == "Checksum mismatch"

    def test_verify_unknown_backup(self, tmp_path):
        report = _engine(tmp_path).verify_backup("backup_nope")
        assert not report.valid
        assert report.reason == "Backup not found: backup_nope"

    async def test_require_backup_missing_artifact(self, tmp_path):
        engine = _engine(tmp_path)
        created = await engine.create_backup()
        (engine.directory / created.record.file).unlink()
        with pytest.raises(NotFoundError, match="artifact missing"):
            engine.require_backup(created.backup_id)

    async def test_status(self, tmp_path):
        engine = _engine(tmp_path)
        assert engine.status().total_backups == 0

        first = await engine.create_backup()
        second = await engine.create_backup()
        save_schedule(engine.directory, ScheduleState())

        status = engine.status()
        assert status.total_backups == 2
        assert status.latest.backup_id == second.backup_id
        assert status.total_size == first.record.size + second.record.size
        assert status.schedule is not None
