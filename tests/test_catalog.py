"""Tests for the persisted backup catalog and retention."""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from sqlvault.backup.catalog import INDEX_FILE, Catalog
from sqlvault.backup.models import BackupOptions, BackupRecord, RetentionPolicy
from sqlvault.errors import ErrorKind, StorageIOError

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _record(directory: Path, n: int, write_file: bool = True) -> BackupRecord:
    """Record number ``n``; higher numbers are newer."""
    backup_id = f"backup_{n:03d}"
    path = directory / f"{backup_id}.sql.gz"
    if write_file:
        path.write_bytes(b"\x1f\x8bdata")
    return BackupRecord(
        backup_id=backup_id,
        file=path.name,
        path=str(path),
        size=6,
        created_at=BASE_TIME + timedelta(minutes=n),
        duration=0.1,
        tables_count=2,
        row_counts={"products": n},
        checksum="ab" * 32,
        compressed=True,
        options=BackupOptions(description=f"Backup {n}"),
    )


class TestCatalogPersistence:
    """Index load/save."""

    def test_missing_index_is_empty(self, tmp_path):
        """No metadata.json yet means an empty catalog."""
        assert Catalog(tmp_path).load() == {}
        assert Catalog(tmp_path).latest() is None

    def test_add_and_get(self, tmp_path):
        """A record survives a round trip through the index file."""
        catalog = Catalog(tmp_path)
        record = _record(tmp_path, 1)
        catalog.add(record)

        reloaded = Catalog(tmp_path).get("backup_001")
        assert reloaded == record
        assert reloaded.description == "Backup 1"

    def test_index_is_json_object_keyed_by_id(self, tmp_path):
        """metadata.json maps backup id to record."""
        catalog = Catalog(tmp_path)
        catalog.add(_record(tmp_path, 1))
        data = json.loads((tmp_path / INDEX_FILE).read_text())
        assert list(data) == ["backup_001"]
        assert data["backup_001"]["checksum"] == "ab" * 32

    def test_save_leaves_no_temp_files(self, tmp_path):
        """The temp file is renamed over the index."""
        catalog = Catalog(tmp_path)
        for n in range(3):
            catalog.add(_record(tmp_path, n))
        assert list(tmp_path.glob(".metadata-*")) == []

    def test_corrupt_index_raises_storage_error(self, tmp_path):
        """Unparseable index surfaces as an io-kind error."""
        (tmp_path / INDEX_FILE).write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageIOError) as exc_info:
            Catalog(tmp_path).load()
        assert exc_info.value.kind is ErrorKind.IO

    def test_invalid_record_raises_storage_error(self, tmp_path):
        """Entries that don't validate are reported, not silently dropped."""
        (tmp_path / INDEX_FILE).write_text('{"x": {"backup_id": "x"}}', encoding="utf-8")
        with pytest.raises(StorageIOError):
            Catalog(tmp_path).load()


class TestCatalogQueries:
    """Ordering and lookups."""

    def test_list_newest_first(self, tmp_path):
        """list_records sorts by creation time, newest first."""
        catalog = Catalog(tmp_path)
        for n in (2, 5, 1, 4):
            catalog.add(_record(tmp_path, n))
        ids = [r.backup_id for r in catalog.list_records()]
        assert ids == ["backup_005", "backup_004", "backup_002", "backup_001"]
        assert catalog.latest().backup_id == "backup_005"

    def test_remove(self, tmp_path):
        """remove returns the dropped record, None when unknown."""
        catalog = Catalog(tmp_path)
        catalog.add(_record(tmp_path, 1))
        assert catalog.remove("backup_001").backup_id == "backup_001"
        assert catalog.remove("backup_001") is None
        assert catalog.load() == {}

    def test_prune_missing(self, tmp_path):
        """Entries whose artifact vanished are dropped."""
        catalog = Catalog(tmp_path)
        catalog.add(_record(tmp_path, 1))
        catalog.add(_record(tmp_path, 2, write_file=False))
        assert catalog.prune_missing() == ["backup_002"]
        assert list(catalog.load()) == ["backup_001"]


class TestRetention:
    """Bounded retention, newest kept."""

    def test_keeps_newest_and_deletes_files(self, tmp_path):
        """Six records with K=3 keep the three newest."""
        catalog = Catalog(tmp_path)
        for n in range(1, 7):
            catalog.add(_record(tmp_path, n))

        evicted = catalog.apply_retention(RetentionPolicy(max_backups=3))

        assert [r.backup_id for r in evicted] == ["backup_003", "backup_002", "backup_001"]
        assert sorted(catalog.load()) == ["backup_004", "backup_005", "backup_006"]
        for n in (1, 2, 3):
            assert not (tmp_path / f"backup_{n:03d}.sql.gz").exists()
        for n in (4, 5, 6):
            assert (tmp_path / f"backup_{n:03d}.sql.gz").exists()

    def test_within_bound_is_noop(self, tmp_path):
        catalog = Catalog(tmp_path)
        catalog.add(_record(tmp_path, 1))
        assert catalog.apply_retention(RetentionPolicy(max_backups=3)) == []
        assert list(catalog.load()) == ["backup_001"]

    def test_already_missing_artifact_is_fine(self, tmp_path):
        """An evicted record without a file is still removed from the index."""
        catalog = Catalog(tmp_path)
        catalog.add(_record(tmp_path, 1, write_file=False))
        catalog.add(_record(tmp_path, 2))
        evicted = catalog.apply_retention(RetentionPolicy(max_backups=1))
        assert [r.backup_id for r in evicted] == ["backup_001"]
        assert list(catalog.load()) == ["backup_002"]

    def test_failed_delete_is_logged_and_skipped(self, tmp_path, monkeypatch, caplog):
        """An unlink failure doesn't stop retention or restore the entry."""
        catalog = Catalog(tmp_path)
        for n in range(1, 4):
            catalog.add(_record(tmp_path, n))

        def refuse_unlink(self, missing_ok=False):
            raise PermissionError("read-only")

        monkeypatch.setattr(Path, "unlink", refuse_unlink)
        with caplog.at_level(logging.WARNING, logger="sqlvault.backup.catalog"):
            evicted = catalog.apply_retention(RetentionPolicy(max_backups=1))

        assert len(evicted) == 2
        assert list(catalog.load()) == ["backup_003"]
        assert "could not delete artifact" in caplog.text

    def test_protected_record_is_never_evicted(self, tmp_path):
        """A protected id survives and doesn't use up one of the K slots."""
        catalog = Catalog(tmp_path)
        for n in range(1, 5):
            catalog.add(_record(tmp_path, n))

        evicted = catalog.apply_retention(
            RetentionPolicy(max_backups=2), protect={"backup_001"}
        )

        assert [r.backup_id for r in evicted] == ["backup_002"]
        assert sorted(catalog.load()) == ["backup_001", "backup_003", "backup_004"]
        assert (tmp_path / "backup_001.sql.gz").exists()

    def test_add_with_policy_evicts_in_same_write(self, tmp_path):
        catalog = Catalog(tmp_path)
        catalog.add(_record(tmp_path, 1))
        catalog.add(_record(tmp_path, 2))

        evicted = catalog.add(_record(tmp_path, 3), RetentionPolicy(max_backups=2))

        assert [r.backup_id for r in evicted] == ["backup_001"]
        assert sorted(catalog.load()) == ["backup_002", "backup_003"]
        assert not (tmp_path / "backup_001.sql.gz").exists()

    def test_failed_add_leaves_index_and_files_alone(self, tmp_path, monkeypatch):
        """If the index write fails, nothing is added and nothing is deleted."""
        catalog = Catalog(tmp_path)
        catalog.add(_record(tmp_path, 1))

        def refuse_save(self, records):
            raise StorageIOError("disk full")

        monkeypatch.setattr(Catalog, "save", refuse_save)
        with pytest.raises(StorageIOError):
            catalog.add(_record(tmp_path, 2), RetentionPolicy(max_backups=1))

        assert list(catalog.load()) == ["backup_001"]
        assert (tmp_path / "backup_001.sql.gz").exists()

    def test_policy_rejects_zero(self):
        """A retention bound below one is invalid."""
        with pytest.raises(ValueError):
            RetentionPolicy(max_backups=0)
