"""Persisted index of backup records.

The catalog is one JSON object (``metadata.json`` in the backup directory)
mapping backup id to ``BackupRecord``.  Every mutation rewrites the whole
file through a temp file and ``os.replace`` so a crash never leaves a
half-written index.

Usage:
    from sqlvault.backup.catalog import Catalog

    catalog = Catalog("backups")
    for record in catalog.list_records():
        print(record.backup_id, record.size_human)
"""

import json
import logging
import os
import tempfile
from collections.abc import Collection, Iterable
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from sqlvault.backup.models import BackupRecord, RetentionPolicy
from sqlvault.errors import StorageIOError

logger = logging.getLogger(__name__)

INDEX_FILE = "metadata.json"


def _newest_first(records: Iterable[BackupRecord]) -> list[BackupRecord]:
    return sorted(records, key=lambda r: (r.created_at, r.backup_id), reverse=True)


def _retain(
    records: dict[str, BackupRecord],
    policy: RetentionPolicy,
    protect: Collection[str],
) -> tuple[dict[str, BackupRecord], list[BackupRecord]]:
    """Split ``records`` into (kept, evicted newest first) for ``policy``."""
    candidates = [r for r in _newest_first(records.values()) if r.backup_id not in protect]
    evicted = candidates[policy.max_backups:]
    evicted_ids = {r.backup_id for r in evicted}
    kept = {bid: r for bid, r in records.items() if bid not in evicted_ids}
    return kept, evicted


class Catalog:
    """JSON-file backed ``backup_id -> BackupRecord`` index.

    Args:
        directory: Backup directory holding the index and the artifacts.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.index_path = self.directory / INDEX_FILE

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> dict[str, BackupRecord]:
        """Read the index. A missing index is an empty catalog.

        Raises:
            StorageIOError: If the index can't be read or parsed.
        """
        if not self.index_path.exists():
            return {}
        try:
            with open(self.index_path, encoding="utf-8") as f:
                data = json.load(f)
            return {
                backup_id: BackupRecord.model_validate(entry)
                for backup_id, entry in data.items()
            }
        except (OSError, json.JSONDecodeError, AttributeError, PydanticValidationError) as e:
            raise StorageIOError(f"Catalog index unreadable ({self.index_path}): {e}") from e

    def save(self, records: dict[str, BackupRecord]) -> None:
        """Atomically replace the index with ``records``."""
        data = {
            backup_id: record.model_dump(mode="json")
            for backup_id, record in records.items()
        }
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=str(self.directory),
                prefix=".metadata-",
                suffix=".tmp",
                delete=False,
            ) as tf:
                json.dump(data, tf, indent=2)
                tmpname = tf.name
            os.replace(tmpname, self.index_path)
        except OSError as e:
            raise StorageIOError(f"Catalog index not writable ({self.index_path}): {e}") from e

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_records(self) -> list[BackupRecord]:
        """All records, newest first."""
        return _newest_first(self.load().values())

    def get(self, backup_id: str) -> BackupRecord | None:
        return self.load().get(backup_id)

    def latest(self) -> BackupRecord | None:
        records = self.list_records()
        return records[0] if records else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(
        self,
        record: BackupRecord,
        policy: RetentionPolicy | None = None,
        protect: Collection[str] = (),
    ) -> list[BackupRecord]:
        """Insert ``record``, evicting per ``policy`` in the same index write.

        The index is saved once with the new record in and the evicted ones
        out; evicted artifacts are deleted only after that write succeeded.

        Returns:
            The evicted records, newest first.
        """
        records = self.load()
        records[record.backup_id] = record
        evicted: list[BackupRecord] = []
        if policy is not None:
            records, evicted = _retain(records, policy, protect)
        self.save(records)
        self._delete_artifacts(evicted)
        return evicted

    def remove(self, backup_id: str) -> BackupRecord | None:
        """Drop one entry; returns it, or ``None`` if it wasn't indexed."""
        records = self.load()
        record = records.pop(backup_id, None)
        if record is not None:
            self.save(records)
        return record

    def apply_retention(
        self,
        policy: RetentionPolicy,
        protect: Collection[str] = (),
    ) -> list[BackupRecord]:
        """Evict everything beyond the newest ``policy.max_backups`` records.

        Ids in ``protect`` are never evicted and don't count toward the
        bound.  Entries are always removed from the index.  Deleting an
        evicted artifact is best-effort: a failure is logged and skipped.

        Returns:
            The evicted records, newest first.
        """
        records, evicted = _retain(self.load(), policy, protect)
        if not evicted:
            return []
        self.save(records)
        self._delete_artifacts(evicted)
        return evicted

    def _delete_artifacts(self, evicted: list[BackupRecord]) -> None:
        for record in evicted:
            try:
                Path(record.path).unlink(missing_ok=True)
                logger.info(f"Retention: evicted {record.backup_id}")
            except OSError as e:
                logger.warning(
                    f"Retention: could not delete artifact of {record.backup_id} "
                    f"({record.path}): {e}"
                )

    def prune_missing(self) -> list[str]:
        """Drop entries whose artifact no longer exists on disk."""
        records = self.load()
        missing = [bid for bid, r in records.items() if not Path(r.path).exists()]
        if missing:
            for backup_id in missing:
                del records[backup_id]
            self.save(records)
            logger.info(f"Catalog: pruned {len(missing)} entries with missing artifacts")
        return missing
