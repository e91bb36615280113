"""Automatic backup schedule.

There is no daemon: the schedule is a small state file (``schedule.json``)
and ``BackupScheduler.run_if_due()`` is meant to be called periodically,
e.g. by cron via ``sqlvault run-scheduled``.

Next-run rules (UTC):
    hourly  now + 1 hour
    daily   tomorrow 02:00
    weekly  next Sunday 02:00 (a week ahead when today is Sunday)
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from sqlvault.backup.models import BackupResult, Frequency, ScheduleState
from sqlvault.errors import StorageIOError

if TYPE_CHECKING:
    from sqlvault.backup.engine import BackupEngine

logger = logging.getLogger(__name__)

SCHEDULE_FILE = "schedule.json"
RUN_HOUR = 2
SUNDAY = 6


def calculate_next_run(frequency: Frequency | str, now: datetime) -> datetime:
    """Next run time after ``now`` for the given frequency."""
    frequency = Frequency(frequency)
    if frequency is Frequency.HOURLY:
        return now + timedelta(hours=1)

    run_time = now.replace(hour=RUN_HOUR, minute=0, second=0, microsecond=0)
    if frequency is Frequency.DAILY:
        return run_time + timedelta(days=1)

    days_ahead = (SUNDAY - now.weekday()) % 7 or 7
    return run_time + timedelta(days=days_ahead)


def load_schedule(directory: str | Path) -> ScheduleState | None:
    """Read ``schedule.json``; ``None`` when no schedule was configured."""
    path = Path(directory) / SCHEDULE_FILE
    if not path.exists():
        return None
    try:
        return ScheduleState.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, PydanticValidationError) as e:
        raise StorageIOError(f"Schedule file unreadable ({path}): {e}") from e


def save_schedule(directory: str | Path, state: ScheduleState) -> None:
    path = Path(directory) / SCHEDULE_FILE
    try:
        path.write_text(
            json.dumps(state.model_dump(mode="json"), indent=2), encoding="utf-8"
        )
    except OSError as e:
        raise StorageIOError(f"Schedule file not writable ({path}): {e}") from e


class BackupScheduler:
    """Runs backups through a ``BackupEngine`` when the schedule says so.

    Args:
        engine: Engine that performs the backups; its directory holds the
            schedule file.
    """

    def __init__(self, engine: "BackupEngine") -> None:
        self.engine = engine
        self.directory = engine.directory

    def load(self) -> ScheduleState | None:
        return load_schedule(self.directory)

    def configure(
        self,
        frequency: Frequency | str,
        enabled: bool = True,
        now: datetime | None = None,
    ) -> ScheduleState:
        """Set the frequency and compute the first run time."""
        now = now or datetime.now(timezone.utc)
        previous = self.load()
        state = ScheduleState(
            frequency=Frequency(frequency),
            enabled=enabled,
            last_run=previous.last_run if previous else None,
            next_run=calculate_next_run(frequency, now),
        )
        save_schedule(self.directory, state)
        logger.info(f"Schedule set: {state.frequency}, next run {state.next_run}")
        return state

    def is_due(self, now: datetime | None = None) -> bool:
        state = self.load()
        if state is None or not state.enabled or state.next_run is None:
            return False
        return state.next_run <= (now or datetime.now(timezone.utc))

    async def run_if_due(
        self,
        now: datetime | None = None,
        force: bool = False,
    ) -> BackupResult | None:
        """Create a backup if one is due (or ``force``).

        On success ``last_run`` and ``next_run`` are advanced; a failed run
        leaves the schedule untouched so the next call retries.

        Returns:
            The backup result, or ``None`` when nothing was due.
        """
        now = now or datetime.now(timezone.utc)
        state = self.load()
        if not force and not self.is_due(now):
            logger.debug("Scheduled backup not due")
            return None

        label = f"Scheduled {state.frequency} backup" if state else "Scheduled backup"
        result = await self.engine.create_backup(
            self.engine.default_options(description=label)
        )

        if result.success and state is not None:
            save_schedule(
                self.directory,
                state.model_copy(
                    update={
                        "last_run": now,
                        "next_run": calculate_next_run(state.frequency, now),
                    }
                ),
            )
        return result
