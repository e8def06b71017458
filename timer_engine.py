"""Timer engine: one running time entry at a time, stop rounding and repair."""

import logging
import math
from datetime import datetime
from typing import Optional, Callable, Dict
import db
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ROUND_TO = 15


def elapsed_minutes(start_time, now: datetime) -> int:
    """Whole minutes between start_time and now, floored, never negative."""
    if isinstance(start_time, str):
        start_time = datetime.fromisoformat(start_time)
    return max(0, math.floor((now - start_time).total_seconds() / 60))


def round_duration(minutes: int, round_to: int) -> int:
    """Round minutes up to the next multiple of round_to (0 disables)."""
    if round_to and round_to > 0:
        return math.ceil(minutes / round_to) * round_to
    return minutes


def rounding_setting() -> int:
    """The timer_rounding setting in minutes; unreadable values mean the default."""
    value = db.get_setting('timer_rounding', str(DEFAULT_ROUND_TO))
    try:
        return max(0, int(value or 0))
    except ValueError:
        logger.warning("Invalid timer_rounding setting %r, using %d minutes", value, DEFAULT_ROUND_TO)
        return DEFAULT_ROUND_TO


class TimerEngine:
    """Starts, stops and resumes time entries stored in the database.

    The database is the only state: any number of engines (main window,
    tray) can share it. ensure_only_single_active() repairs the case where
    two of them started a timer at once.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or datetime.now

    def _finalize(self, entry: Dict, now: datetime) -> Dict:
        """Close an active entry with its exact elapsed minutes, no rounding."""
        duration = elapsed_minutes(entry['start_time'], now)
        logger.debug("Finalizing active entry %s with %d minutes", entry['id'], duration)
        return db.update_time_entry(entry['id'], end_time=now, duration=duration, is_active=False)

    def start_timer(self, client_id: Optional[int] = None, project_id: Optional[int] = None,
                    task_id: Optional[int] = None, description: str = '') -> Dict:
        """Start a new entry, closing whatever was running."""
        now = self.clock()
        for entry in db.get_time_entries(is_active=True):
            self._finalize(entry, now)

        entry = db.create_time_entry(
            start_time=now,
            client_id=client_id,
            project_id=project_id,
            task_id=task_id,
            description=description,
            duration=0,
            is_active=True
        )
        logger.info("Timer started: entry %s", entry['id'])
        return entry

    def stop_timer(self, entry_id: Optional[int], round_to: Optional[int] = None) -> Optional[Dict]:
        """Stop a running entry and round its duration up to round_to minutes.

        A stale or unknown entry_id falls back to whatever entry is active
        now. Returns None when nothing is running.
        """
        entry = db.get_time_entry(entry_id) if entry_id is not None else None
        if entry is None:
            logger.warning("Timer %s not found, checking for an active timer", entry_id)
            entry = self.ensure_only_single_active()
            if entry is None:
                logger.warning("No active timer found to stop")
                return None
            logger.info("Stopping active timer %s instead of %s", entry['id'], entry_id)

        if not entry['is_active']:
            logger.warning("Timer %s is not active", entry['id'])
            return entry

        if round_to is None:
            round_to = rounding_setting()

        now = self.clock()
        duration = elapsed_minutes(entry['start_time'], now)
        rounded = round_duration(duration, round_to)
        logger.debug("Duration %dm rounded to %dm intervals: %dm", duration, round_to, rounded)

        stopped = db.update_time_entry(entry['id'], end_time=now, duration=rounded, is_active=False)
        logger.info("Timer stopped: entry %s, %d minutes", entry['id'], rounded)
        return stopped

    def resume_timer(self, entry_id: int) -> Dict:
        """Make a finished entry the running one again, restarting its clock."""
        entry = db.get_time_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Time entry {entry_id} not found")
        if entry['is_invoiced']:
            raise ValidationError("Cannot resume an invoiced time entry")
        if entry['is_active']:
            return entry

        now = self.clock()
        for active in db.get_time_entries(is_active=True):
            self._finalize(active, now)

        resumed = db.update_time_entry(
            entry_id,
            is_active=True,
            start_time=now,
            end_time=None,
            duration=0
        )
        logger.info("Timer resumed: entry %s", entry_id)
        return resumed

    def ensure_only_single_active(self) -> Optional[Dict]:
        """Keep the most recently started active entry, close the others."""
        active = db.get_time_entries(is_active=True)
        if len(active) > 1:
            logger.warning("Found %d active timers, stopping older ones", len(active))
            now = self.clock()
            for entry in active[1:]:
                self._finalize(entry, now)
        return active[0] if active else None

    def get_active_timer(self) -> Optional[Dict]:
        """The running entry with client, project and task, or None."""
        active = self.ensure_only_single_active()
        if active is None:
            return None
        return db.get_time_entry(active['id'])

    def get_elapsed_minutes(self, entry: Optional[Dict] = None) -> int:
        """Minutes the given (or current) timer has been running."""
        if entry is None:
            entry = self.get_active_timer()
        if not entry or not entry['is_active']:
            return 0
        return elapsed_minutes(entry['start_time'], self.clock())


def format_seconds(seconds: int) -> str:
    """Format seconds as HH:MM:SS."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_minutes(minutes: int) -> str:
    """Format minutes as H:MM."""
    return f"{minutes // 60}:{minutes % 60:02d}"


def format_hours(hours: float) -> str:
    """Format hours as X.XX hrs."""
    return f"{hours:.2f} hrs"


def format_currency(amount: float) -> str:
    """Format amount as currency."""
    return f"${amount:,.2f}"
