import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime

import pytz

from clock import SystemClock
from notifier import ExpiryNotifier

logger = logging.getLogger(__name__)

# Default timezone for human-readable times in status payloads
TIMEZONE = pytz.utc


class InvalidConfig(ValueError):
    """Raised for a negative or non-integer duration or dwell time."""


def _non_negative_int(name, value):
    # bool is an int subclass but never a valid duration
    if isinstance(value, bool):
        raise InvalidConfig(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidConfig(f"{name} must be an integer, got {value!r}") from None
    if isinstance(value, float) and value != number:
        raise InvalidConfig(f"{name} must be a whole number, got {value!r}")
    if number < 0:
        raise InvalidConfig(f"{name} must not be negative, got {number}")
    return number


# --- Data Model ---

@dataclass(frozen=True)
class SessionConfig:
    duration_minutes: int
    message: str = ''
    overlay_dwell_seconds: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'duration_minutes',
                           _non_negative_int('duration_minutes', self.duration_minutes))
        object.__setattr__(self, 'overlay_dwell_seconds',
                           _non_negative_int('overlay_dwell_seconds', self.overlay_dwell_seconds))
        object.__setattr__(self, 'message', '' if self.message is None else str(self.message))

    @classmethod
    def from_payload(cls, data, defaults=None):
        """Builds a config from a wire payload, filling gaps from `defaults`."""
        if not isinstance(data, dict):
            raise InvalidConfig("Session payload must be a JSON object.")
        merged = dict(defaults or {})
        merged.update({k: v for k, v in data.items() if v is not None})
        if 'duration_minutes' not in merged:
            raise InvalidConfig("duration_minutes is required")
        return cls(
            duration_minutes=merged['duration_minutes'],
            message=merged.get('message', ''),
            overlay_dwell_seconds=merged.get('overlay_dwell_seconds', 0),
        )


@dataclass(frozen=True)
class SessionRecord:
    session_id: int
    start_time: int
    duration_minutes: int
    message: str
    overlay_dwell_seconds: int

    @property
    def duration_seconds(self):
        return self.duration_minutes * 60

    def remaining_seconds(self, now):
        """Seconds left at `now`, derived from the start timestamp alone."""
        remaining = self.duration_seconds - (now - self.start_time)
        return max(0, min(remaining, self.duration_seconds))

    def overlay_payload(self):
        return {'message': self.message, 'overlay_dwell_seconds': self.overlay_dwell_seconds}

    def to_status(self, now, tz=TIMEZONE):
        ends_at = datetime.fromtimestamp(self.start_time + self.duration_seconds, tz)
        return {
            'duration_minutes': self.duration_minutes,
            'message': self.message,
            'overlay_dwell_seconds': self.overlay_dwell_seconds,
            'start_time_epoch_seconds': self.start_time,
            'remaining_seconds': self.remaining_seconds(now),
            'ends_at': ends_at.strftime("%H:%M:%S"),
            'server_time_of_day': datetime.fromtimestamp(now, tz).strftime("%H:%M:%S"),
        }


# --- Session Authority ---

class SessionAuthority:
    """
    Single owner of the current session record.

    start(), stop() and every branch that clears an expired record share one
    lock, so a start racing an expiring query is never lost and a stop racing
    the expiry trigger cannot both clear the session and show the overlay.
    Overlay delivery happens after the lock is released.
    """

    def __init__(self, clock=None, notifier=None, tz=TIMEZONE):
        self.clock = clock or SystemClock()
        self.notifier = notifier or ExpiryNotifier()
        self.tz = tz
        self._lock = threading.RLock()
        self._record = None
        self._last_expired = None
        self._ids = itertools.count(1)

    # --- Actions ---

    def start(self, config):
        expired = None
        with self._lock:
            now = self.clock.now()
            previous = self._record
            if previous is not None and previous.remaining_seconds(now) == 0:
                expired = self._clear_expired_locked(previous)
                previous = None
            record = SessionRecord(
                session_id=next(self._ids),
                start_time=now,
                duration_minutes=config.duration_minutes,
                message=config.message,
                overlay_dwell_seconds=config.overlay_dwell_seconds,
            )
            self._record = record
            self.notifier.arm(record.session_id, record.duration_seconds, self.expire)
        if expired is not None:
            self._deliver(expired)
        if previous is not None:
            logger.info("Session %s superseded by session %s", previous.session_id, record.session_id)
        logger.info("Session %s started: %s minutes, started at %s",
                    record.session_id, record.duration_minutes, record.start_time)
        return record

    def stop(self):
        """Cancels the current session. Safe to call any number of times."""
        with self._lock:
            record = self._record
            self._record = None
            self._last_expired = None
            self.notifier.disarm()
        if record is None:
            return False
        logger.info("Session %s stopped", record.session_id)
        return True

    def dismiss(self, session_id):
        """Ends the overlay cycle of an expired session; a live session is left running."""
        with self._lock:
            if self._last_expired is None or self._last_expired.session_id != session_id:
                return False
            self._last_expired = None
        logger.info("Overlay for session %s dismissed", session_id)
        return True

    def query(self):
        """Returns the live record, or None once it has run out."""
        return self._observe()[0]

    def expire(self, session_id):
        """Timer entry point; fires only for the session it was armed for."""
        with self._lock:
            record = self._record
            if record is None or record.session_id != session_id:
                logger.debug("Ignoring stale expiry trigger for session %s", session_id)
                return False
            remaining = record.remaining_seconds(self.clock.now())
            if remaining > 0:
                self.notifier.arm(session_id, remaining, self.expire)
                return False
            expired = self._clear_expired_locked(record)
        self._deliver(expired)
        return True

    # --- Readers ---

    def status(self):
        record, now = self._observe()
        if record is None:
            return None
        return record.to_status(now, self.tz)

    def peek_config_for_overlay(self):
        with self._lock:
            if self._last_expired is None:
                return None
            return self._last_expired.overlay_payload()

    @property
    def is_active(self):
        return self.query() is not None

    # --- Helpers ---

    def _observe(self):
        # one clock read decides both liveness and the reported remaining time
        with self._lock:
            now = self.clock.now()
            record = self._record
            if record is None:
                return None, now
            if record.remaining_seconds(now) > 0:
                return record, now
            expired = self._clear_expired_locked(record)
        self._deliver(expired)
        return None, now

    def _clear_expired_locked(self, record):
        self._record = None
        self._last_expired = record
        self.notifier.disarm()
        return record

    def _deliver(self, record):
        logger.info("Session %s expired", record.session_id)
        self.notifier.notify(record)
