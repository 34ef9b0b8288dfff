"""
SLA countdown labels.

``sla_label`` is a pure function of (deadline, now); the ticker only
re-evaluates it once per second for the doubts a client is watching.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

NOT_APPLICABLE = 'N/A'
BREACHED = 'SLA Breached'
WARNING_SECONDS = 300

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def to_millis(value):
    """Epoch milliseconds for a datetime or a millisecond number."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (value - _EPOCH) // _ONE_MS
    return int(value)


def _now_millis():
    return to_millis(datetime.now(timezone.utc))


def remaining_millis(deadline, now=None):
    deadline_ms = to_millis(deadline)
    if deadline_ms is None:
        return None
    now_ms = to_millis(now) if now is not None else _now_millis()
    return deadline_ms - now_ms


def sla_label(deadline, now=None):
    """'N/A', 'SLA Breached' or 'Time Left: MM:SS'.

    Minutes are not wrapped at 60: a deadline two hours out reads
    'Time Left: 120:00'.
    """
    distance = remaining_millis(deadline, now)
    if distance is None:
        return NOT_APPLICABLE
    if distance < 0:
        return BREACHED
    minutes, seconds = divmod(distance // 1000, 60)
    return f'Time Left: {minutes:02d}:{seconds:02d}'


def sla_tone(deadline, now=None, warning_seconds=WARNING_SECONDS):
    """Display tone for a countdown: none, breached, warning or normal."""
    distance = remaining_millis(deadline, now)
    if distance is None:
        return 'none'
    if distance < 0:
        return 'breached'
    if distance < warning_seconds * 1000:
        return 'warning'
    return 'normal'


class SLATicker:
    """Pushes fresh labels for a set of deadlines once per second.

    ``emit`` receives ``{doubt_id: {'label': ..., 'tone': ...}}``. ``sleep``
    must cooperate with the server's async mode (``socketio.sleep``).
    """

    def __init__(self, emit, sleep, interval=1.0, warning_seconds=WARNING_SECONDS):
        self._emit = emit
        self._sleep = sleep
        self._interval = interval
        self._warning_seconds = warning_seconds
        self._deadlines = {}
        self._lock = threading.Lock()
        self._stopped = False

    def watch(self, deadlines):
        """Replace the watched ``{doubt_id: deadline}`` mapping."""
        with self._lock:
            self._deadlines = dict(deadlines)

    def snapshot(self, now=None):
        with self._lock:
            deadlines = dict(self._deadlines)
        return {
            doubt_id: {
                'label': sla_label(deadline, now),
                'tone': sla_tone(deadline, now, self._warning_seconds),
            }
            for doubt_id, deadline in deadlines.items()
        }

    def stop(self):
        self._stopped = True

    @property
    def stopped(self):
        return self._stopped

    def run(self):
        while not self._stopped:
            self._emit(self.snapshot())
            self._sleep(self._interval)
        logger.debug('SLA ticker stopped')
