"""
Presence tracking.

One ``PresenceTracker`` is owned by the app. For every authenticated socket
connection it arms an offline write on disconnect *before* declaring the user
online, so a connection that dies before the online write lands can never
leave the user stuck online. It also mirrors the whole ``status`` tree into a
read cache that is replaced wholesale on every change.

When the global ``presenceEnabled`` setting is off the tracker never writes.
"""

import logging
import threading

from doubtdesk import constants as C
from doubtdesk.firestore_models import PresenceRecord
from doubtdesk.realtime import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)


def _status(is_online):
    return {'isOnline': is_online, 'lastChanged': SERVER_TIMESTAMP}


class PresenceTracker:

    def __init__(self, realtime, settings_loader, root=C.PRESENCE_ROOT):
        self._realtime = realtime
        self._settings_loader = settings_loader
        self._root = root
        self._cache = {}
        self._connections = {}
        self._listener = None
        self._lock = threading.Lock()

    def _path(self, uid):
        return f'{self._root}/{uid}'

    @property
    def enabled(self):
        """Re-read ``presenceEnabled`` so an opt-out applies to the next connection."""
        try:
            settings = self._settings_loader() or {}
        except Exception as e:
            # Presence is optional; a settings failure just turns it off
            logger.warning('Error fetching presence settings: %s', e)
            return False
        return settings.get('presenceEnabled') is True

    # -- lifecycle ----------------------------------------------------------

    def activate(self):
        """Start mirroring the status tree. Returns whether presence is on."""
        if not self.enabled:
            return False
        if self._listener is None:
            self._listener = self._realtime.listen(self._root, self._on_change)
            self.refresh()
        return True

    def close(self):
        """Detach the status subscription and drop the cache."""
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        with self._lock:
            self._cache = {}

    def _on_change(self, event):
        self.refresh()

    def refresh(self):
        statuses = self._realtime.get(self._root) or {}
        fresh = {uid: PresenceRecord.from_dict(uid, data) for uid, data in statuses.items()}
        with self._lock:
            self._cache = fresh

    # -- connections --------------------------------------------------------

    def connected(self, uid, connection_id):
        """Handle a 'connected' signal for ``uid`` on ``connection_id``."""
        if not uid or not self.enabled:
            return False
        path = self._path(uid)
        self._realtime.on_disconnect(connection_id).set(path, _status(False))
        self._realtime.set(path, _status(True))
        with self._lock:
            self._connections[connection_id] = uid
        return True

    def disconnected(self, connection_id):
        """The connection is gone; apply whatever was armed for it."""
        with self._lock:
            uid = self._connections.pop(connection_id, None)
        if uid is None:
            return False
        if not self.enabled:
            # Opted out since the connection was made
            self._realtime.cancel_on_disconnect(connection_id)
            return False
        self._realtime.connection_lost(connection_id)
        return True

    def teardown(self, uid):
        """Explicit logout: write offline now and disarm this user's connections."""
        if not uid or not self.enabled:
            return False
        with self._lock:
            mine = [cid for cid, owner in self._connections.items() if owner == uid]
            for cid in mine:
                del self._connections[cid]
        for cid in mine:
            self._realtime.cancel_on_disconnect(cid)
        self._realtime.set(self._path(uid), _status(False))
        return True

    # -- reads --------------------------------------------------------------

    def lookup(self, uid):
        with self._lock:
            return self._cache.get(uid)

    def is_online(self, uid):
        record = self.lookup(uid)
        return bool(record and record.is_online)

    def snapshot(self):
        with self._lock:
            return dict(self._cache)
