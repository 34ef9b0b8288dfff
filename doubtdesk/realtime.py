"""
Realtime Database access.

Wraps ``firebase_admin.db`` references and adds the on-disconnect primitive
the admin SDK lacks: writes registered against a Socket.IO connection id are
applied when that connection is lost, whether it closed cleanly or timed out.
"""

import logging
import threading

from doubtdesk.firebase_init import get_rtdb

logger = logging.getLogger(__name__)

# Resolved by the Realtime Database to its own clock at write time
SERVER_TIMESTAMP = {'.sv': 'timestamp'}


class OnDisconnect:
    """Deferred writes bound to one connection."""

    def __init__(self, store, connection_id):
        self._store = store
        self._connection_id = connection_id

    def set(self, path, value):
        self._store._arm(self._connection_id, path, value)
        return self

    def cancel(self):
        self._store.cancel_on_disconnect(self._connection_id)


class RealtimeStore:

    def __init__(self, db_module=None):
        self._db_module = db_module
        self._pending = {}
        self._lock = threading.Lock()

    @property
    def db(self):
        return self._db_module or get_rtdb()

    def reference(self, path):
        return self.db.reference(path)

    def set(self, path, value):
        self.reference(path).set(value)

    def get(self, path):
        return self.reference(path).get()

    def listen(self, path, callback):
        """Stream changes under ``path``. The returned registration has close()."""
        return self.reference(path).listen(callback)

    # -- on-disconnect ------------------------------------------------------

    def on_disconnect(self, connection_id):
        return OnDisconnect(self, connection_id)

    def _arm(self, connection_id, path, value):
        with self._lock:
            # Re-arming the same path replaces the earlier write
            writes = self._pending.setdefault(connection_id, {})
            writes[path] = value

    def cancel_on_disconnect(self, connection_id):
        with self._lock:
            self._pending.pop(connection_id, None)

    def armed(self, connection_id):
        with self._lock:
            return dict(self._pending.get(connection_id, {}))

    def connection_lost(self, connection_id):
        """Apply every write armed for ``connection_id``. Returns the count."""
        with self._lock:
            writes = self._pending.pop(connection_id, {})
        for path, value in writes.items():
            try:
                self.set(path, value)
            except Exception:
                logger.exception('On-disconnect write to %s failed', path)
        return len(writes)
