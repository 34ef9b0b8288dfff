"""
In-memory stand-ins for the Firestore client and the Realtime Database.

Only the surface the DAO and the realtime wrapper touch is implemented:
collections and sub-collections, ``where(filter=FieldFilter)``, ``order_by``,
``limit``/``limit_to_last``, server timestamps, ``ArrayUnion``/``Increment``,
batches, snapshot listeners and transactions serialised by one lock.
"""

import copy
import threading
import uuid
from datetime import datetime, timedelta, timezone

from google.api_core.exceptions import NotFound as DocumentMissing, ServiceUnavailable
from google.cloud.firestore import SERVER_TIMESTAMP, ArrayUnion, Increment

_MISSING = object()


def _set_mode(merge):
    # merge=[fields] replaces just those fields; merge=True deep-merges maps
    if isinstance(merge, (list, tuple)):
        return 'fields'
    return 'merge' if merge else 'set'


def _lookup(data, dotted):
    value = data
    for part in dotted.split('.'):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _sort_key(value):
    # Firestore orders null before everything else
    return (0, 0) if value is None else (1, value)


def _matches(data, field_path, op, expected):
    actual = _lookup(data, field_path)
    if actual is _MISSING:
        return False
    if op == '==':
        return actual == expected
    if op == '!=':
        return actual != expected
    if op == '<':
        return actual < expected
    if op == '<=':
        return actual <= expected
    if op == '>':
        return actual > expected
    if op == '>=':
        return actual >= expected
    if op == 'array_contains':
        return isinstance(actual, list) and expected in actual
    if op == 'in':
        return actual in expected
    raise ValueError(f'Unsupported operator {op!r}')


# ---------------------------------------------------------------------------
# Firestore
# ---------------------------------------------------------------------------

class FakeSnapshot:

    def __init__(self, reference, data):
        self.reference = reference
        self._data = data

    @property
    def id(self):
        return self.reference.id

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None

    def get(self, field_path):
        value = _lookup(self._data or {}, field_path)
        return None if value is _MISSING else value


class FakeWatch:

    def __init__(self, db, fire, callback):
        self._db = db
        self._fire = fire
        self._callback = callback
        self._last = _MISSING
        self.active = True

    def check(self):
        if not self.active:
            return
        snapshots, marker = self._fire()
        if marker == self._last:
            return
        self._last = marker
        self._callback(snapshots)

    def unsubscribe(self):
        self.active = False
        self._db._drop_listener(self)


class FakeQuery:

    def __init__(self, db, path, filters=(), orders=(), limit=None, limit_last=None):
        self._db = db
        self._path = path
        self._filters = filters
        self._orders = orders
        self._limit = limit
        self._limit_last = limit_last

    def _copy(self, **changes):
        state = dict(filters=self._filters, orders=self._orders,
                     limit=self._limit, limit_last=self._limit_last)
        state.update(changes)
        return FakeQuery(self._db, self._path, **state)

    def where(self, field_path=None, op_string=None, value=None, *, filter=None):
        if filter is not None:
            field_path, op_string, value = filter.field_path, filter.op_string, filter.value
        return self._copy(filters=self._filters + ((field_path, op_string, value),))

    def order_by(self, field_path, direction='ASCENDING'):
        return self._copy(orders=self._orders + ((field_path, direction),))

    def limit(self, count):
        return self._copy(limit=count, limit_last=None)

    def limit_to_last(self, count):
        return self._copy(limit_last=count, limit=None)

    def _run(self):
        rows = sorted(self._db._children(self._path), key=lambda row: row[0])
        for field_path, op, value in self._filters:
            rows = [r for r in rows if _matches(r[1], field_path, op, value)]
        for field_path, _ in self._orders:
            rows = [r for r in rows if _lookup(r[1], field_path) is not _MISSING]
        for field_path, direction in reversed(self._orders):
            rows.sort(key=lambda r: _sort_key(_lookup(r[1], field_path)),
                      reverse=str(direction).upper() == 'DESCENDING')
        if self._limit is not None:
            rows = rows[:self._limit]
        if self._limit_last is not None:
            rows = rows[-self._limit_last:] if self._limit_last else []
        return [FakeSnapshot(FakeDocument(self._db, f'{self._path}/{doc_id}'), data)
                for doc_id, data in rows]

    def stream(self, transaction=None):
        self._db._check_reads()
        return iter(self._run())

    def get(self, transaction=None):
        return list(self.stream())

    def on_snapshot(self, callback):
        def fire():
            snapshots = self._run()
            return snapshots, [(s.id, s.to_dict()) for s in snapshots]
        return self._db._listen(fire, lambda snaps: callback(snaps, [], self._db.now()))


class FakeCollection(FakeQuery):

    def __init__(self, db, path):
        super().__init__(db, path)

    @property
    def id(self):
        return self._path.rsplit('/', 1)[-1]

    def document(self, document_id=None):
        return FakeDocument(self._db, f'{self._path}/{document_id or uuid.uuid4().hex[:20]}')

    def add(self, data, document_id=None):
        ref = self.document(document_id)
        ref.set(data)
        return self._db.now(), ref


class FakeDocument:

    def __init__(self, db, path):
        self._db = db
        self.path = path

    def __eq__(self, other):
        return isinstance(other, FakeDocument) and other.path == self.path

    def __hash__(self):
        return hash(self.path)

    @property
    def id(self):
        return self.path.rsplit('/', 1)[-1]

    def collection(self, name):
        return FakeCollection(self._db, f'{self.path}/{name}')

    def get(self, transaction=None, field_paths=None):
        self._db._check_reads()
        return FakeSnapshot(self, self._db._read(self.path))

    def set(self, data, merge=False):
        self._db._write(self.path, data, mode=_set_mode(merge))

    def update(self, data):
        self._db._write(self.path, data, mode='update')

    def delete(self):
        self._db._delete(self.path)

    def on_snapshot(self, callback):
        def fire():
            snapshot = FakeSnapshot(self, self._db._read(self.path))
            return [snapshot], snapshot.to_dict()
        return self._db._listen(fire, lambda snaps: callback(snaps, [], self._db.now()))


class _BufferedWrites:

    def __init__(self, db):
        self.db = db
        self._writes = []

    def set(self, reference, data, merge=False):
        self._writes.append((reference.path, data, _set_mode(merge)))

    def update(self, reference, data):
        self._writes.append((reference.path, data, 'update'))

    def commit(self):
        writes, self._writes = self._writes, []
        for path, data, mode in writes:
            self.db._write(path, data, mode=mode, notify=False)
        self.db._notify()
        return writes


class FakeBatch(_BufferedWrites):
    pass


class FakeTransaction(_BufferedWrites):
    pass


def fake_transactional(fn):
    """Drop-in for ``firestore.transactional``: one transaction at a time."""
    def run(transaction, *args, **kwargs):
        with transaction.db.transaction_lock:
            result = fn(transaction, *args, **kwargs)
            transaction.commit()
        return result
    return run


class FakeFirestore:

    def __init__(self):
        self._docs = {}
        self._listeners = []
        self._lock = threading.RLock()
        self._last_time = None
        self.transaction_lock = threading.Lock()
        self.fail_writes = False
        self.fail_reads = False
        self.write_count = 0

    # client surface

    def collection(self, name):
        return FakeCollection(self, name)

    def document(self, path):
        return FakeDocument(self, path)

    def batch(self):
        return FakeBatch(self)

    def transaction(self):
        return FakeTransaction(self)

    # helpers for tests

    def now(self):
        """Strictly increasing server time."""
        with self._lock:
            now = datetime.now(timezone.utc)
            if self._last_time is not None and now <= self._last_time:
                now = self._last_time + timedelta(microseconds=1)
            self._last_time = now
            return now

    def data(self, path):
        return copy.deepcopy(self._read(path))

    def paths(self, prefix=''):
        with self._lock:
            return sorted(p for p in self._docs if p.startswith(prefix))

    # storage

    def _check_reads(self):
        if self.fail_reads:
            raise ServiceUnavailable('Firestore is unavailable')

    def _read(self, path):
        with self._lock:
            data = self._docs.get(path)
            return copy.deepcopy(data) if data is not None else None

    def _children(self, collection_path):
        prefix = collection_path + '/'
        with self._lock:
            return [
                (path[len(prefix):], copy.deepcopy(data))
                for path, data in self._docs.items()
                if path.startswith(prefix) and '/' not in path[len(prefix):]
            ]

    def _resolve(self, value, existing, merge):
        if value is SERVER_TIMESTAMP:
            return self.now()
        if isinstance(value, ArrayUnion):
            items = list(existing) if isinstance(existing, list) else []
            for item in value.values:
                if item not in items:
                    items.append(item)
            return items
        if isinstance(value, Increment):
            base = existing if isinstance(existing, (int, float)) else 0
            return base + value.value
        if isinstance(value, dict):
            target = copy.deepcopy(existing) if merge and isinstance(existing, dict) else {}
            for key, item in value.items():
                target[key] = self._resolve(item, target.get(key), merge)
            return target
        if isinstance(value, list):
            return [self._resolve(item, None, False) for item in value]
        return copy.deepcopy(value)

    def _write(self, path, data, mode='set', notify=True):
        if self.fail_writes:
            raise ServiceUnavailable('Firestore is unavailable')
        with self._lock:
            current = self._docs.get(path)
            if mode == 'update':
                if current is None:
                    raise DocumentMissing(f'No document to update: {path}')
                updated = copy.deepcopy(current)
                for key, value in data.items():
                    parts = key.split('.')
                    target = updated
                    for part in parts[:-1]:
                        if not isinstance(target.get(part), dict):
                            target[part] = {}
                        target = target[part]
                    target[parts[-1]] = self._resolve(value, target.get(parts[-1]), False)
            elif mode == 'fields':
                updated = copy.deepcopy(current) if current is not None else {}
                for key, value in data.items():
                    updated[key] = self._resolve(value, updated.get(key), False)
            elif mode == 'merge':
                updated = self._resolve(data, current, True)
            else:
                updated = self._resolve(data, None, False)
            self._docs[path] = updated
            self.write_count += 1
        if notify:
            self._notify()

    def _delete(self, path):
        with self._lock:
            self._docs.pop(path, None)
        self._notify()

    # listeners

    def _listen(self, fire, callback):
        watch = FakeWatch(self, fire, callback)
        with self._lock:
            self._listeners.append(watch)
        watch.check()
        return watch

    def _drop_listener(self, watch):
        with self._lock:
            if watch in self._listeners:
                self._listeners.remove(watch)

    def _notify(self):
        with self._lock:
            listeners = list(self._listeners)
        for watch in listeners:
            watch.check()


# ---------------------------------------------------------------------------
# Realtime Database
# ---------------------------------------------------------------------------

class FakeEvent:

    def __init__(self, event_type, path, data):
        self.event_type = event_type
        self.path = path
        self.data = data


class FakeListenerRegistration:

    def __init__(self, rtdb, path, callback):
        self._rtdb = rtdb
        self.path = path
        self.callback = callback
        self.closed = False

    def close(self):
        self.closed = True
        self._rtdb._listeners.discard(self)


class FakeReference:

    def __init__(self, rtdb, path):
        self._rtdb = rtdb
        self.path = path.strip('/')

    def set(self, value):
        self._rtdb._set(self.path, value)

    def get(self):
        return self._rtdb._get(self.path)

    def listen(self, callback):
        registration = FakeListenerRegistration(self._rtdb, self.path, callback)
        self._rtdb._listeners.add(registration)
        callback(FakeEvent('put', '/', self.get()))
        return registration


class FakeRealtimeDb:
    """Mimics the ``firebase_admin.db`` module: ``reference(path)``."""

    def __init__(self):
        self._root = {}
        self._listeners = set()
        self._lock = threading.RLock()
        self.writes = []
        self.fail_writes = False

    def reference(self, path='/'):
        return FakeReference(self, path)

    def _resolve(self, value):
        if value == {'.sv': 'timestamp'}:
            return int(datetime.now(timezone.utc).timestamp() * 1000)
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items()}
        return copy.deepcopy(value)

    def _get(self, path):
        with self._lock:
            node = self._root
            for part in filter(None, path.split('/')):
                if not isinstance(node, dict) or part not in node:
                    return None
                node = node[part]
            return copy.deepcopy(node)

    def _set(self, path, value):
        if self.fail_writes:
            raise ServiceUnavailable('Realtime Database is unavailable')
        parts = [p for p in path.split('/') if p]
        with self._lock:
            resolved = self._resolve(value)
            self.writes.append((path, resolved))
            if not parts:
                self._root = resolved or {}
            else:
                node = self._root
                for part in parts[:-1]:
                    if not isinstance(node.get(part), dict):
                        node[part] = {}
                    node = node[part]
                node[parts[-1]] = resolved
            listeners = list(self._listeners)
        for registration in listeners:
            if path.startswith(registration.path) or registration.path.startswith(path):
                registration.callback(FakeEvent('put', '/' + path, resolved))
