import logging
import threading

from flask import request, current_app
from flask_socketio import emit

from doubtdesk import socketio
from doubtdesk.decorators import resolve_user, get_role_directory, get_presence
from doubtdesk.errors import DoubtDeskError, Unauthenticated, ValidationError
from doubtdesk.firestore_models import Doubt
from doubtdesk.services import doubts, messaging
from doubtdesk.services.sla import SLATicker

logger = logging.getLogger(__name__)

# Per-connection state, keyed by Socket.IO session id
_connections = {}   # sid -> (uid, role claim)
_watches = {}       # sid -> {key: firestore watch}
_tickers = {}       # sid -> SLATicker
_lock = threading.Lock()


def _socket_user():
    uid, role_claim = _connections.get(request.sid, (None, None))
    user = get_role_directory().lookup(uid, role_claim) if uid else None
    if user is None:
        raise Unauthenticated()
    return user


def _required(data, key):
    value = (data or {}).get(key)
    if not value:
        raise ValidationError(f'{key} is required.')
    return value


def _add_watch(sid, key, watch):
    with _lock:
        previous = _watches.setdefault(sid, {}).pop(key, None)
        _watches[sid][key] = watch
    if previous is not None:
        previous.unsubscribe()


def _drop_watch(sid, key):
    with _lock:
        watch = _watches.get(sid, {}).pop(key, None)
    if watch is not None:
        watch.unsubscribe()
    return watch is not None


def _stop_ticker(sid):
    with _lock:
        ticker = _tickers.pop(sid, None)
    if ticker is not None:
        ticker.stop()


@socketio.on_error_default
def handle_error(e):
    if isinstance(e, DoubtDeskError):
        emit('error', e.to_dict())
        return
    logger.exception('Unhandled Socket.IO error')
    emit('error', {'error': 'server_error', 'message': 'An unexpected error occurred.'})


@socketio.on('connect')
def handle_connect(auth=None):
    user = resolve_user()
    if not user.is_authenticated:
        logger.info('Rejected unauthenticated socket %s', request.sid)
        return False

    sid = request.sid
    with _lock:
        _connections[sid] = (user.uid, user.role_claim)

    presence = get_presence()
    if presence.activate():
        presence.connected(user.uid, sid)
    emit('connected', {'uid': user.uid, 'role': user.role.value})


@socketio.on('disconnect')
def handle_disconnect(reason=None):
    sid = request.sid
    with _lock:
        uid, _ = _connections.pop(sid, (None, None))
        watches = _watches.pop(sid, {})
    for watch in watches.values():
        watch.unsubscribe()
    _stop_ticker(sid)
    get_presence().disconnected(sid)
    logger.debug('Socket %s for %s closed (%d watches)', sid, uid, len(watches))


# -- chats ------------------------------------------------------------------

def _chat_key(kind, chat_id, topic_id):
    return f'chat:{kind}:{chat_id}:{topic_id or ""}'


@socketio.on('join_chat')
def handle_join_chat(data):
    user = _socket_user()
    kind = _required(data, 'kind')
    chat_id = _required(data, 'chatId')
    topic_id = data.get('topicId')
    sid = request.sid
    key = _chat_key(kind, chat_id, topic_id)

    def on_messages(messages):
        socketio.emit('messages', {
            'kind': kind, 'chatId': chat_id, 'topicId': topic_id, 'messages': messages,
        }, to=sid)

    watch = messaging.watch_messages(user, kind, chat_id, on_messages, topic_id=topic_id)
    _add_watch(sid, key, watch)


@socketio.on('leave_chat')
def handle_leave_chat(data):
    _socket_user()
    key = _chat_key(_required(data, 'kind'), _required(data, 'chatId'), data.get('topicId'))
    _drop_watch(request.sid, key)


# -- doubt status -----------------------------------------------------------

@socketio.on('watch_doubt')
def handle_watch_doubt(data):
    user = _socket_user()
    doubt_id = _required(data, 'doubtId')
    sid = request.sid

    def on_doubt(doubt):
        if doubt is None:
            return
        socketio.emit('doubt_status', doubt, to=sid)
        prompt = doubts.rating_prompt(user, doubt)
        if prompt:
            socketio.emit('rating_prompt', prompt, to=sid)

    _add_watch(sid, f'doubt:{doubt_id}', doubts.watch_doubt(user, doubt_id, on_doubt))


@socketio.on('unwatch_doubt')
def handle_unwatch_doubt(data):
    _socket_user()
    _drop_watch(request.sid, f'doubt:{_required(data, "doubtId")}')


# -- SLA countdowns ---------------------------------------------------------

@socketio.on('watch_sla')
def handle_watch_sla(data):
    user = _socket_user()
    paper_id = _required(data, 'paperId')
    rows = doubts.list_paper_doubts(user, paper_id)
    deadlines = {row['id']: Doubt.from_dict(row).sla_deadline for row in rows}

    sid = request.sid
    _stop_ticker(sid)
    ticker = SLATicker(
        lambda labels: socketio.emit('sla_tick', {'paperId': paper_id, 'labels': labels}, to=sid),
        socketio.sleep,
        warning_seconds=current_app.config.get('SLA_WARNING_SECONDS', 300),
    )
    ticker.watch(deadlines)
    with _lock:
        _tickers[sid] = ticker
    socketio.start_background_task(ticker.run)


@socketio.on('unwatch_sla')
def handle_unwatch_sla(data=None):
    _socket_user()
    _stop_ticker(request.sid)


# -- presence ---------------------------------------------------------------

@socketio.on('presence_lookup')
def handle_presence_lookup(data):
    _socket_user()
    presence = get_presence()
    statuses = {}
    for uid in (data or {}).get('uids') or []:
        record = presence.lookup(uid)
        statuses[uid] = {
            'isOnline': bool(record and record.is_online),
            'lastChanged': record.last_changed.isoformat() if record and record.last_changed else None,
        }
    emit('presence', statuses)
