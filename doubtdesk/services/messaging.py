"""
Message pipeline.

``send_message`` is the single entry point for posting into any of the four
chat kinds (group, dm, support, doubt). For doubt chats a staff sender's first
post claims an unassigned doubt and announces it with a system message that is
written before the sender's own message. For dm/support chats the parent
conversation's ``lastMessage``/``updatedAt`` summary is merged after the write.
"""

import logging

from doubtdesk import constants as C
from doubtdesk import firestore_dao as dao
from doubtdesk.errors import (
    Unauthenticated, InvalidChatKind, ValidationError, PermissionDenied,
    NotFound, BackendUnavailable, BACKEND_ERRORS,
)
from doubtdesk.firestore_models import Message, Conversation
from doubtdesk.services import doubts

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 30


def require_user(user):
    if user is None or not getattr(user, 'is_authenticated', False) or not user.uid:
        raise Unauthenticated()
    return user


# ---------------------------------------------------------------------------
# Conversation ids
# ---------------------------------------------------------------------------

def direct_conversation_id(uid_a, uid_b):
    """Deterministic id for the unordered pair {uid_a, uid_b}."""
    return '_'.join(sorted([uid_a, uid_b]))


def support_conversation_id(student_id, team_id):
    return f'{student_id}_{team_id}'


def parse_support_conversation_id(conversation_id):
    """Split ``{studentId}_{teamId}``. Team ids may themselves contain '_'."""
    for team_id in C.SUPPORT_TEAMS:
        suffix = f'_{team_id}'
        if conversation_id.endswith(suffix) and len(conversation_id) > len(suffix):
            return conversation_id[:-len(suffix)], team_id
    return None, None


def _dm_participants(uid, conversation_id):
    """The member pair of a DM id, worked out from one known member.

    Uids may contain '_', so the id cannot be split blindly. Returns None when
    ``uid`` is not one of the two members.
    """
    candidates = []
    if conversation_id.startswith(f'{uid}_'):
        candidates.append(conversation_id[len(uid) + 1:])
    if conversation_id.endswith(f'_{uid}'):
        candidates.append(conversation_id[:-(len(uid) + 1)])
    for other in candidates:
        if other and other != uid and direct_conversation_id(uid, other) == conversation_id:
            return sorted([uid, other])
    return None


def _new_conversation_fields(user, chat_kind, chat_id):
    """Identity fields for a conversation's first write; empty once it exists."""
    if dao.get_conversation(chat_kind, chat_id) is not None:
        return {}
    if chat_kind == C.CHAT_DM:
        fields = {'participants': _dm_participants(user.uid, chat_id)}
    else:
        student_id, team_id = parse_support_conversation_id(chat_id)
        fields = {'studentId': student_id, 'teamId': team_id}
    fields['createdAt'] = dao.SERVER_TIMESTAMP
    return fields


# ---------------------------------------------------------------------------
# Access checks
# ---------------------------------------------------------------------------

def check_chat_access(user, chat_kind, chat_id):
    """Raise unless ``user`` may read and post in the chat."""
    if chat_kind not in C.CHAT_KINDS:
        raise InvalidChatKind(f'Invalid chat type provided: {chat_kind!r}')
    if not chat_id:
        raise ValidationError('A chat id is required.')

    if chat_kind == C.CHAT_DOUBT:
        doubt = dao.get_doubt(chat_id)
        if doubt is None:
            raise NotFound('Doubt not found.')
        if not user.is_staff and doubt.get('studentId') != user.uid:
            raise PermissionDenied('This doubt belongs to another student.')

    elif chat_kind == C.CHAT_DM:
        conversation = dao.get_conversation(chat_kind, chat_id)
        if conversation:
            participants = conversation.get('participants') or []
        else:
            participants = _dm_participants(user.uid, chat_id) or []
        if user.uid not in participants:
            raise PermissionDenied('You are not part of this conversation.')

    elif chat_kind == C.CHAT_SUPPORT:
        student_id, team_id = parse_support_conversation_id(chat_id)
        if team_id is None:
            raise ValidationError('Unknown support conversation.')
        if student_id != user.uid and not user.is_staff:
            raise PermissionDenied('You are not part of this conversation.')


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------

def _validate_message(chat_kind, content, message_type, poll_id):
    if chat_kind not in C.CHAT_KINDS:
        raise InvalidChatKind(f'Invalid chat type provided: {chat_kind!r}')
    if message_type not in C.MESSAGE_TYPES:
        raise ValidationError(f'Unknown message type: {message_type!r}')
    if message_type == C.MSG_SYSTEM:
        raise ValidationError('System messages cannot be posted by users.')
    if content is None or not str(content).strip():
        raise ValidationError('Message content is required.')
    if message_type == C.MSG_POLL and not poll_id:
        raise ValidationError('Poll messages must reference a poll.')


def _write(chat_kind, chat_id, message, new_fields=None):
    data = message.to_dict()
    message_id = dao.add_message(chat_kind, chat_id, data)
    if chat_kind in (C.CHAT_DM, C.CHAT_SUPPORT):
        summary = dict(new_fields or {})
        summary['lastMessage'] = dict(data, id=message_id)
        summary['updatedAt'] = dao.SERVER_TIMESTAMP
        dao.merge_conversation(chat_kind, chat_id, summary)
    return message_id


def _announce_assignment(user, doubt_id):
    name = user.display_name or C.DEFAULT_STAFF_NAME
    system_message = Message(
        sender_id=C.SYSTEM_SENDER_ID,
        content=f'{name} has taken this doubt.',
        message_type=C.MSG_SYSTEM,
        timestamp=dao.SERVER_TIMESTAMP,
        doubt_id=doubt_id,
    )
    _write(C.CHAT_DOUBT, doubt_id, system_message)
    logger.info('Doubt %s assigned to %s', doubt_id, user.uid)


def send_message(user, chat_id, chat_kind, content, message_type=C.MSG_TEXT,
                 file_name=None, poll_id=None, topic_id=C.DEFAULT_GROUP_TOPIC):
    """Post a message into a chat. Returns the new message id.

    Args:
        user: the authenticated sender (a UserProfile-like object)
        chat_id: paper id (group), conversation id (dm/support) or doubt id
        chat_kind: 'group', 'dm', 'support' or 'doubt'
        content: message text, or a download URL for media messages
        message_type: one of the user-postable message types
        file_name: original file name for media uploads
        poll_id: poll document id for 'poll' messages
        topic_id: group chat topic, defaults to 'general'
    """
    require_user(user)
    _validate_message(chat_kind, content, message_type, poll_id)

    message = Message(
        sender_id=user.uid,
        content=content,
        message_type=message_type,
        timestamp=dao.SERVER_TIMESTAMP,
        seen_by=[user.uid],
        file_name=file_name,
        poll_id=poll_id,
    )

    new_fields = None
    try:
        check_chat_access(user, chat_kind, chat_id)

        if chat_kind == C.CHAT_DOUBT:
            message.doubt_id = chat_id
            if user.is_staff and doubts.claim_doubt(chat_id, user.uid):
                _announce_assignment(user, chat_id)
        elif chat_kind == C.CHAT_GROUP:
            message.paper_id = chat_id
            message.topic_id = topic_id or C.DEFAULT_GROUP_TOPIC
        else:
            new_fields = _new_conversation_fields(user, chat_kind, chat_id)

        return _write(chat_kind, chat_id, message, new_fields)
    except BACKEND_ERRORS as exc:
        logger.exception('Error sending message to %s/%s', chat_kind, chat_id)
        raise BackendUnavailable(f'Failed to send message: {exc}') from exc


def send_system_message(chat_id, chat_kind, content):
    """Post a message authored by the reserved system sender."""
    if chat_kind not in C.CHAT_KINDS:
        raise InvalidChatKind(f'Invalid chat type provided: {chat_kind!r}')
    message = Message(
        sender_id=C.SYSTEM_SENDER_ID,
        content=content,
        message_type=C.MSG_SYSTEM,
        timestamp=dao.SERVER_TIMESTAMP,
    )
    if chat_kind == C.CHAT_DOUBT:
        message.doubt_id = chat_id
    try:
        return _write(chat_kind, chat_id, message)
    except BACKEND_ERRORS as exc:
        logger.exception('Error sending system message to %s/%s', chat_kind, chat_id)
        raise BackendUnavailable(f'Failed to send message: {exc}') from exc


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def list_messages(user, chat_kind, chat_id, topic_id=None, limit=None):
    """Messages of one chat, oldest first."""
    require_user(user)
    try:
        check_chat_access(user, chat_kind, chat_id)
        return dao.get_messages(chat_kind, chat_id, topic_id=topic_id, limit=limit)
    except BACKEND_ERRORS as exc:
        logger.exception('Error loading messages for %s/%s', chat_kind, chat_id)
        raise BackendUnavailable(f'Failed to load messages: {exc}') from exc


def watch_messages(user, chat_kind, chat_id, callback, topic_id=None):
    """Subscribe to a chat. The returned watch must be unsubscribed by the caller."""
    require_user(user)
    check_chat_access(user, chat_kind, chat_id)
    return dao.watch_messages(chat_kind, chat_id, callback, topic_id=topic_id)


def mark_seen(user, chat_kind, chat_id, message_ids):
    require_user(user)
    check_chat_access(user, chat_kind, chat_id)
    if not message_ids:
        return 0
    try:
        return dao.mark_messages_seen(chat_kind, chat_id, message_ids, user.uid)
    except BACKEND_ERRORS as exc:
        logger.exception('Error marking messages seen in %s/%s', chat_kind, chat_id)
        raise BackendUnavailable(f'Failed to update messages: {exc}') from exc


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

def start_direct_message(user, other_uid):
    """Ensure the DM conversation between ``user`` and ``other_uid`` exists."""
    require_user(user)
    if not other_uid or other_uid == user.uid:
        raise ValidationError('Pick another user to message.')
    if dao.get_user(other_uid) is None:
        raise NotFound('User not found.')

    conversation_id = direct_conversation_id(user.uid, other_uid)
    data = {
        'participants': sorted([user.uid, other_uid]),
        'updatedAt': dao.SERVER_TIMESTAMP,
    }
    if dao.get_conversation(C.CHAT_DM, conversation_id) is None:
        data['createdAt'] = dao.SERVER_TIMESTAMP
    dao.merge_conversation(C.CHAT_DM, conversation_id, data)
    return conversation_id


def start_support_chat(user, team_id):
    """Ensure the student's support conversation with ``team_id`` exists."""
    require_user(user)
    if team_id not in C.SUPPORT_TEAMS:
        raise ValidationError(f'Unknown support team: {team_id!r}')

    conversation_id = support_conversation_id(user.uid, team_id)
    data = {
        'studentId': user.uid,
        'teamId': team_id,
        'updatedAt': dao.SERVER_TIMESTAMP,
    }
    if dao.get_conversation(C.CHAT_SUPPORT, conversation_id) is None:
        data['createdAt'] = dao.SERVER_TIMESTAMP
    dao.merge_conversation(C.CHAT_SUPPORT, conversation_id, data)
    return conversation_id


def message_preview(last_message):
    """One-line preview of a conversation's last message."""
    if not last_message:
        return 'New conversation.'
    if last_message.get('messageType') == C.MSG_TEXT:
        text = last_message.get('content', '')
    else:
        text = f"Sent a {last_message.get('messageType')}"
    if last_message.get('isForwarded'):
        text = f'[Fwd] {text}'
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + '...'
    return text


def list_conversations(user, kind, directory, team_id=None):
    """Conversation list entries with titles and previews, newest first."""
    require_user(user)
    if kind == C.CHAT_DM:
        rows = dao.get_conversations_for_user(user.uid)
    elif kind == C.CHAT_SUPPORT:
        if team_id:
            if team_id not in C.SUPPORT_TEAMS:
                raise ValidationError(f'Unknown support team: {team_id!r}')
            if not user.is_staff:
                raise PermissionDenied('Only staff can view a team queue.')
            rows = dao.get_support_conversations(team_id=team_id)
        else:
            rows = dao.get_support_conversations(student_id=user.uid)
    else:
        raise InvalidChatKind(f'Conversations exist only for dm and support, not {kind!r}')

    entries = []
    for row in rows:
        conversation = Conversation.from_dict(row, row['id'])
        if kind == C.CHAT_DM:
            other_uid = conversation.other_participant(user.uid)
            title = f'Chat with {directory.display_name(other_uid, other_uid or "")}'
        elif team_id:
            title = f'Query from {directory.display_name(conversation.student_id, conversation.student_id or "")}'
        else:
            title = f'Chat with {conversation.team_id.replace("_", " ").title()}'
        entries.append({
            'id': conversation.id,
            'chatTitle': title,
            'lastMessage': message_preview(conversation.last_message),
            'updatedAt': conversation.updated_at,
        })
    return entries
