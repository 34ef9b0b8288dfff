"""
Firestore Data Access Object (DAO) layer.

Services call functions from this module instead of touching the
client directly. Reads return plain dicts carrying an 'id' key; the few
operations that must be atomic go through ``run_in_transaction``.
"""

from datetime import datetime, timezone

from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from doubtdesk.firebase_init import get_db
from doubtdesk import constants as C

SERVER_TIMESTAMP = firestore.SERVER_TIMESTAMP
ArrayUnion = firestore.ArrayUnion
transactional = firestore.transactional


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _doc_to_dict(doc_snapshot):
    """Convert a Firestore DocumentSnapshot to a dict with 'id' field."""
    if not doc_snapshot.exists:
        return None
    d = doc_snapshot.to_dict()
    d['id'] = doc_snapshot.id
    return d


def _query_to_list(query_ref):
    """Run a query and return a list of dicts."""
    return [_doc_to_dict(doc) for doc in query_ref.stream()]


def _now():
    return datetime.now(timezone.utc)


def run_in_transaction(fn, *args, **kwargs):
    """Run ``fn(transaction, *args)`` inside a Firestore transaction.

    Reads made with ``ref.get(transaction=transaction)`` are re-validated at
    commit time; on contention the whole function is re-run by the client.
    """
    transaction = get_db().transaction()
    return transactional(fn)(transaction, *args, **kwargs)


def snapshots_to_list(snapshots):
    """Convert snapshots delivered to an ``on_snapshot`` callback."""
    return [d for d in (_doc_to_dict(s) for s in snapshots) if d is not None]


# ========================================================================
# Users  (collection: users)
# ========================================================================

def user_ref(uid):
    return get_db().collection(C.USERS).document(uid)


def get_user(uid):
    """Get a user document by UID. Returns dict or None."""
    return _doc_to_dict(user_ref(uid).get())


def create_user(uid, data):
    """Create a user document with the given UID as the document ID."""
    data.setdefault('createdAt', _now())
    user_ref(uid).set(data)


def get_users_by_role(role):
    """Get all users holding the given role."""
    return _query_to_list(
        get_db().collection(C.USERS)
        .where(filter=FieldFilter('role', '==', role))
    )


# ========================================================================
# Settings  (collection: settings)
# ========================================================================

def get_global_settings():
    """Return the global settings document, or an empty dict."""
    doc = get_db().collection(C.SETTINGS).document('global').get()
    return _doc_to_dict(doc) or {}


def set_global_settings(data):
    get_db().collection(C.SETTINGS).document('global').set(data, merge=True)


# ========================================================================
# Papers & Topics  (collection: papers, sub-collection: topics)
# ========================================================================

def get_paper(paper_id):
    """Get a paper by ID. Returns dict or None."""
    return _doc_to_dict(get_db().collection(C.PAPERS).document(paper_id).get())


def create_paper(data, paper_id=None):
    data.setdefault('createdAt', _now())
    papers = get_db().collection(C.PAPERS)
    ref = papers.document(paper_id) if paper_id else papers.document()
    ref.set(data)
    return ref.id


def _topics(paper_id):
    return get_db().collection(C.PAPERS).document(paper_id).collection(C.TOPICS_SUB)


def get_topics(paper_id):
    """Get all topics of a paper ordered by name."""
    return _query_to_list(_topics(paper_id).order_by('name'))


def create_topic(paper_id, data):
    """Create a topic under a paper. Returns doc ID."""
    data.setdefault('createdAt', SERVER_TIMESTAMP)
    _, doc_ref = _topics(paper_id).add(data)
    return doc_ref.id


# ========================================================================
# FAQs  (sub-collection: papers/{p}/topics/{t}/faqs)
# ========================================================================

def _faqs(paper_id, topic_id):
    return _topics(paper_id).document(topic_id).collection(C.FAQS_SUB)


def get_faqs(paper_id, topic_id):
    """Get saved FAQs for a topic, newest first."""
    return _query_to_list(
        _faqs(paper_id, topic_id).order_by('provenance.savedAt', direction='DESCENDING')
    )


def create_faq(paper_id, topic_id, data):
    """Create an FAQ entry. Returns doc ID."""
    _, doc_ref = _faqs(paper_id, topic_id).add(data)
    return doc_ref.id


# ========================================================================
# Doubts  (collection: doubts)
# ========================================================================

def doubt_ref(doubt_id):
    return get_db().collection(C.DOUBTS).document(doubt_id)


def get_doubt(doubt_id):
    """Get a doubt by ID. Returns dict or None."""
    return _doc_to_dict(doubt_ref(doubt_id).get())


def create_doubt(data):
    """Create a doubt. Returns the generated doc ID."""
    data.setdefault('createdAt', SERVER_TIMESTAMP)
    _, doc_ref = get_db().collection(C.DOUBTS).add(data)
    return doc_ref.id


def get_doubts_by_student(student_id):
    """Get all doubts raised by a student, newest first."""
    return _query_to_list(
        get_db().collection(C.DOUBTS)
        .where(filter=FieldFilter('studentId', '==', student_id))
        .order_by('createdAt', direction='DESCENDING')
    )


def get_doubts_by_paper(paper_id):
    """Get a paper's doubts ordered by status, then newest first."""
    return _query_to_list(
        get_db().collection(C.DOUBTS)
        .where(filter=FieldFilter('paperId', '==', paper_id))
        .order_by('status')
        .order_by('createdAt', direction='DESCENDING')
    )


def watch_doubt(doubt_id, callback):
    """Subscribe to a doubt document. Returns a watch with unsubscribe()."""
    def on_snapshot(snapshots, changes, read_time):
        for snap in snapshots:
            callback(_doc_to_dict(snap))
    return doubt_ref(doubt_id).on_snapshot(on_snapshot)


# ========================================================================
# Messages  (collections: messages, paperMessages, */messages)
# ========================================================================

def conversation_ref(kind, conversation_id):
    collection = C.SUPPORT_CONVERSATIONS if kind == C.CHAT_SUPPORT else C.CONVERSATIONS
    return get_db().collection(collection).document(conversation_id)


def message_collection(kind, chat_id):
    """Return the collection a message of the given chat kind is written to."""
    if kind == C.CHAT_DOUBT:
        return get_db().collection(C.MESSAGES)
    if kind == C.CHAT_GROUP:
        return get_db().collection(C.PAPER_MESSAGES)
    return conversation_ref(kind, chat_id).collection(C.MESSAGES_SUB)


def message_query(kind, chat_id, topic_id=None):
    """Query for one chat's messages in timestamp order."""
    q = message_collection(kind, chat_id)
    if kind == C.CHAT_DOUBT:
        q = q.where(filter=FieldFilter('doubtId', '==', chat_id))
    elif kind == C.CHAT_GROUP:
        q = (
            q.where(filter=FieldFilter('paperId', '==', chat_id))
            .where(filter=FieldFilter('topicId', '==', topic_id or C.DEFAULT_GROUP_TOPIC))
        )
    return q.order_by('timestamp')


def add_message(kind, chat_id, data):
    """Write one message. Returns the generated doc ID."""
    _, doc_ref = message_collection(kind, chat_id).add(data)
    return doc_ref.id


def get_messages(kind, chat_id, topic_id=None, limit=None):
    q = message_query(kind, chat_id, topic_id)
    if limit:
        q = q.limit_to_last(limit)
        return [_doc_to_dict(doc) for doc in q.get()]
    return _query_to_list(q)


def watch_messages(kind, chat_id, callback, topic_id=None):
    """Subscribe to a chat. ``callback`` receives the full ordered list."""
    def on_snapshot(snapshots, changes, read_time):
        callback(snapshots_to_list(snapshots))
    return message_query(kind, chat_id, topic_id).on_snapshot(on_snapshot)


def mark_messages_seen(kind, chat_id, message_ids, uid):
    """Add ``uid`` to seenBy on each message. seenBy only ever grows."""
    collection = message_collection(kind, chat_id)
    batch = get_db().batch()
    count = 0
    for message_id in message_ids:
        batch.update(collection.document(message_id), {'seenBy': ArrayUnion([uid])})
        count += 1
        # Firestore batches are limited to 500 writes
        if count % 500 == 0:
            batch.commit()
            batch = get_db().batch()
    if count % 500 != 0:
        batch.commit()
    return count


# ========================================================================
# Conversations  (collections: conversations, supportConversations)
# ========================================================================

def get_conversation(kind, conversation_id):
    return _doc_to_dict(conversation_ref(kind, conversation_id).get())


def merge_conversation(kind, conversation_id, data):
    """Create or merge fields into a conversation document.

    Each given top-level field is replaced whole, so a new ``lastMessage``
    never keeps keys left over from the previous one.
    """
    conversation_ref(kind, conversation_id).set(data, merge=list(data))


def get_conversations_for_user(uid):
    """DM conversations containing ``uid``, most recently updated first."""
    return _query_to_list(
        get_db().collection(C.CONVERSATIONS)
        .where(filter=FieldFilter('participants', 'array_contains', uid))
        .order_by('updatedAt', direction='DESCENDING')
    )


def get_support_conversations(team_id=None, student_id=None):
    """Support conversations for a team or for a student, newest first."""
    q = get_db().collection(C.SUPPORT_CONVERSATIONS)
    if team_id:
        q = q.where(filter=FieldFilter('teamId', '==', team_id))
    if student_id:
        q = q.where(filter=FieldFilter('studentId', '==', student_id))
    return _query_to_list(q.order_by('updatedAt', direction='DESCENDING'))


# ========================================================================
# Ratings & Warnings  (collections: ratings, warnings)
# ========================================================================

def new_rating_ref():
    return get_db().collection(C.RATINGS).document()


def get_ratings_by_doubt(doubt_id):
    return _query_to_list(
        get_db().collection(C.RATINGS)
        .where(filter=FieldFilter('doubtId', '==', doubt_id))
    )


def get_warnings():
    """SLA breach warnings, newest first."""
    return _query_to_list(
        get_db().collection(C.WARNINGS)
        .order_by('breachedAt', direction='DESCENDING')
    )


# ========================================================================
# Polls  (collection: polls)
# ========================================================================

def poll_ref(poll_id=None):
    polls = get_db().collection(C.POLLS)
    return polls.document(poll_id) if poll_id else polls.document()


def get_poll(poll_id):
    return _doc_to_dict(poll_ref(poll_id).get())
