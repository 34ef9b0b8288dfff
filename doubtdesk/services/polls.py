"""
Group chat polls.

A poll document is written first and then announced in the topic through the
message pipeline as a ``poll`` message that carries the poll id.
"""

import logging

from doubtdesk import constants as C
from doubtdesk import firestore_dao as dao
from doubtdesk.errors import (
    PermissionDenied, NotFound, ValidationError, TransactionConflict,
    BackendUnavailable, BACKEND_ERRORS,
)
from doubtdesk.firestore_models import Poll, PollOption
from doubtdesk.services import messaging

logger = logging.getLogger(__name__)


def announcement(question):
    return f'📊 A new poll has been started: {question}'


def create_poll(user, paper_id, topic_id, question, options):
    """Create a poll in a paper topic and announce it. Returns (poll_id, message_id)."""
    messaging.require_user(user)
    if not user.is_staff:
        raise PermissionDenied('Only staff can start polls.')

    question = (question or '').strip()
    valid_options = [o.strip() for o in options or [] if o and o.strip()]
    if not paper_id or not question or len(valid_options) < C.MIN_POLL_OPTIONS:
        raise ValidationError(
            f'Please enter a question and at least {C.MIN_POLL_OPTIONS} valid options.'
        )

    topic_id = topic_id or C.DEFAULT_GROUP_TOPIC
    poll = Poll(
        paper_id=paper_id,
        topic_id=topic_id,
        question=question,
        options=[PollOption(text) for text in valid_options],
        creator_id=user.uid,
        created_at=dao.SERVER_TIMESTAMP,
    )
    ref = dao.poll_ref()
    try:
        ref.set(poll.to_dict())
    except BACKEND_ERRORS as exc:
        logger.exception('Error creating poll in %s/%s', paper_id, topic_id)
        raise BackendUnavailable(f'Failed to create poll: {exc}') from exc

    message_id = messaging.send_message(
        user, paper_id, C.CHAT_GROUP, announcement(question),
        message_type=C.MSG_POLL, poll_id=ref.id, topic_id=topic_id,
    )
    logger.info('Poll %s started by %s in %s/%s', ref.id, user.uid, paper_id, topic_id)
    return ref.id, message_id


def _vote(transaction, ref, uid, option_index):
    snapshot = ref.get(transaction=transaction)
    if not snapshot.exists:
        raise NotFound('Poll not found.')
    poll = Poll.from_dict(snapshot.to_dict(), snapshot.id)
    if uid in poll.voters:
        raise TransactionConflict('You have already voted in this poll.')
    if not 0 <= option_index < len(poll.options):
        raise ValidationError('That option does not exist.')

    poll.options[option_index].count += 1
    transaction.update(ref, {
        'options': [o.to_dict() for o in poll.options],
        'voters': poll.voters + [uid],
    })
    poll.voters.append(uid)
    return poll


def vote(user, poll_id, option_index):
    """Cast the caller's single vote. Returns the updated poll as a dict."""
    messaging.require_user(user)
    if isinstance(option_index, bool) or not isinstance(option_index, int):
        raise ValidationError('Pick one of the poll options.')
    try:
        poll = dao.run_in_transaction(_vote, dao.poll_ref(poll_id), user.uid, option_index)
    except BACKEND_ERRORS as exc:
        logger.exception('Error voting in poll %s', poll_id)
        raise BackendUnavailable(f'Failed to record vote: {exc}') from exc

    data = poll.to_dict()
    data['id'] = poll.id
    return data


def get_poll(user, poll_id):
    messaging.require_user(user)
    poll = dao.get_poll(poll_id)
    if poll is None:
        raise NotFound('Poll not found.')
    return poll
