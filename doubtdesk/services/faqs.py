"""Topics and FAQ capture for paper group chats."""

import logging

from doubtdesk import constants as C
from doubtdesk import firestore_dao as dao
from doubtdesk.errors import (
    PermissionDenied, NotFound, ValidationError, BackendUnavailable, BACKEND_ERRORS,
)
from doubtdesk.firestore_models import Faq
from doubtdesk.services import messaging

logger = logging.getLogger(__name__)

DRAFT_WINDOW = 4
GENERAL_TOPIC = {'id': C.DEFAULT_GROUP_TOPIC, 'name': 'General', 'createdBy': C.SYSTEM_SENDER_ID}


def _require_staff(user, message):
    messaging.require_user(user)
    if not user.is_staff:
        raise PermissionDenied(message)


def _require_paper(paper_id):
    if dao.get_paper(paper_id) is None:
        raise NotFound('Paper not found.')


def list_topics(user, paper_id):
    """The paper's topics by name, preceded by the implicit general topic."""
    messaging.require_user(user)
    topics = [t for t in dao.get_topics(paper_id) if t['id'] != C.DEFAULT_GROUP_TOPIC]
    return [dict(GENERAL_TOPIC)] + topics


def create_topic(user, paper_id, name):
    _require_staff(user, 'Only staff can create topics.')
    name = (name or '').strip()
    if not name:
        raise ValidationError('Please enter a topic name.')
    _require_paper(paper_id)
    try:
        topic_id = dao.create_topic(paper_id, {'name': name, 'createdBy': user.uid})
    except BACKEND_ERRORS as exc:
        logger.exception('Error creating topic in paper %s', paper_id)
        raise BackendUnavailable(f'Failed to create topic: {exc}') from exc
    logger.info('Topic %s (%s) created in paper %s', topic_id, name, paper_id)
    return topic_id


def list_faqs(user, paper_id, topic_id):
    messaging.require_user(user)
    return dao.get_faqs(paper_id, topic_id or C.DEFAULT_GROUP_TOPIC)


def save_faq(user, paper_id, topic_id, question_text, answer_text,
             answer_media_url=None, answer_media_type=C.MSG_TEXT):
    """Save a question/answer pair to a topic's FAQ list. Returns its id."""
    _require_staff(user, 'Only staff can save FAQs.')
    question_text = (question_text or '').strip()
    answer_text = (answer_text or '').strip()
    if not question_text or not answer_text:
        raise ValidationError('Please provide both a Question and an Answer.')

    faq = Faq(
        question_text=question_text,
        answer_text=answer_text,
        answer_media_url=answer_media_url,
        answer_media_type=answer_media_type,
        saved_by_id=user.uid,
        saved_at=dao.SERVER_TIMESTAMP,
    )
    topic_id = topic_id or C.DEFAULT_GROUP_TOPIC
    try:
        faq_id = dao.create_faq(paper_id, topic_id, faq.to_dict())
    except BACKEND_ERRORS as exc:
        logger.exception('Error saving FAQ in %s/%s', paper_id, topic_id)
        raise BackendUnavailable(f'Failed to save FAQ: {exc}') from exc
    logger.info('FAQ %s saved to %s/%s by %s', faq_id, paper_id, topic_id, user.uid)
    return faq_id


def draft_faq_answer(messages, start_index, directory):
    """Build a draft FAQ from the text message at ``start_index``.

    The answer is assembled from up to four following text messages that were
    not posted by the system sender, one ``"{name}: {content}"`` block each.
    Returns ``{'questionText', 'answerText'}`` or None when the message at
    ``start_index`` is not a text message.
    """
    if not 0 <= start_index < len(messages):
        return None
    question = messages[start_index]
    if question.get('messageType') != C.MSG_TEXT:
        return None

    blocks = []
    for message in messages[start_index + 1:start_index + 1 + DRAFT_WINDOW]:
        if message.get('messageType') != C.MSG_TEXT:
            continue
        sender_id = message.get('senderId')
        if sender_id == C.SYSTEM_SENDER_ID:
            continue
        name = directory.display_name(sender_id, sender_id)
        blocks.append(f"{name}: {message.get('content', '')}")

    return {
        'questionText': question.get('content', ''),
        'answerText': '\n\n'.join(blocks).strip(),
    }


def draft_from_chat(user, paper_id, topic_id, message_id, directory):
    """Draft an FAQ from a message in a paper topic chat."""
    _require_staff(user, 'Only staff can save FAQs.')
    messages = messaging.list_messages(user, C.CHAT_GROUP, paper_id, topic_id=topic_id)
    for index, message in enumerate(messages):
        if message['id'] == message_id:
            draft = draft_faq_answer(messages, index, directory)
            if draft is None:
                raise ValidationError('Only text messages can become FAQs.')
            return draft
    raise NotFound('Message not found.')
