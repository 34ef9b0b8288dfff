from flask import Blueprint, jsonify, request

from doubtdesk.decorators import auth_required, staff_required, get_current_user, get_role_directory
from doubtdesk.errors import ValidationError
from doubtdesk.forms import (
    TopicForm, PollForm, VoteForm, FaqForm, FaqDraftForm, validated, json_list,
)
from doubtdesk.services import faqs, polls
from doubtdesk.services.storage import upload_blob

bp = Blueprint('papers', __name__)


# -- topics -----------------------------------------------------------------

@bp.route('/papers/<paper_id>/topics')
@auth_required
def topics(paper_id):
    return jsonify({'topics': faqs.list_topics(get_current_user(), paper_id)})


@bp.route('/papers/<paper_id>/topics', methods=['POST'])
@staff_required
def create_topic(paper_id):
    form = validated(TopicForm)
    topic_id = faqs.create_topic(get_current_user(), paper_id, form.name.data)
    return jsonify({'id': topic_id}), 201


# -- polls ------------------------------------------------------------------

@bp.route('/papers/<paper_id>/polls', methods=['POST'])
@staff_required
def create_poll(paper_id):
    form = validated(PollForm)
    poll_id, message_id = polls.create_poll(
        get_current_user(), paper_id, form.topic_id.data or None,
        form.question.data, json_list('options'),
    )
    return jsonify({'id': poll_id, 'messageId': message_id}), 201


@bp.route('/polls/<poll_id>')
@auth_required
def poll_detail(poll_id):
    return jsonify({'poll': polls.get_poll(get_current_user(), poll_id)})


@bp.route('/polls/<poll_id>/vote', methods=['POST'])
@auth_required
def vote(poll_id):
    form = validated(VoteForm)
    poll = polls.vote(get_current_user(), poll_id, form.option_index.data)
    return jsonify({'poll': poll})


# -- FAQs -------------------------------------------------------------------

@bp.route('/papers/<paper_id>/topics/<topic_id>/faqs')
@auth_required
def list_faqs(paper_id, topic_id):
    return jsonify({'faqs': faqs.list_faqs(get_current_user(), paper_id, topic_id)})


@bp.route('/papers/<paper_id>/topics/<topic_id>/faqs', methods=['POST'])
@staff_required
def save_faq(paper_id, topic_id):
    form = validated(FaqForm)
    faq_id = faqs.save_faq(
        get_current_user(), paper_id, topic_id,
        form.question_text.data, form.answer_text.data,
        answer_media_url=form.answer_media_url.data or None,
        answer_media_type=form.answer_media_type.data or 'text',
    )
    return jsonify({'id': faq_id}), 201


@bp.route('/papers/<paper_id>/topics/<topic_id>/faqs/draft', methods=['POST'])
@staff_required
def draft_faq(paper_id, topic_id):
    form = validated(FaqDraftForm)
    draft = faqs.draft_from_chat(
        get_current_user(), paper_id, topic_id, form.message_id.data, get_role_directory(),
    )
    return jsonify(draft)


# -- uploads ----------------------------------------------------------------

@bp.route('/uploads', methods=['POST'])
@auth_required
def upload():
    file = request.files.get('file')
    if file is None:
        raise ValidationError('Attach a file to upload.')
    prefix = request.form.get('prefix', 'chat_media')
    url = upload_blob(file.stream, prefix, file.filename, content_type=file.mimetype)
    return jsonify({'url': url, 'fileName': file.filename}), 201
