from flask import Blueprint, jsonify, request

from doubtdesk import constants as C
from doubtdesk.decorators import auth_required, get_current_user, get_role_directory
from doubtdesk.errors import ValidationError
from doubtdesk.forms import MessageForm, validated, json_list
from doubtdesk.services import messaging

bp = Blueprint('chat', __name__, url_prefix='/chat')


@bp.route('/<kind>/<chat_id>/messages', methods=['POST'])
@auth_required
def post_message(kind, chat_id):
    form = validated(MessageForm)
    message_id = messaging.send_message(
        get_current_user(), chat_id, kind,
        content=form.content.data,
        message_type=form.message_type.data or C.MSG_TEXT,
        file_name=form.file_name.data or None,
        poll_id=form.poll_id.data or None,
        topic_id=form.topic_id.data or C.DEFAULT_GROUP_TOPIC,
    )
    return jsonify({'id': message_id}), 201


@bp.route('/<kind>/<chat_id>/messages')
@auth_required
def get_messages(kind, chat_id):
    limit = request.args.get('limit', type=int)
    if limit is not None and limit <= 0:
        raise ValidationError('limit must be positive.')
    messages = messaging.list_messages(
        get_current_user(), kind, chat_id,
        topic_id=request.args.get('topic') or None,
        limit=limit,
    )
    return jsonify({'messages': messages})


@bp.route('/<kind>/<chat_id>/seen', methods=['POST'])
@auth_required
def mark_seen(kind, chat_id):
    count = messaging.mark_seen(get_current_user(), kind, chat_id, json_list('message_ids'))
    return jsonify({'count': count})


@bp.route('/dm/<other_uid>', methods=['POST'])
@auth_required
def start_direct_message(other_uid):
    conversation_id = messaging.start_direct_message(get_current_user(), other_uid)
    return jsonify({'id': conversation_id, 'kind': C.CHAT_DM})


@bp.route('/support/<team_id>', methods=['POST'])
@auth_required
def start_support_chat(team_id):
    conversation_id = messaging.start_support_chat(get_current_user(), team_id)
    return jsonify({'id': conversation_id, 'kind': C.CHAT_SUPPORT})


@bp.route('/conversations')
@auth_required
def conversations():
    entries = messaging.list_conversations(
        get_current_user(),
        request.args.get('type', C.CHAT_DM),
        get_role_directory(),
        team_id=request.args.get('team') or None,
    )
    return jsonify({'conversations': entries})
