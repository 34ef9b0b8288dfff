from flask import Blueprint, jsonify, current_app

from doubtdesk.decorators import auth_required, staff_required, get_current_user
from doubtdesk.forms import DoubtForm, RatingForm, validated
from doubtdesk.services import doubts, ratings

bp = Blueprint('doubts', __name__, url_prefix='/doubts')


@bp.route('', methods=['POST'])
@auth_required
def create_doubt():
    form = validated(DoubtForm)
    doubt_id = doubts.create_doubt(
        get_current_user(), form.paper_id.data, form.title.data,
        form.image_url.data, sla_deadline=form.deadline,
    )
    return jsonify({'id': doubt_id}), 201


@bp.route('/mine')
@auth_required
def my_doubts():
    return jsonify({'doubts': doubts.list_student_doubts(get_current_user())})


@bp.route('/paper/<paper_id>')
@staff_required
def paper_doubts(paper_id):
    rows = doubts.list_paper_doubts(
        get_current_user(), paper_id,
        warning_seconds=current_app.config.get('SLA_WARNING_SECONDS', 300),
    )
    return jsonify({'doubts': rows})


@bp.route('/<doubt_id>')
@auth_required
def doubt_detail(doubt_id):
    user = get_current_user()
    doubt = doubts.get_doubt(user, doubt_id)
    return jsonify({'doubt': doubt, 'ratingPrompt': doubts.rating_prompt(user, doubt)})


@bp.route('/<doubt_id>/resolve', methods=['POST'])
@staff_required
def resolve(doubt_id):
    message_id = doubts.resolve_doubt(get_current_user(), doubt_id)
    return jsonify({'success': True, 'messageId': message_id})


@bp.route('/<doubt_id>/rating', methods=['POST'])
@auth_required
def rate(doubt_id):
    user = get_current_user()
    form = validated(RatingForm)
    rating_id = ratings.submit_rating(
        user, doubt_id,
        faculty_id=form.faculty_id.data,
        student_id=user.uid,
        paper_id=form.paper_id.data or '',
        rating=form.rating.data,
        comment=form.comment.data or '',
    )
    return jsonify({'id': rating_id}), 201
