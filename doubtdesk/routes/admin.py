from flask import Blueprint, jsonify

from doubtdesk.decorators import role_required, get_current_user, get_role_directory
from doubtdesk.roles import Role
from doubtdesk.services import ratings

bp = Blueprint('admin', __name__, url_prefix='/admin')


@bp.route('/performance')
@role_required(Role.ADMIN, Role.SUPER_ADMIN)
def performance():
    return jsonify(ratings.performance_report(get_current_user(), get_role_directory()))
