import logging

from flask import jsonify
from google.api_core.exceptions import GoogleAPICallError, RetryError

logger = logging.getLogger(__name__)

# Client-library failures that mean the backend could not complete a call
BACKEND_ERRORS = (GoogleAPICallError, RetryError)


class DoubtDeskError(Exception):
    """Base class for failures reported to the immediate caller."""

    status_code = 500
    code = 'error'
    default_message = 'An unexpected error occurred.'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {'error': self.code, 'message': self.message}


class Unauthenticated(DoubtDeskError):
    status_code = 401
    code = 'unauthenticated'
    default_message = 'User not authenticated.'


class PermissionDenied(DoubtDeskError):
    status_code = 403
    code = 'forbidden'
    default_message = 'You do not have permission to do that.'


class NotFound(DoubtDeskError):
    status_code = 404
    code = 'not_found'
    default_message = 'Not found.'


class InvalidChatKind(DoubtDeskError):
    status_code = 400
    code = 'invalid_chat_kind'
    default_message = 'Invalid chat type provided.'


class ValidationError(DoubtDeskError):
    status_code = 400
    code = 'validation_error'
    default_message = 'Invalid input.'


class TransactionConflict(DoubtDeskError):
    """The precondition changed under us; retrying blindly will not help."""

    status_code = 409
    code = 'conflict'
    default_message = 'The record was changed by someone else.'


class BackendUnavailable(DoubtDeskError):
    status_code = 503
    code = 'backend_unavailable'
    default_message = 'The backend could not be reached. Please try again.'


def register_error_handlers(app):
    @app.errorhandler(DoubtDeskError)
    def handle_doubtdesk_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e): return jsonify(error='bad_request', message=str(e)), 400

    @app.errorhandler(401)
    def unauthorized(e): return jsonify(error='unauthenticated', message=str(e)), 401

    @app.errorhandler(403)
    def forbidden(e): return jsonify(error='forbidden', message=str(e)), 403

    @app.errorhandler(404)
    def not_found(e): return jsonify(error='not_found', message=str(e)), 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error('Unhandled server error: %s', e)
        return jsonify(error='server_error', message='An unexpected error occurred.'), 500
