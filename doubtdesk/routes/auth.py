import logging
from datetime import timedelta

import requests as http_requests
from firebase_admin.exceptions import FirebaseError
from flask import Blueprint, jsonify, session, current_app

from doubtdesk.decorators import (
    SESSION_KEY, auth_required, get_current_user, get_role_directory, get_presence,
)
from doubtdesk.errors import Unauthenticated, BackendUnavailable
from doubtdesk.firebase_init import get_auth
from doubtdesk.forms import SessionForm, validated

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__, url_prefix='/auth')

FIREBASE_SIGN_IN_URL = (
    'https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword'
)


def _firebase_sign_in(email, password):
    """Verify email/password via Firebase Auth REST API.

    Returns the ID token on success, or None on failure.
    """
    api_key = current_app.config.get('FIREBASE_WEB_API_KEY')
    if not api_key:
        return None

    try:
        resp = http_requests.post(
            f'{FIREBASE_SIGN_IN_URL}?key={api_key}',
            json={
                'email': email,
                'password': password,
                'returnSecureToken': True,
            },
            timeout=10,
        )
    except http_requests.RequestException as exc:
        logger.exception('Firebase sign-in request failed')
        raise BackendUnavailable(f'Sign-in failed: {exc}') from exc
    if resp.status_code == 200:
        return resp.json().get('idToken')
    return None


@bp.route('/session', methods=['POST'])
def create_session():
    """Exchange an ID token (or email/password) for a session cookie."""
    form = validated(SessionForm)
    id_token = form.id_token.data or _firebase_sign_in(form.email.data, form.password.data)
    if not id_token:
        raise Unauthenticated('Invalid email or password.')

    auth = get_auth()
    try:
        decoded = auth.verify_id_token(id_token)
        expires_in = timedelta(days=current_app.config.get('SESSION_COOKIE_DAYS', 5))
        session_cookie = auth.create_session_cookie(id_token, expires_in=expires_in)
    except (ValueError, FirebaseError) as exc:
        logger.info('Session creation rejected: %s', exc)
        raise Unauthenticated('Invalid credentials.') from exc

    uid = decoded['uid']
    directory = get_role_directory()
    directory.invalidate(uid)
    profile = directory.lookup(uid, decoded.get('role'))
    if profile is None:
        raise Unauthenticated('No profile exists for this account.')

    session[SESSION_KEY] = session_cookie
    logger.info('Session created for %s (%s)', uid, profile.role.value)
    return jsonify({'uid': uid, 'role': profile.role.value, 'displayName': profile.display_name})


@bp.route('/logout', methods=['POST'])
@auth_required
def logout():
    user = get_current_user()
    get_presence().teardown(user.uid)
    get_role_directory().invalidate(user.uid)
    session.pop(SESSION_KEY, None)
    return jsonify({'success': True})


@bp.route('/me')
@auth_required
def me():
    return jsonify(get_current_user().to_dict())
