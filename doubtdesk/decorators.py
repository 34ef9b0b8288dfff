import logging
from functools import wraps

from firebase_admin.exceptions import FirebaseError
from flask import request, g, session, current_app

from doubtdesk.errors import Unauthenticated, PermissionDenied
from doubtdesk.firebase_init import get_auth
from doubtdesk.roles import Role

logger = logging.getLogger(__name__)

SESSION_KEY = 'firebase_session'


def _decode_credentials():
    """Verify the bearer ID token or the Firebase session cookie.

    Returns ``(uid, claims)``, or ``(None, {})`` when the request carries no
    valid credentials.
    """
    auth = get_auth()
    header = request.headers.get('Authorization', '')
    try:
        if header.startswith('Bearer '):
            decoded = auth.verify_id_token(header[len('Bearer '):], check_revoked=True)
        else:
            session_cookie = session.get(SESSION_KEY)
            if not session_cookie:
                return None, {}
            decoded = auth.verify_session_cookie(session_cookie, check_revoked=True)
    except (ValueError, FirebaseError) as e:
        logger.info('Rejected credentials: %s', e)
        return None, {}
    return decoded['uid'], decoded


def get_role_directory():
    return current_app.extensions['role_directory']


def get_presence():
    return current_app.extensions['presence']


class CurrentUser:
    """Proxy over the caller's UserProfile; unauthenticated when empty."""

    def __init__(self, profile=None, role_claim=None):
        self._profile = profile
        self._role_claim = role_claim

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        if self._profile is None:
            return None
        return getattr(self._profile, name)

    @property
    def role_claim(self):
        """The role custom claim on the verified token, if any."""
        return self._role_claim

    @property
    def is_authenticated(self):
        return self._profile is not None

    @property
    def uid(self):
        return self._profile.uid if self._profile else ''

    @property
    def role(self):
        return self._profile.role if self._profile else None

    @property
    def is_staff(self):
        return bool(self._profile and self._profile.is_staff)

    @property
    def is_admin(self):
        return bool(self._profile and self._profile.is_admin)

    @property
    def display_name(self):
        return self._profile.display_name if self._profile else ''

    @property
    def assigned_papers(self):
        return self._profile.assigned_papers if self._profile else ()

    def to_dict(self):
        if self._profile is None:
            return {'authenticated': False}
        return {
            'authenticated': True,
            'uid': self.uid,
            'role': self.role.value,
            'displayName': self.display_name,
            'isStaff': self.is_staff,
            'assignedPapers': list(self.assigned_papers),
        }


def resolve_user():
    """Build a CurrentUser from the request's credentials."""
    uid, claims = _decode_credentials()
    role_claim = claims.get('role')
    profile = None
    if uid:
        profile = get_role_directory().lookup(uid, role_claim)
        if profile is None:
            logger.warning('Authenticated uid %s has no user profile', uid)
    return CurrentUser(profile, role_claim)


def get_current_user():
    """The request's CurrentUser, resolved once and kept on ``g``."""
    if '_current_user' not in g:
        g._current_user = resolve_user()
    return g._current_user


def load_current_user():
    get_current_user()


def _guard(allowed=None, message=None):
    """Build a view decorator that requires a signed-in user passing ``allowed``."""
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if not user.is_authenticated:
                raise Unauthenticated()
            if allowed is not None and not allowed(user):
                raise PermissionDenied(message)
            g.current_user = user
            return f(*args, **kwargs)
        return decorated
    return decorator


auth_required = _guard()
staff_required = _guard(lambda user: user.is_staff, 'Only staff can do that.')


def role_required(*roles):
    permitted = {Role.parse(r) for r in roles}
    return _guard(lambda user: user.role in permitted)
