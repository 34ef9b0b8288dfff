"""
User/Role directory.

Resolves a user id to a typed profile (role, display name, assigned papers).
Every role check in the services goes through the ``UserProfile`` returned
here instead of re-reading claims off the session each time.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class Role(str, Enum):
    STUDENT = 'student'
    FACULTY = 'faculty'
    TECHNICAL_SUPPORT = 'technical_support'
    COORDINATOR = 'coordinator'
    ADMIN = 'admin'
    SUPER_ADMIN = 'superadmin'

    @classmethod
    def parse(cls, value) -> Role:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.STUDENT


STAFF_ROLES = frozenset({
    Role.FACULTY, Role.TECHNICAL_SUPPORT, Role.COORDINATOR,
    Role.ADMIN, Role.SUPER_ADMIN,
})
ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


def display_name_of(data: Dict) -> str:
    for key in ('displayName', 'nickname', 'full_name', 'username'):
        if data.get(key):
            return data[key]
    return ''


@dataclass(frozen=True)
class UserProfile:
    uid: str
    role: Role = Role.STUDENT
    display_name: str = ''
    assigned_papers: Tuple[str, ...] = field(default_factory=tuple)

    is_authenticated = True

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @classmethod
    def from_dict(cls, uid: str, data: Dict, role_claim=None) -> UserProfile:
        return cls(
            uid=uid,
            role=Role.parse(role_claim or data.get('role')),
            display_name=display_name_of(data),
            assigned_papers=tuple(data.get('assignedPapers') or ()),
        )


class RoleDirectory:
    """Cached uid -> UserProfile lookup.

    ``loader`` returns the raw user document dict (or None). Entries expire
    after ``ttl`` seconds; ``invalidate`` drops one entry or the whole cache.
    """

    def __init__(self, loader: Callable[[str], Optional[Dict]], ttl: float = 300):
        self._loader = loader
        self._ttl = ttl
        self._cache: Dict[str, Tuple[float, Optional[UserProfile]]] = {}
        self._lock = threading.Lock()

    def lookup(self, uid: str, role_claim=None) -> Optional[UserProfile]:
        if not uid:
            return None
        now = time.monotonic()
        with self._lock:
            hit = self._cache.get(uid)
        if hit and now - hit[0] < self._ttl:
            profile = hit[1]
        else:
            data = self._loader(uid)
            profile = UserProfile.from_dict(uid, data) if data is not None else None
            with self._lock:
                self._cache[uid] = (now, profile)
        if profile is not None and role_claim and Role.parse(role_claim) != profile.role:
            # A custom claim on the verified token wins over the profile field
            return UserProfile(uid=profile.uid, role=Role.parse(role_claim),
                               display_name=profile.display_name,
                               assigned_papers=profile.assigned_papers)
        return profile

    def display_name(self, uid: str, default: str = '') -> str:
        profile = self.lookup(uid)
        if profile and profile.display_name:
            return profile.display_name
        return default

    def invalidate(self, uid: Optional[str] = None):
        with self._lock:
            if uid is None:
                self._cache.clear()
            else:
                self._cache.pop(uid, None)
