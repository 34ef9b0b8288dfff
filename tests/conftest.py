import pytest

from config import TestConfig
from doubtdesk import create_app, decorators, firebase_init, realtime
from doubtdesk import firestore_dao as dao
from doubtdesk.roles import Role, UserProfile

from tests.fakes import FakeFirestore, FakeRealtimeDb, fake_transactional


@pytest.fixture
def db(monkeypatch):
    fake = FakeFirestore()
    monkeypatch.setattr(firebase_init, '_db', fake)
    monkeypatch.setattr(dao, 'transactional', fake_transactional)
    return fake


@pytest.fixture
def rtdb(monkeypatch):
    fake = FakeRealtimeDb()
    monkeypatch.setattr(realtime, 'get_rtdb', lambda: fake)
    return fake


def _bearer_credentials():
    from flask import request
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None, {}
    return header[len('Bearer '):], {}


@pytest.fixture
def app(db, rtdb, monkeypatch):
    monkeypatch.setattr(decorators, '_decode_credentials', _bearer_credentials)
    app = create_app(TestConfig)
    yield app
    app.extensions['presence'].close()


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(uid):
    return {'Authorization': f'Bearer {uid}'}


def add_user(uid, role, name, **extra):
    data = {'displayName': name, 'role': role.value}
    data.update(extra)
    dao.create_user(uid, data)
    return UserProfile.from_dict(uid, data)


@pytest.fixture
def people(db):
    """A paper with one student, two faculty members, support staff and an admin."""
    dao.create_paper({'name': 'Data Structures'}, paper_id='cs201')
    return {
        'student': add_user('stu1', Role.STUDENT, 'Asha', assignedPapers=['cs201']),
        'other_student': add_user('stu2', Role.STUDENT, 'Ben', assignedPapers=['cs201']),
        'faculty': add_user('fac1', Role.FACULTY, 'Dr. Rao', totalRating=0, ratingCount=0),
        'faculty2': add_user('fac2', Role.FACULTY, 'Dr. Iyer', totalRating=0, ratingCount=0),
        'support': add_user('sup1', Role.TECHNICAL_SUPPORT, 'Tech Desk'),
        'admin': add_user('adm1', Role.ADMIN, 'Admin'),
    }
