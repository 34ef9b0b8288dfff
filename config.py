import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


class Config:
    SECRET_KEY = os.environ.get('SESSION_SECRET') or os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None
    # CSRF is enforced in before_request only for cookie-session requests
    WTF_CSRF_CHECK_DEFAULT = False

    FIREBASE_STORAGE_BUCKET = os.environ.get('FIREBASE_STORAGE_BUCKET', '')
    FIREBASE_DATABASE_URL = os.environ.get('FIREBASE_DATABASE_URL', '')
    FIREBASE_WEB_API_KEY = os.environ.get('FIREBASE_WEB_API_KEY', '')
    SKIP_FIREBASE_INIT = False

    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'eventlet')

    SESSION_COOKIE_DAYS = _int_env('SESSION_COOKIE_DAYS', 5)
    ROLE_CACHE_SECONDS = _int_env('ROLE_CACHE_SECONDS', 300)
    SLA_WARNING_SECONDS = _int_env('SLA_WARNING_SECONDS', 300)
    MAX_CONTENT_LENGTH = 25 * 1024 * 1024


class TestConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SKIP_FIREBASE_INIT = True
    SOCKETIO_ASYNC_MODE = 'threading'
    LOG_LEVEL = 'WARNING'
