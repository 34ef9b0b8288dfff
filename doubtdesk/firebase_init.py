import os
import logging

import firebase_admin
from firebase_admin import credentials, firestore, storage, auth, db as rtdb

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_FILE = './firebase-service-account.json'

_app = None
_db = None
_bucket = None


def _option(app_config, key):
    value = app_config.get(key, '') if app_config else ''
    return value or os.environ.get(key, '')


def _load_credentials():
    """Service-account file when present, otherwise application default credentials."""
    path = os.environ.get('GOOGLE_APPLICATION_CREDENTIALS', DEFAULT_CREDENTIALS_FILE)
    if os.path.exists(path):
        return credentials.Certificate(path)
    logger.info('No service account at %s, using application default credentials', path)
    return credentials.ApplicationDefault()


def init_firebase(app_config=None):
    """Initialise the default Firebase app once: Firestore, Storage and Realtime Database."""
    global _app, _db, _bucket
    if _app is not None:
        return

    bucket_name = _option(app_config, 'FIREBASE_STORAGE_BUCKET')
    database_url = _option(app_config, 'FIREBASE_DATABASE_URL')
    options = {
        key: value
        for key, value in (('storageBucket', bucket_name), ('databaseURL', database_url))
        if value
    }

    _app = firebase_admin.initialize_app(_load_credentials(), options=options or None)
    _db = firestore.client()
    _bucket = storage.bucket() if bucket_name else None
    logger.info('Firebase initialised (storage=%s, realtime=%s)',
                bool(bucket_name), bool(database_url))


def get_db():
    if _db is None:
        init_firebase()
    return _db


def get_rtdb():
    """Return the Realtime Database module bound to the default app."""
    if _app is None:
        init_firebase()
    return rtdb


def get_bucket():
    if _bucket is None:
        init_firebase()
    return _bucket


def get_auth():
    return auth
