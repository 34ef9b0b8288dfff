import logging
import os
import time
from datetime import timedelta

from werkzeug.utils import secure_filename

from doubtdesk.errors import ValidationError, BackendUnavailable, BACKEND_ERRORS
from doubtdesk.firebase_init import get_bucket

logger = logging.getLogger(__name__)

UPLOAD_PREFIXES = ('chat_media', 'doubts', 'faqs')


def blob_path(path_prefix, filename, now_ms=None):
    """Storage path ``{prefix}/{epoch_ms}-{filename}``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f'{path_prefix.strip("/")}/{now_ms}-{filename}'


def upload_file(file_data, destination_path, content_type=None):
    """Upload file bytes to Firebase Storage.

    Args:
        file_data: bytes or file-like object
        destination_path: path in the bucket (e.g. 'chat_media/1700000000000-a.png')
        content_type: MIME type

    Returns:
        The uploaded blob
    """
    bucket = get_bucket()
    blob = bucket.blob(destination_path)
    if content_type:
        blob.content_type = content_type
    if isinstance(file_data, bytes):
        blob.upload_from_string(file_data, content_type=content_type)
    else:
        blob.upload_from_file(file_data, content_type=content_type)
    return blob


def get_signed_url(blob, expiration_minutes=60 * 24 * 7):
    return blob.generate_signed_url(
        version='v4',
        expiration=timedelta(minutes=expiration_minutes),
        method='GET'
    )


def upload_blob(file_data, path_prefix, filename, content_type=None):
    """Upload media for a message, doubt or FAQ and return its download URL.

    The caller passes the returned URL as the message ``content``.
    """
    if path_prefix.split('/', 1)[0] not in UPLOAD_PREFIXES:
        raise ValidationError(f'Uploads are not allowed under {path_prefix!r}.')
    filename = secure_filename(os.path.basename(filename or ''))
    if not filename:
        raise ValidationError('A file name is required.')

    path = blob_path(path_prefix, filename)
    try:
        blob = upload_file(file_data, path, content_type)
        url = get_signed_url(blob)
    except BACKEND_ERRORS as exc:
        logger.exception('Error uploading %s', path)
        raise BackendUnavailable(f'Upload failed: {exc}') from exc
    logger.info('Uploaded %s', path)
    return url
