"""
Doubt lifecycle: unassigned -> assigned -> resolved, then rated once.

Assignment only happens through the message pipeline's claim; resolution is
an explicit staff action. Both transitions are guarded inside a Firestore
transaction so that concurrent staff cannot double-claim or re-resolve.
"""

import logging
from datetime import datetime, timezone

from doubtdesk import constants as C
from doubtdesk import firestore_dao as dao
from doubtdesk.errors import (
    Unauthenticated, PermissionDenied, NotFound, ValidationError,
    TransactionConflict, BackendUnavailable, BACKEND_ERRORS,
)
from doubtdesk.firestore_models import Doubt
from doubtdesk.services import messaging, sla

logger = logging.getLogger(__name__)

RESOLVED_MESSAGE = 'This doubt has been marked as resolved.'


def _require_user(user):
    if user is None or not getattr(user, 'is_authenticated', False):
        raise Unauthenticated()


def _require_staff(user, message='Only staff can do that.'):
    _require_user(user)
    if not user.is_staff:
        raise PermissionDenied(message)


def create_doubt(user, paper_id, title, image_url, sla_deadline=None):
    """Record a student's doubt in the unassigned state. Returns its id."""
    _require_user(user)
    if user.is_staff:
        raise PermissionDenied('Only students can raise doubts.')

    title = (title or '').strip()
    if not paper_id or not title:
        raise ValidationError('Please select a paper and enter a doubt title.')
    if not image_url:
        raise ValidationError('Please attach a screenshot for the doubt.')
    if user.assigned_papers and paper_id not in user.assigned_papers:
        raise PermissionDenied('You are not enrolled in this paper.')

    doubt = Doubt(
        title=title,
        paper_id=paper_id,
        student_id=user.uid,
        created_at=dao.SERVER_TIMESTAMP,
        sla_deadline=sla_deadline,
        image_url=image_url,
        has_screenshot=True,
    )
    try:
        doubt_id = dao.create_doubt(doubt.to_dict())
    except BACKEND_ERRORS as exc:
        logger.exception('Error submitting doubt for %s', user.uid)
        raise BackendUnavailable(f'Failed to submit doubt: {exc}') from exc
    logger.info('Doubt %s submitted by %s on paper %s', doubt_id, user.uid, paper_id)
    return doubt_id


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def _claim(transaction, ref, faculty_id):
    snapshot = ref.get(transaction=transaction)
    if not snapshot.exists:
        return False
    if not Doubt.from_dict(snapshot.to_dict()).is_unassigned:
        return False
    transaction.update(ref, {
        'status': C.STATUS_ASSIGNED,
        'assignedFacultyId': faculty_id,
        'assignedAt': dao.SERVER_TIMESTAMP,
    })
    return True


def claim_doubt(doubt_id, faculty_id):
    """Assign an unassigned doubt to ``faculty_id``.

    Returns True only for the caller whose guarded update applied; every
    other concurrent claimant sees the new status and gets False.
    """
    return dao.run_in_transaction(_claim, dao.doubt_ref(doubt_id), faculty_id)


def _resolve(transaction, ref, resolver_id):
    snapshot = ref.get(transaction=transaction)
    if not snapshot.exists:
        raise NotFound('Doubt not found.')
    doubt = Doubt.from_dict(snapshot.to_dict(), snapshot.id)
    if doubt.is_resolved:
        raise TransactionConflict('This doubt has already been resolved.')

    update = {
        'status': C.STATUS_RESOLVED,
        'resolvedBy': resolver_id,
        'resolvedAt': dao.SERVER_TIMESTAMP,
    }
    if not doubt.assigned_faculty_id:
        # Resolving straight from unassigned makes the resolver the owner
        update['assignedFacultyId'] = resolver_id
    transaction.update(ref, update)


def resolve_doubt(user, doubt_id):
    """Mark a doubt resolved and announce it in the doubt's thread."""
    _require_staff(user, 'Only staff can resolve doubts.')
    try:
        dao.run_in_transaction(_resolve, dao.doubt_ref(doubt_id), user.uid)
    except BACKEND_ERRORS as exc:
        logger.exception('Error resolving doubt %s', doubt_id)
        raise BackendUnavailable(f'Failed to mark doubt as resolved: {exc}') from exc

    logger.info('Doubt %s resolved by %s', doubt_id, user.uid)
    return messaging.send_system_message(doubt_id, C.CHAT_DOUBT, RESOLVED_MESSAGE)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_doubt(user, doubt_id):
    _require_user(user)
    doubt = dao.get_doubt(doubt_id)
    if doubt is None:
        raise NotFound('Doubt not found.')
    if not user.is_staff and doubt.get('studentId') != user.uid:
        raise PermissionDenied('This doubt belongs to another student.')
    return doubt


def list_student_doubts(user):
    """The caller's doubts, newest first. Chat opens once a doubt is assigned."""
    _require_user(user)
    rows = dao.get_doubts_by_student(user.uid)
    for row in rows:
        row['isAssigned'] = Doubt.from_dict(row).is_assigned
    return rows


def list_paper_doubts(user, paper_id, now=None, warning_seconds=sla.WARNING_SECONDS):
    """A paper's doubts for staff, grouped by status, each with its SLA label."""
    _require_staff(user, 'Only staff can view a paper queue.')
    now = now or datetime.now(timezone.utc)
    rows = dao.get_doubts_by_paper(paper_id)
    for row in rows:
        deadline = Doubt.from_dict(row).sla_deadline
        row['slaLabel'] = sla.sla_label(deadline, now)
        row['slaTone'] = sla.sla_tone(deadline, now, warning_seconds)
    return rows


def rating_prompt(user, doubt):
    """Rating details for the owning student once the doubt can be rated."""
    if doubt is None or user is None:
        return None
    model = Doubt.from_dict(doubt)
    if user.is_staff or model.student_id != user.uid or not model.can_be_rated:
        return None
    return {
        'doubtId': model.id,
        'facultyId': model.assigned_faculty_id,
        'paperId': model.paper_id,
        'studentId': model.student_id,
    }


def watch_doubt(user, doubt_id, callback):
    """Subscribe to a doubt's status. Returns a watch with unsubscribe()."""
    get_doubt(user, doubt_id)
    return dao.watch_doubt(doubt_id, callback)
