"""
Faculty rating aggregation.

A rating is accepted once per resolved doubt. The faculty's running totals,
the rating record and the doubt's ``rated`` flag are written in a single
transaction that re-reads the doubt, so a second submission racing the first
sees ``rated == True`` and is rejected.
"""

import logging
import math

from doubtdesk import constants as C
from doubtdesk import firestore_dao as dao
from doubtdesk.errors import (
    Unauthenticated, PermissionDenied, NotFound, ValidationError,
    TransactionConflict, BackendUnavailable, BACKEND_ERRORS,
)
from doubtdesk.firestore_models import Doubt, Rating, FacultyRatingStats
from doubtdesk.roles import Role

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
FULL_STAR = '★'
EMPTY_STAR = '☆'


def validate_rating(rating):
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError('Please select a star rating before submitting.')
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f'Ratings must be between {MIN_RATING} and {MAX_RATING}.')


def _record_rating(transaction, doubt_ref, faculty_ref, rating_ref, record):
    # All reads happen before any write, as Firestore transactions require
    doubt_snap = doubt_ref.get(transaction=transaction)
    faculty_snap = faculty_ref.get(transaction=transaction)

    if not doubt_snap.exists:
        raise NotFound('Doubt not found.')
    doubt = Doubt.from_dict(doubt_snap.to_dict(), doubt_snap.id)
    if doubt.student_id != record.student_id:
        raise PermissionDenied('Only the student who raised the doubt can rate it.')
    if not doubt.is_resolved:
        raise TransactionConflict('Only resolved doubts can be rated.')
    if doubt.rated:
        raise TransactionConflict('This doubt has already been rated.')
    if doubt.assigned_faculty_id != record.faculty_id:
        raise ValidationError('The rating must go to the faculty member who handled the doubt.')
    if record.paper_id and record.paper_id != doubt.paper_id:
        raise ValidationError('The rating does not match the doubt\'s paper.')
    if not faculty_snap.exists:
        raise NotFound('Faculty profile not found.')

    record.paper_id = doubt.paper_id
    stats = FacultyRatingStats.from_dict(faculty_snap.to_dict()).add(record.rating)
    transaction.update(faculty_ref, stats.to_dict())
    transaction.set(rating_ref, record.to_dict())
    transaction.update(doubt_ref, {'rated': True})
    return stats


def submit_rating(user, doubt_id, faculty_id, student_id, paper_id, rating, comment=''):
    """Rate the faculty member who resolved a doubt. Returns the rating id."""
    if user is None or not getattr(user, 'is_authenticated', False):
        raise Unauthenticated()
    if student_id != user.uid:
        raise PermissionDenied('Only the student who raised the doubt can rate it.')
    validate_rating(rating)
    if not doubt_id or not faculty_id:
        raise ValidationError('A doubt and a faculty member are required.')

    record = Rating(
        doubt_id=doubt_id,
        faculty_id=faculty_id,
        student_id=student_id,
        paper_id=paper_id or '',
        rating=rating,
        comment=(comment or '').strip(),
        submitted_at=dao.SERVER_TIMESTAMP,
    )
    rating_ref = dao.new_rating_ref()
    try:
        stats = dao.run_in_transaction(
            _record_rating, dao.doubt_ref(doubt_id), dao.user_ref(faculty_id),
            rating_ref, record,
        )
    except BACKEND_ERRORS as exc:
        logger.exception('Error submitting rating for doubt %s', doubt_id)
        raise BackendUnavailable(f'Failed to submit rating: {exc}') from exc

    logger.info('Doubt %s rated %d for %s (count=%d)',
                doubt_id, rating, faculty_id, stats.rating_count)
    return rating_ref.id


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------

def star_string(average):
    if average is None:
        return EMPTY_STAR * MAX_RATING
    full = min(MAX_RATING, int(math.floor(average)))
    return FULL_STAR * full + EMPTY_STAR * (MAX_RATING - full)


def faculty_summary(faculty):
    stats = FacultyRatingStats.from_dict(faculty)
    average = stats.average_rating
    rounded = round(average, 1) if average is not None else None
    return {
        'id': faculty['id'],
        'displayName': faculty.get('displayName') or faculty.get('full_name', ''),
        'averageRating': f'{rounded:.1f}' if rounded is not None else 'N/A',
        'ratingCount': stats.rating_count,
        'stars': star_string(rounded),
    }


def performance_report(user, directory):
    """Faculty rating summaries plus SLA breach counts per faculty."""
    if user is None or not getattr(user, 'is_authenticated', False):
        raise Unauthenticated()
    if not user.is_admin:
        raise PermissionDenied('Only administrators can view performance.')

    try:
        ratings = [faculty_summary(f) for f in dao.get_users_by_role(Role.FACULTY.value)]
        warnings = dao.get_warnings()
    except BACKEND_ERRORS as exc:
        logger.exception('Error fetching performance data')
        raise BackendUnavailable(f'Failed to load performance data: {exc}') from exc

    breaches = {}
    for warning in warnings:
        faculty_id = warning.get('facultyId')
        if not faculty_id:
            continue
        if faculty_id not in breaches:
            breaches[faculty_id] = {
                'facultyId': faculty_id,
                'displayName': directory.display_name(faculty_id, C.DEFAULT_STAFF_NAME),
                'count': 0,
            }
        breaches[faculty_id]['count'] += 1

    return {'ratings': ratings, 'breaches': list(breaches.values())}
