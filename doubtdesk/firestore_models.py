"""
Firestore document models using Python dataclasses.

Each model includes:
  - An `id` field for the Firestore document ID
  - A `to_dict()` instance method for serialization (camelCase keys, as
    stored by the mobile client)
  - A `from_dict(data, doc_id)` classmethod where the services read the
    document back

Datetime fields are kept as native datetime objects since Firestore
handles them natively. Fields that the backend stamps (message timestamps,
`updatedAt`) may hold the SERVER_TIMESTAMP sentinel until written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from doubtdesk.constants import (
    STATUS_UNASSIGNED, STATUS_ASSIGNED, STATUS_RESOLVED, MSG_TEXT,
)


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------

def _parse_datetime(value) -> Optional[datetime]:
    """Convert a value to datetime. Accepts datetime objects, ISO-format
    strings, epoch milliseconds and Firestore DatetimeWithNanoseconds."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        value = value.replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(value)
        except (ValueError, TypeError):
            return None
    return None


# ===========================================================================
# Messages
# ===========================================================================

@dataclass
class Message:
    id: Optional[str] = None
    sender_id: str = ""
    content: str = ""
    message_type: str = MSG_TEXT
    timestamp: Any = None
    seen_by: List[str] = field(default_factory=list)
    file_name: Optional[str] = None
    poll_id: Optional[str] = None
    doubt_id: Optional[str] = None
    paper_id: Optional[str] = None
    topic_id: Optional[str] = None
    is_forwarded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "senderId": self.sender_id,
            "content": self.content,
            "messageType": self.message_type,
            "timestamp": self.timestamp,
            "seenBy": list(self.seen_by),
        }
        # Optional keys are only written when present
        optional = {
            "fileName": self.file_name,
            "pollId": self.poll_id,
            "doubtId": self.doubt_id,
            "paperId": self.paper_id,
            "topicId": self.topic_id,
        }
        data.update({k: v for k, v in optional.items() if v})
        if self.is_forwarded:
            data["isForwarded"] = True
        return data


# ===========================================================================
# Conversations (DM / Support)
# ===========================================================================

@dataclass
class Conversation:
    id: Optional[str] = None
    participants: List[str] = field(default_factory=list)
    student_id: Optional[str] = None
    team_id: Optional[str] = None
    last_message: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def other_participant(self, uid: str) -> Optional[str]:
        for p in self.participants:
            if p != uid:
                return p
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Conversation:
        return cls(
            id=doc_id,
            participants=list(data.get("participants") or []),
            student_id=data.get("studentId"),
            team_id=data.get("teamId"),
            last_message=data.get("lastMessage"),
            created_at=_parse_datetime(data.get("createdAt")),
            updated_at=_parse_datetime(data.get("updatedAt")),
        )


# ===========================================================================
# Doubts
# ===========================================================================

@dataclass
class Doubt:
    id: Optional[str] = None
    title: str = ""
    paper_id: str = ""
    student_id: str = ""
    status: str = STATUS_UNASSIGNED
    assigned_faculty_id: Optional[str] = None
    created_at: Optional[datetime] = None
    sla_deadline: Optional[datetime] = None
    rated: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    image_url: Optional[str] = None
    has_screenshot: bool = False

    @property
    def is_unassigned(self) -> bool:
        return self.status == STATUS_UNASSIGNED

    @property
    def is_assigned(self) -> bool:
        return self.status in (STATUS_ASSIGNED, STATUS_RESOLVED)

    @property
    def is_resolved(self) -> bool:
        return self.status == STATUS_RESOLVED

    @property
    def can_be_rated(self) -> bool:
        return self.is_resolved and not self.rated and bool(self.assigned_faculty_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "paperId": self.paper_id,
            "studentId": self.student_id,
            "status": self.status,
            "assignedFacultyId": self.assigned_faculty_id,
            "createdAt": self.created_at,
            "slaDeadline": self.sla_deadline,
            "rated": self.rated,
            "imageUrl": self.image_url,
            "hasScreenshot": self.has_screenshot,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Doubt:
        return cls(
            id=doc_id or data.get("id"),
            title=data.get("title", ""),
            paper_id=data.get("paperId", ""),
            student_id=data.get("studentId", ""),
            status=data.get("status", STATUS_UNASSIGNED),
            assigned_faculty_id=data.get("assignedFacultyId"),
            created_at=_parse_datetime(data.get("createdAt")),
            sla_deadline=_parse_datetime(data.get("slaDeadline")),
            rated=bool(data.get("rated", False)),
            resolved_by=data.get("resolvedBy"),
            resolved_at=_parse_datetime(data.get("resolvedAt")),
            image_url=data.get("imageUrl"),
            has_screenshot=bool(data.get("hasScreenshot", False)),
        )


# ===========================================================================
# Ratings
# ===========================================================================

@dataclass
class Rating:
    id: Optional[str] = None
    doubt_id: str = ""
    faculty_id: str = ""
    student_id: str = ""
    paper_id: str = ""
    rating: int = 0
    comment: str = ""
    submitted_at: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "doubtId": self.doubt_id,
            "facultyId": self.faculty_id,
            "studentId": self.student_id,
            "paperId": self.paper_id,
            "rating": self.rating,
            "comment": self.comment,
            "submittedAt": self.submitted_at,
        }


@dataclass
class FacultyRatingStats:
    total_rating: int = 0
    rating_count: int = 0

    @property
    def average_rating(self) -> Optional[float]:
        if self.rating_count > 0:
            return self.total_rating / self.rating_count
        return None

    def add(self, rating: int) -> FacultyRatingStats:
        return FacultyRatingStats(self.total_rating + rating, self.rating_count + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {"totalRating": self.total_rating, "ratingCount": self.rating_count}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FacultyRatingStats:
        return cls(
            total_rating=data.get("totalRating") or 0,
            rating_count=data.get("ratingCount") or 0,
        )


# ===========================================================================
# Presence
# ===========================================================================

@dataclass
class PresenceRecord:
    uid: str = ""
    is_online: bool = False
    last_changed: Optional[datetime] = None

    @classmethod
    def from_dict(cls, uid: str, data: Optional[Dict[str, Any]]) -> PresenceRecord:
        data = data or {}
        return cls(
            uid=uid,
            is_online=bool(data.get("isOnline", False)),
            last_changed=_parse_datetime(data.get("lastChanged", data.get("last_changed"))),
        )


# ===========================================================================
# Polls
# ===========================================================================

@dataclass
class PollOption:
    text: str = ""
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "count": self.count}


@dataclass
class Poll:
    id: Optional[str] = None
    paper_id: str = ""
    topic_id: str = ""
    question: str = ""
    options: List[PollOption] = field(default_factory=list)
    creator_id: str = ""
    voters: List[str] = field(default_factory=list)
    created_at: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paperId": self.paper_id,
            "topicId": self.topic_id,
            "question": self.question,
            "options": [o.to_dict() for o in self.options],
            "creatorId": self.creator_id,
            "voters": list(self.voters),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Poll:
        return cls(
            id=doc_id or data.get("id"),
            paper_id=data.get("paperId", ""),
            topic_id=data.get("topicId", ""),
            question=data.get("question", ""),
            options=[PollOption(o.get("text", ""), o.get("count", 0))
                     for o in data.get("options") or []],
            creator_id=data.get("creatorId", ""),
            voters=list(data.get("voters") or []),
            created_at=_parse_datetime(data.get("createdAt")),
        )


# ===========================================================================
# FAQs
# ===========================================================================

@dataclass
class Faq:
    id: Optional[str] = None
    question_text: str = ""
    answer_text: str = ""
    question_media_url: Optional[str] = None
    answer_media_url: Optional[str] = None
    answer_media_type: Optional[str] = None
    saved_by_id: str = ""
    saved_at: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionText": self.question_text,
            "answerText": self.answer_text,
            "questionMediaUrl": self.question_media_url,
            "answerMediaUrl": self.answer_media_url,
            "answerMediaType": self.answer_media_type,
            "provenance": {
                "savedById": self.saved_by_id,
                "savedAt": self.saved_at,
            },
        }
