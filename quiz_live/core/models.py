"""Domain models for the live quiz session protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    ENDED = "ended"


class ParticipantStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    SUBMITTED = "submitted"


class AccountRole(str, Enum):
    STUDENT = "student"
    PROFESSOR = "professor"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(slots=True)
class QuizSession:
    """One live run of a quiz, shared by every student who enters its code."""

    id: str
    quiz_code: str
    professor_id: str
    course_id: str
    title: str
    subject: str | None = None
    status: SessionStatus = SessionStatus.WAITING
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "QuizSession":
        return cls(
            id=row["id"],
            quiz_code=row["quiz_code"],
            professor_id=row["professor_id"],
            course_id=row["course_id"],
            title=row["title"],
            subject=row.get("subject"),
            status=SessionStatus(row.get("status") or SessionStatus.WAITING.value),
            created_at=row.get("created_at"),
        )


@dataclass(slots=True)
class SessionHandle:
    """What the resolver hands back to the caller after finding or creating a session."""

    session_id: str
    quiz_code: str
    course_id: str
    title: str
    subject: str | None
    professor_id: str
    status: SessionStatus
    created: bool = False

    @classmethod
    def from_session(cls, session: QuizSession, created: bool = False) -> "SessionHandle":
        return cls(
            session_id=session.id,
            quiz_code=session.quiz_code,
            course_id=session.course_id,
            title=session.title,
            subject=session.subject,
            professor_id=session.professor_id,
            status=session.status,
            created=created,
        )


@dataclass(slots=True)
class Participant:
    """A student's membership record within a session."""

    id: str
    session_id: str
    student_id: str
    joined_at: datetime
    status: ParticipantStatus = ParticipantStatus.WAITING

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Participant":
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            student_id=row["student_id"],
            joined_at=row["joined_at"],
            status=ParticipantStatus(row.get("status") or ParticipantStatus.WAITING.value),
        )


@dataclass(slots=True)
class RosterEntry:
    """Participant decorated with the profile fields shown in the lobby."""

    participant_id: str
    student_id: str
    joined_at: datetime
    status: ParticipantStatus
    display_name: str
    email: str
    initials: str


@dataclass(slots=True)
class AuthUser:
    """Authenticated account as reported by the auth provider."""

    id: str
    email: str
    role: AccountRole = AccountRole.STUDENT
    full_name: str | None = None

    @property
    def is_professor(self) -> bool:
        return self.role is AccountRole.PROFESSOR


@dataclass(slots=True)
class ChangeEvent:
    """Realtime notification for a single row change."""

    change_type: ChangeType
    table: str
    new_row: dict[str, Any] = field(default_factory=dict)
    old_row: dict[str, Any] = field(default_factory=dict)
