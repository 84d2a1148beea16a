"""Service that maps a quiz code to its single shared live session."""

from __future__ import annotations

import logging

from quiz_live.constants.session_constants import QUESTIONS_TABLE, SESSIONS_TABLE
from quiz_live.core.backend import BackendError, DataBackend, UniqueViolation
from quiz_live.core.errors import InvalidCode, SessionCreateConflict, SessionResolveFailed
from quiz_live.core.models import AuthUser, QuizSession, SessionHandle, SessionStatus
from quiz_live.core.quiz_code import normalize_quiz_code

logger = logging.getLogger(__name__)


class SessionResolver:
    """Finds the session for a quiz code, creating it on the first student's entry.

    Creation relies on the uniqueness constraint on ``quiz_sessions.quiz_code``:
    when two first-joiners race, the loser's insert is rejected and it re-reads
    the row the winner created.
    """

    def __init__(self, backend: DataBackend) -> None:
        self._backend = backend

    async def resolve_session(self, quiz_code: str, current_user: AuthUser | None = None) -> SessionHandle:
        code = normalize_quiz_code(quiz_code)
        if not code:
            raise InvalidCode(code)

        existing = await self._find_session(code)
        if existing is not None:
            return self._handle_for(existing)

        try:
            session = await self._create_session(code)
        except SessionCreateConflict:
            logger.info("Session for code %s was created concurrently; re-reading it", code)
            existing = await self._find_session(code)
            if existing is None:
                raise SessionResolveFailed(f"Session for quiz code {code} disappeared after a conflict.")
            return self._handle_for(existing)

        logger.info(
            "Created session %s for code %s (first entry by %s)",
            session.id,
            code,
            current_user.id if current_user else "unknown user",
        )
        return SessionHandle.from_session(session, created=True)

    async def _find_session(self, code: str) -> QuizSession | None:
        try:
            row = await self._backend.select_one(SESSIONS_TABLE, {"quiz_code": code})
        except BackendError as exc:
            raise SessionResolveFailed(exc.message) from exc
        return QuizSession.from_row(row) if row else None

    async def _create_session(self, code: str) -> QuizSession:
        try:
            questions = await self._backend.select(QUESTIONS_TABLE, {"quiz_code": code}, limit=1)
        except BackendError as exc:
            logger.error("Quiz code check failed for %s: %s", code, exc.message)
            raise InvalidCode(code) from exc
        if not questions:
            raise InvalidCode(code)

        question = questions[0]
        try:
            row = await self._backend.insert(
                SESSIONS_TABLE,
                {
                    "quiz_code": code,
                    "professor_id": question["professor_id"],
                    "course_id": question["course_id"],
                    "title": question["title"],
                    "subject": question.get("subject"),
                    "status": SessionStatus.WAITING.value,
                },
            )
        except UniqueViolation as exc:
            raise SessionCreateConflict(code) from exc
        except BackendError as exc:
            logger.error("Session creation failed for %s: %s", code, exc.message)
            raise SessionResolveFailed("Failed to create quiz session. Please try again.") from exc
        return QuizSession.from_row(row)

    @staticmethod
    def _handle_for(session: QuizSession) -> SessionHandle:
        if session.status is SessionStatus.ENDED:
            raise InvalidCode(session.quiz_code)
        return SessionHandle.from_session(session)
