"""Service for the professor's controls over a live session's status."""

from __future__ import annotations

import logging

from quiz_live.constants.session_constants import SESSIONS_TABLE
from quiz_live.core.backend import BackendError, DataBackend
from quiz_live.core.errors import InvalidTransition, NotPermitted, SessionFetchError
from quiz_live.core.models import AuthUser, QuizSession, SessionStatus

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[SessionStatus, SessionStatus] = {
    SessionStatus.ACTIVE: SessionStatus.WAITING,
    SessionStatus.ENDED: SessionStatus.ACTIVE,
}


class ExamLauncher:
    """Moves a session from the lobby into the exam, and later ends it.

    Only the status column changes. Every student's lobby watcher observes the
    update through its realtime channel.
    """

    def __init__(self, backend: DataBackend) -> None:
        self._backend = backend

    async def start_exam(self, session_id: str, professor: AuthUser) -> QuizSession:
        return await self._move(session_id, professor, SessionStatus.ACTIVE)

    async def end_exam(self, session_id: str, professor: AuthUser) -> QuizSession:
        return await self._move(session_id, professor, SessionStatus.ENDED)

    async def get_session(self, session_id: str) -> QuizSession:
        try:
            row = await self._backend.select_one(SESSIONS_TABLE, {"id": session_id})
        except BackendError as exc:
            raise SessionFetchError("The quiz session could not be loaded.") from exc
        if row is None:
            raise SessionFetchError("The quiz session does not exist.")
        return QuizSession.from_row(row)

    async def _move(self, session_id: str, professor: AuthUser, target: SessionStatus) -> QuizSession:
        if not professor.is_professor:
            raise NotPermitted("Only professors can control a quiz session.")
        session = await self.get_session(session_id)
        if session.professor_id != professor.id:
            raise NotPermitted("Only the professor who owns this quiz can control it.")

        expected = _ALLOWED_TRANSITIONS[target]
        if session.status is not expected:
            raise InvalidTransition(
                f"Cannot move session from {session.status.value} to {target.value}."
            )

        try:
            updated = await self._backend.update(
                SESSIONS_TABLE,
                {"id": session_id, "status": expected.value},
                {"status": target.value},
            )
        except BackendError as exc:
            raise SessionFetchError("The quiz session could not be updated.") from exc
        if not updated:
            # Someone else moved it between the read and the write.
            raise InvalidTransition(f"Session {session_id} is no longer {expected.value}.")

        logger.info("Session %s moved to %s by %s", session_id, target.value, professor.id)
        return QuizSession.from_row(updated[0])
