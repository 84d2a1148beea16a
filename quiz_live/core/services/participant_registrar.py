"""Service for adding students to a live session's participant list."""

from __future__ import annotations

import logging

from quiz_live.constants.session_constants import PARTICIPANTS_TABLE
from quiz_live.core.backend import BackendError, DataBackend, UniqueViolation
from quiz_live.core.errors import JoinFailed
from quiz_live.core.models import Participant, ParticipantStatus

logger = logging.getLogger(__name__)


class ParticipantRegistrar:
    """Registers students in a session. Joining twice leaves a single row."""

    def __init__(self, backend: DataBackend) -> None:
        self._backend = backend

    async def join_session(self, session_id: str, student_id: str) -> Participant:
        existing = await self._find(session_id, student_id)
        if existing is not None:
            return existing

        try:
            row = await self._backend.insert(
                PARTICIPANTS_TABLE,
                {
                    "session_id": session_id,
                    "student_id": student_id,
                    "status": ParticipantStatus.WAITING.value,
                },
            )
        except UniqueViolation:
            # Same student joined from another tab between the check and the insert.
            existing = await self._find(session_id, student_id)
            if existing is None:
                raise JoinFailed("Failed to join the quiz session. Please try again.")
            return existing
        except BackendError as exc:
            logger.error("Join failed for student %s in session %s: %s", student_id, session_id, exc.message)
            raise JoinFailed("Failed to join the quiz session. Please try again.") from exc

        logger.info("Student %s joined session %s", student_id, session_id)
        return Participant.from_row(row)

    async def _find(self, session_id: str, student_id: str) -> Participant | None:
        try:
            row = await self._backend.select_one(
                PARTICIPANTS_TABLE, {"session_id": session_id, "student_id": student_id}
            )
        except BackendError as exc:
            raise JoinFailed("Failed to join the quiz session. Please try again.") from exc
        return Participant.from_row(row) if row else None
