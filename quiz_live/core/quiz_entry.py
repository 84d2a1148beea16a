"""Facade over the session services used by the student and professor flows."""

from __future__ import annotations

from quiz_live.constants.session_constants import EXAM_URL_TEMPLATE, LOBBY_URL_TEMPLATE
from quiz_live.core.auth_context import AuthContext
from quiz_live.core.backend import DataBackend
from quiz_live.core.errors import NotPermitted
from quiz_live.core.models import AuthUser, QuizSession, SessionHandle
from quiz_live.core.services.exam_launcher import ExamLauncher
from quiz_live.core.services.lobby_watcher import (
    ActiveCallback,
    ErrorCallback,
    LobbyWatcher,
    RosterCallback,
    watch_lobby,
)
from quiz_live.core.services.participant_registrar import ParticipantRegistrar
from quiz_live.core.services.session_resolver import SessionResolver


def lobby_url(handle: SessionHandle) -> str:
    return LOBBY_URL_TEMPLATE.format(session_id=handle.session_id, quiz_code=handle.quiz_code)


def exam_url(session_id: str) -> str:
    return EXAM_URL_TEMPLATE.format(session_id=session_id)


class QuizEntry:
    """Facade for the session services: Resolver, Registrar, Lobby and Launcher."""

    def __init__(self, backend: DataBackend) -> None:
        self._backend = backend
        self._resolver = SessionResolver(backend)
        self._registrar = ParticipantRegistrar(backend)
        self._launcher = ExamLauncher(backend)

    # --- Student flow ---

    async def enter_quiz(self, quiz_code: str, auth: AuthContext | None = None) -> SessionHandle:
        """Resolve the session for ``quiz_code`` and seat the signed-in student in it."""
        user = (auth or AuthContext.get()).current_user()
        if user.is_professor:
            raise NotPermitted("Only students can enter quizzes.")
        handle = await self._resolver.resolve_session(quiz_code, user)
        await self._registrar.join_session(handle.session_id, user.id)
        return handle

    async def open_lobby(
        self,
        session_id: str,
        on_roster_change: RosterCallback,
        on_session_active: ActiveCallback,
        on_error: ErrorCallback | None = None,
    ) -> LobbyWatcher:
        return await watch_lobby(self._backend, session_id, on_roster_change, on_session_active, on_error)

    # --- Professor flow ---

    async def get_session(self, session_id: str) -> QuizSession:
        return await self._launcher.get_session(session_id)

    async def start_exam(self, session_id: str, professor: AuthUser) -> QuizSession:
        return await self._launcher.start_exam(session_id, professor)

    async def end_exam(self, session_id: str, professor: AuthUser) -> QuizSession:
        return await self._launcher.end_exam(session_id, professor)
