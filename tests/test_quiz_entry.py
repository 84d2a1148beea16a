from __future__ import annotations

import asyncio

import pytest

from quiz_live.constants.session_constants import PARTICIPANTS_TABLE, SESSIONS_TABLE
from quiz_live.core.auth_context import AuthContext
from quiz_live.core.errors import InvalidCode, NotAuthenticated, NotPermitted
from quiz_live.core.models import AccountRole
from quiz_live.core.quiz_entry import QuizEntry, exam_url, lobby_url


def test_student_enters_and_is_seated_once(backend, seed_question):
    async def scenario():
        await seed_question("ABC123")
        auth = AuthContext(backend.auth)
        await auth.sign_up("s1@example.com", "pw")
        entry = QuizEntry(backend)
        first = await entry.enter_quiz("abc123", auth)
        second = await entry.enter_quiz("ABC123", auth)
        return auth.current_user(), first, second

    user, first, second = asyncio.run(scenario())

    assert first.session_id == second.session_id
    participants = backend.rows(PARTICIPANTS_TABLE)
    assert len(participants) == 1
    assert participants[0]["student_id"] == user.id
    assert lobby_url(first) == f"/dashboard/student/quiz/lobby?session={first.session_id}&code=ABC123"


def test_professors_cannot_enter_quizzes(backend, seed_question):
    async def scenario():
        await seed_question("ABC123")
        auth = AuthContext(backend.auth)
        await auth.sign_up("p@example.com", "pw", AccountRole.PROFESSOR)
        await QuizEntry(backend).enter_quiz("ABC123", auth)

    with pytest.raises(NotPermitted):
        asyncio.run(scenario())
    assert backend.rows(SESSIONS_TABLE) == []


def test_entering_requires_sign_in(backend, seed_question):
    with pytest.raises(NotAuthenticated):
        asyncio.run(QuizEntry(backend).enter_quiz("ABC123", AuthContext(backend.auth)))


def test_uses_installed_context_by_default(backend, seed_question):
    async def scenario():
        await seed_question("ABC123")
        auth = AuthContext.install(AuthContext(backend.auth))
        await auth.sign_up("s1@example.com", "pw")
        return await QuizEntry(backend).enter_quiz("ABC123")

    try:
        handle = asyncio.run(scenario())
    finally:
        AuthContext.uninstall()

    assert handle.quiz_code == "ABC123"


def test_invalid_code_does_not_seat_student(backend):
    async def scenario():
        auth = AuthContext(backend.auth)
        await auth.sign_up("s1@example.com", "pw")
        await QuizEntry(backend).enter_quiz("ZZZZZZ", auth)

    with pytest.raises(InvalidCode):
        asyncio.run(scenario())
    assert backend.rows(PARTICIPANTS_TABLE) == []


def test_full_flow_from_entry_to_exam(backend, seed_question):
    handed_off: list[str] = []

    async def scenario():
        auth = AuthContext(backend.auth)
        professor = await auth.sign_up("p@example.com", "pw", AccountRole.PROFESSOR)
        await seed_question("ABC123", professor_id=professor.id)
        student_auth = AuthContext(backend.auth)
        await student_auth.sign_up("s@example.com", "pw")
        entry = QuizEntry(backend)
        handle = await entry.enter_quiz("ABC123", student_auth)
        watcher = await entry.open_lobby(handle.session_id, lambda roster: None, handed_off.append)
        await entry.start_exam(handle.session_id, professor)
        await watcher.close()
        return handle

    handle = asyncio.run(scenario())

    assert handed_off == [handle.session_id]
    assert exam_url(handle.session_id).endswith(handle.session_id)
