from __future__ import annotations

import pytest

from quiz_live.constants.session_constants import PROFILES_TABLE, QUESTIONS_TABLE
from quiz_live.core.memory_backend import InMemoryBackend
from quiz_live.core.models import AccountRole, AuthUser


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def seed_question(backend):
    async def _seed(
        quiz_code: str | None = "ABC123",
        professor_id: str = "P1",
        course_id: str = "C1",
        title: str = "Midterm",
        subject: str | None = None,
    ) -> dict:
        return await backend.insert(
            QUESTIONS_TABLE,
            {
                "quiz_code": quiz_code,
                "professor_id": professor_id,
                "course_id": course_id,
                "title": title,
                "subject": subject,
                "question_text": "What is 2 + 2?",
            },
        )

    return _seed


@pytest.fixture
def seed_profile(backend):
    async def _seed(user_id: str, full_name: str | None = None, email: str | None = None) -> dict:
        return await backend.insert(PROFILES_TABLE, {"id": user_id, "full_name": full_name, "email": email})

    return _seed


@pytest.fixture
def student() -> AuthUser:
    return AuthUser(id="S1", email="s1@example.com", role=AccountRole.STUDENT, full_name="Sam Student")


@pytest.fixture
def professor() -> AuthUser:
    return AuthUser(id="P1", email="p1@example.com", role=AccountRole.PROFESSOR, full_name="Pat Professor")
