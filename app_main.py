"""Application entry point for the QuizLive service."""

from __future__ import annotations

import asyncio

from quiz_live.constants.server_constants import DEFAULT_HOST, DEFAULT_PORT
from quiz_live.constants.session_constants import ASSIGN_QUIZ_CODE_RPC, QUESTIONS_TABLE
from quiz_live.core.memory_backend import InMemoryBackend
from quiz_live.server.api_server import run_api_server
from quiz_live.utils.logging_config import configure_logging

_DEMO_PROFESSOR_EMAIL = "professor@example.com"
_DEMO_PROFESSOR_PASSWORD = "professor"


async def seed_demo_quiz(backend: InMemoryBackend) -> str:
    """Create a professor account and a two-question quiz, returning its code."""
    session = await backend.auth.sign_up(
        _DEMO_PROFESSOR_EMAIL,
        _DEMO_PROFESSOR_PASSWORD,
        {"account_type": "professor", "full_name": "Demo Professor"},
    )
    question_ids = []
    for text in ("What is 2 + 2?", "What is the capital of France?"):
        row = await backend.insert(
            QUESTIONS_TABLE,
            {
                "course_id": "demo-course",
                "title": "Demo Quiz",
                "subject": "General",
                "professor_id": session.user.id,
                "question_text": text,
                "quiz_code": None,
            },
        )
        question_ids.append(row["id"])
    return await backend.rpc(ASSIGN_QUIZ_CODE_RPC, {"question_ids": question_ids, "existing_code": None})


def main() -> None:
    """Initialize logging, seed a local backend, and start the API server."""
    logger = configure_logging()
    logger.info("Starting QuizLive with an in-memory backend")

    backend = InMemoryBackend()
    quiz_code = asyncio.run(seed_demo_quiz(backend))
    logger.info("Demo professor %s / %s", _DEMO_PROFESSOR_EMAIL, _DEMO_PROFESSOR_PASSWORD)
    logger.info("Demo quiz code: %s", quiz_code)

    run_api_server(backend, host=DEFAULT_HOST, port=DEFAULT_PORT)


if __name__ == "__main__":
    main()
