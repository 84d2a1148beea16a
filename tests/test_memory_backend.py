from __future__ import annotations

import asyncio

import pytest

from quiz_live.constants.session_constants import (
    ASSIGN_QUIZ_CODE_RPC,
    PARTICIPANTS_TABLE,
    QUESTIONS_TABLE,
    SESSIONS_TABLE,
)
from quiz_live.core.backend import BackendError, UniqueViolation
from quiz_live.core.models import ChangeType
from quiz_live.core.quiz_code import QuizCodeGenerator, normalize_quiz_code


def test_quiz_code_uniqueness_is_enforced(backend):
    async def scenario():
        await backend.insert(SESSIONS_TABLE, {"quiz_code": "ABC123", "title": "A"})
        await backend.insert(SESSIONS_TABLE, {"quiz_code": "ABC123", "title": "B"})

    with pytest.raises(UniqueViolation) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.columns == ("quiz_code",)
    assert len(backend.rows(SESSIONS_TABLE)) == 1


def test_insert_fills_identity_and_timestamp(backend):
    row = asyncio.run(backend.insert(PARTICIPANTS_TABLE, {"session_id": "S", "student_id": "U"}))

    assert row["id"]
    assert row["joined_at"] is not None


def test_select_one_rejects_multiple_matches(backend):
    async def scenario():
        await backend.insert(QUESTIONS_TABLE, {"quiz_code": "ABC123"})
        await backend.insert(QUESTIONS_TABLE, {"quiz_code": "ABC123"})
        await backend.select_one(QUESTIONS_TABLE, {"quiz_code": "ABC123"})

    with pytest.raises(BackendError):
        asyncio.run(scenario())


def test_select_supports_membership_order_and_limit(backend):
    async def scenario():
        for name, rank in (("c", 3), ("a", 1), ("b", 2), ("d", 4)):
            await backend.insert("letters", {"id": name, "rank": rank})
        return await backend.select("letters", {"id": ["a", "b", "c"]}, order_by="rank", ascending=False, limit=2)

    rows = asyncio.run(scenario())

    assert [row["id"] for row in rows] == ["c", "b"]


def test_channels_receive_filtered_events_in_commit_order(backend):
    events = []

    async def scenario():
        channel = backend.channel("watch").on(
            PARTICIPANTS_TABLE, events.append, filters={"session_id": "S1"}
        )
        await channel.subscribe()
        first = await backend.insert(PARTICIPANTS_TABLE, {"session_id": "S1", "student_id": "A"})
        await backend.insert(PARTICIPANTS_TABLE, {"session_id": "S2", "student_id": "B"})
        await backend.update(PARTICIPANTS_TABLE, {"id": first["id"]}, {"status": "active"})
        await backend.delete(PARTICIPANTS_TABLE, {"id": first["id"]})
        await backend.remove_channel(channel)
        await backend.insert(PARTICIPANTS_TABLE, {"session_id": "S1", "student_id": "C"})

    asyncio.run(scenario())

    assert [event.change_type for event in events] == [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
    assert events[1].old_row.get("status") is None
    assert events[1].new_row["status"] == "active"


def test_event_type_filter(backend):
    events = []

    async def scenario():
        await backend.channel("updates").on(SESSIONS_TABLE, events.append, events=("UPDATE",)).subscribe()
        row = await backend.insert(SESSIONS_TABLE, {"quiz_code": "X", "status": "waiting"})
        await backend.update(SESSIONS_TABLE, {"id": row["id"]}, {"status": "active"})

    asyncio.run(scenario())

    assert len(events) == 1
    assert events[0].change_type is ChangeType.UPDATE


def test_injected_failures_fire_once(backend):
    backend.inject_failure("select", QUESTIONS_TABLE)

    with pytest.raises(BackendError):
        asyncio.run(backend.select(QUESTIONS_TABLE))
    assert asyncio.run(backend.select(QUESTIONS_TABLE)) == []


def test_assign_quiz_code_rpc_tags_questions(backend):
    async def scenario():
        q1 = await backend.insert(QUESTIONS_TABLE, {"title": "Quiz", "quiz_code": None})
        q2 = await backend.insert(QUESTIONS_TABLE, {"title": "Quiz", "quiz_code": None})
        code = await backend.rpc(ASSIGN_QUIZ_CODE_RPC, {"question_ids": [q1["id"], q2["id"]], "existing_code": None})
        return code

    code = asyncio.run(scenario())

    assert len(code) == 6
    assert {row["quiz_code"] for row in backend.rows(QUESTIONS_TABLE)} == {code}


def test_unknown_rpc(backend):
    with pytest.raises(BackendError):
        asyncio.run(backend.rpc("does_not_exist"))


def test_normalize_quiz_code():
    assert normalize_quiz_code("  ab12cd ") == "AB12CD"
    assert normalize_quiz_code(None) == ""


def test_code_generator_avoids_taken_codes():
    generator = QuizCodeGenerator(length=1, alphabet="AB")

    assert generator.next_code({"A"}) == "B"
    with pytest.raises(RuntimeError):
        generator.next_code({"A", "B"})
