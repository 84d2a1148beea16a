from __future__ import annotations

import asyncio

import pytest

from quiz_live.constants.session_constants import PARTICIPANTS_TABLE
from quiz_live.core.backend import BackendError
from quiz_live.core.errors import JoinFailed
from quiz_live.core.models import ParticipantStatus
from quiz_live.core.services.participant_registrar import ParticipantRegistrar


def test_joining_twice_leaves_one_row(backend):
    async def scenario():
        registrar = ParticipantRegistrar(backend)
        first = await registrar.join_session("SESS1", "S1")
        second = await registrar.join_session("SESS1", "S1")
        return first, second

    first, second = asyncio.run(scenario())

    assert first.id == second.id
    rows = [r for r in backend.rows(PARTICIPANTS_TABLE) if r["session_id"] == "SESS1" and r["student_id"] == "S1"]
    assert len(rows) == 1


def test_new_participant_is_waiting_with_join_time(backend):
    participant = asyncio.run(ParticipantRegistrar(backend).join_session("SESS1", "S1"))

    assert participant.status is ParticipantStatus.WAITING
    assert participant.joined_at is not None
    assert participant.session_id == "SESS1"


def test_concurrent_duplicate_joins_are_absorbed(backend):
    async def scenario():
        registrar = ParticipantRegistrar(backend)
        return await asyncio.gather(*(registrar.join_session("SESS1", "S1") for _ in range(5)))

    joined = asyncio.run(scenario())

    assert len({p.id for p in joined}) == 1
    assert len(backend.rows(PARTICIPANTS_TABLE)) == 1


def test_different_students_each_get_a_row(backend):
    async def scenario():
        registrar = ParticipantRegistrar(backend)
        await registrar.join_session("SESS1", "S1")
        await registrar.join_session("SESS1", "S2")
        await registrar.join_session("SESS2", "S1")

    asyncio.run(scenario())

    assert len(backend.rows(PARTICIPANTS_TABLE)) == 3


def test_insert_error_is_reported_as_join_failed(backend):
    backend.inject_failure("insert", PARTICIPANTS_TABLE, BackendError("permission denied"))

    with pytest.raises(JoinFailed):
        asyncio.run(ParticipantRegistrar(backend).join_session("SESS1", "S1"))
    assert backend.rows(PARTICIPANTS_TABLE) == []


def test_join_does_not_retry_after_failure(backend):
    backend.inject_failure("insert", PARTICIPANTS_TABLE)
    registrar = ParticipantRegistrar(backend)

    with pytest.raises(JoinFailed):
        asyncio.run(registrar.join_session("SESS1", "S1"))

    # The next explicit call succeeds; nothing was inserted in between.
    assert backend.rows(PARTICIPANTS_TABLE) == []
    asyncio.run(registrar.join_session("SESS1", "S1"))
    assert len(backend.rows(PARTICIPANTS_TABLE)) == 1
