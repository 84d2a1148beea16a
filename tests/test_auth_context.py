from __future__ import annotations

import asyncio

import pytest
from werkzeug.security import check_password_hash

from quiz_live.core.auth_context import AuthContext, AuthState
from quiz_live.core.backend import BackendError
from quiz_live.core.errors import NotAuthenticated
from quiz_live.core.models import AccountRole


def test_lifecycle_from_sign_up_to_sign_out(backend):
    context = AuthContext(backend.auth)
    assert context.state is AuthState.UNAUTHENTICATED
    with pytest.raises(NotAuthenticated):
        context.current_user()

    user = asyncio.run(context.sign_up("Prof@Example.com", "secret", AccountRole.PROFESSOR, "Pat Prof"))

    assert context.state is AuthState.AUTHENTICATED
    assert context.current_user() is user
    assert user.is_professor
    assert user.email == "prof@example.com"

    asyncio.run(context.sign_out())

    assert context.state is AuthState.SIGNED_OUT
    assert context.access_token is None
    with pytest.raises(NotAuthenticated):
        context.current_user()


def test_sign_up_creates_profile_row(backend):
    asyncio.run(AuthContext(backend.auth).sign_up("s@example.com", "pw", full_name="Sam Student"))

    profiles = backend.rows("profiles")
    assert profiles[0]["full_name"] == "Sam Student"
    assert profiles[0]["email"] == "s@example.com"


def test_wrong_password_is_rejected(backend):
    asyncio.run(AuthContext(backend.auth).sign_up("s@example.com", "right"))
    context = AuthContext(backend.auth)

    with pytest.raises(NotAuthenticated, match="Invalid email or password"):
        asyncio.run(context.sign_in("s@example.com", "wrong"))
    assert context.state is AuthState.UNAUTHENTICATED


def test_restore_from_token(backend):
    first = AuthContext(backend.auth)
    user = asyncio.run(first.sign_up("s@example.com", "pw"))

    second = AuthContext(backend.auth)
    restored = asyncio.run(second.restore(first.access_token))

    assert restored.id == user.id
    assert second.state is AuthState.AUTHENTICATED
    assert user.role is AccountRole.STUDENT


def test_restore_after_sign_out_fails(backend):
    first = AuthContext(backend.auth)
    asyncio.run(first.sign_up("s@example.com", "pw"))
    token = first.access_token
    asyncio.run(first.sign_out())

    second = AuthContext(backend.auth)
    assert asyncio.run(second.restore(token)) is None
    assert asyncio.run(second.restore(None)) is None
    assert second.state is AuthState.UNAUTHENTICATED


def test_installed_context_is_process_wide(backend):
    context = AuthContext(backend.auth)
    try:
        AuthContext.install(context)
        assert AuthContext.get() is context
    finally:
        AuthContext.uninstall()
    with pytest.raises(RuntimeError):
        AuthContext.get()


def test_passwords_are_stored_as_werkzeug_hashes(backend):
    asyncio.run(AuthContext(backend.auth).sign_up("s@example.com", "pw"))

    stored_hash, _ = backend.auth._accounts["s@example.com"]
    assert stored_hash != "pw"
    assert check_password_hash(stored_hash, "pw")
    assert not check_password_hash(stored_hash, "other")


def test_failed_remote_sign_out_still_clears_local_state(backend, monkeypatch):
    context = AuthContext(backend.auth)
    asyncio.run(context.sign_up("s@example.com", "pw"))

    async def unavailable(access_token: str) -> None:
        raise BackendError("auth service unavailable")

    monkeypatch.setattr(backend.auth, "sign_out", unavailable)

    with pytest.raises(NotAuthenticated):
        asyncio.run(context.sign_out())
    assert context.state is AuthState.SIGNED_OUT
    assert context.access_token is None
