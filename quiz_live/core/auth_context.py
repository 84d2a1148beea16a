"""Single place that knows who is signed in.

Flows ask the context for the current user instead of each querying the auth
provider on their own. A process installs one context with
``AuthContext.install`` and reads it back with ``AuthContext.get``; the HTTP
layer builds a short-lived context per request from the caller's token.
"""

from __future__ import annotations

from enum import Enum, auto
import logging
from threading import Lock

from quiz_live.core.backend import AuthProvider, BackendError
from quiz_live.core.errors import NotAuthenticated
from quiz_live.core.models import AccountRole, AuthUser

logger = logging.getLogger(__name__)


class AuthState(Enum):
    UNAUTHENTICATED = auto()
    AUTHENTICATED = auto()
    SIGNED_OUT = auto()


class AuthContext:
    """Lifecycle: UNAUTHENTICATED -> AUTHENTICATED(user) -> SIGNED_OUT."""

    _installed: "AuthContext | None" = None
    _install_lock = Lock()

    def __init__(self, provider: AuthProvider) -> None:
        self._provider = provider
        self._state = AuthState.UNAUTHENTICATED
        self._user: AuthUser | None = None
        self._access_token: str | None = None

    @classmethod
    def install(cls, context: "AuthContext") -> "AuthContext":
        with cls._install_lock:
            cls._installed = context
        return context

    @classmethod
    def get(cls) -> "AuthContext":
        with cls._install_lock:
            if cls._installed is None:
                raise RuntimeError("No auth context has been installed.")
            return cls._installed

    @classmethod
    def uninstall(cls) -> None:
        with cls._install_lock:
            cls._installed = None

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def current_user(self) -> AuthUser:
        if self._state is not AuthState.AUTHENTICATED or self._user is None:
            raise NotAuthenticated("You must be signed in.")
        return self._user

    async def sign_up(
        self,
        email: str,
        password: str,
        role: AccountRole = AccountRole.STUDENT,
        full_name: str | None = None,
    ) -> AuthUser:
        metadata = {"account_type": role.value, "full_name": full_name}
        try:
            session = await self._provider.sign_up(email, password, metadata)
        except BackendError as exc:
            raise NotAuthenticated(exc.message) from exc
        self._enter(session.access_token, session.user)
        return session.user

    async def sign_in(self, email: str, password: str) -> AuthUser:
        try:
            session = await self._provider.sign_in(email, password)
        except BackendError as exc:
            if "Invalid login credentials" in exc.message:
                raise NotAuthenticated(
                    "Invalid email or password. Please check your credentials and try again."
                ) from exc
            raise NotAuthenticated(exc.message) from exc
        self._enter(session.access_token, session.user)
        return session.user

    async def restore(self, access_token: str | None) -> AuthUser | None:
        """Re-establish the signed-in user from a previously issued token."""
        if not access_token:
            return None
        try:
            user = await self._provider.get_user(access_token)
        except BackendError as exc:
            logger.warning("Token lookup failed: %s", exc.message)
            return None
        if user is None:
            return None
        self._enter(access_token, user)
        return user

    async def sign_out(self) -> None:
        """Forget the local session, then report a failed server-side revoke."""
        access_token = self._access_token
        self._user = None
        self._access_token = None
        self._state = AuthState.SIGNED_OUT
        if access_token is None:
            return
        try:
            await self._provider.sign_out(access_token)
        except BackendError as exc:
            logger.warning("Sign out failed: %s", exc.message)
            raise NotAuthenticated("Could not sign out. Please try again.") from exc

    def _enter(self, access_token: str, user: AuthUser) -> None:
        self._access_token = access_token
        self._user = user
        self._state = AuthState.AUTHENTICATED
