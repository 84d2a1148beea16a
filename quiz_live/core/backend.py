"""Port for the hosted database, realtime and auth backend.

Everything the session protocol needs from the outside world goes through the
abstract classes below: equality-filtered row reads, single-row inserts with
server-assigned identity, updates, remote procedure calls, realtime change
channels and the auth provider. Filters are plain ``{column: value}`` mappings
matched by equality; a list, tuple or set value matches any of its members.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from quiz_live.core.models import AuthUser, ChangeEvent

Row = dict[str, Any]
Filters = dict[str, Any]
ChangeHandler = Callable[[ChangeEvent], "Awaitable[None] | None"]
StatusHandler = Callable[[str, "BackendError | None"], None]

ALL_EVENTS = "*"

CHANNEL_SUBSCRIBED = "SUBSCRIBED"
CHANNEL_ERROR = "CHANNEL_ERROR"
CHANNEL_CLOSED = "CLOSED"


class BackendError(Exception):
    """Raised by a backend call that the server rejected or could not complete."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class UniqueViolation(BackendError):
    """An insert collided with a uniqueness constraint."""

    def __init__(self, table: str, columns: Iterable[str]) -> None:
        self.table = table
        self.columns = tuple(columns)
        super().__init__(
            f"duplicate key value violates unique constraint on {table}({', '.join(self.columns)})",
            code="23505",
        )


@dataclass(slots=True)
class AuthSession:
    """Signed-in user plus the token that identifies the session."""

    access_token: str
    user: AuthUser


class RealtimeChannel(ABC):
    """A named realtime channel carrying row change notifications."""

    name: str

    @abstractmethod
    def on(
        self,
        table: str,
        handler: ChangeHandler,
        events: Iterable[str] = (ALL_EVENTS,),
        filters: Filters | None = None,
    ) -> "RealtimeChannel":
        """Register a handler for changes on ``table`` matching ``filters``."""

    @abstractmethod
    async def subscribe(self, on_status: StatusHandler | None = None) -> "RealtimeChannel":
        """Open the channel. Raises ``BackendError`` if it cannot be established."""

    @property
    @abstractmethod
    def state(self) -> str:
        ...


class AuthProvider(ABC):
    @abstractmethod
    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthSession:
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        ...

    @abstractmethod
    async def get_user(self, access_token: str) -> AuthUser | None:
        """Return the user owning ``access_token`` or ``None`` if it is not valid."""


class DataBackend(ABC):
    """Table, RPC and realtime access to the hosted backend."""

    auth: AuthProvider

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        ...

    @abstractmethod
    async def select_one(self, table: str, filters: Filters) -> Row | None:
        """Return the single matching row, ``None`` when nothing matches.

        Raises ``BackendError`` when more than one row matches.
        """

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """Insert ``row`` and return it with server-assigned columns filled in."""

    @abstractmethod
    async def update(self, table: str, filters: Filters, values: Row) -> list[Row]:
        ...

    @abstractmethod
    async def delete(self, table: str, filters: Filters) -> list[Row]:
        ...

    @abstractmethod
    async def rpc(self, name: str, params: dict[str, Any] | None = None) -> Any:
        ...

    @abstractmethod
    def channel(self, name: str) -> RealtimeChannel:
        ...

    @abstractmethod
    async def remove_channel(self, channel: RealtimeChannel) -> None:
        ...
