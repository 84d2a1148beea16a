"""In-process implementation of the backend port.

Keeps tables as ordered dictionaries keyed by row id, enforces uniqueness
constraints atomically per table, fans row changes out to realtime channels
in commit order and offers a small auth provider. Every call yields to the
event loop once so concurrent callers interleave the way network calls would.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
import inspect
import logging
import secrets
from typing import Any, Callable, Iterable
from uuid import uuid4

from werkzeug.security import check_password_hash, generate_password_hash

from quiz_live.constants.session_constants import (
    ASSIGN_QUIZ_CODE_RPC,
    PARTICIPANTS_TABLE,
    PROFILES_TABLE,
    QUESTIONS_TABLE,
    SESSIONS_TABLE,
)
from quiz_live.core.backend import (
    ALL_EVENTS,
    CHANNEL_CLOSED,
    CHANNEL_ERROR,
    CHANNEL_SUBSCRIBED,
    AuthProvider,
    AuthSession,
    BackendError,
    ChangeHandler,
    DataBackend,
    Filters,
    RealtimeChannel,
    Row,
    StatusHandler,
    UniqueViolation,
)
from quiz_live.core.models import AccountRole, AuthUser, ChangeEvent, ChangeType
from quiz_live.core.quiz_code import QuizCodeGenerator, normalize_quiz_code

logger = logging.getLogger(__name__)

DEFAULT_UNIQUE_CONSTRAINTS: dict[str, list[tuple[str, ...]]] = {
    SESSIONS_TABLE: [("quiz_code",)],
    PARTICIPANTS_TABLE: [("session_id", "student_id")],
}

DEFAULT_TIMESTAMP_COLUMNS: dict[str, str] = {
    SESSIONS_TABLE: "created_at",
    PARTICIPANTS_TABLE: "joined_at",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _matches(row: Row, filters: Filters | None) -> bool:
    if not filters:
        return True
    for column, expected in filters.items():
        actual = row.get(column)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


@dataclass(slots=True)
class _Binding:
    table: str
    handler: ChangeHandler
    events: frozenset[str]
    filters: Filters | None

    def accepts(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if ALL_EVENTS not in self.events and event.change_type.value not in self.events:
            return False
        row = event.old_row if event.change_type is ChangeType.DELETE else event.new_row
        return _matches(row, self.filters)


@dataclass(slots=True)
class _PendingFailure:
    operation: str
    target: str | None
    error: BackendError


class InMemoryChannel(RealtimeChannel):
    """Realtime channel registered with an :class:`InMemoryBackend`."""

    def __init__(self, backend: "InMemoryBackend", name: str) -> None:
        self.name = name
        self._backend = backend
        self._bindings: list[_Binding] = []
        self._state = "INITIAL"
        self._on_status: StatusHandler | None = None

    @property
    def state(self) -> str:
        return self._state

    def on(
        self,
        table: str,
        handler: ChangeHandler,
        events: Iterable[str] = (ALL_EVENTS,),
        filters: Filters | None = None,
    ) -> "InMemoryChannel":
        self._bindings.append(
            _Binding(table=table, handler=handler, events=frozenset(events), filters=dict(filters or {}))
        )
        return self

    async def subscribe(self, on_status: StatusHandler | None = None) -> "InMemoryChannel":
        await asyncio.sleep(0)
        self._on_status = on_status
        failure = self._backend._take_failure("subscribe", self.name)
        if failure is not None:
            self._set_state(CHANNEL_ERROR, failure)
            raise failure
        self._backend._register_channel(self)
        self._set_state(CHANNEL_SUBSCRIBED)
        return self

    def _set_state(self, state: str, error: BackendError | None = None) -> None:
        self._state = state
        if self._on_status is not None:
            self._on_status(state, error)

    async def _deliver(self, event: ChangeEvent) -> None:
        if self._state != CHANNEL_SUBSCRIBED:
            return
        for binding in list(self._bindings):
            if not binding.accepts(event):
                continue
            result = binding.handler(event)
            if inspect.isawaitable(result):
                await result


class InMemoryAuthProvider(AuthProvider):
    """Email/password accounts with opaque bearer tokens."""

    def __init__(self, backend: "InMemoryBackend") -> None:
        self._backend = backend
        self._accounts: dict[str, tuple[str, AuthUser]] = {}
        self._tokens: dict[str, str] = {}

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthSession:
        await asyncio.sleep(0)
        key = email.strip().lower()
        if not key or not password:
            raise BackendError("Email and password are required.")
        if key in self._accounts:
            raise BackendError("User already registered")
        metadata = metadata or {}
        user = AuthUser(
            id=uuid4().hex,
            email=key,
            role=AccountRole(metadata.get("account_type") or AccountRole.STUDENT.value),
            full_name=metadata.get("full_name"),
        )
        self._accounts[key] = (generate_password_hash(password), user)
        await self._backend.insert(
            PROFILES_TABLE, {"id": user.id, "full_name": user.full_name, "email": user.email}
        )
        return self._issue(user)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        await asyncio.sleep(0)
        account = self._accounts.get(email.strip().lower())
        if account is None:
            raise BackendError("Invalid login credentials")
        password_hash, user = account
        if not check_password_hash(password_hash, password):
            raise BackendError("Invalid login credentials")
        return self._issue(user)

    async def sign_out(self, access_token: str) -> None:
        await asyncio.sleep(0)
        self._tokens.pop(access_token, None)

    async def get_user(self, access_token: str) -> AuthUser | None:
        await asyncio.sleep(0)
        user_id = self._tokens.get(access_token)
        if user_id is None:
            return None
        return next((user for _, user in self._accounts.values() if user.id == user_id), None)

    def _issue(self, user: AuthUser) -> AuthSession:
        token = secrets.token_urlsafe(32)
        self._tokens[token] = user.id
        return AuthSession(access_token=token, user=user)


class InMemoryBackend(DataBackend):
    """Backend that keeps every table in process memory."""

    def __init__(
        self,
        unique_constraints: dict[str, list[tuple[str, ...]]] | None = None,
        timestamp_columns: dict[str, str] | None = None,
    ) -> None:
        self._tables: dict[str, dict[str, Row]] = defaultdict(dict)
        self._unique = dict(DEFAULT_UNIQUE_CONSTRAINTS if unique_constraints is None else unique_constraints)
        self._timestamps = dict(DEFAULT_TIMESTAMP_COLUMNS if timestamp_columns is None else timestamp_columns)
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._channels: list[InMemoryChannel] = []
        self._failures: list[_PendingFailure] = []
        self._code_generator = QuizCodeGenerator()
        self._rpcs: dict[str, Callable[[dict[str, Any]], Any]] = {
            ASSIGN_QUIZ_CODE_RPC: self._assign_quiz_code,
        }
        self.auth = InMemoryAuthProvider(self)

    # --- Fault injection ---

    def inject_failure(self, operation: str, target: str | None = None, error: BackendError | None = None) -> None:
        """Make the next ``operation`` on ``target`` (table, rpc or channel name) fail once."""
        self._failures.append(
            _PendingFailure(
                operation=operation,
                target=target,
                error=error or BackendError(f"{operation} failed"),
            )
        )

    async def drop_channel(self, name: str) -> None:
        """Simulate the transport losing an open channel."""
        await asyncio.sleep(0)
        for channel in [c for c in self._channels if c.name == name]:
            self._channels.remove(channel)
            channel._set_state(CHANNEL_ERROR, BackendError(f"Channel {name} dropped"))

    def _take_failure(self, operation: str, target: str | None) -> BackendError | None:
        for index, pending in enumerate(self._failures):
            if pending.operation == operation and pending.target in (None, target):
                del self._failures[index]
                return pending.error
        return None

    def _raise_if_failing(self, operation: str, target: str) -> None:
        failure = self._take_failure(operation, target)
        if failure is not None:
            raise failure

    # --- Table access ---

    def rows(self, table: str) -> list[Row]:
        """Synchronous snapshot of a table, for inspection."""
        return [dict(row) for row in self._tables[table].values()]

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        await asyncio.sleep(0)
        self._raise_if_failing("select", table)
        found = [dict(row) for row in self._tables[table].values() if _matches(row, filters)]
        if order_by is not None:
            found.sort(key=lambda row: (row.get(order_by) is None, row.get(order_by)), reverse=not ascending)
        if limit is not None:
            found = found[:limit]
        return found

    async def select_one(self, table: str, filters: Filters) -> Row | None:
        found = await self.select(table, filters, limit=2)
        if len(found) > 1:
            raise BackendError(f"Multiple rows in {table} match {filters}", code="PGRST116")
        return found[0] if found else None

    async def insert(self, table: str, row: Row) -> Row:
        await asyncio.sleep(0)
        self._raise_if_failing("insert", table)
        async with self._lock_for(table):
            stored = dict(row)
            stored.setdefault("id", uuid4().hex)
            timestamp_column = self._timestamps.get(table)
            if timestamp_column is not None and stored.get(timestamp_column) is None:
                stored[timestamp_column] = _utcnow()
            if stored["id"] in self._tables[table]:
                raise UniqueViolation(table, ("id",))
            self._check_unique(table, stored)
            self._tables[table][stored["id"]] = stored
        await self._notify(ChangeEvent(ChangeType.INSERT, table, new_row=dict(stored)))
        return dict(stored)

    async def update(self, table: str, filters: Filters, values: Row) -> list[Row]:
        await asyncio.sleep(0)
        self._raise_if_failing("update", table)
        changes: list[tuple[Row, Row]] = []
        async with self._lock_for(table):
            for row_id, row in list(self._tables[table].items()):
                if not _matches(row, filters):
                    continue
                updated = {**row, **values, "id": row_id}
                self._check_unique(table, updated, ignore_id=row_id)
                self._tables[table][row_id] = updated
                changes.append((dict(row), dict(updated)))
        for old_row, new_row in changes:
            await self._notify(ChangeEvent(ChangeType.UPDATE, table, new_row=new_row, old_row=old_row))
        return [new_row for _, new_row in changes]

    async def delete(self, table: str, filters: Filters) -> list[Row]:
        await asyncio.sleep(0)
        self._raise_if_failing("delete", table)
        async with self._lock_for(table):
            removed = [row for row in self._tables[table].values() if _matches(row, filters)]
            for row in removed:
                del self._tables[table][row["id"]]
        for row in removed:
            await self._notify(ChangeEvent(ChangeType.DELETE, table, old_row=dict(row)))
        return [dict(row) for row in removed]

    async def rpc(self, name: str, params: dict[str, Any] | None = None) -> Any:
        await asyncio.sleep(0)
        self._raise_if_failing("rpc", name)
        procedure = self._rpcs.get(name)
        if procedure is None:
            raise BackendError(f"Could not find the function {name}", code="PGRST202")
        result = procedure(dict(params or {}))
        if inspect.isawaitable(result):
            result = await result
        return result

    def register_rpc(self, name: str, procedure: Callable[[dict[str, Any]], Any]) -> None:
        self._rpcs[name] = procedure

    # --- Realtime ---

    def channel(self, name: str) -> InMemoryChannel:
        return InMemoryChannel(self, name)

    async def remove_channel(self, channel: RealtimeChannel) -> None:
        await asyncio.sleep(0)
        if channel in self._channels:
            self._channels.remove(channel)
        if isinstance(channel, InMemoryChannel) and channel.state != CHANNEL_CLOSED:
            channel._set_state(CHANNEL_CLOSED)

    def open_channel_names(self) -> list[str]:
        return [channel.name for channel in self._channels]

    def _register_channel(self, channel: InMemoryChannel) -> None:
        if channel not in self._channels:
            self._channels.append(channel)

    async def _notify(self, event: ChangeEvent) -> None:
        for channel in list(self._channels):
            try:
                await channel._deliver(event)
            except Exception:
                logger.exception("Realtime handler on channel %s failed", channel.name)

    # --- Internals ---

    def _lock_for(self, table: str) -> asyncio.Lock:
        lock = self._write_locks.get(table)
        if lock is None:
            lock = asyncio.Lock()
            self._write_locks[table] = lock
        return lock

    def _check_unique(self, table: str, candidate: Row, ignore_id: str | None = None) -> None:
        for columns in self._unique.get(table, []):
            key = tuple(candidate.get(column) for column in columns)
            if any(value is None for value in key):
                continue
            for row_id, row in self._tables[table].items():
                if row_id == ignore_id:
                    continue
                if tuple(row.get(column) for column in columns) == key:
                    raise UniqueViolation(table, columns)

    async def _assign_quiz_code(self, params: dict[str, Any]) -> str:
        question_ids = list(params.get("question_ids") or [])
        if not question_ids:
            raise BackendError("question_ids must not be empty")
        existing_code = normalize_quiz_code(params.get("existing_code"))
        async with self._lock_for(QUESTIONS_TABLE):
            taken = {
                row.get("quiz_code")
                for table in (QUESTIONS_TABLE, SESSIONS_TABLE)
                for row in self._tables[table].values()
                if row.get("quiz_code")
            }
            code = existing_code or self._code_generator.next_code(taken)
            for question_id in question_ids:
                row = self._tables[QUESTIONS_TABLE].get(question_id)
                if row is None:
                    raise BackendError(f"Question {question_id} does not exist")
                row["quiz_code"] = code
        return code
