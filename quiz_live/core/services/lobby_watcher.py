"""Service that keeps a student's lobby view in sync with the live session.

The watcher opens two realtime channels: one on the session's participant
rows, one on the session row itself. Participant notifications trigger a full
roster re-fetch rather than applying deltas, since the two channels give no
ordering guarantee relative to each other. The first notification that shows
the session as ``active`` hands the student over to the exam, once.
"""

from __future__ import annotations

import asyncio
from enum import Enum, auto
import inspect
import logging
from typing import Any, Awaitable, Callable

from quiz_live.constants.session_constants import (
    DEFAULT_STUDENT_NAME,
    PARTICIPANTS_CHANNEL_TEMPLATE,
    PARTICIPANTS_TABLE,
    PROFILES_TABLE,
    SESSION_STATUS_CHANNEL_TEMPLATE,
    SESSIONS_TABLE,
)
from quiz_live.core.backend import (
    ALL_EVENTS,
    CHANNEL_ERROR,
    BackendError,
    DataBackend,
    RealtimeChannel,
    Row,
)
from quiz_live.core.errors import QuizLiveError, SessionFetchError, SubscriptionError
from quiz_live.core.models import (
    ChangeEvent,
    ChangeType,
    Participant,
    QuizSession,
    RosterEntry,
    SessionStatus,
)

logger = logging.getLogger(__name__)

RosterCallback = Callable[[list[RosterEntry]], "Awaitable[None] | None"]
ActiveCallback = Callable[[str], "Awaitable[None] | None"]
ErrorCallback = Callable[[QuizLiveError], "Awaitable[None] | None"]


class LobbyState(Enum):
    LOADING = auto()
    WAITING = auto()
    TRANSITIONING = auto()
    ERROR = auto()
    CLOSED = auto()


def display_name_for(profile: Row | None) -> str:
    if profile:
        if profile.get("full_name"):
            return profile["full_name"]
        if profile.get("email"):
            return profile["email"].split("@")[0]
    return DEFAULT_STUDENT_NAME


def initials_for(name: str | None, email: str | None) -> str:
    if name:
        parts = name.split(" ")
        if len(parts) >= 2 and parts[0] and parts[1]:
            return f"{parts[0][0]}{parts[1][0]}".upper()
        return name[:2].upper()
    if email:
        return email[:2].upper()
    return "??"


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class LobbyWatcher:
    """State machine for one student's lobby: LOADING -> WAITING -> TRANSITIONING | ERROR."""

    def __init__(
        self,
        backend: DataBackend,
        session_id: str,
        on_roster_change: RosterCallback,
        on_session_active: ActiveCallback,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._backend = backend
        self._session_id = session_id
        self._on_roster_change = on_roster_change
        self._on_session_active = on_session_active
        self._on_error = on_error

        self._state = LobbyState.LOADING
        self._started = False
        self._closed = False
        self._channels: list[RealtimeChannel] = []
        self._channels_ready = False
        self._stalled = False

        self._session: QuizSession | None = None
        self._roster: list[RosterEntry] = []
        self._roster_version = 0
        self._roster_dirty = False
        self._background: set[asyncio.Task[None]] = set()

    # --- Public API ---

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> LobbyState:
        return self._state

    @property
    def session(self) -> QuizSession | None:
        return self._session

    @property
    def roster(self) -> list[RosterEntry]:
        return list(self._roster)

    @property
    def stalled(self) -> bool:
        return self._stalled

    async def start(self) -> "LobbyWatcher":
        """Subscribe both channels, then load the session and roster.

        Raises ``SubscriptionError`` when a channel cannot be opened and
        ``SessionFetchError`` when the session cannot be loaded. Whatever
        ends ``start`` with an exception, including a failing callback,
        every channel already opened is released first.
        """
        if self._started:
            raise RuntimeError("Lobby watcher has already been started.")
        self._started = True

        try:
            await self._subscribe()
        except SubscriptionError:
            self._state = LobbyState.ERROR
            await self._release_channels()
            raise

        try:
            await self._load()
        except BaseException:
            if self._state in (LobbyState.LOADING, LobbyState.WAITING):
                self._state = LobbyState.ERROR
            self._closed = True
            await self._release_channels()
            for task in list(self._background):
                task.cancel()
            raise
        return self

    async def _load(self) -> None:
        session = await self._fetch_session()
        roster = await self._fetch_roster()

        if self._state is not LobbyState.LOADING:
            # Closed or already handed off to the exam while loading.
            return

        self._session = session
        if session.status is SessionStatus.ACTIVE:
            await self._transition_to_exam()
            return
        if session.status is SessionStatus.ENDED:
            raise SessionFetchError("The quiz session has already ended.")

        self._roster = roster
        self._state = LobbyState.WAITING
        logger.info("Lobby for session %s is waiting with %d participant(s)", self._session_id, len(roster))
        await _invoke(self._on_roster_change, self.roster)
        if self._roster_dirty:
            self._roster_dirty = False
            await self._refresh_roster()

    async def close(self) -> None:
        """Release both channels. No callback fires after this returns."""
        if self._closed:
            return
        self._closed = True
        if self._state in (LobbyState.LOADING, LobbyState.WAITING):
            self._state = LobbyState.CLOSED
        await self._release_channels()
        for task in list(self._background):
            task.cancel()
        logger.debug("Lobby watcher for session %s closed", self._session_id)

    async def __aenter__(self) -> "LobbyWatcher":
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Subscriptions ---

    async def _subscribe(self) -> None:
        participants = self._backend.channel(
            PARTICIPANTS_CHANNEL_TEMPLATE.format(session_id=self._session_id)
        ).on(
            PARTICIPANTS_TABLE,
            self._handle_participant_change,
            events=(ALL_EVENTS,),
            filters={"session_id": self._session_id},
        )
        session_status = self._backend.channel(
            SESSION_STATUS_CHANNEL_TEMPLATE.format(session_id=self._session_id)
        ).on(
            SESSIONS_TABLE,
            self._handle_session_change,
            events=(ChangeType.UPDATE.value,),
            filters={"id": self._session_id},
        )
        for channel in (participants, session_status):
            try:
                await channel.subscribe(self._handle_channel_status)
            except BackendError as exc:
                logger.warning("Could not subscribe to %s: %s", channel.name, exc.message)
                raise SubscriptionError(f"Realtime channel {channel.name} could not be established.") from exc
            self._channels.append(channel)
        self._channels_ready = True

    async def _release_channels(self) -> None:
        channels, self._channels = self._channels, []
        for channel in channels:
            try:
                await self._backend.remove_channel(channel)
            except BackendError as exc:
                logger.warning("Failed to remove channel %s: %s", channel.name, exc.message)

    def _handle_channel_status(self, status: str, error: BackendError | None) -> None:
        if status != CHANNEL_ERROR or not self._channels_ready:
            return
        if self._closed or self._state not in (LobbyState.LOADING, LobbyState.WAITING):
            return
        self._stalled = True
        logger.warning("Realtime channel dropped for session %s: %s", self._session_id, error)
        if self._on_error is not None:
            self._spawn(_invoke(self._on_error, SubscriptionError("Lost the live connection to the lobby.")))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # --- Change handlers ---

    async def _handle_participant_change(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        if self._state is LobbyState.LOADING:
            self._roster_dirty = True
            return
        if self._state is LobbyState.WAITING:
            await self._refresh_roster()

    async def _handle_session_change(self, event: ChangeEvent) -> None:
        if self._closed or self._state not in (LobbyState.LOADING, LobbyState.WAITING):
            return
        status = event.new_row.get("status")
        if status == SessionStatus.ACTIVE.value:
            await self._transition_to_exam()
        elif status == SessionStatus.ENDED.value:
            await self._fail(SessionFetchError("The quiz session has ended."))
        elif self._session is not None and event.new_row:
            self._session = QuizSession.from_row({**event.old_row, **event.new_row})

    async def _transition_to_exam(self) -> None:
        # One-shot: the state check happens before any await.
        if self._state not in (LobbyState.LOADING, LobbyState.WAITING):
            return
        self._state = LobbyState.TRANSITIONING
        logger.info("Session %s is active; handing off to the exam", self._session_id)
        await self._release_channels()
        await _invoke(self._on_session_active, self._session_id)

    async def _fail(self, error: QuizLiveError) -> None:
        if self._state in (LobbyState.TRANSITIONING, LobbyState.ERROR):
            return
        self._state = LobbyState.ERROR
        logger.warning("Lobby for session %s failed: %s", self._session_id, error)
        await self._release_channels()
        await _invoke(self._on_error, error)

    # --- Fetching ---

    async def _refresh_roster(self) -> None:
        self._roster_version += 1
        version = self._roster_version
        try:
            roster = await self._fetch_roster()
        except SessionFetchError as exc:
            logger.warning("Keeping previous roster for session %s: %s", self._session_id, exc)
            return
        if self._closed or self._state is not LobbyState.WAITING or version != self._roster_version:
            return
        self._roster = roster
        await _invoke(self._on_roster_change, self.roster)

    async def _fetch_session(self) -> QuizSession:
        try:
            row = await self._backend.select_one(SESSIONS_TABLE, {"id": self._session_id})
        except BackendError as exc:
            logger.error("Error fetching session %s: %s", self._session_id, exc.message)
            raise SessionFetchError("The quiz session could not be loaded.") from exc
        if row is None:
            raise SessionFetchError("The quiz session does not exist.")
        return QuizSession.from_row(row)

    async def _fetch_roster(self) -> list[RosterEntry]:
        try:
            rows = await self._backend.select(
                PARTICIPANTS_TABLE,
                {"session_id": self._session_id},
                order_by="joined_at",
                ascending=True,
            )
        except BackendError as exc:
            logger.error("Error fetching participants for %s: %s", self._session_id, exc.message)
            raise SessionFetchError("The lobby roster could not be loaded.") from exc
        participants = [Participant.from_row(row) for row in rows]
        if not participants:
            return []

        profiles: dict[str, Row] = {}
        try:
            profile_rows = await self._backend.select(
                PROFILES_TABLE, {"id": [p.student_id for p in participants]}
            )
            profiles = {row["id"]: row for row in profile_rows}
        except BackendError as exc:
            # Roster still renders with generic names.
            logger.warning("Error fetching profiles for %s: %s", self._session_id, exc.message)

        roster = []
        for participant in participants:
            profile = profiles.get(participant.student_id)
            name = display_name_for(profile)
            email = (profile or {}).get("email") or ""
            roster.append(
                RosterEntry(
                    participant_id=participant.id,
                    student_id=participant.student_id,
                    joined_at=participant.joined_at,
                    status=participant.status,
                    display_name=name,
                    email=email,
                    initials=initials_for(name, email),
                )
            )
        return roster


async def watch_lobby(
    backend: DataBackend,
    session_id: str,
    on_roster_change: RosterCallback,
    on_session_active: ActiveCallback,
    on_error: ErrorCallback | None = None,
) -> LobbyWatcher:
    """Start watching a session's lobby. Call ``close()`` on the result to unsubscribe."""
    watcher = LobbyWatcher(backend, session_id, on_roster_change, on_session_active, on_error)
    await watcher.start()
    return watcher
