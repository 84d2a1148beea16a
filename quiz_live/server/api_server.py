"""FastAPI server that exposes the live quiz flows to browsers."""

from __future__ import annotations

import asyncio

from fastapi import Depends, FastAPI, HTTPException, Request, Response, WebSocket
from pydantic import BaseModel
import uvicorn

from quiz_live.constants.about import APP_NAME, APP_VERSION
from quiz_live.constants.server_constants import (
    ACCESS_TOKEN_COOKIE,
    ACCESS_TOKEN_MAX_AGE_SECONDS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    UVICORN_LOG_LEVEL,
    WS_FORBIDDEN_CLOSE_CODE,
    WS_UNAUTHORIZED_CLOSE_CODE,
)
from quiz_live.constants.session_constants import ASSIGN_QUIZ_CODE_RPC
from quiz_live.core.auth_context import AuthContext
from quiz_live.core.backend import BackendError, DataBackend
from quiz_live.core.errors import (
    InvalidCode,
    InvalidTransition,
    JoinFailed,
    NotAuthenticated,
    NotPermitted,
    QuizLiveError,
    SessionFetchError,
    SessionResolveFailed,
    SubscriptionError,
)
from quiz_live.core.models import AccountRole, AuthUser, QuizSession, RosterEntry, SessionHandle
from quiz_live.core.quiz_entry import QuizEntry, exam_url, lobby_url

_ERROR_STATUS: dict[type[QuizLiveError], int] = {
    InvalidCode: 404,
    SessionFetchError: 404,
    NotAuthenticated: 401,
    NotPermitted: 403,
    InvalidTransition: 409,
    JoinFailed: 503,
    SessionResolveFailed: 503,
    SubscriptionError: 503,
}


class SignUpPayload(BaseModel):
    """Payload schema for account creation."""

    email: str
    password: str
    account_type: AccountRole = AccountRole.STUDENT
    full_name: str | None = None


class SignInPayload(BaseModel):
    email: str
    password: str


class EnterQuizPayload(BaseModel):
    """Payload schema for the enter-quiz form."""

    quiz_code: str


class AssignCodePayload(BaseModel):
    question_ids: list[str]
    existing_code: str | None = None


def _http_error(exc: QuizLiveError) -> HTTPException:
    status = next((code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    return HTTPException(status_code=status, detail=str(exc))


def _token_from(request_headers, cookies) -> str | None:
    authorization = request_headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return cookies.get(ACCESS_TOKEN_COOKIE)


def _user_json(user: AuthUser) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "account_type": user.role.value,
        "full_name": user.full_name,
    }


def _handle_json(handle: SessionHandle) -> dict[str, object]:
    return {
        "session_id": handle.session_id,
        "quiz_code": handle.quiz_code,
        "course_id": handle.course_id,
        "title": handle.title,
        "subject": handle.subject,
        "professor_id": handle.professor_id,
        "status": handle.status.value,
        "lobby_url": lobby_url(handle),
    }


def _session_json(session: QuizSession) -> dict[str, object]:
    return {
        "id": session.id,
        "quiz_code": session.quiz_code,
        "course_id": session.course_id,
        "title": session.title,
        "subject": session.subject,
        "professor_id": session.professor_id,
        "status": session.status.value,
    }


def _roster_json(entry: RosterEntry, viewer_id: str) -> dict[str, object]:
    return {
        "participant_id": entry.participant_id,
        "student_id": entry.student_id,
        "display_name": entry.display_name,
        "email": entry.email,
        "initials": entry.initials,
        "joined_at": entry.joined_at.isoformat(),
        "status": entry.status.value,
        "is_current_user": entry.student_id == viewer_id,
    }


def _set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=token,
        max_age=ACCESS_TOKEN_MAX_AGE_SECONDS,
        samesite="lax",
        httponly=True,
    )


def create_api_app(backend: DataBackend) -> FastAPI:
    """Create a FastAPI application wired to the provided backend."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION)
    entry = QuizEntry(backend)

    async def auth_context(request: Request) -> AuthContext:
        context = AuthContext(backend.auth)
        await context.restore(_token_from(request.headers, request.cookies))
        return context

    def current_user(context: AuthContext = Depends(auth_context)) -> AuthUser:
        try:
            return context.current_user()
        except NotAuthenticated as exc:
            raise _http_error(exc) from exc

    # --- Auth ---

    @app.post("/auth/sign-up", status_code=201)
    async def sign_up(payload: SignUpPayload, response: Response) -> dict[str, object]:
        context = AuthContext(backend.auth)
        try:
            user = await context.sign_up(
                payload.email.strip(),
                payload.password,
                role=payload.account_type,
                full_name=payload.full_name,
            )
        except NotAuthenticated as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        _set_token_cookie(response, context.access_token)
        return {"user": _user_json(user), "access_token": context.access_token}

    @app.post("/auth/sign-in")
    async def sign_in(payload: SignInPayload, response: Response) -> dict[str, object]:
        context = AuthContext(backend.auth)
        try:
            user = await context.sign_in(payload.email.strip(), payload.password)
        except NotAuthenticated as exc:
            raise _http_error(exc) from exc
        _set_token_cookie(response, context.access_token)
        return {"user": _user_json(user), "access_token": context.access_token}

    @app.post("/auth/sign-out", status_code=204, response_class=Response)
    async def sign_out(context: AuthContext = Depends(auth_context)) -> Response:
        try:
            await context.sign_out()
        except NotAuthenticated as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        response = Response(status_code=204)
        response.delete_cookie(ACCESS_TOKEN_COOKIE)
        return response

    @app.get("/auth/me")
    def get_me(user: AuthUser = Depends(current_user)) -> dict[str, object]:
        return _user_json(user)

    # --- Student flow ---

    @app.post("/quiz/enter", status_code=201)
    async def enter_quiz(
        payload: EnterQuizPayload,
        context: AuthContext = Depends(auth_context),
    ) -> dict[str, object]:
        try:
            handle = await entry.enter_quiz(payload.quiz_code, context)
        except QuizLiveError as exc:
            raise _http_error(exc) from exc
        return _handle_json(handle)

    @app.get("/quiz/sessions/{session_id}")
    async def get_session(session_id: str, user: AuthUser = Depends(current_user)) -> dict[str, object]:
        try:
            session = await entry.get_session(session_id)
        except QuizLiveError as exc:
            raise _http_error(exc) from exc
        return _session_json(session)

    @app.websocket("/quiz/sessions/{session_id}/lobby")
    async def lobby_socket(websocket: WebSocket, session_id: str) -> None:
        context = AuthContext(backend.auth)
        user = await context.restore(_token_from(websocket.headers, websocket.cookies))
        if user is None:
            await websocket.close(code=WS_UNAUTHORIZED_CLOSE_CODE)
            return
        if user.is_professor:
            await websocket.close(code=WS_FORBIDDEN_CLOSE_CODE)
            return
        await websocket.accept()
        finished = asyncio.Event()

        async def send_roster(roster: list[RosterEntry]) -> None:
            await websocket.send_json(
                {"type": "roster", "participants": [_roster_json(e, user.id) for e in roster]}
            )

        async def send_active(active_session_id: str) -> None:
            await websocket.send_json(
                {"type": "active", "session_id": active_session_id, "exam_url": exam_url(active_session_id)}
            )
            finished.set()

        async def send_error(error: QuizLiveError) -> None:
            await websocket.send_json({"type": "error", "kind": type(error).__name__, "detail": str(error)})
            if not isinstance(error, SubscriptionError):
                finished.set()

        try:
            watcher = await entry.open_lobby(session_id, send_roster, send_active, send_error)
        except (SessionFetchError, SubscriptionError) as exc:
            await send_error(exc)
            await websocket.close()
            return

        try:
            disconnected = await _wait_for_disconnect_or(websocket, finished)
        finally:
            await watcher.close()
        if not disconnected:
            await websocket.close()

    # --- Professor flow ---

    @app.post("/quiz/codes", status_code=201)
    async def assign_quiz_code(
        payload: AssignCodePayload,
        user: AuthUser = Depends(current_user),
    ) -> dict[str, object]:
        if not user.is_professor:
            raise _http_error(NotPermitted("Only professors can generate quiz codes."))
        try:
            code = await backend.rpc(
                ASSIGN_QUIZ_CODE_RPC,
                {"question_ids": payload.question_ids, "existing_code": payload.existing_code},
            )
        except BackendError as exc:
            raise HTTPException(status_code=422, detail=exc.message) from exc
        if not code:
            raise HTTPException(status_code=502, detail="Failed to generate quiz code")
        return {"quiz_code": code}

    @app.post("/quiz/sessions/{session_id}/start")
    async def start_exam(session_id: str, user: AuthUser = Depends(current_user)) -> dict[str, object]:
        try:
            session = await entry.start_exam(session_id, user)
        except QuizLiveError as exc:
            raise _http_error(exc) from exc
        return _session_json(session)

    @app.post("/quiz/sessions/{session_id}/end")
    async def end_exam(session_id: str, user: AuthUser = Depends(current_user)) -> dict[str, object]:
        try:
            session = await entry.end_exam(session_id, user)
        except QuizLiveError as exc:
            raise _http_error(exc) from exc
        return _session_json(session)

    return app


async def _wait_for_disconnect_or(websocket: WebSocket, finished: asyncio.Event) -> bool:
    """Block until the client goes away (True) or ``finished`` is set (False)."""
    waiter = asyncio.ensure_future(finished.wait())
    try:
        while True:
            receiver = asyncio.ensure_future(websocket.receive())
            done, _ = await asyncio.wait({receiver, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                if receiver.result()["type"] == "websocket.disconnect":
                    return True
                continue
            receiver.cancel()
            return False
    finally:
        waiter.cancel()


def run_api_server(backend: DataBackend, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(backend)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=UVICORN_LOG_LEVEL)
    server = uvicorn.Server(config)
    server.run()
