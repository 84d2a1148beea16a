"""Settings for the HTTP and websocket surface."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
UVICORN_LOG_LEVEL: str = "info"

ACCESS_TOKEN_COOKIE: str = "quizlive_access_token"
ACCESS_TOKEN_MAX_AGE_SECONDS: int = 60 * 60 * 24 * 7

# Close code for lobby sockets opened without a valid access token.
WS_UNAUTHORIZED_CLOSE_CODE: int = 4401
# Close code for lobby sockets opened by a professor account.
WS_FORBIDDEN_CLOSE_CODE: int = 4403
