"""Error kinds raised by the live quiz session protocol."""

from __future__ import annotations


class QuizLiveError(Exception):
    """Base class for every error the session protocol reports to callers."""


class InvalidCode(QuizLiveError):
    """No live session and no question match the given quiz code."""

    def __init__(self, quiz_code: str) -> None:
        super().__init__("Invalid quiz code. Please check and try again.")
        self.quiz_code = quiz_code


class SessionCreateConflict(QuizLiveError):
    """Another client created the session for this code first."""

    def __init__(self, quiz_code: str) -> None:
        super().__init__(f"Session for quiz code {quiz_code} already exists.")
        self.quiz_code = quiz_code


class SessionResolveFailed(QuizLiveError):
    """The session could not be looked up or created for a non-conflict reason."""


class JoinFailed(QuizLiveError):
    """Inserting the participant row failed for a reason other than already being joined."""


class SubscriptionError(QuizLiveError):
    """A realtime channel could not be established or was dropped."""


class SessionFetchError(QuizLiveError):
    """The session row vanished, ended, or could not be read."""


class NotAuthenticated(QuizLiveError):
    """No user is signed in."""


class NotPermitted(QuizLiveError):
    """The signed-in user's role does not allow the requested action."""


class InvalidTransition(QuizLiveError):
    """The session is not in a status that allows the requested change."""
