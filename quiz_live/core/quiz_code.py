"""Helpers for the short codes professors hand out to start a quiz."""

from __future__ import annotations

import random

from quiz_live.constants.session_constants import QUIZ_CODE_ALPHABET, QUIZ_CODE_LENGTH


def normalize_quiz_code(raw_code: str | None) -> str:
    """Trim and uppercase a human-typed code. Returns an empty string for missing input."""
    if not raw_code:
        return ""
    return raw_code.strip().upper()


class QuizCodeGenerator:
    """Produces random codes that avoid a caller-supplied set of codes already in use."""

    def __init__(self, length: int = QUIZ_CODE_LENGTH, alphabet: str = QUIZ_CODE_ALPHABET) -> None:
        if length <= 0:
            raise ValueError("Quiz code length must be a positive integer.")
        if not alphabet:
            raise ValueError("Quiz code alphabet cannot be empty.")
        self._length = length
        self._alphabet = alphabet
        self._rng = random.SystemRandom()

    def next_code(self, taken: set[str] | frozenset[str] = frozenset()) -> str:
        capacity = len(self._alphabet) ** self._length
        if len(taken) >= capacity:
            raise RuntimeError("No quiz codes left to assign.")
        while True:
            code = "".join(self._rng.choice(self._alphabet) for _ in range(self._length))
            if code not in taken:
                return code
