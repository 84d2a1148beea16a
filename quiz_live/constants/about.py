"""Static metadata describing QuizLive."""

APP_NAME = "QuizLive"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "QuizLive runs live classroom quiz sessions on top of a hosted database backend. "
    "Students enter the code their professor shares, wait in a lobby, and are moved "
    "into the exam the moment the professor starts it."
)
