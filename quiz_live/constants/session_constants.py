"""Table names, statuses and other constants shared by the session protocol."""

SESSIONS_TABLE: str = "quiz_sessions"
PARTICIPANTS_TABLE: str = "quiz_session_participants"
QUESTIONS_TABLE: str = "multiple_choice_questions"
PROFILES_TABLE: str = "profiles"

PARTICIPANTS_CHANNEL_TEMPLATE: str = "quiz_session_{session_id}"
SESSION_STATUS_CHANNEL_TEMPLATE: str = "quiz_session_status_{session_id}"

QUIZ_CODE_LENGTH: int = 6
QUIZ_CODE_ALPHABET: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

ASSIGN_QUIZ_CODE_RPC: str = "assign_quiz_code_to_questions"

LOBBY_URL_TEMPLATE: str = "/dashboard/student/quiz/lobby?session={session_id}&code={quiz_code}"
EXAM_URL_TEMPLATE: str = "/dashboard/student/quiz/exam?session={session_id}"

DEFAULT_STUDENT_NAME: str = "Student"
