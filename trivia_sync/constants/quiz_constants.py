"""Match-related constants shared across the core and server layers."""

OPTION_LETTERS: tuple[str, ...] = ("A", "B", "C", "D")

POINTS_PER_CORRECT_ANSWER: int = 10
DEFAULT_QUESTION_COUNT: int = 10
DEFAULT_TIME_PER_QUESTION_MS: int = 15000
EXPLANATION_HOLD_MS: int = 3000
COUNTDOWN_TICK_MS: int = 100
TIMER_WARNING_WINDOW_SECONDS: int = 5

ROOM_ID_DIGITS: int = 6
ROOM_ID_MAX_ATTEMPTS: int = 5

HOST_DISPLAY_NAME: str = "Host"

RETRY_ATTEMPTS: int = 3
RETRY_BASE_DELAY_MS: int = 100
RETRY_MAX_DELAY_MS: int = 2000
