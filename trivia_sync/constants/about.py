"""Static metadata describing trivia_sync."""

APP_NAME = "trivia_sync"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "trivia_sync runs live multi-player trivia matches. A host creates a room, players "
    "join with the room code, and every client follows the match through a shared store."
)
