"""Network and storage configuration for the trivia client."""

import os
from pathlib import Path

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 8000

REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD: str | None = os.getenv("REDIS_PASSWORD", None)

REDIS_DOCUMENT_KEY: str = "trivia:doc:{root}"  # root path, e.g. rooms/123456
REDIS_CHANNEL_KEY: str = "trivia:channel:{root}"

JOIN_QUERY_PARAMETER: str = "room"

STATE_DIR: Path = Path(os.getenv("TRIVIA_SYNC_HOME", Path.home() / ".trivia_sync"))
IDENTITY_FILE_NAME: str = "identity.json"
SESSION_FILE_NAME: str = "session.json"
