"""Application entry point for the trivia_sync client."""

from __future__ import annotations

from pathlib import Path
import socket

import click

from trivia_sync.constants.about import APP_NAME, APP_VERSION
from trivia_sync.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    IDENTITY_FILE_NAME,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    SESSION_FILE_NAME,
    STATE_DIR,
)
from trivia_sync.core.identity import FileIdentityProvider, FileSessionStorage
from trivia_sync.core.question_bank import QuestionBank
from trivia_sync.core.redis_store import RedisStore
from trivia_sync.core.session_context import SessionContext
from trivia_sync.core.store import InMemoryStore, Store
from trivia_sync.core.trivia_client import TriviaClient
from trivia_sync.server.api_server import run_api_server
from trivia_sync.utils.logging_config import configure_logging


def _determine_local_url(port: int) -> str:
    """Best-effort determination of the local IP for the shareable join link."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"http://{ip_address}:{port}/"


def _build_store(backend: str, redis_host: str, redis_port: int, redis_password: str | None) -> Store:
    if backend == "memory":
        return InMemoryStore()
    return RedisStore.from_settings(host=redis_host, port=redis_port, password=redis_password)


@click.command(name=APP_NAME)
@click.version_option(APP_VERSION)
@click.option("--host", default=DEFAULT_HOST, show_default=True, envvar="TRIVIA_SYNC_HOST")
@click.option("--port", default=DEFAULT_PORT, show_default=True, type=int, envvar="TRIVIA_SYNC_PORT")
@click.option(
    "--store",
    "backend",
    type=click.Choice(["redis", "memory"]),
    default="redis",
    show_default=True,
    envvar="TRIVIA_SYNC_STORE",
    help="Shared store backend. 'memory' only works for a single process.",
)
@click.option("--redis-host", default=REDIS_HOST, show_default=True)
@click.option("--redis-port", default=REDIS_PORT, show_default=True, type=int)
@click.option("--redis-password", default=REDIS_PASSWORD, show_default=False)
@click.option(
    "--bank",
    "bank_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    envvar="TRIVIA_SYNC_BANK",
    help="Question bank (.json or text). Defaults to the bundled bank.",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=STATE_DIR,
    show_default=True,
    help="Where the device identity and the saved session are kept.",
)
@click.option("--log-level", default="INFO", show_default=True, envvar="TRIVIA_SYNC_LOG_LEVEL")
def main(
    host: str,
    port: int,
    backend: str,
    redis_host: str,
    redis_port: int,
    redis_password: str | None,
    bank_path: Path | None,
    state_dir: Path,
    log_level: str,
) -> None:
    """Initialize logging, build the client and serve its local API."""
    logger = configure_logging(log_level.upper())
    logger.info("Starting %s %s...", APP_NAME, APP_VERSION)

    identity = FileIdentityProvider(state_dir / IDENTITY_FILE_NAME)
    context = SessionContext(
        store=_build_store(backend, redis_host, redis_port, redis_password),
        player_id=identity.current_identity(),
        question_source=QuestionBank(bank_path) if bank_path else QuestionBank(),
        session_storage=FileSessionStorage(state_dir / SESSION_FILE_NAME),
    )
    client = TriviaClient(context)
    logger.info("Client API available at %s (store: %s)", _determine_local_url(port), backend)
    run_api_server(client, host=host, port=port, log_level=log_level.lower())


if __name__ == "__main__":
    main()
