"""Replicated document store contract and an in-process implementation.

Documents form a tree addressed by slash-separated paths such as
``rooms/123456/players/abc``. Writers see their own writes immediately;
subscribers are notified asynchronously, never from inside the write call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from copy import deepcopy
from dataclasses import dataclass
import logging
import time
from typing import Any, Callable

from trivia_sync.core.errors import TransientIOError

logger = logging.getLogger(__name__)

TRANSACTION_MAX_ATTEMPTS = 25


class _ServerTimestamp:
    """Placeholder replaced by the store's clock (epoch ms) at write time."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


class _Abort:
    def __repr__(self) -> str:
        return "ABORT"


SERVER_TIMESTAMP = _ServerTimestamp()
# Returned from a transaction function to leave the value untouched.
ABORT = _Abort()

ChangeCallback = Callable[[Any], None]
TransactionFunction = Callable[[Any], Any]


@dataclass(slots=True, frozen=True)
class TransactionResult:
    committed: bool
    value: Any


def split_path(path: str) -> list[str]:
    parts = [part for part in path.strip("/").split("/") if part]
    if not parts:
        raise ValueError("Store path must not be empty.")
    return parts


def get_in(tree: Any, parts: list[str]) -> Any:
    node = tree
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def set_in(tree: dict[str, Any], parts: list[str], value: Any) -> None:
    """Write ``value`` at ``parts``; ``None`` removes the node and empty parents."""
    if value is None:
        _delete_in(tree, parts)
        return
    node = tree
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def _delete_in(tree: dict[str, Any], parts: list[str]) -> None:
    trail: list[tuple[dict[str, Any], str]] = []
    node: Any = tree
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return
        trail.append((node, part))
        node = node[part]
    parent, key = trail[-1]
    del parent[key]
    for parent, key in reversed(trail[:-1]):
        if parent[key]:
            break
        del parent[key]


def merge_fields(current: Any, fields: dict[str, Any]) -> dict[str, Any]:
    """Shallow merge used by ``update``; ``None`` field values delete keys."""
    merged = dict(current) if isinstance(current, dict) else {}
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def resolve_server_values(value: Any, now_ms: int) -> Any:
    if value is SERVER_TIMESTAMP:
        return now_ms
    if isinstance(value, dict):
        return {key: resolve_server_values(item, now_ms) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_server_values(item, now_ms) for item in value]
    return value


class Subscription:
    """Handle returned by ``Store.subscribe``; call ``unsubscribe`` to stop."""

    def __init__(self, path: str, callback: ChangeCallback, on_cancel: Callable[[Subscription], None]):
        self.path = path
        self.parts = split_path(path)
        self._callback = callback
        self._on_cancel = on_cancel
        self._active = True
        self._delivered = False
        self._last_value: Any = None

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, value: Any) -> None:
        if not self._active:
            return
        if self._delivered and value == self._last_value:
            return
        self._delivered = True
        self._last_value = deepcopy(value)
        self._callback(deepcopy(value))

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._on_cancel(self)


class Store(ABC):
    """Asynchronous hierarchical document store."""

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Return a copy of the value at ``path`` or ``None``."""

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Overwrite the value at ``path``."""

    @abstractmethod
    async def update(self, path: str, fields: dict[str, Any]) -> None:
        """Merge ``fields`` into the mapping at ``path``."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the value at ``path``."""

    @abstractmethod
    async def subscribe(self, path: str, on_change: ChangeCallback) -> Subscription:
        """Call ``on_change`` with the current value and again on every change."""

    @abstractmethod
    async def transaction(self, path: str, update_fn: TransactionFunction) -> TransactionResult:
        """Atomically replace the value at ``path`` with ``update_fn(current)``.

        ``update_fn`` may run several times and must be free of side effects.
        Returning ``ABORT`` leaves the value untouched.
        """

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryStore(Store):
    """Single-process store shared by every client in the same event loop."""

    def __init__(self, clock_ms: Callable[[], int] | None = None) -> None:
        self._root: dict[str, Any] = {}
        self._lock = asyncio.Lock()
        self._subscriptions: list[Subscription] = []
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    async def get(self, path: str) -> Any:
        async with self._lock:
            return deepcopy(get_in(self._root, split_path(path)))

    async def set(self, path: str, value: Any) -> None:
        async with self._lock:
            self._write(split_path(path), value)

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        parts = split_path(path)
        async with self._lock:
            self._write(parts, merge_fields(get_in(self._root, parts), fields))

    async def delete(self, path: str) -> None:
        async with self._lock:
            self._write(split_path(path), None)

    async def compare_and_set(self, path: str, expected: Any, value: Any) -> tuple[bool, Any]:
        """Write ``value`` only if the stored value still equals ``expected``."""
        parts = split_path(path)
        async with self._lock:
            if get_in(self._root, parts) != expected:
                return False, None
            return True, self._write(parts, value)

    async def transaction(self, path: str, update_fn: TransactionFunction) -> TransactionResult:
        for _ in range(TRANSACTION_MAX_ATTEMPTS):
            current = await self.get(path)
            proposed = update_fn(deepcopy(current))
            if proposed is ABORT:
                return TransactionResult(committed=False, value=current)
            written, stored = await self.compare_and_set(path, current, proposed)
            if written:
                return TransactionResult(committed=True, value=deepcopy(stored))
            logger.debug("Transaction on %s lost a race; retrying", path)
        raise TransientIOError(f"Transaction on {path} did not settle after {TRANSACTION_MAX_ATTEMPTS} attempts")

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Subscription:
        subscription = Subscription(path, on_change, self._subscriptions.remove)
        async with self._lock:
            self._subscriptions.append(subscription)
            current = deepcopy(get_in(self._root, subscription.parts))
        asyncio.get_running_loop().call_soon(subscription.deliver, current)
        return subscription

    def _write(self, parts: list[str], value: Any) -> Any:
        resolved = resolve_server_values(deepcopy(value), self._clock_ms())
        set_in(self._root, parts, resolved)
        self._notify()
        return resolved

    def _notify(self) -> None:
        loop = asyncio.get_running_loop()
        for subscription in list(self._subscriptions):
            value = deepcopy(get_in(self._root, subscription.parts))
            loop.call_soon(subscription.deliver, value)
