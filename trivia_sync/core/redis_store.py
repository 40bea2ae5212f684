"""Redis-backed store shared by clients running in separate processes.

Each root document (the first two path segments, e.g. ``rooms/123456``) is
kept as one JSON string. Writes run as WATCH/MULTI transactions on that key
and publish the written path on the root's channel; subscribers re-read
their path whenever their root's channel fires.
"""

from __future__ import annotations

import asyncio
from copy import deepcopy
import json
import logging
from typing import Any, Callable

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from trivia_sync.constants.network_constants import (
    REDIS_CHANNEL_KEY,
    REDIS_DOCUMENT_KEY,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
)
from trivia_sync.core.errors import TransientIOError
from trivia_sync.core.store import (
    ABORT,
    TRANSACTION_MAX_ATTEMPTS,
    ChangeCallback,
    Store,
    Subscription,
    TransactionFunction,
    TransactionResult,
    get_in,
    merge_fields,
    resolve_server_values,
    set_in,
    split_path,
)

logger = logging.getLogger(__name__)

_ROOT_DEPTH = 2


def root_of(path: str) -> tuple[str, list[str]]:
    """Split ``path`` into its root document name and the path inside it."""
    parts = split_path(path)
    if len(parts) < _ROOT_DEPTH:
        raise ValueError(f"Path '{path}' must address a document below a collection.")
    return "/".join(parts[:_ROOT_DEPTH]), parts[_ROOT_DEPTH:]


def _decode(raw: str | None) -> Any:
    return json.loads(raw) if raw else None


class RedisStore(Store):
    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._pubsub = client.pubsub()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._listener: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        logger.info("RedisStore initialized")

    @classmethod
    def from_settings(
        cls,
        host: str = REDIS_HOST,
        port: int = REDIS_PORT,
        password: str | None = REDIS_PASSWORD,
    ) -> RedisStore:
        client = redis.Redis(host=host, port=port, password=password, decode_responses=True)
        logger.info("Connecting RedisStore to %s:%s", host, port)
        return cls(client)

    async def get(self, path: str) -> Any:
        root, inner = root_of(path)
        raw = await self._call(self._client.get(REDIS_DOCUMENT_KEY.format(root=root)))
        document = _decode(raw)
        return get_in(document, inner) if inner else document

    async def set(self, path: str, value: Any) -> None:
        await self._mutate(path, lambda _current: value)

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        await self._mutate(path, lambda current: merge_fields(current, fields))

    async def delete(self, path: str) -> None:
        await self._mutate(path, lambda _current: None)

    async def transaction(self, path: str, update_fn: TransactionFunction) -> TransactionResult:
        return await self._mutate(path, update_fn)

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Subscription:
        root, _ = root_of(path)
        subscription = Subscription(path, on_change, self._cancel)
        watchers = self._subscriptions.setdefault(root, [])
        first = not watchers
        watchers.append(subscription)
        if first:
            try:
                await self._call(self._pubsub.subscribe(REDIS_CHANNEL_KEY.format(root=root)))
            except TransientIOError:
                watchers.remove(subscription)
                raise
            logger.debug("Subscribed to channel for %s", root)
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen(), name="redis-store-listener")
        current = await self.get(path)
        asyncio.get_running_loop().call_soon(subscription.deliver, current)
        return subscription

    async def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
        await self._pubsub.aclose()
        await self._client.aclose()

    async def _server_time_ms(self) -> int:
        seconds, microseconds = await self._call(self._client.time())
        return int(seconds) * 1000 + int(microseconds) // 1000

    async def _mutate(self, path: str, update_fn: Callable[[Any], Any]) -> TransactionResult:
        root, inner = root_of(path)
        key = REDIS_DOCUMENT_KEY.format(root=root)
        channel = REDIS_CHANNEL_KEY.format(root=root)
        now_ms = await self._server_time_ms()
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for _ in range(TRANSACTION_MAX_ATTEMPTS):
                    try:
                        await pipe.watch(key)
                        document = _decode(await pipe.get(key))
                        current = get_in(document, inner) if inner else document
                        proposed = update_fn(deepcopy(current))
                        if proposed is ABORT:
                            await pipe.unwatch()
                            return TransactionResult(committed=False, value=current)
                        resolved = resolve_server_values(proposed, now_ms)
                        if inner:
                            document = document if isinstance(document, dict) else {}
                            set_in(document, inner, resolved)
                        else:
                            document = resolved
                        pipe.multi()
                        if document is None or document == {}:
                            pipe.delete(key)
                        else:
                            pipe.set(key, json.dumps(document))
                        pipe.publish(channel, path)
                        await pipe.execute()
                        return TransactionResult(committed=True, value=resolved)
                    except WatchError:
                        logger.debug("Concurrent write on %s; retrying", key)
                        continue
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientIOError(f"Redis write to {path} failed: {exc}") from exc
        raise TransientIOError(f"Write to {path} did not settle after {TRANSACTION_MAX_ATTEMPTS} attempts")

    async def _listen(self) -> None:
        """Background task fanning out channel messages to local subscriptions."""
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                root, _ = root_of(message["data"])
                for subscription in list(self._subscriptions.get(root, [])):
                    try:
                        subscription.deliver(await self.get(subscription.path))
                    except TransientIOError as exc:
                        logger.warning("Could not refresh %s after change: %s", subscription.path, exc)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.error("Redis subscription listener stopped: %s", exc, exc_info=True)

    def _cancel(self, subscription: Subscription) -> None:
        root, _ = root_of(subscription.path)
        watchers = self._subscriptions.get(root, [])
        if subscription in watchers:
            watchers.remove(subscription)
        if not watchers and root in self._subscriptions:
            del self._subscriptions[root]
            task = asyncio.get_running_loop().create_task(self._release_channel(root))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _release_channel(self, root: str) -> None:
        # A subscribe issued meanwhile keeps the channel.
        if self._subscriptions.get(root):
            return
        try:
            await self._call(self._pubsub.unsubscribe(REDIS_CHANNEL_KEY.format(root=root)))
        except TransientIOError as exc:
            logger.warning("Could not unsubscribe from %s: %s", root, exc)
        else:
            logger.debug("Unsubscribed from channel for %s", root)

    @staticmethod
    async def _call(awaitable: Any) -> Any:
        try:
            return await awaitable
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientIOError(f"Redis operation failed: {exc}") from exc
