import asyncio

import pytest

from trivia_sync.core.redis_store import root_of
from trivia_sync.core.store import ABORT, SERVER_TIMESTAMP, InMemoryStore, merge_fields, set_in


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


async def test_set_get_returns_copies(store):
    await store.set("rooms/1", {"status": "lobby", "players": {}})
    value = await store.get("rooms/1")
    value["status"] = "changed"
    assert (await store.get("rooms/1"))["status"] == "lobby"
    assert await store.get("rooms/missing") is None


async def test_update_merges_and_none_deletes(store):
    await store.set("rooms/1", {"status": "lobby", "questionIndex": 0})
    await store.update("rooms/1", {"questionIndex": 2, "status": None})
    assert await store.get("rooms/1") == {"questionIndex": 2}


async def test_server_timestamp_is_resolved_on_write():
    store = InMemoryStore(clock_ms=lambda: 42)
    await store.set("rooms/1", {"createdAt": SERVER_TIMESTAMP, "nested": {"at": SERVER_TIMESTAMP}})
    assert await store.get("rooms/1") == {"createdAt": 42, "nested": {"at": 42}}


async def test_delete_prunes_empty_parents(store):
    await store.set("rooms/1/players/p1", {"name": "Ana"})
    await store.delete("rooms/1/players/p1")
    assert await store.get("rooms/1") is None


async def test_subscribe_fires_with_current_value_then_changes(store):
    await store.set("rooms/1/status", "lobby")
    seen = []
    subscription = await store.subscribe("rooms/1/status", seen.append)
    assert seen == []  # never delivered synchronously
    await settle()
    await store.set("rooms/1/status", "in_progress")
    await store.set("rooms/1/questionIndex", 1)  # unrelated path, no new delivery
    await settle()
    subscription.unsubscribe()
    await store.set("rooms/1/status", "finished")
    await settle()
    assert seen == ["lobby", "in_progress"]


async def test_subscribe_to_missing_path_delivers_none(store):
    seen = []
    await store.subscribe("rooms/404", seen.append)
    await settle()
    assert seen == [None]


async def test_transaction_commits_and_aborts(store):
    result = await store.transaction("rooms/1", lambda current: {"count": 1} if current is None else ABORT)
    assert result.committed is True
    assert result.value == {"count": 1}

    again = await store.transaction("rooms/1", lambda current: {"count": 2} if current is None else ABORT)
    assert again.committed is False
    assert again.value == {"count": 1}


async def test_concurrent_transactions_do_not_lose_updates(store):
    await store.set("counter", {"value": 0})

    def increment(current):
        return {"value": current["value"] + 1}

    await asyncio.gather(*(store.transaction("counter", increment) for _ in range(20)))
    assert await store.get("counter") == {"value": 20}


def test_set_in_creates_intermediate_nodes():
    tree = {}
    set_in(tree, ["a", "b", "c"], 1)
    assert tree == {"a": {"b": {"c": 1}}}


def test_merge_fields_on_missing_value():
    assert merge_fields(None, {"a": 1, "b": None}) == {"a": 1}


async def test_empty_path_is_rejected(store):
    with pytest.raises(ValueError):
        await store.get("/")


def test_redis_root_document_split():
    assert root_of("rooms/123456/players/p1") == ("rooms/123456", ["players", "p1"])
    assert root_of("/rooms/123456/") == ("rooms/123456", [])
    with pytest.raises(ValueError):
        root_of("rooms")
