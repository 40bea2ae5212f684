import asyncio

import fakeredis
import pytest

from trivia_sync.constants.network_constants import REDIS_CHANNEL_KEY, REDIS_DOCUMENT_KEY
from trivia_sync.core.redis_store import RedisStore
from trivia_sync.core.store import ABORT, SERVER_TIMESTAMP


async def eventually(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


@pytest.fixture()
def server():
    return fakeredis.FakeServer()


@pytest.fixture()
async def make_store(server):
    stores = []

    def factory():
        store = RedisStore(fakeredis.FakeAsyncRedis(server=server, decode_responses=True))
        stores.append(store)
        return store

    yield factory
    for store in stores:
        await store.close()


async def test_nested_writes_live_in_one_document(make_store):
    store = make_store()
    await store.set("rooms/123456", {"status": "lobby", "createdAt": SERVER_TIMESTAMP})
    await store.update("rooms/123456/players/p1", {"name": "Ana", "score": 0})
    room = await store.get("rooms/123456")
    assert room["status"] == "lobby"
    assert isinstance(room["createdAt"], int) and room["createdAt"] > 0
    assert room["players"] == {"p1": {"name": "Ana", "score": 0}}
    assert await store.get("rooms/123456/players/p1/name") == "Ana"
    assert await store.get("rooms/999999") is None


async def test_concurrent_transactions_from_two_clients_lose_no_update(make_store):
    first, second = make_store(), make_store()
    await first.set("rooms/1/counter", {"value": 0})

    def increment(current):
        return {"value": current["value"] + 1}

    await asyncio.gather(*(store.transaction("rooms/1/counter", increment) for store in [first, second] * 10))
    assert await second.get("rooms/1/counter") == {"value": 20}


async def test_abort_leaves_the_value_untouched(make_store):
    store = make_store()
    await store.set("rooms/1/players/p1", {"score": 10})
    result = await store.transaction("rooms/1/players/p1", lambda current: ABORT)
    assert result.committed is False
    assert result.value == {"score": 10}
    assert await store.get("rooms/1/players/p1") == {"score": 10}


async def test_deleting_the_last_field_removes_the_key(make_store, server):
    store = make_store()
    client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
    await store.set("rooms/1/players/p1", {"name": "Ana"})
    assert await client.exists(REDIS_DOCUMENT_KEY.format(root="rooms/1")) == 1
    await store.delete("rooms/1/players/p1")
    assert await client.exists(REDIS_DOCUMENT_KEY.format(root="rooms/1")) == 0
    assert await store.get("rooms/1") is None
    await client.aclose()


async def test_subscription_sees_current_value_then_remote_changes(make_store):
    writer, reader = make_store(), make_store()
    await writer.set("rooms/1/status", "lobby")
    seen = []
    subscription = await reader.subscribe("rooms/1/status", seen.append)

    async def delivered(count):
        return len(seen) >= count

    assert await eventually(lambda: delivered(1))
    await writer.set("rooms/1/status", "in_progress")
    assert await eventually(lambda: delivered(2))
    await writer.set("rooms/1/questionIndex", 1)
    await asyncio.sleep(0.05)
    assert seen == ["lobby", "in_progress"]

    subscription.unsubscribe()
    await writer.set("rooms/1/status", "finished")
    await asyncio.sleep(0.05)
    assert seen == ["lobby", "in_progress"]


async def test_channel_is_released_when_its_last_watcher_leaves(make_store, server):
    store = make_store()
    client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
    channel = REDIS_CHANNEL_KEY.format(root="rooms/1")

    async def subscribers():
        return dict(await client.pubsub_numsub(channel)).get(channel, 0)

    first = await store.subscribe("rooms/1/status", lambda value: None)
    second = await store.subscribe("rooms/1/players", lambda value: None)
    assert await subscribers() == 1

    first.unsubscribe()
    await asyncio.sleep(0.05)
    assert await subscribers() == 1

    second.unsubscribe()

    async def released():
        return await subscribers() == 0

    assert await eventually(released)
    await client.aclose()
