from __future__ import annotations

import pytest

from superapp_core.cache import UserDataCache
from superapp_core.storage import InMemoryKeyValueStorage
from tests.superapp_core.support.fakes import FakeClock

pytestmark = pytest.mark.asyncio


def _cache(storage: InMemoryKeyValueStorage, clock: FakeClock) -> UserDataCache:
    return UserDataCache(storage=storage, ttl_seconds=300, now_fn=clock)


async def test_cached_value_is_returned_to_owner(
    kv_storage: InMemoryKeyValueStorage,
    clock: FakeClock,
) -> None:
    cache = _cache(kv_storage, clock)
    await cache.set("orders", [{"id": 1}], user_id="user-1")

    clock.advance(299)

    assert await cache.get("orders", user_id="user-1") == [{"id": 1}]
    stored = await kv_storage.get("cache:orders")
    assert stored == {
        "data": [{"id": 1}],
        "timestamp": clock() - 299,
        "user_id": "user-1",
    }


async def test_stale_value_is_deleted(
    kv_storage: InMemoryKeyValueStorage,
    clock: FakeClock,
) -> None:
    cache = _cache(kv_storage, clock)
    await cache.set("menu", {"items": []})

    clock.advance(300)

    assert await cache.get("menu") is None
    assert await kv_storage.get("cache:menu") is None


async def test_foreign_owner_never_sees_entry(
    kv_storage: InMemoryKeyValueStorage,
    clock: FakeClock,
) -> None:
    cache = _cache(kv_storage, clock)
    await cache.set("wallet", {"balance": 10}, user_id="user-1")

    assert await cache.get("wallet", user_id="user-2") is None
    assert await cache.get("wallet", user_id="user-1") is None


async def test_unreadable_entry_is_deleted(
    kv_storage: InMemoryKeyValueStorage,
    clock: FakeClock,
) -> None:
    await kv_storage.set("cache:orders", ["not", "an", "envelope"])

    assert await _cache(kv_storage, clock).get("orders") is None
    assert await kv_storage.get("cache:orders") is None


async def test_clear_user_removes_only_that_users_entries(
    kv_storage: InMemoryKeyValueStorage,
    clock: FakeClock,
) -> None:
    cache = _cache(kv_storage, clock)
    await cache.set("orders", [1], user_id="user-1")
    await cache.set("wallet", {"balance": 1}, user_id="user-1")
    await cache.set("profile", {"name": "b"}, user_id="user-2")
    await kv_storage.set("cart:current", {"items": []})

    assert await cache.clear_user("user-1") == 2

    assert await kv_storage.keys() == ["cache:profile", "cart:current"]


async def test_invalidate_and_clear(
    kv_storage: InMemoryKeyValueStorage,
    clock: FakeClock,
) -> None:
    cache = _cache(kv_storage, clock)
    await cache.set("a", 1)
    await cache.set("b", 2)

    await cache.invalidate("a")
    assert await cache.get("a") is None
    assert await cache.clear() == 1
    assert await kv_storage.keys("cache:") == []
