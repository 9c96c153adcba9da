"""Tests for argument hashing and the cache_method decorator."""

import asyncio
from dataclasses import dataclass

import pytest

from swr_caching import cache_method, hash_arguments


@dataclass
class Query:
    term: str
    limit: int


class Filter:
    def __init__(self, field, value):
        self.field = field
        self.value = value


class Point:
    __slots__ = ("x", "y")

    def __init__(self, x, y):
        self.x = x
        self.y = y


class TestHashArguments:
    """hash_arguments() tests."""

    def test_deterministic(self):
        assert hash_arguments((1, "a"), {"x": [1, 2]}) == hash_arguments((1, "a"), {"x": [1, 2]})

    def test_mapping_order_does_not_matter(self):
        first = hash_arguments(({"a": 1, "b": {"c": 2, "d": 3}},))
        second = hash_arguments(({"b": {"d": 3, "c": 2}, "a": 1},))
        assert first == second

    def test_distinguishes_arguments(self):
        assert hash_arguments((1,)) != hash_arguments((2,))
        assert hash_arguments((1, 2)) != hash_arguments((2, 1))
        assert hash_arguments((), {"a": 1}) != hash_arguments((1,))

    def test_numbers_are_coerced(self):
        assert hash_arguments((1,)) == hash_arguments(("1",))

    def test_structured_values(self):
        assert hash_arguments(({3, 1, 2},)) == hash_arguments(({2, 3, 1},))
        assert hash_arguments((Query("x", 5),)) == hash_arguments((Query("x", 5),))
        assert hash_arguments((Query("x", 5),)) != hash_arguments((Query("x", 6),))
        assert hash_arguments(((1, 2),)) == hash_arguments(([1, 2],))

    def test_plain_objects_hash_by_attributes(self):
        assert hash_arguments((Filter("x", 5),)) == hash_arguments((Filter("x", 5),))
        assert hash_arguments((Filter("x", 5),)) != hash_arguments((Filter("x", 6),))
        assert hash_arguments((Point(1, 2),)) == hash_arguments((Point(1, 2),))
        assert hash_arguments((Point(1, 2),)) != hash_arguments((Point(2, 1),))

    def test_coerced_mapping_keys_do_not_collide(self):
        mixed = hash_arguments(({1: "a", "1": "b"},))
        assert mixed != hash_arguments(({"1": "b"},))
        assert mixed != hash_arguments(({1: "a"},))
        assert mixed == hash_arguments(({"1": "b", 1: "a"},))
        assert hash_arguments(({1: "a"},)) == hash_arguments(({"1": "a"},))

    @pytest.mark.asyncio
    async def test_wrapper_hits_for_equal_plain_objects(self, factory):
        calls = {"count": 0}

        async def search(criteria):
            calls["count"] += 1
            return [criteria.field]

        cached = factory.with_cache(search, operation_id="search", ttl=60_000)

        assert await cached(Filter("x", 5)) == ["x"]
        assert await cached(Filter("x", 5)) == ["x"]
        assert calls["count"] == 1


class TestCacheMethod:
    """cache_method decorator tests."""

    @pytest.mark.asyncio
    async def test_caches_per_arguments(self, container, storage):
        class Repository:
            def __init__(self):
                self.calls = 0

            @cache_method(container, ttl=1000)
            async def get(self, user_id):
                self.calls += 1
                return {"id": user_id}

        repo = Repository()
        assert await repo.get(1) == {"id": 1}
        assert await repo.get(1) == {"id": 1}
        assert await repo.get(2) == {"id": 2}
        assert repo.calls == 2
        assert "Repository:get:[1]" in storage

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_load(self, container):
        class Service:
            calls = 0

            @cache_method(container, ttl=1000)
            async def load(self, name):
                Service.calls += 1
                await asyncio.sleep(0.01)
                return name.upper()

        service = Service()
        results = await asyncio.gather(*(service.load("x") for _ in range(5)))

        assert results == ["X"] * 5
        assert Service.calls == 1

    @pytest.mark.asyncio
    async def test_expiry_and_stale_entries(self, container, clock):
        class Service:
            calls = 0

            @cache_method(container, ttl=100, stale_ttl=300)
            async def load(self):
                Service.calls += 1
                return Service.calls

        service = Service()
        assert await service.load() == 1

        # Stale entries are served without refreshing
        clock.advance(200)
        assert await service.load() == 1

        clock.advance(200)
        assert await service.load() == 2

    @pytest.mark.asyncio
    async def test_custom_key(self, container, storage):
        class Service:
            @cache_method(
                container,
                calculate_key=lambda call: f"{call.method_name}:{call.kwargs['user']['id']}",
            )
            async def profile(self, *, user):
                return user["name"]

        service = Service()
        assert await service.profile(user={"id": 7, "name": "Ada"}) == "Ada"
        assert await service.profile(user={"id": 7, "name": "Other"}) == "Ada"
        assert "profile:7" in storage

    @pytest.mark.asyncio
    async def test_errors_propagate_and_are_not_cached(self, container, storage):
        class Service:
            calls = 0

            @cache_method(container, ttl=1000)
            async def load(self):
                Service.calls += 1
                raise RuntimeError("nope")

        service = Service()
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await service.load()

        assert Service.calls == 2
        assert storage.calls["set_item"] == 0

    @pytest.mark.asyncio
    async def test_subclass_shares_base_class_key(self, container, storage):
        class Repository:
            calls = 0

            @cache_method(container, ttl=1000)
            async def get(self, user_id):
                Repository.calls += 1
                return {"id": user_id}

        class CachedRepository(Repository):
            pass

        assert await Repository().get(1) == {"id": 1}
        assert await CachedRepository().get(1) == {"id": 1}
        assert Repository.calls == 1
        assert "Repository:get:[1]" in storage
        assert "CachedRepository:get:[1]" not in storage
