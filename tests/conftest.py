"""Shared fixtures: a controllable clock and a storage that records calls."""

import pytest

from swr_caching import CacheContainer, CacheFactory, LRUStorage


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingStorage(LRUStorage):
    """LRUStorage that counts port calls."""

    def __init__(self, max_size: int = 100):
        super().__init__(max_size=max_size)
        self.calls = {"get_item": 0, "set_item": 0, "remove_item": 0, "clear": 0}

    async def get_item(self, key):
        self.calls["get_item"] += 1
        return await super().get_item(key)

    async def set_item(self, key, entry):
        self.calls["set_item"] += 1
        await super().set_item(key, entry)

    async def remove_item(self, key):
        self.calls["remove_item"] += 1
        await super().remove_item(key)

    async def clear(self):
        self.calls["clear"] += 1
        await super().clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return RecordingStorage()


@pytest.fixture
def container(storage, clock):
    return CacheContainer(storage, clock=clock)


@pytest.fixture
def factory(container):
    return CacheFactory(container)
