"""Tests for the Redis turn lock."""

import pytest
from redis.exceptions import ConnectionError, LockError

from app.infra import redis as redis_module
from app.infra.redis import turn_lock, turn_lock_key


class FakeLock:
    def __init__(self, acquired=True, acquire_error=None, release_error=None):
        self.acquired = acquired
        self.acquire_error = acquire_error
        self.release_error = release_error
        self.released = False

    async def acquire(self):
        if self.acquire_error:
            raise self.acquire_error
        return self.acquired

    async def release(self):
        if self.release_error:
            raise self.release_error
        self.released = True


class FakeRedis:
    def __init__(self, lock: FakeLock):
        self._lock = lock
        self.calls = []

    def lock(self, name, timeout=None, blocking_timeout=None):
        self.calls.append((name, timeout, blocking_timeout))
        return self._lock


def use_client(monkeypatch, client):
    async def get_redis():
        return client

    monkeypatch.setattr(redis_module, "get_redis", get_redis)


class TestTurnLock:
    """Test acquisition, release and fail-open behavior."""

    def test_key(self):
        assert turn_lock_key("c1", "p1") == "clinic-scheduler:v1:turn:c1:p1"

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, monkeypatch):
        lock = FakeLock()
        client = FakeRedis(lock)
        use_client(monkeypatch, client)

        async with turn_lock("c1", "p1", ttl=30) as held:
            assert held is True
            assert lock.released is False

        assert lock.released is True
        assert client.calls == [("clinic-scheduler:v1:turn:c1:p1", 30, 30)]

    @pytest.mark.asyncio
    async def test_without_redis(self, monkeypatch):
        use_client(monkeypatch, None)

        async with turn_lock("c1", "p1") as held:
            assert held is False

    @pytest.mark.asyncio
    async def test_not_acquired_runs_unlocked(self, monkeypatch):
        lock = FakeLock(acquired=False)
        use_client(monkeypatch, FakeRedis(lock))

        async with turn_lock("c1", "p1", ttl=1) as held:
            assert held is False

        assert lock.released is False

    @pytest.mark.asyncio
    async def test_acquire_error_runs_unlocked(self, monkeypatch):
        use_client(monkeypatch, FakeRedis(FakeLock(acquire_error=ConnectionError("down"))))

        async with turn_lock("c1", "p1") as held:
            assert held is False

    @pytest.mark.asyncio
    async def test_expired_lock_release_is_ignored(self, monkeypatch):
        use_client(monkeypatch, FakeRedis(FakeLock(release_error=LockError("expired"))))

        async with turn_lock("c1", "p1") as held:
            assert held is True

    @pytest.mark.asyncio
    async def test_body_exception_propagates(self, monkeypatch):
        lock = FakeLock()
        use_client(monkeypatch, FakeRedis(lock))

        with pytest.raises(RuntimeError):
            async with turn_lock("c1", "p1"):
                raise RuntimeError("turn failed")

        assert lock.released is True
