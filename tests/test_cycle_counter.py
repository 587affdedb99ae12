"""Tests for the daily cycle counter."""
from datetime import datetime

import pytest

from pomoflow.errors import TransientIOError
from pomoflow.local_cache import GUEST_CYCLES_KEY, LocalCache
from pomoflow.logic.cycle_counter import LocalCycleCounter


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def cache(tmp_path):
    return LocalCache(str(tmp_path / "cycles.db"))


@pytest.mark.asyncio
async def test_guest_count_resets_after_midnight(cache):
    clock = FakeClock(datetime(2025, 1, 1, 23, 58))
    counter = LocalCycleCounter(cache, clock=clock)

    assert await counter.record_cycle() == 1
    clock.now = datetime(2025, 1, 1, 23, 59)
    assert await counter.record_cycle() == 2

    clock.now = datetime(2025, 1, 2, 0, 1)
    assert await counter.record_cycle() == 1
    assert cache.get_item(GUEST_CYCLES_KEY) == {"count": 1, "lastUpdated": "2025-01-02T00:01:00"}


@pytest.mark.asyncio
async def test_guest_today_count_drops_stale_entry(cache):
    clock = FakeClock(datetime(2025, 1, 1, 12, 0))
    counter = LocalCycleCounter(cache, clock=clock)
    await counter.record_cycle()
    await counter.record_cycle()
    assert counter.today_count() == 2

    clock.now = datetime(2025, 1, 2, 8, 0)
    assert counter.today_count() == 0
    assert not cache.has_item(GUEST_CYCLES_KEY)


def test_guest_corrupt_entry_counts_as_zero(cache):
    cache.set_item(GUEST_CYCLES_KEY, "garbage")
    assert LocalCycleCounter(cache).today_count() == 0


@pytest.mark.asyncio
async def test_guest_session_counts_locally(session, transport):
    await session.start()
    assert session.cycles.count == 0

    assert await session.cycles.record_cycle() == 1
    assert await session.cycles.record_cycle() == 2
    assert session.cycles.count == 2
    assert ("PUT", "/api/users/cycles/increment") not in transport.requests
    await session.close()


@pytest.mark.asyncio
async def test_logged_in_session_counts_on_server(session):
    await session.register("alice@example.com", "alice", "secret")

    assert await session.cycles.record_cycle() == 1
    assert await session.cycles.record_cycle() == 2
    assert session.identity.user.cycles == 2

    # a fresh check sees the server value
    await session.identity.resolve()
    assert await session.cycles.refresh() == 2
    await session.close()


@pytest.mark.asyncio
async def test_refresh_ignores_previous_day(session, server_db):
    await session.register("alice@example.com", "alice", "secret")
    user_id = session.identity.user.id
    server_db.increment_cycles(user_id, now=datetime(2020, 5, 1, 10, 0))
    server_db.increment_cycles(user_id, now=datetime(2020, 5, 1, 11, 0))

    await session.identity.resolve()
    assert await session.cycles.refresh() == 0
    await session.close()


@pytest.mark.asyncio
async def test_server_failure_surfaces_error(session, transport):
    await session.register("alice@example.com", "alice", "secret")
    transport.fail_when = lambda request: request.url.path.endswith("/cycles/increment")

    with pytest.raises(TransientIOError):
        await session.cycles.record_cycle()
    assert session.cycles.error.startswith("Failed to update daily cycles")
    await session.close()
