"""Tests for the per-station lock files."""

import asyncio
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from vp2link.protocol.errors import HostUnreachable, LockBusy
from vp2link.protocol.lock import StationLockManager
from vp2link.schemas.station import StationConfig

STATION = StationConfig(id="vp2-north", host="192.0.2.10")


class CountingProbe:
    def __init__(self, alive: bool = True):
        self.alive = alive
        self.calls = 0

    async def __call__(self, station: StationConfig) -> bool:
        self.calls += 1
        return self.alive


def make_locks(tmp_path, probe=None, **kwargs) -> StationLockManager:
    kwargs.setdefault("retry_interval", 0.05)
    return StationLockManager(tmp_path, probe or CountingProbe(), **kwargs)


class TestAcquire:
    def test_free_station(self, tmp_path):
        locks = make_locks(tmp_path)
        asyncio.run(locks.acquire(STATION))
        assert (tmp_path / "vp2-north.lock").exists()
        assert not locks.is_free("vp2-north")

    def test_unreachable_host_skips_lock(self, tmp_path):
        probe = CountingProbe(alive=False)
        locks = make_locks(tmp_path, probe)
        with pytest.raises(HostUnreachable):
            asyncio.run(locks.acquire(STATION))
        assert probe.calls == 1
        assert not (tmp_path / "vp2-north.lock").exists()

    def test_fresh_marker_is_busy(self, tmp_path):
        probe = CountingProbe()
        locks = make_locks(tmp_path, probe, attempts=3)
        locks.touch("vp2-north")
        started = time.monotonic()
        with pytest.raises(LockBusy):
            asyncio.run(locks.acquire(STATION))
        assert time.monotonic() - started >= 0.1
        assert probe.calls == 1

    def test_stale_marker_is_taken_over(self, tmp_path):
        locks = make_locks(tmp_path, stale_after=4.0)
        locks.touch("vp2-north")
        marker = tmp_path / "vp2-north.lock"
        old = time.time() - 10
        os.utime(marker, (old, old))
        assert locks.is_free("vp2-north")

        asyncio.run(locks.acquire(STATION))
        assert locks.lock_age("vp2-north") < 4.0

    def test_release_wakes_waiter(self, tmp_path):
        locks = make_locks(tmp_path, retry_interval=5.0, attempts=2)

        async def scenario():
            await locks.acquire(STATION)
            waiter = asyncio.create_task(locks.acquire(STATION))
            await asyncio.sleep(0.05)
            locks.release("vp2-north")
            started = time.monotonic()
            await asyncio.wait_for(waiter, timeout=2.0)
            return time.monotonic() - started

        assert asyncio.run(scenario()) < 2.0


class TestTake:
    def test_second_take_is_refused(self, tmp_path):
        locks = make_locks(tmp_path)
        assert locks.take("vp2-north") is True
        assert locks.take("vp2-north") is False

    def test_stale_marker_is_replaced(self, tmp_path):
        locks = make_locks(tmp_path, stale_after=4.0)
        locks.touch("vp2-north")
        old = time.time() - 10
        os.utime(tmp_path / "vp2-north.lock", (old, old))
        assert locks.take("vp2-north") is True
        assert locks.lock_age("vp2-north") < 4.0
        assert sorted(p.name for p in tmp_path.iterdir()) == ["vp2-north.lock"]

    def test_abandoned_breaker_is_cleared(self, tmp_path):
        locks = make_locks(tmp_path, stale_after=4.0)
        old = time.time() - 10
        for name in ("vp2-north.lock", "vp2-north.lock.break"):
            (tmp_path / name).write_text("")
            os.utime(tmp_path / name, (old, old))
        assert locks.take("vp2-north") is False
        assert not (tmp_path / "vp2-north.lock.break").exists()
        assert locks.take("vp2-north") is True

    @pytest.mark.parametrize("stale", [False, True])
    def test_racing_contenders_get_one_winner(self, tmp_path, stale):
        locks = make_locks(tmp_path, stale_after=4.0)
        if stale:
            locks.touch("vp2-north")
            old = time.time() - 10
            os.utime(tmp_path / "vp2-north.lock", (old, old))
        contenders = 8
        barrier = threading.Barrier(contenders)

        def contend():
            barrier.wait()
            return locks.take("vp2-north")

        with ThreadPoolExecutor(max_workers=contenders) as pool:
            results = list(pool.map(lambda _: contend(), range(contenders)))
        assert results.count(True) == 1


class TestRelease:
    def test_release_is_idempotent(self, tmp_path):
        locks = make_locks(tmp_path)
        asyncio.run(locks.acquire(STATION))
        locks.release("vp2-north")
        locks.release("vp2-north")
        assert locks.is_free("vp2-north")
        assert locks.lock_age("vp2-north") is None

    def test_stations_are_independent(self, tmp_path):
        locks = make_locks(tmp_path)
        locks.touch("vp2-south")
        assert locks.is_free("vp2-north")
        assert not locks.is_free("vp2-south")
