"""Tests for connection reuse and teardown."""

import asyncio

import pytest

from vp2link.protocol.errors import CommandTimeout, ConnectError, ConnectionLost
from vp2link.schemas.station import StationConfig

from fake_console import FakeConsole, make_manager, make_station


class TestConnectionManager:
    def test_connection_is_reused(self, tmp_path):
        async def main():
            console = await FakeConsole({}).start()
            manager = make_manager(tmp_path)
            try:
                station = make_station(console)
                first = await manager.get_or_create(station)
                second = await manager.get_or_create(station)
                return first is second, len(manager)
            finally:
                await manager.close_all()
                await console.stop()

        assert asyncio.run(main()) == (True, 1)

    def test_close_releases_lock(self, tmp_path):
        async def main():
            console = await FakeConsole({}).start()
            manager = make_manager(tmp_path)
            try:
                station = make_station(console)
                conn = await manager.get_or_create(station)
                held = not manager.locks.is_free(station.id)
                await manager.close(station.id)
                return held, manager.locks.is_free(station.id), len(manager), conn.connected
            finally:
                await console.stop()

        assert asyncio.run(main()) == (True, True, 0, False)

    def test_idle_timeout_tears_down(self, tmp_path):
        async def main():
            console = await FakeConsole({}).start()
            manager = make_manager(tmp_path, idle_timeout=0.1)
            try:
                station = make_station(console)
                conn = await manager.get_or_create(station)
                await asyncio.sleep(0.4)
                with pytest.raises(ConnectionLost):
                    await conn.request(b"TEST\n", 1, 0.5)
                return conn.close_reason, len(manager), manager.locks.is_free(station.id)
            finally:
                await manager.close_all()
                await console.stop()

        reason, remaining, free = asyncio.run(main())
        assert reason.startswith("idle")
        assert remaining == 0
        assert free

    def test_idle_clock_restarts_when_command_ends(self, tmp_path):
        async def main():
            console = await FakeConsole({b"GETTIME\n": None}).start()
            manager = make_manager(tmp_path, idle_timeout=0.3)
            try:
                conn = await manager.get_or_create(make_station(console))
                # Outstanding for longer than the idle timeout
                with pytest.raises(CommandTimeout):
                    await conn.request(b"GETTIME\n", 9, 0.5)
                await asyncio.sleep(0.15)
                after_command = conn.connected
                await asyncio.sleep(0.35)
                return after_command, conn.connected
            finally:
                await manager.close_all()
                await console.stop()

        assert asyncio.run(main()) == (True, False)

    def test_hold_open_suspends_idle_teardown(self, tmp_path):
        async def main():
            console = await FakeConsole({}).start()
            manager = make_manager(tmp_path, idle_timeout=0.1)
            try:
                conn = await manager.get_or_create(make_station(console))
                with conn.hold_open():
                    await asyncio.sleep(0.3)
                    held = conn.connected
                await asyncio.sleep(0.3)
                return held, conn.connected
            finally:
                await manager.close_all()
                await console.stop()

        assert asyncio.run(main()) == (True, False)

    def test_refused_connect_releases_lock(self, tmp_path):
        async def main():
            console = await FakeConsole({}).start()
            port = console.port
            await console.stop()
            manager = make_manager(tmp_path)
            station = StationConfig(id="vp2-gone", host="127.0.0.1", port=port)
            with pytest.raises(ConnectError):
                await manager.get_or_create(station)
            return manager.locks.is_free(station.id), len(manager)

        assert asyncio.run(main()) == (True, 0)
