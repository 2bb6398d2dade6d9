"""Host liveness probes used before taking a station lock."""

import asyncio
import logging
import shutil
from typing import Awaitable, Callable

from ..schemas.station import StationConfig

logger = logging.getLogger(__name__)

Probe = Callable[[StationConfig], Awaitable[bool]]


async def ping_host(host: str, timeout: float = 1.0) -> bool:
    """Send one ICMP echo request with the system ping binary."""
    proc = await asyncio.create_subprocess_exec(
        "ping", "-c", "1", "-W", str(max(1, round(timeout))), host,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        returncode = await asyncio.wait_for(proc.wait(), timeout=timeout + 1.0)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return False
    return returncode == 0


async def tcp_probe(host: str, port: int, timeout: float = 1.0) -> bool:
    """Open and immediately close a TCP connection."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout,
        )
    except (asyncio.TimeoutError, OSError) as e:
        logger.debug("TCP probe %s:%d failed: %s", host, port, e)
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def make_probe(method: str = "icmp", timeout: float = 1.0) -> Probe:
    """Build the probe callable the lock manager runs per station."""
    use_icmp = method == "icmp" and shutil.which("ping") is not None
    if method == "icmp" and not use_icmp:
        logger.warning("ping binary not found, probing hosts over TCP instead")

    async def probe(station: StationConfig) -> bool:
        if use_icmp:
            alive = await ping_host(station.host, timeout)
        else:
            alive = await tcp_probe(station.host, station.port, timeout)
        logger.debug("Probe %s (%s): %s", station.id, station.host, "up" if alive else "down")
        return alive

    return probe
