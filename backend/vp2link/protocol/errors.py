"""Exception types raised by the VP2 link core.

Every failure the core reports derives from VP2Error so callers (the
scheduler, the CLI) can catch the whole family in one place. Only CRCError
is retried inside the core; everything else surfaces immediately.
"""

from typing import Optional


class VP2Error(Exception):
    """Base class for console communication failures."""

    def __init__(
        self,
        message: str,
        *,
        station_id: Optional[str] = None,
        command: Optional[str] = None,
        buffer_hex: Optional[str] = None,
    ):
        super().__init__(message)
        self.station_id = station_id
        self.command = command
        self.buffer_hex = buffer_hex


class InvalidFormat(VP2Error, ValueError):
    """Answer-format descriptor could not be compiled."""


class ConnectTimeout(VP2Error):
    """TCP connect did not complete in time."""


class ConnectError(VP2Error):
    """TCP connect was refused or failed."""


class HostUnreachable(VP2Error):
    """Liveness probe failed; the station lock was not attempted."""


class LockBusy(VP2Error):
    """Station lock still held by another caller after the retry budget."""


class CommandTimeout(VP2Error):
    """Response did not reach its expected length before the deadline."""


class CommandInProgress(VP2Error):
    """A command is already outstanding on this connection."""


class ConnectionLost(VP2Error):
    """Connection was torn down while a command was outstanding."""


class ProtocolMismatch(VP2Error):
    """ACK or literal bytes did not match: the link is out of sync."""


class CRCError(VP2Error):
    """Data span failed CRC verification."""


class WakeUpFailed(VP2Error):
    """Console did not answer the wake-up sequence."""
