"""Command transport and console wake-up.

send_command() is the single path every console command takes: spacing
delay, write, collect the framed reply, validate it segment by segment,
then check the CRC. A CRC mismatch is the only failure worth repeating
(bits flipped on the wire); ACK/literal mismatches and timeouts mean the
link is out of step and are reported straight away.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Union

from .answer_format import compile_answer_format, extract_payload
from .commands import build_lamps_command
from .connection import StationConnection
from .constants import (
    ACK,
    COMMAND_SPACING,
    CR,
    CRC_ATTEMPTS,
    ESC,
    LF,
    NAK,
    WAKE_UP_ATTEMPTS,
    WAKE_UP_PAUSE,
    WAKE_UP_REPLY,
    WAKE_UP_SEQUENCE,
    WAKE_UP_TIMEOUT,
)
from .crc import crc16
from .errors import CommandTimeout, CRCError, ProtocolMismatch, VP2Error, WakeUpFailed

logger = logging.getLogger(__name__)

Command = Union[str, bytes]

_CONTROL_NAMES = {
    chr(CR): "<CR>",
    chr(LF): "<LF>",
    chr(ACK): "<ACK>",
    chr(NAK): "<NAK>",
    chr(ESC): "<ESC>",
}


def describe_command(command: Command) -> str:
    """Printable form of a command for logs and error messages."""
    if isinstance(command, bytes):
        if len(command) <= 2:
            text = command.decode("latin-1")
            return "".join(_CONTROL_NAMES.get(c, f"<{ord(c):02X}>") for c in text)
        return f"Binary ({len(command)} bytes)"
    return command.strip()


def encode_command(command: Command) -> bytes:
    """Text commands get a trailing LF; binary payloads are sent verbatim."""
    if isinstance(command, bytes):
        return command
    return f"{command}\n".encode("ascii")


async def send_command(
    conn: StationConnection,
    command: Command,
    timeout: float = 2.0,
    answer_format: str = "",
    spacing: float = COMMAND_SPACING,
) -> bytes:
    """Send one command and return the validated reply payload.

    The payload is the DATA bytes of the reply; when the format ends in
    <CRC> the CRC has been checked and stripped.
    """
    fmt = compile_answer_format(answer_format)
    description = describe_command(command)
    data = encode_command(command)

    for attempt in range(1, CRC_ATTEMPTS + 1):
        await asyncio.sleep(spacing)
        logger.info(
            "Sending to %s (%d/%d): '%s', answer format: %s",
            conn.station_id, attempt, CRC_ATTEMPTS, description, answer_format or "-",
        )
        try:
            reply = await conn.request(data, fmt.total_expected_length, timeout, description)
            try:
                payload = extract_payload(fmt, reply)
            except ProtocolMismatch as e:
                e.station_id = conn.station_id
                e.command = description
                raise
            conn.touch()

            if not fmt.expects_crc:
                return payload

            body = payload[:fmt.data_length_for_crc]
            received = int.from_bytes(
                payload[fmt.data_length_for_crc:fmt.data_length_for_crc + 2], "big",
            )
            calculated = crc16(body)
            if calculated != received:
                raise CRCError(
                    f"Invalid CRC for '{description}' on {conn.station_id}: "
                    f"calculated 0x{calculated:04X}, received 0x{received:04X}",
                    station_id=conn.station_id,
                    command=description,
                    buffer_hex=reply.hex(),
                )
            return body
        except CRCError:
            if attempt < CRC_ATTEMPTS:
                logger.warning(
                    "CRC error from %s (attempt %d), retrying", conn.station_id, attempt,
                )
                continue
            logger.error(
                "Command '%s' to %s failed after %d attempts: CRC error",
                description, conn.station_id, attempt,
            )
            raise
        except VP2Error as e:
            logger.error(
                "Command '%s' to %s failed after %d attempt(s): %s",
                description, conn.station_id, attempt, e,
            )
            raise

    raise AssertionError("unreachable: CRC retry loop exited without result")


async def wake_up(
    conn: StationConnection,
    timeout: float = WAKE_UP_TIMEOUT,
    attempts: int = WAKE_UP_ATTEMPTS,
    pause: float = WAKE_UP_PAUSE,
) -> None:
    """Bring the console out of sleep.

    Sends ESC LF and waits for LF CR. Raises WakeUpFailed after `attempts`
    tries; ConnectionLost propagates as is. The connection is held open
    across the pauses between attempts.
    """
    with conn.hold_open():
        for attempt in range(1, attempts + 1):
            try:
                reply = await conn.request(
                    WAKE_UP_SEQUENCE, len(WAKE_UP_REPLY), timeout, "<ESC><LF>",
                )
                if b"\n" in reply and b"\r" in reply:
                    conn.touch()
                    logger.info("%s - WakeUp!", conn.station_id)
                    return
                logger.warning(
                    "Unexpected wake-up reply from %s: %s", conn.station_id, reply.hex(),
                )
            except CommandTimeout:
                logger.warning(
                    "Wake-up attempt %d/%d for %s timed out",
                    attempt, attempts, conn.station_id,
                )
            if attempt < attempts:
                await asyncio.sleep(pause)

    raise WakeUpFailed(
        f"Failed to wake up console {conn.station_id} after {attempts} attempts",
        station_id=conn.station_id,
        buffer_hex=conn.buffer.hex(),
    )


@asynccontextmanager
async def lamps(conn: StationConnection, timeout: float = 2.0) -> AsyncIterator[None]:
    """Keep the console backlight on for the duration of the block."""
    await send_command(conn, build_lamps_command(True), timeout, "<LF><CR>OK<LF><CR>")
    logger.debug("%s - Screen ON", conn.station_id)
    try:
        yield
    finally:
        try:
            await send_command(conn, build_lamps_command(False), timeout, "<LF><CR>OK<LF><CR>")
            logger.debug("%s - Screen OFF", conn.station_id)
        except VP2Error as e:
            logger.warning("Could not switch off backlight on %s: %s", conn.station_id, e)
