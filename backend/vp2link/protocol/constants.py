"""Protocol constants for the Davis Vantage Pro2 console command interface."""

from enum import IntEnum

# Response codes
ACK = 0x06  # Command accepted
NAK = 0x21  # Command not understood
ESC = 0x1B  # Escape (aborts DMP download, wakes the console)
LF = 0x0A
CR = 0x0D

# Wake-up probe and the console's reply
WAKE_UP_SEQUENCE = bytes([ESC, LF])
WAKE_UP_REPLY = bytes([LF, CR])

# Literal replies
OK_REPLY = b"\n\rOK\n\r"

# Retry budgets (attempts, not retries)
CRC_ATTEMPTS = 2
WAKE_UP_ATTEMPTS = 3
LOCK_ATTEMPTS = 3

# Timing (seconds)
COMMAND_SPACING = 0.2
WAKE_UP_TIMEOUT = 1.2
WAKE_UP_PAUSE = 0.5
CONNECT_TIMEOUT = 2.0
IDLE_TIMEOUT = 1.5
LOCK_STALE_AFTER = 4.0
LOCK_RETRY_INTERVAL = 1.0

# Default TCP port of the serial-to-Ethernet bridges these consoles sit behind
DEFAULT_PORT = 22222

# Packet sizes (data bytes, excluding ACK and CRC)
LOOP_DATA_SIZE = 97
ARCHIVE_PAGE_DATA_SIZE = 265
ARCHIVE_RECORD_SIZE = 52
ARCHIVE_RECORDS_PER_PAGE = 5

# Valid SETPER values in minutes
ARCHIVE_INTERVALS = (1, 5, 10, 15, 30, 60, 120)

# Console time drift tolerated before a resync (seconds)
TIME_SYNC_THRESHOLD = 5


class RainCollectorSize(IntEnum):
    """Rain collector cup size, setup bits 4-5 (EEPROM 0x2B)."""
    IN_001 = 0  # 0.01 in
    MM_02 = 1  # 0.2 mm
    MM_01 = 2  # 0.1 mm


# Millimetres of rain per bucket tip
RAIN_CLICK_MM = {
    RainCollectorSize.IN_001: 0.254,
    RainCollectorSize.MM_02: 0.2,
    RainCollectorSize.MM_01: 0.1,
}
