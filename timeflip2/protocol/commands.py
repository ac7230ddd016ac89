"""Command ids for the TimeFlip2 command characteristic."""

from enum import IntEnum


class Command(IntEnum):
    """TimeFlip2 commands, written as the first byte to COMMAND_UUID."""

    LOCK_MODE = 0x04          # 0x01 on, 0x02 off
    AUTO_PAUSE_TIME = 0x05    # u16 minutes, 0 disables
    PAUSE_MODE = 0x06         # 0x01 on, 0x02 off
    GET_TIME = 0x07           # Result: 0x07 + u64 seconds
    SET_TIME = 0x08           # u64 seconds
    BRIGHTNESS = 0x09         # percent
    BLINK_INTERVAL = 0x0A     # seconds, 5-60
    READ_STATUS = 0x10        # Result: lock, pause, u16 auto pause
    SET_COLOR = 0x11          # facet, u16 red, u16 green, u16 blue
    SET_TASK_PARAMETER = 0x13 # facet, task type, u32 timer
    GET_TASK_PARAMETER = 0x14 # facet. Result: 0x14, facet, type, u32 timer, u32 elapsed

    # Not wired up: name record (0x15), double tap setting (0x16, 0x17),
    # set password (0x30), reset tasks (0xFE), factory reset (0xFF)


# Command used to probe whether the password was accepted.
AUTH_PROBE_COMMAND = Command.READ_STATUS


class ModeFlag(IntEnum):
    """On/off argument of LOCK_MODE and PAUSE_MODE."""
    ON = 0x01
    OFF = 0x02
