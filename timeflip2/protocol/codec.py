"""Payload encoding and decoding for TimeFlip2 characteristics.

All functions are pure. Multi-byte integers are big-endian on the wire.
A payload whose length does not match the characteristic layout always
raises LengthMismatchError; nothing is truncated or padded.
"""

import struct
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from .commands import AUTH_PROBE_COMMAND, Command, ModeFlag
from ..const import (
    BATTERY_LENGTH,
    COMMAND_ACK_LENGTH,
    COMMAND_STATUS_FAILED,
    COMMAND_STATUS_OK,
    DEVICE_STATUS_LENGTH,
    FACET_COUNT,
    FACET_LENGTH,
    FACET_MASK,
    FACET_SETTINGS_LENGTH,
    HISTORY_ENTRY_LENGTH,
    HISTORY_READ_SINCE,
    HISTORY_READ_SINGLE,
    MAX_AUTO_PAUSE,
    MAX_BLINK_INTERVAL,
    MAX_BRIGHTNESS,
    MAX_PERCENT,
    MIN_BLINK_INTERVAL,
    PASSWORD_LENGTH,
    PAUSE_BIT,
    SYSTEM_STATE_LENGTH,
    TIME_PAYLOAD_LENGTH,
)
from ..exceptions import (
    DecodeError,
    InvalidPasswordError,
    LengthMismatchError,
    UnexpectedPayloadError,
    UnknownStateError,
)
from ..models import (
    AuthResult,
    BatteryLevel,
    Color,
    DeviceStatus,
    DoubleTap,
    FacetReading,
    FacetSettings,
    FacetTask,
    HardwareError,
    HistoryEntry,
    SyncType,
    SystemState,
    TaskType,
)


Timestamp = Union[int, float, datetime]


def _check_length(what: str, data: bytes, expected: int):
    if len(data) != expected:
        raise LengthMismatchError(what, expected, len(data))


def _check_facet(facet_id: int):
    if not 1 <= facet_id <= FACET_COUNT:
        raise ValueError(f"facet must be 1-{FACET_COUNT}, got {facet_id}")


def _split_pause(value: int) -> tuple:
    return value & FACET_MASK, bool(value & PAUSE_BIT)


def _to_datetime(seconds: int) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise DecodeError(f"timestamp {seconds} not representable: {e}") from e


# System state

def decode_system_state(data: bytes) -> SystemState:
    """
    Decode the system state characteristic.

    Layout: sync type (2 bytes) + hardware error (2 bytes).
    Byte 0 selects the variant: 0 synchronized, 1 factory reset,
    2 sync required (byte 1 names the setting).
    """
    _check_length("system state", data, SYSTEM_STATE_LENGTH)

    try:
        sync = SyncType((data[0], data[1]))
    except ValueError:
        raise UnknownStateError(
            f"unhandled sync type: 0x{data[0]:02X}, 0x{data[1]:02X}"
        ) from None

    if (data[2], data[3]) == (0, 0):
        error_code = HardwareError.NONE
    elif data[2] == 2 and data[3] in (1, 2, 3):
        error_code = HardwareError(data[3])
    else:
        raise UnknownStateError(
            f"unhandled hardware error: 0x{data[2]:02X}, 0x{data[3]:02X}"
        )

    return SystemState(sync=sync, error_code=error_code)


def encode_system_state(state: SystemState) -> bytes:
    """Inverse of decode_system_state."""
    if state.sync is None:
        raise ValueError("a disconnected system state has no wire form")
    hardware = (0, 0) if state.error_code == HardwareError.NONE else (2, int(state.error_code))
    return bytes(state.sync.value + hardware)


# Battery

def decode_battery(data: bytes) -> BatteryLevel:
    """Decode the battery level. Values above 100 are clamped and flagged."""
    _check_length("battery level", data, BATTERY_LENGTH)
    raw = data[0]
    if raw > MAX_PERCENT:
        return BatteryLevel(percent=MAX_PERCENT, clamped=True, raw=raw)
    return BatteryLevel(percent=raw, raw=raw)


# Authentication

def encode_password(password: Union[str, bytes]) -> bytes:
    """
    Encode the password characteristic value.

    The password is exactly six ASCII characters and is copied byte for byte.
    """
    if isinstance(password, str):
        try:
            data = password.encode("ascii")
        except UnicodeEncodeError:
            raise InvalidPasswordError("password must be ASCII") from None
    else:
        data = bytes(password)
        if any(b > 0x7F for b in data):
            raise InvalidPasswordError("password must be ASCII")

    if len(data) != PASSWORD_LENGTH:
        raise InvalidPasswordError(
            f"password must be {PASSWORD_LENGTH} characters, got {len(data)}"
        )
    return data


def decode_command_ack(data: bytes, command: int) -> bool:
    """
    Decode the acknowledgement read back from the command characteristic.

    Layout: command id + status. Returns True when the device executed the
    command, False when it refused it.
    """
    _check_length("command acknowledgement", data, COMMAND_ACK_LENGTH)
    if data[0] != command:
        raise UnexpectedPayloadError(
            f"acknowledgement for command 0x{data[0]:02X}, expected 0x{command:02X}"
        )
    if data[1] == COMMAND_STATUS_OK:
        return True
    if data[1] == COMMAND_STATUS_FAILED:
        return False
    raise UnexpectedPayloadError(f"unknown command status 0x{data[1]:02X}")


def decode_password_ack(data: bytes) -> AuthResult:
    """Decode the acknowledgement of the authentication probe command."""
    if decode_command_ack(data, AUTH_PROBE_COMMAND):
        return AuthResult.OK
    return AuthResult.BAD_PASSWORD


# Notifications

def decode_facet(data: bytes, observed_at: datetime) -> FacetReading:
    """Decode the facet characteristic. Every byte value is passed through."""
    _check_length("facet", data, FACET_LENGTH)
    return FacetReading(facet_id=data[0], observed_at=observed_at)


def decode_double_tap(data: bytes, observed_at: datetime) -> DoubleTap:
    """Decode a double tap notification: facet in bits 0-6, pause in bit 7."""
    _check_length("double tap", data, FACET_LENGTH)
    facet_id, paused = _split_pause(data[0])
    return DoubleTap(facet_id=facet_id, paused=paused, observed_at=observed_at)


def decode_event_log(data: bytes) -> str:
    """Decode the last event text."""
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"event log is not UTF-8: {e}") from e


# Time

def encode_time(timestamp: Timestamp) -> bytes:
    """
    Encode the set time command.

    Layout: 0x08 + u64 seconds since the Unix epoch (UTC), 9 bytes.
    """
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        seconds = int(timestamp.timestamp())
    else:
        seconds = int(timestamp)
    if seconds < 0:
        raise ValueError(f"timestamp must not be negative, got {seconds}")
    return struct.pack(">BQ", Command.SET_TIME, seconds)


def decode_time(data: bytes) -> datetime:
    """Decode the get time command result: 0x07 + u64 seconds."""
    _check_length("time", data, TIME_PAYLOAD_LENGTH)
    cmd, seconds = struct.unpack(">BQ", data)
    if cmd != Command.GET_TIME:
        raise UnexpectedPayloadError(f"invalid command in time result: 0x{cmd:02X}")
    return _to_datetime(seconds)


def encode_get_time() -> bytes:
    return bytes([Command.GET_TIME])


# Device configuration

def encode_read_status() -> bytes:
    return bytes([Command.READ_STATUS])


def encode_lock_mode(on: bool) -> bytes:
    return bytes([Command.LOCK_MODE, ModeFlag.ON if on else ModeFlag.OFF])


def encode_pause_mode(on: bool) -> bytes:
    return bytes([Command.PAUSE_MODE, ModeFlag.ON if on else ModeFlag.OFF])


def encode_auto_pause(minutes: int) -> bytes:
    """Encode the auto pause time. 0 disables auto pause."""
    if not 0 <= minutes <= MAX_AUTO_PAUSE:
        raise ValueError(f"auto pause must be 0-{MAX_AUTO_PAUSE} minutes, got {minutes}")
    return struct.pack(">BH", Command.AUTO_PAUSE_TIME, minutes)


def encode_brightness(percent: int) -> bytes:
    if not 0 <= percent <= MAX_BRIGHTNESS:
        raise ValueError(f"brightness must be 0-{MAX_BRIGHTNESS}%, got {percent}")
    return bytes([Command.BRIGHTNESS, percent])


def encode_blink_interval(seconds: int) -> bytes:
    if not MIN_BLINK_INTERVAL <= seconds <= MAX_BLINK_INTERVAL:
        raise ValueError(
            f"blink interval must be {MIN_BLINK_INTERVAL}-{MAX_BLINK_INTERVAL} seconds, got {seconds}"
        )
    return bytes([Command.BLINK_INTERVAL, seconds])


def encode_set_color(facet_id: int, color: Color) -> bytes:
    """Encode the set color command: facet + u16 red, green, blue."""
    _check_facet(facet_id)
    for channel in (color.red, color.green, color.blue):
        if not 0 <= channel <= 0xFFFF:
            raise ValueError(f"color channel must be 0-65535, got {channel}")
    return struct.pack(
        ">BBHHH", Command.SET_COLOR, facet_id, color.red, color.green, color.blue
    )


def encode_set_task(facet_id: int, task: FacetTask) -> bytes:
    """Encode the set task parameter command: facet + type + u32 timer."""
    _check_facet(facet_id)
    timer = task.timer_seconds if task.task_type == TaskType.POMODORO else 0
    if not 0 <= timer <= 0xFFFFFFFF:
        raise ValueError(f"timer must fit in 32 bits, got {timer}")
    return struct.pack(">BBBI", Command.SET_TASK_PARAMETER, facet_id, task.task_type, timer)


def encode_get_task(facet_id: int) -> bytes:
    _check_facet(facet_id)
    return bytes([Command.GET_TASK_PARAMETER, facet_id])


def decode_device_status(data: bytes) -> DeviceStatus:
    """Decode the read status result: lock, pause, u16 auto pause minutes."""
    _check_length("device status", data, DEVICE_STATUS_LENGTH)
    lock, pause, auto_pause = struct.unpack(">BBH", data)
    try:
        lock_mode = ModeFlag(lock) == ModeFlag.ON
    except ValueError:
        raise UnexpectedPayloadError(f"unhandled lock mode value: 0x{lock:02X}") from None
    try:
        pause_mode = ModeFlag(pause) == ModeFlag.ON
    except ValueError:
        raise UnexpectedPayloadError(f"unhandled pause mode value: 0x{pause:02X}") from None
    return DeviceStatus(
        lock_mode=lock_mode,
        pause_mode=pause_mode,
        auto_pause_minutes=auto_pause,
    )


def decode_facet_settings(data: bytes) -> FacetSettings:
    """Decode the get task parameter result."""
    _check_length("facet settings", data, FACET_SETTINGS_LENGTH)
    cmd, facet_id, task_type, timer, elapsed = struct.unpack(">BBBII", data)
    if cmd != Command.GET_TASK_PARAMETER:
        raise UnexpectedPayloadError(f"invalid command in task result: 0x{cmd:02X}")
    if task_type == TaskType.SIMPLE:
        task = FacetTask.simple()
    elif task_type == TaskType.POMODORO:
        task = FacetTask.pomodoro(timer)
    else:
        raise UnexpectedPayloadError(f"unhandled task value: 0x{task_type:02X}")
    return FacetSettings(facet_id=facet_id, task=task, seconds_since_start=elapsed)


# History

def encode_history_request(entry_id: int, since: bool = False) -> bytes:
    """
    Encode a history read request.

    With ``since`` the device notifies every entry from ``entry_id`` on,
    otherwise the single entry is made readable. HISTORY_LAST_ENTRY selects
    the newest entry.
    """
    if not 0 <= entry_id <= 0xFFFFFFFF:
        raise ValueError(f"entry id must fit in 32 bits, got {entry_id}")
    mode = HISTORY_READ_SINCE if since else HISTORY_READ_SINGLE
    return struct.pack(">BI", mode, entry_id)


def decode_history_entry(data: bytes) -> Optional[HistoryEntry]:
    """
    Decode a history entry: u32 id, facet, u64 start, u32 duration.

    Returns None for the all-zero end of history marker.
    """
    _check_length("history entry", data, HISTORY_ENTRY_LENGTH)
    entry_id, facet, start, duration = struct.unpack(">IBQI", data)
    if entry_id == 0 and facet == 0 and start == 0 and duration == 0:
        return None
    facet_id, paused = _split_pause(facet)
    return HistoryEntry(
        entry_id=entry_id,
        facet_id=facet_id,
        paused=paused,
        start_time=_to_datetime(start),
        duration=timedelta(seconds=duration),
    )
