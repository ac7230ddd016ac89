from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from timeflip2.exceptions import (
    DecodeError,
    InvalidPasswordError,
    LengthMismatchError,
    UnexpectedPayloadError,
    UnknownStateError,
)
from timeflip2.models import (
    AuthResult,
    Color,
    FacetTask,
    HardwareError,
    SyncType,
    SystemState,
    SystemStatus,
    TaskType,
)
from timeflip2.protocol.codec import (
    decode_battery,
    decode_command_ack,
    decode_device_status,
    decode_double_tap,
    decode_event_log,
    decode_facet,
    decode_facet_settings,
    decode_history_entry,
    decode_password_ack,
    decode_system_state,
    decode_time,
    encode_auto_pause,
    encode_blink_interval,
    encode_brightness,
    encode_get_task,
    encode_history_request,
    encode_lock_mode,
    encode_password,
    encode_pause_mode,
    encode_set_color,
    encode_set_task,
    encode_system_state,
    encode_time,
)

from conftest import T0


def test_system_state_synchronized_is_ready() -> None:
    state = decode_system_state(bytes([0, 0, 0, 0]))
    assert state.sync is SyncType.SYNCHRONIZED
    assert state.status is SystemStatus.READY
    assert state.is_ready


def test_system_state_variants() -> None:
    assert decode_system_state(bytes([1, 0, 0, 0])).status is SystemStatus.RESET
    required = decode_system_state(bytes([2, 3, 0, 0]))
    assert required.status is SystemStatus.SYNC_REQUIRED
    assert required.sync is SyncType.LED_BRIGHTNESS

    error = decode_system_state(bytes([0, 0, 2, 3]))
    assert error.status is SystemStatus.ERROR
    assert error.error_code is HardwareError.ACCELEROMETER_AND_FLASH
    assert error.accelerometer_error and error.flash_error
    assert not error.is_ready


@pytest.mark.parametrize("error_code", list(HardwareError))
@pytest.mark.parametrize("sync", list(SyncType))
def test_system_state_round_trips(sync: SyncType, error_code: HardwareError) -> None:
    hardware = (0, 0) if error_code is HardwareError.NONE else (2, int(error_code))
    raw = bytes(sync.value + hardware)
    assert encode_system_state(decode_system_state(raw)) == raw


def test_disconnected_system_state_has_no_wire_form() -> None:
    assert SystemState().status is SystemStatus.DISCONNECTED
    with pytest.raises(ValueError):
        encode_system_state(SystemState())


@pytest.mark.parametrize("raw", [bytes([3, 0, 0, 0]), bytes([2, 7, 0, 0]), bytes([0, 0, 1, 1])])
def test_unknown_system_state_raises(raw: bytes) -> None:
    with pytest.raises(UnknownStateError):
        decode_system_state(raw)


def test_length_mismatch() -> None:
    with pytest.raises(LengthMismatchError) as excinfo:
        decode_system_state(bytes([0, 0, 0]))
    assert excinfo.value.expected == 4
    assert excinfo.value.actual == 3
    assert isinstance(excinfo.value, DecodeError)

    with pytest.raises(LengthMismatchError):
        decode_battery(b"")
    with pytest.raises(LengthMismatchError):
        decode_facet(b"\x01\x02", T0)


def test_battery_in_range() -> None:
    level = decode_battery(bytes([57]))
    assert level.percent == 57
    assert not level.clamped


def test_battery_out_of_range_is_clamped_and_flagged() -> None:
    level = decode_battery(bytes([200]))
    assert level.percent == 100
    assert level.clamped
    assert level.raw == 200


def test_default_password_encoding() -> None:
    assert encode_password("000000") == bytes([0x30] * 6)
    assert encode_password(b"abc123") == b"abc123"


@pytest.mark.parametrize("password", ["12345", "1234567", "12345é"])
def test_invalid_password(password: str) -> None:
    with pytest.raises(InvalidPasswordError):
        encode_password(password)


def test_password_ack() -> None:
    assert decode_password_ack(bytes([0x10, 0x02])) is AuthResult.OK
    assert decode_password_ack(bytes([0x10, 0x01])) is AuthResult.BAD_PASSWORD
    with pytest.raises(UnexpectedPayloadError):
        decode_password_ack(bytes([0x10, 0x07]))
    with pytest.raises(UnexpectedPayloadError):
        decode_password_ack(bytes([0x09, 0x02]))


def test_command_ack() -> None:
    assert decode_command_ack(bytes([0x09, 0x02]), 0x09) is True
    assert decode_command_ack(bytes([0x09, 0x01]), 0x09) is False


def test_facet_passes_every_byte_through() -> None:
    assert decode_facet(bytes([0]), T0).facet_id == 0
    assert decode_facet(bytes([255]), T0).facet_id == 255
    assert decode_facet(bytes([7]), T0).observed_at == T0


def test_double_tap_pause_bit() -> None:
    tap = decode_double_tap(bytes([0x83]), T0)
    assert tap.facet_id == 3
    assert tap.paused
    assert not decode_double_tap(bytes([0x03]), T0).paused


def test_event_log() -> None:
    assert decode_event_log(b"Facet: 3") == "Facet: 3"
    with pytest.raises(DecodeError):
        decode_event_log(b"\xff\xfe")


def test_encode_time_literal() -> None:
    assert encode_time(1700000000) == bytes.fromhex("08000000006553f100")


def test_encode_time_from_datetime() -> None:
    moment = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert encode_time(moment) == bytes.fromhex("08000000006553f100")
    assert encode_time(moment.replace(tzinfo=None)) == bytes.fromhex("08000000006553f100")
    with pytest.raises(ValueError):
        encode_time(-1)


def test_decode_time() -> None:
    assert decode_time(bytes.fromhex("07000000006553f100")) == datetime(
        2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc
    )
    with pytest.raises(UnexpectedPayloadError):
        decode_time(bytes.fromhex("08000000006553f100"))


def test_mode_commands() -> None:
    assert encode_lock_mode(True) == bytes([0x04, 0x01])
    assert encode_lock_mode(False) == bytes([0x04, 0x02])
    assert encode_pause_mode(True) == bytes([0x06, 0x01])
    assert encode_pause_mode(False) == bytes([0x06, 0x02])


def test_settings_commands() -> None:
    assert encode_auto_pause(480) == bytes([0x05, 0x01, 0xE0])
    assert encode_brightness(50) == bytes([0x09, 50])
    assert encode_blink_interval(30) == bytes([0x0A, 30])
    with pytest.raises(ValueError):
        encode_brightness(101)
    with pytest.raises(ValueError):
        encode_blink_interval(4)


def test_facet_commands() -> None:
    assert encode_set_color(2, Color(red=0xFFFF, green=0x0100, blue=0)) == bytes.fromhex(
        "1102ffff01000000"
    )
    assert encode_set_task(12, FacetTask.pomodoro(1500)) == bytes.fromhex("130c01000005dc")
    assert encode_set_task(1, FacetTask.simple()) == bytes.fromhex("13010000000000")
    assert encode_get_task(5) == bytes([0x14, 5])
    with pytest.raises(ValueError):
        encode_get_task(13)
    with pytest.raises(ValueError):
        encode_set_color(0, Color())


def test_device_status() -> None:
    status = decode_device_status(bytes([0x01, 0x02, 0x01, 0xE0]))
    assert status.lock_mode
    assert not status.pause_mode
    assert status.auto_pause_minutes == 480
    with pytest.raises(UnexpectedPayloadError):
        decode_device_status(bytes([0x03, 0x02, 0x00, 0x00]))


def test_facet_settings() -> None:
    settings = decode_facet_settings(bytes.fromhex("1403010000070800000064"))
    assert settings.facet_id == 3
    assert settings.task.task_type is TaskType.POMODORO
    assert settings.task.timer_seconds == 1800
    assert settings.seconds_since_start == 100


def test_history_request() -> None:
    assert encode_history_request(7) == bytes([0x01, 0, 0, 0, 7])
    assert encode_history_request(7, since=True) == bytes([0x02, 0, 0, 0, 7])


def test_history_entry() -> None:
    raw = bytes.fromhex("0000002a" "85" "000000006553f100" "0000003c")
    entry = decode_history_entry(raw)
    assert entry.entry_id == 42
    assert entry.facet_id == 5
    assert entry.paused
    assert entry.start_time == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert entry.duration == timedelta(seconds=60)


def test_history_end_marker() -> None:
    assert decode_history_entry(bytes(17)) is None
    with pytest.raises(LengthMismatchError):
        decode_history_entry(bytes(16))
