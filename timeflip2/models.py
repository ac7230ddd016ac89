"""Data models for TimeFlip2 BLE protocol."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum, auto
from typing import Any, Optional

from .const import (
    RECONNECT_BACKOFF_FACTOR,
    RECONNECT_INITIAL_DELAY,
    RECONNECT_MAX_DELAY,
)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class SessionState(IntEnum):
    """Connection lifecycle of a device session."""
    DISCONNECTED = 0
    CONNECTING = 1
    AWAITING_AUTH = 2
    AUTHENTICATED = 3
    READY = 4


class AuthState(IntEnum):
    """Authentication state. Never survives a disconnect."""
    UNAUTHENTICATED = 0
    PENDING_VERIFICATION = 1
    AUTHENTICATED = 2
    FAILED = 3


class AuthResult(IntEnum):
    """Decoded password acknowledgement."""
    OK = 0
    BAD_PASSWORD = 1


class SystemStatus(Enum):
    """Variant of the device system state."""
    DISCONNECTED = auto()
    RESET = auto()
    READY = auto()
    SYNC_REQUIRED = auto()
    ERROR = auto()


class SyncType(Enum):
    """
    First two bytes of the system state characteristic.

    Anything other than SYNCHRONIZED and FACTORY_RESET tells the client which
    setting the device wants written again.
    """
    SYNCHRONIZED = (0, 0)
    FACTORY_RESET = (1, 0)
    TIME = (2, 1)
    FACET_COLOR = (2, 2)
    LED_BRIGHTNESS = (2, 3)
    BLINK_INTERVAL = (2, 4)
    TASK_PARAMETERS = (2, 5)
    AUTO_PAUSE = (2, 6)


class HardwareError(IntEnum):
    """Hardware error code carried in bytes 2-3 of the system state."""
    NONE = 0
    ACCELEROMETER = 1
    FLASH = 2
    ACCELEROMETER_AND_FLASH = 3


@dataclass(frozen=True)
class SystemState:
    """
    Device system state.

    ``sync`` is None while no state has been read on the current link, which
    is reported as ``SystemStatus.DISCONNECTED``.
    """
    sync: Optional[SyncType] = None
    error_code: HardwareError = HardwareError.NONE

    @property
    def status(self) -> SystemStatus:
        if self.sync is None:
            return SystemStatus.DISCONNECTED
        if self.error_code != HardwareError.NONE:
            return SystemStatus.ERROR
        if self.sync is SyncType.FACTORY_RESET:
            return SystemStatus.RESET
        if self.sync is SyncType.SYNCHRONIZED:
            return SystemStatus.READY
        return SystemStatus.SYNC_REQUIRED

    @property
    def is_ready(self) -> bool:
        """Whether the device accepts authenticated operations."""
        return self.status in (SystemStatus.READY, SystemStatus.SYNC_REQUIRED)

    @property
    def accelerometer_error(self) -> bool:
        return bool(self.error_code & HardwareError.ACCELEROMETER)

    @property
    def flash_error(self) -> bool:
        return bool(self.error_code & HardwareError.FLASH)

    def __str__(self) -> str:
        if self.status is SystemStatus.ERROR:
            return f"SystemState(ERROR, code={self.error_code.name})"
        if self.status is SystemStatus.SYNC_REQUIRED:
            return f"SystemState(SYNC_REQUIRED, {self.sync.name})"
        return f"SystemState({self.status.name})"


@dataclass(frozen=True)
class FacetReading:
    """Facet reported face-up at a point in time."""
    facet_id: int
    observed_at: datetime


@dataclass(frozen=True)
class ActivityInterval:
    """Span during which one facet stayed face-up. Open while end_time is None."""
    facet_id: int
    start_time: datetime
    end_time: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def close(self, end_time: datetime) -> "ActivityInterval":
        """Return a closed copy of this interval."""
        return replace(self, end_time=end_time)

    def __str__(self) -> str:
        if self.end_time is None:
            return f"Interval(facet={self.facet_id}, {self.start_time.isoformat()} -> open)"
        return (
            f"Interval(facet={self.facet_id}, {self.start_time.isoformat()} -> "
            f"{self.end_time.isoformat()}, {self.duration.total_seconds():.0f}s)"
        )


@dataclass(frozen=True)
class BatteryLevel:
    """Battery level in percent. ``clamped`` is set when the raw byte exceeded 100."""
    percent: int
    clamped: bool = False
    raw: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.percent}%"


@dataclass(frozen=True)
class DoubleTap:
    """Pause mode entered or left, by double tap or auto-pause."""
    facet_id: int
    paused: bool
    observed_at: datetime


@dataclass(frozen=True)
class DeviceStatus:
    """Result of the read status command."""
    lock_mode: bool
    pause_mode: bool
    auto_pause_minutes: int


class TaskType(IntEnum):
    """Task assigned to a facet."""
    SIMPLE = 0     # Counting up timer
    POMODORO = 1   # Counting down from a limit


@dataclass(frozen=True)
class FacetTask:
    """Facet task. ``timer_seconds`` is the pomodoro limit, 0 for simple tasks."""
    task_type: TaskType = TaskType.SIMPLE
    timer_seconds: int = 0

    @classmethod
    def simple(cls) -> "FacetTask":
        return cls()

    @classmethod
    def pomodoro(cls, seconds: int) -> "FacetTask":
        return cls(TaskType.POMODORO, seconds)


@dataclass(frozen=True)
class FacetSettings:
    """Task settings read back from a facet."""
    facet_id: int
    task: FacetTask
    seconds_since_start: int


@dataclass(frozen=True)
class Color:
    """LED colour, 16 bits per channel."""
    red: int = 0
    green: int = 0
    blue: int = 0

    def __str__(self) -> str:
        return f"RGB({self.red},{self.green},{self.blue})"


@dataclass(frozen=True)
class HistoryEntry:
    """Flip event from the on-device history."""
    entry_id: int
    facet_id: int
    paused: bool
    start_time: datetime
    duration: timedelta

    def __str__(self) -> str:
        action = "paused" if self.paused else "started"
        return (
            f"{self.entry_id}: Facet({self.facet_id}) {action} on "
            f"{self.start_time.isoformat()} for {int(self.duration.total_seconds())} seconds"
        )


class SessionEventType(Enum):
    """Observable session events."""
    CONNECTED = auto()
    AUTHENTICATED = auto()
    READY = auto()
    DISCONNECTED = auto()
    RECONNECTING = auto()
    CLOCK_SYNCED = auto()
    BATTERY_LEVEL = auto()
    DOUBLE_TAP = auto()
    DEVICE_EVENT = auto()
    ERROR = auto()


@dataclass(frozen=True)
class SessionEvent:
    """Out-of-band session event delivered to consumers."""
    kind: SessionEventType
    timestamp: datetime = field(default_factory=utc_now)
    error: Optional[BaseException] = None
    detail: Any = None

    @property
    def is_terminal(self) -> bool:
        """Error events that ended the session for good."""
        return self.kind is SessionEventType.ERROR and bool(
            isinstance(self.detail, dict) and self.detail.get("terminal")
        )

    def __str__(self) -> str:
        if self.error is not None:
            return f"SessionEvent({self.kind.name}: {self.error})"
        return f"SessionEvent({self.kind.name})"


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Automatic reconnect behaviour after a link loss.

    Delays grow by ``factor`` from ``initial_delay`` and never exceed
    ``max_delay``. ``max_attempts`` of None retries forever.
    """
    enabled: bool = True
    initial_delay: float = RECONNECT_INITIAL_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    factor: float = RECONNECT_BACKOFF_FACTOR
    max_attempts: Optional[int] = None

    def delay(self, attempt: int) -> float:
        """Backoff before the given (zero-based) attempt."""
        return min(self.initial_delay * (self.factor ** attempt), self.max_delay)

    def allows(self, attempt: int) -> bool:
        if not self.enabled:
            return False
        return self.max_attempts is None or attempt < self.max_attempts


@dataclass
class DeviceSession:
    """Current session with one TimeFlip2."""
    identity: Any = None
    handle: Any = None
    state: SessionState = SessionState.DISCONNECTED
    system_state: SystemState = field(default_factory=SystemState)
    auth_state: AuthState = AuthState.UNAUTHENTICATED
    auth_failure: Optional[str] = None
    last_authenticated_at: Optional[datetime] = None
    clock_synced_at: Optional[datetime] = None

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state == AuthState.AUTHENTICATED

    @property
    def is_ready(self) -> bool:
        return (
            self.state == SessionState.READY
            and self.is_authenticated
            and self.system_state.is_ready
        )

    def reset(self):
        """Reset session state. The device clears the password on every disconnect."""
        self.handle = None
        self.state = SessionState.DISCONNECTED
        self.system_state = SystemState()
        self.auth_state = AuthState.UNAUTHENTICATED
        self.auth_failure = None
        self.clock_synced_at = None
