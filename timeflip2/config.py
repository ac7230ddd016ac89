"""Device and connection configuration for TimeFlip2."""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import voluptuous as vol

from .const import (
    DEFAULT_AUTO_PAUSE,
    DEFAULT_BLINK_INTERVAL,
    DEFAULT_BRIGHTNESS,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_OPERATION_TIMEOUT,
    DEFAULT_PASSWORD,
    DEFAULT_READY_ATTEMPTS,
    DEFAULT_READY_POLL_INTERVAL,
    FACET_COUNT,
    MAX_AUTO_PAUSE,
    MAX_BLINK_INTERVAL,
    MAX_BRIGHTNESS,
    MIN_BLINK_INTERVAL,
    PASSWORD_LENGTH,
    RECONNECT_BACKOFF_FACTOR,
    RECONNECT_INITIAL_DELAY,
    RECONNECT_MAX_DELAY,
)
from .exceptions import ConfigError
from .models import Color, FacetTask, ReconnectPolicy, TaskType


_LOGGER = logging.getLogger(__name__)


def _password(value: Any) -> str:
    value = vol.Coerce(str)(value)
    if len(value) != PASSWORD_LENGTH or not value.isascii():
        raise vol.Invalid(f"password must be {PASSWORD_LENGTH} ASCII characters")
    return value


def _task(value: Any) -> FacetTask:
    """Accept ``"simple"`` or ``{"pomodoro": seconds}``."""
    if isinstance(value, FacetTask):
        return value
    if isinstance(value, str) and value.lower() == TaskType.SIMPLE.name.lower():
        return FacetTask.simple()
    if isinstance(value, dict) and len(value) == 1:
        kind, seconds = next(iter(value.items()))
        if str(kind).lower() == TaskType.POMODORO.name.lower():
            seconds = vol.All(vol.Coerce(int), vol.Range(min=1, max=0xFFFFFFFF))(seconds)
            return FacetTask.pomodoro(seconds)
    raise vol.Invalid(f"unknown task {value!r}")


_CHANNEL = vol.All(vol.Coerce(int), vol.Range(min=0, max=0xFFFF))

COLOR_SCHEMA = vol.Schema({
    vol.Optional("red", default=0): _CHANNEL,
    vol.Optional("green", default=0): _CHANNEL,
    vol.Optional("blue", default=0): _CHANNEL,
})

SIDE_SCHEMA = vol.Schema({
    vol.Required("facet"): vol.All(vol.Coerce(int), vol.Range(min=1, max=FACET_COUNT)),
    vol.Optional("name"): vol.Any(None, str),
    vol.Optional("color", default=dict): COLOR_SCHEMA,
    vol.Optional("task", default="simple"): _task,
})

CONNECTION_SCHEMA = vol.Schema({
    vol.Optional("connect_timeout", default=DEFAULT_CONNECT_TIMEOUT): vol.All(
        vol.Coerce(float), vol.Range(min=0, min_included=False)
    ),
    vol.Optional("operation_timeout", default=DEFAULT_OPERATION_TIMEOUT): vol.All(
        vol.Coerce(float), vol.Range(min=0, min_included=False)
    ),
    vol.Optional("ready_attempts", default=DEFAULT_READY_ATTEMPTS): vol.All(
        vol.Coerce(int), vol.Range(min=1)
    ),
    vol.Optional("ready_poll_interval", default=DEFAULT_READY_POLL_INTERVAL): vol.All(
        vol.Coerce(float), vol.Range(min=0)
    ),
    vol.Optional("reconnect", default=True): bool,
    vol.Optional("reconnect_initial_delay", default=RECONNECT_INITIAL_DELAY): vol.All(
        vol.Coerce(float), vol.Range(min=0)
    ),
    vol.Optional("reconnect_max_delay", default=RECONNECT_MAX_DELAY): vol.All(
        vol.Coerce(float), vol.Range(min=0)
    ),
    vol.Optional("reconnect_factor", default=RECONNECT_BACKOFF_FACTOR): vol.All(
        vol.Coerce(float), vol.Range(min=1)
    ),
    vol.Optional("reconnect_max_attempts"): vol.Any(None, vol.All(vol.Coerce(int), vol.Range(min=1))),
})

CONFIG_SCHEMA = vol.Schema({
    vol.Optional("password", default=DEFAULT_PASSWORD): _password,
    vol.Optional("brightness", default=DEFAULT_BRIGHTNESS): vol.All(
        vol.Coerce(int), vol.Range(min=0, max=MAX_BRIGHTNESS)
    ),
    vol.Optional("blink_interval", default=DEFAULT_BLINK_INTERVAL): vol.All(
        vol.Coerce(int), vol.Range(min=MIN_BLINK_INTERVAL, max=MAX_BLINK_INTERVAL)
    ),
    vol.Optional("auto_pause", default=DEFAULT_AUTO_PAUSE): vol.All(
        vol.Coerce(int), vol.Range(min=0, max=MAX_AUTO_PAUSE)
    ),
    vol.Optional("sides", default=list): vol.All([SIDE_SCHEMA], vol.Length(max=FACET_COUNT)),
    vol.Optional("connection", default=dict): CONNECTION_SCHEMA,
})


@dataclass(frozen=True)
class FacetSide:
    """Configuration of one facet."""
    facet: int
    name: Optional[str] = None
    color: Color = field(default_factory=Color)
    task: FacetTask = field(default_factory=FacetTask.simple)

    @property
    def label(self) -> str:
        return self.name or f"Facet {self.facet}"


def _fill_sides(sides: List[FacetSide]) -> Tuple[FacetSide, ...]:
    """Add defaults for missing facets and order by facet number."""
    seen = [side.facet for side in sides]
    duplicates = sorted({facet for facet in seen if seen.count(facet) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate facets in configuration: {duplicates}")

    filled = list(sides)
    for facet in range(1, FACET_COUNT + 1):
        if facet not in seen:
            filled.append(FacetSide(facet=facet))
    return tuple(sorted(filled, key=lambda side: side.facet))


@dataclass(frozen=True)
class ConnectionConfig:
    """Connection tuning."""
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    operation_timeout: float = DEFAULT_OPERATION_TIMEOUT
    ready_attempts: int = DEFAULT_READY_ATTEMPTS
    ready_poll_interval: float = DEFAULT_READY_POLL_INTERVAL
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionConfig":
        try:
            values = CONNECTION_SCHEMA(data)
        except vol.Invalid as e:
            raise ConfigError(f"Invalid connection configuration: {e}") from e
        return cls._from_validated(values)

    @classmethod
    def _from_validated(cls, values: Dict[str, Any]) -> "ConnectionConfig":
        if values["reconnect_max_delay"] < values["reconnect_initial_delay"]:
            raise ConfigError("reconnect_max_delay must not be below reconnect_initial_delay")
        return cls(
            connect_timeout=values["connect_timeout"],
            operation_timeout=values["operation_timeout"],
            ready_attempts=values["ready_attempts"],
            ready_poll_interval=values["ready_poll_interval"],
            reconnect=ReconnectPolicy(
                enabled=values["reconnect"],
                initial_delay=values["reconnect_initial_delay"],
                max_delay=values["reconnect_max_delay"],
                factor=values["reconnect_factor"],
                max_attempts=values.get("reconnect_max_attempts"),
            ),
        )


@dataclass(frozen=True)
class TimeFlipConfig:
    """
    Configuration of a TimeFlip2.

    ``sides`` always holds all twelve facets, ordered by facet number. Facets
    not given explicitly get a default side.
    """
    password: str = DEFAULT_PASSWORD
    brightness: int = DEFAULT_BRIGHTNESS
    blink_interval: int = DEFAULT_BLINK_INTERVAL
    auto_pause: int = DEFAULT_AUTO_PAUSE
    sides: Tuple[FacetSide, ...] = ()
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)

    def __post_init__(self):
        object.__setattr__(self, "sides", _fill_sides(list(self.sides)))

    def side(self, facet: int) -> FacetSide:
        """Get the configuration of one facet (1-12)."""
        if not 1 <= facet <= FACET_COUNT:
            raise ValueError(f"facet must be 1-{FACET_COUNT}, got {facet}")
        return self.sides[facet - 1]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeFlipConfig":
        """
        Build a configuration from plain data.

        Args:
            data: Mapping as read from a TOML or JSON file

        Raises:
            ConfigError: If the data does not validate
        """
        try:
            values = CONFIG_SCHEMA(data)
        except vol.Invalid as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        sides = [
            FacetSide(
                facet=side["facet"],
                name=side.get("name"),
                color=Color(**side["color"]),
                task=side["task"],
            )
            for side in values["sides"]
        ]
        return cls(
            password=values["password"],
            brightness=values["brightness"],
            blink_interval=values["blink_interval"],
            auto_pause=values["auto_pause"],
            sides=tuple(sides),
            connection=ConnectionConfig._from_validated(values["connection"]),
        )


def load_config(path: Union[str, Path]) -> TimeFlipConfig:
    """
    Load a configuration from a TOML file.

    Args:
        path: Path to the TOML file

    Returns:
        Validated configuration

    Raises:
        ConfigError: If the file cannot be read or does not validate
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    _LOGGER.debug("Loaded configuration from %s", path)
    return TimeFlipConfig.from_dict(data)
