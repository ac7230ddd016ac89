"""
TimeFlip2 BLE Protocol Library.

A Python library for tracking time with a TimeFlip2 dice via Bluetooth Low
Energy.

Usage:
    from timeflip2 import TimeFlipClient

    async def main():
        client = TimeFlipClient("AA:BB:CC:DD:EE:FF")
        client.on_session_event = lambda event: print(event)

        # Connect, authenticate and sync the clock
        await client.connect()

        # Time spent per facet
        async for interval in client.intervals():
            print(f"Facet {interval.facet_id}: {interval.duration}")

    import asyncio
    asyncio.run(main())
"""

__version__ = "0.1.0"

# Main client
from .connection.client import TimeFlipClient
from .connection.transport import BleakTransport, Transport

# Configuration
from .config import ConnectionConfig, FacetSide, TimeFlipConfig, load_config

# Models
from .models import (
    ActivityInterval,
    AuthState,
    BatteryLevel,
    Color,
    DeviceStatus,
    DoubleTap,
    FacetReading,
    FacetSettings,
    FacetTask,
    HistoryEntry,
    ReconnectPolicy,
    SessionEvent,
    SessionEventType,
    SessionState,
    SyncType,
    SystemState,
    SystemStatus,
)

# Exceptions
from .exceptions import (
    TimeFlipError,
    TransportError,
    ConnectionError,
    TimeoutError,
    DecodeError,
    LengthMismatchError,
    UnknownStateError,
    InvalidPasswordError,
    UnexpectedPayloadError,
    AuthenticationError,
    NotAuthenticatedError,
    DeviceNotReadyError,
    OrderingError,
    UntrustedReadingError,
    ClockSyncError,
    CommandError,
    ConfigError,
)

# Constants
from .const import (
    TIMEFLIP_SERVICE_UUID,
    FACET_UUID,
    DEFAULT_PASSWORD,
)

__all__ = [
    # Version
    "__version__",
    # Client
    "TimeFlipClient",
    "BleakTransport",
    "Transport",
    # Configuration
    "ConnectionConfig",
    "FacetSide",
    "TimeFlipConfig",
    "load_config",
    # Models
    "ActivityInterval",
    "AuthState",
    "BatteryLevel",
    "Color",
    "DeviceStatus",
    "DoubleTap",
    "FacetReading",
    "FacetSettings",
    "FacetTask",
    "HistoryEntry",
    "ReconnectPolicy",
    "SessionEvent",
    "SessionEventType",
    "SessionState",
    "SyncType",
    "SystemState",
    "SystemStatus",
    # Exceptions
    "TimeFlipError",
    "TransportError",
    "ConnectionError",
    "TimeoutError",
    "DecodeError",
    "LengthMismatchError",
    "UnknownStateError",
    "InvalidPasswordError",
    "UnexpectedPayloadError",
    "AuthenticationError",
    "NotAuthenticatedError",
    "DeviceNotReadyError",
    "OrderingError",
    "UntrustedReadingError",
    "ClockSyncError",
    "CommandError",
    "ConfigError",
    # Constants
    "TIMEFLIP_SERVICE_UUID",
    "FACET_UUID",
    "DEFAULT_PASSWORD",
]
