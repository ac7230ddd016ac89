"""Connection layer for TimeFlip2 BLE communication."""

from .client import TimeFlipClient
from .clock import ClockSync
from .transport import BleakTransport, Transport

__all__ = [
    "BleakTransport",
    "ClockSync",
    "TimeFlipClient",
    "Transport",
]
