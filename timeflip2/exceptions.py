"""Custom exceptions for TimeFlip2 BLE protocol."""


class TimeFlipError(Exception):
    """Base exception for TimeFlip2 errors."""


class TransportError(TimeFlipError):
    """BLE transport failure. Recoverable through reconnect."""


class ConnectionError(TransportError):
    """Error during BLE connection."""


class TimeoutError(TransportError):
    """Operation timed out."""


class DecodeError(TimeFlipError):
    """Malformed characteristic payload."""


class LengthMismatchError(DecodeError):
    """Payload length does not match the characteristic layout."""

    def __init__(self, what: str, expected: int, actual: int):
        super().__init__(f"{what} needs {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class UnknownStateError(DecodeError):
    """System state payload holds a value the protocol does not define."""


class InvalidPasswordError(DecodeError):
    """Password is not exactly six ASCII characters."""


class UnexpectedPayloadError(DecodeError):
    """Payload does not match any known signature."""


class AuthenticationError(TimeFlipError):
    """Device rejected the password."""


class NotAuthenticatedError(TimeFlipError):
    """Attempted operation requiring an authenticated, ready session."""


class DeviceNotReadyError(TimeFlipError):
    """Device did not report a ready system state in time."""


class OrderingError(TimeFlipError):
    """Facet reading timestamp went backwards."""


class UntrustedReadingError(TimeFlipError):
    """Facet reading arrived while the session was not authenticated."""


class ClockSyncError(TimeFlipError):
    """Writing the device time failed."""


class CommandError(TimeFlipError):
    """Device reported a failed command execution."""


class ConfigError(TimeFlipError):
    """Invalid configuration."""
