"""Session state machine for TimeFlip2 protocol."""

import asyncio
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from .codec import (
    decode_command_ack,
    decode_password_ack,
    decode_system_state,
    encode_password,
    encode_read_status,
)
from ..const import (
    COMMAND_RESULT_UUID,
    COMMAND_UUID,
    DEFAULT_OPERATION_TIMEOUT,
    DEFAULT_PASSWORD,
    DEFAULT_READY_ATTEMPTS,
    DEFAULT_READY_POLL_INTERVAL,
    PASSWORD_UUID,
    SYSTEM_STATE_UUID,
)
from ..exceptions import (
    AuthenticationError,
    CommandError,
    ConnectionError,
    DecodeError,
    DeviceNotReadyError,
    NotAuthenticatedError,
    TimeFlipError,
    TimeoutError,
    TransportError,
    UntrustedReadingError,
)
from ..models import (
    AuthResult,
    AuthState,
    DeviceSession,
    FacetReading,
    SessionEvent,
    SessionEventType,
    SessionState,
    SystemState,
    utc_now,
)


_LOGGER = logging.getLogger(__name__)


class SessionStateMachine:
    """
    Connection and authentication lifecycle of one TimeFlip2.

    DISCONNECTED -> CONNECTING -> AWAITING_AUTH -> AUTHENTICATED -> READY,
    and back to DISCONNECTED from any state on link loss or disconnect.
    This is the only component that performs I/O on the transport. All
    request/response exchanges are serialized; a disconnect cancels the
    exchange in flight.
    """

    def __init__(
        self,
        transport: Any,
        identity: Any,
        password: str = DEFAULT_PASSWORD,
        ready_attempts: int = DEFAULT_READY_ATTEMPTS,
        ready_poll_interval: float = DEFAULT_READY_POLL_INTERVAL,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        now: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the state machine.

        Args:
            transport: Transport adapter
            identity: Device identity passed to the transport
            password: Six character device password
            ready_attempts: System state reads before giving up
            ready_poll_interval: Delay between system state reads in seconds
            operation_timeout: Timeout for a single read or write in seconds
            now: Clock used for event timestamps

        Raises:
            InvalidPasswordError: If the password is not six ASCII characters
        """
        if ready_attempts < 1:
            raise ValueError(f"ready_attempts must be at least 1, got {ready_attempts}")

        self._transport = transport
        self._password = encode_password(password)
        self._ready_attempts = ready_attempts
        self._ready_poll_interval = ready_poll_interval
        self._operation_timeout = operation_timeout
        self._now = now

        self.session = DeviceSession(identity=identity)

        self._io_lock = asyncio.Lock()
        self._pending: Optional[asyncio.Future] = None

        # Callbacks
        self.on_session_event: Optional[Callable[[SessionEvent], None]] = None

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_ready(self) -> bool:
        return self.session.is_ready

    def emit(
        self,
        kind: SessionEventType,
        error: Optional[BaseException] = None,
        detail: Any = None,
    ) -> SessionEvent:
        event = SessionEvent(kind=kind, timestamp=self._now(), error=error, detail=detail)
        if error is not None:
            _LOGGER.debug("Session event %s: %s", kind.name, error)
        else:
            _LOGGER.debug("Session event %s", kind.name)
        if self.on_session_event:
            try:
                self.on_session_event(event)
            except Exception:
                _LOGGER.exception("Error in session event callback")
        return event

    def emit_error(
        self,
        error: BaseException,
        terminal: bool = False,
        reason: Optional[str] = None,
    ) -> SessionEvent:
        """Surface an error as a session event."""
        detail: Dict[str, Any] = {"terminal": terminal}
        if reason is not None:
            detail["reason"] = reason
        return self.emit(SessionEventType.ERROR, error=error, detail=detail)

    def _transition(
        self,
        state: SessionState,
        kind: Optional[SessionEventType] = None,
        detail: Any = None,
    ):
        if self.session.state != state:
            _LOGGER.debug("Session state: %s -> %s", self.session.state.name, state.name)
            self.session.state = state
        if kind is not None:
            self.emit(kind, detail=detail)

    def _require_link(self) -> Any:
        if self.session.handle is None:
            raise ConnectionError("Not connected")
        return self.session.handle

    def require_ready(self):
        """
        Reject operations that need authentication.

        Raises:
            NotAuthenticatedError: Unless the device is ready and authenticated
        """
        if not self.session.is_ready:
            raise NotAuthenticatedError(
                f"Session is {self.session.state.name}, auth "
                f"{self.session.auth_state.name}, device {self.session.system_state.status.name}"
            )

    def ensure_trusted(self, reading: FacetReading):
        """
        Reject facet readings that arrive outside an authenticated session.

        Raises:
            UntrustedReadingError: If the session is not authenticated
        """
        if not self.session.is_authenticated:
            raise UntrustedReadingError(
                f"Facet {reading.facet_id} reported while {self.session.auth_state.name}"
            )

    # I/O

    async def _io(self, operation: Awaitable) -> Any:
        """Run one transport operation as the cancellable pending operation."""
        task = asyncio.ensure_future(
            asyncio.wait_for(operation, timeout=self._operation_timeout)
        )
        self._pending = task
        try:
            return await task
        except asyncio.TimeoutError:
            raise TimeoutError("Operation timed out") from None
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise ConnectionError("Disconnected while an operation was pending") from None
        finally:
            if self._pending is task:
                self._pending = None

    def cancel_pending(self) -> bool:
        """Cancel the operation in flight. Its caller gets ConnectionError."""
        if self._pending is not None and not self._pending.done():
            _LOGGER.debug("Cancelling pending operation")
            self._pending.cancel()
            return True
        return False

    async def read_characteristic(self, uuid: str) -> bytes:
        handle = self._require_link()
        async with self._io_lock:
            return await self._io(self._transport.read(handle, uuid))

    async def write_characteristic(self, uuid: str, data: bytes):
        """Write a characteristic. Requires an authenticated, ready session."""
        self.require_ready()
        handle = self._require_link()
        async with self._io_lock:
            await self._io(self._transport.write(handle, uuid, data))

    async def transact(self, uuid: str, data: bytes) -> bytes:
        """Write a characteristic and read it back as one exchange."""
        self.require_ready()
        handle = self._require_link()
        async with self._io_lock:
            await self._io(self._transport.write(handle, uuid, data))
            return await self._io(self._transport.read(handle, uuid))

    async def subscribe(self, uuid: str) -> AsyncIterator[bytes]:
        handle = self._require_link()
        return await self._transport.subscribe(handle, uuid)

    async def _exchange(self, payload: bytes) -> bytes:
        """Write a command and read back its acknowledgement. Caller holds the lock."""
        handle = self._require_link()
        await self._io(self._transport.write(handle, COMMAND_UUID, payload))
        return await self._io(self._transport.read(handle, COMMAND_UUID))

    async def execute_command(self, payload: bytes, read_result: bool = False) -> Optional[bytes]:
        """
        Execute a command on the command characteristic.

        Args:
            payload: Encoded command, command id first
            read_result: Whether to read the command result characteristic

        Returns:
            Command result bytes if requested

        Raises:
            NotAuthenticatedError: If the session is not ready
            CommandError: If the device refused the command
        """
        self.require_ready()
        command = payload[0]
        async with self._io_lock:
            ack = await self._exchange(payload)
            try:
                executed = decode_command_ack(ack, command)
            except DecodeError as e:
                raise CommandError(f"Command 0x{command:02X}: {e}") from e
            if not executed:
                raise CommandError(f"Command 0x{command:02X} execution failed")
            if not read_result:
                return None
            handle = self._require_link()
            return await self._io(self._transport.read(handle, COMMAND_RESULT_UUID))

    # Transitions

    async def connect(self):
        """
        Connect, authenticate and wait until the device is ready.

        Raises:
            ConnectionError: If the transport could not connect
            AuthenticationError: If the password was rejected
            DeviceNotReadyError: If the device never reported ready
            TransportError: If the link failed along the way
        """
        if self.session.state != SessionState.DISCONNECTED:
            raise TimeFlipError(f"Cannot connect while {self.session.state.name}")

        self._transition(SessionState.CONNECTING)
        _LOGGER.info("Connecting to %s", self.session.identity)

        try:
            handle = await self._transport.connect(self.session.identity)
        except TransportError as e:
            error = e if isinstance(e, ConnectionError) else ConnectionError(
                f"Failed to connect to {self.session.identity}: {e}"
            )
            _LOGGER.warning("Connection to %s failed: %s", self.session.identity, e)
            self.session.reset()
            self.emit_error(error)
            if error is e:
                raise
            raise error from e

        self.session.handle = handle
        self._transition(SessionState.AWAITING_AUTH, SessionEventType.CONNECTED)

        try:
            await self.authenticate()
            await self.wait_until_ready()
        except TransportError as e:
            _LOGGER.warning("Link failed during session setup: %s", e)
            await self._teardown(e)
            raise

    async def authenticate(self):
        """
        Write the password and verify that the device accepted it.

        The password is cleared device-side on every disconnect, so this runs
        on every connection.
        """
        if self.session.state != SessionState.AWAITING_AUTH:
            raise TimeFlipError(f"Cannot authenticate while {self.session.state.name}")

        self.session.auth_state = AuthState.PENDING_VERIFICATION
        self.session.auth_failure = None
        handle = self._require_link()

        _LOGGER.debug("Writing password")
        async with self._io_lock:
            await self._io(self._transport.write(handle, PASSWORD_UUID, self._password))
            ack = await self._exchange(encode_read_status())

        try:
            result = decode_password_ack(ack)
        except DecodeError as e:
            # Flag rather than guess: the vendor documentation and captured
            # traffic disagree on the meaning of the status byte.
            _LOGGER.error("Unrecognized password acknowledgement %s: %s", ack.hex(), e)
            error = AuthenticationError(f"Unrecognized password acknowledgement {ack.hex()}")
            await self._fail_auth(error, str(e))
            raise error from e

        if result == AuthResult.BAD_PASSWORD:
            _LOGGER.error("Device %s rejected the password", self.session.identity)
            error = AuthenticationError("Device rejected the password")
            await self._fail_auth(error, "bad password")
            raise error

        self.session.auth_state = AuthState.AUTHENTICATED
        self.session.last_authenticated_at = self._now()
        _LOGGER.info("Authenticated with %s", self.session.identity)
        self._transition(SessionState.AUTHENTICATED, SessionEventType.AUTHENTICATED)

    async def _fail_auth(self, error: AuthenticationError, reason: str):
        await self._teardown(error, terminal=True, reason=reason)
        # Outlives the reset so callers can tell why the session ended
        self.session.auth_state = AuthState.FAILED
        self.session.auth_failure = reason

    async def wait_until_ready(self) -> SystemState:
        """
        Poll the system state until the device reports ready.

        A malformed payload leaves the known system state unchanged and counts
        as a failed attempt.

        Raises:
            DeviceNotReadyError: After the configured number of attempts
        """
        if self.session.state != SessionState.AUTHENTICATED:
            raise TimeFlipError(f"Cannot wait for ready while {self.session.state.name}")

        for attempt in range(1, self._ready_attempts + 1):
            data = await self.read_characteristic(SYSTEM_STATE_UUID)
            state = self.apply_system_state(data)
            if state is not None and state.is_ready:
                _LOGGER.info("Device ready: %s", state)
                self._transition(SessionState.READY, SessionEventType.READY, detail=state)
                return state

            _LOGGER.info(
                "Device not ready: %s (attempt %d/%d)",
                self.session.system_state, attempt, self._ready_attempts,
            )
            if attempt < self._ready_attempts:
                await asyncio.sleep(self._ready_poll_interval)

        error = DeviceNotReadyError(
            f"Device not ready after {self._ready_attempts} attempts: {self.session.system_state}"
        )
        _LOGGER.error("%s", error)
        await self._teardown(error, terminal=True)
        raise error

    def apply_system_state(self, data: bytes) -> Optional[SystemState]:
        """
        Decode and store a system state payload.

        Returns:
            The new system state, or None if the payload was malformed
        """
        try:
            state = decode_system_state(data)
        except DecodeError as e:
            _LOGGER.warning("Ignoring malformed system state %s: %s", data.hex(), e)
            self.emit_error(e)
            return None

        if state != self.session.system_state:
            _LOGGER.debug("System state: %s", state)
        self.session.system_state = state
        return state

    def _mark_disconnected(self) -> bool:
        if self.session.state == SessionState.DISCONNECTED and self.session.handle is None:
            return False
        self.session.reset()
        self._transition(SessionState.DISCONNECTED, SessionEventType.DISCONNECTED)
        return True

    async def _release(self, handle: Any):
        try:
            await self._transport.disconnect(handle)
        except TransportError as e:
            _LOGGER.warning("Error during disconnect: %s", e)

    async def _teardown(
        self,
        error: BaseException,
        terminal: bool = False,
        reason: Optional[str] = None,
    ):
        handle = self.session.handle
        if handle is not None:
            await self._release(handle)
        self.emit_error(error, terminal=terminal, reason=reason)
        self._mark_disconnected()

    async def handle_link_loss(self) -> bool:
        """
        Transport reported the link as gone.

        Returns:
            True if the session was connected before
        """
        _LOGGER.info("Link to %s lost", self.session.identity)
        self.cancel_pending()
        handle = self.session.handle
        if handle is not None:
            await self._release(handle)
        return self._mark_disconnected()

    async def disconnect(self):
        """Disconnect on request. Honored even while an exchange is pending."""
        self.cancel_pending()
        handle = self.session.handle
        if handle is not None:
            await self._release(handle)
        if self._mark_disconnected():
            _LOGGER.info("Disconnected from %s", self.session.identity)
