"""Main TimeFlip2 BLE client."""

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, List, Optional

from ..config import TimeFlipConfig
from ..const import (
    BATTERY_LEVEL_UUID,
    DOUBLE_TAP_UUID,
    EVENT_UUID,
    FACET_UUID,
    HISTORY_LAST_ENTRY,
    HISTORY_UUID,
    SYSTEM_STATE_UUID,
)
from ..exceptions import (
    AuthenticationError,
    ClockSyncError,
    ConnectionError,
    DecodeError,
    DeviceNotReadyError,
    OrderingError,
    TimeFlipError,
    TimeoutError,
    TransportError,
    UntrustedReadingError,
)
from ..models import (
    ActivityInterval,
    BatteryLevel,
    Color,
    DeviceStatus,
    DoubleTap,
    FacetReading,
    FacetSettings,
    FacetTask,
    HistoryEntry,
    SessionEvent,
    SessionEventType,
    SessionState,
    SyncType,
    SystemState,
    utc_now,
)
from ..protocol.codec import (
    decode_battery,
    decode_device_status,
    decode_double_tap,
    decode_event_log,
    decode_facet,
    decode_facet_settings,
    decode_history_entry,
    decode_system_state,
    encode_auto_pause,
    encode_blink_interval,
    encode_brightness,
    encode_get_task,
    encode_history_request,
    encode_lock_mode,
    encode_pause_mode,
    encode_read_status,
    encode_set_color,
    encode_set_task,
)
from ..protocol.state_machine import SessionStateMachine
from ..tracking import FacetTracker
from .clock import ClockSync
from .transport import BleakTransport, Transport


_LOGGER = logging.getLogger(__name__)

NOTIFY_UUIDS = (FACET_UUID, BATTERY_LEVEL_UUID, DOUBLE_TAP_UUID, EVENT_UUID)

# Ends the interval stream
_END = None


class TimeFlipClient:
    """
    Session handle for one TimeFlip2.

    Usage:
        client = TimeFlipClient("AA:BB:CC:DD:EE:FF")
        client.on_session_event = lambda e: print(f"Session: {e}")

        await client.connect()
        async for interval in client.intervals():
            print(interval)

    The interval stream is lazy and can be requested once; intervals closed
    before it was requested are only passed to ``on_activity_interval``. It
    survives reconnects and ends after an explicit disconnect or once
    reconnecting has given up.
    """

    def __init__(
        self,
        identity,
        transport: Optional[Transport] = None,
        config: Optional[TimeFlipConfig] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize TimeFlip2 client.

        Args:
            identity: BLEDevice object or Bluetooth address string
            transport: Transport adapter, BleakTransport by default
            config: Device and connection configuration
            now: Clock used to timestamp readings
        """
        self.config = config or TimeFlipConfig()
        connection = self.config.connection

        self._transport = transport or BleakTransport(timeout=connection.connect_timeout)
        self._operation_timeout = connection.operation_timeout
        self._reconnect_policy = connection.reconnect
        self._now = now

        self._machine = SessionStateMachine(
            self._transport,
            identity,
            password=self.config.password,
            ready_attempts=connection.ready_attempts,
            ready_poll_interval=connection.ready_poll_interval,
            operation_timeout=connection.operation_timeout,
            now=now,
        )
        self._machine.on_session_event = self._on_session_event
        self._clock = ClockSync(self._machine, now=now)
        self._tracker = FacetTracker()

        self._intervals: asyncio.Queue = asyncio.Queue()
        self._intervals_claimed = False
        self._run_task: Optional[asyncio.Task] = None
        self._closing = False
        self._closed = False
        self._battery: Optional[BatteryLevel] = None

        self._handlers: Dict[str, Callable[[bytes], None]] = {
            FACET_UUID: self._handle_facet,
            BATTERY_LEVEL_UUID: self._handle_battery,
            DOUBLE_TAP_UUID: self._handle_double_tap,
            EVENT_UUID: self._handle_event_log,
        }

        # Callbacks
        self.on_session_event: Optional[Callable[[SessionEvent], None]] = None
        self.on_activity_interval: Optional[Callable[[ActivityInterval], None]] = None
        self.on_battery_level: Optional[Callable[[BatteryLevel], None]] = None
        self.on_double_tap: Optional[Callable[[DoubleTap], None]] = None

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def is_ready(self) -> bool:
        """Check if connected, authenticated and ready."""
        return self._machine.is_ready

    @property
    def system_state(self) -> SystemState:
        return self._machine.session.system_state

    @property
    def battery_level(self) -> Optional[BatteryLevel]:
        """Last battery level reported by the device."""
        return self._battery

    @property
    def current_interval(self) -> Optional[ActivityInterval]:
        return self._tracker.open_interval

    def _on_session_event(self, event: SessionEvent):
        if self.on_session_event:
            self.on_session_event(event)

    # Lifecycle

    async def connect(self):
        """
        Connect, authenticate, sync the clock and start tracking.

        Raises:
            ConnectionError: If the transport could not connect
            AuthenticationError: If the password was rejected
            DeviceNotReadyError: If the device never reported ready
        """
        if self._closed:
            raise TimeFlipError("Client is closed")
        if self._run_task is not None:
            raise TimeFlipError("Already connected")

        streams = await self._establish()
        self._run_task = asyncio.create_task(self._run(streams))

    async def disconnect(self):
        """Disconnect and end the interval stream."""
        if self._closed:
            return
        self._closing = True
        self._machine.cancel_pending()

        task, self._run_task = self._run_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        try:
            self._close_open_interval()
        finally:
            try:
                await self._machine.disconnect()
            finally:
                self._finish()

    async def __aenter__(self) -> "TimeFlipClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()

    async def _establish(self) -> Dict[str, AsyncIterator[bytes]]:
        """Bring a session up to READY and subscribe to notifications."""
        await self._machine.connect()

        try:
            await self._clock.sync_once()
        except ClockSyncError as e:
            # Session stays up without a synced clock
            self._machine.emit_error(e)

        streams: Dict[str, AsyncIterator[bytes]] = {}
        try:
            for uuid in NOTIFY_UUIDS:
                streams[uuid] = await self._machine.subscribe(uuid)
            data = await self._machine.read_characteristic(FACET_UUID)
        except TransportError as e:
            _LOGGER.warning("Failed to start notifications: %s", e)
            for stream in streams.values():
                await stream.aclose()
            self._machine.emit_error(e)
            await self._machine.handle_link_loss()
            raise

        self._dispatch(FACET_UUID, data)
        return streams

    async def _pump(self, uuid: str, stream: AsyncIterator[bytes], queue: asyncio.Queue):
        try:
            async for data in stream:
                queue.put_nowait((uuid, data))
        finally:
            queue.put_nowait((uuid, None))
            await stream.aclose()

    async def _consume(self, streams: Dict[str, AsyncIterator[bytes]]):
        """Merge notification streams in arrival order until the facet stream ends."""
        queue: asyncio.Queue = asyncio.Queue()
        pumps = [
            asyncio.create_task(self._pump(uuid, stream, queue))
            for uuid, stream in streams.items()
        ]
        try:
            while True:
                uuid, data = await queue.get()
                if data is None:
                    if uuid == FACET_UUID:
                        return
                    continue
                self._dispatch(uuid, data)
        finally:
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)

    async def _run(self, streams: Dict[str, AsyncIterator[bytes]]):
        try:
            while streams is not None:
                await self._consume(streams)
                if self._closing:
                    return
                self._close_open_interval()
                await self._machine.handle_link_loss()
                streams = await self._reconnect()
        except Exception as e:
            _LOGGER.exception("Session task failed, closing the session")
            self._machine.emit_error(e, terminal=True)
            await self._machine.handle_link_loss()
        finally:
            if not self._closing:
                self._finish()

    async def _reconnect(self) -> Optional[Dict[str, AsyncIterator[bytes]]]:
        """
        Reconnect with exponential backoff.

        Returns:
            Notification streams of the new session, or None when giving up
        """
        policy = self._reconnect_policy
        attempt = 0
        while not self._closing and policy.allows(attempt):
            delay = policy.delay(attempt)
            attempt += 1
            _LOGGER.info(
                "Reconnecting to %s in %.1fs (attempt %d)",
                self._machine.session.identity, delay, attempt,
            )
            self._machine.emit(
                SessionEventType.RECONNECTING,
                detail={"attempt": attempt, "delay": delay},
            )
            await asyncio.sleep(delay)
            if self._closing:
                return None

            try:
                return await self._establish()
            except (AuthenticationError, DeviceNotReadyError) as e:
                # Already reported as terminal by the state machine
                _LOGGER.error("Giving up reconnecting: %s", e)
                return None
            except TransportError as e:
                _LOGGER.warning("Reconnect attempt %d failed: %s", attempt, e)

        if not self._closing:
            error = ConnectionError(f"Link lost, gave up after {attempt} reconnect attempt(s)")
            _LOGGER.error("%s", error)
            self._machine.emit_error(error, terminal=True)
        return None

    def _finish(self):
        if self._closed:
            return
        self._closed = True
        self._intervals.put_nowait(_END)

    # Notifications

    def _dispatch(self, uuid: str, data: bytes):
        handler = self._handlers.get(uuid)
        if handler is None:
            _LOGGER.debug("Ignoring notification on %s: %s", uuid, data.hex())
            return
        try:
            handler(data)
        except (DecodeError, OrderingError, UntrustedReadingError) as e:
            _LOGGER.warning("Dropping notification on %s (%s): %s", uuid, data.hex(), e)
            self._machine.emit_error(e)
        except Exception:
            _LOGGER.exception("Error handling notification on %s", uuid)

    def _handle_facet(self, data: bytes):
        reading = decode_facet(data, self._now())
        self._machine.ensure_trusted(reading)
        closed = self._tracker.feed(reading)
        if closed is not None:
            self._emit_interval(closed)

    def _handle_battery(self, data: bytes):
        level = decode_battery(data)
        if level.clamped:
            _LOGGER.warning("Battery level %d out of range, clamped to %d", level.raw, level.percent)
        self._battery = level
        self._callback(self.on_battery_level, level)
        self._machine.emit(SessionEventType.BATTERY_LEVEL, detail=level)

    def _handle_double_tap(self, data: bytes):
        tap = decode_double_tap(data, self._now())
        _LOGGER.debug("Double tap on facet %d, paused=%s", tap.facet_id, tap.paused)
        self._callback(self.on_double_tap, tap)
        self._machine.emit(SessionEventType.DOUBLE_TAP, detail=tap)

    def _handle_event_log(self, data: bytes):
        message = decode_event_log(data)
        _LOGGER.debug("Device event: %s", message)
        self._machine.emit(SessionEventType.DEVICE_EVENT, detail=message)

    def _callback(self, callback: Optional[Callable], value):
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            _LOGGER.exception("Error in %s callback", type(value).__name__)

    def _emit_interval(self, interval: ActivityInterval):
        _LOGGER.debug("Activity interval: %s", interval)
        # Nothing is buffered for a stream nobody asked for
        if self._intervals_claimed:
            self._intervals.put_nowait(interval)
        self._callback(self.on_activity_interval, interval)

    def _close_open_interval(self):
        try:
            closed = self._tracker.close(self._now())
        except OrderingError as e:
            _LOGGER.warning("Cannot close open interval: %s", e)
            self._machine.emit_error(e)
            return
        if closed is not None:
            self._emit_interval(closed)

    def intervals(self) -> AsyncIterator[ActivityInterval]:
        """
        Get the stream of closed activity intervals.

        Buffers intervals from this call on until they are consumed.

        Raises:
            TimeFlipError: If the stream was already requested
        """
        if self._intervals_claimed:
            raise TimeFlipError("Interval stream can only be consumed once")
        self._intervals_claimed = True
        return self._iter_intervals()

    async def _iter_intervals(self) -> AsyncIterator[ActivityInterval]:
        while True:
            interval = await self._intervals.get()
            if interval is _END:
                return
            yield interval

    # Clock

    async def resync_clock(self) -> datetime:
        """
        Write the current time to the device.

        Raises:
            ClockSyncError: If the write failed
        """
        return await self._clock.resync()

    async def read_time(self) -> datetime:
        """Read the device clock."""
        return await self._clock.device_time()

    # Reads

    async def read_battery(self) -> BatteryLevel:
        data = await self._machine.read_characteristic(BATTERY_LEVEL_UUID)
        self._battery = decode_battery(data)
        return self._battery

    async def read_facet(self) -> FacetReading:
        """Read the facet currently facing up. Does not feed the tracker."""
        data = await self._machine.read_characteristic(FACET_UUID)
        return decode_facet(data, self._now())

    async def read_system_state(self) -> SystemState:
        data = await self._machine.read_characteristic(SYSTEM_STATE_UUID)
        state = decode_system_state(data)
        self._machine.session.system_state = state
        return state

    async def read_status(self) -> DeviceStatus:
        """Read lock, pause and auto-pause settings."""
        result = await self._machine.execute_command(encode_read_status(), read_result=True)
        return decode_device_status(result)

    # Commands

    async def lock(self):
        await self._machine.execute_command(encode_lock_mode(True))

    async def unlock(self):
        await self._machine.execute_command(encode_lock_mode(False))

    async def pause(self):
        await self._machine.execute_command(encode_pause_mode(True))

    async def unpause(self):
        await self._machine.execute_command(encode_pause_mode(False))

    async def set_auto_pause(self, minutes: int):
        """Pause automatically after ``minutes``; 0 disables auto-pause."""
        await self._machine.execute_command(encode_auto_pause(minutes))

    async def set_brightness(self, percent: int):
        await self._machine.execute_command(encode_brightness(percent))

    async def set_blink_interval(self, seconds: int):
        await self._machine.execute_command(encode_blink_interval(seconds))

    async def set_color(self, facet_id: int, color: Color):
        await self._machine.execute_command(encode_set_color(facet_id, color))

    async def set_task(self, facet_id: int, task: FacetTask):
        await self._machine.execute_command(encode_set_task(facet_id, task))

    async def read_task(self, facet_id: int) -> FacetSettings:
        result = await self._machine.execute_command(encode_get_task(facet_id), read_result=True)
        return decode_facet_settings(result)

    # History

    async def read_history_entry(self, entry_id: int) -> Optional[HistoryEntry]:
        """
        Read one entry of the on-device flip history.

        Returns:
            The entry, or None if no entry with that id exists
        """
        data = await self._machine.transact(HISTORY_UUID, encode_history_request(entry_id))
        return decode_history_entry(data)

    async def read_last_history_entry(self) -> Optional[HistoryEntry]:
        return await self.read_history_entry(HISTORY_LAST_ENTRY)

    async def read_history_since(self, entry_id: int = 0) -> List[HistoryEntry]:
        """
        Read all history entries starting with ``entry_id``.

        The device notifies the entries one by one and ends with an all-zero
        entry.
        """
        self._machine.require_ready()
        stream = await self._machine.subscribe(HISTORY_UUID)
        entries: List[HistoryEntry] = []
        try:
            await self._machine.write_characteristic(
                HISTORY_UUID, encode_history_request(entry_id, since=True)
            )
            while True:
                try:
                    data = await asyncio.wait_for(anext(stream), timeout=self._operation_timeout)
                except StopAsyncIteration:
                    raise ConnectionError("Link lost while reading history") from None
                except asyncio.TimeoutError:
                    raise TimeoutError(f"No history entry after {len(entries)} entries") from None
                try:
                    entry = decode_history_entry(data)
                except DecodeError as e:
                    _LOGGER.warning("Skipping unparsable history entry %s: %s", data.hex(), e)
                    self._machine.emit_error(e)
                    continue
                if entry is None:
                    break
                entries.append(entry)
        finally:
            await stream.aclose()

        _LOGGER.debug("Read %d history entries", len(entries))
        return entries

    # Configuration

    async def write_config(self, config: Optional[TimeFlipConfig] = None):
        """Push LED, auto-pause and facet settings to the device."""
        config = config or self.config
        await self.set_brightness(config.brightness)
        await self.set_blink_interval(config.blink_interval)
        await self.set_auto_pause(config.auto_pause)
        for side in config.sides:
            await self.set_color(side.facet, side.color)
            await self.set_task(side.facet, side.task)
        _LOGGER.info("Configuration written")

    async def sync(self, config: Optional[TimeFlipConfig] = None) -> Optional[SyncType]:
        """
        Write whatever the device reports as out of sync.

        Returns:
            The sync type that was handled, or None if nothing was needed
        """
        config = config or self.config
        state = await self.read_system_state()
        sync = state.sync

        if sync is SyncType.TIME:
            await self.resync_clock()
        elif sync is SyncType.FACET_COLOR:
            for side in config.sides:
                await self.set_color(side.facet, side.color)
        elif sync is SyncType.LED_BRIGHTNESS:
            await self.set_brightness(config.brightness)
        elif sync is SyncType.BLINK_INTERVAL:
            await self.set_blink_interval(config.blink_interval)
        elif sync is SyncType.TASK_PARAMETERS:
            for side in config.sides:
                await self.set_task(side.facet, side.task)
        elif sync is SyncType.AUTO_PAUSE:
            await self.set_auto_pause(config.auto_pause)
        else:
            return None

        _LOGGER.info("Synchronized %s", sync.name)
        return sync
