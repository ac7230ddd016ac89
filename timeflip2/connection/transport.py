"""BLE transport for TimeFlip2 communication."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

from bleak import BleakClient
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError
from bleak_retry_connector import establish_connection

from ..const import DEFAULT_CONNECT_TIMEOUT
from ..exceptions import ConnectionError, TimeoutError, TransportError


_LOGGER = logging.getLogger(__name__)

DeviceIdentity = Union[BLEDevice, str]


class Transport(Protocol):
    """
    Capability the session depends on.

    ``subscribe`` starts notifications before returning; the stream yields
    raw payloads in arrival order and ends when the link goes down. Closing
    the stream with ``aclose`` stops its notifications even if it was never
    iterated.
    """

    async def connect(self, identity: Any) -> Any:
        """Open a link and return its handle."""

    async def disconnect(self, handle: Any) -> None:
        """Close the link."""

    async def read(self, handle: Any, uuid: str) -> bytes:
        """Read a characteristic value."""

    async def write(self, handle: Any, uuid: str, data: bytes) -> None:
        """Write a characteristic value with response."""

    async def subscribe(self, handle: Any, uuid: str) -> AsyncIterator[bytes]:
        """Start notifications on a characteristic."""


@dataclass
class BleakConnection:
    """Handle for one bleak link."""
    client: BleakClient
    address: str
    closed: bool = False
    subscribers: Dict[str, List["NotificationStream"]] = field(default_factory=dict)

    def close_streams(self):
        """End every notification stream of this link."""
        self.closed = True
        for streams in self.subscribers.values():
            for stream in streams:
                stream.put(None)


class NotificationStream:
    """
    Notifications of one characteristic, in arrival order.

    Ends when the link goes down. ``aclose`` stops notifications once the last
    stream of the characteristic is closed, and may be called before iterating
    or more than once.
    """

    def __init__(self, handle: BleakConnection, uuid: str):
        self._handle = handle
        self._uuid = uuid
        self._queue: asyncio.Queue = asyncio.Queue()
        self._ended = False

    def put(self, data: Optional[bytes]):
        self._queue.put_nowait(data)

    def __aiter__(self) -> NotificationStream:
        return self

    async def __anext__(self) -> bytes:
        if self._ended:
            raise StopAsyncIteration
        data = await self._queue.get()
        if data is None:
            self._ended = True
            raise StopAsyncIteration
        _LOGGER.debug("Notification %s: %s", self._uuid, data.hex())
        return data

    async def aclose(self):
        self._ended = True
        handle = self._handle
        streams = handle.subscribers.get(self._uuid, [])
        if self not in streams:
            return
        streams.remove(self)
        if streams or handle.closed or not handle.client.is_connected:
            return
        try:
            await handle.client.stop_notify(self._uuid)
        except BleakError as e:
            _LOGGER.warning("Error stopping notifications on %s: %s", self._uuid, e)


class BleakTransport:
    """Transport backed by bleak."""

    def __init__(
        self,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
        max_attempts: int = 3,
    ):
        """
        Initialize the transport.

        Args:
            timeout: Connection timeout in seconds
            max_attempts: Connection attempts when a BLEDevice is given
        """
        self._timeout = timeout
        self._max_attempts = max_attempts

    async def connect(self, identity: DeviceIdentity) -> BleakConnection:
        """
        Connect to a TimeFlip2.

        Args:
            identity: BLEDevice object or Bluetooth address string

        Returns:
            Connection handle
        """
        address = identity.address if isinstance(identity, BLEDevice) else identity
        handle: Optional[BleakConnection] = None

        def on_disconnect(_client: BleakClient):
            _LOGGER.info("Link to %s lost", address)
            if handle is not None:
                handle.close_streams()

        try:
            # Use bleak_retry_connector for BLEDevice objects (retries, cache handling)
            if isinstance(identity, BLEDevice):
                client = await establish_connection(
                    BleakClient,
                    identity,
                    identity.name or address,
                    disconnected_callback=on_disconnect,
                    max_attempts=self._max_attempts,
                )
            else:
                client = BleakClient(identity, disconnected_callback=on_disconnect)
                await asyncio.wait_for(client.connect(), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Connection to {address} timed out")
        except BleakError as e:
            raise ConnectionError(f"Failed to connect to {address}: {e}") from e

        handle = BleakConnection(client=client, address=address)
        _LOGGER.info("Connected to %s", address)
        return handle

    async def disconnect(self, handle: BleakConnection) -> None:
        """Disconnect from the TimeFlip2."""
        try:
            if handle.client.is_connected:
                await handle.client.disconnect()
        except BleakError as e:
            _LOGGER.warning("Error during disconnect: %s", e)
        finally:
            handle.close_streams()

    def _check(self, handle: BleakConnection):
        if handle.closed or not handle.client.is_connected:
            raise ConnectionError("Not connected")

    async def read(self, handle: BleakConnection, uuid: str) -> bytes:
        self._check(handle)
        try:
            data = await handle.client.read_gatt_char(uuid)
        except BleakError as e:
            raise TransportError(f"Read of {uuid} failed: {e}") from e
        _LOGGER.debug("RX %s (%d bytes): %s", uuid, len(data), bytes(data).hex())
        return bytes(data)

    async def write(self, handle: BleakConnection, uuid: str, data: bytes) -> None:
        self._check(handle)
        _LOGGER.debug("TX %s (%d bytes): %s", uuid, len(data), data.hex())
        try:
            await handle.client.write_gatt_char(uuid, data, response=True)
        except BleakError as e:
            raise TransportError(f"Write of {uuid} failed: {e}") from e

    async def subscribe(self, handle: BleakConnection, uuid: str) -> NotificationStream:
        self._check(handle)
        streams = handle.subscribers.setdefault(uuid, [])

        if not streams:
            def on_notification(_sender, data: bytearray):
                # Bleak callbacks cannot await; the queues absorb bursts
                for stream in handle.subscribers.get(uuid, []):
                    stream.put(bytes(data))

            try:
                await handle.client.start_notify(uuid, on_notification)
            except BleakError as e:
                raise TransportError(f"Subscribe to {uuid} failed: {e}") from e

        stream = NotificationStream(handle, uuid)
        streams.append(stream)
        return stream
