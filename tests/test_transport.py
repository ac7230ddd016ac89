from __future__ import annotations

import pytest
from bleak.exc import BleakError

from timeflip2.connection import transport as transport_module
from timeflip2.connection.transport import BleakTransport
from timeflip2.const import FACET_UUID, PASSWORD_UUID
from timeflip2.exceptions import ConnectionError, TransportError


class FakeBleakClient:
    def __init__(self, address: str, disconnected_callback=None) -> None:
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.is_connected = False
        self.values: dict[str, bytearray] = {FACET_UUID: bytearray([6])}
        self.writes: list[tuple[str, bytes, bool]] = []
        self.notify_callbacks: dict = {}
        self.stopped: list[str] = []

    async def connect(self) -> None:
        self.is_connected = True

    async def disconnect(self) -> None:
        self.is_connected = False

    async def read_gatt_char(self, uuid: str) -> bytearray:
        return self.values[uuid]

    async def write_gatt_char(self, uuid: str, data: bytes, response: bool = False) -> None:
        if uuid not in self.values and uuid != PASSWORD_UUID:
            raise BleakError("characteristic not found")
        self.writes.append((uuid, bytes(data), response))

    async def start_notify(self, uuid: str, callback) -> None:
        self.notify_callbacks[uuid] = callback

    async def stop_notify(self, uuid: str) -> None:
        self.stopped.append(uuid)

    def lose_link(self) -> None:
        self.is_connected = False
        self.disconnected_callback(self)


@pytest.fixture
def clients(monkeypatch: pytest.MonkeyPatch) -> list[FakeBleakClient]:
    created: list[FakeBleakClient] = []

    def factory(address: str, disconnected_callback=None) -> FakeBleakClient:
        client = FakeBleakClient(address, disconnected_callback)
        created.append(client)
        return client

    monkeypatch.setattr(transport_module, "BleakClient", factory)
    return created


async def test_read_write(clients: list[FakeBleakClient]) -> None:
    transport = BleakTransport(timeout=1.0)
    handle = await transport.connect("AA:BB:CC:DD:EE:FF")

    assert await transport.read(handle, FACET_UUID) == bytes([6])
    await transport.write(handle, PASSWORD_UUID, b"000000")
    assert clients[0].writes == [(PASSWORD_UUID, b"000000", True)]

    with pytest.raises(TransportError):
        await transport.write(handle, "unknown", b"\x00")


async def test_connect_failure(clients: list[FakeBleakClient], monkeypatch: pytest.MonkeyPatch) -> None:
    async def refuse(self) -> None:
        raise BleakError("device not found")

    monkeypatch.setattr(FakeBleakClient, "connect", refuse)
    with pytest.raises(ConnectionError):
        await BleakTransport(timeout=1.0).connect("AA:BB:CC:DD:EE:FF")


async def test_stream_ends_on_link_loss(clients: list[FakeBleakClient]) -> None:
    transport = BleakTransport(timeout=1.0)
    handle = await transport.connect("AA:BB:CC:DD:EE:FF")
    stream = await transport.subscribe(handle, FACET_UUID)

    callback = clients[0].notify_callbacks[FACET_UUID]
    callback(None, bytearray([2]))
    callback(None, bytearray([3]))
    clients[0].lose_link()

    assert [data async for data in stream] == [bytes([2]), bytes([3])]
    with pytest.raises(ConnectionError):
        await transport.read(handle, FACET_UUID)


async def test_closing_stream_stops_notifications(clients: list[FakeBleakClient]) -> None:
    transport = BleakTransport(timeout=1.0)
    handle = await transport.connect("AA:BB:CC:DD:EE:FF")
    stream = await transport.subscribe(handle, FACET_UUID)

    clients[0].notify_callbacks[FACET_UUID](None, bytearray([4]))
    assert await anext(stream) == bytes([4])
    await stream.aclose()

    assert clients[0].stopped == [FACET_UUID]
    assert handle.subscribers[FACET_UUID] == []


async def test_disconnect_ends_streams(clients: list[FakeBleakClient]) -> None:
    transport = BleakTransport(timeout=1.0)
    handle = await transport.connect("AA:BB:CC:DD:EE:FF")
    stream = await transport.subscribe(handle, FACET_UUID)

    await transport.disconnect(handle)

    assert [data async for data in stream] == []
    assert not clients[0].is_connected


async def test_closing_unread_stream_stops_notifications(clients: list[FakeBleakClient]) -> None:
    transport = BleakTransport(timeout=1.0)
    handle = await transport.connect("AA:BB:CC:DD:EE:FF")
    stream = await transport.subscribe(handle, FACET_UUID)

    await stream.aclose()
    await stream.aclose()

    assert clients[0].stopped == [FACET_UUID]
    assert handle.subscribers[FACET_UUID] == []
    assert [data async for data in stream] == []


async def test_notifications_fan_out_to_every_stream(clients: list[FakeBleakClient]) -> None:
    transport = BleakTransport(timeout=1.0)
    handle = await transport.connect("AA:BB:CC:DD:EE:FF")
    first = await transport.subscribe(handle, FACET_UUID)
    second = await transport.subscribe(handle, FACET_UUID)

    clients[0].notify_callbacks[FACET_UUID](None, bytearray([5]))
    assert await anext(first) == bytes([5])
    assert await anext(second) == bytes([5])

    await first.aclose()
    assert clients[0].stopped == []
    await second.aclose()
    assert clients[0].stopped == [FACET_UUID]
