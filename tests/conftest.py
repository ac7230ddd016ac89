from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from timeflip2.config import ConnectionConfig, TimeFlipConfig
from timeflip2.const import (
    BATTERY_LEVEL_UUID,
    COMMAND_RESULT_UUID,
    COMMAND_UUID,
    FACET_UUID,
    HISTORY_ENTRY_LENGTH,
    HISTORY_UUID,
    PASSWORD_UUID,
    SYSTEM_STATE_UUID,
)
from timeflip2.exceptions import ConnectionError, TransportError
from timeflip2.models import ReconnectPolicy


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeStream:
    def __init__(self, streams: list) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self._streams = streams
        self._ended = False

    def __aiter__(self) -> "FakeStream":
        return self

    async def __anext__(self) -> bytes:
        if self._ended:
            raise StopAsyncIteration
        data = await self.queue.get()
        if data is None:
            self._ended = True
            raise StopAsyncIteration
        return data

    async def aclose(self) -> None:
        self._ended = True
        if self in self._streams:
            self._streams.remove(self)


class FakeTimeFlip:
    """In-memory transport that answers like a TimeFlip2."""

    def __init__(self, password: bytes = b"000000") -> None:
        self.password = password
        self.values: dict[str, bytes] = {
            SYSTEM_STATE_UUID: bytes([0, 0, 0, 0]),
            FACET_UUID: bytes([1]),
            BATTERY_LEVEL_UUID: bytes([80]),
            COMMAND_RESULT_UUID: b"",
            HISTORY_UUID: bytes(HISTORY_ENTRY_LENGTH),
        }
        # Consumed before falling back to values[SYSTEM_STATE_UUID]
        self.system_states: list[bytes] = []
        # Overrides the acknowledgement status byte when set
        self.command_status: int | None = None
        self.history: list[bytes] = []
        self.hang: set[str] = set()
        self.fail_writes: set[str] = set()

        self.connect_errors: list[Exception] = []
        self.writes: list[tuple[str, bytes]] = []
        self.reads: list[str] = []
        self.connects = 0
        self.disconnects = 0
        self.connected = False
        self.authenticated = False
        self._link = 0
        self._ack = b""
        self._streams: dict[str, list[FakeStream]] = {}

    async def connect(self, identity: object) -> int:
        self.connects += 1
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self._link += 1
        self.connected = True
        self.authenticated = False
        return self._link

    async def disconnect(self, handle: int) -> None:
        self.disconnects += 1
        if handle == self._link:
            self.drop_link()

    def drop_link(self) -> None:
        self.connected = False
        self.authenticated = False
        for streams in self._streams.values():
            for stream in streams:
                stream.queue.put_nowait(None)
        self._streams.clear()

    def _check(self, handle: int) -> None:
        if not self.connected or handle != self._link:
            raise ConnectionError("Not connected")

    async def read(self, handle: int, uuid: str) -> bytes:
        self._check(handle)
        self.reads.append(uuid)
        if uuid in self.hang:
            await asyncio.Event().wait()
        if uuid == COMMAND_UUID:
            return self._ack
        if uuid == SYSTEM_STATE_UUID and self.system_states:
            return self.system_states.pop(0)
        return self.values[uuid]

    async def write(self, handle: int, uuid: str, data: bytes) -> None:
        self._check(handle)
        if uuid in self.fail_writes:
            raise TransportError(f"Write of {uuid} failed")
        self.writes.append((uuid, bytes(data)))
        if uuid == PASSWORD_UUID:
            self.authenticated = bytes(data) == self.password
        elif uuid == COMMAND_UUID:
            status = self.command_status
            if status is None:
                status = 0x02 if self.authenticated else 0x01
            self._ack = bytes([data[0], status])
        elif uuid == HISTORY_UUID and data[0] == 2:
            for entry in self.history + [bytes(HISTORY_ENTRY_LENGTH)]:
                self.notify(HISTORY_UUID, entry)

    async def subscribe(self, handle: int, uuid: str):
        self._check(handle)
        streams = self._streams.setdefault(uuid, [])
        stream = FakeStream(streams)
        streams.append(stream)
        return stream

    def notify(self, uuid: str, data: bytes) -> None:
        for stream in self._streams.get(uuid, []):
            stream.queue.put_nowait(data)

    def written(self, uuid: str) -> list[bytes]:
        return [data for written_uuid, data in self.writes if written_uuid == uuid]


async def settle(seconds: float = 0.01) -> None:
    await asyncio.sleep(seconds)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=timeout)


def fast_config(**reconnect: object) -> TimeFlipConfig:
    policy = ReconnectPolicy(**{"initial_delay": 0.0, "max_delay": 0.0, **reconnect})
    return TimeFlipConfig(
        connection=ConnectionConfig(
            operation_timeout=1.0,
            ready_attempts=3,
            ready_poll_interval=0.0,
            reconnect=policy,
        )
    )


@pytest.fixture
def fake() -> FakeTimeFlip:
    return FakeTimeFlip()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
