"""Device clock synchronization."""

import logging
from datetime import datetime
from typing import Callable, Optional

from ..exceptions import ClockSyncError, CommandError, TransportError
from ..models import SessionEventType, utc_now
from ..protocol.codec import decode_time, encode_get_time, encode_time
from ..protocol.state_machine import SessionStateMachine


_LOGGER = logging.getLogger(__name__)


class ClockSync:
    """Writes the host time to the dice once per session."""

    def __init__(
        self,
        machine: SessionStateMachine,
        now: Callable[[], datetime] = utc_now,
    ):
        self._machine = machine
        self._now = now

    @property
    def synced_at(self) -> Optional[datetime]:
        return self._machine.session.clock_synced_at

    async def sync_once(self) -> bool:
        """
        Sync the clock unless it was already synced in this session.

        Returns:
            True if a time write was performed
        """
        if self.synced_at is not None:
            _LOGGER.debug("Clock already synced at %s", self.synced_at.isoformat())
            return False
        await self.resync()
        return True

    async def resync(self) -> datetime:
        """
        Write the current time to the device.

        Returns:
            The time that was written

        Raises:
            NotAuthenticatedError: If the session is not ready
            ClockSyncError: If the write failed; the session stays up
        """
        now = self._now()
        payload = encode_time(now)
        try:
            await self._machine.execute_command(payload)
        except (TransportError, CommandError) as e:
            _LOGGER.warning("Clock sync failed: %s", e)
            raise ClockSyncError(f"Failed to set device time: {e}") from e

        self._machine.session.clock_synced_at = now
        _LOGGER.info("Device clock set to %s", now.isoformat())
        self._machine.emit(SessionEventType.CLOCK_SYNCED, detail=now)
        return now

    async def device_time(self) -> datetime:
        """Read the device clock back."""
        result = await self._machine.execute_command(encode_get_time(), read_result=True)
        return decode_time(result)
