"""Turns facet readings into activity intervals."""

import logging
from datetime import datetime
from typing import Optional

from ..exceptions import OrderingError
from ..models import ActivityInterval, FacetReading


_LOGGER = logging.getLogger(__name__)


class FacetTracker:
    """
    Keeps at most one open activity interval.

    Repeated reports of the open facet are dropped. A different facet closes
    the open interval at the new reading's time and opens the next one.
    Closing on disconnect leaves the tracker empty until the next reading.
    """

    def __init__(self):
        self._open: Optional[ActivityInterval] = None
        self._last_seen: Optional[datetime] = None

    @property
    def open_interval(self) -> Optional[ActivityInterval]:
        """The interval of the facet currently up, if any."""
        return self._open

    def _check_order(self, at: datetime):
        if self._last_seen is not None and at < self._last_seen:
            raise OrderingError(
                f"timestamp {at.isoformat()} precedes {self._last_seen.isoformat()}"
            )

    def feed(self, reading: FacetReading) -> Optional[ActivityInterval]:
        """
        Process a facet reading.

        Args:
            reading: Decoded facet reading

        Returns:
            The interval closed by this reading, or None

        Raises:
            OrderingError: If the reading is older than the last one seen
        """
        self._check_order(reading.observed_at)
        self._last_seen = reading.observed_at

        if self._open is not None and self._open.facet_id == reading.facet_id:
            _LOGGER.debug("Facet %d still up, ignoring repeat", reading.facet_id)
            return None

        closed = None
        if self._open is not None:
            closed = self._open.close(reading.observed_at)
            _LOGGER.debug("Closed %s", closed)

        self._open = ActivityInterval(
            facet_id=reading.facet_id,
            start_time=reading.observed_at,
        )
        _LOGGER.debug("Opened interval for facet %d", reading.facet_id)
        return closed

    def close(self, at: datetime) -> Optional[ActivityInterval]:
        """
        Force-close the open interval, e.g. on disconnect.

        Returns:
            The closed interval, or None if nothing was open
        """
        if self._open is None:
            return None

        self._check_order(at)
        closed = self._open.close(at)
        self._open = None
        self._last_seen = at
        _LOGGER.debug("Force-closed %s", closed)
        return closed
