"""Activity tracking for TimeFlip2 facet readings."""

from .tracker import FacetTracker

__all__ = [
    "FacetTracker",
]
