"""Exception types raised across the aggregation and detection pipeline."""
from __future__ import annotations

from typing import Optional


class ArbitrageError(Exception):
    """Base class for engine errors."""


class VenueUnavailable(ArbitrageError):
    """A single venue or sub-market query failed or timed out."""

    def __init__(self, venue_id: str, reason: str, sub_market: Optional[str] = None) -> None:
        self.venue_id = venue_id
        self.sub_market = sub_market
        self.reason = reason
        where = f"{venue_id}/{sub_market}" if sub_market else venue_id
        super().__init__(f"Venue {where} unavailable: {reason}")


class MalformedRecord(ArbitrageError):
    """A fetched record lacks required fields."""


class PersistenceFailure(ArbitrageError):
    """The downstream store rejected a write."""


class ConfigurationError(ArbitrageError):
    """The process cannot start with the given configuration."""
