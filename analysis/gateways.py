"""Interface the engine expects from each venue data provider."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Protocol

from analysis.errors import VenueUnavailable
from analysis.models import Venue, VenueCapabilities, VenueKind


class VenueGateway(Protocol):
    async def probe(self, venue: Venue) -> VenueCapabilities:
        """Checks the venue is reachable and reports what it supports."""

    async def fetch_pair_volumes(self, venue: Venue) -> Dict[str, float]:
        """Returns 'BASE/QUOTE' -> volume for every pair the venue currently quotes."""

    async def list_sub_markets(self, venue: Venue) -> List[str]:
        """DEX protocols on a chain, or the exchange's own order book."""

    async def fetch_trade_records(self, venue: Venue, sub_market: str, limit: int) -> List[Dict[str, Any]]:
        """Recent trade/price rows in the shared record shape."""


def gateway_for(gateways: Mapping[VenueKind, VenueGateway], venue: Venue) -> VenueGateway:
    gateway = gateways.get(venue.kind)
    if gateway is None:
        raise VenueUnavailable(venue.venue_id, f"no data provider for {venue.kind.value} venues")
    return gateway
