"""Discovers usable venues and ranks the pairs worth tracking."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from analysis.errors import ConfigurationError, MalformedRecord, VenueUnavailable
from analysis.gateways import VenueGateway, gateway_for
from analysis.models import Venue, VenueCatalog, VenueKind, normalize_pair_key
from config import AppConfig
from constants import DEFAULT_PAIRS, VENUE_PRIORITY

logger = logging.getLogger(__name__)


def rank_venues(venues: Iterable[Venue], priority: List[str] = VENUE_PRIORITY) -> List[Venue]:
    """Known venues first in priority order; unknown ones keep their input order after them."""
    index = {venue_id: position for position, venue_id in enumerate(priority)}
    venues = list(venues)
    known = sorted((v for v in venues if v.venue_id in index), key=lambda v: index[v.venue_id])
    unknown = [v for v in venues if v.venue_id not in index]
    return known + unknown


def pad_with_defaults(pairs: List[str], target_count: int, defaults: List[str] = DEFAULT_PAIRS) -> List[str]:
    padded = list(pairs)
    for pair in defaults:
        if len(padded) >= target_count:
            break
        if pair not in padded:
            padded.append(pair)
    return padded


class VenueCatalogBuilder:
    def __init__(self, config: AppConfig, gateways: Mapping[VenueKind, VenueGateway]):
        self.config = config
        self.gateways = gateways

    def build_candidates(self) -> List[Venue]:
        """One candidate per configured exchange and per configured chain."""
        candidates = [Venue(ex_id, VenueKind.CENTRALIZED) for ex_id in dict.fromkeys(self.config.exchanges)]
        candidates += [
            Venue(chain, VenueKind.DECENTRALIZED, chain=chain)
            for chain in dict.fromkeys(self.config.chains)
        ]
        if not candidates:
            raise ConfigurationError("No exchanges or chains configured; nothing to poll.")
        return candidates

    async def discover_venues(self, candidates: List[Venue]) -> List[Venue]:
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        async def _probe(venue: Venue):
            async with semaphore:
                return await gateway_for(self.gateways, venue).probe(venue)

        results = await asyncio.gather(*(_probe(venue) for venue in candidates), return_exceptions=True)

        viable: List[Venue] = []
        for venue, result in zip(candidates, results):
            if isinstance(result, VenueUnavailable):
                logger.warning("Excluding %s: %s", venue.venue_id, result.reason)
                continue
            if isinstance(result, Exception):
                logger.error("Probe of %s failed unexpectedly: %s", venue.venue_id, result, exc_info=result)
                continue
            if not result.bulk_quote:
                logger.info("Excluding %s: no bulk price query support", venue.venue_id)
                continue
            viable.append(replace(venue, capabilities=result, active=True))

        ranked = rank_venues(viable)[: self.config.top_venues]
        if not ranked:
            logger.warning("No venues passed discovery; detection cycles will find nothing.")
        else:
            logger.info("Discovered %d active venues: %s", len(ranked), ", ".join(v.venue_id for v in ranked))
        return ranked

    async def identify_top_pairs(self, active_venues: List[Venue], target_count: int) -> List[str]:
        if target_count <= 0:
            return []

        venues = [v for v in active_venues if v.active]
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        async def _volumes(venue: Venue) -> Dict[str, float]:
            async with semaphore:
                return await gateway_for(self.gateways, venue).fetch_pair_volumes(venue)

        results = await asyncio.gather(*(_volumes(venue) for venue in venues), return_exceptions=True)

        pair_volumes: Dict[str, float] = {}
        for venue, result in zip(venues, results):
            if isinstance(result, Exception):
                logger.error("Error fetching pair volumes from %s: %s", venue.venue_id, result)
                continue
            for symbol, volume in result.items():
                parts = symbol.split('/')
                if len(parts) != 2:
                    continue
                try:
                    key = normalize_pair_key(parts[0], parts[1])
                except MalformedRecord:
                    continue
                if not volume or volume < 0:
                    continue
                pair_volumes[key] = pair_volumes.get(key, 0.0) + volume

        liquid = [(pair, volume) for pair, volume in pair_volumes.items() if volume >= self.config.min_pair_volume]
        ranked = sorted(liquid, key=lambda item: item[1], reverse=True)
        pairs = [pair for pair, _ in ranked[:target_count]]
        if len(pairs) < target_count:
            pairs = pad_with_defaults(pairs, target_count)

        logger.info("Identified top %d trading pairs", len(pairs))
        return pairs

    async def build_catalog(self, candidates: Optional[List[Venue]] = None) -> VenueCatalog:
        if candidates is None:
            candidates = self.build_candidates()
        venues = await self.discover_venues(candidates)
        pairs = await self.identify_top_pairs(venues, self.config.top_pairs)
        return VenueCatalog(venues=venues, pairs=pairs, last_updated=datetime.now(timezone.utc))
