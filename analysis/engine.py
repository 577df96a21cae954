"""Entry points the orchestration layer calls each detection cycle."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from analysis.analyzer import OpportunityAnalyzer
from analysis.catalog import VenueCatalogBuilder
from analysis.errors import VenueUnavailable
from analysis.gateways import VenueGateway
from analysis.models import (
    ArbitrageOpportunity,
    PairAggregate,
    PriceQuote,
    Venue,
    VenueCatalog,
    VenueKind,
    normalize_pair_key,
)
from analysis.pair_matcher import PairMatcher
from config import AppConfig

logger = logging.getLogger(__name__)


class GasEstimator(Protocol):
    async def estimate(self, chain: str) -> Optional[float]:
        """Gas cost of one swap on the chain, as a percentage of trade size."""


class MarketDataProvider(VenueGateway, Protocol):
    async def list_tradable_pairs(self, venue_id: str) -> List[str]:
        ...

    async def fetch_quote(self, venue_id: str, pair: str) -> Dict[str, Any]:
        ...


@dataclass
class EngineContext:
    """Everything the engine needs, built once per process."""
    config: AppConfig
    market_data: Optional[MarketDataProvider] = None
    trade_feed: Optional[VenueGateway] = None
    gas_estimator: Optional[GasEstimator] = None

    @property
    def gateways(self) -> Dict[VenueKind, VenueGateway]:
        gateways: Dict[VenueKind, VenueGateway] = {}
        if self.market_data is not None:
            gateways[VenueKind.CENTRALIZED] = self.market_data
        if self.trade_feed is not None:
            gateways[VenueKind.DECENTRALIZED] = self.trade_feed
        return gateways


def quote_from_ticker(venue_id: str, pair: str, ticker: Dict[str, Any]) -> Optional[PriceQuote]:
    price = ticker.get('price')
    if not price:
        bid, ask = ticker.get('bid'), ticker.get('ask')
        price = (bid + ask) / 2 if bid and ask else None
    if not price or price <= 0:
        return None
    timestamp = ticker.get('timestamp')
    return PriceQuote(
        venue_id=venue_id,
        pair=pair,
        kind=VenueKind.CENTRALIZED,
        price=float(price),
        volume=float(ticker.get('quote_volume') or ticker.get('base_volume') or 0.0),
        timestamp=datetime.fromtimestamp(timestamp / 1000, timezone.utc) if timestamp else None,
    )


def _pair_key(pair: str) -> str:
    base, _, quote = pair.partition('/')
    return normalize_pair_key(base, quote)


class ArbitrageEngine:
    def __init__(self, context: EngineContext):
        self.context = context
        self.config = context.config
        gateways = context.gateways
        self.catalog_builder = VenueCatalogBuilder(self.config, gateways)
        self.matcher = PairMatcher(self.config, gateways)
        self.analyzer = OpportunityAnalyzer(self.config)
        self.catalog = VenueCatalog()
        self.aggregates: Dict[str, PairAggregate] = {}
        self._gas_cache: Dict[str, float] = {}

    async def refresh_catalog(self) -> VenueCatalog:
        """Rebuilds the venue/pair catalog; raises ConfigurationError when nothing is configured."""
        candidates = self.catalog_builder.build_candidates()
        self.catalog = await self.catalog_builder.build_catalog(candidates)
        return self.catalog

    def catalog_is_stale(self, max_age_seconds: float) -> bool:
        if self.catalog.last_updated is None:
            return True
        age = (datetime.now(timezone.utc) - self.catalog.last_updated).total_seconds()
        return age >= max_age_seconds

    async def aggregate_pairs(self, min_venue_count: Optional[int] = None) -> List[PairAggregate]:
        if min_venue_count is None:
            min_venue_count = self.config.min_venue_count
        aggregates = await self.matcher.match_common_pairs(self.catalog.active_venues, min_venue_count)
        self.aggregates = {aggregate.pair: aggregate for aggregate in aggregates}
        return aggregates

    def tracked_pairs(self) -> List[str]:
        """Catalog pairs first, then matched pairs not already tracked."""
        return list(dict.fromkeys(list(self.catalog.pairs) + list(self.aggregates)))

    async def estimate_gas(self, chains: Iterable[Optional[str]]) -> Dict[str, float]:
        wanted = [chain for chain in dict.fromkeys(chains) if chain]
        missing = [chain for chain in wanted if chain not in self._gas_cache]
        estimator = self.context.gas_estimator
        if missing:
            if estimator is None:
                results: List[Any] = [None] * len(missing)
            else:
                results = await asyncio.gather(*(estimator.estimate(chain) for chain in missing), return_exceptions=True)
            for chain, result in zip(missing, results):
                if isinstance(result, Exception) or result is None:
                    if isinstance(result, Exception):
                        logger.warning("Gas estimate for %s failed: %s; using %.2f%%", chain, result, self.config.fallback_gas_fee)
                    self._gas_cache[chain] = self.config.fallback_gas_fee
                else:
                    self._gas_cache[chain] = float(result)
        return {chain: self._gas_cache[chain] for chain in wanted}

    def reset_gas_cache(self) -> None:
        self._gas_cache = {}

    async def collect_quotes(self, pair: str) -> Dict[str, PriceQuote]:
        """Fresh CEX quotes first, then the latest aggregated quotes for venues not yet covered."""
        quotes: Dict[str, PriceQuote] = {}
        market_data = self.context.market_data
        cex_venues = [
            venue for venue in self.catalog.venues_of_kind(VenueKind.CENTRALIZED)
            if venue.capabilities.single_quote
        ]
        if market_data is not None and cex_venues:
            fetched = await asyncio.gather(*(self._fetch_cex_quote(venue, pair) for venue in cex_venues))
            for venue, quote in zip(cex_venues, fetched):
                if quote is not None:
                    quotes[venue.venue_id] = quote

        aggregate = self.aggregates.get(pair)
        if aggregate is not None:
            for quote in aggregate.to_quotes():
                quotes.setdefault(quote.venue_id, quote)
        return quotes

    async def _fetch_cex_quote(self, venue: Venue, pair: str) -> Optional[PriceQuote]:
        market_data = self.context.market_data
        try:
            if pair not in await market_data.list_tradable_pairs(venue.venue_id):
                return None
            ticker = await market_data.fetch_quote(venue.venue_id, pair)
        except VenueUnavailable as exc:
            logger.debug("No %s quote from %s: %s", pair, venue.venue_id, exc.reason)
            return None
        except Exception as exc:
            logger.warning("Error fetching %s price from %s: %s", pair, venue.venue_id, exc)
            return None
        return quote_from_ticker(venue.venue_id, pair, ticker)

    async def detect_opportunities(
        self, pair: str, threshold_percent: Optional[float] = None
    ) -> List[ArbitrageOpportunity]:
        pair = _pair_key(pair)
        if threshold_percent is None:
            threshold_percent = self.config.threshold

        quotes = await self.collect_quotes(pair)
        if len(quotes) < 2:
            return []

        gas_estimates = await self.estimate_gas(q.chain for q in quotes.values() if q.is_decentralized)
        aggregate = self.aggregates.get(pair)
        liquidity = aggregate.total_volume if aggregate else sum(q.volume for q in quotes.values())
        return self.analyzer.detect_opportunities(pair, quotes, threshold_percent, liquidity, gas_estimates)

    async def detect_for_all_tracked_pairs(
        self, threshold_percent: Optional[float] = None
    ) -> List[ArbitrageOpportunity]:
        self.reset_gas_cache()
        await self.estimate_gas(venue.chain for venue in self.catalog.venues_of_kind(VenueKind.DECENTRALIZED))

        pairs = self.tracked_pairs()
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        async def _detect(pair: str) -> List[ArbitrageOpportunity]:
            async with semaphore:
                return await self.detect_opportunities(pair, threshold_percent)

        results = await asyncio.gather(*(_detect(pair) for pair in pairs), return_exceptions=True)

        opportunities: List[ArbitrageOpportunity] = []
        for pair, result in zip(pairs, results):
            if isinstance(result, Exception):
                logger.error("Detection for %s failed: %s", pair, result, exc_info=result)
                continue
            opportunities.extend(result)

        opportunities.sort(key=lambda opp: opp.net_profit, reverse=True)
        logger.info("Detected %d viable opportunities across %d pairs", len(opportunities), len(pairs))
        return opportunities
