#!/usr/bin/env python3
"""Matches pairs quoted on several venues into per-pair aggregates."""
import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from analysis.errors import MalformedRecord, VenueUnavailable
from analysis.gateways import VenueGateway, gateway_for
from analysis.models import (
    UNKNOWN,
    MarketPrice,
    PairAggregate,
    PriceSnapshot,
    TokenInfo,
    TradeRecord,
    Venue,
    VenueKind,
    normalize_pair_key,
)
from analysis.token_categorizer import categorize_token
from config import AppConfig

logger = logging.getLogger(__name__)


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _token(side: Any) -> TokenInfo:
    if not isinstance(side, dict) or not isinstance(side.get('currency'), dict):
        raise MalformedRecord("Record is missing currency info")
    currency = side['currency']
    symbol = currency.get('symbol')
    if not isinstance(symbol, str) or not symbol.strip():
        raise MalformedRecord("Record is missing currency symbol")
    return TokenInfo(
        symbol=symbol,
        name=currency.get('name') or UNKNOWN,
        address=currency.get('address') or UNKNOWN,
    )


def parse_trade_record(raw: Dict[str, Any], venue: Venue, sub_market: str) -> TradeRecord:
    """Validates one raw record, raising MalformedRecord when the pair cannot be identified."""
    if not isinstance(raw, dict):
        raise MalformedRecord(f"Record is not a mapping: {type(raw).__name__}")
    base = _token(raw.get('base'))
    quote = _token(raw.get('quote'))
    normalize_pair_key(base.symbol, quote.symbol)

    price = raw.get('price') if isinstance(raw.get('price'), dict) else {}
    try:
        trade_count = int(raw.get('trade_count') or 0)
    except (TypeError, ValueError):
        trade_count = 0
    return TradeRecord(
        chain=venue.chain,
        network=venue.network,
        sub_market=sub_market,
        kind=venue.kind,
        base=base,
        quote=quote,
        price=_to_float(price.get('current')),
        price_10m_ago=_to_float(price.get('ten_min_ago')),
        price_1h_ago=_to_float(price.get('one_hour_ago')),
        price_3h_ago=_to_float(price.get('three_hours_ago')),
        volume=_to_float(raw.get('volume_usd')) or 0.0,
        trade_count=trade_count,
    )


def _merge_token(existing: TokenInfo, incoming: TokenInfo) -> TokenInfo:
    name = existing.name if existing.name != UNKNOWN else incoming.name
    address = existing.address if existing.address != UNKNOWN else incoming.address
    if name == existing.name and address == existing.address:
        return existing
    return TokenInfo(symbol=existing.symbol, name=name, address=address)


def merge_record(aggregates: Dict[str, PairAggregate], record: TradeRecord) -> PairAggregate:
    """Folds one record into its pair's aggregate, creating the aggregate on first sight."""
    pair_key = record.pair
    aggregate = aggregates.get(pair_key)
    if aggregate is None:
        aggregate = PairAggregate(
            pair=pair_key,
            base_token=TokenInfo(record.base.symbol.upper(), record.base.name, record.base.address),
            quote_token=TokenInfo(record.quote.symbol.upper(), record.quote.name, record.quote.address),
            category=categorize_token(record.base.symbol, record.base.name),
        )
        aggregates[pair_key] = aggregate
    else:
        aggregate.base_token = _merge_token(aggregate.base_token, record.base)
        aggregate.quote_token = _merge_token(aggregate.quote_token, record.quote)

    aggregate.venue_keys.add(f"{record.network}|{record.sub_market}|{pair_key}")
    if record.chain and record.network not in aggregate.chains:
        aggregate.chains.append(record.network)
    if record.sub_market not in aggregate.exchanges:
        aggregate.exchanges.append(record.sub_market)
    aggregate.total_volume += record.volume

    if record.price is not None:
        aggregate.price_data = PriceSnapshot(
            current=record.price,
            ten_min_ago=record.price_10m_ago,
            one_hour_ago=record.price_1h_ago,
        )

    aggregate.markets[(record.network, record.sub_market)] = MarketPrice(
        venue=record.sub_market,
        network=record.network,
        kind=record.kind,
        price=record.price,
        volume=record.volume,
        chain=record.chain,
        trade_count=record.trade_count,
        price_10m_ago=record.price_10m_ago,
        price_1h_ago=record.price_1h_ago,
        price_3h_ago=record.price_3h_ago,
    )
    return aggregate


class PairMatcher:
    def __init__(self, config: AppConfig, gateways: Mapping[VenueKind, VenueGateway]):
        self.config = config
        self.gateways = gateways

    async def match_common_pairs(self, venues: List[Venue], min_venue_count: int) -> List[PairAggregate]:
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        active = [venue for venue in venues if venue.active]
        batches = await asyncio.gather(*(self._fetch_venue(venue, semaphore) for venue in active))

        aggregates: Dict[str, PairAggregate] = {}
        skipped = 0
        for venue, venue_batches in zip(active, batches):
            for sub_market, records in venue_batches:
                for raw in records:
                    try:
                        record = parse_trade_record(raw, venue, sub_market)
                    except MalformedRecord as exc:
                        skipped += 1
                        logger.debug("Skipping record from %s/%s: %s", venue.venue_id, sub_market, exc)
                        continue
                    merge_record(aggregates, record)

        if skipped:
            logger.info("Skipped %d malformed records", skipped)

        matched = [agg for agg in aggregates.values() if agg.diversity_count >= min_venue_count]
        matched.sort(key=lambda agg: agg.diversity_count, reverse=True)
        logger.info("Matched %d pairs quoted on at least %d venues (of %d seen)", len(matched), min_venue_count, len(aggregates))
        return matched

    async def _fetch_venue(
        self, venue: Venue, semaphore: asyncio.Semaphore
    ) -> List[Tuple[str, List[Dict[str, Any]]]]:
        """Returns (sub_market, records) batches for one venue; failures yield an empty list."""
        try:
            gateway = gateway_for(self.gateways, venue)
            async with semaphore:
                sub_markets = await gateway.list_sub_markets(venue)
        except VenueUnavailable as exc:
            logger.warning("Excluding %s from aggregation: %s", venue.venue_id, exc.reason)
            return []
        except Exception as exc:
            logger.error("Listing sub-markets of %s failed: %s", venue.venue_id, exc, exc_info=exc)
            return []

        sub_markets = sub_markets[: self.config.top_sub_markets]

        async def _fetch(sub_market: str) -> List[Dict[str, Any]]:
            async with semaphore:
                return await gateway.fetch_trade_records(venue, sub_market, self.config.records_per_sub_market)

        results = await asyncio.gather(*(_fetch(sm) for sm in sub_markets), return_exceptions=True)

        batches: List[Tuple[str, List[Dict[str, Any]]]] = []
        for sub_market, result in zip(sub_markets, results):
            if isinstance(result, VenueUnavailable):
                logger.warning("Excluding %s/%s from aggregation: %s", venue.venue_id, sub_market, result.reason)
                continue
            if isinstance(result, Exception):
                logger.error("Fetching %s/%s failed: %s", venue.venue_id, sub_market, result, exc_info=result)
                continue
            batches.append((sub_market, result or []))
        return batches
