#!/usr/bin/env python3
"""Centralized-exchange market data through ccxt."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import ccxt.async_support as ccxt

from analysis.errors import VenueUnavailable
from analysis.models import Venue, VenueCapabilities

logger = logging.getLogger(__name__)

ExchangeFactory = Callable[[str], Any]


def create_exchange(ex_id: str):
    """Instantiates a public (keyless) spot client for a ccxt exchange id."""
    exchange_class = getattr(ccxt, ex_id, None)
    if exchange_class is None:
        raise VenueUnavailable(ex_id, "not supported by ccxt")
    return exchange_class({'enableRateLimit': True, 'options': {'defaultType': 'spot'}})


def is_spot_market(symbol: str, market: Dict[str, Any]) -> bool:
    if ':' in symbol or symbol.count('/') != 1:
        return False
    if market.get('spot') is False or market.get('active') is False:
        return False
    return True


def ticker_to_quote(ticker: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'price': ticker.get('last') or ticker.get('close'),
        'bid': ticker.get('bid'),
        'ask': ticker.get('ask'),
        'base_volume': ticker.get('baseVolume'),
        'quote_volume': ticker.get('quoteVolume'),
        'timestamp': ticker.get('timestamp'),
    }


def ticker_volume(ticker: Dict[str, Any]) -> float:
    return float(ticker.get('quoteVolume') or ticker.get('baseVolume') or 0.0)


class CcxtMarketClient:
    def __init__(self, request_timeout: float = 30.0, exchange_factory: Optional[ExchangeFactory] = None):
        self.request_timeout = request_timeout
        self.exchanges: Dict[str, Any] = {}
        self._exchange_factory = exchange_factory or create_exchange
        self._locks: Dict[str, asyncio.Lock] = {}

    async def _call(self, venue_id: str, awaitable: Awaitable, action: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise VenueUnavailable(venue_id, f"{action} timed out after {self.request_timeout:g}s")
        except ccxt.BaseError as e:
            raise VenueUnavailable(venue_id, f"{action} failed: {e}")

    async def _exchange(self, venue_id: str):
        """Returns the client for venue_id with its markets loaded, creating it on first use."""
        lock = self._locks.setdefault(venue_id, asyncio.Lock())
        async with lock:
            exchange = self.exchanges.get(venue_id)
            if exchange is not None:
                return exchange
            exchange = self._exchange_factory(venue_id)
            try:
                await self._call(venue_id, exchange.load_markets(), "load_markets")
            except VenueUnavailable:
                await exchange.close()
                raise
            self.exchanges[venue_id] = exchange
            logger.info("Loaded %d markets from %s", len(exchange.markets or {}), venue_id)
            return exchange

    async def probe(self, venue: Venue) -> VenueCapabilities:
        exchange = await self._exchange(venue.venue_id)
        has = exchange.has or {}
        return VenueCapabilities(
            bulk_quote=bool(has.get('fetchTickers')),
            single_quote=bool(has.get('fetchTicker', True)),
        )

    async def list_tradable_pairs(self, venue_id: str) -> List[str]:
        exchange = await self._exchange(venue_id)
        return [symbol for symbol, market in (exchange.markets or {}).items() if is_spot_market(symbol, market)]

    async def fetch_quote(self, venue_id: str, pair: str) -> Dict[str, Any]:
        exchange = await self._exchange(venue_id)
        ticker = await self._call(venue_id, exchange.fetch_ticker(pair), f"fetch_ticker {pair}")
        return ticker_to_quote(ticker or {})

    async def _spot_tickers(self, venue_id: str) -> Dict[str, Dict[str, Any]]:
        exchange = await self._exchange(venue_id)
        tickers = await self._call(venue_id, exchange.fetch_tickers(), "fetch_tickers") or {}
        markets = exchange.markets or {}
        return {
            symbol: ticker for symbol, ticker in tickers.items()
            if ticker and is_spot_market(symbol, markets.get(symbol, {}))
        }

    async def fetch_pair_volumes(self, venue: Venue) -> Dict[str, float]:
        tickers = await self._spot_tickers(venue.venue_id)
        return {symbol: ticker_volume(ticker) for symbol, ticker in tickers.items()}

    async def list_sub_markets(self, venue: Venue) -> List[str]:
        # An exchange is a single order book.
        return [venue.venue_id]

    async def fetch_trade_records(self, venue: Venue, sub_market: str, limit: int) -> List[Dict[str, Any]]:
        """Most liquid spot tickers as records in the shared trade-record shape."""
        tickers = await self._spot_tickers(venue.venue_id)
        markets = self.exchanges[venue.venue_id].markets or {}
        ranked = sorted(tickers.items(), key=lambda item: ticker_volume(item[1]), reverse=True)[:limit]

        records = []
        for symbol, ticker in ranked:
            market = markets.get(symbol, {})
            base, _, quote = symbol.partition('/')
            records.append({
                'base': {'currency': {'symbol': market.get('base') or base}},
                'quote': {'currency': {'symbol': market.get('quote') or quote}},
                'price': {'current': ticker.get('last') or ticker.get('close')},
                'volume_usd': ticker.get('quoteVolume') or 0.0,
                'trade_count': 0,
            })
        return records

    async def close(self) -> None:
        exchanges, self.exchanges = list(self.exchanges.values()), {}
        results = await asyncio.gather(*(ex.close() for ex in exchanges), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Error closing exchange client: %s", result)
