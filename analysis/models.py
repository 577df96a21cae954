#!/usr/bin/env python3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from analysis.errors import MalformedRecord

UNKNOWN = "Unknown"
CEX_NETWORK = "CEX"


class VenueKind(str, Enum):
    CENTRALIZED = "Centralized"
    DECENTRALIZED = "Decentralized"


class ComparisonType(str, Enum):
    CEX_CEX = "CEX-CEX"
    DEX_DEX = "DEX-DEX"
    CEX_DEX = "CEX-DEX"


def normalize_pair_key(base_symbol, quote_symbol) -> str:
    """Returns the canonical BASE/QUOTE key, raising MalformedRecord on bad symbols."""
    if not isinstance(base_symbol, str) or not base_symbol.strip():
        raise MalformedRecord(f"Missing base symbol: {base_symbol!r}")
    if not isinstance(quote_symbol, str) or not quote_symbol.strip():
        raise MalformedRecord(f"Missing quote symbol: {quote_symbol!r}")
    return f"{base_symbol.upper()}/{quote_symbol.upper()}"


def price_change_pct(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if not current or not previous:
        return None
    return (current - previous) / previous * 100


@dataclass(frozen=True)
class VenueCapabilities:
    bulk_quote: bool = False
    single_quote: bool = True


@dataclass
class Venue:
    """A centralized exchange, or the DEX protocols of one chain."""
    venue_id: str
    kind: VenueKind
    chain: Optional[str] = None
    capabilities: VenueCapabilities = field(default_factory=VenueCapabilities)
    active: bool = True

    @property
    def is_decentralized(self) -> bool:
        return self.kind is VenueKind.DECENTRALIZED

    @property
    def network(self) -> str:
        if self.is_decentralized and self.chain:
            return self.chain.upper()
        return CEX_NETWORK

    def deactivate(self) -> None:
        self.active = False


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    name: str = UNKNOWN
    address: str = UNKNOWN


@dataclass(frozen=True)
class TradeRecord:
    """One validated observation of a pair on a sub-market."""
    chain: Optional[str]
    network: str
    sub_market: str
    kind: VenueKind
    base: TokenInfo
    quote: TokenInfo
    price: Optional[float]
    price_10m_ago: Optional[float]
    price_1h_ago: Optional[float]
    price_3h_ago: Optional[float]
    volume: float
    trade_count: int

    @property
    def pair(self) -> str:
        return normalize_pair_key(self.base.symbol, self.quote.symbol)


@dataclass(frozen=True)
class PriceQuote:
    venue_id: str
    pair: str
    kind: VenueKind
    price: float
    chain: Optional[str] = None
    price_10m_ago: Optional[float] = None
    price_1h_ago: Optional[float] = None
    price_3h_ago: Optional[float] = None
    volume: float = 0.0
    trade_count: int = 0
    timestamp: Optional[datetime] = None

    @property
    def is_decentralized(self) -> bool:
        return self.kind is VenueKind.DECENTRALIZED


@dataclass(frozen=True)
class PriceSnapshot:
    current: Optional[float] = None
    ten_min_ago: Optional[float] = None
    one_hour_ago: Optional[float] = None


@dataclass
class MarketPrice:
    """Latest price of a pair on one (network, sub-market)."""
    venue: str
    network: str
    kind: VenueKind
    price: Optional[float]
    volume: float
    chain: Optional[str] = None
    trade_count: int = 0
    price_10m_ago: Optional[float] = None
    price_1h_ago: Optional[float] = None
    price_3h_ago: Optional[float] = None


@dataclass
class PairAggregate:
    pair: str
    base_token: TokenInfo
    quote_token: TokenInfo
    venue_keys: Set[str] = field(default_factory=set)
    total_volume: float = 0.0
    chains: List[str] = field(default_factory=list)
    exchanges: List[str] = field(default_factory=list)
    price_data: PriceSnapshot = field(default_factory=PriceSnapshot)
    markets: Dict[Tuple[str, str], MarketPrice] = field(default_factory=dict)
    category: Optional[str] = None

    @property
    def diversity_count(self) -> int:
        return len(self.venue_keys)

    def change_pct(self, window: str) -> Optional[float]:
        """Price change against the '10m' or '1h' snapshot."""
        previous = {
            '10m': self.price_data.ten_min_ago,
            '1h': self.price_data.one_hour_ago,
        }.get(window)
        return price_change_pct(self.price_data.current, previous)

    def to_quotes(self, timestamp: Optional[datetime] = None) -> List[PriceQuote]:
        """Converts the per-market prices into quotes, in discovery order."""
        quotes: List[PriceQuote] = []
        for market in self.markets.values():
            if not market.price or market.price <= 0:
                continue
            venue_id = market.venue if market.kind is VenueKind.CENTRALIZED else f"{market.venue}@{market.network}"
            quotes.append(PriceQuote(
                venue_id=venue_id,
                pair=self.pair,
                kind=market.kind,
                price=market.price,
                chain=market.chain,
                price_10m_ago=market.price_10m_ago,
                price_1h_ago=market.price_1h_ago,
                price_3h_ago=market.price_3h_ago,
                volume=market.volume,
                trade_count=market.trade_count,
                timestamp=timestamp,
            ))
        return quotes


@dataclass(frozen=True)
class FeeBreakdown:
    trading_fee: float
    slippage: float
    gas_estimate: float

    @property
    def total(self) -> float:
        return self.trading_fee + self.slippage + self.gas_estimate


@dataclass
class ArbitrageOpportunity:
    """A fee-adjusted price gap between two venues; all percentages."""
    pair: str
    comparison_type: ComparisonType
    buy_venue: str
    buy_price: float
    sell_venue: str
    sell_price: float
    gross_gap_percent: float
    fees: FeeBreakdown
    net_profit: float
    liquidity: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    buy_chain: Optional[str] = None
    sell_chain: Optional[str] = None
    analyzed: bool = False
    executed: bool = False

    @property
    def route_key(self) -> str:
        return f"{self.pair}|{self.comparison_type.value}|{self.buy_venue}|{self.sell_venue}"


@dataclass(frozen=True)
class PriceSpread:
    """Cross-venue price statistics for one pair."""
    pair: str
    min_price: float
    max_price: float
    avg_price: float
    spread_percent: float
    min_venue: str
    max_venue: str
    num_venues: int


@dataclass
class VenueCatalog:
    venues: List[Venue] = field(default_factory=list)
    pairs: List[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    @property
    def active_venues(self) -> List[Venue]:
        return [venue for venue in self.venues if venue.active]

    def venues_of_kind(self, kind: VenueKind) -> List[Venue]:
        return [venue for venue in self.active_venues if venue.kind is kind]
