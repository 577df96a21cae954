"""Dataclasses representing stored detection records."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class ScanCycleRecord:
    id: int
    started_at: datetime
    finished_at: Optional[datetime]
    venues: list[str]
    pairs: list[str]
    opportunities_found: int


@dataclass(slots=True)
class MarketPriceRecord:
    pair: str
    venue: str
    network: str
    kind: str
    price: Optional[float]
    volume: float
    trade_count: int
    price_10m_ago: Optional[float]
    price_1h_ago: Optional[float]
    price_3h_ago: Optional[float]
    updated_at: datetime


@dataclass(slots=True)
class PairSnapshotRecord:
    pair: str
    base_symbol: str
    base_name: str
    base_address: str
    quote_symbol: str
    quote_name: str
    quote_address: str
    diversity_count: int
    total_volume: float
    chains: list[str]
    exchanges: list[str]
    current_price: Optional[float]
    price_10m_ago: Optional[float]
    price_1h_ago: Optional[float]
    category: Optional[str]
    updated_at: datetime
    markets: list[MarketPriceRecord] = field(default_factory=list)


@dataclass(slots=True)
class OpportunityRecord:
    id: int
    scan_cycle_id: Optional[int]
    route_key: str
    pair: str
    comparison_type: str
    buy_venue: str
    buy_price: float
    sell_venue: str
    sell_price: float
    gross_gap_percent: float
    trading_fee: float
    slippage: float
    gas_estimate: float
    net_profit: float
    liquidity: float
    first_seen_at: datetime
    detected_at: datetime
    analyzed: bool
    executed: bool
