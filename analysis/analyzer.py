#!/usr/bin/env python3
import logging
from datetime import datetime, timezone
from itertools import combinations
from typing import List, Mapping, Optional, Sequence, Tuple

from analysis.models import (
    ArbitrageOpportunity,
    ComparisonType,
    FeeBreakdown,
    PriceQuote,
    PriceSpread,
)
from config import AppConfig

logger = logging.getLogger(__name__)

VenueQuote = Tuple[str, PriceQuote]


def price_gap_percent(price_a: float, price_b: float) -> float:
    """Absolute gap between two prices as a percentage of the lower one."""
    return abs(price_a - price_b) / min(price_a, price_b) * 100


def summarize_quotes(pair: str, quotes_by_venue: Mapping[str, PriceQuote]) -> Optional[PriceSpread]:
    """Min / max / average price across venues, with the spread against the average."""
    priced = [(venue_id, q.price) for venue_id, q in quotes_by_venue.items() if q.price and q.price > 0]
    if not priced:
        return None
    prices = [price for _, price in priced]
    low, high = min(prices), max(prices)
    avg = sum(prices) / len(prices)
    return PriceSpread(
        pair=pair,
        min_price=low,
        max_price=high,
        avg_price=avg,
        spread_percent=(high - low) / avg * 100,
        min_venue=next(venue_id for venue_id, price in priced if price == low),
        max_venue=next(venue_id for venue_id, price in priced if price == high),
        num_venues=len(priced),
    )


class OpportunityAnalyzer:
    def __init__(self, config: AppConfig):
        self.config = config

    def detect_opportunities(
        self,
        pair: str,
        quotes_by_venue: Mapping[str, PriceQuote],
        threshold_percent: float,
        liquidity: float,
        gas_estimates: Optional[Mapping[str, float]] = None,
        now: Optional[datetime] = None,
    ) -> List[ArbitrageOpportunity]:
        """Compares every venue pair for one trading pair and returns viable opportunities, best first."""
        gas_estimates = gas_estimates or {}
        now = now or datetime.now(timezone.utc)

        cex: List[VenueQuote] = []
        dex: List[VenueQuote] = []
        for venue_id, quote in quotes_by_venue.items():
            if quote.price is None or quote.price <= 0:
                continue
            (dex if quote.is_decentralized else cex).append((venue_id, quote))

        comparisons: List[Tuple[VenueQuote, VenueQuote, ComparisonType]] = []
        comparisons += [(a, b, ComparisonType.CEX_CEX) for a, b in combinations(cex, 2)]
        comparisons += [(a, b, ComparisonType.DEX_DEX) for a, b in combinations(dex, 2)]
        comparisons += [(a, b, ComparisonType.CEX_DEX) for a in cex for b in dex]

        opportunities: List[ArbitrageOpportunity] = []
        for leg_a, leg_b, comparison_type in comparisons:
            opportunity = self._evaluate(
                pair, leg_a, leg_b, comparison_type, threshold_percent, liquidity, gas_estimates, now
            )
            if opportunity is not None:
                opportunities.append(opportunity)

        # Stable: equal net profit keeps discovery order.
        opportunities.sort(key=lambda opp: opp.net_profit, reverse=True)
        return opportunities

    def estimate_fees(
        self,
        gap_percent: float,
        legs: Sequence[PriceQuote],
        gas_estimates: Mapping[str, float],
    ) -> FeeBreakdown:
        trading_fee = self.config.trading_fee * 2
        slippage = gap_percent * self.config.slippage_fraction
        gas = 0.0
        for quote in legs:
            if not quote.is_decentralized:
                continue
            gas += gas_estimates.get(quote.chain or '', self.config.fallback_gas_fee)
        return FeeBreakdown(trading_fee=trading_fee, slippage=slippage, gas_estimate=gas)

    def _evaluate(
        self,
        pair: str,
        leg_a: VenueQuote,
        leg_b: VenueQuote,
        comparison_type: ComparisonType,
        threshold_percent: float,
        liquidity: float,
        gas_estimates: Mapping[str, float],
        now: datetime,
    ) -> Optional[ArbitrageOpportunity]:
        venue_a, quote_a = leg_a
        venue_b, quote_b = leg_b

        gap = price_gap_percent(quote_a.price, quote_b.price)
        if gap < threshold_percent:
            return None

        if quote_a.price <= quote_b.price:
            (buy_venue, buy), (sell_venue, sell) = leg_a, leg_b
        else:
            (buy_venue, buy), (sell_venue, sell) = leg_b, leg_a

        fees = self.estimate_fees(gap, (buy, sell), gas_estimates)
        net_profit = gap - fees.total
        if net_profit <= 0:
            logger.debug("%s %s->%s discarded: net %.3f%% after fees", pair, buy_venue, sell_venue, net_profit)
            return None
        if liquidity < self.config.min_liquidity:
            logger.debug("%s %s->%s discarded: liquidity %.0f below floor", pair, buy_venue, sell_venue, liquidity)
            return None

        return ArbitrageOpportunity(
            pair=pair,
            comparison_type=comparison_type,
            buy_venue=buy_venue,
            buy_price=buy.price,
            sell_venue=sell_venue,
            sell_price=sell.price,
            gross_gap_percent=gap,
            fees=fees,
            net_profit=net_profit,
            liquidity=liquidity,
            timestamp=now,
            buy_chain=buy.chain,
            sell_chain=sell.chain,
        )
