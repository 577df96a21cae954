import pytest

from analysis.analyzer import OpportunityAnalyzer, price_gap_percent, summarize_quotes
from analysis.models import ComparisonType, PriceQuote, VenueKind


def _cex(venue_id, price, volume=0.0):
    return PriceQuote(venue_id=venue_id, pair='ETH/USDT', kind=VenueKind.CENTRALIZED, price=price, volume=volume)


def _dex(venue_id, price, chain='ethereum'):
    return PriceQuote(venue_id=venue_id, pair='ETH/USDT', kind=VenueKind.DECENTRALIZED, price=price, chain=chain)


def test_price_gap_is_symmetric():
    for price_a, price_b in [(2000.0, 2040.0), (0.5, 0.51), (1.0, 1.0), (37.2, 12.9)]:
        assert price_gap_percent(price_a, price_b) == price_gap_percent(price_b, price_a)


def test_basic_cex_opportunity(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {'binance': _cex('binance', 2000.0), 'kraken': _cex('kraken', 2040.0)}

    opportunities = analyzer.detect_opportunities('ETH/USDT', quotes, threshold_percent=1.0, liquidity=50000.0)

    assert len(opportunities) == 1
    opp = opportunities[0]
    assert opp.comparison_type is ComparisonType.CEX_CEX
    assert opp.buy_venue == 'binance'
    assert opp.buy_price == 2000.0
    assert opp.sell_venue == 'kraken'
    assert opp.sell_price == 2040.0
    assert opp.gross_gap_percent == pytest.approx(2.0)
    assert opp.fees.trading_fee == pytest.approx(0.2)
    assert opp.fees.slippage == pytest.approx(0.2)
    assert opp.fees.gas_estimate == 0.0
    assert opp.net_profit == pytest.approx(1.6)
    assert opp.analyzed is False
    assert opp.executed is False


def test_sell_price_never_below_buy_price(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {'kraken': _cex('kraken', 2040.0), 'binance': _cex('binance', 2000.0)}

    opp = analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0)[0]

    assert opp.buy_venue == 'binance'
    assert opp.sell_price >= opp.buy_price
    assert opp.gross_gap_percent == pytest.approx((opp.sell_price - opp.buy_price) / opp.buy_price * 100)


def test_below_threshold_is_not_reported(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {'binance': _cex('binance', 2000.0), 'kraken': _cex('kraken', 2010.0)}

    assert analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0) == []


def test_fees_eating_the_gap_discards_opportunity(config):
    analyzer = OpportunityAnalyzer(config._replace(trading_fee=1.0))
    quotes = {'binance': _cex('binance', 2000.0), 'kraken': _cex('kraken', 2040.0)}

    assert analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0) == []


def test_insufficient_liquidity_is_not_reported(config):
    analyzer = OpportunityAnalyzer(config._replace(min_liquidity=100000.0))
    quotes = {'binance': _cex('binance', 2000.0), 'kraken': _cex('kraken', 2040.0)}

    assert analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0) == []


def test_gas_is_charged_only_for_dex_legs(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {
        'binance': _cex('binance', 2000.0),
        'uniswap_v3@ETHEREUM': _dex('uniswap_v3@ETHEREUM', 2100.0),
    }

    opportunities = analyzer.detect_opportunities(
        'ETH/USDT', quotes, 1.0, 50000.0, gas_estimates={'ethereum': 0.3}
    )

    assert len(opportunities) == 1
    opp = opportunities[0]
    assert opp.comparison_type is ComparisonType.CEX_DEX
    assert opp.fees.gas_estimate == pytest.approx(0.3)
    assert opp.sell_chain == 'ethereum'
    assert opp.buy_chain is None


def test_missing_gas_estimate_uses_fallback(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {
        'uniswap_v3@ETHEREUM': _dex('uniswap_v3@ETHEREUM', 2000.0),
        'pancakeswap@BSC': _dex('pancakeswap@BSC', 2100.0, chain='bsc'),
    }

    opp = analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0, gas_estimates={'ethereum': 0.2})[0]

    assert opp.comparison_type is ComparisonType.DEX_DEX
    assert opp.fees.gas_estimate == pytest.approx(0.2 + config.fallback_gas_fee)


def test_cex_dex_pass_covers_every_combination(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {
        'binance': _cex('binance', 2000.0),
        'kraken': _cex('kraken', 2001.0),
        'uniswap_v3@ETHEREUM': _dex('uniswap_v3@ETHEREUM', 2100.0),
        'sushiswap@ETHEREUM': _dex('sushiswap@ETHEREUM', 2101.0),
    }

    opportunities = analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0, gas_estimates={'ethereum': 0.0})

    routes = {(o.buy_venue, o.sell_venue) for o in opportunities}
    assert routes == {
        ('binance', 'uniswap_v3@ETHEREUM'),
        ('binance', 'sushiswap@ETHEREUM'),
        ('kraken', 'uniswap_v3@ETHEREUM'),
        ('kraken', 'sushiswap@ETHEREUM'),
    }
    assert all(o.comparison_type is ComparisonType.CEX_DEX for o in opportunities)


def test_ranking_is_descending_and_stable_on_ties(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {
        'a': _cex('a', 100.0),
        'b': _cex('b', 105.0),
        'c': _cex('c', 105.0),
        'd': _cex('d', 110.0),
    }

    opportunities = analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0)

    profits = [o.net_profit for o in opportunities]
    assert profits == sorted(profits, reverse=True)
    assert (opportunities[0].buy_venue, opportunities[0].sell_venue) == ('a', 'd')
    tied = [(o.buy_venue, o.sell_venue) for o in opportunities if o.net_profit == pytest.approx(opportunities[1].net_profit)]
    assert tied == [('a', 'b'), ('a', 'c')]


def test_no_sub_threshold_leakage(config):
    analyzer = OpportunityAnalyzer(config._replace(trading_fee=0.0, slippage_fraction=0.0))
    prices = [100.0, 100.4, 100.9, 101.5, 103.0]
    quotes = {f"v{idx}": _cex(f"v{idx}", price) for idx, price in enumerate(prices)}

    opportunities = analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0)

    assert opportunities
    assert all(o.gross_gap_percent >= 1.0 for o in opportunities)


def test_non_positive_prices_are_ignored(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {'binance': _cex('binance', 0.0), 'kraken': _cex('kraken', 2040.0)}

    assert analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0) == []


def test_detection_is_idempotent(config):
    analyzer = OpportunityAnalyzer(config)
    quotes = {
        'binance': _cex('binance', 2000.0),
        'kraken': _cex('kraken', 2040.0),
        'uniswap_v3@ETHEREUM': _dex('uniswap_v3@ETHEREUM', 2080.0),
    }

    first = analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0, gas_estimates={'ethereum': 0.1})
    second = analyzer.detect_opportunities('ETH/USDT', quotes, 1.0, 50000.0, gas_estimates={'ethereum': 0.1})

    strip = lambda opps: [(o.route_key, o.net_profit, o.gross_gap_percent) for o in opps]
    assert strip(first) == strip(second)


def test_summarize_quotes():
    quotes = {'binance': _cex('binance', 100.0), 'kraken': _cex('kraken', 102.0), 'okx': _cex('okx', 101.0)}

    spread = summarize_quotes('ETH/USDT', quotes)

    assert spread.min_venue == 'binance'
    assert spread.max_venue == 'kraken'
    assert spread.avg_price == pytest.approx(101.0)
    assert spread.spread_percent == pytest.approx(2.0 / 101.0 * 100)
    assert spread.num_venues == 3
    assert summarize_quotes('ETH/USDT', {}) is None
