import pytest

from config import AppConfig


@pytest.fixture
def config():
    return AppConfig(
        exchanges=['binance', 'kraken'],
        chains=['ethereum'],
        top_venues=25,
        top_pairs=5,
        min_pair_volume=1000.0,
        top_sub_markets=5,
        records_per_sub_market=100,
        min_venue_count=2,
        threshold=1.0,
        trading_fee=0.1,
        slippage_fraction=0.1,
        min_liquidity=1000.0,
        trade_volume=500.0,
        fallback_gas_fee=0.5,
        request_timeout=5.0,
        max_concurrency=4,
        interval=60,
        catalog_refresh_interval=3600,
        db_path=':memory:',
        telegram_enabled=False,
        alert_cooldown=3600,
        show_opportunities=False,
        opportunity_limit=20,
        opportunity_pair=None,
        once=False,
        log_level='INFO',
        bitquery_api_key='mock_bitquery_key',
        etherscan_api_key='mock_etherscan_key',
        coingecko_api_key=None,
        telegram_bot_token=None,
        telegram_chat_id=None,
    )
