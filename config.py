#!/usr/bin/env python3
import os
import argparse
from typing import NamedTuple
import constants

class AppConfig(NamedTuple):
    """Typed configuration object."""
    exchanges: list[str]
    chains: list[str]
    top_venues: int
    top_pairs: int
    min_pair_volume: float
    top_sub_markets: int
    records_per_sub_market: int
    min_venue_count: int
    threshold: float
    trading_fee: float
    slippage_fraction: float
    min_liquidity: float
    trade_volume: float
    fallback_gas_fee: float
    request_timeout: float
    max_concurrency: int
    interval: int
    catalog_refresh_interval: int
    db_path: str
    telegram_enabled: bool
    alert_cooldown: int
    show_opportunities: bool
    opportunity_limit: int
    opportunity_pair: str | None
    once: bool
    log_level: str
    bitquery_api_key: str | None
    etherscan_api_key: str | None
    coingecko_api_key: str | None
    telegram_bot_token: str | None
    telegram_chat_id: str | None


def load_config() -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    """
    parser = argparse.ArgumentParser(
        description="Aggregate CEX and DEX prices per trading pair and detect fee-adjusted arbitrage opportunities.",
        epilog="Example: ./main.py --exchange binance kraken --chain ethereum base --threshold 1.0 --once"
    )
    # --- Venue Arguments ---
    parser.add_argument('--exchange', nargs='*', default=list(constants.DEFAULT_EXCHANGES), help='Centralized exchanges (ccxt ids) to poll.')
    parser.add_argument('--chain', nargs='*', choices=constants.CHAIN_CONFIG.keys(), default=list(constants.DEFAULT_CHAINS), help='Blockchains whose DEXs are polled.')
    parser.add_argument('--top-venues', type=int, default=25, help='Max venues kept after discovery (default: 25).')
    parser.add_argument('--top-pairs', type=int, default=25, help='Number of pairs tracked by volume (default: 25).')
    parser.add_argument('--min-pair-volume', type=float, default=constants.MIN_PAIR_VOLUME, help='Min quoted volume for a pair to be ranked (default: 10000).')
    parser.add_argument('--top-sub-markets', type=int, default=5, help='Max DEX protocols fetched per chain (default: 5).')
    parser.add_argument('--records-per-sub-market', type=int, default=100, help='Max trade records fetched per sub-market (default: 100).')
    parser.add_argument('--min-venue-count', type=int, default=2, help='Min distinct venues quoting a pair for it to be matched (default: 2).')

    # --- Detection Arguments ---
    parser.add_argument('--threshold', type=float, default=constants.DEFAULT_ARBITRAGE_THRESHOLD, help='Min gross price gap percentage (default: 1.5).')
    parser.add_argument('--trading-fee', type=float, default=constants.DEFAULT_TRADING_FEE_PCT, help='Trading fee percentage per leg (default: 0.1).')
    parser.add_argument('--slippage-fraction', type=float, default=constants.DEFAULT_SLIPPAGE_FRACTION, help='Slippage estimate as a fraction of the gap (default: 0.1).')
    parser.add_argument('--min-liquidity', type=float, default=constants.DEFAULT_MIN_LIQUIDITY, help='Min pair liquidity (aggregate volume) for an opportunity (default: 10000).')
    parser.add_argument('--trade-volume', type=float, default=500.0, help='Trade size in USD used to express gas as a percentage (default: 500).')
    parser.add_argument('--fallback-gas-fee', type=float, default=constants.DEFAULT_FALLBACK_GAS_FEE_PCT, help='Gas percentage used when the estimator fails (default: 0.5).')

    # --- Runtime Arguments ---
    parser.add_argument('--request-timeout', type=float, default=30.0, help='Timeout in seconds for each venue query (default: 30).')
    parser.add_argument('--max-concurrency', type=int, default=8, help='Max concurrent venue queries (default: 8).')
    parser.add_argument('--interval', type=int, default=120, help='Seconds to wait between detection cycles (default: 120).')
    parser.add_argument('--catalog-refresh-interval', type=int, default=3600, help='Seconds before the venue/pair catalog is rebuilt (default: 3600).')
    parser.add_argument('--db-path', type=str, default='data/arbitrage.db', help='SQLite database path (default: data/arbitrage.db).')
    parser.add_argument('--telegram-enabled', action='store_true', help='Enable Telegram notifications and commands.')
    parser.add_argument('--alert-cooldown', type=int, default=3600, help='Cooldown in seconds before re-alerting for the same route (default: 3600).')
    parser.add_argument('--show-opportunities', action='store_true', help='Display stored opportunities and exit.')
    parser.add_argument('--opportunity-limit', type=int, default=20, help='Number of stored opportunities to display (default: 20).')
    parser.add_argument('--opportunity-pair', type=str, help='Filter stored opportunities by pair, e.g. ETH/USDT.')
    parser.add_argument('--once', action='store_true', help='Run a single detection cycle, print the results and exit.')
    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level (default: INFO).')

    args = parser.parse_args()

    # Load from environment
    bitquery_api_key = os.environ.get(constants.BITQUERY_API_KEY_ENV_VAR)
    etherscan_api_key = os.environ.get(constants.ETHERSCAN_API_KEY_ENV_VAR)
    coingecko_api_key = os.environ.get(constants.COINGECKO_API_KEY_ENV_VAR)
    telegram_bot_token = os.environ.get(constants.TELEGRAM_BOT_TOKEN_ENV_VAR)
    telegram_chat_id = os.environ.get(constants.TELEGRAM_CHAT_ID_ENV_VAR)

    chains = args.chain or []
    if chains and not bitquery_api_key and not args.show_opportunities:
        print(f"{constants.C_RED}{constants.BITQUERY_API_KEY_ENV_VAR} environment variable not set; required to poll DEX chains.{constants.C_RESET}")
        exit(1)

    if args.telegram_enabled and not (telegram_bot_token and telegram_chat_id):
        print(f"{constants.C_RED}Telegram is enabled, but {constants.TELEGRAM_BOT_TOKEN_ENV_VAR} or {constants.TELEGRAM_CHAT_ID_ENV_VAR} are not set.{constants.C_RESET}")
        exit(1)

    return AppConfig(
        exchanges=[ex.lower() for ex in (args.exchange or [])],
        chains=chains,
        top_venues=args.top_venues,
        top_pairs=args.top_pairs,
        min_pair_volume=args.min_pair_volume,
        top_sub_markets=args.top_sub_markets,
        records_per_sub_market=args.records_per_sub_market,
        min_venue_count=args.min_venue_count,
        threshold=args.threshold,
        trading_fee=args.trading_fee,
        slippage_fraction=args.slippage_fraction,
        min_liquidity=args.min_liquidity,
        trade_volume=args.trade_volume,
        fallback_gas_fee=args.fallback_gas_fee,
        request_timeout=args.request_timeout,
        max_concurrency=args.max_concurrency,
        interval=args.interval,
        catalog_refresh_interval=args.catalog_refresh_interval,
        db_path=args.db_path,
        telegram_enabled=args.telegram_enabled,
        alert_cooldown=args.alert_cooldown,
        show_opportunities=args.show_opportunities,
        opportunity_limit=args.opportunity_limit,
        opportunity_pair=args.opportunity_pair.upper() if args.opportunity_pair else None,
        once=args.once,
        log_level=args.log_level,
        bitquery_api_key=bitquery_api_key,
        etherscan_api_key=etherscan_api_key,
        coingecko_api_key=coingecko_api_key,
        telegram_bot_token=telegram_bot_token,
        telegram_chat_id=telegram_chat_id,
    )
