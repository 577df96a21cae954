#!/usr/bin/env python3
from typing import Dict, List, Union

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- API Configuration ---
BITQUERY_API_BASE_URL = 'https://streaming.bitquery.io/graphql'
ETHERSCAN_API_BASE_URL = 'https://api.etherscan.io/v2/api'
BLOCKSCOUT_GAS_ORACLE_URL = 'https://base.blockscout.com/api/v1/gas-price-oracle'
COINGECKO_API_BASE_URL = 'https://api.coingecko.com/api/v3'

# --- Environment Variable Names ---
BITQUERY_API_KEY_ENV_VAR = 'BITQUERY_API_KEY'
ETHERSCAN_API_KEY_ENV_VAR = 'ETHERSCAN_API_KEY'
COINGECKO_API_KEY_ENV_VAR = 'COINGECKO_API_KEY'
TELEGRAM_BOT_TOKEN_ENV_VAR = 'TELEGRAM_BOT_TOKEN'
TELEGRAM_CHAT_ID_ENV_VAR = 'TELEGRAM_CHAT_ID'

# --- Chain Configuration ---
CHAIN_CONFIG: Dict[str, Dict[str, Union[str, int]]] = {
    'ethereum': {
        'chainId': 1,
        'bitqueryNetwork': 'eth',
        'coingeckoId': 'ethereum',
        'nativeSymbol': 'ETH',
    },
    'bsc': {
        'chainId': 56,
        'bitqueryNetwork': 'bsc',
        'coingeckoId': 'binancecoin',
        'nativeSymbol': 'BNB',
    },
    'polygon': {
        'chainId': 137,
        'bitqueryNetwork': 'matic',
        'coingeckoId': 'matic-network',
        'nativeSymbol': 'MATIC',
    },
    'base': {
        'chainId': 8453,
        'bitqueryNetwork': 'base',
        'coingeckoId': 'ethereum',
        'nativeSymbol': 'ETH',
    },
    'arbitrum': {
        'chainId': 42161,
        'bitqueryNetwork': 'arbitrum',
        'coingeckoId': 'ethereum',
        'nativeSymbol': 'ETH',
    },
    'optimism': {
        'chainId': 10,
        'bitqueryNetwork': 'optimism',
        'coingeckoId': 'ethereum',
        'nativeSymbol': 'ETH',
    },
}

# --- Gas Configuration ---
GAS_UNITS_PER_SWAP: Dict[str, int] = {
    'ethereum': 150000,
    'bsc': 120000,
    'polygon': 100000,
    'base': 85000,
    'arbitrum': 90000,
    'optimism': 90000,
}

# --- Venue Ranking ---
# Known high-liquidity centralized exchanges (ccxt ids), best first.
KNOWN_HIGH_VOLUME_EXCHANGES: List[str] = [
    'binance', 'coinbase', 'okx', 'bybit', 'kucoin',
    'kraken', 'bitstamp', 'bitfinex', 'huobi', 'gateio',
    'mexc', 'bitget', 'cryptocom', 'htx', 'bingx',
    'deribit', 'phemex', 'gemini', 'bitmart', 'whitebit',
    'lbank', 'bittrex', 'upbit', 'coinex', 'bitflyer',
    'wazirx', 'exmo', 'coincheck', 'poloniex', 'coinone',
]

# Chains ordered by DEX liquidity.
KNOWN_HIGH_VOLUME_CHAINS: List[str] = [
    'ethereum', 'bsc', 'base', 'arbitrum', 'polygon', 'optimism',
]

VENUE_PRIORITY: List[str] = KNOWN_HIGH_VOLUME_EXCHANGES + KNOWN_HIGH_VOLUME_CHAINS

# Well-known pairs used to pad the ranked pair list.
DEFAULT_PAIRS: List[str] = [
    'BTC/USDT', 'ETH/USDT', 'SOL/USDT', 'BNB/USDT', 'XRP/USDT',
    'ADA/USDT', 'AVAX/USDT', 'DOGE/USDT', 'DOT/USDT', 'SHIB/USDT',
    'LINK/USDT', 'MATIC/USDT', 'UNI/USDT', 'LTC/USDT', 'ATOM/USDT',
    'ETC/USDT', 'BCH/USDT', 'FIL/USDT', 'XLM/USDT', 'NEAR/USDT',
    'ALGO/USDT', 'APE/USDT', 'AXS/USDT', 'MANA/USDT', 'SAND/USDT',
]

DEFAULT_EXCHANGES: List[str] = ['binance', 'okx', 'bybit', 'kucoin', 'kraken', 'gateio']
DEFAULT_CHAINS: List[str] = ['ethereum', 'bsc', 'base']

# --- Detection Defaults ---
MIN_PAIR_VOLUME = 10000.0
DEFAULT_ARBITRAGE_THRESHOLD = 1.5
DEFAULT_TRADING_FEE_PCT = 0.1
DEFAULT_SLIPPAGE_FRACTION = 0.1
DEFAULT_MIN_LIQUIDITY = 10000.0
DEFAULT_FALLBACK_GAS_FEE_PCT = 0.5

# Look-back windows for DEX trade feeds, in minutes.
PRICE_WINDOWS_MINUTES: Dict[str, int] = {
    'ten_min_ago': 10,
    'one_hour_ago': 60,
    'three_hours_ago': 180,
}

# --- Token Categories ---
KNOWN_TOKEN_CATEGORIES: Dict[str, List[str]] = {
    'Main': ['BTC', 'ETH', 'BNB', 'XRP', 'LTC', 'SOL', 'XLM', 'XMR', 'EOS', 'MIOTA', 'NEO', 'DASH', 'ZEC', 'FIL'],
    'Alt': ['ADA', 'DOT', 'AVAX', 'LINK', 'UNI', 'ALGO', 'ATOM', 'XTZ', 'HBAR', 'EGLD', 'LUNA', 'FTM', 'MANA', 'THETA'],
    'Meme': ['DOGE', 'SHIB', 'ELON', 'FLOKI', 'SAMO', 'KISHU', 'HOGE', 'DOGEDASH', 'SAFEMOON', 'ELONGATE', 'PIT', 'DOGEFATHER', 'DOGEGF'],
}
MEME_NAME_MARKERS = ('dog', 'shib', 'inu', 'elon', 'moon', 'safe')
MAIN_MARKET_CAP_USD = 10_000_000_000
