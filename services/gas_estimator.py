#!/usr/bin/env python3
"""Per-chain swap gas cost, expressed as a percentage of the configured trade size."""
import asyncio
import logging
import time
from typing import Optional

import aiohttp
from constants import BLOCKSCOUT_GAS_ORACLE_URL, CHAIN_CONFIG, ETHERSCAN_API_BASE_URL, GAS_UNITS_PER_SWAP
from services.coingecko_client import CoinGeckoClient, api_get

logger = logging.getLogger(__name__)

GWEI = 1e-9


class GasFeeEstimator:
    def __init__(self, session: aiohttp.ClientSession, etherscan_api_key: Optional[str],
                 coingecko: CoinGeckoClient, trade_volume: float, request_timeout: float = 30.0):
        self.session = session
        self.api_key = etherscan_api_key
        self.coingecko = coingecko
        self.trade_volume = trade_volume
        self.request_timeout = request_timeout
        self._last_request_time = 0.0
        self._rate_limit_delay = 0.2  # Etherscan allows 5 calls/sec

    async def _wait_for_rate_limit(self):
        elapsed = time.time() - self._last_request_time
        if elapsed < self._rate_limit_delay:
            await asyncio.sleep(self._rate_limit_delay - elapsed)
        self._last_request_time = time.time()

    async def get_gas_price_in_gwei(self, chain: str) -> Optional[float]:
        """
        Current 'standard' gas price in Gwei.
        Base is read from Blockscout, every other chain from the Etherscan v2 gas oracle.
        """
        await self._wait_for_rate_limit()

        if chain == 'base':
            data = await api_get(BLOCKSCOUT_GAS_ORACLE_URL, self.session, timeout=self.request_timeout)
            try:
                return float(data['average'])
            except (KeyError, TypeError, ValueError):
                logger.error("Could not parse gas price from Blockscout for %s: %s", chain, data or 'No data')
                return None

        chain_id = CHAIN_CONFIG.get(chain, {}).get('chainId')
        if not chain_id:
            logger.error("Chain ID not configured for chain: %s", chain)
            return None
        if not self.api_key:
            logger.warning("No Etherscan API key; cannot read gas price for %s", chain)
            return None

        params = {'module': 'gastracker', 'action': 'gasoracle', 'apikey': self.api_key, 'chainid': chain_id}
        data = await api_get(ETHERSCAN_API_BASE_URL, self.session, params=params, timeout=self.request_timeout)
        if data and data.get('status') == '1' and isinstance(data.get('result'), dict):
            # ProposeGasPrice is for EIP-1559 chains, SafeGasPrice is a fallback
            gas_price = data['result'].get('ProposeGasPrice') or data['result'].get('SafeGasPrice')
            try:
                return float(gas_price)
            except (TypeError, ValueError):
                pass
        logger.error("Could not parse gas price from Etherscan for %s: %s", chain, data or 'No data')
        return None

    async def estimate(self, chain: str) -> Optional[float]:
        """Gas cost of one swap as a percent of trade_volume, or None when it cannot be priced."""
        chain_info = CHAIN_CONFIG.get(chain)
        if not chain_info or self.trade_volume <= 0:
            return None

        gas_gwei = await self.get_gas_price_in_gwei(chain)
        native_usd = await self.coingecko.get_usd_price(str(chain_info['coingeckoId']))
        if gas_gwei is None or native_usd is None:
            return None

        cost_usd = gas_gwei * GWEI * GAS_UNITS_PER_SWAP.get(chain, 150000) * native_usd
        percent = cost_usd / self.trade_volume * 100
        logger.debug("Gas on %s: %.2f gwei, $%.4f per swap (%.4f%%)", chain, gas_gwei, cost_usd, percent)
        return percent
