#!/usr/bin/env python3
import asyncio
import logging
import time
from typing import Dict, List, Optional

import aiohttp
from constants import COINGECKO_API_BASE_URL

logger = logging.getLogger(__name__)


async def api_get(url: str, session: aiohttp.ClientSession, params: Optional[Dict] = None, headers: Optional[Dict] = None,
                  retries: int = 3, timeout: float = 10) -> Optional[Dict]:
    """Makes an async GET request with retries; returns None when every attempt fails or times out."""
    for attempt in range(retries):
        try:
            async with session.get(url, params=params, headers=headers,
                                   timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                return await response.json()
        except asyncio.TimeoutError:
            logger.error("API request to %s timed out after %ss", url, timeout)
            return None
        except aiohttp.ClientError as e:
            if attempt < retries - 1:
                await asyncio.sleep(2)
            else:
                logger.error("API request failed after %d attempts: %s", retries, e)
                return None


class CoinGeckoClient:
    def __init__(self, session: aiohttp.ClientSession, api_key: Optional[str] = None, price_ttl: float = 300.0):
        self.session = session
        self.api_key = api_key
        self.headers = {'x-cg-demo-api-key': self.api_key} if self.api_key else {}
        self._last_request_time = 0.0
        self._rate_limit_delay = 6 if not api_key else 2
        self._price_ttl = price_ttl
        self._price_cache: Dict[str, tuple[float, float]] = {}

    async def _wait_for_rate_limit(self):
        elapsed = time.time() - self._last_request_time
        if elapsed < self._rate_limit_delay:
            await asyncio.sleep(self._rate_limit_delay - elapsed)
        self._last_request_time = time.time()

    async def get_price(self, coin_ids: List[str], vs_currencies: List[str]) -> Optional[Dict]:
        await self._wait_for_rate_limit()
        url = f"{COINGECKO_API_BASE_URL}/simple/price"
        params = {'ids': ",".join(coin_ids), 'vs_currencies': ",".join(vs_currencies)}
        return await api_get(url, self.session, params=params, headers=self.headers)

    async def get_usd_price(self, coin_id: str) -> Optional[float]:
        """USD price of one coin, served from cache while fresh."""
        cached = self._price_cache.get(coin_id)
        if cached and time.time() - cached[1] < self._price_ttl:
            return cached[0]

        prices = await self.get_price(coin_ids=[coin_id], vs_currencies=['usd'])
        try:
            price = float(prices[coin_id]['usd'])
        except (KeyError, TypeError, ValueError):
            logger.error("Could not parse %s price from CoinGecko response.", coin_id)
            return None
        self._price_cache[coin_id] = (price, time.time())
        return price
