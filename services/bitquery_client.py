#!/usr/bin/env python3
import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from analysis.errors import VenueUnavailable
from analysis.models import Venue, VenueCapabilities
from constants import BITQUERY_API_BASE_URL, CHAIN_CONFIG, PRICE_WINDOWS_MINUTES

logger = logging.getLogger(__name__)

PROTOCOLS_QUERY = """
query DexProtocols($network: evm_network) {
  EVM(network: $network) {
    DEXTradeByTokens(orderBy: {descendingByField: "count"}) {
      Trade {
        Dex {
          ProtocolFamily
        }
      }
      count
    }
  }
}
"""

RECENT_TRADES_QUERY = """
query DexTrades($network: evm_network, $protocol: String, $limit: Int, $ten_min_ago: DateTime, $one_hour_ago: DateTime, $three_hours_ago: DateTime) {
  EVM(network: $network) {
    DEXTradeByTokens(
      orderBy: {descendingByField: "usd"}
      where: {Trade: {Dex: {ProtocolFamily: {is: $protocol}}}, Block: {Time: {after: $three_hours_ago}}}
      limit: {count: $limit}
    ) {
      Trade {
        Currency {
          Symbol
          Name
          SmartContract
        }
        Side {
          Currency {
            Symbol
            Name
            SmartContract
          }
        }
        Dex {
          ProtocolFamily
        }
        price_last: Price(maximum: Block_Number)
        price_10min_ago: Price(maximum: Block_Number, if: {Block: {Time: {before: $ten_min_ago}}})
        price_1h_ago: Price(maximum: Block_Number, if: {Block: {Time: {before: $one_hour_ago}}})
        price_3h_ago: Price(minimum: Block_Number)
      }
      usd: sum(of: Trade_AmountInUSD)
      count
    }
  }
}
"""

PAIR_VOLUMES_QUERY = """
query DexPairVolumes($network: evm_network, $limit: Int, $since: DateTime) {
  EVM(network: $network) {
    DEXTradeByTokens(
      orderBy: {descendingByField: "usd"}
      where: {Block: {Time: {after: $since}}}
      limit: {count: $limit}
    ) {
      Trade {
        Currency {
          Symbol
        }
        Side {
          Currency {
            Symbol
          }
        }
      }
      usd: sum(of: Trade_AmountInUSD)
    }
  }
}
"""


async def api_post(url: str, session: aiohttp.ClientSession, payload: Dict, headers: Optional[Dict] = None,
                   retries: int = 3, timeout: float = 30) -> Dict:
    """POSTs JSON with retries on transport errors. Timeouts are not retried."""
    for attempt in range(retries):
        try:
            async with session.post(url, json=payload, headers=headers,
                                    timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                return await response.json()
        except asyncio.TimeoutError:
            raise
        except aiohttp.ClientError as e:
            if attempt < retries - 1:
                await asyncio.sleep(2)
            else:
                logger.error("API request failed after %d attempts: %s", retries, e)
                raise


def _currency(currency: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(currency, dict):
        return None
    return {
        'currency': {
            'symbol': currency.get('Symbol'),
            'name': currency.get('Name'),
            'address': currency.get('SmartContract'),
        }
    }


def flatten_trade_row(row: Any) -> Any:
    """Maps a DEXTradeByTokens row to the shared trade-record shape.

    Prices are in units of the quote (Side) currency, like CEX tickers; only
    the volume is in USD.

    Rows without a Trade block are returned unchanged so the matcher can count
    and skip them.
    """
    if not isinstance(row, dict) or not isinstance(row.get('Trade'), dict):
        return row
    trade = row['Trade']
    side = trade.get('Side') if isinstance(trade.get('Side'), dict) else {}
    return {
        'base': _currency(trade.get('Currency')),
        'quote': _currency(side.get('Currency')),
        'price': {
            'current': trade.get('price_last'),
            'ten_min_ago': trade.get('price_10min_ago'),
            'one_hour_ago': trade.get('price_1h_ago'),
            'three_hours_ago': trade.get('price_3h_ago'),
        },
        'volume_usd': row.get('usd'),
        'trade_count': row.get('count'),
    }


class BitqueryClient:
    def __init__(self, session: aiohttp.ClientSession, api_key: Optional[str], request_timeout: float = 30.0,
                 endpoint: str = BITQUERY_API_BASE_URL):
        self.session = session
        self.api_key = api_key
        self.endpoint = endpoint
        self.request_timeout = request_timeout
        self.headers = {'Content-Type': 'application/json'}
        if api_key:
            self.headers['Authorization'] = f"Bearer {api_key}"
        self._last_request_time = 0.0
        self._rate_limit_delay = 0.2
        self._rate_limit_lock = asyncio.Lock()

    async def _wait_for_rate_limit(self):
        async with self._rate_limit_lock:
            elapsed = time.time() - self._last_request_time
            if elapsed < self._rate_limit_delay:
                await asyncio.sleep(self._rate_limit_delay - elapsed)
            self._last_request_time = time.time()

    @staticmethod
    def network_for(chain: Optional[str]) -> str:
        chain_info = CHAIN_CONFIG.get(chain or '')
        if not chain_info:
            raise VenueUnavailable(chain or 'unknown', "chain not supported by Bitquery")
        return str(chain_info['bitqueryNetwork'])

    async def execute_query(self, query: str, variables: Optional[Dict] = None, venue_id: str = 'bitquery') -> Dict:
        """Runs a GraphQL query and returns its `data` block."""
        if not self.api_key:
            raise VenueUnavailable(venue_id, "Bitquery API key is not configured")
        await self._wait_for_rate_limit()
        logger.debug("Bitquery query for %s with %s", venue_id, variables)
        try:
            payload = await api_post(self.endpoint, self.session, {'query': query, 'variables': variables or {}},
                                     headers=self.headers, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise VenueUnavailable(venue_id, f"Bitquery timed out after {self.request_timeout:g}s")
        except aiohttp.ClientError as e:
            raise VenueUnavailable(venue_id, f"Bitquery request failed: {e}")

        if not isinstance(payload, dict):
            raise VenueUnavailable(venue_id, "Bitquery returned a non-object response")
        if payload.get('errors'):
            message = payload['errors'][0].get('message', 'unknown error')
            raise VenueUnavailable(venue_id, f"Bitquery API error: {message}")
        return payload.get('data') or {}

    @staticmethod
    def _rows(data: Dict) -> List[Any]:
        rows = (data.get('EVM') or {}).get('DEXTradeByTokens')
        return rows if isinstance(rows, list) else []

    async def list_protocols(self, chain: str) -> List[str]:
        """DEX protocol families active on the chain, most active first."""
        data = await self.execute_query(PROTOCOLS_QUERY, {'network': self.network_for(chain)}, venue_id=chain)
        protocols: List[str] = []
        for row in self._rows(data):
            name = (((row or {}).get('Trade') or {}).get('Dex') or {}).get('ProtocolFamily')
            if name and name not in protocols:
                protocols.append(name)
        return protocols

    async def fetch_recent_trades(self, chain: str, protocol: str, limit: int,
                                  time_windows: Mapping[str, int] = PRICE_WINDOWS_MINUTES,
                                  now: Optional[datetime] = None) -> List[Any]:
        now = now or datetime.now(timezone.utc)
        variables: Dict[str, Any] = {'network': self.network_for(chain), 'protocol': protocol, 'limit': limit}
        for name, minutes in time_windows.items():
            variables[name] = (now - timedelta(minutes=minutes)).isoformat()
        data = await self.execute_query(RECENT_TRADES_QUERY, variables, venue_id=chain)
        return [flatten_trade_row(row) for row in self._rows(data)]

    async def fetch_pair_volumes(self, venue: Venue, limit: int = 200) -> Dict[str, float]:
        since = datetime.now(timezone.utc) - timedelta(minutes=max(PRICE_WINDOWS_MINUTES.values()))
        variables = {'network': self.network_for(venue.chain), 'limit': limit, 'since': since.isoformat()}
        data = await self.execute_query(PAIR_VOLUMES_QUERY, variables, venue_id=venue.venue_id)

        volumes: Dict[str, float] = {}
        for row in self._rows(data):
            trade = (row or {}).get('Trade') or {}
            base = (trade.get('Currency') or {}).get('Symbol')
            quote = ((trade.get('Side') or {}).get('Currency') or {}).get('Symbol')
            if not base or not quote:
                continue
            try:
                volume = float(row.get('usd') or 0.0)
            except (TypeError, ValueError):
                continue
            symbol = f"{base}/{quote}"
            volumes[symbol] = volumes.get(symbol, 0.0) + volume
        return volumes

    async def probe(self, venue: Venue) -> VenueCapabilities:
        protocols = await self.list_protocols(venue.chain)
        if not protocols:
            raise VenueUnavailable(venue.venue_id, "no DEX activity reported")
        return VenueCapabilities(bulk_quote=True, single_quote=False)

    async def list_sub_markets(self, venue: Venue) -> List[str]:
        return await self.list_protocols(venue.chain)

    async def fetch_trade_records(self, venue: Venue, sub_market: str, limit: int) -> List[Any]:
        return await self.fetch_recent_trades(venue.chain, sub_market, limit)
