import asyncio
import time
from datetime import datetime, timezone

import aiohttp
import pytest

from analysis.errors import VenueUnavailable
from analysis.models import Venue, VenueKind
from analysis.pair_matcher import parse_trade_record
from services.bitquery_client import BitqueryClient, flatten_trade_row


def _row(base='WETH', quote='USDT', usd=1200.5, count=12, price=2001.0):
    return {
        'Trade': {
            'Currency': {'Symbol': base, 'Name': 'Wrapped Ether', 'SmartContract': '0xc02a'},
            'Side': {'Currency': {'Symbol': quote, 'Name': 'Tether USD', 'SmartContract': '0xdac1'}},
            'Dex': {'ProtocolFamily': 'Uniswap'},
            'price_last': price,
            'price_10min_ago': 1999.0,
            'price_1h_ago': 1980.0,
            'price_3h_ago': 1950.0,
        },
        'usd': usd,
        'count': count,
    }


def _client():
    client = BitqueryClient(session=None, api_key='fake', request_timeout=3.0)
    client._rate_limit_delay = 0
    return client


def test_flatten_trade_row_maps_to_record_shape():
    record = flatten_trade_row(_row())

    assert record['base']['currency'] == {'symbol': 'WETH', 'name': 'Wrapped Ether', 'address': '0xc02a'}
    assert record['quote']['currency']['symbol'] == 'USDT'
    assert record['price'] == {
        'current': 2001.0,
        'ten_min_ago': 1999.0,
        'one_hour_ago': 1980.0,
        'three_hours_ago': 1950.0,
    }
    assert record['volume_usd'] == 1200.5
    assert record['trade_count'] == 12

    venue = Venue('ethereum', VenueKind.DECENTRALIZED, chain='ethereum')
    parsed = parse_trade_record(record, venue, 'Uniswap')
    assert parsed.pair == 'WETH/USDT'
    assert parsed.network == 'ETHEREUM'
    assert parsed.price_3h_ago == 1950.0


def test_flatten_trade_row_passes_malformed_rows_through():
    assert flatten_trade_row({'usd': 1}) == {'usd': 1}
    record = flatten_trade_row({'Trade': {'Currency': {'Symbol': 'WETH'}}})
    assert record['quote'] is None


@pytest.mark.asyncio
async def test_fetch_recent_trades_sends_windows(monkeypatch):
    client = _client()
    captured = {}

    async def fake_post(url, session, payload, headers=None, retries=3, timeout=30):
        captured.update(payload['variables'])
        captured['timeout'] = timeout
        return {'data': {'EVM': {'DEXTradeByTokens': [_row(), {'Trade': None}]}}}

    monkeypatch.setattr('services.bitquery_client.api_post', fake_post)
    now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    records = await client.fetch_recent_trades('ethereum', 'Uniswap', 50, now=now)

    assert len(records) == 2
    assert records[1] == {'Trade': None}
    assert captured['network'] == 'eth'
    assert captured['protocol'] == 'Uniswap'
    assert captured['limit'] == 50
    assert captured['one_hour_ago'] == '2024-01-01T11:00:00+00:00'
    assert captured['three_hours_ago'] == '2024-01-01T09:00:00+00:00'
    assert captured['timeout'] == 3.0


@pytest.mark.asyncio
async def test_list_protocols_deduplicates_in_order(monkeypatch):
    client = _client()

    async def fake_post(url, session, payload, headers=None, retries=3, timeout=30):
        rows = [
            {'Trade': {'Dex': {'ProtocolFamily': 'Uniswap'}}},
            {'Trade': {'Dex': {'ProtocolFamily': 'SushiSwap'}}},
            {'Trade': {'Dex': {'ProtocolFamily': 'Uniswap'}}},
            {'Trade': {}},
        ]
        return {'data': {'EVM': {'DEXTradeByTokens': rows}}}

    monkeypatch.setattr('services.bitquery_client.api_post', fake_post)

    assert await client.list_protocols('base') == ['Uniswap', 'SushiSwap']


@pytest.mark.asyncio
async def test_fetch_pair_volumes_sums_by_symbol(monkeypatch):
    client = _client()

    async def fake_post(url, session, payload, headers=None, retries=3, timeout=30):
        rows = [_row(usd=100.0), _row(usd=50.0), _row(base=None), _row(base='PEPE', usd='oops')]
        return {'data': {'EVM': {'DEXTradeByTokens': rows}}}

    monkeypatch.setattr('services.bitquery_client.api_post', fake_post)
    venue = Venue('ethereum', VenueKind.DECENTRALIZED, chain='ethereum')

    assert await client.fetch_pair_volumes(venue) == {'WETH/USDT': 150.0}


@pytest.mark.asyncio
@pytest.mark.parametrize('failure', [asyncio.TimeoutError(), aiohttp.ClientError('reset')])
async def test_transport_failures_raise_venue_unavailable(monkeypatch, failure):
    client = _client()

    async def fake_post(*args, **kwargs):
        raise failure

    monkeypatch.setattr('services.bitquery_client.api_post', fake_post)

    with pytest.raises(VenueUnavailable) as excinfo:
        await client.list_protocols('ethereum')
    assert excinfo.value.venue_id == 'ethereum'


@pytest.mark.asyncio
async def test_graphql_errors_raise_venue_unavailable(monkeypatch):
    client = _client()

    async def fake_post(*args, **kwargs):
        return {'errors': [{'message': 'quota exceeded'}]}

    monkeypatch.setattr('services.bitquery_client.api_post', fake_post)

    with pytest.raises(VenueUnavailable, match='quota exceeded'):
        await client.list_protocols('ethereum')


@pytest.mark.asyncio
async def test_missing_api_key_and_unknown_chain():
    client = BitqueryClient(session=None, api_key=None)
    with pytest.raises(VenueUnavailable, match='API key'):
        await client.execute_query('{}')

    with pytest.raises(VenueUnavailable, match='not supported'):
        BitqueryClient.network_for('solana')


@pytest.mark.asyncio
async def test_probe_requires_dex_activity(monkeypatch):
    client = _client()

    async def fake_post(*args, **kwargs):
        return {'data': {'EVM': {'DEXTradeByTokens': []}}}

    monkeypatch.setattr('services.bitquery_client.api_post', fake_post)
    venue = Venue('bsc', VenueKind.DECENTRALIZED, chain='bsc')

    with pytest.raises(VenueUnavailable):
        await client.probe(venue)


@pytest.mark.asyncio
async def test_recent_trades_are_priced_in_quote_currency(monkeypatch):
    client = _client()
    queries = []

    async def fake_post(url, session, payload, headers=None, retries=3, timeout=30):
        queries.append(payload['query'])
        return {'data': {'EVM': {'DEXTradeByTokens': [_row(base='LINK', quote='WETH', usd=13000.0, price=0.0065)]}}}

    monkeypatch.setattr('services.bitquery_client.api_post', fake_post)

    records = await client.fetch_recent_trades('ethereum', 'Uniswap', 10)

    assert 'PriceInUSD' not in queries[0]
    assert 'price_last: Price(maximum: Block_Number)' in queries[0]
    assert records[0]['price']['current'] == 0.0065
    assert records[0]['volume_usd'] == 13000.0


@pytest.mark.asyncio
async def test_rate_limit_spaces_concurrent_requests():
    client = _client()
    client._rate_limit_delay = 0.05
    started = []

    async def request():
        await client._wait_for_rate_limit()
        started.append(time.time())

    await asyncio.gather(request(), request(), request())

    gaps = [later - earlier for earlier, later in zip(started, started[1:])]
    assert all(gap >= 0.04 for gap in gaps)
