import pytest
from unittest.mock import AsyncMock, MagicMock

from services.gas_estimator import GasFeeEstimator


def _estimator(trade_volume=500.0, api_key='fake', eth_usd=2000.0):
    coingecko = MagicMock()
    coingecko.get_usd_price = AsyncMock(return_value=eth_usd)
    estimator = GasFeeEstimator(session=None, etherscan_api_key=api_key, coingecko=coingecko, trade_volume=trade_volume)
    estimator._rate_limit_delay = 0
    return estimator


@pytest.mark.asyncio
async def test_estimate_uses_etherscan_gas_oracle(monkeypatch):
    calls = []

    async def fake_get(url, session, params=None, headers=None, retries=3, timeout=10):
        calls.append(params)
        return {'status': '1', 'result': {'ProposeGasPrice': '20', 'SafeGasPrice': '18'}}

    monkeypatch.setattr('services.gas_estimator.api_get', fake_get)
    estimator = _estimator()

    percent = await estimator.estimate('ethereum')

    # 20 gwei * 150k gas * $2000 = $6 on a $500 trade
    assert percent == pytest.approx(1.2)
    assert calls[0]['chainid'] == 1
    estimator.coingecko.get_usd_price.assert_awaited_once_with('ethereum')


@pytest.mark.asyncio
async def test_estimate_reads_blockscout_for_base(monkeypatch):
    async def fake_get(url, session, params=None, headers=None, retries=3, timeout=10):
        assert 'blockscout' in url
        return {'average': 0.1, 'fast': 0.2, 'slow': 0.05}

    monkeypatch.setattr('services.gas_estimator.api_get', fake_get)
    estimator = _estimator(api_key=None)

    percent = await estimator.estimate('base')

    assert percent == pytest.approx(0.1e-9 * 85000 * 2000.0 / 500.0 * 100)


@pytest.mark.asyncio
async def test_estimate_returns_none_when_unpriceable(monkeypatch):
    async def fake_get(*args, **kwargs):
        return {'status': '0', 'result': 'Invalid API Key'}

    monkeypatch.setattr('services.gas_estimator.api_get', fake_get)

    assert await _estimator().estimate('ethereum') is None
    assert await _estimator().estimate('solana') is None
    assert await _estimator(api_key=None).estimate('bsc') is None
    assert await _estimator(trade_volume=0).estimate('ethereum') is None
