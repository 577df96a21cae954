import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock
from telegram.error import TelegramError

from analysis.errors import PersistenceFailure
from analysis.models import ArbitrageOpportunity, ComparisonType, FeeBreakdown, VenueCatalog, Venue, VenueKind
from scanner import ArbitrageScanner, format_opportunity_message


def _opportunity(**overrides):
    payload = dict(
        pair='ETH/USDT',
        comparison_type=ComparisonType.CEX_CEX,
        buy_venue='binance',
        buy_price=2000.0,
        sell_venue='kraken',
        sell_price=2040.0,
        gross_gap_percent=2.0,
        fees=FeeBreakdown(trading_fee=0.2, slippage=0.2, gas_estimate=0.0),
        net_profit=1.6,
        liquidity=50000.0,
    )
    payload.update(overrides)
    return ArbitrageOpportunity(**payload)


@pytest.fixture
def mock_application():
    app = MagicMock()
    app.bot = AsyncMock()
    app.bot_data = {}
    return app


@pytest.fixture
def mock_engine():
    engine = MagicMock()
    catalog = VenueCatalog(
        venues=[Venue('binance', VenueKind.CENTRALIZED), Venue('kraken', VenueKind.CENTRALIZED)],
        pairs=['ETH/USDT'],
    )

    async def _refresh():
        engine.catalog = catalog
        return catalog

    engine.catalog = VenueCatalog()
    engine.catalog_is_stale = MagicMock(return_value=False)
    engine.refresh_catalog = AsyncMock(side_effect=_refresh)
    engine.aggregate_pairs = AsyncMock(return_value=[])
    engine.detect_for_all_tracked_pairs = AsyncMock(return_value=[_opportunity()])
    return engine


@pytest.fixture
def mock_repository():
    repository = MagicMock()
    repository.record_scan_cycle_start = AsyncMock(return_value=7)
    repository.record_scan_cycle_finish = AsyncMock()
    repository.upsert_pair_snapshots = AsyncMock(return_value=0)
    repository.record_opportunities = AsyncMock(return_value=1)
    return repository


@pytest.fixture
def scanner(config, mock_engine, mock_repository, mock_application):
    config = config._replace(telegram_enabled=True, telegram_chat_id='mock_chat_id', telegram_bot_token='mock_token')
    return ArbitrageScanner(config, mock_engine, mock_repository, mock_application)


@pytest.mark.asyncio
async def test_run_cycle_refreshes_empty_catalog_and_persists(scanner, mock_engine, mock_repository, mock_application):
    result = await scanner.run_cycle()

    mock_engine.refresh_catalog.assert_awaited_once()
    mock_repository.record_scan_cycle_start.assert_awaited_once_with(['binance', 'kraken'], ['ETH/USDT'])
    mock_repository.record_opportunities.assert_awaited_once_with(7, result.opportunities)
    mock_repository.record_scan_cycle_finish.assert_awaited_once_with(7, 1)
    assert result.scan_cycle_id == 7
    assert result.persisted is True
    assert result.alerts_sent == 1
    assert mock_application.bot_data['found_last_scan'] == 1


@pytest.mark.asyncio
async def test_fresh_catalog_is_reused(scanner, mock_engine):
    await scanner.run_cycle()
    await scanner.run_cycle()

    mock_engine.refresh_catalog.assert_awaited_once()


@pytest.mark.asyncio
async def test_persistence_failure_keeps_opportunities(scanner, mock_repository):
    mock_repository.record_opportunities = AsyncMock(side_effect=PersistenceFailure("disk full"))

    result = await scanner.run_cycle()

    assert result.persisted is False
    assert len(result.opportunities) == 1
    assert result.opportunities[0].pair == 'ETH/USDT'


@pytest.mark.asyncio
async def test_overlapping_cycle_is_skipped(scanner, mock_engine):
    release = asyncio.Event()

    async def _slow_detect():
        await release.wait()
        return []

    mock_engine.detect_for_all_tracked_pairs = AsyncMock(side_effect=_slow_detect)

    first = asyncio.create_task(scanner.run_cycle())
    await asyncio.sleep(0)
    assert scanner.is_running

    assert await scanner.run_cycle() is None

    release.set()
    result = await first
    assert result is not None
    assert not scanner.is_running


@pytest.mark.asyncio
async def test_cycle_without_repository_or_telegram(config, mock_engine):
    scanner = ArbitrageScanner(config, mock_engine)

    result = await scanner.run_cycle()

    assert result.scan_cycle_id is None
    assert result.alerts_sent == 0
    assert len(result.opportunities) == 1


@pytest.mark.asyncio
async def test_alert_cooldown_per_route(scanner, mock_application):
    opp = _opportunity()

    assert await scanner._send_telegram_notification(opp) is True
    assert await scanner._send_telegram_notification(opp) is False
    assert await scanner._send_telegram_notification(_opportunity(sell_venue='okx')) is True

    assert mock_application.bot.send_message.await_count == 2


@pytest.mark.asyncio
async def test_telegram_error_does_not_start_cooldown(scanner, mock_application):
    mock_application.bot.send_message = AsyncMock(side_effect=[TelegramError("flood"), None])
    opp = _opportunity()

    assert await scanner._send_telegram_notification(opp) is False
    assert await scanner._send_telegram_notification(opp) is True


def test_format_opportunity_message_escapes_html():
    message = format_opportunity_message(_opportunity(buy_venue='<evil>'))

    assert '&lt;evil&gt;' in message
    assert 'CEX-CEX' in message
    assert '1.60%' in message
