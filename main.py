#!/usr/bin/env python3
import asyncio
import logging
import time
from typing import Optional

import aiohttp
from telegram import BotCommand
from telegram.ext import Application, CommandHandler
from telegram.error import TimedOut, TelegramError

import constants
from analysis.engine import ArbitrageEngine, EngineContext
from analysis.errors import ConfigurationError, PersistenceFailure
from analysis.models import ArbitrageOpportunity
from bot.handlers import (
    help_command,
    opportunities_command,
    scaninfo_command,
    scan_command,
    status_command,
)
from config import AppConfig, load_config
from logging_config import setup_logging
from scanner import ArbitrageScanner, CycleResult
from services.bitquery_client import BitqueryClient
from services.ccxt_market_client import CcxtMarketClient
from services.coingecko_client import CoinGeckoClient
from services.gas_estimator import GasFeeEstimator
from storage import SQLiteRepository
from storage.models import OpportunityRecord

logger = logging.getLogger(__name__)

USER_AGENT = 'CrossVenueArbBot/1.0'


def build_engine(config: AppConfig, session: aiohttp.ClientSession) -> ArbitrageEngine:
    """Wires the venue providers and gas estimator into a fresh engine."""
    market_data = CcxtMarketClient(request_timeout=config.request_timeout) if config.exchanges else None
    trade_feed = BitqueryClient(session, config.bitquery_api_key, config.request_timeout) if config.chains else None
    coingecko = CoinGeckoClient(session, config.coingecko_api_key)
    gas_estimator = GasFeeEstimator(
        session, config.etherscan_api_key, coingecko, config.trade_volume, config.request_timeout
    )
    return ArbitrageEngine(EngineContext(config, market_data, trade_feed, gas_estimator))


async def close_engine(engine: Optional[ArbitrageEngine]) -> None:
    if engine is not None and engine.context.market_data is not None:
        await engine.context.market_data.close()


async def post_init_hook(application: Application) -> None:
    """A hook that runs after the bot is initialized to set up shared clients and tasks."""
    session = aiohttp.ClientSession(headers={'User-Agent': USER_AGENT})
    application.bot_data['http_session'] = session

    config: AppConfig = application.bot_data['config']
    engine = build_engine(config, session)
    application.bot_data['engine'] = engine

    commands = [
        BotCommand("status", "Check bot status"),
        BotCommand("scaninfo", "See tracked venues and pairs"),
        BotCommand("opportunities", "Show recent opportunities"),
        BotCommand("scan", "Run a detection cycle now"),
        BotCommand("help", "Show help message"),
    ]
    try:
        await application.bot.set_my_commands(commands)
    except (TimedOut, TelegramError) as exc:
        logger.warning("Unable to set Telegram bot commands (%s). Continuing startup without updating commands.", exc)

    scanner = ArbitrageScanner(config, engine, application.bot_data.get('repository'), application)
    application.bot_data['scanner'] = scanner
    application.bot_data['scanner_task'] = asyncio.create_task(scanner.start())


async def post_shutdown_hook(application: Application) -> None:
    """A hook that runs on application shutdown to clean up resources."""
    scanner_task = application.bot_data.get('scanner_task')
    if scanner_task and not scanner_task.done():
        scanner_task.cancel()
    await close_engine(application.bot_data.get('engine'))
    session = application.bot_data.get('http_session')
    if session:
        await session.close()
    repository = application.bot_data.get('repository')
    if repository:
        await repository.close()


async def run_cli(config: AppConfig, repository: SQLiteRepository) -> None:
    """Runs without Telegram: a single cycle with --once, otherwise the detection loop."""
    session = aiohttp.ClientSession(headers={'User-Agent': USER_AGENT})
    engine = build_engine(config, session)
    scanner = ArbitrageScanner(config, engine, repository)
    try:
        if config.once:
            result = await scanner.run_cycle()
            if result is not None:
                _print_cycle_result(result)
        else:
            await scanner.start()
    finally:
        await close_engine(engine)
        await session.close()
        await repository.close()


def run_telegram(config: AppConfig, repository: SQLiteRepository) -> None:
    application = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(post_init_hook)
        .post_shutdown(post_shutdown_hook)
        .build()
    )

    application.bot_data['config'] = config
    application.bot_data['start_time'] = time.time()
    application.bot_data['repository'] = repository

    application.add_handler(CommandHandler("start", help_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("scaninfo", scaninfo_command))
    application.add_handler(CommandHandler("opportunities", opportunities_command))
    application.add_handler(CommandHandler("scan", scan_command, block=False))

    application.run_polling()


def main() -> None:
    """The main synchronous entry point for the application."""
    config = load_config()
    setup_logging(config.log_level)

    if config.show_opportunities:
        repository = SQLiteRepository(config.db_path)
        try:
            records = asyncio.run(
                repository.fetch_recent_opportunities(limit=config.opportunity_limit, pair=config.opportunity_pair)
            )
        except PersistenceFailure as exc:
            print(f"{constants.C_RED}Could not read stored opportunities: {exc}{constants.C_RESET}")
            exit(1)
        finally:
            asyncio.run(repository.close())
        _print_opportunity_records(records, config.opportunity_limit, config.opportunity_pair)
        return

    if not config.exchanges and not config.chains:
        print(f"{constants.C_RED}Error: {ConfigurationError('No exchanges or chains configured; nothing to poll.')}{constants.C_RESET}")
        exit(1)

    repository = SQLiteRepository(config.db_path)

    if config.once or not config.telegram_enabled:
        if not config.telegram_enabled:
            print("Telegram is not configured. The application will run in CLI-only mode.")
        try:
            asyncio.run(run_cli(config, repository))
        except KeyboardInterrupt:
            print("Stopped.")
        return

    run_telegram(config, repository)


def _print_table(headers: list[str], rows: list[list[str]]) -> None:
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))

    def _format_line(row: list[str]) -> str:
        return "  ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row))

    print(_format_line(headers))
    print("  ".join('-' * w for w in widths))
    for row in rows:
        print(_format_line(row))


def _print_opportunity_records(records: list[OpportunityRecord], limit: int, pair: str | None) -> None:
    heading = f"Showing up to {limit} stored opportunities"
    if pair:
        heading += f" (pair={pair.upper()})"
    print(heading)
    print("=" * len(heading))

    if not records:
        print("No opportunities found.")
        return

    headers = ["Detected (UTC)", "Pair", "Type", "Buy", "Buy Price", "Sell", "Sell Price", "Gap %", "Net %", "Liquidity $"]
    rows = [
        [
            record.detected_at.strftime("%Y-%m-%d %H:%M:%S") if record.detected_at else "N/A",
            record.pair,
            record.comparison_type,
            record.buy_venue,
            f"{record.buy_price:.6f}",
            record.sell_venue,
            f"{record.sell_price:.6f}",
            f"{record.gross_gap_percent:.2f}",
            f"{record.net_profit:.2f}",
            f"{record.liquidity:,.0f}",
        ]
        for record in records
    ]
    _print_table(headers, rows)


def _print_cycle_result(result: CycleResult) -> None:
    heading = (
        f"Cycle finished in {result.duration:.1f}s: {len(result.venues)} venues, "
        f"{len(result.aggregates)} matched pairs, {len(result.opportunities)} opportunities"
    )
    print(heading)
    print("=" * len(heading))
    if not result.opportunities:
        print("No viable opportunities this cycle.")
        return

    headers = ["Pair", "Type", "Buy", "Buy Price", "Sell", "Sell Price", "Gap %", "Fees %", "Net %"]

    def _format_row(opp: ArbitrageOpportunity) -> list[str]:
        return [
            opp.pair,
            opp.comparison_type.value,
            opp.buy_venue,
            f"{opp.buy_price:.6f}",
            opp.sell_venue,
            f"{opp.sell_price:.6f}",
            f"{opp.gross_gap_percent:.2f}",
            f"{opp.fees.total:.2f}",
            f"{opp.net_profit:.2f}",
        ]

    _print_table(headers, [_format_row(opp) for opp in result.opportunities])


if __name__ == "__main__":
    main()
