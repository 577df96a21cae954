# scanner.py
import asyncio
import html
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from telegram.error import TelegramError
from telegram.ext import Application

from analysis.engine import ArbitrageEngine
from analysis.errors import PersistenceFailure
from analysis.models import ArbitrageOpportunity, PairAggregate
from config import AppConfig
from storage import SQLiteRepository

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Outcome of one detection cycle."""
    started_at: datetime
    finished_at: datetime
    scan_cycle_id: Optional[int] = None
    venues: List[str] = field(default_factory=list)
    pairs: List[str] = field(default_factory=list)
    aggregates: List[PairAggregate] = field(default_factory=list)
    opportunities: List[ArbitrageOpportunity] = field(default_factory=list)
    alerts_sent: int = 0
    persisted: bool = True

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def format_opportunity_message(opp: ArbitrageOpportunity) -> str:
    """Formats an opportunity alert for Telegram (HTML parse mode)."""
    buy_venue = html.escape(opp.buy_venue)
    sell_venue = html.escape(opp.sell_venue)
    message_lines = [
        f"⚡ <b>Arbitrage: {html.escape(opp.pair)} ({opp.comparison_type.value})</b>",
        "",
        f"<b>Gap:</b> {opp.gross_gap_percent:.2f}% | <b>Est. Net:</b> {opp.net_profit:.2f}%",
        f"<b>Route:</b> Buy {buy_venue} @ ${opp.buy_price:.6f} -> Sell {sell_venue} @ ${opp.sell_price:.6f}",
        (
            f"<b>Costs:</b> fees {opp.fees.trading_fee:.2f}% | slippage {opp.fees.slippage:.2f}%"
            f" | gas {opp.fees.gas_estimate:.2f}%"
        ),
        f"<b>Liquidity:</b> ${opp.liquidity:,.0f}",
        "",
        "<i>Disclaimer: This is not financial advice.</i>",
    ]
    return "\n".join(message_lines)


class ArbitrageScanner:
    def __init__(
        self,
        config: AppConfig,
        engine: ArbitrageEngine,
        repository: Optional[SQLiteRepository] = None,
        application: Optional[Application] = None,
    ):
        self.config = config
        self.engine = engine
        self.repository = repository
        self.application = application
        self.bot = application.bot if application is not None else None
        self.alert_cache: Dict[str, float] = {}
        self.last_result: Optional[CycleResult] = None
        self._cycle_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def bot_data(self) -> Dict[str, Any]:
        if self.application is None:
            return {}
        return self.application.bot_data

    async def start(self):
        """Starts the detection loop."""
        await self._run_main_loop()

    async def _run_main_loop(self):
        while True:
            logger.info("Starting new detection cycle...")
            try:
                await self.run_cycle()
                self.bot_data['last_error'] = None
            except Exception as e:
                logger.error("Error during detection cycle: %s", e, exc_info=True)
                self.bot_data['last_error'] = str(e)

            self._prune_alert_cache()
            logger.info("Cycle finished. Waiting %d seconds...", self.config.interval)
            await asyncio.sleep(self.config.interval)

    async def run_cycle(self) -> Optional[CycleResult]:
        """Runs one detection cycle, or returns None when another cycle is still in flight."""
        if self._cycle_lock.locked():
            logger.warning("A detection cycle is already running; skipping this one.")
            return None
        async with self._cycle_lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> CycleResult:
        started_at = datetime.now(timezone.utc)

        catalog = self.engine.catalog
        if not catalog.venues or self.engine.catalog_is_stale(self.config.catalog_refresh_interval):
            logger.info("Refreshing venue catalog...")
            catalog = await self.engine.refresh_catalog()

        result = CycleResult(
            started_at=started_at,
            finished_at=started_at,
            venues=[venue.venue_id for venue in catalog.active_venues],
            pairs=list(catalog.pairs),
        )
        result.scan_cycle_id = await self._persist(
            "record cycle start", result, self._repo_call('record_scan_cycle_start', result.venues, result.pairs)
        )

        result.aggregates = await self.engine.aggregate_pairs()
        result.opportunities = await self.engine.detect_for_all_tracked_pairs()

        await self._persist("store pair snapshots", result, self._repo_call('upsert_pair_snapshots', result.aggregates))
        await self._persist(
            "store opportunities", result,
            self._repo_call('record_opportunities', result.scan_cycle_id, result.opportunities),
        )

        result.alerts_sent = await self._dispatch_alerts(result.opportunities)

        if result.scan_cycle_id is not None:
            await self._persist(
                "record cycle finish", result,
                self._repo_call('record_scan_cycle_finish', result.scan_cycle_id, len(result.opportunities)),
            )

        result.finished_at = datetime.now(timezone.utc)
        self.last_result = result
        self.bot_data['last_scan_time'] = result.finished_at.strftime('%Y-%m-%d %H:%M:%S UTC')
        self.bot_data['found_last_scan'] = len(result.opportunities)
        logger.info(
            "Cycle done in %.1fs: %d venues, %d matched pairs, %d opportunities, %d alerts",
            result.duration, len(result.venues), len(result.aggregates), len(result.opportunities), result.alerts_sent,
        )
        return result

    def _repo_call(self, method: str, *args):
        if self.repository is None:
            return None
        return getattr(self.repository, method)(*args)

    async def _persist(self, action: str, result: CycleResult, awaitable) -> Any:
        """Awaits a repository call; a PersistenceFailure is logged and leaves the cycle's results intact."""
        if awaitable is None:
            return None
        try:
            return await awaitable
        except PersistenceFailure as exc:
            result.persisted = False
            logger.error("Could not %s: %s", action, exc)
            return None

    async def _dispatch_alerts(self, opportunities: List[ArbitrageOpportunity]) -> int:
        if not self.config.telegram_enabled or self.bot is None or not self.config.telegram_chat_id:
            return 0
        sent = 0
        for opp in opportunities:
            if await self._send_telegram_notification(opp):
                sent += 1
        return sent

    async def _send_telegram_notification(self, opp: ArbitrageOpportunity) -> bool:
        """Sends an alert unless the route is still cooling down."""
        now = time.time()
        last_sent = self.alert_cache.get(opp.route_key)
        if last_sent is not None and (now - last_sent) < self.config.alert_cooldown:
            logger.debug("Skipping notification for %s (cooldown).", opp.route_key)
            return False

        try:
            await self.bot.send_message(
                chat_id=self.config.telegram_chat_id,
                text=format_opportunity_message(opp),
                parse_mode='HTML',
            )
        except TelegramError as e:
            logger.error("Failed to send Telegram alert for %s: %s", opp.route_key, e)
            return False

        self.alert_cache[opp.route_key] = now
        return True

    def _prune_alert_cache(self):
        """Removes expired entries from the alert cache."""
        now = time.time()
        self.alert_cache = {k: v for k, v in self.alert_cache.items() if (now - v) < self.config.alert_cooldown}
