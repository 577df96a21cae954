"""SQLite-backed persistence layer for detection cycles, pair snapshots and opportunities."""
from __future__ import annotations

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from analysis.errors import PersistenceFailure
from analysis.models import ArbitrageOpportunity, PairAggregate
from storage.models import MarketPriceRecord, OpportunityRecord, PairSnapshotRecord, ScanCycleRecord

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _serialize_list(values: Iterable[str]) -> str:
    return ",".join(values)


def _deserialize_list(value: Optional[str]) -> list[str]:
    return [item for item in (value or "").split(",") if item]


def _format_ts(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(ISO_FORMAT)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


class SQLiteRepository:
    """Provides async-friendly helpers for persisting detection activity."""

    def __init__(self, db_path: Path | str = Path("data/arbitrage.db")) -> None:
        self.db_path = Path(db_path)
        if self.db_path != Path(":memory:"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(
            str(self.db_path),
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

    def _configure(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError:
                pass
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    def _create_schema(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS scan_cycle (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                venues TEXT NOT NULL,
                pairs TEXT NOT NULL,
                opportunities_found INTEGER NOT NULL DEFAULT 0
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS pair_snapshot (
                pair TEXT PRIMARY KEY,
                base_symbol TEXT NOT NULL,
                base_name TEXT NOT NULL,
                base_address TEXT NOT NULL,
                quote_symbol TEXT NOT NULL,
                quote_name TEXT NOT NULL,
                quote_address TEXT NOT NULL,
                diversity_count INTEGER NOT NULL,
                total_volume REAL NOT NULL,
                chains TEXT NOT NULL,
                exchanges TEXT NOT NULL,
                current_price REAL,
                price_10m_ago REAL,
                price_1h_ago REAL,
                category TEXT,
                updated_at TEXT NOT NULL
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS market_price (
                pair TEXT NOT NULL,
                venue TEXT NOT NULL,
                network TEXT NOT NULL,
                kind TEXT NOT NULL,
                price REAL,
                volume REAL NOT NULL DEFAULT 0,
                trade_count INTEGER NOT NULL DEFAULT 0,
                price_10m_ago REAL,
                price_1h_ago REAL,
                price_3h_ago REAL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (pair, venue, network)
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS opportunity (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                scan_cycle_id INTEGER,
                route_key TEXT NOT NULL UNIQUE,
                pair TEXT NOT NULL,
                comparison_type TEXT NOT NULL,
                buy_venue TEXT NOT NULL,
                buy_price REAL NOT NULL,
                sell_venue TEXT NOT NULL,
                sell_price REAL NOT NULL,
                gross_gap_percent REAL NOT NULL,
                trading_fee REAL NOT NULL,
                slippage REAL NOT NULL,
                gas_estimate REAL NOT NULL,
                net_profit REAL NOT NULL,
                liquidity REAL NOT NULL,
                first_seen_at TEXT NOT NULL,
                detected_at TEXT NOT NULL,
                analyzed INTEGER NOT NULL DEFAULT 0,
                executed INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (scan_cycle_id) REFERENCES scan_cycle(id) ON DELETE SET NULL
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_opportunity_pair_time
                ON opportunity(pair, detected_at);
            """,
        ]

        with self._lock:
            cursor = self._connection.cursor()
            for statement in statements:
                cursor.execute(statement)
            self._connection.commit()
            cursor.close()

    @contextmanager
    def _cursor(self, action: str) -> Iterator[sqlite3.Cursor]:
        """Serialized cursor that commits on success and raises PersistenceFailure on any sqlite error."""
        with self._lock:
            cursor = self._connection.cursor()
            try:
                yield cursor
                self._connection.commit()
            except sqlite3.Error as exc:
                self._connection.rollback()
                raise PersistenceFailure(f"{action} failed: {exc}") from exc
            finally:
                cursor.close()

    async def record_scan_cycle_start(self, venues: Iterable[str], pairs: Iterable[str]) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._record_scan_cycle_start_sync,
            list(venues),
            list(pairs),
        )

    def _record_scan_cycle_start_sync(self, venues: list[str], pairs: list[str]) -> int:
        started_at = _format_ts(datetime.now(timezone.utc))
        with self._cursor("Recording scan cycle start") as cursor:
            cursor.execute(
                """
                INSERT INTO scan_cycle (started_at, venues, pairs)
                VALUES (?, ?, ?)
                """,
                (started_at, _serialize_list(venues), _serialize_list(pairs)),
            )
            cycle_id = cursor.lastrowid
        return cycle_id

    async def record_scan_cycle_finish(self, scan_cycle_id: int, opportunities_found: int) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            self._record_scan_cycle_finish_sync,
            scan_cycle_id,
            opportunities_found,
        )

    def _record_scan_cycle_finish_sync(self, scan_cycle_id: int, opportunities_found: int) -> None:
        finished_at = _format_ts(datetime.now(timezone.utc))
        with self._cursor("Recording scan cycle finish") as cursor:
            cursor.execute(
                """
                UPDATE scan_cycle
                SET finished_at = ?, opportunities_found = ?
                WHERE id = ?
                """,
                (finished_at, opportunities_found, scan_cycle_id),
            )

    async def fetch_last_scan_cycle(self) -> Optional[ScanCycleRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_last_scan_cycle_sync)

    def _fetch_last_scan_cycle_sync(self) -> Optional[ScanCycleRecord]:
        with self._cursor("Reading scan cycles") as cursor:
            cursor.execute("SELECT * FROM scan_cycle ORDER BY id DESC LIMIT 1")
            row = cursor.fetchone()
        if row is None:
            return None
        return ScanCycleRecord(
            id=row["id"],
            started_at=_parse_ts(row["started_at"]),
            finished_at=_parse_ts(row["finished_at"]),
            venues=_deserialize_list(row["venues"]),
            pairs=_deserialize_list(row["pairs"]),
            opportunities_found=row["opportunities_found"],
        )

    async def upsert_pair_snapshots(self, aggregates: Iterable[PairAggregate]) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._upsert_pair_snapshots_sync, list(aggregates))

    def _upsert_pair_snapshots_sync(self, aggregates: list[PairAggregate]) -> int:
        updated_at = _format_ts(datetime.now(timezone.utc))
        with self._cursor("Upserting pair snapshots") as cursor:
            for aggregate in aggregates:
                cursor.execute(
                    """
                    INSERT INTO pair_snapshot (
                        pair, base_symbol, base_name, base_address,
                        quote_symbol, quote_name, quote_address,
                        diversity_count, total_volume, chains, exchanges,
                        current_price, price_10m_ago, price_1h_ago, category, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(pair) DO UPDATE SET
                        base_name = excluded.base_name,
                        base_address = excluded.base_address,
                        quote_name = excluded.quote_name,
                        quote_address = excluded.quote_address,
                        diversity_count = excluded.diversity_count,
                        total_volume = excluded.total_volume,
                        chains = excluded.chains,
                        exchanges = excluded.exchanges,
                        current_price = excluded.current_price,
                        price_10m_ago = excluded.price_10m_ago,
                        price_1h_ago = excluded.price_1h_ago,
                        category = excluded.category,
                        updated_at = excluded.updated_at
                    """,
                    (
                        aggregate.pair,
                        aggregate.base_token.symbol,
                        aggregate.base_token.name,
                        aggregate.base_token.address,
                        aggregate.quote_token.symbol,
                        aggregate.quote_token.name,
                        aggregate.quote_token.address,
                        aggregate.diversity_count,
                        aggregate.total_volume,
                        _serialize_list(aggregate.chains),
                        _serialize_list(aggregate.exchanges),
                        aggregate.price_data.current,
                        aggregate.price_data.ten_min_ago,
                        aggregate.price_data.one_hour_ago,
                        aggregate.category,
                        updated_at,
                    ),
                )
                for market in aggregate.markets.values():
                    cursor.execute(
                        """
                        INSERT INTO market_price (
                            pair, venue, network, kind, price, volume, trade_count,
                            price_10m_ago, price_1h_ago, price_3h_ago, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(pair, venue, network) DO UPDATE SET
                            kind = excluded.kind,
                            price = excluded.price,
                            volume = excluded.volume,
                            trade_count = excluded.trade_count,
                            price_10m_ago = excluded.price_10m_ago,
                            price_1h_ago = excluded.price_1h_ago,
                            price_3h_ago = excluded.price_3h_ago,
                            updated_at = excluded.updated_at
                        """,
                        (
                            aggregate.pair,
                            market.venue,
                            market.network,
                            market.kind.value,
                            market.price,
                            market.volume,
                            market.trade_count,
                            market.price_10m_ago,
                            market.price_1h_ago,
                            market.price_3h_ago,
                            updated_at,
                        ),
                    )
                # Markets that no longer quote the pair drop out of its snapshot.
                current = {(market.venue, market.network) for market in aggregate.markets.values()}
                cursor.execute("SELECT venue, network FROM market_price WHERE pair = ?", (aggregate.pair,))
                for row in cursor.fetchall():
                    if (row["venue"], row["network"]) not in current:
                        cursor.execute(
                            "DELETE FROM market_price WHERE pair = ? AND venue = ? AND network = ?",
                            (aggregate.pair, row["venue"], row["network"]),
                        )
        return len(aggregates)

    async def fetch_pair_snapshots(self, pair: Optional[str] = None) -> list[PairSnapshotRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_pair_snapshots_sync, pair.upper() if pair else None)

    def _fetch_pair_snapshots_sync(self, pair: Optional[str]) -> list[PairSnapshotRecord]:
        with self._cursor("Reading pair snapshots") as cursor:
            cursor.execute(
                """
                SELECT * FROM pair_snapshot
                WHERE (? IS NULL OR pair = ?)
                ORDER BY diversity_count DESC, total_volume DESC
                """,
                (pair, pair),
            )
            snapshot_rows = cursor.fetchall()
            cursor.execute(
                """
                SELECT * FROM market_price
                WHERE (? IS NULL OR pair = ?)
                ORDER BY volume DESC
                """,
                (pair, pair),
            )
            market_rows = cursor.fetchall()

        markets: dict[str, list[MarketPriceRecord]] = {}
        for row in market_rows:
            markets.setdefault(row["pair"], []).append(
                MarketPriceRecord(
                    pair=row["pair"],
                    venue=row["venue"],
                    network=row["network"],
                    kind=row["kind"],
                    price=row["price"],
                    volume=row["volume"],
                    trade_count=row["trade_count"],
                    price_10m_ago=row["price_10m_ago"],
                    price_1h_ago=row["price_1h_ago"],
                    price_3h_ago=row["price_3h_ago"],
                    updated_at=_parse_ts(row["updated_at"]),
                )
            )

        return [
            PairSnapshotRecord(
                pair=row["pair"],
                base_symbol=row["base_symbol"],
                base_name=row["base_name"],
                base_address=row["base_address"],
                quote_symbol=row["quote_symbol"],
                quote_name=row["quote_name"],
                quote_address=row["quote_address"],
                diversity_count=row["diversity_count"],
                total_volume=row["total_volume"],
                chains=_deserialize_list(row["chains"]),
                exchanges=_deserialize_list(row["exchanges"]),
                current_price=row["current_price"],
                price_10m_ago=row["price_10m_ago"],
                price_1h_ago=row["price_1h_ago"],
                category=row["category"],
                updated_at=_parse_ts(row["updated_at"]),
                markets=markets.get(row["pair"], []),
            )
            for row in snapshot_rows
        ]

    async def record_opportunities(
        self,
        scan_cycle_id: Optional[int],
        opportunities: Iterable[ArbitrageOpportunity],
    ) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._record_opportunities_sync,
            scan_cycle_id,
            list(opportunities),
        )

    def _record_opportunities_sync(self, scan_cycle_id: Optional[int], opportunities: list[ArbitrageOpportunity]) -> int:
        with self._cursor("Recording opportunities") as cursor:
            for opp in opportunities:
                detected_at = _format_ts(opp.timestamp)
                # analyzed/executed are never overwritten by a re-detection
                cursor.execute(
                    """
                    INSERT INTO opportunity (
                        scan_cycle_id, route_key, pair, comparison_type,
                        buy_venue, buy_price, sell_venue, sell_price,
                        gross_gap_percent, trading_fee, slippage, gas_estimate,
                        net_profit, liquidity, first_seen_at, detected_at,
                        analyzed, executed
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(route_key) DO UPDATE SET
                        scan_cycle_id = excluded.scan_cycle_id,
                        buy_price = excluded.buy_price,
                        sell_price = excluded.sell_price,
                        gross_gap_percent = excluded.gross_gap_percent,
                        trading_fee = excluded.trading_fee,
                        slippage = excluded.slippage,
                        gas_estimate = excluded.gas_estimate,
                        net_profit = excluded.net_profit,
                        liquidity = excluded.liquidity,
                        detected_at = excluded.detected_at
                    """,
                    (
                        scan_cycle_id,
                        opp.route_key,
                        opp.pair,
                        opp.comparison_type.value,
                        opp.buy_venue,
                        opp.buy_price,
                        opp.sell_venue,
                        opp.sell_price,
                        opp.gross_gap_percent,
                        opp.fees.trading_fee,
                        opp.fees.slippage,
                        opp.fees.gas_estimate,
                        opp.net_profit,
                        opp.liquidity,
                        detected_at,
                        detected_at,
                        1 if opp.analyzed else 0,
                        1 if opp.executed else 0,
                    ),
                )
        return len(opportunities)

    async def fetch_recent_opportunities(self, limit: int = 20, pair: Optional[str] = None) -> list[OpportunityRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._fetch_recent_opportunities_sync,
            limit,
            pair.upper() if pair else None,
        )

    def _fetch_recent_opportunities_sync(self, limit: int, pair: Optional[str]) -> list[OpportunityRecord]:
        with self._cursor("Reading opportunities") as cursor:
            cursor.execute(
                """
                SELECT * FROM opportunity
                WHERE (? IS NULL OR pair = ?)
                ORDER BY detected_at DESC, net_profit DESC
                LIMIT ?
                """,
                (pair, pair, limit),
            )
            rows = cursor.fetchall()
        return [
            OpportunityRecord(
                id=row["id"],
                scan_cycle_id=row["scan_cycle_id"],
                route_key=row["route_key"],
                pair=row["pair"],
                comparison_type=row["comparison_type"],
                buy_venue=row["buy_venue"],
                buy_price=row["buy_price"],
                sell_venue=row["sell_venue"],
                sell_price=row["sell_price"],
                gross_gap_percent=row["gross_gap_percent"],
                trading_fee=row["trading_fee"],
                slippage=row["slippage"],
                gas_estimate=row["gas_estimate"],
                net_profit=row["net_profit"],
                liquidity=row["liquidity"],
                first_seen_at=_parse_ts(row["first_seen_at"]),
                detected_at=_parse_ts(row["detected_at"]),
                analyzed=bool(row["analyzed"]),
                executed=bool(row["executed"]),
            )
            for row in rows
        ]

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._connection.commit()
            self._connection.close()


__all__ = ["SQLiteRepository", "ScanCycleRecord", "PairSnapshotRecord", "MarketPriceRecord", "OpportunityRecord"]
