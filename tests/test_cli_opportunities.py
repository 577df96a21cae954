import sys
from datetime import datetime, timezone

import pytest

import main
from storage.models import OpportunityRecord


class FakeRepository:
    def __init__(self, db_path=None):
        self.db_path = db_path
        self.requested = None

    async def fetch_recent_opportunities(self, *, limit, pair):
        self.requested = (limit, pair)
        detected = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        return [
            OpportunityRecord(
                id=1,
                scan_cycle_id=3,
                route_key='ETH/USDT|CEX-DEX|binance|uniswap_v3@ETHEREUM',
                pair='ETH/USDT',
                comparison_type='CEX-DEX',
                buy_venue='binance',
                buy_price=2000.0,
                sell_venue='uniswap_v3@ETHEREUM',
                sell_price=2100.0,
                gross_gap_percent=5.0,
                trading_fee=0.2,
                slippage=0.5,
                gas_estimate=0.25,
                net_profit=4.05,
                liquidity=140000.0,
                first_seen_at=detected,
                detected_at=detected,
                analyzed=False,
                executed=False,
            )
        ]

    async def close(self):
        pass


@pytest.mark.usefixtures("reset_sys_argv")
def test_show_opportunities_cli_outputs_table(monkeypatch, capsys):
    monkeypatch.setattr(main, "SQLiteRepository", FakeRepository)
    monkeypatch.delenv("BITQUERY_API_KEY", raising=False)

    sys.argv = ["prog", "--show-opportunities", "--opportunity-pair", "eth/usdt", "--opportunity-limit", "5"]
    main.main()

    output = capsys.readouterr().out
    assert "Showing up to 5 stored opportunities (pair=ETH/USDT)" in output
    assert "uniswap_v3@ETHEREUM" in output
    assert "CEX-DEX" in output
    assert "4.05" in output
    assert "140,000" in output


@pytest.fixture
def reset_sys_argv():
    original = sys.argv.copy()
    yield
    sys.argv = original
