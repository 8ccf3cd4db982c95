"""
Outcome Publisher Tests

Outcome record contents and failure isolation of the outbound sinks.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from app.domain.models.position import Position
from app.domain.models.target_set import TargetLevel, TargetSet
from app.services.outcome_publisher import OutcomePublisher, build_outcome


IST = ZoneInfo("Asia/Kolkata")
OPENED = datetime(2026, 3, 2, 4, 30, tzinfo=timezone.utc)
CLOSED = datetime(2026, 3, 2, 9, 55, tzinfo=timezone.utc)


@pytest.fixture
def closed_target_set():
    return TargetSet(
        trade_id="ST-52431-abc",
        scrip_code="52431",
        instrument_symbol="NIFTY 24500 CE",
        strategy="FUDKII",
        total_qty=75,
        remaining_qty=0,
        lot_size=25,
        entry_price=100.0,
        realized_pnl=-274.996,
        opened_at=OPENED,
        targets=[
            TargetLevel(level="T1", price=110.0, close_qty=25, hit=True, hit_source="T1-OP"),
            TargetLevel(level="T2", price=120.0, close_qty=25),
        ],
    )


def test_build_outcome(closed_target_set):
    outcome = build_outcome(closed_target_set, 89.0, "SL-OP", CLOSED, IST)

    assert outcome["signal_id"] == "ST-52431-abc"
    assert outcome["company_name"] == "NIFTY 24500 CE"
    assert outcome["quantity"] == 75
    assert outcome["pnl"] == -275.0
    assert outcome["is_win"] is False
    assert outcome["side"] == "BUY"
    assert outcome["wallet_type"] == "PAPER"
    assert outcome["entry_time"] == "2026-03-02T10:00:00+05:30"
    assert outcome["exit_time"] == "2026-03-02T15:25:00+05:30"
    assert (outcome["target1_hit"], outcome["target2_hit"], outcome["target3_hit"]) == (True, False, False)
    assert outcome["stop_hit"] is True


@pytest.mark.parametrize("reason,stop_hit", [
    ("SL-OP", True),
    ("SL-EQ", True),
    ("1% DD", True),
    ("EOD", False),
    ("T4-OP", False),
    ("OI_EXIT(SHORT_BUILDUP 3/5)", False),
])
def test_stop_hit_by_reason(closed_target_set, reason, stop_hit):
    assert build_outcome(closed_target_set, 89.0, reason, CLOSED, IST)["stop_hit"] is stop_hit


def test_zero_pnl_is_not_a_win(closed_target_set):
    closed_target_set.realized_pnl = 0.0
    assert build_outcome(closed_target_set, 100.0, "EOD", CLOSED, IST)["is_win"] is False


@pytest.mark.asyncio
async def test_publish_outcome_appends_to_stream(fake_redis, closed_target_set):
    publisher = OutcomePublisher(fake_redis, stream="outcomes-test", maxlen=2, timezone_name="Asia/Kolkata")

    for _ in range(3):
        assert await publisher.publish_outcome(closed_target_set, 89.0, "SL-OP", CLOSED) is True

    outcomes = fake_redis.outcomes("outcomes-test")
    assert len(outcomes) == 2
    assert outcomes[0]["scrip_code"] == "52431"


@pytest.mark.asyncio
async def test_publish_outcome_failure_is_swallowed(fake_redis, closed_target_set):
    fake_redis.fail_commands = {"xadd"}
    publisher = OutcomePublisher(fake_redis)

    assert await publisher.publish_outcome(closed_target_set, 89.0, "SL-OP", CLOSED) is False


@pytest.mark.asyncio
async def test_broadcast_position(fake_redis):
    publisher = OutcomePublisher(fake_redis, channel="positions-test")
    position = Position(scrip_code="52431", signal_id="ST-52431-abc", qty_open=75, avg_entry=100.0)

    assert await publisher.broadcast_position(position) is True
    assert fake_redis.published[0][0] == "positions-test"

    fake_redis.fail_commands = {"publish"}
    assert await publisher.broadcast_position(position) is False
