"""
Position Monitor Tests

Exit decisions against live prices: grace period, drawdown, dual stop
loss, OI exits, partial target exits and trailing stops.
"""

import json

import pytest
import redis.asyncio as redis

from app.domain.models.target_set import TargetLevel, TargetSet
from app.services.position_monitor import exit_trigger, target_hit_source, trailing_stop_level


SCRIP = "52431"
UNDERLYING = "999920000"


# ==================== FIXTURES ====================

@pytest.fixture
def open_trade(services, make_request, clock):
    """Open the default trade and step past the grace period."""
    async def _open(**overrides):
        result = await services.opener.open_trade(make_request(**overrides))
        clock.advance(seconds=31)
        return result
    return _open


@pytest.fixture
def target_set():
    return TargetSet(
        trade_id="ST-52431-test",
        scrip_code=SCRIP,
        total_qty=75,
        remaining_qty=75,
        lot_size=25,
        entry_price=100.0,
        sl=90.0,
        current_sl=90.0,
        high_five_min=100.0,
        targets=[
            TargetLevel(level="T1", price=110.0, close_qty=25),
            TargetLevel(level="T2", price=120.0, close_qty=25),
            TargetLevel(level="T3", price=130.0, close_qty=25),
            TargetLevel(level="T4", price=140.0, close_qty=0),
        ],
    )


# ==================== DECISION FUNCTIONS ====================

def test_exit_trigger_none_between_levels(target_set):
    assert exit_trigger(target_set, 105.0, None, 0.01) is None


def test_exit_trigger_drawdown_beats_stop(target_set):
    assert exit_trigger(target_set, 1.0, None, 0.01) == "1% DD"


def test_exit_trigger_derivative_stop(target_set):
    assert exit_trigger(target_set, 90.0, None, 0.01) == "SL-OP"


def test_exit_trigger_underlying_stop(target_set):
    target_set.underlying.sl = 24400.0
    assert exit_trigger(target_set, 95.0, 24400.0, 0.01) == "SL-EQ"
    assert exit_trigger(target_set, 95.0, 24401.0, 0.01) is None


def test_exit_trigger_ignores_missing_underlying_price(target_set):
    target_set.underlying.sl = 24400.0
    assert exit_trigger(target_set, 95.0, None, 0.01) is None


def test_exit_trigger_oi_immediate(target_set):
    target_set.oi_immediate_exit = True
    target_set.oi_pattern = "SHORT_BUILDUP 3/5"
    assert exit_trigger(target_set, 105.0, None, 0.01) == "OI_EXIT(SHORT_BUILDUP 3/5)"


def test_target_hit_source_prefers_derivative(target_set):
    target_set.underlying.t1 = 24550.0
    assert target_hit_source(target_set, target_set.targets[0], 110.0, 24600.0) == "T1-OP"
    assert target_hit_source(target_set, target_set.targets[0], 105.0, 24600.0) == "T1-EQ"
    assert target_hit_source(target_set, target_set.targets[0], 105.0, 24500.0) is None


def test_trailing_stop_level_uses_highest_confirmed_target(target_set):
    target_set.targets[0].hit = True
    target_set.targets[1].hit = True

    assert trailing_stop_level(target_set, 125.0, 1.0) == 120.0
    # T2 not confirmed (needs 121.2), T1 is
    assert trailing_stop_level(target_set, 121.0, 1.0) == 110.0
    assert trailing_stop_level(target_set, 110.5, 1.0) is None


def test_trailing_stop_confirms_at_exact_buffer(target_set):
    target_set.targets[0].hit = True

    assert trailing_stop_level(target_set, 111.1, 1.0) == 110.0
    assert trailing_stop_level(target_set, 111.09, 1.0) is None


# ==================== MONITOR CYCLE ====================

@pytest.mark.asyncio
async def test_partial_exit_then_stop_loss(services, open_trade, set_price, clock, fake_redis):
    await open_trade()

    set_price(SCRIP, 111.0)
    results = await services.monitor.run_cycle()
    assert results == {"success": True, "total": 1, "exited": 0, "busy": 0, "errors": 0}

    target_set = await services.store.get_target_set(SCRIP)
    assert target_set.remaining_qty == 50
    assert target_set.targets[0].hit is True
    assert target_set.targets[0].hit_source == "T1-OP"
    assert target_set.current_sl == 90.0
    assert target_set.realized_pnl == 275.0

    position = await services.store.get_position(SCRIP)
    assert position.status == "PARTIAL_EXIT"
    assert position.t1_hit is True
    assert position.qty_open == 50

    clock.advance(seconds=2)
    set_price(SCRIP, 89.0)
    results = await services.monitor.run_cycle()
    assert results["exited"] == 1

    assert await services.store.get_target_set(SCRIP) is None
    position = await services.store.get_position(SCRIP)
    assert position.status == "CLOSED"
    assert position.qty_open == 0
    assert position.exit_reason == "SL-OP"
    assert position.sl_hit is True
    assert position.realized_pnl == -275.0
    assert [entry.level for entry in position.exit_history] == ["T1", "EXIT"]

    outcomes = fake_redis.outcomes()
    assert len(outcomes) == 1
    outcome = outcomes[0]
    assert outcome["quantity"] == 75
    assert outcome["pnl"] == -275.0
    assert outcome["is_win"] is False
    assert outcome["exit_reason"] == "SL-OP"
    assert outcome["exit_price"] == 89.0
    assert outcome["target1_hit"] is True
    assert outcome["target2_hit"] is False
    assert outcome["stop_hit"] is True
    assert outcome["strategy"] == "FUDKII"


@pytest.mark.asyncio
async def test_trailing_stop_after_second_target(services, open_trade, set_price, clock, fake_redis):
    await open_trade()

    set_price(SCRIP, 111.0)
    await services.monitor.run_cycle()

    clock.advance(seconds=2)
    set_price(SCRIP, 125.0)
    await services.monitor.run_cycle()

    target_set = await services.store.get_target_set(SCRIP)
    assert target_set.remaining_qty == 25
    assert target_set.current_sl == 120.0
    position = await services.store.get_position(SCRIP)
    assert position.sl == 120.0
    assert position.trailing_type == "TARGET_TRAIL"

    clock.advance(seconds=2)
    set_price(SCRIP, 119.0)
    await services.monitor.run_cycle()

    assert await services.store.get_target_set(SCRIP) is None
    outcome = fake_redis.outcomes()[0]
    assert outcome["exit_reason"] == "SL-OP"
    assert outcome["pnl"] == 1375.0
    assert outcome["is_win"] is True
    assert outcome["target2_hit"] is True


@pytest.mark.asyncio
async def test_trailing_stop_never_lowers(services, open_trade, set_price):
    await open_trade()
    target_set = await services.store.get_target_set(SCRIP)
    target_set.current_sl = 111.0
    await services.store.save_target_set(target_set)

    # T1 hits and is confirmed, but 110 is below the current stop
    set_price(SCRIP, 112.5)
    await services.monitor.run_cycle()

    target_set = await services.store.get_target_set(SCRIP)
    assert target_set.targets[0].hit is True
    assert target_set.current_sl == 111.0


@pytest.mark.asyncio
async def test_two_targets_in_one_cycle_trail_to_second(services, open_trade, set_price):
    await open_trade()

    set_price(SCRIP, 125.0)
    await services.monitor.run_cycle()

    target_set = await services.store.get_target_set(SCRIP)
    assert target_set.remaining_qty == 25
    assert target_set.current_sl == 120.0


@pytest.mark.asyncio
async def test_several_targets_in_one_cycle_close_trade(services, open_trade, set_price, fake_redis):
    await open_trade()

    set_price(SCRIP, 131.0)
    results = await services.monitor.run_cycle()

    assert results["exited"] == 1
    assert await services.store.get_target_set(SCRIP) is None

    outcome = fake_redis.outcomes()[0]
    assert outcome["exit_reason"] == "T3-OP"
    assert outcome["pnl"] == 2325.0
    assert outcome["stop_hit"] is False
    assert [outcome[f"target{i}_hit"] for i in range(1, 5)] == [True, True, True, False]


@pytest.mark.asyncio
async def test_drawdown_exit(services, open_trade, set_price, fake_redis):
    await open_trade()

    set_price(SCRIP, 1.0)
    await services.monitor.run_cycle()

    position = await services.store.get_position(SCRIP)
    assert position.exit_reason == "1% DD"
    assert fake_redis.outcomes()[0]["stop_hit"] is True


@pytest.mark.asyncio
async def test_underlying_stop_exit(services, open_trade, set_price, fake_redis):
    await open_trade(underlying_scrip_code=UNDERLYING, equity_sl=24400.0)

    set_price(SCRIP, 95.0)
    set_price(UNDERLYING, 24390.0)
    await services.monitor.run_cycle()

    position = await services.store.get_position(SCRIP)
    assert position.exit_reason == "SL-EQ"
    assert position.underlying_ltp == 24390.0
    assert fake_redis.outcomes()[0]["exit_reason"] == "SL-EQ"


@pytest.mark.asyncio
async def test_underlying_target_hit(services, open_trade, set_price):
    await open_trade(underlying_scrip_code=UNDERLYING, equity_t1=24550.0, equity_t2=24600.0)

    set_price(SCRIP, 105.0)
    set_price(UNDERLYING, 24560.0)
    await services.monitor.run_cycle()

    target_set = await services.store.get_target_set(SCRIP)
    assert target_set.targets[0].hit_source == "T1-EQ"
    assert target_set.targets[1].hit is False
    assert target_set.remaining_qty == 50


@pytest.mark.asyncio
async def test_underlying_target_matched_by_label_when_ladder_has_gap(services, open_trade, set_price):
    await open_trade(underlying_scrip_code=UNDERLYING, t1=0.0, equity_t1=24550.0, equity_t2=24700.0)

    target_set = await services.store.get_target_set(SCRIP)
    assert [target.level for target in target_set.targets] == ["T2", "T3", "T4"]

    # Above underlying T1 but below underlying T2
    set_price(SCRIP, 105.0)
    set_price(UNDERLYING, 24560.0)
    await services.monitor.run_cycle()

    target_set = await services.store.get_target_set(SCRIP)
    assert [target.hit for target in target_set.targets] == [False, False, False]
    assert target_set.remaining_qty == 75

    set_price(UNDERLYING, 24710.0)
    await services.monitor.run_cycle()

    target_set = await services.store.get_target_set(SCRIP)
    assert target_set.targets[0].hit_source == "T2-EQ"
    assert target_set.targets[1].hit is False
    assert target_set.remaining_qty == 50


@pytest.mark.asyncio
async def test_oi_immediate_exit(services, open_trade, set_price, fake_redis):
    await open_trade()
    target_set = await services.store.get_target_set(SCRIP)
    target_set.oi_immediate_exit = True
    target_set.oi_pattern = "SHORT_BUILDUP 3/5"
    await services.store.save_target_set(target_set)

    set_price(SCRIP, 105.0)
    await services.monitor.run_cycle()

    assert fake_redis.outcomes()[0]["exit_reason"] == "OI_EXIT(SHORT_BUILDUP 3/5)"


@pytest.mark.asyncio
async def test_oi_exit_flag_closes_everything_at_target(services, open_trade, set_price, fake_redis):
    await open_trade()
    target_set = await services.store.get_target_set(SCRIP)
    target_set.oi_exit_flag = True
    target_set.oi_pattern = "LONG_UNWINDING 3/5"
    await services.store.save_target_set(target_set)

    set_price(SCRIP, 111.0)
    results = await services.monitor.run_cycle()

    assert results["exited"] == 1
    outcome = fake_redis.outcomes()[0]
    assert outcome["exit_reason"] == "T1-OP ALL(LONG_UNWINDING 3/5)"
    assert outcome["pnl"] == 825.0

    position = await services.store.get_position(SCRIP)
    assert position.exit_history[0].qty == 75
    assert position.status == "CLOSED"


@pytest.mark.asyncio
async def test_grace_period_suppresses_exits(services, make_request, set_price, clock, fake_redis):
    await services.opener.open_trade(make_request())
    clock.advance(seconds=10)

    set_price(SCRIP, 80.0)
    target_set = await services.store.get_target_set(SCRIP)
    action = await services.monitor.monitor_target_set(target_set)

    assert action == "grace"
    assert await services.store.get_target_set(SCRIP) is not None
    position = await services.store.get_position(SCRIP)
    assert position.current_price == 80.0
    assert position.unrealized_pnl == -1500.0
    assert fake_redis.outcomes() == []


@pytest.mark.asyncio
async def test_missing_price_leaves_trade_untouched(services, open_trade):
    await open_trade()

    target_set = await services.store.get_target_set(SCRIP)
    assert await services.monitor.monitor_target_set(target_set) == "no_price"


@pytest.mark.asyncio
async def test_rolling_high_tracks_price(services, open_trade, set_price):
    await open_trade()

    set_price(SCRIP, 108.0)
    await services.monitor.run_cycle()

    target_set = await services.store.get_target_set(SCRIP)
    assert target_set.high_five_min == 108.0
    position = await services.store.get_position(SCRIP)
    assert position.unrealized_pnl == 600.0


@pytest.mark.asyncio
async def test_busy_instrument_is_skipped(services, open_trade, set_price, fake_redis):
    await open_trade()
    fake_redis.data["strategy:lock:52431"] = "someone-else"

    set_price(SCRIP, 89.0)
    results = await services.monitor.run_cycle()

    assert results["busy"] == 1
    assert results["exited"] == 0
    assert await services.store.get_target_set(SCRIP) is not None


@pytest.mark.asyncio
async def test_one_failing_instrument_does_not_abort_cycle(services, open_trade, make_request, set_price, monkeypatch):
    await open_trade()
    await services.opener.open_trade(make_request(scrip_code="52432", instrument_symbol="NIFTY 24600 CE"))

    original_get_ltp = services.reader.get_ltp

    async def flaky_get_ltp(scrip_code, exchange="N"):
        if scrip_code == "52432":
            raise redis.ConnectionError("timeout")
        return await original_get_ltp(scrip_code, exchange)

    monkeypatch.setattr(services.reader, "get_ltp", flaky_get_ltp)
    set_price(SCRIP, 89.0)

    results = await services.monitor.run_cycle()

    assert results["total"] == 2
    assert results["exited"] == 1
    assert results["errors"] == 1
    assert await services.store.get_target_set("52432") is not None


@pytest.mark.asyncio
async def test_cycle_reports_store_failure(services, fake_redis):
    fake_redis.fail_commands = {"scan"}

    results = await services.monitor.run_cycle()

    assert results["success"] is False


@pytest.mark.asyncio
async def test_failed_close_write_keeps_trade_for_next_cycle(services, open_trade, set_price, fake_redis):
    await open_trade()
    set_price(SCRIP, 89.0)
    fake_redis.fail_commands = {"execute"}

    results = await services.monitor.run_cycle()

    assert results["errors"] == 1
    assert await services.store.get_target_set(SCRIP) is not None
    assert (await services.store.get_position(SCRIP)).status == "ACTIVE"
    assert fake_redis.outcomes() == []

    fake_redis.fail_commands = set()
    results = await services.monitor.run_cycle()

    assert results["exited"] == 1
    assert await services.store.get_target_set(SCRIP) is None
    position = await services.store.get_position(SCRIP)
    assert position.status == "CLOSED"
    assert position.exit_reason == "SL-OP"
    assert len(fake_redis.outcomes()) == 1


@pytest.mark.asyncio
async def test_position_updates_are_broadcast(services, open_trade, set_price, fake_redis):
    await open_trade()

    set_price(SCRIP, 111.0)
    await services.monitor.run_cycle()

    channel, message = fake_redis.published[-1]
    assert channel == "positions"
    assert json.loads(message)["t1_hit"] is True
