"""
Position Monitor

Periodic sweep over every open strategy trade. Per instrument, in
priority order (first trigger wins):

    grace period -> 1% drawdown -> dual stop loss -> OI immediate exit
    -> dual targets T1..T4 (partial exits) -> trailing stop

"Dual" checks compare both the derivative LTP and the underlying LTP
against their own levels; whichever leg breaches first decides, and the
exit reason records the leg (-OP derivative, -EQ underlying).
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from app.config.settings import Settings, get_settings
from app.domain.models.position import Position
from app.domain.models.target_set import TargetLevel, TargetSet
from app.integrations.market_data.market_data_reader import MarketDataReader, underlying_exchange
from app.repositories.trade_store import TradeStore
from app.scheduling.clock import Clock, SystemClock
from app.services.exit_executor import ExitExecutor
from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)


def exit_trigger(
    target_set: TargetSet,
    ltp: float,
    underlying_ltp: Optional[float],
    drawdown_fraction: float
) -> Optional[str]:
    """
    Full-exit reason for the current prices, or None.

    Priority: drawdown, derivative stop, underlying stop, OI immediate exit.
    """
    high = target_set.high_five_min
    if high > 0 and ltp <= high * drawdown_fraction:
        return "1% DD"

    if ltp <= target_set.current_sl:
        return "SL-OP"

    underlying_sl = target_set.underlying.sl
    if underlying_ltp is not None and underlying_ltp > 0 and underlying_sl > 0 and underlying_ltp <= underlying_sl:
        return "SL-EQ"

    if target_set.oi_immediate_exit:
        return f"OI_EXIT({target_set.oi_pattern or 'OI_URGENT'})"

    return None


def target_hit_source(
    target_set: TargetSet,
    target: TargetLevel,
    ltp: float,
    underlying_ltp: Optional[float]
) -> Optional[str]:
    """
    Hit source ("T1-OP" / "T1-EQ") of a target, or None.

    The underlying leg is compared with the underlying level of the same
    label (T2 against underlying t2), not the same ladder position.
    """
    if ltp >= target.price:
        return f"{target.level}-OP"

    underlying_target = target_set.underlying.target(target.level)
    if underlying_ltp is not None and underlying_ltp > 0 and underlying_target > 0 and underlying_ltp >= underlying_target:
        return f"{target.level}-EQ"

    return None


def trailing_stop_level(target_set: TargetSet, ltp: float, confirmation_percent: float) -> Optional[float]:
    """
    Highest hit target confirmed by price, or None.

    A hit target is confirmed once LTP trades at least
    confirmation_percent above it.
    """
    for target in reversed(target_set.targets):
        if target.hit and ltp >= target.price * (1 + confirmation_percent / 100):
            return target.price
    return None


class PositionMonitor:
    """
    Position Monitor Service

    Usage:
        monitor = PositionMonitor(store, reader, executor)
        results = await monitor.run_cycle()
    """

    def __init__(
        self,
        store: TradeStore,
        reader: MarketDataReader,
        executor: ExitExecutor,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None
    ):
        self.store = store
        self.reader = reader
        self.executor = executor
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    async def run_cycle(self) -> Dict[str, Any]:
        """
        Monitor all open trades once.

        Instruments are processed concurrently; a failure on one
        instrument is logged and never aborts the sweep.

        Returns:
            Dict with monitoring results
        """
        try:
            scrip_codes = await self.store.list_scrip_codes()
        except Exception as e:
            logger.error(f"{TRADE_LOG_PREFIX} Monitor cycle could not list trades: {str(e)}")
            return {"success": False, "error": str(e)}

        semaphore = asyncio.Semaphore(self.settings.MONITOR_CONCURRENCY)
        outcomes = await asyncio.gather(*(self._guarded(code, semaphore) for code in scrip_codes))

        results = {
            "success": True,
            "total": len(scrip_codes),
            "exited": outcomes.count("exited"),
            "busy": outcomes.count("busy"),
            "errors": outcomes.count("error"),
        }
        if results["exited"] or results["errors"]:
            logger.info(f"{TRADE_LOG_PREFIX} Monitor cycle: {results}")
        return results

    async def _guarded(self, scrip_code: str, semaphore: asyncio.Semaphore) -> str:
        async with semaphore:
            try:
                async with self.store.instrument_lock(scrip_code) as acquired:
                    if not acquired:
                        logger.debug(f"Skipping {scrip_code}: instrument busy")
                        return "busy"
                    target_set = await self.store.get_target_set(scrip_code)
                    if target_set is None:
                        return "gone"
                    return await self.monitor_target_set(target_set)
            except Exception as e:
                logger.error(f"{TRADE_LOG_PREFIX} Error monitoring {scrip_code}: {str(e)}")
                return "error"

    async def monitor_target_set(self, target_set: TargetSet) -> str:
        """
        Evaluate one trade against live prices and apply the result.

        Caller holds the instrument lock.

        Returns:
            Action taken: grace, no_price, exited, target_hit or updated
        """
        now = self.clock.now()
        scrip_code = target_set.scrip_code
        position = await self.store.get_position(scrip_code)
        ltp = await self.reader.get_ltp(scrip_code, target_set.exchange)

        if target_set.in_grace_period(now, self.settings.GRACE_PERIOD_SECONDS):
            if ltp is not None and position is not None:
                underlying_ltp = await self._underlying_ltp(target_set)
                position.mark_price(ltp, underlying_ltp, target_set.remaining_qty, now)
                await self.executor.persist_position(position)
            return "grace"

        if ltp is None:
            return "no_price"

        underlying_ltp = await self._underlying_ltp(target_set)
        if position is not None:
            position.mark_price(ltp, underlying_ltp, target_set.remaining_qty, now)

        target_set.update_rolling_high(ltp, now, self.settings.DRAWDOWN_WINDOW_SECONDS)

        reason = exit_trigger(target_set, ltp, underlying_ltp, self.settings.DRAWDOWN_EXIT_FRACTION)
        if reason:
            logger.info(
                f"{TRADE_LOG_PREFIX} {reason} for {scrip_code} ltp={ltp:.2f} "
                f"underlying={underlying_ltp} sl={target_set.current_sl:.2f} high={target_set.high_five_min:.2f}"
            )
            await self.executor.exit_all(target_set, position, ltp, reason, now)
            return "exited"

        any_hit, last_source = self._apply_targets(target_set, position, ltp, underlying_ltp, now)

        if any_hit:
            self._trail_stop(target_set, position, ltp, now)

        if target_set.remaining_qty <= 0:
            await self.executor.finalize(target_set, position, ltp, last_source, now)
            return "exited"

        await self.executor.persist(target_set, position)
        return "target_hit" if any_hit else "updated"

    def _apply_targets(
        self,
        target_set: TargetSet,
        position: Optional[Position],
        ltp: float,
        underlying_ltp: Optional[float],
        now: datetime
    ) -> Tuple[bool, str]:
        """Execute partial exits for every newly satisfied target."""
        any_hit = False
        last_source = ""

        for target in target_set.targets:
            if target.hit:
                continue

            source = target_hit_source(target_set, target, ltp, underlying_ltp)
            if source is None:
                continue

            target.hit = True
            target.hit_source = source
            target.hit_timestamp = now
            any_hit = True

            close_qty = min(target.close_qty, target_set.remaining_qty)
            if target_set.oi_exit_flag and target_set.remaining_qty > close_qty:
                pattern = target_set.oi_pattern or "OI_DANGER"
                logger.info(
                    f"{TRADE_LOG_PREFIX} OI EXIT ALL at {target.level} for {target_set.scrip_code}: "
                    f"{pattern} remaining={target_set.remaining_qty} (was close_qty={close_qty})"
                )
                close_qty = target_set.remaining_qty
                source = f"{source} ALL({pattern})"

            target_set.remaining_qty -= close_qty
            pnl = (ltp - target_set.entry_price) * close_qty
            target_set.realized_pnl += pnl
            lots = close_qty // target_set.effective_lot_size
            last_source = source

            if position is not None:
                position.record_target_exit(
                    level=target.level,
                    lots=lots,
                    qty=close_qty,
                    price=ltp,
                    pnl=pnl,
                    source=source,
                    remaining_qty=target_set.remaining_qty,
                    now=now,
                )

            logger.info(
                f"{TRADE_LOG_PREFIX} {source} partial exit for {target_set.scrip_code}: "
                f"close_qty={close_qty} ({lots}L) remaining={target_set.remaining_qty} pnl={pnl:.2f}"
            )

            if target_set.remaining_qty <= 0:
                break

        return any_hit, last_source

    def _trail_stop(
        self,
        target_set: TargetSet,
        position: Optional[Position],
        ltp: float,
        now: datetime
    ) -> None:
        new_sl = trailing_stop_level(target_set, ltp, self.settings.TRAILING_CONFIRMATION_PERCENT)
        if new_sl is None or new_sl <= target_set.current_sl:
            return

        logger.info(
            f"{TRADE_LOG_PREFIX} Trailing SL for {target_set.scrip_code} "
            f"{target_set.current_sl:.2f} -> {new_sl:.2f} (ltp={ltp:.2f})"
        )
        target_set.current_sl = new_sl
        if position is not None:
            position.trail_stop(new_sl, now)

    async def _underlying_ltp(self, target_set: TargetSet) -> Optional[float]:
        if not target_set.underlying_scrip_code:
            return None
        return await self.reader.get_ltp(
            target_set.underlying_scrip_code,
            underlying_exchange(target_set.exchange)
        )
