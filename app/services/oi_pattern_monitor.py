"""
OI Pattern Monitor

Slow sweep that keeps a sliding window of open-interest interpretations
per open trade and raises sticky exit flags for the position monitor:

- LONG_UNWINDING (danger) on 3 of 5 readings: oi_exit_flag, close
  everything at the next target hit
- SHORT_BUILDUP (urgent) on 3 of 5 readings: oi_immediate_exit, close
  on the next monitor cycle
"""

import asyncio
from typing import Any, Dict, Optional

from app.config.settings import Settings, get_settings
from app.domain.models.target_set import OIReading, TargetSet
from app.integrations.market_data.market_data_reader import MarketDataReader
from app.repositories.trade_store import TradeStore
from app.scheduling.clock import Clock, SystemClock
from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)

DANGER_SIGNAL = "LONG_UNWINDING"
URGENT_SIGNAL = "SHORT_BUILDUP"
NEUTRAL_SIGNAL = "NEUTRAL"


def count_signal(target_set: TargetSet, signal: str, min_confidence: float) -> int:
    """Readings in the window matching signal with confidence above min_confidence."""
    return sum(
        1 for reading in target_set.oi_readings
        if reading.interpretation == signal and reading.confidence > min_confidence
    )


def evaluate_window(target_set: TargetSet, settings: Settings) -> bool:
    """
    Raise exit flags from a full window.

    Flags are only ever set, never cleared.

    Returns:
        True if a flag was newly raised
    """
    window = settings.OI_WINDOW_SIZE
    if len(target_set.oi_readings) < window:
        return False

    raised = False
    danger = count_signal(target_set, DANGER_SIGNAL, settings.OI_SIGNAL_CONFIDENCE)
    urgent = count_signal(target_set, URGENT_SIGNAL, settings.OI_SIGNAL_CONFIDENCE)

    if danger >= settings.OI_TRIGGER_COUNT and not target_set.oi_exit_flag:
        target_set.oi_exit_flag = True
        target_set.oi_pattern = f"{DANGER_SIGNAL} {danger}/{window}"
        raised = True

    if urgent >= settings.OI_TRIGGER_COUNT and not target_set.oi_immediate_exit:
        target_set.oi_immediate_exit = True
        target_set.oi_pattern = f"{URGENT_SIGNAL} {urgent}/{window}"
        raised = True

    return raised


class OIPatternMonitor:
    """
    OI Pattern Monitor Service

    Usage:
        oi_monitor = OIPatternMonitor(store, reader)
        results = await oi_monitor.run_cycle()
    """

    def __init__(
        self,
        store: TradeStore,
        reader: MarketDataReader,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None
    ):
        self.store = store
        self.reader = reader
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    async def run_cycle(self) -> Dict[str, Any]:
        """
        Sample OI for every open trade once.

        Returns:
            Dict with sweep results
        """
        try:
            scrip_codes = await self.store.list_scrip_codes()
        except Exception as e:
            logger.error(f"{TRADE_LOG_PREFIX} OI cycle could not list trades: {str(e)}")
            return {"success": False, "error": str(e)}

        semaphore = asyncio.Semaphore(self.settings.MONITOR_CONCURRENCY)
        outcomes = await asyncio.gather(*(self._guarded(code, semaphore) for code in scrip_codes))

        return {
            "success": True,
            "total": len(scrip_codes),
            "recorded": outcomes.count("recorded") + outcomes.count("flagged"),
            "flagged": outcomes.count("flagged"),
            "busy": outcomes.count("busy"),
            "errors": outcomes.count("error"),
        }

    async def _guarded(self, scrip_code: str, semaphore: asyncio.Semaphore) -> str:
        async with semaphore:
            try:
                async with self.store.instrument_lock(scrip_code) as acquired:
                    if not acquired:
                        return "busy"
                    target_set = await self.store.get_target_set(scrip_code)
                    if target_set is None:
                        return "gone"
                    return await self.check_target_set(target_set)
            except Exception as e:
                logger.error(f"{TRADE_LOG_PREFIX} OI check failed for {scrip_code}: {str(e)}")
                return "error"

    async def check_target_set(self, target_set: TargetSet) -> str:
        """
        Record the latest OI reading for one trade.

        Caller holds the instrument lock.

        Returns:
            grace, skipped, recorded or flagged
        """
        now = self.clock.now()
        if target_set.in_grace_period(now, self.settings.GRACE_PERIOD_SECONDS):
            return "grace"

        metrics = await self.reader.get_oi_metrics(target_set.scrip_code)
        if (
            metrics is None
            or metrics.confidence < self.settings.OI_MIN_CONFIDENCE
            or metrics.interpretation == NEUTRAL_SIGNAL
        ):
            return "skipped"

        target_set.add_oi_reading(
            OIReading(
                timestamp=now,
                interpretation=metrics.interpretation,
                change_percent=metrics.change_percent,
                confidence=metrics.confidence,
            ),
            self.settings.OI_WINDOW_SIZE,
        )

        flagged = evaluate_window(target_set, self.settings)
        if flagged:
            logger.warning(
                f"{TRADE_LOG_PREFIX} OI pattern for {target_set.scrip_code}: {target_set.oi_pattern} "
                f"(exit_all={target_set.oi_exit_flag} immediate={target_set.oi_immediate_exit})"
            )

        await self.store.save_target_set(target_set)
        return "flagged" if flagged else "recorded"
