"""
EOD Liquidator

Force-closes every open trade of an exchange family shortly before that
exchange's session close.
"""

from typing import Any, Dict, FrozenSet, Optional

from app.config.settings import Settings, get_settings
from app.integrations.market_data.market_data_reader import MarketDataReader
from app.repositories.trade_store import TradeStore
from app.scheduling.clock import Clock, SystemClock
from app.services.exit_executor import ExitExecutor
from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)

EOD_REASON = "EOD"

# Session name -> exchange codes it covers ("" is treated as NSE)
SESSION_EXCHANGES: Dict[str, FrozenSet[str]] = {
    "NSE": frozenset({"N", ""}),
    "CURRENCY": frozenset({"C"}),
    "MCX": frozenset({"M"}),
}


def session_for_exchange(exchange: Optional[str]) -> Optional[str]:
    """Session name an exchange code belongs to."""
    code = exchange or ""
    for session, exchanges in SESSION_EXCHANGES.items():
        if code in exchanges:
            return session
    return None


class EODLiquidator:
    """
    End-of-day liquidation service.

    Usage:
        liquidator = EODLiquidator(store, reader, executor)
        summary = await liquidator.liquidate("MCX")
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

    async def liquidate(self, session: str) -> Dict[str, Any]:
        """
        Exit every open trade of a session's exchanges with reason "EOD".

        Uses the live LTP, falling back to the entry price.

        Args:
            session: NSE, CURRENCY or MCX

        Returns:
            Dict with exited / skipped / errors counts. success is False
            when instruments stayed locked through every attempt, so a
            Celery sweep is retried.
        """
        if session not in SESSION_EXCHANGES:
            logger.error(f"{TRADE_LOG_PREFIX} Unknown EOD session: {session}")
            return {"success": False, "error": f"Unknown session {session}"}

        try:
            scrip_codes = await self.store.list_scrip_codes()
        except Exception as e:
            logger.error(f"{TRADE_LOG_PREFIX} EOD {session} could not list trades: {str(e)}")
            return {"success": False, "error": str(e)}

        summary = {
            "success": True,
            "session": session,
            "exited": 0,
            "skipped": 0,
            "errors": 0,
            "busy": [],
            "details": [],
        }

        pending = scrip_codes
        for attempt in range(1, self.settings.EOD_LOCK_ATTEMPTS + 1):
            busy = []
            for scrip_code in pending:
                outcome = await self._liquidate_one(scrip_code, session, summary)
                if outcome == "busy":
                    busy.append(scrip_code)
            pending = busy
            if not pending:
                break
            logger.warning(
                f"{TRADE_LOG_PREFIX} EOD {session}: {len(pending)} instrument(s) busy "
                f"after attempt {attempt}/{self.settings.EOD_LOCK_ATTEMPTS}: {pending}"
            )

        if pending:
            summary["success"] = False
            summary["busy"] = pending
            summary["errors"] += len(pending)
            summary["error"] = f"Instruments still locked: {', '.join(pending)}"

        logger.info(
            f"{TRADE_LOG_PREFIX} EOD {session} sweep: exited={summary['exited']} "
            f"skipped={summary['skipped']} errors={summary['errors']}"
        )
        return summary

    async def _liquidate_one(self, scrip_code: str, session: str, summary: Dict[str, Any]) -> str:
        """Exit one instrument if it belongs to the session. Returns the outcome."""
        try:
            async with self.store.instrument_lock(
                scrip_code, wait_seconds=self.settings.EOD_LOCK_WAIT_SECONDS
            ) as acquired:
                if not acquired:
                    return "busy"

                target_set = await self.store.get_target_set(scrip_code)
                if target_set is None or session_for_exchange(target_set.exchange) != session:
                    summary["skipped"] += 1
                    return "skipped"

                ltp = await self.reader.get_ltp(scrip_code, target_set.exchange)
                exit_price = ltp if ltp is not None else target_set.entry_price
                position = await self.store.get_position(scrip_code)

                result = await self.executor.exit_all(
                    target_set, position, exit_price, EOD_REASON, self.clock.now()
                )
                summary["exited"] += 1
                summary["details"].append({"scrip_code": scrip_code, **result})
                return "exited"

        except Exception as e:
            logger.error(f"{TRADE_LOG_PREFIX} EOD {session} exit failed for {scrip_code}: {str(e)}")
            summary["errors"] += 1
            return "error"
