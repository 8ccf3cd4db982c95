"""
Trade Manager

On-demand operations on strategy trades: manual close and the active
trade listing used by the dashboard.
"""

from typing import Any, Dict, List, Optional

from app.integrations.market_data.market_data_reader import MarketDataReader
from app.repositories.trade_store import TradeStore
from app.scheduling.clock import Clock, SystemClock
from app.services.exit_executor import ExitExecutor
from app.shared.exceptions import InstrumentBusyError, TradeNotFoundError
from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)

MANUAL_CLOSE_REASON = "MANUAL_CLOSE"

# How long a manual close waits for a monitor step on the same instrument
CLOSE_LOCK_WAIT_SECONDS = 2.0


class TradeManager:
    """
    Trade Manager Service

    Usage:
        manager = TradeManager(store, reader, executor)
        result = await manager.close_trade("52431")
        trades = await manager.get_active_trades()
    """

    def __init__(
        self,
        store: TradeStore,
        reader: MarketDataReader,
        executor: ExitExecutor,
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.reader = reader
        self.executor = executor
        self.clock = clock or SystemClock()

    async def close_trade(self, scrip_code: str) -> Dict[str, Any]:
        """
        Close an active trade at the live price (entry price if none).

        Args:
            scrip_code: Instrument code

        Returns:
            Dict with exit_price, quantity and pnl

        Raises:
            TradeNotFoundError: No active trade for the instrument
            InstrumentBusyError: The instrument lock could not be taken
        """
        async with self.store.instrument_lock(scrip_code, wait_seconds=CLOSE_LOCK_WAIT_SECONDS) as acquired:
            if not acquired:
                raise InstrumentBusyError(scrip_code)

            target_set = await self.store.get_target_set(scrip_code)
            if target_set is None:
                raise TradeNotFoundError(scrip_code)

            ltp = await self.reader.get_ltp(scrip_code, target_set.exchange)
            exit_price = ltp if ltp is not None else target_set.entry_price
            position = await self.store.get_position(scrip_code)

            result = await self.executor.exit_all(
                target_set, position, exit_price, MANUAL_CLOSE_REASON, self.clock.now()
            )

        logger.info(f"{TRADE_LOG_PREFIX} Manual close of {scrip_code}: {result}")
        return {
            "success": True,
            "scrip_code": scrip_code,
            **result,
        }

    async def get_active_trades(self) -> List[Dict[str, Any]]:
        """
        List open trades with their live display fields.

        Returns:
            Target set dicts merged with the Position's current_price,
            unrealized_pnl and status
        """
        trades = []
        for target_set in await self.store.list_target_sets():
            trade = target_set.model_dump(mode="json")
            position = await self.store.get_position(target_set.scrip_code)
            if position is not None:
                trade["current_price"] = position.current_price
                trade["unrealized_pnl"] = position.unrealized_pnl
                trade["status"] = position.status
            trades.append(trade)
        return trades
