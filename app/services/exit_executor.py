"""
Exit Executor

The single exit path shared by the position monitor, the EOD liquidator
and manual close. Closing the last unit of a trade always goes through
finalize(), which closes the Position and removes the target set
together, then publishes the terminal outcome.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from app.domain.models.position import Position
from app.domain.models.target_set import TargetSet
from app.repositories.trade_store import TradeStore
from app.services.outcome_publisher import OutcomePublisher
from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)


class ExitExecutor:
    """
    Applies exits to a TargetSet/Position pair and persists the result.

    Callers hold the instrument lock.

    Usage:
        executor = ExitExecutor(store, publisher)
        result = await executor.exit_all(target_set, position, ltp, "SL-OP", now)
    """

    def __init__(self, store: TradeStore, publisher: OutcomePublisher):
        self.store = store
        self.publisher = publisher

    async def exit_all(
        self,
        target_set: TargetSet,
        position: Optional[Position],
        exit_price: float,
        reason: str,
        now: datetime
    ) -> Dict[str, Any]:
        """
        Close all remaining quantity at exit_price.

        Args:
            target_set: Target set (mutated)
            position: Position record, if present (mutated)
            exit_price: Exit price
            reason: Exit reason, e.g. "1% DD", "EOD"
            now: Exit timestamp

        Returns:
            Dict with exit_price, quantity and pnl of this exit
        """
        qty = max(target_set.remaining_qty, 0)
        pnl = (exit_price - target_set.entry_price) * qty
        lots = qty // target_set.effective_lot_size

        target_set.remaining_qty = 0
        target_set.realized_pnl += pnl

        if position is not None:
            position.close(exit_price=exit_price, qty=qty, pnl=pnl, reason=reason, lots=lots, now=now)

        logger.info(
            f"{TRADE_LOG_PREFIX} {reason} exit for {target_set.scrip_code}: "
            f"qty={qty} ({lots}L) price={exit_price:.2f} pnl={pnl:.2f}"
        )

        await self.finalize(target_set, position, exit_price, reason, now)

        return {
            "exit_price": exit_price,
            "quantity": qty,
            "pnl": round(pnl, 2),
        }

    async def finalize(
        self,
        target_set: TargetSet,
        position: Optional[Position],
        exit_price: float,
        reason: str,
        now: datetime
    ) -> None:
        """
        Retire a fully exited trade.

        The CLOSED Position and the target set removal are written in one
        transaction; only then are the update broadcast and the terminal
        outcome published. A failed write leaves the stored trade as it
        was, so the next cycle sees it again.

        Raises:
            TradePersistenceError: If the store write fails
        """
        if position is not None:
            position.mark_closed(now)
        else:
            logger.warning(f"{TRADE_LOG_PREFIX} No position record for closed trade {target_set.scrip_code}")

        await self.store.retire_trade(target_set.scrip_code, position)

        if position is not None:
            await self.publisher.broadcast_position(position)
        await self.publisher.publish_outcome(target_set, exit_price, reason, now)
        logger.info(
            f"{TRADE_LOG_PREFIX} Position fully closed: {target_set.scrip_code} "
            f"total pnl={target_set.realized_pnl:.2f}"
        )

    async def persist(self, target_set: TargetSet, position: Optional[Position]) -> None:
        """Save an open trade after a monitoring step."""
        await self.store.save_target_set(target_set)
        if position is not None:
            await self.persist_position(position)

    async def persist_position(self, position: Position) -> None:
        """Save and broadcast a Position."""
        await self.store.save_position(position)
        await self.publisher.broadcast_position(position)
