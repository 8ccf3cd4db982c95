"""
Outcome Publisher

Fire-and-forget sinks for trade events:
- terminal trade outcomes appended to a Redis stream
- live Position updates published on a Redis channel for dashboards
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import redis.asyncio as redis

from app.config.settings import get_settings
from app.domain.models.position import Position, is_stop_reason
from app.domain.models.target_set import TargetSet
from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)


def build_outcome(
    target_set: TargetSet,
    exit_price: float,
    exit_reason: str,
    exit_time: datetime,
    tz: ZoneInfo
) -> Dict[str, Any]:
    """
    Build the terminal outcome record of a fully closed trade.

    P&L and quantity cover the whole trade, not the last tranche.
    """
    pnl = round(target_set.realized_pnl, 2)
    hits = target_set.hit_flags()
    return {
        "signal_id": target_set.trade_id,
        "scrip_code": target_set.scrip_code,
        "company_name": target_set.instrument_symbol,
        "entry_price": target_set.entry_price,
        "exit_price": exit_price,
        "quantity": target_set.total_qty,
        "pnl": pnl,
        "is_win": pnl > 0,
        "exit_reason": exit_reason,
        "side": "BUY",
        "direction": target_set.direction,
        "entry_time": target_set.opened_at.astimezone(tz).isoformat(),
        "exit_time": exit_time.astimezone(tz).isoformat(),
        "target1_hit": hits["T1"],
        "target2_hit": hits["T2"],
        "target3_hit": hits["T3"],
        "target4_hit": hits["T4"],
        "stop_hit": is_stop_reason(exit_reason),
        "strategy": target_set.strategy,
        "wallet_type": "PAPER",
    }


class OutcomePublisher:
    """
    Publishes trade outcomes and position updates.

    Errors are logged and never propagate to the trading path.

    Usage:
        publisher = OutcomePublisher(redis_client)
        await publisher.publish_outcome(target_set, exit_price=89.0, exit_reason="SL-OP", exit_time=now)
        await publisher.broadcast_position(position)
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        stream: Optional[str] = None,
        channel: Optional[str] = None,
        maxlen: Optional[int] = None,
        timezone_name: Optional[str] = None
    ):
        settings = get_settings()
        self.redis = redis_client
        self.stream = stream or settings.TRADE_OUTCOMES_STREAM
        self.channel = channel or settings.POSITION_UPDATES_CHANNEL
        self.maxlen = maxlen or settings.TRADE_OUTCOMES_MAXLEN
        self.tz = ZoneInfo(timezone_name or settings.EOD_TIMEZONE)

    async def publish_outcome(
        self,
        target_set: TargetSet,
        exit_price: float,
        exit_reason: str,
        exit_time: datetime
    ) -> bool:
        """Append the terminal outcome of a closed trade to the outcome stream."""
        outcome = build_outcome(target_set, exit_price, exit_reason, exit_time, self.tz)
        try:
            await self.redis.xadd(
                self.stream,
                {"payload": json.dumps(outcome)},
                maxlen=self.maxlen,
                approximate=True,
            )
            logger.info(
                f"{TRADE_LOG_PREFIX} Published outcome for {target_set.scrip_code}: "
                f"{exit_reason} pnl={outcome['pnl']:.2f} win={outcome['is_win']}"
            )
            return True
        except redis.RedisError as e:
            logger.error(f"{TRADE_LOG_PREFIX} Failed to publish outcome for {target_set.scrip_code}: {e}")
            return False

    async def broadcast_position(self, position: Position) -> bool:
        """Publish the current Position record for live dashboards."""
        try:
            await self.redis.publish(self.channel, position.to_json())
            return True
        except redis.RedisError as e:
            logger.warning(f"Failed to broadcast position {position.scrip_code}: {e}")
            return False
