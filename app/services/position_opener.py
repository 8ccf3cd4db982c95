"""
Position Opener

Opens a virtual strategy trade: aligns quantity to lots, computes
confluence targets, persists the Position and its TargetSet, subscribes
the instrument for ticks and OI, then corrects the entry against the
live price.
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

from app.config.settings import Settings, get_settings
from app.domain.models.position import Position, PositionStatus, UnderlyingLevels
from app.domain.models.target_set import TARGET_LABELS, TargetLevel, TargetSet
from app.domain.models.trade_request import StrategyTradeRequest
from app.integrations.market_data.market_data_reader import MarketDataReader
from app.integrations.market_data.tick_subscription import TickSubscriptionClient, exchange_type_for
from app.repositories.trade_store import TradeStore
from app.scheduling.clock import Clock, SystemClock
from app.services.level_aggregator import SmartTargets, compute_smart_targets
from app.services.lot_allocator import allocate_lots
from app.shared.exceptions import TradePersistenceError
from app.core.logger import get_logger, TRADE_LOG_PREFIX

logger = get_logger(__name__)

ENTRY_CORRECTION_LOCK_WAIT_SECONDS = 1.0


def align_quantity(quantity: int, lot_size: int) -> int:
    """Round quantity down to a whole number of lots (at least one lot)."""
    lot_size = max(lot_size, 1)
    return max((quantity // lot_size) * lot_size, lot_size)


def build_target_levels(
    prices: List[float],
    total_qty: int,
    lot_size: int,
    weights: List[int]
) -> List[TargetLevel]:
    """
    Build the target ladder with lot-aligned close quantities.

    Only targets with a positive price are kept; their close quantities
    sum to total_qty.
    """
    lot_size = max(lot_size, 1)
    priced = [(label, price) for label, price in zip(TARGET_LABELS, prices) if price > 0]
    if not priced:
        return []

    tranche_weights = list(weights[:len(priced)])
    tranche_weights += [0] * (len(priced) - len(tranche_weights))
    if sum(tranche_weights) <= 0:
        tranche_weights = [1] * len(priced)

    lots = allocate_lots(total_qty // lot_size, tranche_weights)
    levels = [
        TargetLevel(level=label, price=price, close_qty=lot_count * lot_size)
        for (label, price), lot_count in zip(priced, lots)
    ]
    # Units beyond whole lots ride with the last tranche
    levels[-1].close_qty += total_qty - sum(level.close_qty for level in levels)
    return levels


class PositionOpener:
    """
    Position Opener Service

    Usage:
        opener = PositionOpener(store, reader, subscriptions)
        result = await opener.open_trade(request)
    """

    def __init__(
        self,
        store: TradeStore,
        reader: MarketDataReader,
        subscriptions: TickSubscriptionClient,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None
    ):
        self.store = store
        self.reader = reader
        self.subscriptions = subscriptions
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    async def open_trade(self, request: StrategyTradeRequest) -> Dict[str, Any]:
        """
        Open a virtual trade.

        Args:
            request: Validated open-trade request

        Returns:
            Dict with success flag and the (possibly corrected) trade levels
        """
        lot_size = max(request.lot_size, 1)
        quantity = request.quantity
        if quantity % lot_size != 0 or quantity < lot_size:
            aligned = align_quantity(quantity, lot_size)
            logger.warning(
                f"{TRADE_LOG_PREFIX} Quantity {quantity} not aligned to lot size {lot_size} "
                f"for {request.instrument_symbol}, using {aligned}"
            )
            quantity = aligned
        lots = quantity // lot_size
        if request.lots and request.lots != lots:
            logger.warning(
                f"{TRADE_LOG_PREFIX} Requested {request.lots} lots for {request.instrument_symbol}, "
                f"trading {lots} lots (qty={quantity}, lot size={lot_size})"
            )

        levels = [request.t1, request.t2, request.t3, request.t4]
        sl = request.sl
        smart = await self._smart_targets(request)
        if smart is not None:
            smart_levels = smart.targets()
            logger.info(
                f"{TRADE_LOG_PREFIX} Smart targets for {request.instrument_symbol}: "
                f"original T1={request.t1} T2={request.t2} T3={request.t3} T4={request.t4} SL={request.sl} -> "
                f"smart T1={smart.t1:.2f} T2={smart.t2:.2f} T3={smart.t3:.2f} T4={smart.t4:.2f} SL={smart.sl:.2f}"
            )
            levels = [new if new > 0 else old for new, old in zip(smart_levels, levels)]
            if smart.sl > 0:
                sl = smart.sl

        now = self.clock.now()
        trade_id = f"ST-{request.scrip_code}-{uuid.uuid4().hex[:12]}"
        underlying = UnderlyingLevels(
            sl=request.equity_sl,
            t1=request.equity_t1,
            t2=request.equity_t2,
            t3=request.equity_t3,
            t4=request.equity_t4,
        )

        position = Position(
            scrip_code=request.scrip_code,
            instrument_symbol=request.instrument_symbol,
            instrument_type=request.instrument_type,
            exchange=request.exchange,
            underlying_scrip_code=request.underlying_scrip_code,
            signal_id=trade_id,
            strategy=request.strategy,
            status=PositionStatus.ACTIVE,
            qty_open=quantity,
            avg_entry=request.entry_price,
            sl=sl,
            t1=levels[0],
            t2=levels[1],
            t3=levels[2],
            t4=levels[3],
            underlying=underlying,
            smart_targets=smart is not None,
            delta=request.delta,
            confidence=request.confidence,
            current_price=request.entry_price,
            opened_at=now,
            updated_at=now,
        )

        target_set = TargetSet(
            trade_id=trade_id,
            scrip_code=request.scrip_code,
            instrument_symbol=request.instrument_symbol,
            instrument_type=request.instrument_type,
            exchange=request.exchange,
            strategy=request.strategy,
            direction=request.direction,
            confidence=request.confidence,
            total_qty=quantity,
            remaining_qty=quantity,
            lot_size=lot_size,
            lots=lots,
            multiplier=request.multiplier,
            entry_price=request.entry_price,
            sl=sl,
            current_sl=sl,
            targets=build_target_levels(levels, quantity, lot_size, self.settings.LOT_PERCENTAGES),
            smart_targets=smart is not None,
            underlying_scrip_code=request.underlying_scrip_code,
            equity_spot=request.equity_spot,
            underlying=underlying,
            high_five_min=request.entry_price,
            high_five_min_updated_at=now,
            opened_at=now,
        )

        try:
            await self.store.save_trade(position, target_set)
        except TradePersistenceError as e:
            logger.error(f"{TRADE_LOG_PREFIX} Failed to open trade for {request.scrip_code}: {e.message}")
            return {
                "success": False,
                "error": e.message,
                "scrip_code": request.scrip_code,
            }

        logger.info(
            f"{TRADE_LOG_PREFIX} Opened {request.instrument_symbol} ({request.scrip_code}) "
            f"qty={quantity} ({lots}L) entry={request.entry_price:.2f} sl={sl:.2f} "
            f"targets={[t.price for t in target_set.targets]} strategy={request.strategy}"
        )

        await self._subscribe(request)
        position, target_set = await self._correct_entry(position, target_set)

        return {
            "success": True,
            "trade_id": trade_id,
            "scrip_code": request.scrip_code,
            "instrument_symbol": request.instrument_symbol,
            "entry_price": target_set.entry_price,
            "quantity": quantity,
            "lots": lots,
            "sl": target_set.sl,
            "t1": position.t1,
            "t2": position.t2,
            "t3": position.t3,
            "t4": position.t4,
            "smart_targets": target_set.smart_targets,
            "strategy": request.strategy,
        }

    async def _smart_targets(self, request: StrategyTradeRequest) -> Optional[SmartTargets]:
        """Confluence targets, or None to keep the request's levels."""
        try:
            pivots = await self.reader.get_pivot_levels(request.underlying_scrip_code)
            swings = await self.reader.get_swing_levels(request.scrip_code, self.settings.SWING_CANDLE_COUNT)
            return compute_smart_targets(
                entry_price=request.entry_price,
                spot=request.equity_spot,
                delta=request.delta if request.delta > 0 else self.settings.DEFAULT_OPTION_DELTA,
                pivot_levels=pivots,
                swing_highs=swings.highs,
                swing_lows=swings.lows,
                fallback_sl=request.sl,
                label=request.instrument_symbol,
            )
        except Exception as e:
            logger.warning(
                f"{TRADE_LOG_PREFIX} Smart target computation failed for {request.scrip_code}, "
                f"using signal levels: {str(e)}"
            )
            return None

    async def _subscribe(self, request: StrategyTradeRequest) -> None:
        exchange_type = exchange_type_for(request.exchange, request.instrument_type)
        await self.subscriptions.ensure_subscribed(
            request.exchange, exchange_type, request.scrip_code, request.instrument_symbol
        )
        await self.subscriptions.ensure_oi_subscribed(
            request.exchange, exchange_type, request.scrip_code, request.instrument_symbol
        )

    async def _correct_entry(self, position: Position, target_set: TargetSet) -> Tuple[Position, TargetSet]:
        """
        Rescale levels when the live price is far from the estimated entry.

        Runs under the instrument lock on the stored records, so a monitor
        pass cannot interleave with the rewrite. Returns the records as
        they now stand; failures leave the trade as opened.
        """
        scrip_code = target_set.scrip_code
        try:
            async with self.store.instrument_lock(
                scrip_code, wait_seconds=ENTRY_CORRECTION_LOCK_WAIT_SECONDS
            ) as acquired:
                if not acquired:
                    logger.warning(f"{TRADE_LOG_PREFIX} Entry correction skipped for {scrip_code}: instrument busy")
                    return position, target_set

                stored = await self.store.get_target_set(scrip_code)
                if stored is None or stored.trade_id != target_set.trade_id:
                    return position, target_set
                target_set = stored
                position = await self.store.get_position(scrip_code) or position

                ltp = await self.reader.get_ltp(scrip_code, target_set.exchange)
                estimate = target_set.entry_price
                if ltp is None or estimate <= 0:
                    return position, target_set
                if abs(ltp - estimate) / estimate <= self.settings.ENTRY_CORRECTION_THRESHOLD:
                    return position, target_set

                ratio = ltp / estimate
                target_set.rescale_levels(ratio)
                target_set.entry_price = ltp
                target_set.high_five_min = ltp

                prices = {target.level: target.price for target in target_set.targets}
                position.avg_entry = ltp
                position.current_price = ltp
                position.sl = target_set.sl
                position.t1 = prices.get("T1", 0.0)
                position.t2 = prices.get("T2", 0.0)
                position.t3 = prices.get("T3", 0.0)
                position.t4 = prices.get("T4", 0.0)

                logger.warning(
                    f"{TRADE_LOG_PREFIX} Entry corrected for {scrip_code}: "
                    f"estimate={estimate:.2f} ltp={ltp:.2f} ratio={ratio:.4f} sl={target_set.sl:.2f} "
                    f"targets={list(prices.values())}"
                )

                await self.store.save_trade(position, target_set)
        except TradePersistenceError as e:
            logger.error(f"{TRADE_LOG_PREFIX} Failed to persist entry correction for {scrip_code}: {e.message}")
        except Exception as e:
            logger.warning(f"{TRADE_LOG_PREFIX} Entry correction skipped for {scrip_code}: {str(e)}")

        return position, target_set
