"""
Service Factory

Builds the strategy trade services around one Redis client so the API
process, the in-process scheduler and Celery tasks share the same wiring.
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from app.config.settings import Settings, get_settings
from app.integrations.market_data.market_data_reader import MarketDataReader
from app.integrations.market_data.tick_subscription import TickSubscriptionClient
from app.repositories.trade_store import TradeStore
from app.scheduling.clock import Clock, SystemClock
from app.services.eod_liquidator import EODLiquidator
from app.services.exit_executor import ExitExecutor
from app.services.oi_pattern_monitor import OIPatternMonitor
from app.services.outcome_publisher import OutcomePublisher
from app.services.position_monitor import PositionMonitor
from app.services.position_opener import PositionOpener
from app.services.trade_manager import TradeManager


@dataclass
class TradeServices:
    """All strategy trade services sharing one store and clock."""
    store: TradeStore
    reader: MarketDataReader
    subscriptions: TickSubscriptionClient
    publisher: OutcomePublisher
    executor: ExitExecutor
    opener: PositionOpener
    monitor: PositionMonitor
    oi_monitor: OIPatternMonitor
    liquidator: EODLiquidator
    manager: TradeManager

    async def close(self):
        """Release outbound HTTP resources (the Redis client is owned by the caller)."""
        await self.subscriptions.close()


def build_trade_services(
    redis_client: redis.Redis,
    clock: Optional[Clock] = None,
    settings: Optional[Settings] = None,
    subscriptions: Optional[TickSubscriptionClient] = None
) -> TradeServices:
    """
    Wire every strategy trade service.

    Args:
        redis_client: Shared Redis client
        clock: Time source (system clock by default)
        settings: Settings (global settings by default)
        subscriptions: Tick subscription client override

    Returns:
        TradeServices
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()

    store = TradeStore(redis_client, lock_ttl_ms=settings.INSTRUMENT_LOCK_TTL_MS)
    reader = MarketDataReader(redis_client)
    subscriptions = subscriptions or TickSubscriptionClient(
        base_url=settings.TICK_SUBSCRIPTION_BASE_URL,
        timeout=settings.TICK_SUBSCRIPTION_TIMEOUT_SECONDS,
    )
    publisher = OutcomePublisher(
        redis_client,
        stream=settings.TRADE_OUTCOMES_STREAM,
        channel=settings.POSITION_UPDATES_CHANNEL,
        maxlen=settings.TRADE_OUTCOMES_MAXLEN,
        timezone_name=settings.EOD_TIMEZONE,
    )
    executor = ExitExecutor(store, publisher)

    return TradeServices(
        store=store,
        reader=reader,
        subscriptions=subscriptions,
        publisher=publisher,
        executor=executor,
        opener=PositionOpener(store, reader, subscriptions, clock=clock, settings=settings),
        monitor=PositionMonitor(store, reader, executor, clock=clock, settings=settings),
        oi_monitor=OIPatternMonitor(store, reader, clock=clock, settings=settings),
        liquidator=EODLiquidator(store, reader, executor, clock=clock, settings=settings),
        manager=TradeManager(store, reader, executor, clock=clock),
    )
