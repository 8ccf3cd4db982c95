"""
Market Data Integrations

Readers for the shared market data cache and the tick subscription
bridge client.
"""

from app.integrations.market_data.market_data_reader import (
    MarketDataReader,
    OIMetrics,
    SwingLevels,
    underlying_exchange,
)
from app.integrations.market_data.tick_subscription import (
    TickSubscriptionClient,
    exchange_type_for,
)

__all__ = [
    "MarketDataReader",
    "OIMetrics",
    "SwingLevels",
    "underlying_exchange",
    "TickSubscriptionClient",
    "exchange_type_for",
]
