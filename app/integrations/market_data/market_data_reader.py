"""
Market Data Reader

Reads live prices, OI interpretations, multi-timeframe pivots and 1-minute
candle history from the shared Redis cache populated by the streaming
services.

Every read is best-effort: missing or malformed data comes back as
None / empty, while Redis errors propagate so callers can skip the
instrument for this cycle.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import redis.asyncio as redis

from app.integrations.market_data import envelope
from app.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_EXCHANGE = "N"

# Stored timeframe field -> label prefix
PIVOT_TIMEFRAMES = (
    ("dailyPivot", "daily"),
    ("prevDailyPivot", "prevDaily"),
    ("weeklyPivot", "weekly"),
    ("prevWeeklyPivot", "prevWeekly"),
    ("monthlyPivot", "monthly"),
    ("prevMonthlyPivot", "prevMonthly"),
)

# Stored level field -> label suffix
PIVOT_FIELDS = (
    ("pivot", "Pivot"),
    ("s1", "S1"), ("s2", "S2"), ("s3", "S3"), ("s4", "S4"),
    ("r1", "R1"), ("r2", "R2"), ("r3", "R3"), ("r4", "R4"),
    ("tc", "TC"), ("bc", "BC"),
)


@dataclass
class OIMetrics:
    """Latest OI interpretation for an instrument."""
    interpretation: str
    confidence: float = 0.0
    change_percent: float = 0.0


@dataclass
class SwingLevels:
    """Swing highs and lows detected from candle history."""
    highs: List[float] = field(default_factory=list)
    lows: List[float] = field(default_factory=list)


def price_key(exchange: str, scrip_code: str) -> str:
    return f"price:{exchange}:{scrip_code}"


def underlying_exchange(exchange: Optional[str]) -> str:
    """Exchange on which the underlying of a derivative is quoted."""
    if exchange in ("M", "C"):
        return exchange
    return DEFAULT_EXCHANGE


def detect_swings(candles: List[tuple]) -> SwingLevels:
    """
    Detect strict 3-candle swing extrema.

    Args:
        candles: Chronological (high, low) pairs

    Returns:
        SwingLevels in chronological order
    """
    swings = SwingLevels()
    for i in range(1, len(candles) - 1):
        prev_high, prev_low = candles[i - 1]
        high, low = candles[i]
        next_high, next_low = candles[i + 1]

        if high > prev_high and high > next_high:
            swings.highs.append(high)
        if low < prev_low and low < next_low:
            swings.lows.append(low)
    return swings


class MarketDataReader:
    """
    Redis-backed market data reader.

    Usage:
        reader = MarketDataReader(redis_client)
        ltp = await reader.get_ltp("52431", "N")
        pivots = await reader.get_pivot_levels("49812")
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def get_ltp(self, scrip_code: str, exchange: Optional[str] = DEFAULT_EXCHANGE) -> Optional[float]:
        """
        Read last traded price.

        A miss on a non-default exchange falls back to the default
        exchange key.

        Returns:
            Positive price, or None if missing or invalid
        """
        exchange = exchange or DEFAULT_EXCHANGE
        raw = await self.redis.get(price_key(exchange, scrip_code))
        if raw is None and exchange != DEFAULT_EXCHANGE:
            raw = await self.redis.get(price_key(DEFAULT_EXCHANGE, scrip_code))
        return _parse_price(raw)

    async def get_oi_metrics(self, scrip_code: str) -> Optional[OIMetrics]:
        """
        Read the latest OI interpretation.

        Returns:
            OIMetrics, or None when missing or without an interpretation
        """
        data = envelope.loads(await self.redis.get(f"oi:{scrip_code}:latest"))
        if not isinstance(data, dict):
            return None

        interpretation = envelope.get_text(data, "interpretation")
        if not interpretation:
            return None

        return OIMetrics(
            interpretation=interpretation,
            confidence=envelope.get_float(data, "interpretationConfidence"),
            change_percent=envelope.get_float(data, "oiChangePercent"),
        )

    async def get_pivot_levels(self, underlying_scrip_code: Optional[str]) -> Dict[str, float]:
        """
        Read multi-timeframe pivot levels as a flat label -> price map.

        Labels combine timeframe and level, e.g. "dailyR1", "weeklyPivot".
        Non-positive values are dropped.
        """
        if not underlying_scrip_code:
            return {}

        data = envelope.loads(await self.redis.get(f"pivot:mtf:{underlying_scrip_code}"))
        if not isinstance(data, dict):
            return {}

        levels: Dict[str, float] = {}
        for tf_field, prefix in PIVOT_TIMEFRAMES:
            tf = envelope.get_object(data, tf_field)
            if tf is None:
                continue
            for level_field, suffix in PIVOT_FIELDS:
                value = envelope.get_float(tf, level_field)
                if value > 0:
                    levels[prefix + suffix] = value
        return levels

    async def get_swing_levels(self, scrip_code: str, count: int) -> SwingLevels:
        """
        Detect swing levels from the newest `count` 1-minute candles.

        History is stored newest-first; candles without a positive
        high and low are ignored.
        """
        if not scrip_code or count < 3:
            return SwingLevels()

        raw_candles = await self.redis.lrange(f"tick:{scrip_code}:1m:history", 0, count - 1)
        if not raw_candles or len(raw_candles) < 3:
            return SwingLevels()

        candles = []
        for raw in raw_candles:
            data = envelope.loads(raw)
            high = envelope.get_float(data, "high")
            low = envelope.get_float(data, "low")
            if high > 0 and low > 0:
                candles.append((high, low))

        candles.reverse()
        return detect_swings(candles)


def _parse_price(raw) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (ValueError, TypeError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value
