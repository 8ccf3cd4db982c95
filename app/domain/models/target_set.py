"""
Target Set Domain Model

Monitoring metadata for one open strategy position: target ladder,
current stop, dual underlying levels, rolling high and OI window.
Keyed by the same instrument code as the Position.
"""

from typing import Optional, List
from datetime import datetime, timedelta, timezone
from pydantic import Field

from app.domain.models.position import UnderlyingLevels
from app.shared.models import DomainModel


TARGET_LABELS = ("T1", "T2", "T3", "T4")


class TargetLevel(DomainModel):
    """One rung of the target ladder."""
    level: str
    price: float
    close_qty: int
    hit: bool = False
    hit_source: Optional[str] = None
    hit_timestamp: Optional[datetime] = None


class OIReading(DomainModel):
    """One open-interest interpretation sample."""
    timestamp: datetime
    interpretation: str
    change_percent: float = 0.0
    confidence: float = 0.0


class TargetSet(DomainModel):
    """
    Target Set Domain Model

    Created atomically with the Position by the opener, updated every
    monitor cycle, removed when remaining_qty reaches zero.
    """

    # Identity
    trade_id: str
    scrip_code: str
    instrument_symbol: str = ""
    instrument_type: str = "OPTION"
    exchange: str = "N"
    strategy: str = ""
    direction: str = "BULLISH"
    confidence: float = 0.0

    # Quantities
    total_qty: int
    remaining_qty: int
    lot_size: int = 1
    lots: int = 0
    multiplier: int = 1
    realized_pnl: float = 0.0

    # Levels
    entry_price: float
    sl: float = 0.0
    current_sl: float = 0.0
    targets: List[TargetLevel] = Field(default_factory=list)
    smart_targets: bool = False

    # Dual monitoring
    underlying_scrip_code: Optional[str] = None
    equity_spot: float = 0.0
    underlying: UnderlyingLevels = Field(default_factory=UnderlyingLevels)

    # Drawdown tracking
    high_five_min: float = 0.0
    high_five_min_updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # OI pattern monitoring
    oi_readings: List[OIReading] = Field(default_factory=list)
    oi_exit_flag: bool = False
    oi_immediate_exit: bool = False
    oi_pattern: Optional[str] = None
    oi_last_checked: Optional[datetime] = None

    # Timing
    opened_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def executed_qty(self) -> int:
        """Quantity already closed."""
        return self.total_qty - self.remaining_qty

    @property
    def effective_lot_size(self) -> int:
        return max(self.lot_size, 1)

    def in_grace_period(self, now: datetime, grace_seconds: int) -> bool:
        """Whether exit checks are still suppressed after opening."""
        return now - self.opened_at < timedelta(seconds=grace_seconds)

    def update_rolling_high(self, ltp: float, now: datetime, window_seconds: int) -> None:
        """
        Maintain the rolling high of the derivative price.

        The window (and the high) resets once more than window_seconds
        elapsed since its start; otherwise the high only ratchets up.
        """
        if now - self.high_five_min_updated_at > timedelta(seconds=window_seconds):
            self.high_five_min = ltp
            self.high_five_min_updated_at = now
        elif ltp > self.high_five_min:
            self.high_five_min = ltp

    def add_oi_reading(self, reading: OIReading, window_size: int) -> None:
        """Append a reading, dropping the oldest beyond window_size."""
        self.oi_readings.append(reading)
        while len(self.oi_readings) > window_size:
            self.oi_readings.pop(0)
        self.oi_last_checked = reading.timestamp

    def hit_flags(self) -> dict:
        """Map of target label to hit flag."""
        flags = {label: False for label in TARGET_LABELS}
        for target in self.targets:
            flags[target.level] = target.hit
        return flags

    def rescale_levels(self, ratio: float) -> None:
        """Scale every target price and the stop by ratio (2 dp)."""
        for target in self.targets:
            target.price = round(target.price * ratio, 2)
        self.sl = round(self.sl * ratio, 2)
        self.current_sl = self.sl
