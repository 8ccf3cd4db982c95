"""
Position Domain Model

Pure Pydantic domain model for virtual strategy positions.
No store dependencies - business logic only.
"""

from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
from pydantic import Field

from app.shared.models import DomainModel


# ==================== ENUMS ====================

class PositionStatus(str, Enum):
    """Position status lifecycle"""
    ACTIVE = "ACTIVE"
    PARTIAL_EXIT = "PARTIAL_EXIT"
    CLOSED = "CLOSED"


class PositionSide(str, Enum):
    """Position side (only long derivative positions are opened)"""
    LONG = "LONG"


class TrailingType(str, Enum):
    """How the current stop was derived"""
    NONE = "NONE"
    TARGET_TRAIL = "TARGET_TRAIL"


# ==================== EMBEDDED MODELS ====================

class UnderlyingLevels(DomainModel):
    """Underlying (equity/futures) levels used for the dual exit checks."""
    sl: float = 0.0
    t1: float = 0.0
    t2: float = 0.0
    t3: float = 0.0
    t4: float = 0.0

    def target(self, level: str) -> float:
        """Underlying target matching a target label such as "T2" (0 if none)."""
        if level not in ("T1", "T2", "T3", "T4"):
            return 0.0
        return getattr(self, level.lower())


class ExitHistoryEntry(DomainModel):
    """One executed exit tranche."""
    level: str
    lots: int
    qty: int
    price: float
    timestamp: datetime
    source: str


# ==================== MAIN POSITION MODEL ====================

class Position(DomainModel):
    """
    Position Domain Model

    Display/wallet record of a virtual holding, keyed by instrument code.
    Read by wallet and dashboard services; mutated only by the monitor,
    the EOD liquidator and manual close.

    Usage:
        position = Position(scrip_code="52431", qty_open=75, avg_entry=100.0, ...)
        position.mark_price(111.0, None, remaining_qty=75)
        position.record_target_exit("T1", ...)
        position.close(exit_price=89.0, pnl=-550.0, reason="SL-OP")
    """

    # Identity
    scrip_code: str
    instrument_symbol: str = ""
    instrument_type: str = "OPTION"
    exchange: str = "N"
    underlying_scrip_code: Optional[str] = None
    signal_id: str
    strategy: str = ""

    # Position Basics
    side: PositionSide = PositionSide.LONG
    status: PositionStatus = PositionStatus.ACTIVE
    qty_open: int
    avg_entry: float

    # Levels
    sl: float = 0.0
    t1: float = 0.0
    t2: float = 0.0
    t3: float = 0.0
    t4: float = 0.0
    underlying: UnderlyingLevels = Field(default_factory=UnderlyingLevels)
    smart_targets: bool = False
    delta: float = 0.0
    confidence: float = 0.0

    # Hit flags
    t1_hit: bool = False
    t2_hit: bool = False
    t3_hit: bool = False
    t4_hit: bool = False
    sl_hit: bool = False

    # Current State (Updated in Real-Time)
    current_price: float = 0.0
    underlying_ltp: Optional[float] = None
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    trailing_type: TrailingType = TrailingType.NONE
    trailing_stop: float = 0.0

    # Exit
    exit_reason: str = ""
    exit_history: List[ExitHistoryEntry] = Field(default_factory=list)

    # Timing
    opened_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_open(self) -> bool:
        """Check if position still holds quantity."""
        return self.status != PositionStatus.CLOSED and self.qty_open > 0

    def mark_price(
        self,
        current_price: float,
        underlying_ltp: Optional[float],
        remaining_qty: int,
        now: Optional[datetime] = None
    ) -> None:
        """
        Refresh displayed price and unrealized P&L.

        Domain logic only - does not persist.

        Args:
            current_price: Derivative LTP
            underlying_ltp: Underlying LTP (None if unavailable)
            remaining_qty: Quantity still open
            now: Update timestamp
        """
        self.current_price = current_price
        if underlying_ltp is not None and underlying_ltp > 0:
            self.underlying_ltp = underlying_ltp
        self.unrealized_pnl = (current_price - self.avg_entry) * remaining_qty
        self.updated_at = now or datetime.now(timezone.utc)

    def record_target_exit(
        self,
        level: str,
        lots: int,
        qty: int,
        price: float,
        pnl: float,
        source: str,
        remaining_qty: int,
        now: datetime
    ) -> None:
        """
        Apply a partial exit at a target level.

        Args:
            level: Target label (T1..T4)
            lots: Lots closed
            qty: Units closed
            price: Exit price
            pnl: Tranche P&L
            source: Hit source, e.g. "T1-OP"
            remaining_qty: Quantity left open after this tranche
            now: Exit timestamp
        """
        flag = f"{level.lower()}_hit"
        if flag in type(self).model_fields:
            setattr(self, flag, True)

        self.exit_history.append(ExitHistoryEntry(
            level=level, lots=lots, qty=qty, price=price, timestamp=now, source=source
        ))
        self.exit_reason = source
        self.qty_open = remaining_qty
        self.realized_pnl += pnl
        self.unrealized_pnl = (price - self.avg_entry) * remaining_qty
        self.current_price = price
        self.status = PositionStatus.CLOSED if remaining_qty <= 0 else PositionStatus.PARTIAL_EXIT
        self.updated_at = now

    def close(
        self,
        exit_price: float,
        qty: int,
        pnl: float,
        reason: str,
        lots: int,
        now: datetime
    ) -> None:
        """
        Close all remaining quantity.

        Args:
            exit_price: Exit price
            qty: Units closed
            pnl: P&L of the closed units
            reason: Exit reason, e.g. "SL-OP", "EOD"
            lots: Lots closed
            now: Exit timestamp
        """
        if qty > 0:
            self.exit_history.append(ExitHistoryEntry(
                level="EXIT", lots=lots, qty=qty, price=exit_price, timestamp=now, source=reason
            ))
        self.realized_pnl += pnl
        self.qty_open = 0
        self.current_price = exit_price
        self.unrealized_pnl = 0.0
        self.status = PositionStatus.CLOSED
        self.exit_reason = reason
        self.sl_hit = is_stop_reason(reason)
        self.updated_at = now

    def mark_closed(self, now: datetime) -> None:
        """Mark position closed after the last tranche left the book."""
        self.status = PositionStatus.CLOSED
        self.qty_open = 0
        self.updated_at = now

    def trail_stop(self, new_sl: float, now: datetime) -> None:
        """Move the displayed stop to a confirmed target level."""
        self.sl = new_sl
        self.trailing_type = TrailingType.TARGET_TRAIL
        self.trailing_stop = new_sl
        self.updated_at = now


def is_stop_reason(reason: str) -> bool:
    """Whether an exit reason counts as a stop-out."""
    return "SL" in reason or reason == "1% DD"
