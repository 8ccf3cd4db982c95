"""
Strategy Trade Request

Validated request to open a virtual option/futures trade from a
strategy signal.
"""

from typing import Optional
from pydantic import BaseModel, Field


class StrategyTradeRequest(BaseModel):
    """
    Open-trade request.

    Execution levels are in derivative-price space (delta-mapped for
    options, direct for futures). Equity levels are the signal's original
    underlying levels used for the dual exit checks.
    """

    # Instrument being traded (option or futures)
    scrip_code: str = Field(..., min_length=1)
    instrument_symbol: str = ""
    instrument_type: str = "OPTION"

    # Underlying reference
    underlying_scrip_code: Optional[str] = None

    # Order details (long only)
    quantity: int = Field(..., ge=0)
    lots: int = 0
    lot_size: int = Field(default=1, ge=0)
    multiplier: int = 1

    # Execution levels
    entry_price: float = Field(..., gt=0)
    sl: float = 0.0
    t1: float = 0.0
    t2: float = 0.0
    t3: float = 0.0
    t4: float = 0.0

    # Original equity levels
    equity_spot: float = 0.0
    equity_sl: float = 0.0
    equity_t1: float = 0.0
    equity_t2: float = 0.0
    equity_t3: float = 0.0
    equity_t4: float = 0.0

    # Option delta (0.5 assumed when not positive)
    delta: float = 0.0

    # Strategy metadata
    strategy: str = "MANUAL"
    exchange: str = "N"
    direction: str = "BULLISH"
    confidence: float = 0.0
