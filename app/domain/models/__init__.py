"""
Domain Models

Pure Pydantic domain models with no store dependencies.
"""

from app.shared.models import DomainModel
from app.domain.models.position import (
    Position,
    PositionStatus,
    PositionSide,
    TrailingType,
    UnderlyingLevels,
    ExitHistoryEntry,
)
from app.domain.models.target_set import (
    TargetSet,
    TargetLevel,
    OIReading,
)
from app.domain.models.trade_request import StrategyTradeRequest

__all__ = [
    "DomainModel",
    "Position",
    "PositionStatus",
    "PositionSide",
    "TrailingType",
    "UnderlyingLevels",
    "ExitHistoryEntry",
    "TargetSet",
    "TargetLevel",
    "OIReading",
    "StrategyTradeRequest",
]
