"""
Strategy Trade Router

FastAPI endpoints for opening, listing and manually closing virtual
strategy trades.
Router -> Service -> TradeStore -> Redis
"""

from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_trade_services
from app.core.responses import StandardResponse, success_response
from app.domain.models.trade_request import StrategyTradeRequest
from app.services.factory import TradeServices
from app.shared.exceptions import TradePersistenceError
from app.core.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/strategy-trades", tags=["strategy-trades"])


# ==================== OPEN TRADE ====================

@router.post("/", response_model=StandardResponse, status_code=status.HTTP_201_CREATED)
async def open_trade(
    request: StrategyTradeRequest,
    services: TradeServices = Depends(get_trade_services),
):
    """Open a virtual trade with computed targets and stop."""
    result = await services.opener.open_trade(request)

    if not result.get("success"):
        raise TradePersistenceError(result.get("error", "Failed to open trade"))

    return success_response(status.HTTP_201_CREATED, "Trade opened", result)


# ==================== ACTIVE TRADES ====================

@router.get("/active", response_model=StandardResponse)
async def get_active_trades(
    services: TradeServices = Depends(get_trade_services),
):
    """List open trades with live price and P&L."""
    trades = await services.manager.get_active_trades()
    return success_response(
        status.HTTP_200_OK,
        "Active trades retrieved",
        {"trades": trades, "count": len(trades)}
    )


# ==================== CLOSE TRADE ====================

@router.post("/{scrip_code}/close", response_model=StandardResponse)
async def close_trade(
    scrip_code: str,
    services: TradeServices = Depends(get_trade_services),
):
    """Close all remaining quantity of a trade at the live price."""
    result = await services.manager.close_trade(scrip_code)
    return success_response(status.HTTP_200_OK, "Trade closed", result)
