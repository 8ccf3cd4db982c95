"""
Core dependencies for FastAPI routes.

Provides the wired strategy trade services built in the application
lifespan.
"""

from fastapi import HTTPException, Request, status

from app.services.factory import TradeServices


async def get_trade_services(request: Request) -> TradeServices:
    """
    FastAPI dependency to get the strategy trade services.

    Returns:
        TradeServices: Services created at startup

    Raises:
        HTTPException: If the application has not finished starting
    """
    services = getattr(request.app.state, "trade_services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Trade services not initialized"
        )
    return services
