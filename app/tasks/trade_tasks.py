"""
Strategy Trade Celery Tasks

Each task runs one sweep in a fresh event loop with its own Redis client.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict

from celery import Task

from app.tasks.celery_app import celery_app
from app.services.factory import TradeServices, build_trade_services
from app.utils.cache import create_redis_client
from app.core.logger import get_logger

logger = get_logger(__name__)


async def run_with_services(action: Callable[[TradeServices], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Build services around a short-lived Redis client and run one action.

    Args:
        action: Coroutine function receiving the wired services

    Returns:
        The action's result dict
    """
    redis_client = create_redis_client()
    services = build_trade_services(redis_client)
    try:
        return await action(services)
    finally:
        await services.close()
        await redis_client.aclose()


@celery_app.task(bind=True)
def monitor_positions_task(self: Task) -> Dict[str, Any]:
    """
    Periodic task running one position monitor cycle.

    Returns:
        Dict with monitoring results
    """
    try:
        return asyncio.run(run_with_services(lambda services: services.monitor.run_cycle()))
    except Exception as e:
        logger.error(f"Error monitoring strategy positions: {str(e)}")
        return {
            "success": False,
            "error": str(e)
        }


@celery_app.task(bind=True)
def monitor_oi_patterns_task(self: Task) -> Dict[str, Any]:
    """
    Periodic task running one OI pattern sweep.

    Returns:
        Dict with sweep results
    """
    try:
        return asyncio.run(run_with_services(lambda services: services.oi_monitor.run_cycle()))
    except Exception as e:
        logger.error(f"Error monitoring OI patterns: {str(e)}")
        return {
            "success": False,
            "error": str(e)
        }


@celery_app.task(bind=True, max_retries=2, default_retry_delay=10)
def eod_liquidation_task(self: Task, session: str) -> Dict[str, Any]:
    """
    Scheduled task liquidating one exchange session.

    Retried when the sweep itself could not run (e.g. Redis unavailable),
    since missing an EOD sweep leaves positions open overnight.

    Args:
        session: NSE, CURRENCY or MCX

    Returns:
        Dict with liquidation summary
    """
    try:
        result = asyncio.run(run_with_services(lambda services: services.liquidator.liquidate(session)))
    except Exception as e:
        logger.error(f"Error in EOD liquidation for {session}: {str(e)}")
        result = {"success": False, "error": str(e), "session": session}

    if not result.get("success") and self.request.retries < self.max_retries:
        raise self.retry(exc=RuntimeError(result.get("error", "EOD sweep failed")))

    return result
