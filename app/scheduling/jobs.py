"""
Strategy Trade Jobs

Registers the periodic monitors and the per-session EOD sweeps on a
Scheduler.
"""

from functools import partial
from typing import Optional

from app.config.settings import Settings, get_settings
from app.scheduling.scheduler import Scheduler
from app.scheduling.triggers import DailyTrigger, IntervalTrigger
from app.services.factory import TradeServices

POSITION_MONITOR_JOB = "position-monitor"
OI_MONITOR_JOB = "oi-monitor"


def eod_job_name(session: str) -> str:
    return f"eod-{session.lower()}"


def register_trade_jobs(
    scheduler: Scheduler,
    services: TradeServices,
    settings: Optional[Settings] = None
) -> None:
    """
    Add the monitor, OI monitor and EOD jobs.

    Args:
        scheduler: Scheduler to register on
        services: Wired trade services
        settings: Settings (global settings by default)
    """
    settings = settings or get_settings()

    scheduler.add_job(
        POSITION_MONITOR_JOB,
        IntervalTrigger(settings.POSITION_MONITOR_INTERVAL_SECONDS),
        services.monitor.run_cycle,
    )
    scheduler.add_job(
        OI_MONITOR_JOB,
        IntervalTrigger(settings.OI_MONITOR_INTERVAL_SECONDS),
        services.oi_monitor.run_cycle,
    )

    for session, at in settings.EOD_SESSIONS.items():
        scheduler.add_job(
            eod_job_name(session),
            DailyTrigger.from_string(at, settings.EOD_TIMEZONE, settings.EOD_WEEKDAYS),
            partial(services.liquidator.liquidate, session),
        )
