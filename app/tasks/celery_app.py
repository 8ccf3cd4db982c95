"""
Celery Application Configuration

Alternative deployment of the strategy trade jobs: Celery beat drives the
position monitor, the OI monitor and the EOD sweeps instead of the
in-process scheduler (set SCHEDULER_ENABLED=false on the API).

Usage:
    # Start Celery worker
    celery -A app.tasks.celery_app worker --loglevel=info

    # Start Celery beat (scheduler)
    celery -A app.tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab, timedelta
from celery.signals import setup_logging

from app.config.settings import get_settings, Settings
from app.core.logger import setup_logging_from_settings

settings = get_settings()


def celery_day_of_week(weekdays) -> str:
    """Convert Monday=0 weekdays to Celery's Sunday=0 numbering."""
    return ",".join(str((day + 1) % 7) for day in sorted(weekdays))


def build_beat_schedule(settings: Settings) -> dict:
    """Beat entries for the monitors and one EOD sweep per session."""
    schedule = {
        # Exit checks on every open trade
        "monitor-strategy-positions": {
            "task": "app.tasks.trade_tasks.monitor_positions_task",
            "schedule": timedelta(seconds=settings.POSITION_MONITOR_INTERVAL_SECONDS),
            "options": {"queue": "trades", "expires": settings.POSITION_MONITOR_INTERVAL_SECONDS},
        },

        # OI pattern sampling
        "monitor-oi-patterns": {
            "task": "app.tasks.trade_tasks.monitor_oi_patterns_task",
            "schedule": timedelta(seconds=settings.OI_MONITOR_INTERVAL_SECONDS),
            "options": {"queue": "trades"},
        },
    }

    for session, at in settings.EOD_SESSIONS.items():
        hour, minute = at.split(":")
        schedule[f"eod-{session.lower()}"] = {
            "task": "app.tasks.trade_tasks.eod_liquidation_task",
            "schedule": crontab(
                hour=int(hour),
                minute=int(minute),
                day_of_week=celery_day_of_week(settings.EOD_WEEKDAYS),
            ),
            "args": (session,),
            "options": {"queue": "trades"},
        }

    return schedule


# Initialize Celery
celery_app = Celery(
    "strategy_trade_engine",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "app.tasks.trade_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Crontab entries are evaluated in the exchange time zone
    timezone=settings.EOD_TIMEZONE,
    enable_utc=True,

    # Task execution
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,
    task_time_limit=120,
    task_soft_time_limit=90,

    # Result backend
    result_expires=3600,  # Results expire after 1 hour

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,  # Restart worker after 1000 tasks

    task_routes={
        "app.tasks.trade_tasks.*": {"queue": "trades"},
    },

    # Beat schedule (periodic tasks)
    beat_schedule=build_beat_schedule(settings),
)


@setup_logging.connect
def configure_worker_logging(**kwargs):
    """Use the application log format in workers."""
    setup_logging_from_settings(settings)


if __name__ == "__main__":
    celery_app.start()
