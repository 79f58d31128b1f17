"""
Celery application with the beat schedule of the review batch jobs.

Run a worker and beat with:

    celery -A reviewiq.common.tasks.celery_app worker --beat
"""

from typing import Any, Dict, Optional

from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

from reviewiq.common.config import AppConfig, get_config
from reviewiq.common.tasks.config import TaskConfig, load_task_config
from reviewiq.review.orchestrator import JobName

load_dotenv()

TASK_NAME = "reviewiq.run_orchestrator_job"


def build_beat_schedule(config: AppConfig) -> Dict[str, Dict[str, Any]]:
    """One beat entry per orchestrator job, named after the job."""
    orchestrator = config.orchestrator
    daily_hour, daily_minute = orchestrator.daily_time
    cleanup_hour, cleanup_minute = orchestrator.cleanup_time
    schedules = {
        JobName.DAILY_REGENERATION: crontab(hour=daily_hour, minute=daily_minute),
        JobName.HOURLY_REFRESH: float(orchestrator.hourly_interval_seconds),
        JobName.OVERDUE_SCAN: float(orchestrator.overdue_interval_seconds),
        JobName.SELF_TUNING: float(orchestrator.tuning_interval_seconds),
        JobName.CACHE_CLEANUP: crontab(hour=cleanup_hour, minute=cleanup_minute),
        # Celery counts Sunday as 0, config uses Monday=0
        JobName.WEEKLY_ANALYTICS: crontab(
            hour=0, minute=0, day_of_week=(orchestrator.weekly_weekday + 1) % 7
        ),
    }
    return {
        name.value: {"task": TASK_NAME, "schedule": schedule, "args": (name.value,)}
        for name, schedule in schedules.items()
    }


def create_celery_app(
    config: Optional[AppConfig] = None,
    task_config: Optional[TaskConfig] = None
) -> Celery:
    config = config or get_config()
    task_config = task_config or load_task_config(config.orchestrator.timezone)

    app = Celery("reviewiq", include=["reviewiq.common.tasks.jobs"])
    app.conf.update(task_config.to_celery_config())
    app.conf.beat_schedule = build_beat_schedule(config)
    return app


app = create_celery_app()
