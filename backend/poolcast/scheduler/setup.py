from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from pytz import timezone

from poolcast.scheduler.jobs import (
    calculate_features_job,
    data_quality_job,
    retraining_check_job,
    sync_gas_prices_job,
    validate_predictions_job,
)
from poolcast.config import get_settings
from poolcast.db.session import get_engine


settings = get_settings()


def _jobstore() -> SQLAlchemyJobStore:
    if settings.SCHEDULER_DB_URL:
        return SQLAlchemyJobStore(url=settings.SCHEDULER_DB_URL)
    return SQLAlchemyJobStore(engine=get_engine())


# Global scheduler instance; jobs run in its default thread pool executor.
scheduler = AsyncIOScheduler(
    jobstores={"default": _jobstore()},
    timezone=timezone(settings.SCHEDULER_TZ),
)


def configure_jobs() -> None:
    """
    Register all recurring jobs with the scheduler.

    - validate-predictions: match due predictions to actuals
    - gas-price-sync: hourly natural gas price refresh
    - calculate-features: hourly feature recompute
    - data-quality: daily quality report
    - retraining-check: daily auto-retraining check
    """
    scheduler.add_job(
        validate_predictions_job,
        "interval",
        id="validate-predictions",
        minutes=settings.VALIDATION_INTERVAL_MINUTES,
        replace_existing=True,
        misfire_grace_time=300,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        sync_gas_prices_job,
        "cron",
        id="gas-price-sync",
        minute=5,
        replace_existing=True,
        misfire_grace_time=1800,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        calculate_features_job,
        "cron",
        id="calculate-features",
        minute=15,
        replace_existing=True,
        misfire_grace_time=1800,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        data_quality_job,
        "cron",
        id="data-quality",
        hour=1,
        minute=30,
        replace_existing=True,
        misfire_grace_time=3600,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        retraining_check_job,
        "cron",
        id="retraining-check",
        hour=settings.RETRAIN_CHECK_HOUR,
        minute=0,
        replace_existing=True,
        misfire_grace_time=7200,
        coalesce=True,
        max_instances=1,
    )


async def init_scheduler(app) -> None:
    """
    FastAPI startup hook: initialize and start the APScheduler instance
    if SCHEDULER_ENABLED is true.
    """
    if not settings.SCHEDULER_ENABLED:
        return
    configure_jobs()
    scheduler.start()


async def shutdown_scheduler() -> None:
    """
    FastAPI shutdown hook: stop the scheduler cleanly.
    """
    if scheduler.running:
        scheduler.shutdown(wait=False)
