from datetime import timedelta
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from dealerops.config import Settings
from dealerops.schemas import SweepResult
from dealerops.upload_ledger import sweep_uploads


logger = logging.getLogger(__name__)


def run_ledger_sweep(settings: Settings, session_factory: sessionmaker[Session]) -> SweepResult:
    with session_factory() as db:
        return sweep_uploads(
            db,
            stale_after=timedelta(minutes=settings.stale_upload_minutes),
            failed_retention=timedelta(days=settings.failed_upload_retention_days),
        )


def _scheduled_sweep(settings: Settings, session_factory: sessionmaker[Session]) -> None:
    try:
        result = run_ledger_sweep(settings, session_factory)
    except Exception:
        logger.exception("scheduled ledger sweep failed")
        return
    logger.info(
        "scheduled ledger sweep completed",
        extra={
            "interrupted_uploads": result.interrupted_uploads,
            "purged_uploads": result.purged_uploads,
        },
    )


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _scheduled_sweep,
        "cron",
        args=[settings, session_factory],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_ledger_sweep",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _scheduled_sweep(settings, session_factory)

    scheduler.start()
