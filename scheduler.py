import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import Database
from services import roll_recurring_budgets


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, database: Database) -> None:
        settings = get_settings()
        self.database = database
        self.settings = settings
        # without a configured zone APScheduler uses the host zone
        scheduler_kwargs = {"timezone": settings.timezone} if settings.timezone else {}
        self.scheduler = BackgroundScheduler(**scheduler_kwargs)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with self.database.session_scope() as session:
            result = roll_recurring_budgets(session)
            logger.info(
                f"scheduler_run: source={source} budgets_created={len(result.created)} "
                f"budgets_failed={len(result.failures)}"
            )

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(
            hour=self.settings.rollover_hour, minute=self.settings.rollover_minute
        )
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_rollover"],
            id="budget_rollover_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=6)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["safety_net"],
            id="budget_rollover_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily {self.settings.rollover_hour:02d}:"
            f"{self.settings.rollover_minute:02d} rollover and 6-hourly safety net"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
