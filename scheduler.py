import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import local_today
from services import ReminderService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)
        self._announced_on: Optional[date] = None
        self._announced: set[int] = set()

    def _run_job(self, source: str = "manual") -> dict[str, list[int]]:
        logger.info(f"reminder_scan: source={source}")
        today = local_today()
        if self._announced_on != today:
            self._announced_on = today
            self._announced = set()
        with session_scope() as session:
            announced = ReminderService(session).scan(
                today, skip_ids=frozenset(self._announced)
            )
        for bill_ids in announced.values():
            self._announced.update(bill_ids)
        logger.info(
            f"reminder_scan: source={source} overdue={len(announced['overdue'])} "
            f"today={len(announced['today'])}"
        )
        return announced

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=self.settings.reminder_hour, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{self.settings.reminder_hour:02d}:00"],
            id="bill_reminders_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="bill_reminders_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily {self.settings.reminder_hour:02d}:00 "
            "and hourly safety net"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
