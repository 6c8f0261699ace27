from apscheduler.schedulers.asyncio import AsyncIOScheduler

from chatdigest.core.config import settings
from chatdigest.models.enums import SummaryType
from chatdigest.tasks import jobs

# 各周期摘要的触发时间（UTC）
SUMMARY_CRON = {
    SummaryType.HOURLY: {"minute": 0},
    SummaryType.DAILY: {"hour": 9, "minute": 0},
    SummaryType.WEEKLY: {"day_of_week": "mon", "hour": 9, "minute": 0},
    SummaryType.MONTHLY: {"day": 1, "hour": 9, "minute": 0},
}


class SchedulerWrapper:
    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._sweep_job_id = "expire_stale_sessions"
        self._cleanup_job_id = "cleanup_rate_limiter"
        self._is_configured = False

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def job_ids(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def _configure_jobs(self) -> None:
        if self._is_configured:
            return

        if settings.scheduler_enabled:
            for summary_type, trigger in SUMMARY_CRON.items():
                self._scheduler.add_job(
                    jobs.scheduled_summary_job,
                    "cron",
                    args=[summary_type],
                    id=f"{summary_type.value}_summaries",
                    replace_existing=True,
                    max_instances=1,
                    coalesce=True,
                    **trigger,
                )

        # 会话清理不受定时摘要开关影响
        self._scheduler.add_job(
            jobs.expire_sessions_job,
            "interval",
            minutes=settings.session_sweep_interval_minutes,
            id=self._sweep_job_id,
            replace_existing=True,
        )
        self._scheduler.add_job(
            jobs.cleanup_rate_limiter_job,
            "interval",
            minutes=5,
            id=self._cleanup_job_id,
            replace_existing=True,
        )

        self._is_configured = True

    async def start(self) -> None:
        if not self._scheduler.running:
            self._configure_jobs()
            self._scheduler.start()

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)


scheduler = SchedulerWrapper()
