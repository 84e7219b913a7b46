"""APScheduler-based background task scheduler service."""

from __future__ import annotations

from typing import Any, Callable, Coroutine, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from sonar_bot.core.security import SecurityService
from sonar_bot.core.session import SessionManager
from sonar_bot.log import get_logger
from sonar_bot.services.base import Service

logger = get_logger(__name__)

SESSION_CLEANUP_JOB_ID = "session_cleanup"


class SchedulerService(Service):
    """Background task scheduler using APScheduler."""

    def __init__(
        self,
        session_manager: SessionManager,
        security: SecurityService,
        cleanup_interval_seconds: int = 60,
    ):
        self._session_manager = session_manager
        self._security = security
        self._cleanup_interval = cleanup_interval_seconds
        self._scheduler = AsyncIOScheduler(timezone="UTC")

    @property
    def service_name(self) -> str:
        return "scheduler"

    async def start(self) -> None:
        self.add_interval_job(
            seconds=self._cleanup_interval,
            callback=self._cleanup_sessions,
            job_id=SESSION_CLEANUP_JOB_ID,
        )
        self._scheduler.start()
        logger.info("scheduler_started", cleanup_interval=self._cleanup_interval)

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    def add_interval_job(
        self,
        seconds: int,
        callback: Callable[..., Coroutine[Any, Any, Any]],
        job_id: Optional[str] = None,
        **kwargs: Any,
    ) -> str:
        """Add a recurring job that runs every ``seconds``. Returns the job ID."""
        job = self._scheduler.add_job(
            callback,
            IntervalTrigger(seconds=seconds),
            id=job_id,
            kwargs=kwargs,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info("interval_job_added", job_id=job.id, seconds=seconds)
        return job.id

    async def _cleanup_sessions(self) -> None:
        await self._session_manager.cleanup_expired()
        self._security.purge_expired_rate_limits()
