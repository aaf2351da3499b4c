import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

# Setup logging
logger = logging.getLogger("scheduler")


class SchedulerService:
    """
    One-shot delayed jobs on the running asyncio loop.

    Jobs are identified by name; scheduling the same id again replaces the
    pending job instead of stacking a second one.
    """

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self.pending: Dict[str, datetime] = {}
        self.initialized = False

    def start(self):
        if self.initialized:
            return
        self.scheduler.start()
        logger.info("✅ Scheduler Service Started")
        self.initialized = True

    def shutdown(self):
        if not self.initialized:
            return
        self.scheduler.shutdown(wait=False)
        self.pending.clear()
        self.initialized = False
        logger.info("🛑 Scheduler Service Stopped")

    def schedule_once(self, job_id: str, delay: float, func: Callable[[], Awaitable[None]]):
        """Run `func` once, `delay` seconds from now."""
        run_at = datetime.now() + timedelta(seconds=delay)

        async def job_wrapper():
            self.pending.pop(job_id, None)
            try:
                await func()
            except Exception as e:
                logger.error(f"❌ Delayed job {job_id} failed: {e}")

        self.scheduler.add_job(
            job_wrapper,
            DateTrigger(run_date=run_at),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        self.pending[job_id] = run_at
        logger.info(f"⏰ Scheduled {job_id} in {delay}s")

    def cancel(self, job_id: str):
        if job_id in self.pending:
            if self.scheduler.get_job(job_id):
                self.scheduler.remove_job(job_id)
            del self.pending[job_id]

    def list_pending(self) -> Dict[str, str]:
        return {job_id: run_at.isoformat() for job_id, run_at in self.pending.items()}
