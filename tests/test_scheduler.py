import asyncio

from core.scheduler import SchedulerService


def _run_with_scheduler(body):
    async def run():
        service = SchedulerService()
        service.start()
        try:
            return await body(service)
        finally:
            service.shutdown()
    return asyncio.run(run())


def test_delayed_job_runs_once():
    ran = []

    async def body(service):
        async def job():
            ran.append("ran")

        service.schedule_once("organic", 0.01, job)
        assert "organic" in service.list_pending()
        await asyncio.sleep(0.3)
        return service.list_pending()

    pending = _run_with_scheduler(body)
    assert ran == ["ran"]
    assert pending == {}


def test_rescheduling_same_id_replaces_pending_job():
    ran = []

    async def body(service):
        async def first():
            ran.append("first")

        async def second():
            ran.append("second")

        service.schedule_once("deep_link", 0.05, first)
        service.schedule_once("deep_link", 0.05, second)
        await asyncio.sleep(0.3)

    _run_with_scheduler(body)
    assert ran == ["second"]


def test_cancelled_job_never_runs():
    ran = []

    async def body(service):
        async def job():
            ran.append("ran")

        service.schedule_once("organic", 0.05, job)
        service.cancel("organic")
        await asyncio.sleep(0.2)
        return service.list_pending()

    assert _run_with_scheduler(body) == {}
    assert ran == []


def test_failing_job_does_not_break_scheduler():
    ran = []

    async def body(service):
        async def broken():
            raise RuntimeError("boom")

        async def fine():
            ran.append("fine")

        service.schedule_once("broken", 0.01, broken)
        service.schedule_once("fine", 0.05, fine)
        await asyncio.sleep(0.3)

    _run_with_scheduler(body)
    assert ran == ["fine"]
