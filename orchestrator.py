# orchestrator.py
import asyncio
import logging
import time
from typing import List, Optional, Set

from job_queue import Job, JobQueue, discard_frames
from job_store import JobStore
from runway_client import ActuatorDriver, RunwayError
from session import IdleWatchdog, SessionManager
from settings import Settings
from workflow import VideoWorkflow

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Runs queued jobs one at a time against the single Runway browser.

    The worker holds `actuator_lock` for a whole job; the idle watchdog takes
    the same lock for each refresh, so the two never touch the page together.
    """

    def __init__(self, driver: ActuatorDriver, store: JobStore, config: Settings, *,
                 workflow: Optional[VideoWorkflow] = None,
                 clock=time.monotonic, sleep=asyncio.sleep):
        self.driver = driver
        self.store = store
        self.config = config
        self.queue = JobQueue()
        self.actuator_lock = asyncio.Lock()
        self.session = SessionManager(
            driver,
            login_url=config.login_url,
            email=config.runway_email,
            password=config.runway_password,
            step_timeout=config.step_timeout_sec,
            clock=clock,
        )
        self.workflow = workflow or VideoWorkflow(
            driver,
            self.session,
            tool_url=config.tool_url,
            step_timeout=config.step_timeout_sec,
            poll_interval=config.poll_interval_sec,
            completion_ceiling=config.completion_ceiling_sec,
            queued_timeout=config.queued_timeout_sec,
            crop_interval=config.crop_poll_interval_sec,
            crop_attempts=config.crop_max_attempts,
            retrigger_timeout=config.retrigger_timeout_sec,
            clock=clock,
            sleep=sleep,
        )
        self.watchdog = IdleWatchdog(
            self.session,
            is_idle=self.queue.is_idle,
            lock=self.actuator_lock,
            threshold=config.idle_threshold_sec,
            interval=config.watchdog_interval_sec,
            clock=clock,
            sleep=sleep,
        )
        self._tasks: Set[asyncio.Task] = set()

    # ---------- Lifecycle ----------

    async def start(self, *, login: bool = True, watchdog: bool = True):
        if login:
            # a failed startup login is retried by the first job
            try:
                await self.session.ensure_session()
            except RunwayError:
                logger.exception("Startup login failed")
        self._spawn(self._run_worker(), "worker")
        if watchdog:
            self._spawn(self.watchdog.run(), "idle-watchdog")

    async def stop(self):
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self.driver.is_open:
            await self.driver.close()

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)

        def _finished(t: asyncio.Task):
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("Background task %s died", name, exc_info=t.exception())

        task.add_done_callback(_finished)
        return task

    # ---------- Jobs ----------

    def submit(self, job: Job) -> int:
        """Record and enqueue a job; returns its queue position."""
        self.store.create(job)
        return self.queue.submit(job)

    async def _run_worker(self):
        while True:
            job = await self.queue.next()
            try:
                await self.execute(job)
            except Exception:
                # the store itself failed; the next job must still run
                logger.exception("Could not record outcome of job %s", job.id)
            finally:
                self.queue.complete(job.id)
                discard_frames(job.frames)

    async def execute(self, job: Job):
        """Run one job to a terminal state and record exactly one outcome."""
        logger.info("Processing job %s (%s)", job.id, job.engine.value)
        try:
            self.store.mark_processing(job.id)
            async with self.actuator_lock:
                video_url = await self.workflow.run(job)
            self.store.put(job.id, video_url)
        except RunwayError as e:
            logger.error("Job %s failed: %s", job.id, e)
            self.store.mark_failed(job.id, str(e))
        except Exception as e:
            logger.exception("Job %s crashed", job.id)
            self.store.mark_failed(job.id, f"{type(e).__name__}: {e}")
        else:
            logger.info("Job %s done: %s", job.id, video_url)

    async def join(self):
        await self.queue.wait_idle()

    # ---------- Admin ----------

    async def reset(self, *, close_session: Optional[bool] = None) -> List[Job]:
        """
        Drop pending jobs and invalidate the session. A running job is left to
        finish; with close_session the browser is closed once it releases the
        actuator.
        """
        if close_session is None:
            close_session = self.config.reset_close_session
        dropped = self.queue.reset()
        for job in dropped:
            discard_frames(job.frames)
            try:
                self.store.mark_failed(job.id, "cancelled by reset")
            except Exception:
                logger.exception("Could not record cancellation of job %s", job.id)
        await self.session.invalidate()
        if close_session:
            self._spawn(self._close_when_free(), "reset-close")
        return dropped

    async def _close_when_free(self):
        async with self.actuator_lock:
            try:
                await self.session.invalidate(close=True)
            except Exception:
                logger.exception("Closing browser after reset failed")
