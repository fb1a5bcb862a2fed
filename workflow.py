# workflow.py
import asyncio
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass

from job_queue import Job
from poller import BoundedPoller, CompletionPoller, PollTimeout
from runway_client import (
    ActuatorDriver,
    ElementNotFound,
    NavigationError,
    UploadError,
    WorkflowError,
)
from session import SessionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selectors:
    """Playwright selectors for the Runway generative-video page."""

    model_picker: str = 'button[data-testid="select-base-model"]'
    menu_item: str = 'div[role="menuitem"]'
    file_input: str = 'input[type="file"]'
    cropper: str = "div.advanced-cropper-draggable-element.advanced-cropper-rectangle-stencil__draggable-area"
    crop_button: str = 'span:text-is("Crop")'
    last_frame_button: str = 'button:has-text("Last")'
    prompt_input: str = 'div[contenteditable="true"][aria-label="Text Prompt Input"]'
    duration_picker: str = 'button:has(svg[xmlns="http://www.w3.org/2000/svg"])'
    generate_button: str = 'span:text-is("Generate")'
    ready_message: str = "span:text-is(\"You're ready to generate.\")"
    queued_message: str = 'span:text-is("Your video is in queue and will start in a few minutes.")'
    video: str = "video"
    video_source: str = "video source"

    def model_option(self, label: str) -> str:
        return f'{self.menu_item}:has-text("{label}")'

    def duration_option(self, seconds: int) -> str:
        return f'{self.menu_item}:text-is("{seconds} seconds")'


@contextmanager
def step(name: str):
    logger.info("Step %s", name)
    try:
        yield
    except (ElementNotFound, NavigationError) as e:
        raise WorkflowError(name, str(e)) from e


class VideoWorkflow:
    """
    Drives one job through the Runway UI and returns the video URL.

    Optional last frame and duration only add steps; there is a single code
    path for every job shape. Steps are never retried here, the only retry
    policy is the completion poller pressing Generate again.
    """

    def __init__(self, driver: ActuatorDriver, session: SessionManager, *, tool_url: str,
                 step_timeout: float = 600, poll_interval: float = 5,
                 completion_ceiling: float = 1200, queued_timeout: float = 300,
                 crop_interval: float = 0.5, crop_attempts: int = 2000,
                 retrigger_timeout: float = 10, selectors: Selectors = Selectors(),
                 clock=time.monotonic, sleep=asyncio.sleep):
        self._driver = driver
        self._session = session
        self.tool_url = tool_url
        self.step_timeout = step_timeout
        self.poll_interval = poll_interval
        self.completion_ceiling = completion_ceiling
        self.queued_timeout = queued_timeout
        self.crop_interval = crop_interval
        self.crop_attempts = crop_attempts
        self.retrigger_timeout = retrigger_timeout
        self.selectors = selectors
        self._clock = clock
        self._sleep = sleep

    async def run(self, job: Job) -> str:
        self._check_frames(job)

        await self._session.ensure_session()
        await self.select_engine(job)

        await self.upload_frame(job.first_frame, "upload-first-frame")
        await self.crop()
        if job.last_frame is not None:
            with step("append-last-frame"):
                await self._driver.find(self.selectors.last_frame_button, timeout=self.step_timeout)
                await self._driver.click(self.selectors.last_frame_button, timeout=self.step_timeout)
            await self.upload_frame(job.last_frame, "upload-last-frame")
            await self.crop()

        with step("enter-prompt"):
            await self._driver.find(self.selectors.prompt_input, timeout=self.step_timeout)
            await self._driver.type_text(self.selectors.prompt_input, job.prompt, timeout=self.step_timeout)

        if job.duration is not None:
            await self.set_duration(job.duration)

        with step("generate"):
            await self._driver.click(self.selectors.generate_button, timeout=self.step_timeout)

        with step("await-artifact"):
            video_url = await self._completion_poller().wait_for_artifact()
        self._session.touch()
        return video_url

    def _check_frames(self, job: Job):
        for frame in job.frames:
            if not frame.is_file() or not os.access(frame, os.R_OK):
                raise UploadError(f"frame not readable: {frame}")

    async def select_engine(self, job: Job):
        with step("select-engine"):
            await self._driver.navigate(self.tool_url, timeout=self.step_timeout)
            await self._driver.find(self.selectors.model_picker, timeout=self.step_timeout)
            await self._driver.click(self.selectors.model_picker, timeout=self.step_timeout)
            option = await self._driver.find(
                self.selectors.model_option(job.engine.label), timeout=self.step_timeout
            )
            await self._driver.click(option, timeout=self.step_timeout)
        logger.info("Model %s selected", job.engine.label)

    async def upload_frame(self, path, name: str):
        with step(name):
            handle = await self._driver.find(self.selectors.file_input, visible=False, timeout=self.step_timeout)
            await self._driver.upload_file(handle, path)

    async def crop(self) -> bool:
        """Confirm the crop dialog if it shows up; a missing cropper is not fatal."""
        poller = BoundedPoller(
            interval=self.crop_interval,
            ceiling=self.crop_interval * max(self.crop_attempts - 1, 0),
            clock=self._clock,
            sleep=self._sleep,
        )

        async def _cropper_visible(_elapsed):
            return True if await self._driver.query(self.selectors.cropper) is not None else None

        try:
            await poller.run(_cropper_visible)
        except PollTimeout:
            logger.warning("Crop stage did not appear, continuing without cropping")
            return False

        crop_button = await self._driver.query(self.selectors.crop_button)
        if crop_button is None:
            logger.warning("Crop button not found, continuing without cropping")
            return False
        with step("crop"):
            await self._driver.click(crop_button, timeout=self.step_timeout)
        return True

    async def set_duration(self, seconds: int) -> bool:
        with step("set-duration"):
            await self._driver.find(self.selectors.duration_picker, timeout=self.step_timeout)
            await self._driver.click(self.selectors.duration_picker, timeout=self.step_timeout)
            await self._driver.find(self.selectors.menu_item, timeout=self.step_timeout)
            option = await self._driver.query(self.selectors.duration_option(seconds))
            if option is None:
                logger.warning("Menu item for %d seconds not found, keeping default duration", seconds)
                return False
            await self._driver.click(option, timeout=self.step_timeout)
        logger.info("Duration set to %d seconds", seconds)
        return True

    async def trigger_generation(self):
        """Best-effort press of Generate used by the completion poller."""
        button = await self._driver.query(self.selectors.generate_button)
        if button is None:
            logger.warning("Generate button not found, cannot re-trigger")
            return
        try:
            await self._driver.click(button, timeout=self.retrigger_timeout)
        except ElementNotFound:
            logger.warning("Generate button not clickable, cannot re-trigger")

    def _completion_poller(self) -> CompletionPoller:
        return CompletionPoller(
            self._driver,
            self.selectors,
            trigger=self.trigger_generation,
            interval=self.poll_interval,
            ceiling=self.completion_ceiling,
            queued_timeout=self.queued_timeout,
            clock=self._clock,
            sleep=self._sleep,
        )
