# poller.py
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from runway_client import ActuatorDriver, GenerationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class PollTimeout(Exception):
    pass


class BoundedPoller(Generic[T]):
    """
    Calls tick(elapsed) every `interval` seconds until it returns something
    other than None. Raises PollTimeout once the next tick would land past
    `ceiling`.
    """

    def __init__(self, *, interval: float, ceiling: float,
                 clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        self.interval = interval
        self.ceiling = ceiling
        self._clock = clock
        self._sleep = sleep

    async def run(self, tick: Callable[[float], Awaitable[Optional[T]]]) -> T:
        started = self._clock()
        while True:
            elapsed = self._clock() - started
            result = await tick(elapsed)
            if result is not None:
                return result
            if elapsed + self.interval > self.ceiling:
                raise PollTimeout(f"nothing after {elapsed:g}s (ceiling {self.ceiling:g}s)")
            await self._sleep(self.interval)


@dataclass
class PollState:
    elapsed: float = 0.0
    queued_since: Optional[float] = None
    ready_triggered: bool = False


class CompletionPoller:
    """
    Waits for the generated video on the Runway page.

    Runway has no callback channel, so every tick probes the page for:
      * the <video> element  -> done, return its source URL
      * "You're ready to generate." -> press Generate again, once per job
      * the queue banner     -> press Generate again once it sat there
                                uninterrupted for longer than queued_timeout
    """

    def __init__(self, driver: ActuatorDriver, selectors, *, trigger: Callable[[], Awaitable[None]],
                 interval: float, ceiling: float, queued_timeout: float,
                 clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        self._driver = driver
        self._selectors = selectors
        self._trigger = trigger
        self.queued_timeout = queued_timeout
        self._poller: BoundedPoller[str] = BoundedPoller(
            interval=interval, ceiling=ceiling, clock=clock, sleep=sleep
        )

    async def wait_for_artifact(self) -> str:
        state = PollState()
        try:
            return await self._poller.run(lambda elapsed: self.tick(state, elapsed))
        except PollTimeout as e:
            raise GenerationTimeout("artifact not produced") from e

    async def tick(self, state: PollState, elapsed: float) -> Optional[str]:
        state.elapsed = elapsed

        reference = await self._artifact_reference()
        if reference:
            logger.info("Video ready after %.0fs: %s", elapsed, reference)
            return reference

        if not state.ready_triggered and await self._present(self._selectors.ready_message):
            state.ready_triggered = True
            logger.info("Ready-to-generate message shown, pressing Generate once")
            await self._trigger()

        if await self._present(self._selectors.queued_message):
            if state.queued_since is None:
                state.queued_since = elapsed
                logger.info("Generation queued by Runway, tracking time")
            elif elapsed - state.queued_since > self.queued_timeout:
                logger.warning("Queued for more than %.0fs, pressing Generate again", self.queued_timeout)
                await self._trigger()
                state.queued_since = elapsed
        else:
            state.queued_since = None

        logger.debug("No video yet (%.0fs)", elapsed)
        return None

    async def _present(self, selector: str) -> bool:
        return await self._driver.query(selector) is not None

    async def _artifact_reference(self) -> Optional[str]:
        if not await self._present(self._selectors.video):
            return None
        for selector in (self._selectors.video_source, self._selectors.video):
            src = await self._driver.get_attribute(selector, "src")
            if src:
                return src
        # element rendered before its source was attached
        logger.debug("Video element has no source yet")
        return None
