# session.py
import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from runway_client import ActuatorDriver, AuthError, RunwayError

logger = logging.getLogger(__name__)

USERNAME_INPUT = 'input[name="usernameOrEmail"]'
PASSWORD_INPUT = 'input[name="password"]'
SUBMIT_BUTTON = 'button[type="submit"]'


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOGGING_IN = "logging_in"
    AUTHENTICATED = "authenticated"
    INVALIDATED = "invalidated"


class SessionManager:
    """Owns the browser lifecycle and the Runway login state."""

    def __init__(self, driver: ActuatorDriver, *, login_url: str, email: str, password: str,
                 step_timeout: float, clock: Callable[[], float] = time.monotonic):
        self._driver = driver
        self.login_url = login_url
        self._email = email
        self._password = password
        self.step_timeout = step_timeout
        self._clock = clock
        self.state = SessionState.UNINITIALIZED
        self.last_activity: Optional[float] = None

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def touch(self):
        self.last_activity = self._clock()

    async def ensure_session(self):
        if self.authenticated and self._driver.is_open:
            return
        if not self._email or not self._password:
            raise AuthError("RUNWAY_EMAIL / RUNWAY_PASSWORD not set")

        fallback = SessionState.UNINITIALIZED if self.last_activity is None else SessionState.INVALIDATED
        self.state = SessionState.LOGGING_IN
        try:
            await asyncio.wait_for(self._login(), timeout=self.step_timeout)
        except asyncio.TimeoutError as e:
            self.state = fallback
            raise AuthError(f"login did not finish within {self.step_timeout:g}s") from e
        except AuthError:
            self.state = fallback
            raise
        except RunwayError as e:
            self.state = fallback
            raise AuthError(f"login failed: {e}") from e

        self.touch()
        if self.state is SessionState.INVALIDATED:
            # reset arrived mid-login: this job keeps the page, the next one logs in again
            logger.info("Session invalidated during login, not marking authenticated")
            return
        self.state = SessionState.AUTHENTICATED
        logger.info("Login successful")

    async def _login(self):
        if not self._driver.is_open:
            await self._driver.start()
        logger.info("Navigating to login page...")
        await self._driver.navigate(self.login_url, timeout=self.step_timeout)
        await self._driver.type_text(USERNAME_INPUT, self._email, timeout=self.step_timeout)
        await self._driver.type_text(PASSWORD_INPUT, self._password, timeout=self.step_timeout)
        await self._driver.click_and_wait_for_navigation(SUBMIT_BUTTON, timeout=self.step_timeout)
        if self._on_login_page():
            raise AuthError("still on the login page after submitting credentials")

    def _on_login_page(self) -> bool:
        return self._driver.current_url.rstrip("/").startswith(self.login_url.rstrip("/"))

    async def invalidate(self, *, close: bool = False):
        self.state = SessionState.INVALIDATED
        if close and self._driver.is_open:
            await self._driver.close()
        logger.info("Session invalidated (browser closed=%s)", close)

    async def refresh(self):
        """Reload whatever page is open so Runway sees activity."""
        if not self._driver.is_open:
            logger.info("No browser open, skipping refresh")
            return
        await self._driver.reload(timeout=self.step_timeout)
        self.touch()
        if self._on_login_page():
            logger.warning("Refresh landed on the login page, session expired")
            self.state = SessionState.INVALIDATED
        else:
            logger.info("Page refreshed successfully")


class IdleWatchdog:
    """
    Refreshes the session once the queue has been empty for `threshold`
    seconds, then starts counting again. Any tick that sees work resets the
    idle clock.
    """

    def __init__(self, session: SessionManager, *, is_idle: Callable[[], bool], lock: asyncio.Lock,
                 threshold: float, interval: float,
                 clock: Callable[[], float] = time.monotonic, sleep=asyncio.sleep):
        self._session = session
        self._is_idle = is_idle
        self._lock = lock
        self.threshold = threshold
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self.idle_since: Optional[float] = None
        self.refreshes = 0

    async def run(self):
        while True:
            await self._sleep(self.interval)
            await self.tick()

    async def tick(self) -> bool:
        """One watchdog check; returns True when a refresh was attempted."""
        if not self._is_idle():
            self.idle_since = None
            return False
        now = self._clock()
        if self.idle_since is None:
            self.idle_since = now
            return False
        if now - self.idle_since < self.threshold:
            return False

        async with self._lock:
            # a job may have arrived while we waited for the actuator
            if not self._is_idle():
                self.idle_since = None
                return False
            logger.info("Queue empty for %.0fs, refreshing the page", now - self.idle_since)
            try:
                await self._session.refresh()
            except Exception:
                logger.exception("Idle refresh failed")
            finally:
                self.refreshes += 1
                self.idle_since = None
        return True
