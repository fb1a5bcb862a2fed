# runway_client.py
import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from playwright.async_api import (
    Browser,
    ElementHandle,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

logger = logging.getLogger(__name__)

# Chromium flags needed inside containers
LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]


# ---- Errors ----

class RunwayError(Exception):
    pass


class AuthError(RunwayError):
    """Login sequence failed or did not land on an authenticated page."""


class NavigationError(RunwayError):
    pass


class ElementNotFound(RunwayError):
    def __init__(self, selector: str, timeout: Optional[float] = None):
        self.selector = selector
        self.timeout = timeout
        suffix = f" within {timeout:g}s" if timeout is not None else ""
        super().__init__(f"element not found{suffix}: {selector}")


class UploadError(RunwayError, IOError):
    pass


class WorkflowError(RunwayError):
    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"[{step}] {message}")


class GenerationTimeout(RunwayError, TimeoutError):
    pass


# ---- Driver contract ----

Target = Union[str, Any]


class ActuatorDriver(Protocol):
    """
    Coarse UI primitives against one browser page. Every blocking call takes an
    explicit timeout in seconds; waits that expire raise ElementNotFound or
    NavigationError.
    """

    @property
    def is_open(self) -> bool: ...

    @property
    def current_url(self) -> str: ...

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def navigate(self, url: str, *, timeout: float) -> None: ...

    async def find(self, selector: str, *, visible: bool = True, timeout: float) -> Any: ...

    async def query(self, selector: str) -> Optional[Any]: ...

    async def click(self, target: Target, *, timeout: float) -> None: ...

    async def click_and_wait_for_navigation(self, selector: str, *, timeout: float) -> None: ...

    async def type_text(self, target: Target, text: str, *, timeout: float) -> None: ...

    async def upload_file(self, handle: Any, path: Union[str, Path]) -> None: ...

    async def get_attribute(self, selector: str, name: str) -> Optional[str]: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def reload(self, *, timeout: float) -> None: ...


def _ms(seconds: float) -> float:
    return seconds * 1000


# ---- Playwright implementation ----

class RunwayBrowser:
    """Single Chromium page driving app.runwayml.com."""

    def __init__(self, *, headless: bool = True, default_timeout: float = 600):
        self.headless = headless
        self.default_timeout = default_timeout
        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None

    @property
    def is_open(self) -> bool:
        return self._page is not None and not self._page.is_closed()

    @property
    def current_url(self) -> str:
        return self._page.url if self._page else ""

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RunwayError("browser not started")
        return self._page

    async def start(self) -> None:
        if self.is_open:
            return
        logger.info("Launching browser (headless=%s)", self.headless)
        self._pw = await async_playwright().start()
        self._browser = await self._pw.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
        self._page = await self._browser.new_page()
        self._page.set_default_timeout(_ms(self.default_timeout))

    async def close(self) -> None:
        logger.info("Closing browser")
        try:
            if self._browser is not None:
                await self._browser.close()
            if self._pw is not None:
                await self._pw.stop()
        finally:
            self._browser = None
            self._page = None
            self._pw = None

    async def navigate(self, url: str, *, timeout: float) -> None:
        try:
            await self.page.goto(url, wait_until="networkidle", timeout=_ms(timeout))
        except PlaywrightError as e:
            raise NavigationError(f"navigation to {url} failed: {e}") from e

    async def find(self, selector: str, *, visible: bool = True, timeout: float) -> ElementHandle:
        state = "visible" if visible else "attached"
        try:
            handle = await self.page.wait_for_selector(selector, state=state, timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise ElementNotFound(selector, timeout) from e
        if handle is None:
            raise ElementNotFound(selector, timeout)
        return handle

    async def query(self, selector: str) -> Optional[ElementHandle]:
        return await self.page.query_selector(selector)

    async def click(self, target: Target, *, timeout: float) -> None:
        try:
            if isinstance(target, str):
                await self.page.click(target, timeout=_ms(timeout))
            else:
                await target.click(timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise ElementNotFound(str(target), timeout) from e

    async def click_and_wait_for_navigation(self, selector: str, *, timeout: float) -> None:
        try:
            async with self.page.expect_navigation(wait_until="networkidle", timeout=_ms(timeout)):
                await self.page.click(selector, timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"no navigation after clicking {selector}") from e

    async def type_text(self, target: Target, text: str, *, timeout: float) -> None:
        # contenteditable regions ignore fill(), so focus and type key by key
        await self.click(target, timeout=timeout)
        await self.page.keyboard.type(text)

    async def upload_file(self, handle: ElementHandle, path: Union[str, Path]) -> None:
        path = Path(path)
        if not path.is_file():
            raise UploadError(f"frame not found: {path}")
        try:
            await handle.set_input_files(str(path))
        except PlaywrightError as e:
            raise UploadError(f"upload of {path.name} failed: {e}") from e

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        handle = await self.page.query_selector(selector)
        if handle is None:
            return None
        return await handle.get_attribute(name)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def reload(self, *, timeout: float) -> None:
        try:
            await self.page.reload(wait_until="networkidle", timeout=_ms(timeout))
        except PlaywrightError as e:
            raise NavigationError(f"reload failed: {e}") from e
