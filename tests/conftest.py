"""Shared test fixtures: a scriptable browser driver and a virtual clock."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import pytest

from job_queue import Engine, Job
from job_store import JobStore, make_engine
from runway_client import ElementNotFound, UploadError
from settings import Settings
from workflow import Selectors

SELECTORS = Selectors()
LOGIN_URL = "https://app.runwayml.com/login"
LANDING_URL = "https://app.runwayml.com/video-tools/teams/demo/dashboard"
VIDEO_URL = "https://cdn.runway.test/renders/cat.mp4"


class FakeClock:
    """Monotonic clock whose sleep() just moves time forward."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@dataclass(frozen=True)
class FakeHandle:
    selector: str


@dataclass
class FakeDriver:
    """In-memory stand-in for RunwayBrowser.

    A selector is on the page when it is in ``present`` or when its entry in
    ``when`` returns True for the current clock time. ``on_click`` callbacks
    let a test change the page in reaction to a click.
    """

    clock: Callable[[], float] = lambda: 0.0
    present: set[str] = field(default_factory=set)
    when: dict[str, Callable[[float], bool]] = field(default_factory=dict)
    attributes: dict[tuple[str, str], str] = field(default_factory=dict)
    on_click: dict[str, Callable[[], None]] = field(default_factory=dict)
    landing_url: str = LANDING_URL
    reload_error: Exception | None = None
    calls: list[tuple] = field(default_factory=list)
    is_open: bool = False
    current_url: str = "about:blank"

    def visible(self, selector: str) -> bool:
        if selector in self.present:
            return True
        predicate = self.when.get(selector)
        return bool(predicate and predicate(self.clock()))

    def clicks(self, selector: str) -> int:
        return sum(1 for call in self.calls if call == ("click", selector))

    async def start(self) -> None:
        self.calls.append(("start",))
        self.is_open = True

    async def close(self) -> None:
        self.calls.append(("close",))
        self.is_open = False

    async def navigate(self, url: str, *, timeout: float) -> None:
        self.calls.append(("navigate", url))
        self.current_url = url

    async def find(self, selector: str, *, visible: bool = True, timeout: float) -> FakeHandle:
        self.calls.append(("find", selector))
        if not self.visible(selector):
            raise ElementNotFound(selector, timeout)
        return FakeHandle(selector)

    async def query(self, selector: str) -> FakeHandle | None:
        return FakeHandle(selector) if self.visible(selector) else None

    async def click(self, target, *, timeout: float) -> None:
        selector = getattr(target, "selector", target)
        if not self.visible(selector):
            raise ElementNotFound(selector, timeout)
        self.calls.append(("click", selector))
        effect = self.on_click.get(selector)
        if effect:
            effect()

    async def click_and_wait_for_navigation(self, selector: str, *, timeout: float) -> None:
        self.calls.append(("submit", selector))
        self.current_url = self.landing_url

    async def type_text(self, target, text: str, *, timeout: float) -> None:
        self.calls.append(("type", getattr(target, "selector", target), text))

    async def upload_file(self, handle, path) -> None:
        if not Path(path).is_file():
            raise UploadError(f"frame not found: {path}")
        self.calls.append(("upload", str(path)))

    async def get_attribute(self, selector: str, name: str) -> str | None:
        if not self.visible(selector):
            return None
        return self.attributes.get((selector, name))

    async def evaluate(self, script: str, arg=None):
        return None

    async def reload(self, *, timeout: float) -> None:
        self.calls.append(("reload",))
        if self.reload_error is not None:
            raise self.reload_error


def ready_page(clock: Callable[[], float] = lambda: 0.0) -> FakeDriver:
    """A page where every workflow control exists; the video is not rendered yet."""
    present = {
        SELECTORS.model_picker,
        SELECTORS.model_option(Engine.GEN3_TURBO.label),
        SELECTORS.model_option(Engine.GEN3.label),
        SELECTORS.file_input,
        SELECTORS.cropper,
        SELECTORS.crop_button,
        SELECTORS.last_frame_button,
        SELECTORS.prompt_input,
        SELECTORS.duration_picker,
        SELECTORS.menu_item,
        SELECTORS.duration_option(5),
        SELECTORS.duration_option(10),
        SELECTORS.generate_button,
    }
    return FakeDriver(
        clock=clock,
        present=present,
        attributes={(SELECTORS.video_source, "src"): VIDEO_URL},
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def driver(clock: FakeClock) -> FakeDriver:
    return ready_page(clock)


@pytest.fixture()
def config(tmp_path: Path) -> Settings:
    return Settings(
        runway_email="bot@example.com",
        runway_password="hunter2",
        runway_team="demo",
        database_url=f"sqlite:///{tmp_path / 'jobs.db'}",
        upload_dir=str(tmp_path / "uploads"),
        secret_key="test-key",
        reset_close_session=False,
    )


@pytest.fixture()
def store(config: Settings) -> JobStore:
    job_store = JobStore(make_engine(config.database_url))
    job_store.init_db()
    return job_store


@pytest.fixture()
def frame(tmp_path: Path) -> Path:
    path = tmp_path / "first.png"
    path.write_bytes(b"\x89PNG fake")
    return path


@pytest.fixture()
def make_job(tmp_path: Path):
    """Each job gets its own frame file, since finished jobs delete theirs."""
    counter = iter(range(1_000_000))

    def _make(**overrides) -> Job:
        if "frames" not in overrides:
            path = tmp_path / f"frame-{next(counter)}.png"
            path.write_bytes(b"\x89PNG fake")
            overrides["frames"] = (path,)
        fields = {"engine": Engine.GEN3_TURBO, "prompt": "cat", "duration": None}
        fields.update(overrides)
        return Job(**fields)

    return _make
