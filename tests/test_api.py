from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from job_store import JobStore
from orchestrator import Orchestrator
from settings import Settings
from tests.conftest import FakeDriver

HEADERS = {"x-api-key": "test-key"}


@pytest.fixture()
def orchestrator(driver: FakeDriver, store: JobStore, config: Settings) -> Orchestrator:
    return Orchestrator(driver, store, config)


@pytest.fixture()
def client(monkeypatch, orchestrator: Orchestrator, store: JobStore, tmp_path: Path):
    monkeypatch.setattr(main.settings, "secret_key", "test-key")
    monkeypatch.setattr(main, "UPLOAD_DIR", tmp_path)

    async def fake_download(_client, url: str) -> Path:
        if "missing" in url:
            raise httpx.HTTPStatusError("404", request=httpx.Request("GET", url), response=httpx.Response(404))
        path = tmp_path / Path(url).name
        path.write_bytes(b"png")
        return path

    monkeypatch.setattr(main, "_download_frame", fake_download)
    main.app.dependency_overrides[main.get_orchestrator] = lambda: orchestrator
    main.app.dependency_overrides[main.get_store] = lambda: store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def test_requests_without_api_key_are_rejected(client: TestClient) -> None:
    assert client.get("/videos").status_code == 403
    assert client.get("/videos", headers={"x-api-key": "nope"}).status_code == 403
    assert client.get("/health").status_code == 200


def test_create_job_enqueues_and_reports_status(client: TestClient, orchestrator: Orchestrator) -> None:
    resp = client.post(
        "/jobs",
        json={"first_frame_url": "https://img/a.png", "engine": "gen3", "prompt": "cat", "duration": 5},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "queued"
    assert body["position"] == 0

    job = orchestrator.queue.peek()
    assert job.id == body["id"]
    assert job.duration == 5
    assert job.last_frame is None

    status = client.get(f"/jobs/{body['id']}", headers=HEADERS).json()
    assert status == {"id": body["id"], "status": "queued", "video_url": None, "error": None}
    assert client.get(f"/videos/{body['id']}", headers=HEADERS).status_code == 404


def test_create_job_with_last_frame(client: TestClient, orchestrator: Orchestrator) -> None:
    resp = client.post(
        "/jobs",
        json={"first_frame_url": "https://img/a.png", "last_frame_url": "https://img/b.png", "prompt": "dog"},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    job = orchestrator.queue.peek()
    assert [p.name for p in job.frames] == ["a.png", "b.png"]


def test_invalid_duration_is_rejected(client: TestClient) -> None:
    resp = client.post(
        "/jobs",
        json={"first_frame_url": "https://img/a.png", "prompt": "cat", "duration": 7},
        headers=HEADERS,
    )
    assert resp.status_code == 422


def test_download_failure_enqueues_nothing(client: TestClient, orchestrator: Orchestrator) -> None:
    resp = client.post(
        "/jobs",
        json={"first_frame_url": "https://img/missing.png", "prompt": "cat"},
        headers=HEADERS,
    )
    assert resp.status_code == 502
    assert orchestrator.queue.is_empty()


def test_videos_lookup(client: TestClient, store: JobStore) -> None:
    store.put("abc", "https://cdn/abc.mp4")
    assert client.get("/videos/abc", headers=HEADERS).json() == {"id": "abc", "video_url": "https://cdn/abc.mp4"}
    assert client.get("/videos", headers=HEADERS).json() == {"abc": "https://cdn/abc.mp4"}
    assert client.get("/jobs/nope", headers=HEADERS).status_code == 404


def test_reset_drops_queued_jobs(client: TestClient, orchestrator: Orchestrator, store: JobStore) -> None:
    created = client.post(
        "/jobs", json={"first_frame_url": "https://img/a.png", "prompt": "cat"}, headers=HEADERS
    ).json()

    resp = client.post("/admin/reset", headers=HEADERS)
    assert resp.json() == {"message": "Project reset successfully", "dropped": 1}
    assert orchestrator.queue.is_empty()
    assert store.get_record(created["id"]).status == "error"


def test_blank_prompt_is_rejected_before_download(
    client: TestClient, orchestrator: Orchestrator, monkeypatch, tmp_path: Path
) -> None:
    downloads = []

    async def counting_download(_client, url: str) -> Path:
        downloads.append(url)
        return tmp_path / "never.png"

    monkeypatch.setattr(main, "_download_frame", counting_download)
    resp = client.post(
        "/jobs", json={"first_frame_url": "https://img/a.png", "prompt": "   "}, headers=HEADERS
    )
    assert resp.status_code == 422
    assert downloads == []
    assert orchestrator.queue.is_empty()


def test_prompt_is_stripped(client: TestClient, orchestrator: Orchestrator) -> None:
    resp = client.post(
        "/jobs", json={"first_frame_url": "https://img/a.png", "prompt": "  cat  "}, headers=HEADERS
    )
    assert resp.status_code == 200
    assert orchestrator.queue.peek().prompt == "cat"


def test_failed_last_frame_download_removes_first_frame(
    client: TestClient, orchestrator: Orchestrator, tmp_path: Path
) -> None:
    resp = client.post(
        "/jobs",
        json={"first_frame_url": "https://img/a.png", "last_frame_url": "https://img/missing.png", "prompt": "cat"},
        headers=HEADERS,
    )
    assert resp.status_code == 502
    assert not (tmp_path / "a.png").exists()
    assert orchestrator.queue.is_empty()
