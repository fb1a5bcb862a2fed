# main.py
# ------------------------------------------------------------------------------------
#  FastAPI service driving the Runway web app through one browser:
#  - POST /jobs           -> download frames, enqueue a render
#  - GET  /jobs/{id}      -> poll status (queued|processing|done|error)
#  - GET  /videos/{id}    -> video URL once the job succeeded
#  - GET  /videos         -> every job id -> video URL
#  - POST /admin/reset    -> drop pending jobs, invalidate the Runway session
#  Persistence:
#    * SQLModel + SQLite (runway_jobs.db) for job status and results
#  Execution:
#    * one worker, one browser page; jobs run strictly in submission order
# ------------------------------------------------------------------------------------

import os
import uuid
import logging
from pathlib import Path
from typing import Dict, List, Literal, Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from job_queue import Engine, Job, discard_frames
from job_store import JobStore, make_engine
from orchestrator import Orchestrator
from runway_client import RunwayBrowser
from settings import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(settings.upload_dir)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

# ---------------- DB setup ----------------
engine = make_engine(settings.database_url)
store = JobStore(engine)

_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="orchestrator not running")
    return _orchestrator


def get_store() -> JobStore:
    return store


def check_api_key(x_api_key: Optional[str] = Header(default=None)):
    if not settings.secret_key or x_api_key != settings.secret_key:
        raise HTTPException(status_code=403, detail="Authentication failed. Invalid API key.")


# ------------- FastAPI app --------------
app = FastAPI(title="Runway Orchestrator API", version="0.3.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _on_startup():
    global _orchestrator
    store.init_db()
    browser = RunwayBrowser(headless=settings.headless, default_timeout=settings.step_timeout_sec)
    _orchestrator = Orchestrator(browser, store, settings)
    await _orchestrator.start()


@app.on_event("shutdown")
async def _on_shutdown():
    if _orchestrator is not None:
        await _orchestrator.stop()


# ---------- Schemas ----------
class CreateJobRequest(BaseModel):
    first_frame_url: str = Field(..., description="First frame image URL")
    last_frame_url: Optional[str] = Field(None, description="Optional last frame image URL")
    engine: Engine = Field(Engine.GEN3_TURBO, description="gen3_turbo or gen3")
    prompt: str = Field(..., min_length=1, description="Text prompt")
    duration: Optional[Literal[5, 10]] = Field(None, description="Clip length in seconds")

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("prompt must not be blank")
        return v


class CreateJobResponse(BaseModel):
    id: str
    status: str
    position: int


class GetJobResponse(BaseModel):
    id: str
    status: str
    video_url: Optional[str] = None
    error: Optional[str] = None


class VideoResponse(BaseModel):
    id: str
    video_url: str


class ResetResponse(BaseModel):
    message: str
    dropped: int


# ---------- Health ----------
@app.get("/health")
def health():
    running = _orchestrator is not None
    return {
        "ok": True,
        "logged_in": running and _orchestrator.session.authenticated,
        "queued": len(_orchestrator.queue) if running else 0,
    }


# ---------- Helpers ----------
async def _download_frame(client: httpx.AsyncClient, url: str) -> Path:
    """Save a frame image under UPLOAD_DIR, keeping the URL's extension when it has one."""
    suffix = os.path.splitext(httpx.URL(url).path)[1] or ".png"
    path = UPLOAD_DIR / f"{uuid.uuid4().hex}{suffix}"
    r = await client.get(url)
    r.raise_for_status()
    path.write_bytes(r.content)
    return path


# ---------- Jobs ----------
@app.post("/jobs", response_model=CreateJobResponse, dependencies=[Depends(check_api_key)])
async def create_job(payload: CreateJobRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    urls = [payload.first_frame_url]
    if payload.last_frame_url:
        urls.append(payload.last_frame_url)

    frames: List[Path] = []
    timeout = httpx.Timeout(settings.download_timeout_sec, connect=10.0)
    async with httpx.AsyncClient(follow_redirects=True, timeout=timeout) as client:
        try:
            for url in urls:
                frames.append(await _download_frame(client, url))
        except httpx.HTTPError as e:
            logger.error("Error downloading frames: %s", e)
            discard_frames(frames)
            raise HTTPException(status_code=502, detail="Failed to download files")

    try:
        job = Job(
            frames=tuple(frames),
            engine=payload.engine,
            prompt=payload.prompt,
            duration=payload.duration,
        )
    except ValueError as e:
        discard_frames(frames)
        raise HTTPException(status_code=422, detail=str(e))

    try:
        position = orchestrator.submit(job)
    except Exception:
        discard_frames(frames)
        raise
    return CreateJobResponse(id=job.id, status="queued", position=position)


@app.get("/jobs/{job_id}", response_model=GetJobResponse, dependencies=[Depends(check_api_key)])
def get_job(job_id: str, job_store: JobStore = Depends(get_store)):
    record = job_store.get_record(job_id)
    if not record:
        raise HTTPException(status_code=404, detail="job not found")
    return GetJobResponse(id=record.id, status=record.status, video_url=record.video_url, error=record.error)


@app.get("/videos/{job_id}", response_model=VideoResponse, dependencies=[Depends(check_api_key)])
def get_video(job_id: str, job_store: JobStore = Depends(get_store)):
    video_url = job_store.get(job_id)
    if not video_url:
        raise HTTPException(status_code=404, detail="Video not found")
    return VideoResponse(id=job_id, video_url=video_url)


@app.get("/videos", response_model=Dict[str, str], dependencies=[Depends(check_api_key)])
def get_all_videos(job_store: JobStore = Depends(get_store)):
    return job_store.get_all()


# ---------- Admin ----------
@app.post("/admin/reset", response_model=ResetResponse, dependencies=[Depends(check_api_key)])
async def reset(close_session: Optional[bool] = None, orchestrator: Orchestrator = Depends(get_orchestrator)):
    dropped = await orchestrator.reset(close_session=close_session)
    return ResetResponse(message="Project reset successfully", dropped=len(dropped))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
