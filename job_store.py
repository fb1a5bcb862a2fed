# job_store.py
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlmodel import SQLModel, Field, Session, create_engine, select

from job_queue import Job

logger = logging.getLogger(__name__)


class ResultConflictError(RuntimeError):
    pass


class JobRecord(SQLModel, table=True):
    id: str = Field(primary_key=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    engine: str
    prompt: str
    duration: Optional[int] = None
    status: str = "queued"  # queued|processing|done|error
    video_url: Optional[str] = None
    error: Optional[str] = None


def make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


class JobStore:
    """
    Durable job status plus the job id -> video URL result map.

    A video URL is written at most once per job; writing the same value again
    is a no-op, writing a different one raises ResultConflictError.
    """

    def __init__(self, engine):
        self._engine = engine

    def init_db(self):
        SQLModel.metadata.create_all(self._engine)

    def create(self, job: Job) -> JobRecord:
        record = JobRecord(
            id=job.id,
            engine=job.engine.value,
            prompt=job.prompt,
            duration=job.duration,
        )
        with Session(self._engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        return record

    def get_record(self, job_id: str) -> Optional[JobRecord]:
        with Session(self._engine) as session:
            return session.get(JobRecord, job_id)

    def mark_processing(self, job_id: str):
        self._update(job_id, status="processing")

    def mark_failed(self, job_id: str, error: str):
        record = self.get_record(job_id)
        if record is not None and record.status == "done":
            logger.warning("Job %s already succeeded, not recording failure: %s", job_id, error)
            return
        self._update(job_id, status="error", error=error)

    # ---------- Result store ----------

    def put(self, job_id: str, video_url: str):
        with Session(self._engine) as session:
            record = session.get(JobRecord, job_id)
            if record is None:
                # job submitted outside this store; keep the result anyway
                record = JobRecord(id=job_id, engine="", prompt="")
            elif record.video_url is not None:
                if record.video_url == video_url:
                    return
                raise ResultConflictError(
                    f"job {job_id} already has {record.video_url}, refusing {video_url}"
                )
            record.video_url = video_url
            record.status = "done"
            record.error = None
            session.add(record)
            session.commit()
        logger.info("Stored result for job %s", job_id)

    def get(self, job_id: str) -> Optional[str]:
        record = self.get_record(job_id)
        if not record or record.status != "done":
            return None
        return record.video_url

    def get_all(self) -> Dict[str, str]:
        with Session(self._engine) as session:
            rows = session.exec(
                select(JobRecord).where(JobRecord.status == "done").order_by(JobRecord.created_at)
            ).all()
            return {row.id: row.video_url for row in rows if row.video_url}

    def _update(self, job_id: str, **kwargs):
        with Session(self._engine) as session:
            record = session.get(JobRecord, job_id)
            if not record:
                return
            for k, v in kwargs.items():
                setattr(record, k, v)
            session.add(record)
            session.commit()
