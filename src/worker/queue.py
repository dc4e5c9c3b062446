from datetime import timedelta
from typing import Any, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from src.database import utcnow
from src.models import Job
from src.worker.schemas import JobType, JobStatus


def enqueue(
    db: Session,
    job_type: Union[JobType, str],
    payload: Any,
    delay: timedelta = timedelta(0),
    max_attempts: int = 3,
) -> Job:
    """Queue a job in the caller's transaction; it runs once that commits"""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    job = Job(
        job_type=job_type.value if isinstance(job_type, JobType) else job_type,
        payload=payload,
        status=JobStatus.PENDING.value,
        run_at=utcnow() + delay,
        max_attempts=max_attempts,
    )
    db.add(job)
    return job
