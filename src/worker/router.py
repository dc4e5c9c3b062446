from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from src.auth.dependencies import require_super_admin
from src.common.responses import envelope
from src.database import get_db
from src.worker.worker import JobWorker, get_worker

router = APIRouter()

@router.get("/worker/status")
def worker_status(
    request: Request,
    db: Session = Depends(get_db),
    worker: JobWorker = Depends(get_worker),
    _admin=Depends(require_super_admin),
):
    """Heartbeat and queue statistics of the background worker"""
    return envelope(request, worker.get_status(db))
