import logging
import threading
from html import escape
import time
from datetime import timedelta
from typing import Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import settings
from src.database import SessionLocal, utcnow
from src.models import Job, AccessToken, RefreshToken
from src.worker.mailer import GraphMailer
from src.worker.schemas import (
    JobType, JobStatus, WorkerStatus, StudentVerifyPayload, EmployeeWaitPayload,
    EmployeeApprovedPayload, AccountCreatedPayload, PasswordResetPayload,
    TicketConfirmedPayload, TicketCancelledPayload
)

logger = logging.getLogger(__name__)

JOB_POLL_INTERVAL = 0.2
STATUS_INTERVAL = 60
PRUNE_INTERVAL = 3600
COMPLETED_JOB_RETENTION = timedelta(days=7)
RETRY_BACKOFF = timedelta(seconds=30)

# job type -> (payload model, subject, template)
EMAIL_JOBS: Dict[str, Tuple[Type[BaseModel], str, str]] = {
    JobType.SEND_STUDENT_VERIFY_EMAIL.value: (StudentVerifyPayload, "Verify your GIKI Account", "verify.html"),
    JobType.SEND_EMPLOYEE_WAIT_EMAIL.value: (EmployeeWaitPayload, "Application Received", "pending.html"),
    JobType.SEND_EMPLOYEE_APPROVED_EMAIL.value: (
        EmployeeApprovedPayload, "Account Approved!", "employee_approved.html"
    ),
    JobType.SEND_EMPLOYEE_REJECTED_EMAIL.value: (EmployeeWaitPayload, "Application Status", "rejected.html"),
    JobType.SEND_TICKET_CONFIRMATION.value: (
        TicketConfirmedPayload, "Booking Confirmation", "ticket_confirmed.html"
    ),
    JobType.SEND_TICKET_CANCELLED.value: (
        TicketCancelledPayload, "Trip Cancellation Notice", "ticket_cancelled.html"
    ),
    JobType.SEND_ACCOUNT_CREATED_EMAIL.value: (
        AccountCreatedPayload, "Welcome to GIKI Transport", "account_created.html"
    ),
    JobType.SEND_PASSWORD_RESET_EMAIL.value: (
        PasswordResetPayload, "Reset Your GIKI Password", "reset_password.html"
    ),
}


def _ticket_rows(payload: TicketConfirmedPayload) -> str:
    rows = []
    for ticket in payload.tickets:
        rows.append(
            "<tr>"
            f"<td>{escape(ticket.serial_no)}</td>"
            f"<td><strong>{escape(ticket.ticket_code)}</strong></td>"
            f"<td>{escape(ticket.passenger_name)}</td>"
            f"<td>{escape(ticket.route_name)}</td>"
            f"<td>{escape(ticket.trip_time)}</td>"
            f"<td align=\"right\">{ticket.price}</td>"
            "</tr>"
        )
    return "\n".join(rows)


class JobWorker:
    """Database-backed job queue consumer plus the periodic housekeeping loops"""

    def __init__(self, mailer=None, session_factory: Callable[[], Session] = SessionLocal):
        self.mailer = mailer or GraphMailer()
        self.session_factory = session_factory
        self.last_heartbeat = None
        self._running = False
        self._threads = []
        self._stop_event = threading.Event()

    # ================================
    # Lifecycle
    # ================================
    def start(self, worker_count: int = settings.WORKER_COUNT):
        """Start the job consumers and the status ticker in background"""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        for worker_id in range(worker_count):
            thread = threading.Thread(target=self._job_loop, args=(worker_id,), name=f"job-worker-{worker_id}")
            thread.daemon = True
            thread.start()
            self._threads.append(thread)

        thread = threading.Thread(target=self._status_loop, name="job-status-ticker")
        thread.daemon = True
        thread.start()
        self._threads.append(thread)
        logger.info("job worker started with %d consumers", worker_count)

    def stop(self):
        self._running = False
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []

    def _job_loop(self, worker_id: int):
        # stagger consumers so they do not poll in lockstep
        self._stop_event.wait(worker_id * 0.1)
        while self._running:
            try:
                db = self.session_factory()
                try:
                    self.process_next_job(db)
                finally:
                    db.close()
            except Exception:
                logger.exception("job consumer %d failed", worker_id)
            self._stop_event.wait(JOB_POLL_INTERVAL)

    def _status_loop(self):
        last_prune = time.monotonic()
        while self._running:
            self._stop_event.wait(STATUS_INTERVAL)
            if not self._running:
                break
            self.tick_status()
            if time.monotonic() - last_prune >= PRUNE_INTERVAL:
                last_prune = time.monotonic()
                self.prune()

    # ================================
    # Jobs
    # ================================
    def process_next_job(self, db: Session) -> bool:
        """Claim and run one due job; returns False when the queue is empty"""
        job = self._claim_next_job(db)
        if job is None:
            return False

        try:
            self.handle(job.job_type, job.payload)
        except Exception as e:
            self._fail_job(db, job, e)
        else:
            job.status = JobStatus.COMPLETED.value
            job.last_error = None
            db.commit()
        return True

    def _claim_next_job(self, db: Session) -> Optional[Job]:
        query = (
            db.query(Job)
            .filter(Job.status == JobStatus.PENDING.value, Job.run_at <= utcnow())
            .order_by(Job.run_at)
        )
        if not settings.is_sqlite:
            query = query.with_for_update(skip_locked=True)
        job = query.first()
        if job is None:
            db.rollback()
            return None
        job.status = JobStatus.PROCESSING.value
        job.attempts += 1
        db.commit()
        return job

    def _fail_job(self, db: Session, job: Job, error: Exception):
        logger.warning("job %s (%s) attempt %d failed: %s", job.id, job.job_type, job.attempts, error)
        job.last_error = str(error)
        if job.attempts >= job.max_attempts:
            job.status = JobStatus.FAILED.value
        else:
            job.status = JobStatus.PENDING.value
            job.run_at = utcnow() + RETRY_BACKOFF * job.attempts
        db.commit()

    def handle(self, job_type: str, payload: dict):
        """Dispatch a job payload to its email template"""
        if job_type not in EMAIL_JOBS:
            logger.error("unknown job type: %s", job_type)
            raise ValueError(f"unknown job type: {job_type}")

        model, subject, template = EMAIL_JOBS[job_type]
        try:
            data = model.model_validate(payload)
        except ValidationError as e:
            raise ValueError(f"invalid payload for {job_type}: {e}") from e

        raw = {}
        values = data.model_dump()
        if isinstance(data, TicketConfirmedPayload):
            raw["ticket_rows"] = _ticket_rows(data)
            values.pop("tickets")
        self.mailer.send_template(data.email, subject, template, values, raw)

    # ================================
    # Housekeeping
    # ================================
    def tick_status(self):
        """Heartbeat plus automatic trip window transitions"""
        from src.transport.service import refresh_trip_statuses

        self.last_heartbeat = utcnow()
        db = self.session_factory()
        try:
            opened, closed = refresh_trip_statuses(db)
            db.commit()
            if opened or closed:
                logger.info("trip windows updated: %d opened, %d closed", opened, closed)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("error updating trip statuses")
        finally:
            db.close()

    def prune(self):
        db = self.session_factory()
        try:
            now = utcnow()
            jobs = db.query(Job).filter(
                Job.status == JobStatus.COMPLETED.value,
                Job.updated_at < now - COMPLETED_JOB_RETENTION,
            ).delete(synchronize_session=False)
            access = db.query(AccessToken).filter(AccessToken.expires_at < now).delete(synchronize_session=False)
            refresh = db.query(RefreshToken).filter(RefreshToken.expires_at < now).delete(synchronize_session=False)
            db.commit()
            logger.info("pruned %d jobs, %d access tokens, %d refresh tokens", jobs, access, refresh)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("error pruning jobs and tokens")
        finally:
            db.close()

    def get_status(self, db: Session) -> WorkerStatus:
        counts = dict(db.query(Job.status, func.count(Job.id)).group_by(Job.status).all())
        stats = {status.value.lower(): int(counts.get(status.value, 0)) for status in JobStatus}
        is_alive = self.last_heartbeat is not None and utcnow() - self.last_heartbeat < timedelta(minutes=5)
        return WorkerStatus(last_heartbeat=self.last_heartbeat, is_alive=is_alive, stats=stats)


_worker: Optional[JobWorker] = None


def get_worker() -> JobWorker:
    global _worker
    if _worker is None:
        _worker = JobWorker()
    return _worker
