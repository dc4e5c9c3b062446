"""
Worker Module

Database-backed background job queue for the GIKI Transport & Wallet API.
Services enqueue jobs inside their own transaction; a pool of consumer
threads claims due jobs every 200ms, retries failures with backoff and
records the last error. A status ticker keeps a heartbeat, opens and closes
trip booking windows every minute, and prunes old jobs and expired tokens
every hour.

Key Components:
- queue.py: enqueue() used by other modules
- worker.py: JobWorker consumer threads and housekeeping loops
- mailer.py: Microsoft Graph mail sender and template rendering
- templates/: HTML email templates
- router.py: admin worker status endpoint
"""

from .queue import enqueue
from .schemas import JobType, JobStatus

__all__ = [
    "enqueue",
    "JobType",
    "JobStatus",
]
