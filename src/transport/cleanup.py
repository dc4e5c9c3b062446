import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from src.database import SessionLocal, utcnow
from src.models import TripHold
from src.transport.service import TransportService

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL = 30.0


def cleanup_expired_holds(session_factory: Callable[[], Session] = SessionLocal) -> int:
    """Give back the seats of expired holds, one transaction per hold.

    A failing hold is logged and skipped so the rest are still reclaimed.
    """
    db = session_factory()
    try:
        expired_ids = [row.id for row in db.query(TripHold.id).filter(TripHold.expires_at <= utcnow()).all()]
    finally:
        db.close()

    released = 0
    for hold_id in expired_ids:
        db = session_factory()
        try:
            if TransportService(db).release_expired_hold(hold_id):
                released += 1
        except Exception:
            db.rollback()
            logger.exception("failed to release expired hold %s", hold_id)
        finally:
            db.close()

    if released:
        logger.info("reclaimed %d expired holds", released)
    return released


class HoldCleanup:
    """Background loop reclaiming seats from expired holds"""

    def __init__(self, interval: float = CLEANUP_INTERVAL, session_factory: Callable[[], Session] = SessionLocal):
        self.interval = interval
        self.session_factory = session_factory
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="hold-cleanup")
        self._thread.daemon = True
        self._thread.start()
        logger.info("hold cleanup started, every %.0fs", self.interval)

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _loop(self):
        while not self._stop_event.wait(self.interval):
            try:
                cleanup_expired_holds(self.session_factory)
            except Exception:
                logger.exception("hold cleanup pass failed")


hold_cleanup = HoldCleanup()
