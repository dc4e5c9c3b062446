import logging
import threading
import time
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from src.common.errors import AppError
from src.database import SessionLocal, utcnow
from src.models import GatewayTransaction
from src.payment import errors
from src.payment.gateway import JazzCashClient, get_gateway
from src.payment.schemas import PaymentStatus
from src.payment.service import PaymentService

logger = logging.getLogger(__name__)

POLL_INTERVAL = 3.0
POLL_TIMEOUT = 120.0
MAX_CONCURRENT_INQUIRIES = 10
POLLING_TIMEOUT_MESSAGE = "Polling timeout reached"
POLLING_TIMEOUT_CODE = "TIMEOUT"

OPEN_STATUSES = [PaymentStatus.PENDING.value, PaymentStatus.UNKNOWN.value]


class PaymentPoller:
    """Follows pending mobile-wallet payments until the gateway settles them.

    One thread per transaction, guarded by the row's ``is_polling`` flag so a
    transaction is never polled twice. Gateway inquiries across all threads
    are capped by a shared semaphore.
    """

    def __init__(
        self,
        interval: float = POLL_INTERVAL,
        timeout: float = POLL_TIMEOUT,
        max_concurrent: int = MAX_CONCURRENT_INQUIRIES,
        gateway_factory: Callable[[], JazzCashClient] = get_gateway,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.interval = interval
        self.timeout = timeout
        self.gateway_factory = gateway_factory
        self.session_factory = session_factory
        self._limiter = threading.BoundedSemaphore(max_concurrent)
        self._stop_event = threading.Event()

    def start_polling(self, txn_ref_no: str) -> threading.Thread:
        thread = threading.Thread(target=self.poll, args=(txn_ref_no,), name=f"payment-poll-{txn_ref_no}")
        thread.daemon = True
        thread.start()
        return thread

    def stop(self):
        self._stop_event.set()

    # ================================
    # Polling lock
    # ================================
    def acquire_lock(self, txn_ref_no: str) -> bool:
        db = self.session_factory()
        try:
            updated = db.query(GatewayTransaction).filter(
                GatewayTransaction.txn_ref_no == txn_ref_no,
                GatewayTransaction.is_polling.is_(False),
                GatewayTransaction.status.in_(OPEN_STATUSES),
            ).update(
                {GatewayTransaction.is_polling: True, GatewayTransaction.polling_started_at: utcnow()},
                synchronize_session=False,
            )
            db.commit()
            return updated == 1
        finally:
            db.close()

    def release_lock(self, txn_ref_no: str) -> None:
        db = self.session_factory()
        try:
            db.query(GatewayTransaction).filter(GatewayTransaction.txn_ref_no == txn_ref_no).update(
                {GatewayTransaction.is_polling: False}, synchronize_session=False
            )
            db.commit()
        finally:
            db.close()

    def reset_stale_locks(self) -> int:
        """Clear polling flags left behind by a previous process"""
        db = self.session_factory()
        try:
            cutoff = utcnow() - timedelta(seconds=self.timeout)
            cleared = db.query(GatewayTransaction).filter(
                GatewayTransaction.is_polling.is_(True),
                GatewayTransaction.polling_started_at < cutoff,
            ).update({GatewayTransaction.is_polling: False}, synchronize_session=False)
            db.commit()
        finally:
            db.close()
        if cleared:
            logger.info("cleared %d stale payment polling locks", cleared)
        return cleared

    # ================================
    # Poll loop
    # ================================
    def poll(self, txn_ref_no: str) -> None:
        if not self.acquire_lock(txn_ref_no):
            logger.info("polling for %s already running or transaction settled", txn_ref_no)
            return

        deadline = time.monotonic() + self.timeout
        try:
            while not self._stop_event.wait(self.interval):
                if time.monotonic() >= deadline:
                    self.handle_timeout(txn_ref_no)
                    return
                if self.poll_once(txn_ref_no, deadline):
                    return
            self.release_lock(txn_ref_no)
        except Exception:
            logger.exception("payment polling for %s crashed", txn_ref_no)
            self.release_lock(txn_ref_no)

    def poll_once(self, txn_ref_no: str, deadline: float) -> bool:
        """One inquiry; True once the transaction is settled and polling should stop"""
        if not self._limiter.acquire(timeout=max(deadline - time.monotonic(), 0)):
            return False
        try:
            gateway = self.gateway_factory()
            try:
                response = gateway.inquiry(txn_ref_no)
            except AppError as e:
                logger.warning("inquiry for %s failed, will retry: %s", txn_ref_no, e)
                return False

            db = self.session_factory()
            try:
                return PaymentService(db, gateway).finalize(txn_ref_no, response)
            except AppError as e:
                if e.code == errors.TRANSACTION_NOT_FOUND.code:
                    logger.warning("stopped polling unknown transaction %s", txn_ref_no)
                    return True
                logger.warning("finalizing %s failed, will retry: %s", txn_ref_no, e)
                return False
            finally:
                db.close()
        finally:
            self._limiter.release()

    def handle_timeout(self, txn_ref_no: str) -> None:
        db = self.session_factory()
        try:
            updated = db.query(GatewayTransaction).filter(
                GatewayTransaction.txn_ref_no == txn_ref_no,
                GatewayTransaction.status.in_(OPEN_STATUSES),
            ).update({
                GatewayTransaction.status: PaymentStatus.FAILED.value,
                GatewayTransaction.gateway_message: POLLING_TIMEOUT_MESSAGE,
                GatewayTransaction.gateway_status_code: POLLING_TIMEOUT_CODE,
                GatewayTransaction.updated_at: utcnow(),
            }, synchronize_session=False)
            db.query(GatewayTransaction).filter(GatewayTransaction.txn_ref_no == txn_ref_no).update(
                {GatewayTransaction.is_polling: False}, synchronize_session=False
            )
            db.commit()
        finally:
            db.close()
        if updated:
            logger.warning("payment %s timed out after %.0fs of polling", txn_ref_no, self.timeout)


payment_poller = PaymentPoller()
