import csv
import io
import logging
import math
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.common import errors as common_errors
from src.common.params import DateRange, Pagination
from src.config import settings
from src.config_management.service import ConfigService
from src.database import utcnow
from src.models import GatewayTransaction, PaymentAuditLog, User
from src.payment import errors
from src.payment.gateway import JazzCashClient, GatewayResponse, render_card_page
from src.payment.schemas import (
    PaymentMethod, PaymentStatus, PaymentAuditEvent, TERMINAL_STATUSES,
    TopUpRequest, TopUpResult, AdminGatewayTransaction, PaymentAuditLogItem
)
from src.payment.utils import generate_txn_ref_no, generate_bill_ref_no, normalize_phone, normalize_cnic_last6
from src.wallet import errors as wallet_errors
from src.wallet.schemas import WalletType, LedgerTransactionType
from src.wallet.service import WalletService, paisa_to_rupees, rupees_to_paisa

logger = logging.getLogger(__name__)

STATUS_TIMEOUT = timedelta(seconds=120)
TOPUP_DESCRIPTION = "GIKI Wallet Top Up"
CARD_DESCRIPTION = "GIKI-Wallet-TopUp"
ALREADY_COMPLETED_MESSAGE = "Transaction has already completed"
TIMED_OUT_MESSAGE = "Transaction has timed out. Please try again."
EXPORT_HEADER = ["Transaction Ref", "Bill Ref", "User Name", "User Email", "Amount", "Status", "Method", "Date"]


def parse_method(raw: str) -> PaymentMethod:
    try:
        return PaymentMethod((raw or "").strip().upper())
    except ValueError as e:
        raise errors.INVALID_PAYMENT_METHOD(method=raw).wrap(e)


def topup_result(
    txn: GatewayTransaction,
    status: Optional[PaymentStatus] = None,
    message: Optional[str] = None,
    redirect: Optional[str] = None,
) -> TopUpResult:
    status = status or PaymentStatus(txn.status)
    if redirect is None and status == PaymentStatus.PENDING and txn.payment_method == PaymentMethod.CARD.value:
        redirect = card_page_path(txn.txn_ref_no)
    return TopUpResult(
        id=txn.id,
        txn_ref_no=txn.txn_ref_no,
        status=status,
        message=message if message is not None else txn.gateway_message,
        payment_method=PaymentMethod(txn.payment_method),
        redirect=redirect,
        amount=paisa_to_rupees(txn.amount),
    )


def card_page_path(txn_ref_no: str) -> str:
    return f"{settings.API_PREFIX}/payment/page/{txn_ref_no}"


class PaymentService:
    """Wallet top-ups through JazzCash.

    Status changes commit on their own; the wallet credit for a successful
    payment runs in a second transaction so a failed credit never rolls the
    recorded gateway status back.
    """

    def __init__(self, db: Session, gateway: JazzCashClient):
        self.db = db
        self.gateway = gateway

    def get_transaction(self, txn_ref_no: str, lock: bool = False) -> GatewayTransaction:
        query = self.db.query(GatewayTransaction).filter(GatewayTransaction.txn_ref_no == txn_ref_no)
        if lock:
            query = query.with_for_update()
        txn = query.first()
        if txn is None:
            raise errors.TRANSACTION_NOT_FOUND(txn_ref_no=txn_ref_no)
        return txn

    def _by_idempotency_key(self, key: str) -> Optional[GatewayTransaction]:
        return self.db.query(GatewayTransaction).filter(GatewayTransaction.idempotency_key == key).first()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise common_errors.TRANSACTION_COMMIT.wrap(e)

    # ================================
    # Top-up
    # ================================
    def initiate(self, user: User, payload: TopUpRequest) -> TopUpResult:
        key = str(payload.idempotency_key)
        existing = self._by_idempotency_key(key)
        if existing is not None:
            if existing.user_id != user.id:
                raise errors.DUPLICATE_IDEMPOTENCY_KEY()
            return self._handle_existing(existing)

        pending = (
            self.db.query(GatewayTransaction)
            .filter(GatewayTransaction.user_id == user.id, GatewayTransaction.status == PaymentStatus.PENDING.value)
            .order_by(GatewayTransaction.created_at.desc())
            .first()
        )
        if pending is not None:
            try:
                result = self.check_status(pending)
            except common_errors.AppError as e:
                logger.warning("re-check of pending transaction %s failed: %s", pending.txn_ref_no, e)
            else:
                if result.status != PaymentStatus.FAILED:
                    return result

        method = parse_method(payload.method)
        if not math.isfinite(payload.amount):
            raise common_errors.INVALID_INPUT("amount must be a finite number")
        amount = rupees_to_paisa(payload.amount)
        if amount <= 0:
            raise common_errors.INVALID_INPUT("amount must be greater than 0")

        max_balance = ConfigService(self.db).get_max_topup_paisa()
        balance = WalletService(self.db).get_user_balance(user.id)
        if balance + amount > max_balance:
            raise common_errors.INVALID_INPUT(
                f"top-up would exceed maximum allowed wallet balance of Rs. {max_balance // 100}"
            )

        phone = cnic = None
        if method == PaymentMethod.MWALLET:
            phone = normalize_phone(payload.phone_number)
            cnic = normalize_cnic_last6(payload.cnic_last6)

        txn = GatewayTransaction(
            txn_ref_no=generate_txn_ref_no(),
            bill_ref_id=generate_bill_ref_no(),
            user_id=user.id,
            idempotency_key=key,
            amount=amount,
            status=PaymentStatus.PENDING.value,
            payment_method=method.value,
        )
        self.db.add(txn)
        try:
            self.db.commit()
        except IntegrityError:
            # a concurrent request with the same key won the insert
            self.db.rollback()
            existing = self._by_idempotency_key(key)
            if existing is None:
                raise errors.PAYMENT_INTERNAL_ERROR("failed to create transaction")
            return self._handle_existing(existing)
        logger.info("top-up %s created: user=%s method=%s amount=%d", txn.txn_ref_no, user.id, method.value, amount)

        if method == PaymentMethod.CARD:
            return topup_result(txn, PaymentStatus.PENDING, "")
        return self._initiate_mwallet(txn, phone, cnic)

    def _handle_existing(self, txn: GatewayTransaction) -> TopUpResult:
        if txn.status == PaymentStatus.SUCCESS.value:
            return topup_result(txn, PaymentStatus.SUCCESS, ALREADY_COMPLETED_MESSAGE)
        return self.check_status(txn)

    def _initiate_mwallet(self, txn: GatewayTransaction, phone: str, cnic: str) -> TopUpResult:
        response = self.gateway.submit_mwallet(
            txn.txn_ref_no, txn.bill_ref_id, txn.amount, phone, cnic, TOPUP_DESCRIPTION
        )
        txn.raw_response = response.raw
        txn.gateway_message = response.message
        txn.gateway_status_code = response.response_code
        self._commit()
        return self.check_status(txn)

    # ================================
    # Status
    # ================================
    def check_status(self, txn: GatewayTransaction) -> TopUpResult:
        """Ask the gateway for the payment's state and settle it when final"""
        response = self.gateway.inquiry(txn.txn_ref_no)

        if response.status.value in TERMINAL_STATUSES:
            self.finalize(txn.txn_ref_no, response)
            return topup_result(txn, PaymentStatus(txn.status), response.message)

        if utcnow() - txn.created_at > STATUS_TIMEOUT:
            self.finalize(txn.txn_ref_no, GatewayResponse(
                status=PaymentStatus.FAILED,
                response_code=response.response_code or "TIMEOUT",
                message=TIMED_OUT_MESSAGE,
                txn_ref_no=txn.txn_ref_no,
            ))
            return topup_result(txn, PaymentStatus.FAILED, TIMED_OUT_MESSAGE)

        return topup_result(txn, response.status, response.message)

    def finalize(self, txn_ref_no: str, response: GatewayResponse) -> bool:
        """Record the gateway result; credit the wallet on success.

        Returns True when the transaction reached a terminal state.
        """
        status = response.status
        terminal = status.value in TERMINAL_STATUSES

        txn = self.get_transaction(txn_ref_no, lock=True)
        previous = txn.status
        if previous == PaymentStatus.SUCCESS.value and status != PaymentStatus.SUCCESS:
            logger.warning("ignoring %s for already successful transaction %s", status.value, txn_ref_no)
            self.db.rollback()
            return True

        txn.status = status.value
        txn.gateway_message = response.message
        txn.gateway_status_code = response.response_code
        if terminal:
            txn.is_polling = False
        self._commit()

        if status != PaymentStatus.SUCCESS:
            return terminal

        if previous == PaymentStatus.FAILED.value:
            logger.warning("reconciliation: transaction %s recovered to SUCCESS from %s", txn_ref_no, previous)
        try:
            self._credit_wallet(txn)
        except (common_errors.AppError, SQLAlchemyError):
            self.db.rollback()
            logger.exception("wallet credit failed for %s", txn_ref_no)
        return True

    def _credit_wallet(self, txn: GatewayTransaction) -> None:
        wallets = WalletService(self.db)
        user_wallet = wallets.get_or_create_wallet(txn.user_id)
        liability = wallets.get_system_wallet(WalletType.SYS_LIABILITY)
        try:
            wallets.transfer(
                liability.id,
                user_wallet.id,
                txn.amount,
                LedgerTransactionType.JAZZCASH_DEPOSIT.value,
                txn.txn_ref_no,
                f"Wallet top-up via payment {txn.txn_ref_no}",
            )
        except common_errors.AppError as e:
            if e.code != wallet_errors.DUPLICATE_LEDGER_ENTRY.code:
                raise
            self.db.rollback()
            logger.info("wallet already credited for %s", txn.txn_ref_no)
            return
        self._commit()
        logger.info("credited %d paisa to user %s for %s", txn.amount, txn.user_id, txn.txn_ref_no)

    def get_status(self, user: User, txn_ref_no: str) -> TopUpResult:
        txn = self.get_transaction(txn_ref_no)
        if txn.user_id != user.id:
            raise errors.TRANSACTION_NOT_FOUND(txn_ref_no=txn_ref_no)
        if txn.status in TERMINAL_STATUSES:
            return topup_result(txn)
        return self.check_status(txn)

    # ================================
    # Card
    # ================================
    def card_page(self, txn_ref_no: str) -> str:
        txn = self.get_transaction(txn_ref_no)
        if txn.payment_method != PaymentMethod.CARD.value:
            raise errors.INVALID_PAYMENT_METHOD(method=txn.payment_method)
        if txn.status != PaymentStatus.PENDING.value:
            raise errors.TRANSACTION_NOT_PENDING(status=txn.status)
        form = self.gateway.card_form(txn.txn_ref_no, txn.bill_ref_id, txn.amount, CARD_DESCRIPTION)
        return render_card_page(form)

    def _audit(self, event: PaymentAuditEvent, txn_ref_no: Optional[str], gateway_ref: Optional[str], payload: dict):
        self.db.add(PaymentAuditLog(
            txn_ref_no=txn_ref_no or None,
            event=event.value,
            gateway_ref=gateway_ref or None,
            raw_payload=payload,
        ))
        self._commit()

    def card_callback(self, form: Dict[str, str]) -> TopUpResult:
        """Handle the gateway's browser callback.

        The raw form is written to the payment audit log before anything
        else, so even a rejected callback leaves a trace.
        """
        txn_ref_no = form.get("pp_TxnRefNo", "")
        bill_ref = form.get("pp_BillReference", "")
        self._audit(PaymentAuditEvent.CARD_CALLBACK, txn_ref_no, bill_ref, dict(form))

        try:
            response = self.gateway.verify_callback(form)
            self.finalize(response.txn_ref_no, response)
        except common_errors.AppError as e:
            self.db.rollback()
            self._audit(PaymentAuditEvent.CARD_CALLBACK_FAILED, txn_ref_no, bill_ref, {"error": e.code, "message": e.message})
            raise

        txn = self.get_transaction(response.txn_ref_no)
        self._audit(
            PaymentAuditEvent.CARD_CALLBACK_PROCESSED, txn_ref_no, bill_ref,
            {"status": response.status.value, "response_code": response.response_code},
        )
        return topup_result(txn, response.status, response.message)

    # ================================
    # Admin
    # ================================
    def _admin_query(
        self,
        date_range: DateRange,
        status: Optional[str] = None,
        method: Optional[str] = None,
        search: Optional[str] = None,
    ):
        query = (
            self.db.query(GatewayTransaction, User)
            .join(User, GatewayTransaction.user_id == User.id)
            .filter(
                GatewayTransaction.created_at >= date_range.start,
                GatewayTransaction.created_at < date_range.end,
            )
        )
        if status:
            query = query.filter(GatewayTransaction.status == status.upper())
        if method:
            query = query.filter(GatewayTransaction.payment_method == method.upper())
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                GatewayTransaction.txn_ref_no.ilike(pattern),
                GatewayTransaction.bill_ref_id.ilike(pattern),
                User.name.ilike(pattern),
                User.email.ilike(pattern),
            ))
        return query

    @staticmethod
    def _admin_item(txn: GatewayTransaction, user: User) -> AdminGatewayTransaction:
        return AdminGatewayTransaction(
            txn_ref_no=txn.txn_ref_no,
            user_id=txn.user_id,
            user_name=user.name,
            user_email=user.email,
            amount=paisa_to_rupees(txn.amount),
            status=txn.status,
            payment_method=txn.payment_method,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
            bill_ref_id=txn.bill_ref_id,
            gateway_message=txn.gateway_message,
            gateway_status_code=txn.gateway_status_code,
        )

    def list_transactions(
        self,
        date_range: DateRange,
        pagination: Pagination,
        status: Optional[str] = None,
        method: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[AdminGatewayTransaction], int, float]:
        """Filtered page of gateway transactions, the total count and the total amount in rupees"""
        query = self._admin_query(date_range, status, method, search)
        total = query.count()
        total_amount = query.with_entities(func.coalesce(func.sum(GatewayTransaction.amount), 0)).scalar() or 0
        rows = (
            query.order_by(GatewayTransaction.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )
        return [self._admin_item(txn, user) for txn, user in rows], total, paisa_to_rupees(int(total_amount))

    def verify_transaction(self, txn_ref_no: str) -> AdminGatewayTransaction:
        """Re-check a transaction with the gateway and return its refreshed record"""
        txn = self.get_transaction(txn_ref_no)
        self.check_status(txn)
        self.db.expire_all()
        txn = self.get_transaction(txn_ref_no)
        return self._admin_item(txn, txn.user)

    def export_transactions(
        self,
        date_range: DateRange,
        status: Optional[str] = None,
        method: Optional[str] = None,
        search: Optional[str] = None,
    ) -> bytes:
        rows = (
            self._admin_query(date_range, status, method, search)
            .order_by(GatewayTransaction.created_at.desc())
            .all()
        )
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(EXPORT_HEADER)
        for txn, user in rows:
            writer.writerow([
                txn.txn_ref_no,
                txn.bill_ref_id,
                user.name,
                user.email,
                "%.2f" % paisa_to_rupees(txn.amount),
                txn.status,
                txn.payment_method,
                txn.created_at.isoformat(),
            ])
        return buffer.getvalue().encode("utf-8")

    def get_audit_logs(self, txn_ref_no: str) -> List[PaymentAuditLogItem]:
        rows = (
            self.db.query(PaymentAuditLog)
            .filter(PaymentAuditLog.txn_ref_no == txn_ref_no)
            .order_by(PaymentAuditLog.created_at)
            .all()
        )
        return [
            PaymentAuditLogItem(
                id=row.id,
                txn_ref_no=row.txn_ref_no,
                event=row.event,
                gateway_ref=row.gateway_ref,
                raw_payload=row.raw_payload,
                created_at=row.created_at,
            )
            for row in rows
        ]
