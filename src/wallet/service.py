import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.common.params import Pagination
from src.config import settings
from src.database import utcnow
from src.models import Wallet, LedgerEntry, LedgerTransaction
from src.wallet import errors
from src.wallet.schemas import (
    WalletType, WalletStatus, SystemWalletName, SYSTEM_WALLET_TYPES,
    WalletHistoryItem, SystemWalletBalance
)

logger = logging.getLogger(__name__)

SYSTEM_WALLETS = {
    WalletType.SYS_REVENUE: SystemWalletName.TRANSPORT_REVENUE,
    WalletType.SYS_LIABILITY: SystemWalletName.GIKI_WALLET,
}


def paisa_to_rupees(amount: int) -> float:
    return amount / 100


def rupees_to_paisa(amount: float) -> int:
    return int(round(amount * 100))


def format_rfc3339_nano(value: datetime) -> str:
    """UTC timestamp with trailing zeros of the fraction dropped, e.g. 2024-01-02T03:04:05.12Z"""
    value = value.astimezone(timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += (".%06d" % value.microsecond).rstrip("0")
    return text + "Z"


def calculate_row_hash(wallet_id: UUID, amount: int, transaction_id: UUID, balance_after: int, created_at: datetime) -> str:
    """Tamper-evidence hash stored on every ledger entry"""
    message = f"{wallet_id}|{amount}|{transaction_id}|{balance_after}|{format_rfc3339_nano(created_at)}"
    digest = hmac.new(settings.LEDGER_HASH_SECRET.encode(), message.encode(), hashlib.sha256).hexdigest()
    return digest.upper()


class WalletService:
    """Double-entry ledger over personal and system wallets.

    Methods run inside the caller's transaction and never commit, so a
    ticket purchase or refund lands atomically with the ledger rows.
    """

    def __init__(self, db: Session):
        self.db = db

    # ================================
    # Wallet lookup
    # ================================
    def get_wallet_by_user(self, user_id: UUID) -> Optional[Wallet]:
        return self.db.query(Wallet).filter(Wallet.user_id == user_id).first()

    def get_or_create_wallet(self, user_id: UUID) -> Wallet:
        wallet = self.get_wallet_by_user(user_id)
        if wallet:
            return wallet

        wallet = Wallet(
            user_id=user_id,
            type=WalletType.PERSONAL.value,
            status=WalletStatus.ACTIVE.value,
            currency="PKR",
        )
        try:
            with self.db.begin_nested():
                self.db.add(wallet)
        except IntegrityError:
            # lost a creation race; the other request's wallet is the one
            wallet = self.get_wallet_by_user(user_id)
            if wallet is None:
                raise errors.WALLET_DATABASE_ERROR()
        return wallet

    def get_system_wallet(self, wallet_type: WalletType, lock: bool = False) -> Wallet:
        query = self.db.query(Wallet).filter(
            Wallet.type == wallet_type.value,
            Wallet.name == SYSTEM_WALLETS[wallet_type].value,
        )
        if lock:
            query = query.with_for_update()
        wallet = query.first()
        if wallet is None:
            raise errors.SYSTEM_WALLET_NOT_FOUND(wallet=SYSTEM_WALLETS[wallet_type].value)
        return wallet

    def ensure_system_wallets(self) -> None:
        """Create the revenue and liability wallets if missing"""
        for wallet_type, name in SYSTEM_WALLETS.items():
            exists = self.db.query(Wallet).filter(
                Wallet.type == wallet_type.value, Wallet.name == name.value
            ).first()
            if not exists:
                self.db.add(Wallet(name=name.value, type=wallet_type.value, status=WalletStatus.ACTIVE.value))
        self.db.flush()

    # ================================
    # Balances
    # ================================
    def _latest_entry(self, wallet_id: UUID) -> Optional[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.wallet_id == wallet_id)
            .order_by(LedgerEntry.seq.desc())
            .first()
        )

    def get_balance(self, wallet_id: UUID) -> int:
        """Balance in paisa: balance_after of the newest entry, 0 for a fresh wallet"""
        entry = self._latest_entry(wallet_id)
        return entry.balance_after if entry else 0

    def get_user_balance(self, user_id: UUID) -> int:
        wallet = self.get_wallet_by_user(user_id)
        if wallet is None:
            return 0
        return self.get_balance(wallet.id)

    def get_system_balance(self, wallet_type: WalletType) -> SystemWalletBalance:
        wallet = self.get_system_wallet(wallet_type)
        return SystemWalletBalance(
            wallet_id=wallet.id,
            name=wallet.name,
            type=wallet.type,
            balance=paisa_to_rupees(self.get_balance(wallet.id)),
            currency=wallet.currency,
        )

    # ================================
    # Transfers
    # ================================
    def transfer(
        self,
        sender_wallet_id: UUID,
        receiver_wallet_id: UUID,
        amount: int,
        txn_type: str,
        reference_id: str,
        description: str,
    ) -> LedgerTransaction:
        """Move ``amount`` paisa from sender to receiver with a debit and a credit entry"""
        if amount <= 0:
            raise errors.INVALID_AMOUNT()

        try:
            wallets = (
                self.db.query(Wallet)
                .filter(Wallet.id.in_([sender_wallet_id, receiver_wallet_id]))
                .order_by(Wallet.id)
                .with_for_update()
                .all()
            )
        except SQLAlchemyError as e:
            raise errors.WALLET_DATABASE_ERROR.wrap(e)

        by_id = {wallet.id: wallet for wallet in wallets}
        sender = by_id.get(sender_wallet_id)
        receiver = by_id.get(receiver_wallet_id)
        if sender is None or receiver is None:
            raise errors.WALLET_NOT_FOUND()
        for wallet in (sender, receiver):
            if wallet.status != WalletStatus.ACTIVE.value:
                raise errors.WALLET_INACTIVE(wallet_id=str(wallet.id))

        duplicate = self.db.query(LedgerTransaction).filter(
            LedgerTransaction.type == txn_type,
            LedgerTransaction.reference_id == reference_id,
        ).first()
        if duplicate:
            raise errors.DUPLICATE_LEDGER_ENTRY(reference_id=reference_id)

        sender_last = self._latest_entry(sender.id)
        receiver_last = self._latest_entry(receiver.id)
        sender_balance = sender_last.balance_after if sender_last else 0
        receiver_balance = receiver_last.balance_after if receiver_last else 0

        if sender.type not in SYSTEM_WALLET_TYPES and sender_balance < amount:
            raise errors.INSUFFICIENT_FUNDS(balance=paisa_to_rupees(sender_balance))

        created_at = utcnow()
        header = LedgerTransaction(
            type=txn_type,
            reference_id=reference_id,
            description=description,
            created_at=created_at,
        )
        self.db.add(header)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise errors.DUPLICATE_LEDGER_ENTRY.wrap(e)

        self._add_entry(sender.id, -amount, header, sender_balance - amount, sender_last)
        self._add_entry(receiver.id, amount, header, receiver_balance + amount, receiver_last)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise errors.DUPLICATE_LEDGER_ENTRY.wrap(e)

        logger.info(
            "ledger %s %s: %d paisa %s -> %s",
            txn_type, reference_id, amount, sender.id, receiver.id,
        )
        return header

    def _add_entry(
        self,
        wallet_id: UUID,
        amount: int,
        header: LedgerTransaction,
        balance_after: int,
        previous: Optional[LedgerEntry],
    ) -> None:
        self.db.add(LedgerEntry(
            wallet_id=wallet_id,
            transaction_id=header.id,
            amount=amount,
            balance_after=balance_after,
            row_hash=calculate_row_hash(wallet_id, amount, header.id, balance_after, header.created_at),
            seq=(previous.seq + 1) if previous else 1,
            created_at=header.created_at,
        ))

    def find_transaction(self, txn_type: str, reference_id: str) -> Optional[LedgerTransaction]:
        return self.db.query(LedgerTransaction).filter(
            LedgerTransaction.type == txn_type,
            LedgerTransaction.reference_id == reference_id,
        ).first()

    # ================================
    # History
    # ================================
    def get_history(self, wallet_id: UUID, pagination: Pagination) -> Tuple[List[WalletHistoryItem], int]:
        query = (
            self.db.query(LedgerEntry, LedgerTransaction)
            .join(LedgerTransaction, LedgerEntry.transaction_id == LedgerTransaction.id)
            .filter(LedgerEntry.wallet_id == wallet_id)
        )
        total = query.count()
        rows = (
            query.order_by(LedgerEntry.seq.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )
        items = [
            WalletHistoryItem(
                id=entry.id,
                amount=paisa_to_rupees(entry.amount),
                balance_after=paisa_to_rupees(entry.balance_after),
                type=txn.type,
                reference_id=txn.reference_id,
                description=txn.description or "",
                created_at=entry.created_at,
            )
            for entry, txn in rows
        ]
        return items, total

    def get_user_history(self, user_id: UUID, pagination: Pagination) -> Tuple[List[WalletHistoryItem], int]:
        wallet = self.get_wallet_by_user(user_id)
        if wallet is None:
            return [], 0
        return self.get_history(wallet.id, pagination)
