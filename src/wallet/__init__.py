"""
Wallet Module

Double-entry wallet ledger for the GIKI Transport & Wallet API. Every money
movement is a ledger transaction with exactly one debit and one credit
entry; each entry stores the running balance and an HMAC row hash so the
history can be audited for tampering.

System wallets:
- Transport Revenue (SYS_REVENUE): receives ticket payments, pays refunds
- GIKI Wallet (SYS_LIABILITY): source of top-up credits

Key Components:
- service.py: WalletService (get-or-create, balances, transfers, history)
- router.py: user balance/history and admin system wallet endpoints
- errors.py: wallet error catalogue
"""

from .service import WalletService
from .schemas import WalletType, LedgerTransactionType

__all__ = [
    "WalletService",
    "WalletType",
    "LedgerTransactionType",
]
