from pydantic import BaseModel
from typing import List
from datetime import datetime
from enum import Enum
from uuid import UUID

class WalletType(str, Enum):
    """Wallet kinds; system wallets may run negative"""
    PERSONAL = "PERSONAL"
    SYS_REVENUE = "SYS_REVENUE"
    SYS_LIABILITY = "SYS_LIABILITY"

class WalletStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"
    CLOSED = "CLOSED"

class SystemWalletName(str, Enum):
    """Well-known names of the system wallets"""
    TRANSPORT_REVENUE = "Transport Revenue"
    GIKI_WALLET = "GIKI Wallet"

class LedgerTransactionType(str, Enum):
    TRANSPORT_BOOKING = "TRANSPORT_BOOKING"
    REFUND = "REFUND"
    JAZZCASH_DEPOSIT = "JAZZCASH_DEPOSIT"

SYSTEM_WALLET_TYPES = {WalletType.SYS_REVENUE.value, WalletType.SYS_LIABILITY.value}

class BalanceResponse(BaseModel):
    balance: float
    currency: str

class WalletHistoryItem(BaseModel):
    id: UUID
    amount: float
    balance_after: float
    type: str
    reference_id: str
    description: str
    created_at: datetime

class WalletHistoryPage(BaseModel):
    data: List[WalletHistoryItem]
    total_count: int
    page: int
    page_size: int

class SystemWalletBalance(BaseModel):
    wallet_id: UUID
    name: str
    type: str
    balance: float
    currency: str
