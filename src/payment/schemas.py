from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum
from uuid import UUID

class PaymentMethod(str, Enum):
    MWALLET = "MWALLET"
    CARD = "CARD"

class PaymentStatus(str, Enum):
    """Gateway transaction state; SUCCESS and FAILED are terminal"""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"

TERMINAL_STATUSES = {PaymentStatus.SUCCESS.value, PaymentStatus.FAILED.value}

class PaymentAuditEvent(str, Enum):
    CARD_CALLBACK = "CARD_CALLBACK"
    CARD_CALLBACK_PROCESSED = "CARD_CALLBACK_PROCESSED"
    CARD_CALLBACK_FAILED = "CARD_CALLBACK_FAILED"

class TopUpRequest(BaseModel):
    idempotency_key: UUID
    amount: float = Field(..., description="Amount in rupees")
    method: str
    phone_number: Optional[str] = None
    cnic_last6: Optional[str] = None

class TopUpResult(BaseModel):
    id: UUID
    txn_ref_no: str
    status: PaymentStatus
    message: Optional[str] = None
    payment_method: PaymentMethod
    redirect: Optional[str] = None
    amount: float = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.value in TERMINAL_STATUSES

# Admin
class AdminGatewayTransaction(BaseModel):
    txn_ref_no: str
    user_id: UUID
    user_name: str
    user_email: str
    amount: float
    status: str
    payment_method: str
    created_at: datetime
    updated_at: datetime
    bill_ref_id: str
    gateway_message: Optional[str] = None
    gateway_status_code: Optional[str] = None

class GatewayTransactionPage(BaseModel):
    data: List[AdminGatewayTransaction]
    total_count: int
    total_amount: float
    page: int
    page_size: int

class PaymentAuditLogItem(BaseModel):
    id: UUID
    txn_ref_no: Optional[str] = None
    event: str
    gateway_ref: Optional[str] = None
    raw_payload: Optional[Dict[str, Any]] = None
    created_at: datetime
