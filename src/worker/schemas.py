from pydantic import BaseModel
from typing import List, Optional, Dict
from datetime import datetime
from enum import Enum

class JobType(str, Enum):
    """Background job types handled by the worker"""
    SEND_STUDENT_VERIFY_EMAIL = "SEND_STUDENT_VERIFY_EMAIL"
    SEND_EMPLOYEE_WAIT_EMAIL = "SEND_EMPLOYEE_WAIT_EMAIL"
    SEND_EMPLOYEE_APPROVED_EMAIL = "SEND_EMPLOYEE_APPROVED_EMAIL"
    SEND_EMPLOYEE_REJECTED_EMAIL = "SEND_EMPLOYEE_REJECTED_EMAIL"
    SEND_TICKET_CONFIRMATION = "SEND_TICKET_CONFIRMATION"
    SEND_TICKET_CANCELLED = "SEND_TICKET_CANCELLED"
    SEND_ACCOUNT_CREATED_EMAIL = "SEND_ACCOUNT_CREATED_EMAIL"
    SEND_PASSWORD_RESET_EMAIL = "SEND_PASSWORD_RESET_EMAIL"

class JobStatus(str, Enum):
    """Lifecycle of a queued job"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

# Job payloads
class StudentVerifyPayload(BaseModel):
    email: str
    name: str
    link: str

class EmployeeWaitPayload(BaseModel):
    email: str
    name: str

class EmployeeApprovedPayload(BaseModel):
    email: str
    name: str
    link: str

class AccountCreatedPayload(BaseModel):
    email: str
    name: str
    password: str

class PasswordResetPayload(BaseModel):
    email: str
    name: str
    link: str

class TicketDetail(BaseModel):
    serial_no: str
    ticket_code: str
    passenger_name: str
    route_name: str
    trip_time: str
    price: int

class TicketConfirmedPayload(BaseModel):
    email: str
    user_name: str
    total_price: int
    tickets: List[TicketDetail]

class TicketCancelledPayload(BaseModel):
    email: str
    user_name: str
    ticket_code: str
    route_name: str
    refund_amount: int
    reason: str

# Status
class WorkerStatus(BaseModel):
    last_heartbeat: Optional[datetime] = None
    is_alive: bool
    stats: Dict[str, int]
