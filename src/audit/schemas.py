from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum
from uuid import UUID

class AuditAction(str, Enum):
    """Security-relevant actions written to the audit log"""
    LOGIN_ATTEMPT = "LOGIN_ATTEMPT"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    ADMIN_CREATE_USER = "ADMIN_CREATE_USER"
    ADMIN_DELETE_USER = "ADMIN_DELETE_USER"
    ADMIN_UPDATE_USER = "ADMIN_UPDATE_USER"
    ADMIN_CREATE_TRIP = "ADMIN_CREATE_TRIP"
    ADMIN_UPDATE_TRIP = "ADMIN_UPDATE_TRIP"
    ADMIN_DELETE_TRIP = "ADMIN_DELETE_TRIP"
    ADMIN_CANCEL_TRIP = "ADMIN_CANCEL_TRIP"

class AuditStatus(str, Enum):
    """Outcome of an audited action"""
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

class SecurityEventRow(BaseModel):
    id: UUID
    action: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status: str
    created_at: datetime
    details: Optional[Dict[str, Any]] = None
    actor_id: Optional[UUID] = None
    actor_name: Optional[str] = None
    actor_email: Optional[str] = None
    target_id: Optional[UUID] = None
    target_name: Optional[str] = None
    target_email: Optional[str] = None

class ListMeta(BaseModel):
    current_page: int
    page_size: int
    total_items: int
    total_pages: int

class SecurityEventList(BaseModel):
    data: List[SecurityEventRow]
    meta: ListMeta
