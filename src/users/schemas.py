from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum
from uuid import UUID

class UserStatusFilter(str, Enum):
    """Account state filter for the admin user list"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    phone_number: str = Field(..., min_length=1, max_length=20)
    password: str = Field(..., min_length=8, max_length=128)
    user_type: str = ""
    reg_id: Optional[str] = None
    degree_program: Optional[str] = None
    designation: Optional[str] = None
    department: Optional[str] = None

class RegisterResponse(BaseModel):
    id: UUID
    name: str
    email: str
    user_type: str
    created_at: datetime

# Admin
class AdminCreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    phone_number: Optional[str] = None
    user_type: str = Field(..., min_length=1)
    reg_id: Optional[str] = None

class AdminUpdateUserRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone_number: Optional[str] = None
    user_type: Optional[str] = None

class UpdateUserStatusRequest(BaseModel):
    is_active: bool

class AdminUserItem(BaseModel):
    id: UUID
    name: str
    email: str
    phone_number: Optional[str] = None
    user_type: str
    is_active: bool
    is_verified: bool
    reg_id: Optional[str] = None
    created_at: datetime

class AdminUserPage(BaseModel):
    data: List[AdminUserItem]
    total_count: int
    page: int
    page_size: int
