from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID

class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)

class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)

class SignOutRequest(BaseModel):
    refresh_token: Optional[str] = None

class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)

class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)

# Responses
class AuthTokens(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: datetime

class UserResponse(BaseModel):
    id: UUID
    name: str
    email: str
    phone_number: Optional[str] = None
    user_type: str
    created_at: datetime
    auth: Optional[AuthTokens] = None

    class Config:
        from_attributes = True

class MessageResponse(BaseModel):
    message: str
