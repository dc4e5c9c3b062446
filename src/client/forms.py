import re
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, validator

STUDENT_EMAIL_PATTERN = re.compile(r"^(u\d+|gcs\d+|gcv\d+|gee\d+|gem\d+)@giki\.edu\.pk$")
CNIC_LAST6_PATTERN = re.compile(r"^\d{6}$")


class SignUpType(str, Enum):
    STUDENT = "STUDENT"
    EMPLOYEE = "EMPLOYEE"

class PaymentMethod(str, Enum):
    MWALLET = "MWALLET"
    CARD = "CARD"

class PassengerRelation(str, Enum):
    SELF = "SELF"
    SPOUSE = "SPOUSE"
    CHILD = "CHILD"


def digits_only(value: str) -> str:
    return re.sub(r"\D", "", value or "")


# ================================
# Auth
# ================================
class SignUpForm(BaseModel):
    user_type: SignUpType
    name: str
    email: str
    phone_number: str
    password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str
    reg_id: Optional[str] = None

    @validator('name')
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Full name is required')
        return v.strip()

    @validator('email')
    def validate_email(cls, v, values):
        email = v.strip().lower()
        is_student_email = bool(STUDENT_EMAIL_PATTERN.match(email))
        user_type = values.get('user_type')
        if user_type == SignUpType.STUDENT and not is_student_email:
            raise ValueError('Student email must look like u2021000@giki.edu.pk or gcs2400@giki.edu.pk')
        if user_type == SignUpType.EMPLOYEE and is_student_email:
            raise ValueError('Please signup as a student (Graduate students use student signup)')
        return email

    @validator('phone_number')
    def validate_phone(cls, v):
        digits = digits_only(v)
        if not 10 <= len(digits) <= 11:
            raise ValueError('Phone number must have 10 or 11 digits')
        return digits

    @validator('confirm_password')
    def passwords_match(cls, v, values):
        if not v:
            raise ValueError('Please confirm your password')
        if 'password' in values and v != values['password']:
            raise ValueError('Passwords do not match')
        return v

    @validator('reg_id', always=True)
    def validate_reg_id(cls, v, values):
        if values.get('user_type') == SignUpType.STUDENT and not (v or '').strip():
            raise ValueError('Registration number is required for students')
        return v.strip() if v else v

    def to_payload(self) -> dict:
        payload = self.dict(exclude={'confirm_password'})
        payload['user_type'] = self.user_type.value
        return payload

class SignInForm(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)

    @validator('email')
    def normalize_email(cls, v):
        return v.strip().lower()

class ResetPasswordForm(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str

    @validator('confirm_password')
    def passwords_match(cls, v, values):
        if 'new_password' in values and v != values['new_password']:
            raise ValueError("Passwords don't match")
        return v

# ================================
# Wallet
# ================================
class TopUpForm(BaseModel):
    amount: float = Field(..., ge=1)
    method: PaymentMethod
    phone_number: Optional[str] = None
    cnic_last6: Optional[str] = None

    @validator('phone_number', always=True)
    def validate_phone(cls, v, values):
        if values.get('method') != PaymentMethod.MWALLET:
            return v
        digits = digits_only(v)
        if not 10 <= len(digits) <= 11:
            raise ValueError('A valid mobile number is required for mobile wallet payments')
        return digits

    @validator('cnic_last6', always=True)
    def validate_cnic(cls, v, values):
        if values.get('method') != PaymentMethod.MWALLET:
            return v
        if not v or not CNIC_LAST6_PATTERN.match(v.strip()):
            raise ValueError('Enter the last 6 digits of your CNIC')
        return v.strip()

# ================================
# Transport
# ================================
class HoldForm(BaseModel):
    trip_id: UUID
    count: int = Field(1, ge=1, le=5)
    pickup_stop_id: Optional[UUID] = None
    dropoff_stop_id: Optional[UUID] = None

    @validator('dropoff_stop_id')
    def validate_stops(cls, v, values):
        if v is not None and values.get('pickup_stop_id') == v:
            raise ValueError('Pickup and dropoff stops cannot be the same')
        return v

class BookingSelection(BaseModel):
    route_id: UUID
    trip_id: UUID
    ticket_count: int = Field(1, ge=1, le=3)

class PassengerForm(BaseModel):
    name: str
    relation: PassengerRelation = PassengerRelation.SELF

    @validator('name')
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Name is required')
        return v.strip()
