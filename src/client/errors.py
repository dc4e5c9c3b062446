from enum import Enum
from typing import Any, Dict, Optional

import httpx


class AppError(Exception):
    """Error raised by the API client, normalized from any failure"""

    def __init__(
        self,
        code: str,
        message: str,
        status: int = 500,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        self.request_id = request_id

    def __repr__(self) -> str:
        return f"AppError(code={self.code!r}, status={self.status}, message={self.message!r})"


# ================================
# Error codes
# ================================
class AuthErrorCode(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    INVALID_TOKEN = "INVALID_TOKEN"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_INACTIVE = "USER_INACTIVE"
    USER_NOT_VERIFIED = "USER_NOT_VERIFIED"
    USER_PENDING_APPROVAL = "USER_PENDING_APPROVAL"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"
    REFRESH_TOKEN_EXPIRED = "REFRESH_TOKEN_EXPIRED"
    INVALID_VERIFICATION_TOKEN = "INVALID_VERIFICATION_TOKEN"
    VERIFICATION_TOKEN_EXPIRED = "VERIFICATION_TOKEN_EXPIRED"
    INVALID_RESET_TOKEN = "INVALID_RESET_TOKEN"
    RESET_TOKEN_EXPIRED = "RESET_TOKEN_EXPIRED"

class UserErrorCode(str, Enum):
    EMAIL_RESTRICTED = "EMAIL_RESTRICTED"
    INVALID_EMAIL = "INVALID_EMAIL"
    INVALID_USER_TYPE = "INVALID_USER_TYPE"
    MISSING_REG_ID = "MISSING_REG_ID"
    INVALID_REG_ID = "INVALID_REG_ID"
    USER_EXISTS = "USER_EXISTS"
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
    DUPLICATE_PHONE = "DUPLICATE_PHONE"
    DUPLICATE_REG_ID = "DUPLICATE_REG_ID"
    NOT_AN_EMPLOYEE = "NOT_AN_EMPLOYEE"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"

class PaymentErrorCode(str, Enum):
    INVALID_PAYMENT_METHOD = "INVALID_PAYMENT_METHOD"
    INVALID_PHONE = "INVALID_PHONE"
    INVALID_CNIC = "INVALID_CNIC"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    DUPLICATE_IDEMPOTENCY_KEY = "DUPLICATE_IDEMPOTENCY_KEY"
    TRANSACTION_TIMEOUT = "TRANSACTION_TIMEOUT"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    PAYMENT_INTERNAL_ERROR = "PAYMENT_INTERNAL_ERROR"

class WalletErrorCode(str, Enum):
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    WALLET_INACTIVE = "WALLET_INACTIVE"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    DUPLICATE_LEDGER_ENTRY = "DUPLICATE_LEDGER_ENTRY"
    SYSTEM_WALLET_NOT_FOUND = "SYSTEM_WALLET_NOT_FOUND"

class TransportErrorCode(str, Enum):
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    INVALID_ROUTE_ID = "INVALID_ROUTE_ID"
    TRIP_NOT_FOUND = "TRIP_NOT_FOUND"
    TRIP_FULL = "TRIP_FULL"
    TRIP_NOT_OPEN = "TRIP_NOT_OPEN"
    BUS_TYPE_MISMATCH = "BUS_TYPE_MISMATCH"
    HOLD_NOT_FOUND = "HOLD_NOT_FOUND"
    HOLD_EXPIRED = "HOLD_EXPIRED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    NO_QUOTA_POLICY = "NO_QUOTA_POLICY"
    INVALID_PASSENGER_NAME = "INVALID_PASSENGER_NAME"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    CANCELLATION_CLOSED = "CANCELLATION_CLOSED"
    REFUND_FAILED = "REFUND_FAILED"

class CommonErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_JSON = "INVALID_JSON"
    UNPROCESSABLE_ENTITY = "UNPROCESSABLE_ENTITY"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"

ERROR_CODE_GROUPS = {
    "auth": AuthErrorCode,
    "user": UserErrorCode,
    "payment": PaymentErrorCode,
    "wallet": WalletErrorCode,
    "transport": TransportErrorCode,
    "common": CommonErrorCode,
}

# ================================
# User-facing messages
# ================================
USER_MESSAGES: Dict[str, str] = {
    # Auth
    AuthErrorCode.INVALID_CREDENTIALS.value: "Invalid email or password",
    AuthErrorCode.INVALID_PASSWORD.value: "Invalid email or password",
    AuthErrorCode.USER_NOT_FOUND.value: "No account found with this email",
    AuthErrorCode.USER_INACTIVE.value: "Your account is inactive. Please contact support",
    AuthErrorCode.USER_NOT_VERIFIED.value: "Please verify your email address before signing in",
    AuthErrorCode.USER_PENDING_APPROVAL.value: "Your account is awaiting approval by the transport office",
    AuthErrorCode.INVALID_REFRESH_TOKEN.value: "Your session has ended. Please sign in again",
    AuthErrorCode.REFRESH_TOKEN_EXPIRED.value: "Your session has expired. Please sign in again",
    AuthErrorCode.INVALID_VERIFICATION_TOKEN.value: "This verification link is invalid",
    AuthErrorCode.VERIFICATION_TOKEN_EXPIRED.value: "This verification link has expired. Please sign up again",
    AuthErrorCode.INVALID_RESET_TOKEN.value: "This password reset link is invalid",
    AuthErrorCode.RESET_TOKEN_EXPIRED.value: "This password reset link has expired. Please request a new one",

    # User
    UserErrorCode.EMAIL_RESTRICTED.value: "Only @giki.edu.pk email addresses are allowed",
    UserErrorCode.USER_EXISTS.value: "An account already exists for this email. Please sign in",
    UserErrorCode.DUPLICATE_EMAIL.value: "An account with this email already exists",
    UserErrorCode.DUPLICATE_PHONE.value: "An account with this phone number already exists",
    UserErrorCode.DUPLICATE_REG_ID.value: "This registration number is already in use",
    UserErrorCode.INVALID_REG_ID.value: "Please enter a valid registration number",

    # Payment
    PaymentErrorCode.INVALID_PAYMENT_METHOD.value: "Invalid payment method selected",
    PaymentErrorCode.INVALID_PHONE.value: "Please enter a valid Pakistani mobile number",
    PaymentErrorCode.INVALID_CNIC.value: "Please enter the last 6 digits of your CNIC",
    PaymentErrorCode.TRANSACTION_NOT_FOUND.value: "Transaction not found",
    PaymentErrorCode.DUPLICATE_IDEMPOTENCY_KEY.value: "This payment has already been submitted",
    PaymentErrorCode.TRANSACTION_TIMEOUT.value: "The payment timed out. Please try again",
    PaymentErrorCode.GATEWAY_UNAVAILABLE.value: "Payment service is temporarily unavailable. Please try again later",

    # Wallet
    WalletErrorCode.WALLET_NOT_FOUND.value: "Wallet not found",
    WalletErrorCode.WALLET_INACTIVE.value: "Your wallet is not active. Please contact support",
    WalletErrorCode.INSUFFICIENT_BALANCE.value: "Insufficient wallet balance. Please top up and try again",
    WalletErrorCode.INSUFFICIENT_FUNDS.value: "Insufficient wallet balance. Please top up and try again",

    # Transport
    TransportErrorCode.ROUTE_NOT_FOUND.value: "The selected route could not be found",
    TransportErrorCode.INVALID_ROUTE_ID.value: "Invalid route selection",
    TransportErrorCode.TRIP_NOT_FOUND.value: "The selected trip is no longer available",
    TransportErrorCode.TRIP_FULL.value: "This trip is fully booked",
    TransportErrorCode.TRIP_NOT_OPEN.value: "Booking is not open for this trip",
    TransportErrorCode.BUS_TYPE_MISMATCH.value: "This bus is not available for your account type",
    TransportErrorCode.HOLD_NOT_FOUND.value: "Your reservation could not be found. Please try booking again",
    TransportErrorCode.HOLD_EXPIRED.value: "Your reservation has expired. Please try booking again",
    TransportErrorCode.QUOTA_EXCEEDED.value: "You have reached your weekly booking limit",
    TransportErrorCode.NO_QUOTA_POLICY.value: "Unable to verify booking quota. Please contact support",
    TransportErrorCode.INVALID_PASSENGER_NAME.value: "Please enter a valid passenger name",
    TransportErrorCode.TICKET_NOT_FOUND.value: "Ticket not found",
    TransportErrorCode.CANCELLATION_CLOSED.value: "The cancellation window for this ticket has closed",
    TransportErrorCode.REFUND_FAILED.value: "Refund processing failed. Please contact support",

    # Common
    CommonErrorCode.UNAUTHORIZED.value: "Please log in to continue",
    CommonErrorCode.FORBIDDEN.value: "You do not have permission to perform this action",
    CommonErrorCode.RATE_LIMIT_EXCEEDED.value: "Too many requests. Please wait a moment and try again",
    CommonErrorCode.INTERNAL_ERROR.value: "An unexpected error occurred. Please try again",
    CommonErrorCode.INVALID_JSON.value: "Invalid request format",
    CommonErrorCode.INVALID_INPUT.value: "Please check your input and try again",
    CommonErrorCode.CLIENT_ERROR.value: "Could not reach the server. Please check your connection",
}


def normalize_error(source: Any) -> AppError:
    """Turn an HTTP response or exception into an AppError.

    An API error envelope keeps its code; any other failed response becomes
    UNKNOWN_ERROR with the HTTP status; transport failures become
    CLIENT_ERROR with status 0.
    """
    if isinstance(source, AppError):
        return source

    if isinstance(source, httpx.Response):
        try:
            body = source.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
            meta = body.get("meta") or {}
            return AppError(
                error.get("code") or CommonErrorCode.UNKNOWN_ERROR.value,
                error.get("message") or "An error occurred",
                source.status_code,
                error.get("details") or {},
                meta.get("request_id"),
            )
        return AppError(
            CommonErrorCode.UNKNOWN_ERROR.value,
            f"Request failed with status code {source.status_code}",
            source.status_code,
        )

    if isinstance(source, Exception):
        return AppError(CommonErrorCode.CLIENT_ERROR.value, str(source) or type(source).__name__, 0)

    return AppError(CommonErrorCode.UNKNOWN_ERROR.value, "An unexpected error occurred", 0)


def user_message(error: Any) -> str:
    """Text to show the user for any error"""
    app_error = normalize_error(error)
    return USER_MESSAGES.get(app_error.code, app_error.message)
