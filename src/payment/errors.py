from fastapi import status

from src.common.errors import AppError

# Validation
INVALID_PAYMENT_METHOD = AppError(
    "INVALID_PAYMENT_METHOD", status.HTTP_400_BAD_REQUEST, "Invalid payment method selected"
)
INVALID_PHONE = AppError(
    "INVALID_PHONE", status.HTTP_400_BAD_REQUEST,
    "Invalid phone number format. Please enter a valid Pakistani mobile number.",
)
INVALID_CNIC = AppError(
    "INVALID_CNIC", status.HTTP_400_BAD_REQUEST, "Invalid CNIC format. Please enter the last 6 digits of your CNIC."
)

# Transactions
TRANSACTION_NOT_FOUND = AppError("TRANSACTION_NOT_FOUND", status.HTTP_404_NOT_FOUND, "Transaction not found")
DUPLICATE_IDEMPOTENCY_KEY = AppError(
    "DUPLICATE_IDEMPOTENCY_KEY", status.HTTP_409_CONFLICT, "This request has already been processed"
)
TRANSACTION_TIMEOUT = AppError("TRANSACTION_TIMEOUT", status.HTTP_408_REQUEST_TIMEOUT, "Transaction timed out")
TRANSACTION_NOT_PENDING = AppError(
    "CONFLICT", status.HTTP_409_CONFLICT, "Transaction is no longer awaiting payment"
)

# Gateway
GATEWAY_UNAVAILABLE = AppError(
    "GATEWAY_UNAVAILABLE", status.HTTP_502_BAD_GATEWAY,
    "Payment service is temporarily unavailable. Please try again later.",
)
INVALID_SIGNATURE = AppError("INVALID_SIGNATURE", status.HTTP_400_BAD_REQUEST, "Invalid payment gateway signature")

# Internal
PAYMENT_INTERNAL_ERROR = AppError(
    "PAYMENT_INTERNAL_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR, "Payment internal error"
)
