from fastapi import status

from src.common.errors import AppError

WALLET_NOT_FOUND = AppError("WALLET_NOT_FOUND", status.HTTP_404_NOT_FOUND, "Wallet not found")
WALLET_INACTIVE = AppError("WALLET_INACTIVE", status.HTTP_403_FORBIDDEN, "Wallet is not active")
INSUFFICIENT_BALANCE = AppError("INSUFFICIENT_BALANCE", status.HTTP_400_BAD_REQUEST, "Insufficient wallet balance")
INSUFFICIENT_FUNDS = AppError(
    "INSUFFICIENT_FUNDS", status.HTTP_400_BAD_REQUEST, "Insufficient funds to complete this transaction"
)
INVALID_AMOUNT = AppError("INVALID_AMOUNT", status.HTTP_400_BAD_REQUEST, "Amount must be greater than zero")
DUPLICATE_LEDGER_ENTRY = AppError(
    "DUPLICATE_LEDGER_ENTRY", status.HTTP_409_CONFLICT, "This transaction has already been recorded"
)
SYSTEM_WALLET_NOT_FOUND = AppError(
    "SYSTEM_WALLET_NOT_FOUND", status.HTTP_500_INTERNAL_SERVER_ERROR, "System wallet is not configured"
)
WALLET_DATABASE_ERROR = AppError(
    "WALLET_DATABASE_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR, "Wallet operation failed"
)
