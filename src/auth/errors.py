from fastapi import status

from src.common.errors import AppError

# Credentials
INVALID_CREDENTIALS = AppError("INVALID_CREDENTIALS", status.HTTP_401_UNAUTHORIZED, "Invalid email or password")
INVALID_PASSWORD = AppError("INVALID_PASSWORD", status.HTTP_401_UNAUTHORIZED, "Invalid password")
INVALID_TOKEN = AppError("INVALID_TOKEN", status.HTTP_401_UNAUTHORIZED, "Invalid or expired token")
TOKEN_CREATION = AppError("TOKEN_CREATION", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create token")

# Account state
USER_NOT_FOUND = AppError("USER_NOT_FOUND", status.HTTP_404_NOT_FOUND, "User not found")
USER_INACTIVE = AppError("USER_INACTIVE", status.HTTP_403_FORBIDDEN, "User account is inactive or not verified")
USER_NOT_VERIFIED = AppError(
    "USER_NOT_VERIFIED", status.HTTP_403_FORBIDDEN, "Please verify your email address before signing in"
)
USER_PENDING_APPROVAL = AppError(
    "USER_PENDING_APPROVAL", status.HTTP_403_FORBIDDEN, "Your account is awaiting administrator approval"
)

# Refresh tokens
INVALID_REFRESH_TOKEN = AppError("INVALID_REFRESH_TOKEN", status.HTTP_401_UNAUTHORIZED, "Invalid refresh token")
REFRESH_TOKEN_EXPIRED = AppError("REFRESH_TOKEN_EXPIRED", status.HTTP_401_UNAUTHORIZED, "Refresh token has expired")

# Email verification & password reset
INVALID_VERIFICATION_TOKEN = AppError(
    "INVALID_VERIFICATION_TOKEN", status.HTTP_400_BAD_REQUEST, "Invalid verification link"
)
VERIFICATION_TOKEN_EXPIRED = AppError(
    "VERIFICATION_TOKEN_EXPIRED", status.HTTP_400_BAD_REQUEST, "Verification link has expired"
)
INVALID_RESET_TOKEN = AppError("INVALID_RESET_TOKEN", status.HTTP_400_BAD_REQUEST, "Invalid password reset link")
RESET_TOKEN_EXPIRED = AppError("RESET_TOKEN_EXPIRED", status.HTTP_400_BAD_REQUEST, "Password reset link has expired")
