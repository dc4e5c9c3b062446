from fastapi import status

from src.common.errors import AppError

# Registration validation
EMAIL_RESTRICTED = AppError(
    "EMAIL_RESTRICTED", status.HTTP_403_FORBIDDEN, "Only @giki.edu.pk email addresses are allowed"
)
INVALID_EMAIL = AppError("INVALID_EMAIL", status.HTTP_400_BAD_REQUEST, "Invalid email format")
INVALID_USER_TYPE = AppError("INVALID_USER_TYPE", status.HTTP_400_BAD_REQUEST, "Invalid user type")
MISSING_REG_ID = AppError("MISSING_REG_ID", status.HTTP_400_BAD_REQUEST, "Registration number required for students")
INVALID_REG_ID = AppError("INVALID_REG_ID", status.HTTP_400_BAD_REQUEST, "Invalid registration ID format")

# Persistence
USER_CREATION_FAILED = AppError("USER_CREATION_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create user")
PROFILE_CREATION_FAILED = AppError(
    "PROFILE_CREATION_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create user profile"
)

# Conflicts
USER_EXISTS = AppError("USER_EXISTS", status.HTTP_409_CONFLICT, "Account already exists. Please login.")
DUPLICATE_EMAIL = AppError("DUPLICATE_EMAIL", status.HTTP_409_CONFLICT, "An account with this email already exists")
DUPLICATE_PHONE = AppError(
    "DUPLICATE_PHONE", status.HTTP_409_CONFLICT, "An account with this phone number already exists"
)
DUPLICATE_REG_ID = AppError("DUPLICATE_REG_ID", status.HTTP_409_CONFLICT, "This registration number is already in use")
REG_ID_CONFLICT = AppError(
    "CONFLICT", status.HTTP_409_CONFLICT, "This registration number is linked to another email address"
)
USER_HAS_HISTORY = AppError(
    "CONFLICT", status.HTTP_409_CONFLICT, "User has bookings or payments; deactivate the account instead"
)

# Admin actions
USER_NOT_FOUND = AppError("USER_NOT_FOUND", status.HTTP_404_NOT_FOUND, "User not found")
NOT_AN_EMPLOYEE = AppError("NOT_AN_EMPLOYEE", status.HTTP_400_BAD_REQUEST, "User is not an employee")
ALREADY_VERIFIED = AppError("ALREADY_VERIFIED", status.HTTP_400_BAD_REQUEST, "User is already verified")
