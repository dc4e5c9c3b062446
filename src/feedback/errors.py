from fastapi import status

from src.common.errors import AppError

INVALID_RATING = AppError("INVALID_RATING", status.HTTP_400_BAD_REQUEST, "Rating must be between 1 and 5")
FEEDBACK_CREATION_FAILED = AppError(
    "FEEDBACK_CREATION_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to save feedback"
)
