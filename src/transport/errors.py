from fastapi import status

from src.common.errors import AppError

# Routes
ROUTE_NOT_FOUND = AppError("ROUTE_NOT_FOUND", status.HTTP_404_NOT_FOUND, "Route not found")
INVALID_ROUTE_ID = AppError("INVALID_ROUTE_ID", status.HTTP_400_BAD_REQUEST, "Invalid route ID format")

# Trips
TRIP_NOT_FOUND = AppError("TRIP_NOT_FOUND", status.HTTP_404_NOT_FOUND, "Trip not found")
TRIP_CREATION_FAILED = AppError("TRIP_CREATION_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create trip")
TRIP_FULL = AppError("TRIP_FULL", status.HTTP_409_CONFLICT, "Trip is full")
TRIP_NOT_OPEN = AppError("TRIP_NOT_OPEN", status.HTTP_409_CONFLICT, "Booking is not open for this trip")
TRIP_HAS_BOOKINGS = AppError(
    "TRIP_HAS_BOOKINGS", status.HTTP_409_CONFLICT, "Trip has bookings; cancel it instead of deleting"
)

# Holds & quota
BUS_TYPE_MISMATCH = AppError("BUS_TYPE_MISMATCH", status.HTTP_403_FORBIDDEN, "User role must match trip bus type")
NO_QUOTA_POLICY = AppError("NO_QUOTA_POLICY", status.HTTP_403_FORBIDDEN, "No quota policy found for user role")
QUOTA_EXCEEDED = AppError("QUOTA_EXCEEDED", status.HTTP_409_CONFLICT, "Weekly booking quota exceeded")
HOLD_NOT_FOUND = AppError("HOLD_NOT_FOUND", status.HTTP_404_NOT_FOUND, "Hold not found")
HOLD_EXPIRED = AppError("HOLD_EXPIRED", status.HTTP_410_GONE, "Hold has expired")

# Tickets
INVALID_PASSENGER_NAME = AppError("INVALID_PASSENGER_NAME", status.HTTP_400_BAD_REQUEST, "Passenger name is required")
INVALID_RELATION = AppError("INVALID_RELATION", status.HTTP_400_BAD_REQUEST, "Invalid passenger relation")
TICKET_NOT_FOUND = AppError("TICKET_NOT_FOUND", status.HTTP_404_NOT_FOUND, "Ticket not found")
TICKET_CODE_GENERATION_FAILED = AppError(
    "TICKET_CODE_GENERATION_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR, "Could not generate a unique ticket code"
)
CANCELLATION_CLOSED = AppError("CANCELLATION_CLOSED", status.HTTP_409_CONFLICT, "Cancellation window has closed")
REFUND_FAILED = AppError("REFUND_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to process refund")
