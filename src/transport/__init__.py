"""
Transport Module

Campus bus trips for the GIKI Transport & Wallet API.

Trips belong to a route and carry their own booking window, capacity and
ordered stops. Riders place short-lived holds on seats, confirm them into
tickets (students pay from their wallet) and may cancel until booking
closes. A weekly quota per role and direction limits how many seats a
rider can take.

Key Components:
- service.py: TransportService for trips, holds, quota and tickets
- admin_service.py: TransportAdminService for scheduling, overrides,
  cancellations, ticket lists and manifest export
- cleanup.py: background loop returning seats of expired holds
- router.py: /transport and /admin endpoints
"""

from .router import router, admin_router
from .service import TransportService, compute_status, refresh_trip_statuses
from .admin_service import TransportAdminService
from .cleanup import hold_cleanup, cleanup_expired_holds

__all__ = [
    "router",
    "admin_router",
    "TransportService",
    "TransportAdminService",
    "compute_status",
    "refresh_trip_statuses",
    "hold_cleanup",
    "cleanup_expired_holds",
]
