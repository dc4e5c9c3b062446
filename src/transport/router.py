from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from src.auth.dependencies import get_current_user, require_transport_admin
from src.common import errors as common_errors
from src.common.params import DateRange, Pagination, date_range_params, pagination_params
from src.common.responses import envelope
from src.database import get_db
from src.models import User
from src.transport.admin_service import TransportAdminService
from src.transport.schemas import (
    HoldSeatsRequest, ConfirmBatchRequest, CreateTripRequest, CreateTripResponse,
    UpdateTripStatusRequest, BatchTripStatusRequest, StatusMessage, Message
)
from src.transport.service import TransportService

router = APIRouter()
admin_router = APIRouter()

def parse_uuid_list(raw: Optional[str], field: str) -> List[UUID]:
    ids = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(UUID(part))
        except ValueError as e:
            raise common_errors.INVALID_INPUT(f"invalid uuid in {field}: {part}").wrap(e)
    return ids

# ================================
# Routes & trips
# ================================
@router.get("/routes")
def list_routes(request: Request, db: Session = Depends(get_db), _user: User = Depends(get_current_user)):
    return envelope(request, TransportService(db).list_routes())

@router.get("/routes/{route_id}/template")
def get_route_template(
    route_id: str, request: Request, db: Session = Depends(get_db), _user: User = Depends(get_current_user)
):
    """Stops, booking window defaults and quick slots of a route"""
    return envelope(request, TransportService(db).get_route_template(route_id))

@router.get("/routes/{route_id}/trips/upcoming")
def get_upcoming_route_trips(
    route_id: str, request: Request, db: Session = Depends(get_db), _user: User = Depends(get_current_user)
):
    return envelope(request, TransportService(db).get_upcoming_route_trips(route_id))

@router.get("/trips/upcoming")
def get_weekly_trips(
    request: Request,
    date_range: DateRange = Depends(date_range_params),
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    """Trips departing in the range, Monday to Monday of the current week by default"""
    return envelope(request, TransportService(db).get_weekly_trips(date_range))

# ================================
# Holds & bookings
# ================================
@router.post("/holds", status_code=status.HTTP_201_CREATED)
def hold_seats(
    payload: HoldSeatsRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Reserve seats for a few minutes while passenger details are entered"""
    return envelope(request, TransportService(db).hold_seats(current_user, payload))

@router.post("/confirm")
def confirm_holds(
    payload: ConfirmBatchRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Convert held seats into tickets"""
    return envelope(request, TransportService(db).confirm_batch(current_user, payload.confirmations))

@router.get("/holds/active")
def get_active_holds(request: Request, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return envelope(request, TransportService(db).get_active_holds(current_user))

@router.delete("/holds/{hold_id}")
def release_hold(
    hold_id: UUID, request: Request, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    TransportService(db).release_hold(current_user, hold_id)
    return envelope(request, StatusMessage(status="RELEASED"))

@router.delete("/holds")
def release_all_holds(request: Request, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    TransportService(db).release_all_holds(current_user)
    return envelope(request, StatusMessage(status="RELEASED"))

@router.get("/quota")
def get_quota(request: Request, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Weekly booking quota per direction"""
    return envelope(request, TransportService(db).get_quota(current_user))

@router.get("/tickets")
def get_my_tickets(request: Request, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return envelope(request, TransportService(db).get_user_tickets(current_user))

@router.delete("/tickets/{ticket_id}")
def cancel_ticket(
    ticket_id: UUID, request: Request, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    """Cancel a ticket before booking closes; students are refunded"""
    TransportService(db).cancel_ticket(current_user, ticket_id)
    return envelope(request, StatusMessage(status="CANCELLED"))

# ================================
# Admin
# ================================
@admin_router.get("/routes")
def admin_list_routes(request: Request, db: Session = Depends(get_db), _admin: User = Depends(require_transport_admin)):
    return envelope(request, TransportService(db).list_routes())

@admin_router.get("/routes/{route_id}/template")
def admin_get_route_template(
    route_id: str, request: Request, db: Session = Depends(get_db), _admin: User = Depends(require_transport_admin)
):
    return envelope(request, TransportService(db).get_route_template(route_id))

@admin_router.get("/trips")
def admin_list_trips(
    request: Request,
    route_id: Optional[UUID] = Query(None),
    date_range: DateRange = Depends(date_range_params),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_transport_admin),
):
    return envelope(request, TransportService(db).list_trips(date_range, route_id))

@admin_router.post("/trips", status_code=status.HTTP_201_CREATED)
def create_trip(
    payload: CreateTripRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_transport_admin),
):
    trip_id = TransportAdminService(db).create_trip(payload, admin, request)
    return envelope(request, CreateTripResponse(trip_id=trip_id))

@admin_router.get("/trips/export")
def export_trips(
    route_ids: Optional[str] = Query(None, description="Comma separated route ids"),
    date_range: DateRange = Depends(date_range_params),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_transport_admin),
):
    """ZIP of passenger manifests, one CSV per trip"""
    content = TransportAdminService(db).export_trips(date_range, parse_uuid_list(route_ids, "route_ids"))
    filename = f"trips_export_{datetime.now().strftime('%Y%m%d')}.zip"
    return Response(
        content=content,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@admin_router.patch("/trips/status")
def batch_update_trip_status(
    payload: BatchTripStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_transport_admin),
):
    updated = TransportAdminService(db).set_manual_status_batch(payload.trip_ids, payload.status)
    return envelope(request, Message(message=f"{updated} trips updated"))

@admin_router.put("/trips/{trip_id}")
def update_trip(
    trip_id: UUID,
    payload: CreateTripRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_transport_admin),
):
    TransportAdminService(db).update_trip(trip_id, payload, admin, request)
    return envelope(request, Message(message="Trip updated"))

@admin_router.delete("/trips/{trip_id}")
def delete_trip(
    trip_id: UUID, request: Request, db: Session = Depends(get_db), admin: User = Depends(require_transport_admin)
):
    TransportAdminService(db).delete_trip(trip_id, admin, request)
    return envelope(request, StatusMessage(status="deleted"))

@admin_router.patch("/trips/{trip_id}/status")
def update_trip_status(
    trip_id: UUID,
    payload: UpdateTripStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_transport_admin),
):
    """Override the computed status; send null to clear the override"""
    TransportAdminService(db).set_manual_status(trip_id, payload.status)
    return envelope(request, Message(message="Trip status updated"))

@admin_router.post("/trips/{trip_id}/cancel")
def cancel_trip(
    trip_id: UUID, request: Request, db: Session = Depends(get_db), admin: User = Depends(require_transport_admin)
):
    TransportAdminService(db).cancel_trip(trip_id, admin, request)
    return envelope(request, Message(message="Trip cancelled and refunds processed"))

@admin_router.get("/tickets")
def admin_list_tickets(
    request: Request,
    bus_type: Optional[str] = Query(None, description="STUDENT, EMPLOYEE or all"),
    status: Optional[str] = Query(None, description="CONFIRMED or CANCELLED"),
    search: Optional[str] = Query(None),
    date_range: DateRange = Depends(date_range_params),
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_transport_admin),
):
    page = TransportAdminService(db).get_tickets(date_range, pagination, bus_type, status, search)
    return envelope(request, page)

@admin_router.get("/tickets/history")
def admin_ticket_history(
    request: Request,
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_transport_admin),
):
    """Tickets of departed trips"""
    return envelope(request, TransportAdminService(db).get_ticket_history(pagination))
