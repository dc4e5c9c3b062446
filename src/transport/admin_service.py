import csv
import io
import logging
import uuid
import zipfile
from collections import Counter, OrderedDict
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, aliased

from src.audit.schemas import AuditAction
from src.audit.service import AuditService
from src.common import errors as common_errors
from src.common.params import DateRange, Pagination, app_timezone
from src.database import utcnow
from src.models import User, Route, Stop, Trip, TripStop, TripHold, Ticket
from src.transport import errors
from src.transport.schemas import (
    TripStatus, ManualStatus, BusType, TicketStatus, CreateTripRequest, AdminTicketItem,
    AdminTicketPage, WeeklyStats
)
from src.transport.service import compute_status, relevant_stop, weekly_trip_cache
from src.wallet.schemas import WalletType, LedgerTransactionType
from src.wallet.service import WalletService, paisa_to_rupees, rupees_to_paisa
from src.worker.queue import enqueue
from src.worker.schemas import JobType, TicketCancelledPayload

logger = logging.getLogger(__name__)

ADMIN_CANCELLATION_REASON = "Administrative Cancellation"
MANIFEST_TITLE = "GIKI TRANSPORT - TRIP MANIFEST"


def as_utc(value: datetime) -> datetime:
    """Naive datetimes from the admin panel are local to the campus"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=app_timezone())
    return value.astimezone(timezone.utc)


def validate_trip_request(payload: CreateTripRequest) -> None:
    if payload.total_capacity <= 0:
        raise common_errors.INVALID_INPUT("total capacity must be greater than zero")
    if payload.base_price < 0:
        raise common_errors.INVALID_INPUT("base price must not be negative")
    if payload.booking_open_offset_hours <= payload.booking_close_offset_hours:
        raise common_errors.INVALID_INPUT("booking open offset must be greater than close offset")


def manifest_filename(route_name: str, departure: datetime, trip_id: UUID) -> str:
    safe_name = route_name.replace(" ", "_").replace("/", "-")
    stamp = departure.astimezone(app_timezone()).strftime("%Y%m%d_%H%M")
    return f"{safe_name}_{stamp}_{str(trip_id)[:8]}.csv"


class TransportAdminService:
    """Back-office trip scheduling, overrides, cancellations and reports"""

    def __init__(self, db: Session):
        self.db = db
        self.wallets = WalletService(db)

    def _get_trip(self, trip_id: UUID, lock: bool = False) -> Trip:
        query = self.db.query(Trip).filter(Trip.id == trip_id)
        if lock:
            query = query.with_for_update()
        trip = query.first()
        if trip is None:
            raise errors.TRIP_NOT_FOUND()
        return trip

    def _sold_count(self, trip_id: UUID) -> int:
        return self.db.query(func.count(Ticket.id)).filter(
            Ticket.trip_id == trip_id, Ticket.status == TicketStatus.CONFIRMED.value
        ).scalar() or 0

    def _held_count(self, trip_id: UUID) -> int:
        return self.db.query(func.count(TripHold.id)).filter(TripHold.trip_id == trip_id).scalar() or 0

    # ================================
    # Trip CRUD
    # ================================
    def create_trip(self, payload: CreateTripRequest, admin: User, request: Optional[Request] = None) -> UUID:
        validate_trip_request(payload)
        route = self.db.query(Route).filter(Route.id == payload.route_id).first()
        if route is None:
            raise errors.ROUTE_NOT_FOUND()

        departure = as_utc(payload.departure_time)
        trip = Trip(
            id=uuid.uuid4(),
            route_id=route.id,
            departure_time=departure,
            booking_opens_at=departure - timedelta(hours=payload.booking_open_offset_hours),
            booking_closes_at=departure - timedelta(hours=payload.booking_close_offset_hours),
            total_capacity=payload.total_capacity,
            available_seats=payload.total_capacity,
            base_price=rupees_to_paisa(payload.base_price),
            bus_type=payload.bus_type.value,
            direction=payload.direction.value,
            next_serial=1,
        )
        trip.status = compute_status(trip)
        self.db.add(trip)
        for index, stop in enumerate(payload.stops):
            trip.stops.append(TripStop(stop_id=stop.stop_id, sequence=index + 1))

        AuditService.log(
            self.db, AuditAction.ADMIN_CREATE_TRIP, request=request, actor_id=admin.id, target_id=trip.id,
            details={"route": route.name, "departure_time": departure.isoformat()},
        )
        self.db.commit()
        weekly_trip_cache.clear()
        logger.info("trip %s created on route %s", trip.id, route.name)
        return trip.id

    def update_trip(
        self, trip_id: UUID, payload: CreateTripRequest, admin: User, request: Optional[Request] = None
    ) -> None:
        validate_trip_request(payload)
        trip = self._get_trip(trip_id, lock=True)

        sold = self._sold_count(trip.id)
        if payload.total_capacity < sold:
            raise common_errors.CONFLICT(f"cannot reduce capacity below sold tickets count ({sold})")
        held = self._held_count(trip.id)
        if payload.total_capacity < sold + held:
            raise common_errors.CONFLICT(f"cannot reduce capacity below sold and held seats ({sold + held})")

        departure = as_utc(payload.departure_time)
        trip.departure_time = departure
        trip.booking_opens_at = departure - timedelta(hours=payload.booking_open_offset_hours)
        trip.booking_closes_at = departure - timedelta(hours=payload.booking_close_offset_hours)
        trip.total_capacity = payload.total_capacity
        trip.available_seats = payload.total_capacity - sold - held
        trip.base_price = rupees_to_paisa(payload.base_price)
        trip.bus_type = payload.bus_type.value
        trip.status = compute_status(trip)

        AuditService.log(
            self.db, AuditAction.ADMIN_UPDATE_TRIP, request=request, actor_id=admin.id, target_id=trip.id,
            details={"total_capacity": payload.total_capacity, "departure_time": departure.isoformat()},
        )
        self.db.commit()
        weekly_trip_cache.clear()

    def delete_trip(self, trip_id: UUID, admin: User, request: Optional[Request] = None) -> None:
        trip = self._get_trip(trip_id, lock=True)
        if self.db.query(Ticket.id).filter(Ticket.trip_id == trip.id).first():
            raise errors.TRIP_HAS_BOOKINGS()

        self.db.query(TripHold).filter(TripHold.trip_id == trip.id).delete(synchronize_session=False)
        self.db.delete(trip)
        AuditService.log(
            self.db, AuditAction.ADMIN_DELETE_TRIP, request=request, actor_id=admin.id, target_id=trip_id,
        )
        self.db.commit()
        weekly_trip_cache.clear()

    # ================================
    # Manual status
    # ================================
    def set_manual_status(self, trip_id: UUID, status: Optional[ManualStatus]) -> None:
        trip = self._get_trip(trip_id, lock=True)
        trip.manual_status = status.value if status else None
        trip.status = compute_status(trip)
        self.db.commit()
        weekly_trip_cache.clear()

    def set_manual_status_batch(self, trip_ids: List[UUID], status: Optional[ManualStatus]) -> int:
        trips = self.db.query(Trip).filter(Trip.id.in_(trip_ids)).with_for_update().all()
        for trip in trips:
            trip.manual_status = status.value if status else None
            trip.status = compute_status(trip)
        self.db.commit()
        weekly_trip_cache.clear()
        return len(trips)

    def cancel_trip(self, trip_id: UUID, admin: User, request: Optional[Request] = None) -> int:
        """Cancel every confirmed ticket, refunding the ones paid from a wallet"""
        trip = self._get_trip(trip_id, lock=True)
        route_name = trip.route.name if trip.route else ""
        tickets = self.db.query(Ticket).filter(
            Ticket.trip_id == trip.id, Ticket.status == TicketStatus.CONFIRMED.value
        ).with_for_update().all()

        revenue = None
        now = utcnow()
        refunded = 0
        for ticket in tickets:
            refund_amount = 0
            booking = self.wallets.find_transaction(LedgerTransactionType.TRANSPORT_BOOKING.value, str(ticket.id))
            if booking is not None and trip.base_price > 0:
                try:
                    if revenue is None:
                        revenue = self.wallets.get_system_wallet(WalletType.SYS_REVENUE, lock=True)
                    user_wallet = self.wallets.get_or_create_wallet(ticket.user_id)
                    self.wallets.transfer(
                        revenue.id,
                        user_wallet.id,
                        trip.base_price,
                        LedgerTransactionType.REFUND.value,
                        str(ticket.id),
                        f"Refund for cancelled trip {route_name}",
                    )
                except common_errors.AppError as e:
                    raise errors.REFUND_FAILED(ticket_id=str(ticket.id)).wrap(e)
                refund_amount = trip.base_price
                refunded += 1

            user = ticket.user
            if user is not None:
                enqueue(self.db, JobType.SEND_TICKET_CANCELLED, TicketCancelledPayload(
                    email=user.email,
                    user_name=user.name,
                    ticket_code=ticket.ticket_code,
                    route_name=route_name,
                    refund_amount=refund_amount // 100,
                    reason=ADMIN_CANCELLATION_REASON,
                ))
            ticket.status = TicketStatus.CANCELLED.value
            ticket.status_updated_at = now

        trip.available_seats = min(trip.available_seats + len(tickets), trip.total_capacity)
        trip.manual_status = ManualStatus.CANCELLED.value
        trip.status = TripStatus.CANCELLED.value

        AuditService.log(
            self.db, AuditAction.ADMIN_CANCEL_TRIP, request=request, actor_id=admin.id, target_id=trip.id,
            details={"tickets": len(tickets), "refunded": refunded},
        )
        self.db.commit()
        weekly_trip_cache.clear()
        logger.info("trip %s cancelled: %d tickets, %d refunds", trip.id, len(tickets), refunded)
        return len(tickets)

    # ================================
    # Tickets
    # ================================
    def _ticket_query(self):
        pickup = aliased(Stop)
        dropoff = aliased(Stop)
        query = (
            self.db.query(Ticket, Trip, Route, User, pickup.name, dropoff.name)
            .join(Trip, Ticket.trip_id == Trip.id)
            .join(Route, Trip.route_id == Route.id)
            .join(User, Ticket.user_id == User.id)
            .outerjoin(pickup, Ticket.pickup_stop_id == pickup.id)
            .outerjoin(dropoff, Ticket.dropoff_stop_id == dropoff.id)
        )
        return query

    @staticmethod
    def _ticket_item(row) -> AdminTicketItem:
        ticket, trip, route, user, pickup_name, dropoff_name = row
        return AdminTicketItem(
            ticket_id=ticket.id,
            serial_no=ticket.serial_no,
            ticket_code=ticket.ticket_code,
            passenger_name=ticket.passenger_name,
            passenger_relation=ticket.passenger_relation,
            status=ticket.status,
            booking_time=ticket.booking_time,
            status_updated_at=ticket.status_updated_at,
            user_name=user.name,
            user_email=user.email,
            trip_id=trip.id,
            departure_time=trip.departure_time,
            bus_type=trip.bus_type,
            direction=trip.direction,
            route_name=route.name,
            pickup_location=pickup_name or "",
            dropoff_location=dropoff_name or "",
            price=paisa_to_rupees(trip.base_price),
        )

    def get_weekly_stats(self, date_range: DateRange) -> WeeklyStats:
        rows = (
            self.db.query(Trip.bus_type, func.count(Ticket.id))
            .join(Trip, Ticket.trip_id == Trip.id)
            .filter(
                Ticket.status == TicketStatus.CONFIRMED.value,
                Trip.departure_time >= date_range.start,
                Trip.departure_time < date_range.end,
            )
            .group_by(Trip.bus_type)
            .all()
        )
        counts = dict(rows)
        return WeeklyStats(
            student_count=counts.get(BusType.STUDENT.value, 0),
            employee_count=counts.get(BusType.EMPLOYEE.value, 0),
            total_confirmed=sum(counts.values()),
        )

    def get_tickets(
        self,
        date_range: DateRange,
        pagination: Pagination,
        bus_type: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> AdminTicketPage:
        query = self._ticket_query().filter(
            Trip.departure_time >= date_range.start,
            Trip.departure_time < date_range.end,
        )
        if bus_type and bus_type.lower() != "all":
            query = query.filter(Trip.bus_type == bus_type.upper())
        if status and status.lower() != "all":
            query = query.filter(Ticket.status == status.upper())
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Ticket.passenger_name.ilike(pattern),
                Ticket.ticket_code.ilike(pattern),
                User.name.ilike(pattern),
                User.email.ilike(pattern),
            ))

        total = query.count()
        rows = (
            query.order_by(Trip.departure_time, Ticket.serial_no)
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )
        return AdminTicketPage(
            data=[self._ticket_item(row) for row in rows],
            total_count=total,
            page=pagination.page,
            page_size=pagination.page_size,
            stats=self.get_weekly_stats(date_range),
        )

    def get_ticket_history(self, pagination: Pagination) -> AdminTicketPage:
        """Tickets of trips that have already departed, newest first"""
        query = self._ticket_query().filter(Trip.departure_time < utcnow())
        total = query.count()
        rows = (
            query.order_by(Trip.departure_time.desc(), Ticket.serial_no)
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )
        return AdminTicketPage(
            data=[self._ticket_item(row) for row in rows],
            total_count=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )

    # ================================
    # Export
    # ================================
    def export_trips(self, date_range: DateRange, route_ids: Optional[List[UUID]] = None) -> bytes:
        """ZIP of per-trip CSV manifests, passengers grouped by the stop they are tracked at"""
        query = self._ticket_query().filter(
            Ticket.status == TicketStatus.CONFIRMED.value,
            Trip.departure_time >= date_range.start,
            Trip.departure_time < date_range.end,
        )
        if route_ids:
            query = query.filter(Trip.route_id.in_(route_ids))
        rows = query.order_by(Trip.departure_time, Ticket.serial_no).all()

        trips: "OrderedDict[UUID, Tuple[Trip, Route, list]]" = OrderedDict()
        for ticket, trip, route, user, pickup_name, dropoff_name in rows:
            stop_name = relevant_stop(trip.direction, pickup_name, dropoff_name) or "Unassigned"
            trips.setdefault(trip.id, (trip, route, []))[2].append((stop_name, ticket, user))

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for trip, route, passengers in trips.values():
                name = manifest_filename(route.name, trip.departure_time, trip.id)
                archive.writestr(name, self._manifest(trip, route, passengers))
        return buffer.getvalue()

    def _manifest(self, trip: Trip, route: Route, passengers: list) -> str:
        order = {stop.stop.name: stop.sequence for stop in trip.stops if stop.stop}
        passengers = sorted(passengers, key=lambda p: (order.get(p[0], len(order) + 1), p[0], p[1].serial_no))
        counts = Counter(stop_name for stop_name, _, _ in passengers)

        out = io.StringIO()
        writer = csv.writer(out)
        writer.writerow([MANIFEST_TITLE])
        writer.writerow(["Route", route.name])
        writer.writerow(["Bus", trip.bus_type])
        writer.writerow(["Departure", trip.departure_time.astimezone(app_timezone()).strftime("%a, %d %b %H:%M")])
        writer.writerow(["Direction", trip.direction])
        writer.writerow(["Total Passengers", len(passengers)])
        writer.writerow([])

        current_stop = None
        for stop_name, ticket, user in passengers:
            if stop_name != current_stop:
                if current_stop is not None:
                    writer.writerow([])
                current_stop = stop_name
                writer.writerow([f"STOP: {stop_name.upper()}", f"TOTAL: {counts[stop_name]}"])
                writer.writerow(["Serial", "Ticket Code", "Passenger Name", "Mobile Number"])
            writer.writerow([ticket.serial_no, ticket.ticket_code, ticket.passenger_name, user.phone_number or ""])
        return out.getvalue()
