import logging
import secrets
import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from src.auth.roles import Role, normalize_role, is_student, is_transport_admin
from src.common import errors as common_errors
from src.common.params import DateRange, app_timezone, start_of_week
from src.database import utcnow
from src.models import (
    User, Route, RouteStop, Trip, TripStop, TripHold, Ticket, QuotaRule
)
from src.transport import errors
from src.transport.schemas import (
    TripStatus, ManualStatus, Direction, TicketStatus, PassengerRelation,
    RouteItem, RouteTemplateResponse, RuleSet, StopItem, QuickSlotItem,
    TripResponse, TripStopItem, HoldSeatsRequest, HoldItem, HoldSeatsResponse, ActiveHoldResponse,
    ConfirmItem, BookedTicket, ConfirmBatchResponse, QuotaUsage, QuotaResponse, MyTicketResponse
)
from src.wallet.schemas import WalletType, LedgerTransactionType
from src.wallet.service import WalletService, paisa_to_rupees
from src.worker.queue import enqueue
from src.worker.schemas import JobType, TicketDetail, TicketConfirmedPayload

logger = logging.getLogger(__name__)

TICKET_CODE_CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TICKET_CODE_LENGTH = 6
TICKET_CODE_ATTEMPTS = 5
MAX_SEATS_PER_HOLD = 5
HOLD_TTL = timedelta(minutes=3)
EXTENDED_HOLD_TTL = timedelta(minutes=7)
DAY_LABELS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


# ================================
# Trip status
# ================================
def compute_status(trip: Trip, now: Optional[datetime] = None) -> str:
    """Booking state from the trip's window and seats; a manual status wins"""
    now = now or utcnow()
    if trip.manual_status == ManualStatus.CANCELLED.value:
        return TripStatus.CANCELLED.value
    if trip.manual_status in (ManualStatus.OPEN.value, ManualStatus.CLOSED.value):
        return trip.manual_status
    if now < trip.booking_opens_at:
        return TripStatus.SCHEDULED.value
    if now >= trip.booking_closes_at:
        return TripStatus.CLOSED.value
    if trip.available_seats <= 0:
        return TripStatus.FULL.value
    return TripStatus.OPEN.value


def refresh_trip_statuses(db: Session, now: Optional[datetime] = None) -> Tuple[int, int]:
    """Open trips whose booking window started and close those whose window ended.

    Only trips without a manual status are touched. The caller commits.
    Returns ``(opened, closed)``.
    """
    now = now or utcnow()
    trips = db.query(Trip).filter(
        Trip.manual_status.is_(None),
        Trip.status.in_([TripStatus.SCHEDULED.value, TripStatus.OPEN.value, TripStatus.FULL.value]),
        Trip.booking_opens_at <= now,
    ).all()

    opened = closed = 0
    for trip in trips:
        new_status = compute_status(trip, now)
        if new_status == trip.status:
            continue
        if new_status == TripStatus.CLOSED.value:
            closed += 1
        elif trip.status == TripStatus.SCHEDULED.value:
            opened += 1
        trip.status = new_status
    return opened, closed


def generate_ticket_code() -> str:
    return "".join(secrets.choice(TICKET_CODE_CHARSET) for _ in range(TICKET_CODE_LENGTH))


def hold_ttl(user_type: str) -> timedelta:
    role = normalize_role(user_type)
    if is_transport_admin(role) or role == Role.EMPLOYEE.value:
        return EXTENDED_HOLD_TTL
    return HOLD_TTL


def format_trip_time(value: datetime) -> str:
    return value.astimezone(app_timezone()).strftime("%a, %d %b %H:%M")


def parse_route_id(raw: str) -> UUID:
    try:
        return UUID(raw)
    except (TypeError, ValueError) as e:
        raise errors.INVALID_ROUTE_ID().wrap(e)


def trip_response(trip: Trip, now: Optional[datetime] = None) -> TripResponse:
    return TripResponse(
        id=trip.id,
        route_id=trip.route_id,
        route_name=trip.route.name if trip.route else "",
        direction=trip.direction,
        bus_type=trip.bus_type,
        departure_time=trip.departure_time,
        booking_opens_at=trip.booking_opens_at,
        booking_closes_at=trip.booking_closes_at,
        status=compute_status(trip, now),
        manual_status=trip.manual_status,
        available_seats=trip.available_seats,
        total_capacity=trip.total_capacity,
        base_price=paisa_to_rupees(trip.base_price),
        stops=[
            TripStopItem(stop_id=stop.stop_id, stop_name=stop.stop.name if stop.stop else "", sequence=stop.sequence)
            for stop in trip.stops
        ],
    )


def relevant_stop(direction: str, pickup, dropoff):
    """Outbound passengers are identified by where they get off, inbound by where they board"""
    return dropoff if direction == Direction.OUTBOUND.value else pickup


# ================================
# Weekly trip cache
# ================================
class TripCache:
    """Short-lived cache of the weekly trip board, keyed by date range"""

    def __init__(self, ttl_seconds: float = 5.0, max_entries: int = 100):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: Dict[str, Tuple[float, List[TripResponse]]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(date_range: DateRange) -> str:
        return f"{int(date_range.start.timestamp())}_{int(date_range.end.timestamp())}"

    def get(self, key: str) -> Optional[List[TripResponse]]:
        with self._lock:
            entry = self._entries.get(key)
        if entry and time.monotonic() < entry[0]:
            return entry[1]
        return None

    def put(self, key: str, data: List[TripResponse]) -> None:
        with self._lock:
            if len(self._entries) > self.max_entries:
                self._entries.clear()
            self._entries[key] = (time.monotonic() + self.ttl_seconds, data)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


weekly_trip_cache = TripCache()


class TransportService:
    """Trip browsing, seat holds, booking confirmation and cancellation"""

    def __init__(self, db: Session):
        self.db = db
        self.wallets = WalletService(db)

    def _trip_query(self):
        return self.db.query(Trip).options(
            joinedload(Trip.route),
            selectinload(Trip.stops).joinedload(TripStop.stop),
        )

    def _lock_trip(self, trip_id: UUID) -> Optional[Trip]:
        return self.db.query(Trip).filter(Trip.id == trip_id).with_for_update().first()

    # ================================
    # Routes
    # ================================
    def list_routes(self) -> List[RouteItem]:
        routes = self.db.query(Route).filter(Route.is_active.is_(True)).order_by(Route.name).all()
        return [RouteItem(route_id=route.id, route_name=route.name) for route in routes]

    def get_route_template(self, raw_route_id: str) -> RouteTemplateResponse:
        route_id = parse_route_id(raw_route_id)
        route = self.db.query(Route).options(
            selectinload(Route.route_stops).joinedload(RouteStop.stop),
            selectinload(Route.weekly_schedules),
        ).filter(Route.id == route_id).first()
        if route is None:
            raise errors.ROUTE_NOT_FOUND()

        slots = sorted(route.weekly_schedules, key=lambda slot: (slot.day_of_week, slot.departure_time))
        return RouteTemplateResponse(
            route_id=route.id,
            route_name=route.name,
            rules=RuleSet(
                open_hours_before=route.default_booking_open_offset_hours,
                close_hours_before=route.default_booking_close_offset_hours,
            ),
            stops=[
                StopItem(
                    stop_id=route_stop.stop_id,
                    name=route_stop.stop.name,
                    sequence=route_stop.default_sequence,
                    is_active=route_stop.is_default_active,
                )
                for route_stop in route.route_stops
            ],
            quick_slots=[
                QuickSlotItem(
                    slot_id=slot.id,
                    day_of_week=DAY_LABELS[slot.day_of_week] if 0 <= slot.day_of_week < 7 else "Unknown Day",
                    departure_time=slot.departure_time,
                )
                for slot in slots
            ],
        )

    # ================================
    # Trips
    # ================================
    def get_upcoming_route_trips(self, raw_route_id: str) -> List[TripResponse]:
        route_id = parse_route_id(raw_route_id)
        if self.db.query(Route.id).filter(Route.id == route_id).first() is None:
            raise errors.ROUTE_NOT_FOUND()

        now = utcnow()
        trips = (
            self._trip_query()
            .filter(Trip.route_id == route_id, Trip.departure_time > now)
            .order_by(Trip.departure_time)
            .all()
        )
        return [trip_response(trip, now) for trip in trips]

    def list_trips(self, date_range: DateRange, route_id: Optional[UUID] = None) -> List[TripResponse]:
        query = self._trip_query().filter(
            Trip.departure_time >= date_range.start,
            Trip.departure_time < date_range.end,
        )
        if route_id is not None:
            query = query.filter(Trip.route_id == route_id)
        now = utcnow()
        return [trip_response(trip, now) for trip in query.order_by(Trip.departure_time).all()]

    def get_weekly_trips(self, date_range: DateRange) -> List[TripResponse]:
        """Trip board for a week; served from a 5 second cache"""
        key = TripCache.key(date_range)
        cached = weekly_trip_cache.get(key)
        if cached is not None:
            return cached
        data = self.list_trips(date_range)
        weekly_trip_cache.put(key, data)
        return data

    # ================================
    # Quota
    # ================================
    def _weekly_usage(self, user_id: UUID, direction: str) -> int:
        """Confirmed tickets departing this week plus seats currently on hold"""
        week_start = start_of_week()
        tickets = self.db.query(func.count(Ticket.id)).join(Trip, Ticket.trip_id == Trip.id).filter(
            Ticket.user_id == user_id,
            Ticket.status == TicketStatus.CONFIRMED.value,
            Trip.direction == direction,
            Trip.departure_time >= week_start,
            Trip.departure_time < week_start + timedelta(days=7),
        ).scalar()
        holds = self.db.query(func.count(TripHold.id)).join(Trip, TripHold.trip_id == Trip.id).filter(
            TripHold.user_id == user_id,
            TripHold.expires_at > utcnow(),
            Trip.direction == direction,
        ).scalar()
        return (tickets or 0) + (holds or 0)

    def _quota_rule(self, role: str, direction: str) -> Optional[QuotaRule]:
        return self.db.query(QuotaRule).filter(
            QuotaRule.user_role == role, QuotaRule.direction == direction
        ).first()

    def get_quota(self, user: User) -> QuotaResponse:
        role = normalize_role(user.user_type)
        response = QuotaResponse()
        for direction in (Direction.OUTBOUND, Direction.INBOUND):
            rule = self._quota_rule(role, direction.value)
            if rule is None:
                continue
            used = self._weekly_usage(user.id, direction.value)
            usage = QuotaUsage(limit=rule.weekly_limit, used=used, remaining=max(rule.weekly_limit - used, 0))
            if direction == Direction.OUTBOUND:
                response.outbound = usage
            else:
                response.inbound = usage
        return response

    # ================================
    # Holds
    # ================================
    def hold_seats(self, user: User, payload: HoldSeatsRequest) -> HoldSeatsResponse:
        if payload.count < 1 or payload.count > MAX_SEATS_PER_HOLD:
            raise common_errors.INVALID_INPUT(f"count must be between 1 and {MAX_SEATS_PER_HOLD}")

        # serialize concurrent hold requests of the same user
        self.db.query(User).filter(User.id == user.id).with_for_update().first()

        trip = self._lock_trip(payload.trip_id)
        if trip is None:
            raise errors.TRIP_NOT_FOUND()

        role = normalize_role(user.user_type)
        if not is_transport_admin(role):
            if trip.bus_type != role:
                raise errors.BUS_TYPE_MISMATCH()
            if compute_status(trip) != TripStatus.OPEN.value:
                raise errors.TRIP_NOT_OPEN(status=compute_status(trip))

        rule = self._quota_rule(role, trip.direction)
        if rule is None:
            raise errors.NO_QUOTA_POLICY(role=role, direction=trip.direction)

        used = self._weekly_usage(user.id, trip.direction)
        if used + payload.count > rule.weekly_limit:
            raise errors.QUOTA_EXCEEDED(limit=rule.weekly_limit, used=used)

        expires_at = utcnow() + hold_ttl(user.user_type)
        holds = []
        for _ in range(payload.count):
            if trip.available_seats <= 0:
                raise errors.TRIP_FULL()
            trip.available_seats -= 1
            hold = TripHold(
                id=uuid.uuid4(),
                trip_id=trip.id,
                user_id=user.id,
                pickup_stop_id=payload.pickup_stop_id,
                dropoff_stop_id=payload.dropoff_stop_id,
                expires_at=expires_at,
            )
            self.db.add(hold)
            holds.append(HoldItem(hold_id=hold.id, expires_at=expires_at))

        self.db.commit()
        logger.info("user %s holds %d seat(s) on trip %s", user.id, payload.count, trip.id)
        return HoldSeatsResponse(holds=holds)

    def _release(self, hold: TripHold) -> None:
        trip = self._lock_trip(hold.trip_id)
        if trip is not None:
            trip.available_seats = min(trip.available_seats + 1, trip.total_capacity)
        self.db.delete(hold)

    def release_hold(self, user: User, hold_id: UUID) -> None:
        hold = self.db.query(TripHold).filter(
            TripHold.id == hold_id, TripHold.user_id == user.id
        ).with_for_update().first()
        if hold is None:
            raise errors.HOLD_NOT_FOUND()
        self._release(hold)
        self.db.commit()

    def release_all_holds(self, user: User) -> int:
        holds = self.db.query(TripHold).filter(TripHold.user_id == user.id).with_for_update().all()
        for hold in holds:
            self._release(hold)
        self.db.commit()
        return len(holds)

    def release_expired_hold(self, hold_id: UUID) -> bool:
        """Return one expired hold's seat; False when it was confirmed or released meanwhile"""
        hold = self.db.query(TripHold).filter(
            TripHold.id == hold_id, TripHold.expires_at <= utcnow()
        ).with_for_update().first()
        if hold is None:
            return False
        self._release(hold)
        self.db.commit()
        return True

    def get_active_holds(self, user: User) -> List[ActiveHoldResponse]:
        rows = (
            self.db.query(TripHold, Trip, Route)
            .join(Trip, TripHold.trip_id == Trip.id)
            .join(Route, Trip.route_id == Route.id)
            .filter(TripHold.user_id == user.id, TripHold.expires_at > utcnow())
            .order_by(TripHold.expires_at)
            .all()
        )
        return [
            ActiveHoldResponse(
                id=hold.id,
                trip_id=hold.trip_id,
                expires_at=hold.expires_at,
                direction=trip.direction,
                route_name=route.name,
            )
            for hold, trip, route in rows
        ]

    # ================================
    # Confirmation
    # ================================
    def _validate_passenger(self, item: ConfirmItem) -> Tuple[str, str]:
        name = (item.passenger_name or "").strip()
        if not name:
            raise errors.INVALID_PASSENGER_NAME()
        relation = (item.passenger_relation or PassengerRelation.SELF.value).strip().upper()
        if relation not in {r.value for r in PassengerRelation}:
            raise errors.INVALID_RELATION(relation=item.passenger_relation)
        return name, relation

    def _unique_ticket_code(self, taken: set) -> str:
        for _ in range(TICKET_CODE_ATTEMPTS):
            code = generate_ticket_code()
            if code in taken:
                continue
            if self.db.query(Ticket.id).filter(Ticket.ticket_code == code).first() is None:
                taken.add(code)
                return code
        raise errors.TICKET_CODE_GENERATION_FAILED()

    def confirm_batch(self, user: User, items: List[ConfirmItem]) -> ConfirmBatchResponse:
        """Turn held seats into tickets; students pay from their wallet in the same transaction"""
        if not items:
            return ConfirmBatchResponse(tickets=[])
        if len({item.hold_id for item in items}) != len(items):
            raise common_errors.INVALID_INPUT("each hold can only be confirmed once")

        passengers = [self._validate_passenger(item) for item in items]
        charge = is_student(user.user_type)

        user_wallet = revenue_wallet = None
        if charge:
            user_wallet = self.wallets.get_or_create_wallet(user.id)
            revenue_wallet = self.wallets.get_system_wallet(WalletType.SYS_REVENUE, lock=True)

        holds = []
        for item in items:
            hold = self.db.query(TripHold).filter(
                TripHold.id == item.hold_id, TripHold.user_id == user.id
            ).with_for_update().first()
            if hold is None:
                raise errors.HOLD_NOT_FOUND(hold_id=str(item.hold_id))
            holds.append(hold)

        # lock trips in a stable order
        trips: Dict[UUID, Trip] = {}
        for trip_id in sorted({hold.trip_id for hold in holds}, key=str):
            trip = self._trip_query().filter(Trip.id == trip_id).with_for_update(of=Trip).first()
            if trip is None:
                raise errors.TRIP_NOT_FOUND()
            trips[trip_id] = trip

        now = utcnow()
        taken_codes: set = set()
        tickets: List[BookedTicket] = []
        details: List[TicketDetail] = []
        total_price = 0

        for hold, (name, relation) in zip(holds, passengers):
            if hold.expires_at <= now:
                raise errors.HOLD_EXPIRED(hold_id=str(hold.id))

            trip = trips[hold.trip_id]
            serial_no = trip.next_serial
            trip.next_serial += 1
            ticket = Ticket(
                id=uuid.uuid4(),
                trip_id=trip.id,
                user_id=user.id,
                serial_no=serial_no,
                ticket_code=self._unique_ticket_code(taken_codes),
                passenger_name=name,
                passenger_relation=relation,
                status=TicketStatus.CONFIRMED.value,
                pickup_stop_id=hold.pickup_stop_id,
                dropoff_stop_id=hold.dropoff_stop_id,
                booking_time=now,
                status_updated_at=now,
            )
            self.db.add(ticket)
            self.db.delete(hold)
            self.db.flush()

            if charge and trip.base_price > 0:
                self.wallets.transfer(
                    user_wallet.id,
                    revenue_wallet.id,
                    trip.base_price,
                    LedgerTransactionType.TRANSPORT_BOOKING.value,
                    str(ticket.id),
                    f"Ticket for {name}",
                )

            tickets.append(BookedTicket(ticket_id=ticket.id, status=ticket.status))
            details.append(TicketDetail(
                serial_no=str(serial_no),
                ticket_code=ticket.ticket_code,
                passenger_name=name,
                route_name=trip.route.name if trip.route else "Unknown Route",
                trip_time=format_trip_time(trip.departure_time),
                price=trip.base_price // 100,
            ))
            total_price += trip.base_price

        enqueue(self.db, JobType.SEND_TICKET_CONFIRMATION, TicketConfirmedPayload(
            email=user.email,
            user_name=user.name,
            total_price=total_price // 100,
            tickets=details,
        ))
        self.db.commit()
        logger.info("user %s confirmed %d ticket(s)", user.id, len(tickets))
        return ConfirmBatchResponse(tickets=tickets)

    # ================================
    # Tickets
    # ================================
    def get_user_tickets(self, user: User) -> List[MyTicketResponse]:
        now = utcnow()
        tickets = (
            self.db.query(Ticket)
            .options(
                joinedload(Ticket.trip).joinedload(Trip.route),
                joinedload(Ticket.pickup_stop),
                joinedload(Ticket.dropoff_stop),
            )
            .join(Trip, Ticket.trip_id == Trip.id)
            .filter(Ticket.user_id == user.id)
            .order_by(Trip.departure_time.desc(), Ticket.serial_no)
            .all()
        )
        result = []
        for ticket in tickets:
            trip = ticket.trip
            pickup = ticket.pickup_stop.name if ticket.pickup_stop else ""
            dropoff = ticket.dropoff_stop.name if ticket.dropoff_stop else ""
            result.append(MyTicketResponse(
                ticket_id=ticket.id,
                ticket_code=ticket.ticket_code,
                serial_no=ticket.serial_no,
                status=ticket.status,
                passenger_name=ticket.passenger_name,
                passenger_relation=ticket.passenger_relation,
                is_self=ticket.passenger_relation == PassengerRelation.SELF.value,
                route_name=trip.route.name,
                direction=trip.direction,
                relevant_location=relevant_stop(trip.direction, pickup, dropoff),
                pickup_location=pickup,
                dropoff_location=dropoff,
                departure_time=trip.departure_time,
                bus_type=trip.bus_type,
                price=paisa_to_rupees(trip.base_price),
                is_cancellable=ticket.status == TicketStatus.CONFIRMED.value and now < trip.booking_closes_at,
            ))
        return result

    def cancel_ticket(self, user: User, ticket_id: UUID) -> None:
        ticket = self.db.query(Ticket).filter(Ticket.id == ticket_id).with_for_update().first()
        if ticket is None:
            raise errors.TICKET_NOT_FOUND()
        if ticket.user_id != user.id:
            raise common_errors.UNAUTHORIZED("You can only cancel your own tickets")

        trip = self._lock_trip(ticket.trip_id)
        if ticket.status != TicketStatus.CONFIRMED.value or utcnow() >= trip.booking_closes_at:
            raise errors.CANCELLATION_CLOSED()

        if is_student(user.user_type) and trip.base_price > 0:
            try:
                user_wallet = self.wallets.get_or_create_wallet(user.id)
                revenue_wallet = self.wallets.get_system_wallet(WalletType.SYS_REVENUE)
                self.wallets.transfer(
                    revenue_wallet.id,
                    user_wallet.id,
                    trip.base_price,
                    LedgerTransactionType.REFUND.value,
                    str(ticket.id),
                    "Trip cancellation refund",
                )
            except common_errors.AppError as e:
                raise errors.REFUND_FAILED.wrap(e)

        ticket.status = TicketStatus.CANCELLED.value
        ticket.status_updated_at = utcnow()
        trip.available_seats = min(trip.available_seats + 1, trip.total_capacity)
        self.db.commit()
        logger.info("user %s cancelled ticket %s", user.id, ticket.id)
