from pydantic import BaseModel, Field, AliasChoices
from typing import List, Optional
from datetime import datetime, time
from enum import Enum
from uuid import UUID

class TripStatus(str, Enum):
    """Computed booking state of a trip"""
    SCHEDULED = "SCHEDULED"
    OPEN = "OPEN"
    FULL = "FULL"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"

class ManualStatus(str, Enum):
    """Admin override; cleared by sending null"""
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"

class Direction(str, Enum):
    OUTBOUND = "OUTBOUND"
    INBOUND = "INBOUND"

class BusType(str, Enum):
    STUDENT = "STUDENT"
    EMPLOYEE = "EMPLOYEE"

class TicketStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"

class PassengerRelation(str, Enum):
    SELF = "SELF"
    SPOUSE = "SPOUSE"
    CHILD = "CHILD"

# Routes
class RouteItem(BaseModel):
    route_id: UUID
    route_name: str

class RuleSet(BaseModel):
    open_hours_before: int
    close_hours_before: int

class StopItem(BaseModel):
    stop_id: UUID
    name: str
    sequence: int
    is_active: bool

class QuickSlotItem(BaseModel):
    slot_id: UUID
    day_of_week: str
    departure_time: time

class RouteTemplateResponse(BaseModel):
    route_id: UUID
    route_name: str
    rules: RuleSet
    stops: List[StopItem]
    quick_slots: List[QuickSlotItem]

# Trips
class TripStopItem(BaseModel):
    stop_id: UUID
    stop_name: str
    sequence: int

class TripResponse(BaseModel):
    id: UUID
    route_id: UUID
    route_name: str
    direction: str
    bus_type: str
    departure_time: datetime
    booking_opens_at: datetime
    booking_closes_at: datetime
    status: str
    manual_status: Optional[str] = None
    available_seats: int
    total_capacity: int
    base_price: float
    stops: List[TripStopItem]

class TripStopRequest(BaseModel):
    stop_id: UUID

class CreateTripRequest(BaseModel):
    route_id: UUID
    departure_time: datetime
    booking_open_offset_hours: int
    booking_close_offset_hours: int
    total_capacity: int
    base_price: float
    bus_type: BusType
    direction: Direction
    stops: List[TripStopRequest] = []

class CreateTripResponse(BaseModel):
    trip_id: UUID

class UpdateTripStatusRequest(BaseModel):
    status: Optional[ManualStatus] = Field(None, validation_alias=AliasChoices("status", "manual_status"))

class BatchTripStatusRequest(BaseModel):
    trip_ids: List[UUID]
    status: Optional[ManualStatus] = Field(None, validation_alias=AliasChoices("status", "manual_status"))

# Holds
class HoldSeatsRequest(BaseModel):
    trip_id: UUID
    count: int = 1
    pickup_stop_id: Optional[UUID] = None
    dropoff_stop_id: Optional[UUID] = None

class HoldItem(BaseModel):
    hold_id: UUID
    expires_at: datetime

class HoldSeatsResponse(BaseModel):
    holds: List[HoldItem]

class ActiveHoldResponse(BaseModel):
    id: UUID
    trip_id: UUID
    expires_at: datetime
    direction: str
    route_name: str

# Confirmation
class ConfirmItem(BaseModel):
    hold_id: UUID
    passenger_name: str = ""
    passenger_relation: str = PassengerRelation.SELF.value

class ConfirmBatchRequest(BaseModel):
    confirmations: List[ConfirmItem] = []

class BookedTicket(BaseModel):
    ticket_id: UUID
    status: str

class ConfirmBatchResponse(BaseModel):
    tickets: List[BookedTicket]

# Quota
class QuotaUsage(BaseModel):
    limit: int = 0
    used: int = 0
    remaining: int = 0

class QuotaResponse(BaseModel):
    outbound: QuotaUsage = Field(default_factory=QuotaUsage)
    inbound: QuotaUsage = Field(default_factory=QuotaUsage)

# Tickets
class MyTicketResponse(BaseModel):
    ticket_id: UUID
    ticket_code: str
    serial_no: int
    status: str
    passenger_name: str
    passenger_relation: str
    is_self: bool
    route_name: str
    direction: str
    relevant_location: str
    pickup_location: str
    dropoff_location: str
    departure_time: datetime
    bus_type: str
    price: float
    is_cancellable: bool

class AdminTicketItem(BaseModel):
    ticket_id: UUID
    serial_no: int
    ticket_code: str
    passenger_name: str
    passenger_relation: str
    status: str
    booking_time: datetime
    status_updated_at: Optional[datetime] = None
    user_name: str
    user_email: str
    trip_id: UUID
    departure_time: datetime
    bus_type: str
    direction: str
    route_name: str
    pickup_location: str
    dropoff_location: str
    price: float

class WeeklyStats(BaseModel):
    student_count: int = 0
    employee_count: int = 0
    total_confirmed: int = 0

class AdminTicketPage(BaseModel):
    data: List[AdminTicketItem]
    total_count: int
    page: int
    page_size: int
    stats: Optional[WeeklyStats] = None

class StatusMessage(BaseModel):
    status: str

class Message(BaseModel):
    message: str
