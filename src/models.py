import uuid

from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, Time, Text, ForeignKey, JSON, Uuid, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from src.database import Base, UTCDateTime, utcnow

# ================================
# Users & Profiles
# ================================
class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone_number = Column(String(20), unique=True, nullable=True)
    password_hash = Column(String(255), nullable=False)
    password_algo = Column(String(32), nullable=False, default="bcrypt")
    user_type = Column(String(32), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    student_profile = relationship("StudentProfile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    employee_profile = relationship("EmployeeProfile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    wallet = relationship("Wallet", back_populates="user", uselist=False)

class StudentProfile(Base):
    __tablename__ = "student_profiles"

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    reg_id = Column(String(32), unique=True, nullable=False)
    degree_program = Column(String(100))
    batch_year = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="student_profile")

class EmployeeProfile(Base):
    __tablename__ = "employee_profiles"

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    employee_id = Column(String(64), unique=True, nullable=False)
    designation = Column(String(100))
    department = Column(String(100))
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="employee_profile")

# ================================
# Tokens
# ================================
class AccessToken(Base):
    """Single-use tokens for email verification and password reset"""
    __tablename__ = "access_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    token_hash = Column(String(64), unique=True, nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    replaced_by = Column(Uuid, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

# ================================
# Wallet Ledger
# ================================
class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=True)
    name = Column(String(100), nullable=True)
    type = Column(String(32), nullable=False, default="PERSONAL")
    status = Column(String(32), nullable=False, default="ACTIVE")
    currency = Column(String(8), nullable=False, default="PKR")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="wallet")

class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"
    __table_args__ = (UniqueConstraint("type", "reference_id", name="uq_ledger_txn_type_reference"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    type = Column(String(50), nullable=False)
    reference_id = Column(String(100), nullable=False)
    description = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    entries = relationship("LedgerEntry", back_populates="transaction")

class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("wallet_id", "transaction_id", name="uq_ledger_entry_wallet_txn"),
        Index("ix_ledger_entries_wallet_seq", "wallet_id", "seq"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id = Column(Uuid, ForeignKey("wallets.id"), nullable=False)
    transaction_id = Column(Uuid, ForeignKey("ledger_transactions.id"), nullable=False)
    amount = Column(BigInteger, nullable=False)
    balance_after = Column(BigInteger, nullable=False)
    row_hash = Column(String(64), nullable=False)
    seq = Column(BigInteger, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    transaction = relationship("LedgerTransaction", back_populates="entries")

# ================================
# Payment Gateway
# ================================
class GatewayTransaction(Base):
    __tablename__ = "gateway_transactions"

    txn_ref_no = Column(String(32), primary_key=True)
    id = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    idempotency_key = Column(String(100), unique=True, nullable=False)
    bill_ref_id = Column(String(32), nullable=False)
    amount = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    payment_method = Column(String(20), nullable=False)
    gateway_message = Column(Text)
    gateway_status_code = Column(String(16))
    is_polling = Column(Boolean, nullable=False, default=False)
    polling_started_at = Column(UTCDateTime, nullable=True)
    raw_response = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User")

class PaymentAuditLog(Base):
    __tablename__ = "payment_audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    txn_ref_no = Column(String(32), nullable=True, index=True)
    event = Column(String(50), nullable=False)
    gateway_ref = Column(String(64), nullable=True)
    raw_payload = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

# ================================
# Routes & Stops
# ================================
class Route(Base):
    __tablename__ = "routes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    default_booking_open_offset_hours = Column(Integer, nullable=False, default=48)
    default_booking_close_offset_hours = Column(Integer, nullable=False, default=2)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    route_stops = relationship("RouteStop", back_populates="route", order_by="RouteStop.default_sequence")
    weekly_schedules = relationship("RouteWeeklySchedule", back_populates="route")
    trips = relationship("Trip", back_populates="route")

class Stop(Base):
    __tablename__ = "stops"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    address = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)

class RouteStop(Base):
    __tablename__ = "route_stops"

    route_id = Column(Uuid, ForeignKey("routes.id", ondelete="CASCADE"), primary_key=True)
    stop_id = Column(Uuid, ForeignKey("stops.id"), primary_key=True)
    default_sequence = Column(Integer, nullable=False)
    is_default_active = Column(Boolean, nullable=False, default=True)

    route = relationship("Route", back_populates="route_stops")
    stop = relationship("Stop")

class RouteWeeklySchedule(Base):
    """Quick-slot departure times offered when scheduling trips"""
    __tablename__ = "route_weekly_schedules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    route_id = Column(Uuid, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday
    departure_time = Column(Time, nullable=False)

    route = relationship("Route", back_populates="weekly_schedules")

# ================================
# Trips, Holds & Tickets
# ================================
class Trip(Base):
    __tablename__ = "trips"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    route_id = Column(Uuid, ForeignKey("routes.id"), nullable=False, index=True)
    departure_time = Column(UTCDateTime, nullable=False, index=True)
    booking_opens_at = Column(UTCDateTime, nullable=False)
    booking_closes_at = Column(UTCDateTime, nullable=False)
    total_capacity = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    base_price = Column(BigInteger, nullable=False, default=0)
    bus_type = Column(String(20), nullable=False)
    direction = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="SCHEDULED")
    manual_status = Column(String(20), nullable=True)
    next_serial = Column(Integer, nullable=False, default=1)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    route = relationship("Route", back_populates="trips")
    stops = relationship("TripStop", back_populates="trip", order_by="TripStop.sequence", cascade="all, delete-orphan")
    tickets = relationship("Ticket", back_populates="trip")

class TripStop(Base):
    __tablename__ = "trip_stops"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    trip_id = Column(Uuid, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    stop_id = Column(Uuid, ForeignKey("stops.id"), nullable=False)
    sequence = Column(Integer, nullable=False)

    trip = relationship("Trip", back_populates="stops")
    stop = relationship("Stop")

class TripHold(Base):
    __tablename__ = "trip_holds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    trip_id = Column(Uuid, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    pickup_stop_id = Column(Uuid, ForeignKey("stops.id"), nullable=True)
    dropoff_stop_id = Column(Uuid, ForeignKey("stops.id"), nullable=True)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    trip = relationship("Trip")

class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (UniqueConstraint("trip_id", "serial_no", name="uq_ticket_trip_serial"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    trip_id = Column(Uuid, ForeignKey("trips.id"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    serial_no = Column(Integer, nullable=False)
    ticket_code = Column(String(6), unique=True, nullable=False)
    passenger_name = Column(String(255), nullable=False)
    passenger_relation = Column(String(20), nullable=False, default="SELF")
    status = Column(String(20), nullable=False, default="CONFIRMED")
    pickup_stop_id = Column(Uuid, ForeignKey("stops.id"), nullable=True)
    dropoff_stop_id = Column(Uuid, ForeignKey("stops.id"), nullable=True)
    booking_time = Column(UTCDateTime, nullable=False, default=utcnow)
    status_updated_at = Column(UTCDateTime, nullable=True)

    trip = relationship("Trip", back_populates="tickets")
    user = relationship("User")
    pickup_stop = relationship("Stop", foreign_keys=[pickup_stop_id])
    dropoff_stop = relationship("Stop", foreign_keys=[dropoff_stop_id])

class QuotaRule(Base):
    __tablename__ = "quota_rules"
    __table_args__ = (UniqueConstraint("user_role", "direction", name="uq_quota_role_direction"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_role = Column(String(32), nullable=False)
    direction = Column(String(20), nullable=False)
    weekly_limit = Column(Integer, nullable=False)

# ================================
# Audit, Jobs, Config & Feedback
# ================================
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    target_id = Column(Uuid, nullable=True)
    action = Column(String(50), nullable=False, index=True)
    ip_address = Column(String(64))
    user_agent = Column(String(512))
    status = Column(String(16), nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

class Job(Base):
    __tablename__ = "jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default="PENDING", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text)
    run_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

class SystemConfig(Base):
    __tablename__ = "system_configs"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(Text)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
