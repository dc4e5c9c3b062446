import itertools
import json
import os
import uuid
from datetime import timedelta

os.environ["DB_URL"] = "sqlite://"
os.environ["BACKGROUND_TASKS_ENABLED"] = "false"
os.environ["RATE_LIMIT_PER_MINUTE"] = "0"
os.environ["JAZZCASH_MERCHANT_ID"] = "MC10001"
os.environ["JAZZCASH_PASSWORD"] = "merchant-pass"
os.environ["JAZZCASH_INTEGRITY_SALT"] = "test-salt"

import httpx
import pytest
from fastapi.testclient import TestClient

from src.auth.utils import create_access_token, get_password_hash
from src.database import Base, SessionLocal, engine, utcnow
from src.main import app, bootstrap_database
from src.models import User, StudentProfile, Route, Stop, RouteStop, Trip, TripStop, QuotaRule
from src.payment.gateway import JazzCashClient, get_gateway
from src.transport.service import weekly_trip_cache
from src.wallet.schemas import WalletType, LedgerTransactionType
from src.wallet.service import WalletService

PASSWORD = "password123"
_reg_ids = itertools.count(2021001)


class GatewayStub:
    """Canned JazzCash responses served through httpx.MockTransport"""

    def __init__(self):
        self.mwallet_response = {"pp_ResponseCode": "000", "pp_ResponseMessage": "Thank you for Using JazzCash"}
        self.inquiry_response = {
            "pp_ResponseCode": "000",
            "pp_ResponseMessage": "Operation completed successfully",
            "pp_PaymentResponseCode": "000",
            "pp_PaymentResponseMessage": "Transaction is successful",
        }
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request.url.path, body))
        if request.url.path.endswith("Inquire"):
            return httpx.Response(200, json=self.inquiry_response)
        return httpx.Response(200, json=self.mwallet_response)

    def inquiries(self):
        return [body for path, body in self.requests if path.endswith("Inquire")]


@pytest.fixture(autouse=True)
def database():
    bootstrap_database()
    weekly_trip_cache.clear()
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def gateway_stub():
    return GatewayStub()


@pytest.fixture
def gateway(gateway_stub):
    jazzcash = JazzCashClient(
        merchant_id="MC10001",
        password="merchant-pass",
        integrity_salt="test-salt",
        http_client=httpx.Client(transport=httpx.MockTransport(gateway_stub.handler)),
    )
    app.dependency_overrides[get_gateway] = lambda: jazzcash
    return jazzcash


@pytest.fixture
def make_user(db):
    def factory(email=None, user_type="STUDENT", password=PASSWORD, is_active=True, is_verified=True,
                name="Test User", phone_number=None):
        user = User(
            id=uuid.uuid4(),
            name=name,
            email=email or f"u{uuid.uuid4().int % 10**7:07d}@giki.edu.pk",
            phone_number=phone_number,
            password_hash=get_password_hash(password),
            password_algo="bcrypt",
            user_type=user_type,
            is_active=is_active,
            is_verified=is_verified,
        )
        db.add(user)
        if user_type == "STUDENT":
            db.add(StudentProfile(user_id=user.id, reg_id=str(next(_reg_ids)), batch_year=2021))
        db.commit()
        return user
    return factory


@pytest.fixture
def student(make_user):
    return make_user(email="u2021001@giki.edu.pk", name="Ali Khan", phone_number="03001234567")


@pytest.fixture
def super_admin(make_user):
    return make_user(email="admin@giki.edu.pk", user_type="SUPER_ADMIN", name="Admin")


@pytest.fixture
def auth_headers():
    def build(user):
        token, _ = create_access_token(user.id, user.user_type, user.email)
        return {"Authorization": f"Bearer {token}"}
    return build


@pytest.fixture
def fund_wallet(db):
    def fund(user, rupees):
        wallets = WalletService(db)
        user_wallet = wallets.get_or_create_wallet(user.id)
        liability = wallets.get_system_wallet(WalletType.SYS_LIABILITY)
        wallets.transfer(
            liability.id, user_wallet.id, rupees * 100,
            LedgerTransactionType.JAZZCASH_DEPOSIT.value, f"seed-{uuid.uuid4()}", "Test funding",
        )
        db.commit()
    return fund


@pytest.fixture
def make_trip(db):
    def factory(bus_type="STUDENT", direction="OUTBOUND", capacity=10, price=500, opens_in=-1, closes_in=2,
                departs_in=4, quota=3):
        route = Route(name=f"Campus - Islamabad {uuid.uuid4().hex[:4]}")
        pickup = Stop(name="GIKI Campus")
        dropoff = Stop(name="Faizabad")
        db.add_all([route, pickup, dropoff])
        db.flush()
        db.add_all([
            RouteStop(route_id=route.id, stop_id=pickup.id, default_sequence=1),
            RouteStop(route_id=route.id, stop_id=dropoff.id, default_sequence=2),
        ])
        now = utcnow()
        trip = Trip(
            route_id=route.id,
            departure_time=now + timedelta(hours=departs_in),
            booking_opens_at=now + timedelta(hours=opens_in),
            booking_closes_at=now + timedelta(hours=closes_in),
            total_capacity=capacity,
            available_seats=capacity,
            base_price=price * 100,
            bus_type=bus_type,
            direction=direction,
            status="OPEN",
        )
        db.add(trip)
        db.flush()
        db.add_all([
            TripStop(trip_id=trip.id, stop_id=pickup.id, sequence=1),
            TripStop(trip_id=trip.id, stop_id=dropoff.id, sequence=2),
        ])
        for role in ("STUDENT", "EMPLOYEE"):
            exists = db.query(QuotaRule).filter(QuotaRule.user_role == role, QuotaRule.direction == direction).first()
            if exists is None:
                db.add(QuotaRule(user_role=role, direction=direction, weekly_limit=quota))
        db.commit()
        return trip
    return factory
