import csv
import io
import zipfile
from datetime import timedelta
from uuid import UUID, uuid4

from src.common.params import parse_date_range
from src.database import SessionLocal, utcnow
from src.models import Job, Ticket, TripHold
from src.transport.admin_service import manifest_filename
from src.transport.cleanup import cleanup_expired_holds
from src.transport.service import TransportService, compute_status, weekly_trip_cache
from src.wallet.service import WalletService


def hold(client, headers, trip, count=1):
    payload = {
        "trip_id": str(trip.id),
        "count": count,
        "pickup_stop_id": str(trip.stops[0].stop_id),
        "dropoff_stop_id": str(trip.stops[1].stop_id),
    }
    return client.post("/api/transport/holds", json=payload, headers=headers)


def book(client, headers, trip, name="Ali Khan"):
    hold_id = hold(client, headers, trip).json()["data"]["holds"][0]["hold_id"]
    response = client.post(
        "/api/transport/confirm",
        json={"confirmations": [{"hold_id": hold_id, "passenger_name": name, "passenger_relation": "SELF"}]},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()["data"]["tickets"][0]["ticket_id"]


class TestTripStatus:
    def test_manual_status_wins(self, make_trip):
        trip = make_trip()
        assert compute_status(trip) == "OPEN"
        trip.manual_status = "CLOSED"
        assert compute_status(trip) == "CLOSED"

    def test_window_and_seats(self, make_trip):
        assert compute_status(make_trip(opens_in=1)) == "SCHEDULED"
        assert compute_status(make_trip(closes_in=-1)) == "CLOSED"
        full = make_trip()
        full.available_seats = 0
        assert compute_status(full) == "FULL"


class TestHolds:
    """POST /api/transport/holds"""

    def test_holds_seats(self, client, db, student, make_trip, auth_headers):
        trip = make_trip(capacity=4)
        response = hold(client, auth_headers(student), trip, count=2)
        assert response.status_code == 201
        holds = response.json()["data"]["holds"]
        assert len(holds) == 2

        db.expire_all()
        assert trip.available_seats == 2
        hold_row = db.query(TripHold).filter(TripHold.user_id == student.id).first()
        ttl = hold_row.expires_at - utcnow()
        assert timedelta(minutes=2) < ttl <= timedelta(minutes=3)

    def test_employee_hold_lasts_longer(self, client, db, make_user, make_trip, auth_headers):
        employee = make_user(email="staff@giki.edu.pk", user_type="EMPLOYEE")
        trip = make_trip(bus_type="EMPLOYEE")
        assert hold(client, auth_headers(employee), trip).status_code == 201
        hold_row = db.query(TripHold).filter(TripHold.user_id == employee.id).one()
        assert hold_row.expires_at - utcnow() > timedelta(minutes=6)

    def test_count_limits(self, client, student, make_trip, auth_headers):
        response = hold(client, auth_headers(student), make_trip(), count=6)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    def test_unknown_trip(self, client, student, auth_headers):
        response = client.post(
            "/api/transport/holds",
            json={"trip_id": "00000000-0000-0000-0000-000000000000", "count": 1},
            headers=auth_headers(student),
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TRIP_NOT_FOUND"

    def test_bus_type_mismatch(self, client, student, make_trip, auth_headers):
        response = hold(client, auth_headers(student), make_trip(bus_type="EMPLOYEE"))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "BUS_TYPE_MISMATCH"

    def test_trip_not_open(self, client, student, make_trip, auth_headers):
        response = hold(client, auth_headers(student), make_trip(opens_in=2, closes_in=3))
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "TRIP_NOT_OPEN"
        assert response.json()["error"]["details"]["status"] == "SCHEDULED"

    def test_admin_without_quota_policy(self, client, super_admin, make_trip, auth_headers):
        response = hold(client, auth_headers(super_admin), make_trip())
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "NO_QUOTA_POLICY"

    def test_quota_counts_active_holds(self, client, student, make_trip, auth_headers):
        trip = make_trip(quota=2)
        headers = auth_headers(student)
        assert hold(client, headers, trip, count=2).status_code == 201
        response = hold(client, headers, trip)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "QUOTA_EXCEEDED"
        assert response.json()["error"]["details"] == {"limit": 2, "used": 2}

    def test_trip_full(self, client, db, student, make_trip, auth_headers):
        trip = make_trip(capacity=1)
        assert hold(client, auth_headers(student), trip).status_code == 201
        db.expire_all()
        assert trip.available_seats == 0
        trip.status = "OPEN"
        trip.manual_status = "OPEN"
        db.commit()
        response = hold(client, auth_headers(student), trip)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "TRIP_FULL"

    def test_release_returns_seat(self, client, db, student, make_trip, auth_headers):
        trip = make_trip(capacity=3)
        headers = auth_headers(student)
        hold_id = hold(client, headers, trip).json()["data"]["holds"][0]["hold_id"]

        active = client.get("/api/transport/holds/active", headers=headers).json()["data"]
        assert [item["id"] for item in active] == [hold_id]
        assert active[0]["route_name"] == trip.route.name

        response = client.delete(f"/api/transport/holds/{hold_id}", headers=headers)
        assert response.json()["data"] == {"status": "RELEASED"}
        db.expire_all()
        assert trip.available_seats == 3
        assert client.delete(f"/api/transport/holds/{hold_id}", headers=headers).status_code == 404

    def test_release_all(self, client, db, student, make_trip, auth_headers):
        trip = make_trip(capacity=3)
        headers = auth_headers(student)
        hold(client, headers, trip, count=2)
        assert client.delete("/api/transport/holds", headers=headers).status_code == 200
        assert db.query(TripHold).count() == 0
        db.expire_all()
        assert trip.available_seats == 3


class TestConfirm:
    """POST /api/transport/confirm"""

    def test_student_pays_from_wallet(self, client, db, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip(price=500)
        ticket_id = book(client, auth_headers(student), trip)

        ticket = db.query(Ticket).filter(Ticket.id == UUID(ticket_id)).one()
        assert ticket.serial_no == 1
        assert len(ticket.ticket_code) == 6
        assert ticket.pickup_stop_id == trip.stops[0].stop_id
        wallets = WalletService(db)
        assert wallets.get_balance(wallets.get_wallet_by_user(student.id).id) == 50000
        assert db.query(TripHold).count() == 0
        assert db.query(Job).filter(Job.job_type == "SEND_TICKET_CONFIRMATION").count() == 1

    def test_insufficient_balance_keeps_hold(self, client, db, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 100)
        trip = make_trip(price=500)
        headers = auth_headers(student)
        hold_id = hold(client, headers, trip).json()["data"]["holds"][0]["hold_id"]
        response = client.post(
            "/api/transport/confirm",
            json={"confirmations": [{"hold_id": hold_id, "passenger_name": "Ali Khan"}]},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INSUFFICIENT_FUNDS"
        assert db.query(Ticket).count() == 0
        assert db.query(TripHold).count() == 1

    def test_employee_is_not_charged(self, client, db, make_user, make_trip, auth_headers):
        employee = make_user(email="staff@giki.edu.pk", user_type="EMPLOYEE")
        trip = make_trip(bus_type="EMPLOYEE")
        book(client, auth_headers(employee), trip, name="Staff Member")
        assert WalletService(db).get_wallet_by_user(employee.id) is None

    def test_expired_hold(self, client, db, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        headers = auth_headers(student)
        hold_id = hold(client, headers, make_trip()).json()["data"]["holds"][0]["hold_id"]
        row = db.query(TripHold).one()
        row.expires_at = utcnow() - timedelta(seconds=1)
        db.commit()

        response = client.post(
            "/api/transport/confirm",
            json={"confirmations": [{"hold_id": hold_id, "passenger_name": "Ali Khan"}]},
            headers=headers,
        )
        assert response.status_code == 410
        assert response.json()["error"]["code"] == "HOLD_EXPIRED"

    def test_passenger_validation(self, client, student, make_trip, auth_headers):
        headers = auth_headers(student)
        hold_id = hold(client, headers, make_trip()).json()["data"]["holds"][0]["hold_id"]

        response = client.post(
            "/api/transport/confirm",
            json={"confirmations": [{"hold_id": hold_id, "passenger_name": "  "}]},
            headers=headers,
        )
        assert response.json()["error"]["code"] == "INVALID_PASSENGER_NAME"

        response = client.post(
            "/api/transport/confirm",
            json={"confirmations": [{"hold_id": hold_id, "passenger_name": "Sara", "passenger_relation": "COUSIN"}]},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_RELATION"

    def test_unknown_hold(self, client, student, auth_headers):
        response = client.post(
            "/api/transport/confirm",
            json={"confirmations": [
                {"hold_id": "00000000-0000-0000-0000-000000000000", "passenger_name": "Ali Khan"}
            ]},
            headers=auth_headers(student),
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "HOLD_NOT_FOUND"

    def test_same_hold_twice(self, client, db, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip(capacity=4)
        headers = auth_headers(student)
        hold_id = hold(client, headers, trip).json()["data"]["holds"][0]["hold_id"]
        item = {"hold_id": hold_id, "passenger_name": "Ali Khan", "passenger_relation": "SELF"}

        response = client.post("/api/transport/confirm", json={"confirmations": [item, item]}, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

        db.expire_all()
        assert db.query(Ticket).count() == 0
        assert db.query(TripHold).count() == 1
        assert trip.available_seats + 1 == trip.total_capacity
        wallets = WalletService(db)
        assert wallets.get_balance(wallets.get_wallet_by_user(student.id).id) == 100000


class TestTickets:
    """/api/transport/tickets"""

    def test_lists_own_tickets(self, client, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip()
        headers = auth_headers(student)
        book(client, headers, trip)

        tickets = client.get("/api/transport/tickets", headers=headers).json()["data"]
        assert len(tickets) == 1
        assert tickets[0]["is_self"] is True
        assert tickets[0]["is_cancellable"] is True
        assert tickets[0]["relevant_location"] == "Faizabad"
        assert tickets[0]["price"] == 500.0

    def test_cancel_refunds_student(self, client, db, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip(capacity=5)
        headers = auth_headers(student)
        ticket_id = book(client, headers, trip)

        response = client.delete(f"/api/transport/tickets/{ticket_id}", headers=headers)
        assert response.json()["data"] == {"status": "CANCELLED"}

        db.expire_all()
        wallets = WalletService(db)
        assert wallets.get_balance(wallets.get_wallet_by_user(student.id).id) == 100000
        assert wallets.find_transaction("REFUND", ticket_id) is not None
        assert trip.available_seats == 5

        again = client.delete(f"/api/transport/tickets/{ticket_id}", headers=headers)
        assert again.json()["error"]["code"] == "CANCELLATION_CLOSED"

    def test_cannot_cancel_others_ticket(self, client, make_user, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        ticket_id = book(client, auth_headers(student), make_trip())
        other = make_user(email="u2021777@giki.edu.pk")
        response = client.delete(f"/api/transport/tickets/{ticket_id}", headers=auth_headers(other))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_cancel_after_booking_closes(self, client, db, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip()
        ticket_id = book(client, auth_headers(student), trip)
        db.expire_all()
        trip.booking_closes_at = utcnow() - timedelta(minutes=1)
        db.commit()

        response = client.delete(f"/api/transport/tickets/{ticket_id}", headers=auth_headers(student))
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CANCELLATION_CLOSED"


class TestQuota:
    def test_usage_per_direction(self, client, student, make_trip, auth_headers):
        trip = make_trip(quota=3)
        make_trip(direction="INBOUND", quota=2)
        headers = auth_headers(student)
        hold(client, headers, trip)

        data = client.get("/api/transport/quota", headers=headers).json()["data"]
        assert data["outbound"] == {"limit": 3, "used": 1, "remaining": 2}
        assert data["inbound"] == {"limit": 2, "used": 0, "remaining": 2}


class TestRoutes:
    def test_routes_and_template(self, client, student, make_trip, auth_headers):
        trip = make_trip()
        headers = auth_headers(student)
        routes = client.get("/api/transport/routes", headers=headers).json()["data"]
        assert routes == [{"route_id": str(trip.route_id), "route_name": trip.route.name}]

        template = client.get(f"/api/transport/routes/{trip.route_id}/template", headers=headers).json()["data"]
        assert [stop["name"] for stop in template["stops"]] == ["GIKI Campus", "Faizabad"]
        assert template["rules"] == {"open_hours_before": 48, "close_hours_before": 2}

        upcoming = client.get(f"/api/transport/routes/{trip.route_id}/trips/upcoming", headers=headers).json()
        assert [item["id"] for item in upcoming["data"]] == [str(trip.id)]

    def test_invalid_route_id(self, client, student, auth_headers):
        response = client.get("/api/transport/routes/not-a-uuid/template", headers=auth_headers(student))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ROUTE_ID"

    def test_weekly_trips_are_cached(self, db, make_trip):
        trip = make_trip()
        service = TransportService(db)
        start = (utcnow() - timedelta(days=1)).isoformat()
        end = (utcnow() + timedelta(days=1)).isoformat()
        date_range = parse_date_range(start, end)

        first = service.get_weekly_trips(date_range)
        assert [item.id for item in first] == [trip.id]
        assert len(weekly_trip_cache) == 1
        make_trip()
        assert service.get_weekly_trips(date_range) == first


class TestHoldCleanup:
    def test_reclaims_expired_holds(self, client, db, student, make_trip, auth_headers):
        trip = make_trip(capacity=4)
        hold(client, auth_headers(student), trip, count=2)
        expired = db.query(TripHold).first()
        expired.expires_at = utcnow() - timedelta(seconds=5)
        db.commit()

        assert cleanup_expired_holds(SessionLocal) == 1
        db.expire_all()
        assert db.query(TripHold).count() == 1
        assert trip.available_seats == 3


class TestAdminTrips:
    """/api/admin/trips"""

    def trip_payload(self, trip, **overrides):
        payload = {
            "route_id": str(trip.route_id),
            "departure_time": (utcnow() + timedelta(days=1)).isoformat(),
            "booking_open_offset_hours": 48,
            "booking_close_offset_hours": 2,
            "total_capacity": 30,
            "base_price": 750,
            "bus_type": "STUDENT",
            "direction": "OUTBOUND",
            "stops": [{"stop_id": str(stop.stop_id)} for stop in trip.stops],
        }
        payload.update(overrides)
        return payload

    def test_create_trip(self, client, db, super_admin, make_trip, auth_headers):
        template = make_trip()
        response = client.post("/api/admin/trips", json=self.trip_payload(template), headers=auth_headers(super_admin))
        assert response.status_code == 201
        trip_id = response.json()["data"]["trip_id"]

        listed = client.get(
            "/api/admin/trips",
            params={
                "route_id": str(template.route_id),
                "start_date": (utcnow() + timedelta(hours=12)).isoformat(),
                "end_date": (utcnow() + timedelta(days=2)).isoformat(),
            },
            headers=auth_headers(super_admin),
        ).json()["data"]
        assert [item["id"] for item in listed] == [trip_id]
        assert listed[0]["base_price"] == 750.0
        assert listed[0]["status"] == "OPEN"
        assert len(listed[0]["stops"]) == 2

    def test_rejects_bad_window(self, client, super_admin, make_trip, auth_headers):
        payload = self.trip_payload(make_trip(), booking_open_offset_hours=1, booking_close_offset_hours=2)
        response = client.post("/api/admin/trips", json=payload, headers=auth_headers(super_admin))
        assert response.status_code == 400

    def test_students_forbidden(self, client, student, make_trip, auth_headers):
        response = client.post("/api/admin/trips", json=self.trip_payload(make_trip()), headers=auth_headers(student))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_manual_status_override(self, client, db, super_admin, make_trip, auth_headers):
        trip = make_trip()
        headers = auth_headers(super_admin)
        client.patch(f"/api/admin/trips/{trip.id}/status", json={"status": "CLOSED"}, headers=headers)
        db.expire_all()
        assert trip.status == "CLOSED"
        client.patch(f"/api/admin/trips/{trip.id}/status", json={"status": None}, headers=headers)
        db.expire_all()
        assert trip.manual_status is None
        assert trip.status == "OPEN"

    def test_cancel_trip_refunds_everyone(self, client, db, super_admin, student, make_trip, fund_wallet,
                                          auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip()
        book(client, auth_headers(student), trip)

        response = client.post(f"/api/admin/trips/{trip.id}/cancel", headers=auth_headers(super_admin))
        assert response.status_code == 200
        db.expire_all()
        assert trip.status == "CANCELLED"
        assert db.query(Ticket).one().status == "CANCELLED"
        wallets = WalletService(db)
        assert wallets.get_balance(wallets.get_wallet_by_user(student.id).id) == 100000
        assert db.query(Job).filter(Job.job_type == "SEND_TICKET_CANCELLED").count() == 1

    def test_delete_trip_with_bookings(self, client, super_admin, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip()
        book(client, auth_headers(student), trip)
        response = client.delete(f"/api/admin/trips/{trip.id}", headers=auth_headers(super_admin))
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "TRIP_HAS_BOOKINGS"

    def test_ticket_listing(self, client, super_admin, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip()
        book(client, auth_headers(student), trip)
        response = client.get(
            "/api/admin/tickets",
            params={
                "search": "ali",
                "start_date": (utcnow() - timedelta(days=1)).isoformat(),
                "end_date": (utcnow() + timedelta(days=1)).isoformat(),
            },
            headers=auth_headers(super_admin),
        )
        page = response.json()["data"]
        assert page["total_count"] == 1
        assert page["data"][0]["user_email"] == "u2021001@giki.edu.pk"
        assert page["stats"]["student_count"] == 1

    def test_capacity_below_sold_tickets(self, client, db, super_admin, student, make_trip, fund_wallet,
                                         auth_headers):
        fund_wallet(student, 2000)
        trip = make_trip(capacity=10)
        book(client, auth_headers(student), trip)
        book(client, auth_headers(student), trip, name="Sara Khan")
        headers = auth_headers(super_admin)

        response = client.put(
            f"/api/admin/trips/{trip.id}", json=self.trip_payload(trip, total_capacity=1), headers=headers
        )
        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "CONFLICT"
        assert error["message"] == "cannot reduce capacity below sold tickets count (2)"

    def test_capacity_below_held_seats(self, client, db, super_admin, student, make_trip, fund_wallet,
                                       auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip(capacity=10)
        book(client, auth_headers(student), trip)
        hold(client, auth_headers(student), trip)
        headers = auth_headers(super_admin)

        response = client.put(
            f"/api/admin/trips/{trip.id}", json=self.trip_payload(trip, total_capacity=1), headers=headers
        )
        assert response.status_code == 409
        assert response.json()["error"]["message"] == "cannot reduce capacity below sold and held seats (2)"

        response = client.put(
            f"/api/admin/trips/{trip.id}", json=self.trip_payload(trip, total_capacity=5), headers=headers
        )
        assert response.status_code == 200
        db.expire_all()
        assert trip.total_capacity == 5
        assert trip.available_seats == 3

    def test_batch_status_counts_existing_trips(self, client, db, super_admin, make_trip, auth_headers):
        first, second = make_trip(), make_trip()
        response = client.patch(
            "/api/admin/trips/status",
            json={"trip_ids": [str(first.id), str(second.id), str(uuid4())], "status": "CLOSED"},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 200
        assert response.json()["data"]["message"] == "2 trips updated"
        db.expire_all()
        assert {first.status, second.status} == {"CLOSED"}

    def test_export_manifests(self, client, super_admin, student, make_trip, fund_wallet, auth_headers):
        fund_wallet(student, 1000)
        trip = make_trip()
        book(client, auth_headers(student), trip)

        response = client.get(
            "/api/admin/trips/export",
            params={
                "start_date": utcnow().isoformat(),
                "end_date": (utcnow() + timedelta(days=1)).isoformat(),
                "route_ids": str(trip.route_id),
            },
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert response.headers["content-disposition"].startswith('attachment; filename="trips_export_')

        with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
            names = archive.namelist()
            assert len(names) == 1
            assert names[0].endswith(f"_{str(trip.id)[:8]}.csv")
            rows = list(csv.reader(io.StringIO(archive.read(names[0]).decode())))

        assert rows[0] == ["GIKI TRANSPORT - TRIP MANIFEST"]
        assert ["Total Passengers", "1"] in rows
        assert ["STOP: FAIZABAD", "TOTAL: 1"] in rows
        header = rows.index(["Serial", "Ticket Code", "Passenger Name", "Mobile Number"])
        serial, code, name, _ = rows[header + 1]
        assert (serial, name, len(code)) == ("1", "Ali Khan", 6)

    def test_manifest_names_are_unique_per_trip(self):
        departure = utcnow()
        first = manifest_filename("Campus - Islamabad", departure, uuid4())
        second = manifest_filename("Campus - Islamabad", departure, uuid4())
        assert first != second
        assert first.startswith("Campus_-_Islamabad_")
