import uuid
from typing import Any, Dict, List, Optional

from src.client.forms import HoldForm, PassengerForm, ResetPasswordForm, SignInForm, SignUpForm, TopUpForm
from src.client.http import ApiClient
from src.client.timers import PaymentStatusPoller


class AuthApi:
    def __init__(self, client: ApiClient):
        self.client = client

    def register(self, form: SignUpForm) -> Dict[str, Any]:
        return self.client.post("/auth/register", json=form.to_payload())

    def sign_in(self, form: SignInForm) -> Dict[str, Any]:
        """Sign in and keep the returned tokens in the session"""
        user = self.client.post("/auth/signin", json=form.dict())
        self.client.session.set_user(user)
        return user

    def me(self) -> Dict[str, Any]:
        user = self.client.get("/auth/me")
        self.client.session.set_user(user)
        return user

    def verify_email(self, token: str) -> Dict[str, Any]:
        return self.client.get("/auth/verify", params={"token": token})

    def forgot_password(self, email: str) -> Dict[str, Any]:
        return self.client.post("/auth/forgot-password", json={"email": email})

    def reset_password(self, form: ResetPasswordForm) -> Dict[str, Any]:
        return self.client.post(
            "/auth/reset-password", json={"token": form.token, "new_password": form.new_password}
        )

    def sign_out(self) -> None:
        """Revoke the current refresh token; the local session is cleared either way"""
        try:
            if self.client.session.is_authenticated:
                self.client.post("/auth/signout", json={"refresh_token": self.client.session.refresh_token})
        finally:
            self.client.session.clear()


class WalletApi:
    def __init__(self, client: ApiClient):
        self.client = client

    def balance(self) -> Dict[str, Any]:
        return self.client.get("/wallet/balance")

    def history(self, page: int = 1, page_size: int = 20) -> List[Dict[str, Any]]:
        return self.client.get("/wallet/history", params={"page": page, "page_size": page_size})

    def max_topup(self) -> Dict[str, Any]:
        return self.client.get("/config/max-topup")


class PaymentApi:
    def __init__(self, client: ApiClient):
        self.client = client

    def top_up(self, form: TopUpForm, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """Start a top-up. Reuse the same idempotency key when retrying."""
        payload = {
            "idempotency_key": idempotency_key or str(uuid.uuid4()),
            "amount": form.amount,
            "method": form.method.value,
            "phone_number": form.phone_number,
            "cnic_last6": form.cnic_last6,
        }
        return self.client.post("/payment/topup", json=payload)

    def status(self, txn_ref_no: str) -> Dict[str, Any]:
        return self.client.get(f"/payment/status/{txn_ref_no}")

    def wait_for_result(self, txn_ref_no: str, interval: float = 3.0, timeout: float = 120.0, on_update=None):
        poller = PaymentStatusPoller(lambda: self.status(txn_ref_no), interval=interval, timeout=timeout)
        return poller.poll(on_update)


class TransportApi:
    def __init__(self, client: ApiClient):
        self.client = client

    def routes(self) -> List[Dict[str, Any]]:
        return self.client.get("/transport/routes")

    def route_template(self, route_id: str) -> Dict[str, Any]:
        return self.client.get(f"/transport/routes/{route_id}/template")

    def upcoming_trips(self, route_id: str) -> List[Dict[str, Any]]:
        return self.client.get(f"/transport/routes/{route_id}/trips/upcoming")

    def weekly_trips(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.client.get("/transport/trips/upcoming", params={"start_date": start_date, "end_date": end_date})

    def hold_seats(self, form: HoldForm) -> Dict[str, Any]:
        payload = {
            "trip_id": str(form.trip_id),
            "count": form.count,
            "pickup_stop_id": str(form.pickup_stop_id) if form.pickup_stop_id else None,
            "dropoff_stop_id": str(form.dropoff_stop_id) if form.dropoff_stop_id else None,
        }
        return self.client.post("/transport/holds", json=payload)

    def confirm(self, passengers: Dict[str, PassengerForm]) -> Dict[str, Any]:
        """Confirm holds, keyed by hold id"""
        confirmations = [
            {"hold_id": str(hold_id), "passenger_name": p.name, "passenger_relation": p.relation.value}
            for hold_id, p in passengers.items()
        ]
        return self.client.post("/transport/confirm", json={"confirmations": confirmations})

    def active_holds(self) -> List[Dict[str, Any]]:
        return self.client.get("/transport/holds/active")

    def release_hold(self, hold_id: str) -> Dict[str, Any]:
        return self.client.delete(f"/transport/holds/{hold_id}")

    def release_all_holds(self) -> Dict[str, Any]:
        return self.client.delete("/transport/holds")

    def quota(self) -> Dict[str, Any]:
        return self.client.get("/transport/quota")

    def tickets(self) -> List[Dict[str, Any]]:
        return self.client.get("/transport/tickets")

    def cancel_ticket(self, ticket_id: str) -> Dict[str, Any]:
        return self.client.delete(f"/transport/tickets/{ticket_id}")

    def submit_feedback(self, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
        return self.client.post("/feedback", json={"rating": rating, "comment": comment})


class AdminApi:
    def __init__(self, client: ApiClient):
        self.client = client

    # Users
    def users(self, page: int = 1, page_size: int = 20, search: Optional[str] = None,
              user_type: Optional[str] = None, filter_status: Optional[str] = None) -> Dict[str, Any]:
        return self.client.get("/admin/users", params={
            "page": page, "page_size": page_size, "search": search,
            "user_type": user_type, "filter_status": filter_status,
        })

    def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.post("/admin/users", json=payload)

    def update_user(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.put(f"/admin/users/{user_id}", json=payload)

    def delete_user(self, user_id: str) -> None:
        return self.client.delete(f"/admin/users/{user_id}")

    def set_user_active(self, user_id: str, is_active: bool) -> Dict[str, Any]:
        return self.client.patch(f"/admin/users/{user_id}/status", json={"is_active": is_active})

    def approve_employee(self, user_id: str) -> Dict[str, Any]:
        return self.client.post(f"/admin/users/{user_id}/approve")

    def reject_employee(self, user_id: str) -> None:
        return self.client.post(f"/admin/users/{user_id}/reject")

    # Transport
    def trips(self, start_date: Optional[str] = None, end_date: Optional[str] = None,
              route_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.client.get("/admin/trips", params={
            "start_date": start_date, "end_date": end_date, "route_id": route_id,
        })

    def create_trip(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.post("/admin/trips", json=payload)

    def update_trip(self, trip_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.put(f"/admin/trips/{trip_id}", json=payload)

    def delete_trip(self, trip_id: str) -> Dict[str, Any]:
        return self.client.delete(f"/admin/trips/{trip_id}")

    def set_trip_status(self, trip_id: str, status: Optional[str]) -> Dict[str, Any]:
        return self.client.patch(f"/admin/trips/{trip_id}/status", json={"status": status})

    def cancel_trip(self, trip_id: str) -> Dict[str, Any]:
        return self.client.post(f"/admin/trips/{trip_id}/cancel")

    def export_trips(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> bytes:
        return self.client.get("/admin/trips/export", params={"start_date": start_date, "end_date": end_date})

    def tickets(self, page: int = 1, page_size: int = 20, **filters) -> Dict[str, Any]:
        return self.client.get("/admin/tickets", params={"page": page, "page_size": page_size, **filters})

    # Finance
    def gateway_transactions(self, page: int = 1, page_size: int = 20, **filters) -> Dict[str, Any]:
        return self.client.get("/admin/transactions/gateway", params={"page": page, "page_size": page_size, **filters})

    def verify_transaction(self, txn_ref_no: str) -> Dict[str, Any]:
        return self.client.post(f"/admin/transactions/gateway/{txn_ref_no}/verify")

    def liability_balance(self) -> Dict[str, Any]:
        return self.client.get("/admin/wallets/liability")

    def revenue_balance(self) -> Dict[str, Any]:
        return self.client.get("/admin/wallets/revenue")

    # Settings
    def settings(self) -> List[Dict[str, Any]]:
        return self.client.get("/admin/settings")

    def update_setting(self, key: str, value: str) -> Dict[str, Any]:
        return self.client.put(f"/admin/settings/{key}", json={"value": value})

    def feedback(self, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        return self.client.get("/admin/feedback", params={"page": page, "page_size": page_size})
