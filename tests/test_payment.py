import time
import uuid
from datetime import timedelta

import httpx
import pytest

from src.common.errors import AppError
from src.config import settings
from src.database import SessionLocal, utcnow
from src.main import app
from src.models import GatewayTransaction, PaymentAuditLog
from src.payment.gateway import JazzCashClient, compute_secure_hash, get_gateway, map_response_code
from src.payment.poller import PaymentPoller
from src.payment.schemas import PaymentStatus
from src.payment.utils import normalize_cnic_last6, normalize_phone
from src.wallet.service import WalletService


def topup(client, headers, amount=500, method="MWALLET", key=None, **extra):
    payload = {
        "idempotency_key": key or str(uuid.uuid4()),
        "amount": amount,
        "method": method,
        "phone_number": "0300-1234567",
        "cnic_last6": "345678",
    }
    payload.update(extra)
    return client.post("/api/payment/topup", json=payload, headers=headers)


def balance(db, user):
    db.expire_all()
    wallets = WalletService(db)
    wallet = wallets.get_wallet_by_user(user.id)
    return wallets.get_balance(wallet.id) if wallet else 0


@pytest.fixture
def make_txn(db):
    def factory(user, status="PENDING", method="MWALLET", amount=50000, **fields):
        txn = GatewayTransaction(
            txn_ref_no=f"T{uuid.uuid4().hex[:12].upper()}",
            bill_ref_id=f"B{uuid.uuid4().hex[:12].upper()}",
            user_id=user.id,
            idempotency_key=str(uuid.uuid4()),
            amount=amount,
            status=status,
            payment_method=method,
            **fields,
        )
        db.add(txn)
        db.commit()
        return txn
    return factory


class TestMobileWalletTopUp:
    """POST /api/payment/topup with MWALLET"""

    def test_success_credits_wallet(self, client, db, student, gateway, gateway_stub, auth_headers):
        response = topup(client, auth_headers(student))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "SUCCESS"
        assert data["amount"] == 500.0
        assert balance(db, student) == 50000

        path, body = gateway_stub.requests[0]
        assert path.endswith("DoMWalletTransaction")
        assert body["pp_MobileNumber"] == "03001234567"
        assert body["pp_CNIC"] == "345678"
        assert body["pp_Amount"] == "50000"
        assert body["pp_SecureHash"] == compute_secure_hash(body, "test-salt")

    def test_pending_returns_accepted(self, client, db, student, gateway, gateway_stub, auth_headers):
        gateway_stub.inquiry_response["pp_PaymentResponseCode"] = "124"
        response = topup(client, auth_headers(student))
        assert response.status_code == 202
        assert response.json()["data"]["status"] == "PENDING"
        assert balance(db, student) == 0

    def test_failure_is_recorded(self, client, db, student, gateway, gateway_stub, auth_headers):
        gateway_stub.inquiry_response["pp_PaymentResponseCode"] = "999"
        gateway_stub.inquiry_response["pp_PaymentResponseMessage"] = "Insufficient balance"
        response = topup(client, auth_headers(student))
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "FAILED"
        txn = db.query(GatewayTransaction).one()
        assert txn.status == "FAILED"
        assert txn.gateway_message == "Insufficient balance"

    def test_replay_with_same_key(self, client, db, student, gateway, auth_headers):
        key = str(uuid.uuid4())
        topup(client, auth_headers(student), key=key)
        again = topup(client, auth_headers(student), key=key)
        assert again.status_code == 200
        assert again.json()["data"]["message"] == "Transaction has already completed"
        assert db.query(GatewayTransaction).count() == 1
        assert balance(db, student) == 50000

    def test_key_of_another_user(self, client, make_user, student, gateway, auth_headers):
        key = str(uuid.uuid4())
        topup(client, auth_headers(student), key=key)
        other = make_user(email="u2021888@giki.edu.pk")
        response = topup(client, auth_headers(other), key=key)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE_IDEMPOTENCY_KEY"

    def test_invalid_phone(self, client, db, student, gateway, auth_headers):
        response = topup(client, auth_headers(student), phone_number="12345")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PHONE"
        assert db.query(GatewayTransaction).count() == 0

    def test_invalid_cnic(self, client, student, gateway, auth_headers):
        response = topup(client, auth_headers(student), cnic_last6="12")
        assert response.json()["error"]["code"] == "INVALID_CNIC"

    def test_exceeds_max_balance(self, client, student, fund_wallet, gateway, auth_headers):
        fund_wallet(student, 600)
        response = topup(client, auth_headers(student), amount=300)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"
        assert "Rs. 800" in response.json()["error"]["message"]

    @pytest.mark.parametrize("amount", ["NaN", "Infinity"])
    def test_non_finite_amount(self, client, db, student, gateway, auth_headers, amount):
        body = f'{{"idempotency_key": "{uuid.uuid4()}", "amount": {amount}, "method": "MWALLET"}}'
        headers = {**auth_headers(student), "Content-Type": "application/json"}
        response = client.post("/api/payment/topup", content=body, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"
        assert db.query(GatewayTransaction).count() == 0

    def test_invalid_method(self, client, student, gateway, auth_headers):
        response = topup(client, auth_headers(student), method="BITCOIN")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PAYMENT_METHOD"

    def test_gateway_down(self, client, db, student, auth_headers):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        broken = JazzCashClient(
            merchant_id="MC10001", password="merchant-pass", integrity_salt="test-salt",
            http_client=httpx.Client(transport=httpx.MockTransport(refuse)),
        )
        app.dependency_overrides[get_gateway] = lambda: broken
        response = topup(client, auth_headers(student))
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "GATEWAY_UNAVAILABLE"


class TestCardTopUp:
    """CARD top-ups, the hosted page and the browser callback"""

    def start(self, client, headers):
        response = topup(client, headers, method="CARD")
        assert response.status_code == 202
        return response.json()["data"]

    def callback_form(self, db, txn_ref_no, code="000"):
        txn = db.query(GatewayTransaction).filter(GatewayTransaction.txn_ref_no == txn_ref_no).one()
        form = {
            "pp_TxnRefNo": txn_ref_no,
            "pp_BillReference": txn.bill_ref_id,
            "pp_Amount": str(txn.amount),
            "pp_ResponseCode": code,
            "pp_ResponseMessage": "Thank you for Using JazzCash",
        }
        form["pp_SecureHash"] = compute_secure_hash(form, "test-salt")
        return form

    def test_returns_redirect(self, client, student, gateway, auth_headers):
        data = self.start(client, auth_headers(student))
        assert data["status"] == "PENDING"
        assert data["redirect"] == f"/api/payment/page/{data['txn_ref_no']}"

    def test_payment_page(self, client, student, gateway, auth_headers):
        data = self.start(client, auth_headers(student))
        response = client.get(data["redirect"])
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert settings.JAZZCASH_CARD_PAYMENT_URL in response.text
        assert 'name="pp_SecureHash"' in response.text
        assert f'value="{data["txn_ref_no"]}"' in response.text

    def test_callback_success(self, client, db, student, gateway, auth_headers):
        data = self.start(client, auth_headers(student))
        form = self.callback_form(db, data["txn_ref_no"])
        response = client.post("/api/payment/card/callback", data=form, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == (
            f"{settings.FRONTEND_URL}/payment/success?txn={data['txn_ref_no']}"
        )
        assert balance(db, student) == 50000
        events = sorted(row.event for row in db.query(PaymentAuditLog))
        assert events == ["CARD_CALLBACK", "CARD_CALLBACK_PROCESSED"]

    def test_callback_failure(self, client, db, student, gateway, auth_headers):
        data = self.start(client, auth_headers(student))
        form = self.callback_form(db, data["txn_ref_no"], code="101")
        response = client.post("/api/payment/card/callback", data=form, follow_redirects=False)
        assert response.headers["location"].endswith(f"/payment/failed?txn={data['txn_ref_no']}")
        assert balance(db, student) == 0

    def test_callback_bad_signature(self, client, db, student, gateway, auth_headers):
        data = self.start(client, auth_headers(student))
        form = self.callback_form(db, data["txn_ref_no"])
        form["pp_Amount"] = "99999999"
        response = client.post("/api/payment/card/callback", data=form, follow_redirects=False)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"
        db.expire_all()
        assert db.query(GatewayTransaction).one().status == "PENDING"
        events = {row.event for row in db.query(PaymentAuditLog)}
        assert events == {"CARD_CALLBACK", "CARD_CALLBACK_FAILED"}

    def test_page_for_settled_transaction(self, client, db, student, gateway, auth_headers):
        data = self.start(client, auth_headers(student))
        form = self.callback_form(db, data["txn_ref_no"])
        client.post("/api/payment/card/callback", data=form, follow_redirects=False)
        response = client.get(data["redirect"])
        assert response.status_code == 409


class TestPaymentStatus:
    """GET /api/payment/status/{txn_ref_no}"""

    def test_own_transaction(self, client, student, gateway, make_txn, auth_headers):
        txn = make_txn(student, status="SUCCESS")
        response = client.get(f"/api/payment/status/{txn.txn_ref_no}", headers=auth_headers(student))
        assert response.json()["data"]["status"] == "SUCCESS"

    def test_pending_is_rechecked(self, client, db, student, gateway, gateway_stub, make_txn, auth_headers):
        txn = make_txn(student)
        response = client.get(f"/api/payment/status/{txn.txn_ref_no}", headers=auth_headers(student))
        assert response.json()["data"]["status"] == "SUCCESS"
        assert gateway_stub.inquiries()[0]["pp_TxnRefNo"] == txn.txn_ref_no
        assert balance(db, student) == 50000

    def test_stale_pending_times_out(self, client, db, student, gateway, gateway_stub, make_txn, auth_headers):
        gateway_stub.inquiry_response["pp_PaymentResponseCode"] = "157"
        txn = make_txn(student, created_at=utcnow() - timedelta(minutes=5))
        response = client.get(f"/api/payment/status/{txn.txn_ref_no}", headers=auth_headers(student))
        assert response.json()["data"]["status"] == "FAILED"
        db.expire_all()
        assert txn.status == "FAILED"

    def test_hidden_from_other_users(self, client, make_user, student, gateway, make_txn, auth_headers):
        txn = make_txn(student, status="SUCCESS")
        other = make_user(email="u2021888@giki.edu.pk")
        response = client.get(f"/api/payment/status/{txn.txn_ref_no}", headers=auth_headers(other))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TRANSACTION_NOT_FOUND"


class TestPaymentPoller:
    @pytest.fixture
    def poller(self, gateway):
        return PaymentPoller(interval=0.01, timeout=1, session_factory=SessionLocal, gateway_factory=lambda: gateway)

    def test_lock_is_exclusive(self, poller, student, make_txn):
        txn = make_txn(student)
        assert poller.acquire_lock(txn.txn_ref_no) is True
        assert poller.acquire_lock(txn.txn_ref_no) is False
        poller.release_lock(txn.txn_ref_no)
        assert poller.acquire_lock(txn.txn_ref_no) is True

    def test_no_lock_for_settled_transaction(self, poller, student, make_txn):
        txn = make_txn(student, status="SUCCESS")
        assert poller.acquire_lock(txn.txn_ref_no) is False

    def test_poll_once_settles(self, poller, db, student, make_txn):
        txn = make_txn(student)
        assert poller.poll_once(txn.txn_ref_no, time.monotonic() + 5) is True
        db.expire_all()
        assert txn.status == "SUCCESS"
        assert balance(db, student) == 50000

    def test_poll_once_keeps_waiting(self, poller, db, student, gateway_stub, make_txn):
        gateway_stub.inquiry_response["pp_PaymentResponseCode"] = "124"
        txn = make_txn(student)
        assert poller.poll_once(txn.txn_ref_no, time.monotonic() + 5) is False
        db.expire_all()
        assert txn.status == "PENDING"

    def test_timeout_marks_failed(self, poller, db, student, make_txn):
        txn = make_txn(student, is_polling=True, polling_started_at=utcnow())
        poller.handle_timeout(txn.txn_ref_no)
        db.expire_all()
        assert txn.status == "FAILED"
        assert txn.gateway_message == "Polling timeout reached"
        assert txn.gateway_status_code == "TIMEOUT"
        assert txn.is_polling is False

    def test_poll_until_settled(self, poller, db, student, make_txn):
        txn = make_txn(student)
        poller.poll(txn.txn_ref_no)
        db.expire_all()
        assert txn.status == "SUCCESS"
        assert txn.is_polling is False

    def test_reset_stale_locks(self, poller, db, student, make_txn):
        stale = make_txn(student, is_polling=True, polling_started_at=utcnow() - timedelta(minutes=10))
        fresh = make_txn(student, is_polling=True, polling_started_at=utcnow())
        assert poller.reset_stale_locks() == 1
        db.expire_all()
        assert stale.is_polling is False
        assert fresh.is_polling is True


class TestAdminGatewayTransactions:
    """/api/admin/transactions/gateway"""

    @pytest.fixture
    def finance(self, make_user):
        return make_user(email="finance@giki.edu.pk", user_type="FINANCE_ADMIN", name="Finance")

    def test_list_with_totals(self, client, finance, student, gateway, auth_headers):
        topup(client, auth_headers(student), amount=300)
        topup(client, auth_headers(student), amount=200)
        response = client.get(
            "/api/admin/transactions/gateway", params={"status": "success"}, headers=auth_headers(finance)
        )
        page = response.json()["data"]
        assert page["total_count"] == 2
        assert page["total_amount"] == 500.0
        assert page["data"][0]["user_email"] == student.email

    def test_search(self, client, finance, student, gateway, auth_headers):
        txn_ref_no = topup(client, auth_headers(student)).json()["data"]["txn_ref_no"]
        response = client.get(
            "/api/admin/transactions/gateway", params={"search": txn_ref_no.lower()}, headers=auth_headers(finance)
        )
        assert [item["txn_ref_no"] for item in response.json()["data"]["data"]] == [txn_ref_no]

    def test_export_csv(self, client, finance, student, gateway, auth_headers):
        txn_ref_no = topup(client, auth_headers(student)).json()["data"]["txn_ref_no"]
        response = client.get("/api/admin/transactions/gateway/export", headers=auth_headers(finance))
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("Transaction Ref,Bill Ref")
        assert lines[1].startswith(txn_ref_no)
        assert "500.00" in lines[1]

    def test_verify_settles_pending(self, client, db, finance, student, gateway, make_txn, auth_headers):
        txn = make_txn(student, method="CARD")
        response = client.post(
            f"/api/admin/transactions/gateway/{txn.txn_ref_no}/verify", headers=auth_headers(finance)
        )
        assert response.json()["data"]["status"] == "SUCCESS"
        assert balance(db, student) == 50000

    def test_verify_does_not_credit_twice(self, client, db, finance, student, gateway, auth_headers):
        txn_ref_no = topup(client, auth_headers(student)).json()["data"]["txn_ref_no"]
        client.post(f"/api/admin/transactions/gateway/{txn_ref_no}/verify", headers=auth_headers(finance))
        assert balance(db, student) == 50000

    def test_students_forbidden(self, client, student, gateway, auth_headers):
        response = client.get("/api/admin/transactions/gateway", headers=auth_headers(student))
        assert response.status_code == 403


class TestPaymentUtils:
    @pytest.mark.parametrize("raw", ["03001234567", "923001234567", "+92 300 1234567", "3001234567"])
    def test_normalize_phone(self, raw):
        assert normalize_phone(raw) == "03001234567"

    def test_rejects_short_phone(self):
        with pytest.raises(AppError) as exc:
            normalize_phone("0300123")
        assert exc.value.code == "INVALID_PHONE"

    def test_cnic_keeps_last_six(self):
        assert normalize_cnic_last6("35202-1234567-8") == "345678"

    def test_response_codes(self):
        assert map_response_code("000") == PaymentStatus.SUCCESS
        assert map_response_code("121") == PaymentStatus.SUCCESS
        assert map_response_code("124") == PaymentStatus.PENDING
        assert map_response_code(None) == PaymentStatus.PENDING
        assert map_response_code("101") == PaymentStatus.FAILED
