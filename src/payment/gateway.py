import hashlib
import hmac
import html
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from string import Template
from typing import Any, Dict, Mapping, Optional

import httpx

from src.config import settings
from src.database import utcnow
from src.payment import errors
from src.payment.schemas import PaymentStatus
from src.payment.utils import gateway_time

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
SECURE_HASH_FIELD = "pp_SecureHash"
TXN_EXPIRY = timedelta(hours=24)

SUCCESS_CODES = {"000", "121"}
PENDING_CODES = {"124", "157", ""}


def map_response_code(code: Optional[str]) -> PaymentStatus:
    code = (code or "").strip()
    if code in SUCCESS_CODES:
        return PaymentStatus.SUCCESS
    if code in PENDING_CODES:
        return PaymentStatus.PENDING
    return PaymentStatus.FAILED


def compute_secure_hash(fields: Mapping[str, Any], salt: str) -> str:
    """pp_SecureHash: HMAC-SHA256 keyed by the integrity salt over
    ``salt&v1&v2...`` where v are the non-empty pp_ values sorted by key.
    """
    values = [
        str(fields[key])
        for key in sorted(fields)
        if key.startswith("pp_") and key != SECURE_HASH_FIELD and str(fields[key]) != ""
    ]
    message = "&".join([salt] + values)
    return hmac.new(salt.encode(), message.encode(), hashlib.sha256).hexdigest().upper()


@dataclass
class GatewayResponse:
    """Outcome of a gateway call, reduced to the fields the service needs"""
    status: PaymentStatus
    response_code: str
    message: str
    txn_ref_no: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CardForm:
    action: str
    fields: Dict[str, str]


class JazzCashClient:
    """JazzCash merchant API: mobile-wallet purchase, status inquiry and the
    hosted card page.
    """

    def __init__(
        self,
        merchant_id: str = settings.JAZZCASH_MERCHANT_ID,
        password: str = settings.JAZZCASH_PASSWORD,
        integrity_salt: str = settings.JAZZCASH_INTEGRITY_SALT,
        return_url: str = settings.JAZZCASH_RETURN_URL,
        wallet_url: str = settings.JAZZCASH_WALLET_PAYMENT_URL,
        card_url: str = settings.JAZZCASH_CARD_PAYMENT_URL,
        inquiry_url: str = settings.JAZZCASH_STATUS_INQUIRY_URL,
        http_client: Optional[httpx.Client] = None,
    ):
        self.merchant_id = merchant_id
        self.password = password
        self.integrity_salt = integrity_salt
        self.return_url = return_url
        self.wallet_url = wallet_url
        self.card_url = card_url
        self.inquiry_url = inquiry_url
        self.http_client = http_client or httpx.Client(timeout=settings.JAZZCASH_TIMEOUT_SECONDS)

    def sign(self, fields: Dict[str, str]) -> Dict[str, str]:
        signed = dict(fields)
        signed[SECURE_HASH_FIELD] = compute_secure_hash(fields, self.integrity_salt)
        return signed

    def _post(self, url: str, fields: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = self.http_client.post(url, json=self.sign(fields))
        except httpx.HTTPError as e:
            raise errors.GATEWAY_UNAVAILABLE.wrap(e)
        if response.status_code != httpx.codes.OK:
            raise errors.GATEWAY_UNAVAILABLE(status=response.status_code)
        try:
            body = response.json()
        except ValueError as e:
            raise errors.GATEWAY_UNAVAILABLE.wrap(e)
        if not isinstance(body, dict):
            raise errors.GATEWAY_UNAVAILABLE("unexpected gateway response")
        return body

    def _base_fields(self, txn_ref_no: str, bill_ref_no: str, amount_paisa: int, description: str) -> Dict[str, str]:
        now = utcnow()
        return {
            "pp_Language": "EN",
            "pp_MerchantID": self.merchant_id,
            "pp_SubMerchantID": "",
            "pp_Password": self.password,
            "pp_TxnRefNo": txn_ref_no,
            "pp_Amount": str(amount_paisa),
            "pp_TxnCurrency": "PKR",
            "pp_TxnDateTime": gateway_time(now),
            "pp_BillReference": bill_ref_no,
            "pp_Description": description,
            "pp_TxnExpiryDateTime": gateway_time(now + TXN_EXPIRY),
        }

    # ================================
    # Mobile wallet
    # ================================
    def submit_mwallet(
        self,
        txn_ref_no: str,
        bill_ref_no: str,
        amount_paisa: int,
        mobile_number: str,
        cnic_last6: str,
        description: str,
    ) -> GatewayResponse:
        fields = self._base_fields(txn_ref_no, bill_ref_no, amount_paisa, description)
        fields["pp_MobileNumber"] = mobile_number
        fields["pp_CNIC"] = cnic_last6
        body = self._post(self.wallet_url, fields)
        code = str(body.get("pp_ResponseCode", ""))
        logger.info("mwallet submit %s: code=%s", txn_ref_no, code)
        return GatewayResponse(
            status=map_response_code(code),
            response_code=code,
            message=str(body.get("pp_ResponseMessage", "")),
            txn_ref_no=txn_ref_no,
            raw=body,
        )

    # ================================
    # Status inquiry
    # ================================
    def inquiry(self, txn_ref_no: str) -> GatewayResponse:
        body = self._post(self.inquiry_url, {
            "pp_TxnRefNo": txn_ref_no,
            "pp_MerchantID": self.merchant_id,
            "pp_Password": self.password,
        })
        code = str(body.get("pp_ResponseCode", ""))
        message = str(body.get("pp_ResponseMessage", ""))
        # a successful inquiry carries the payment's own result
        if code == "000" and "pp_PaymentResponseCode" in body:
            code = str(body.get("pp_PaymentResponseCode") or "")
            message = str(body.get("pp_PaymentResponseMessage") or message)
        return GatewayResponse(
            status=map_response_code(code),
            response_code=code,
            message=message,
            txn_ref_no=txn_ref_no,
            raw=body,
        )

    # ================================
    # Card (hosted page)
    # ================================
    def card_form(self, txn_ref_no: str, bill_ref_no: str, amount_paisa: int, description: str) -> CardForm:
        fields = self._base_fields(txn_ref_no, bill_ref_no, amount_paisa, description)
        fields.update({
            "pp_Version": "1.1",
            "pp_TxnType": "MPAY",
            "pp_ReturnURL": self.return_url,
        })
        return CardForm(action=self.card_url, fields=self.sign(fields))

    def verify_callback(self, form: Mapping[str, str]) -> GatewayResponse:
        """Check the callback signature and read its result"""
        received = str(form.get(SECURE_HASH_FIELD, "")).upper()
        expected = compute_secure_hash(form, self.integrity_salt)
        if not received or not hmac.compare_digest(received, expected):
            raise errors.INVALID_SIGNATURE(txn_ref_no=form.get("pp_TxnRefNo", ""))

        code = str(form.get("pp_ResponseCode", ""))
        return GatewayResponse(
            status=map_response_code(code),
            response_code=code,
            message=str(form.get("pp_ResponseMessage", "")),
            txn_ref_no=str(form.get("pp_TxnRefNo", "")),
            raw=dict(form),
        )


def render_card_page(form: CardForm) -> str:
    """Auto-submitting HTML page posting ``form`` to the gateway"""
    inputs = "\n".join(
        f'      <input type="hidden" name="{html.escape(name)}" value="{html.escape(value)}">'
        for name, value in form.fields.items()
    )
    page = (TEMPLATE_DIR / "card_redirect.html").read_text(encoding="utf-8")
    return Template(page).substitute(action=html.escape(form.action), fields=inputs)


_gateway: Optional[JazzCashClient] = None


def get_gateway() -> JazzCashClient:
    global _gateway
    if _gateway is None:
        _gateway = JazzCashClient()
    return _gateway
