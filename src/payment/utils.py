import re
import secrets
from datetime import datetime
from typing import Optional

from src.common.params import app_timezone
from src.database import utcnow
from src.payment import errors

REF_CHARSET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
REF_SUFFIX_LENGTH = 4
GATEWAY_TIME_FORMAT = "%Y%m%d%H%M%S"

_NON_DIGITS = re.compile(r"\D")


def gateway_time(value: Optional[datetime] = None) -> str:
    """Local wall-clock time in the gateway's YYYYMMDDhhmmss format"""
    return (value or utcnow()).astimezone(app_timezone()).strftime(GATEWAY_TIME_FORMAT)


def generate_ref(prefix: str, now: Optional[datetime] = None) -> str:
    suffix = "".join(secrets.choice(REF_CHARSET) for _ in range(REF_SUFFIX_LENGTH))
    return f"{prefix}{gateway_time(now)}{suffix}"


def generate_txn_ref_no(now: Optional[datetime] = None) -> str:
    return generate_ref("T", now)


def generate_bill_ref_no(now: Optional[datetime] = None) -> str:
    return generate_ref("B", now)


def normalize_phone(phone: Optional[str]) -> str:
    """Pakistani mobile number in local 03XXXXXXXXX form.

    Accepts 03001234567, 923001234567, +92 300 1234567 and 3001234567.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if len(digits) == 11 and digits.startswith("0"):
        return digits
    if len(digits) == 12 and digits.startswith("92"):
        return "0" + digits[2:]
    if len(digits) == 13 and digits.startswith("92"):
        return "0" + digits[2:12]
    if len(digits) == 10:
        return "0" + digits
    raise errors.INVALID_PHONE(digits=len(digits))


def normalize_cnic_last6(cnic: Optional[str]) -> str:
    digits = _NON_DIGITS.sub("", cnic or "")
    if len(digits) < 6:
        raise errors.INVALID_CNIC()
    return digits[-6:]
