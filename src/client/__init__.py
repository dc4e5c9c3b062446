"""
API client

Python client for the transport and wallet API, with the same behaviour as
the web app's service layer.

Key Components:
- ApiClient: httpx client with bearer auth, envelope unwrapping and token refresh
- AuthApi, WalletApi, PaymentApi, TransportApi, AdminApi: typed endpoint wrappers
- AppError, normalize_error, user_message: error normalization and display text
- HoldCountdown, PaymentStatusPoller: hold expiry timer and top-up status polling
- Forms: pydantic validation of user input before it is sent
"""

from src.client.api import AdminApi, AuthApi, PaymentApi, TransportApi, WalletApi
from src.client.errors import ERROR_CODE_GROUPS, AppError, normalize_error, user_message
from src.client.http import ApiClient
from src.client.session import ResponseStore, SessionStore
from src.client.timers import HoldCountdown, PaymentStatusPoller

__all__ = [
    "ApiClient",
    "AuthApi",
    "WalletApi",
    "PaymentApi",
    "TransportApi",
    "AdminApi",
    "AppError",
    "ERROR_CODE_GROUPS",
    "normalize_error",
    "user_message",
    "SessionStore",
    "ResponseStore",
    "HoldCountdown",
    "PaymentStatusPoller",
]
