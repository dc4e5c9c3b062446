"""
Payment Module

Wallet top-ups through the JazzCash payment gateway.

A top-up is keyed by a client idempotency key and tracked by its
transaction reference. Mobile-wallet payments are submitted server side and
polled in the background until they settle; card payments send the browser
to the hosted card page and finish on the gateway callback. A successful
payment credits the user's wallet from the GIKI Wallet liability account
exactly once.

Key Components:
- gateway.py: JazzCash client, secure hash and card page rendering
- service.py: PaymentService (initiation, status checks, settlement, admin)
- poller.py: background polling of pending mobile-wallet payments
- utils.py: reference numbers, phone and CNIC normalization
- router.py: /payment endpoints and the admin gateway transaction views
"""

from .router import router, admin_router
from .gateway import JazzCashClient, get_gateway
from .poller import payment_poller
from .service import PaymentService

__all__ = [
    "router",
    "admin_router",
    "JazzCashClient",
    "get_gateway",
    "payment_poller",
    "PaymentService",
]
