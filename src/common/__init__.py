"""
Common Module

Cross-cutting plumbing shared by every feature module of the GIKI Transport
& Wallet API:

- errors.py: AppError and the global error catalogue
- handlers.py: exception handlers rendering the error envelope
- responses.py: success envelope helpers
- middleware.py: request id, request logging and rate limiting
- params.py: pagination and date-range query parameters
- ip.py: client address resolution
"""

from . import errors, handlers, responses, middleware, params, ip

__all__ = [
    "errors",
    "handlers",
    "responses",
    "middleware",
    "params",
    "ip",
]
