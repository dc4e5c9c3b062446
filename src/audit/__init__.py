"""
Audit Module

Security audit trail for the GIKI Transport & Wallet API. Sign-ins,
sign-outs, registrations, password changes and every administrative change
to users and trips are recorded with the acting user, the target, the
client IP and user agent.

Key Components:
- service.py: AuditService for writing and listing events
- router.py: admin endpoint listing security events
- schemas.py: action/status enums and response models
"""

from .router import router
from .service import AuditService
from .schemas import AuditAction, AuditStatus, SecurityEventRow

__all__ = [
    "router",
    "AuditService",
    "AuditAction",
    "AuditStatus",
    "SecurityEventRow",
]
