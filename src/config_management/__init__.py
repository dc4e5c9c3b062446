"""
Config Management Module

Settings that super admins can change at runtime without a redeploy,
stored in the system_configs table. Today this holds the wallet top-up
ceiling read by the payment module.

Key Components:
- service.py: ConfigService for reading and updating settings
- router.py: /admin/settings and /config/max-topup
"""

from .router import router, admin_router
from .service import ConfigService

__all__ = [
    "router",
    "admin_router",
    "ConfigService",
]
