"""
Authentication Module

Sign-in, JWT access tokens, rotating refresh tokens, email verification and
password reset for the GIKI Transport & Wallet API.

Key Components:
- utils.py: password hashing (bcrypt, legacy Django PBKDF2) and JWT helpers
- service.py: AuthService implementing the sign-in and token flows
- dependencies.py: get_current_user and role guards for routers
- roles.py: role constants and transport role normalization
- errors.py: authentication error catalogue
"""

from .roles import Role

__all__ = [
    "Role",
]
