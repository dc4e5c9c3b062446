"""
Users Module

Account registration and back-office user management.

Students register with a @giki.edu.pk address and their registration
number and activate the account from the verification email. Employees
may use any address and wait for a super admin to approve them.

Key Components:
- service.py: UserService for registration and admin CRUD
- router.py: /auth/register and the /admin/users endpoints
"""

from .router import router, admin_router
from .service import UserService

__all__ = [
    "router",
    "admin_router",
    "UserService",
]
