from enum import Enum


class Role(str, Enum):
    """User types; the value is stored in users.user_type"""
    SUPER_ADMIN = "SUPER_ADMIN"
    TRANSPORT_ADMIN = "TRANSPORT_ADMIN"
    FINANCE_ADMIN = "FINANCE_ADMIN"
    STUDENT = "STUDENT"
    EMPLOYEE = "EMPLOYEE"


ADMIN_ROLES = {Role.SUPER_ADMIN.value, Role.TRANSPORT_ADMIN.value, Role.FINANCE_ADMIN.value}
TRANSPORT_ADMIN_ROLES = {Role.SUPER_ADMIN.value, Role.TRANSPORT_ADMIN.value}
FINANCE_ADMIN_ROLES = {Role.SUPER_ADMIN.value, Role.FINANCE_ADMIN.value}


def normalize_role(user_type: str) -> str:
    """Map a stored user_type onto the role used by transport rules"""
    value = (user_type or "").strip().upper()
    if not value:
        return Role.STUDENT.value
    return value


def is_student(user_type: str) -> bool:
    return normalize_role(user_type) == Role.STUDENT.value


def is_transport_admin(user_type: str) -> bool:
    return normalize_role(user_type) in TRANSPORT_ADMIN_ROLES
