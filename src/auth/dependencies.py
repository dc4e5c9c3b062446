from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from src.auth.roles import Role
from src.auth.utils import verify_token
from src.common import errors as common_errors
from src.config import settings
from src.database import get_db
from src.models import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/auth/signin", auto_error=False)

def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """Get current authenticated user; every token problem is a 401 UNAUTHORIZED"""
    if not token:
        raise common_errors.UNAUTHORIZED(reason="missing authorization header")

    try:
        payload = verify_token(token)
    except common_errors.AppError as e:
        raise common_errors.UNAUTHORIZED(reason="invalid or expired token") from e

    user = db.query(User).filter(User.id == payload["user_id"]).first()
    if user is None:
        raise common_errors.UNAUTHORIZED(reason="user not found")
    if not user.is_active:
        raise common_errors.UNAUTHORIZED(reason="account inactive")

    return user

def require_roles(*roles: Role) -> Callable[..., User]:
    """Dependency factory: the current user must hold one of ``roles``"""
    allowed = {role.value if isinstance(role, Role) else role for role in roles}

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.user_type not in allowed:
            raise common_errors.FORBIDDEN()
        return current_user

    return checker

require_super_admin = require_roles(Role.SUPER_ADMIN)
require_transport_admin = require_roles(Role.SUPER_ADMIN, Role.TRANSPORT_ADMIN)
require_finance_admin = require_roles(Role.SUPER_ADMIN, Role.FINANCE_ADMIN)
