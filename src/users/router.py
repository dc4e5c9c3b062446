from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from src.auth.dependencies import require_super_admin
from src.common.params import Pagination, pagination_params
from src.common.responses import envelope
from src.database import get_db
from src.models import User
from src.users.schemas import (
    RegisterRequest, AdminCreateUserRequest, AdminUpdateUserRequest, UpdateUserStatusRequest,
    AdminUserPage, UserStatusFilter
)
from src.users.service import UserService

router = APIRouter()
admin_router = APIRouter()

@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    """Register a student or employee account"""
    return envelope(request, UserService(db).register(payload, request))

# Admin endpoints
@admin_router.get("/users")
def list_users(
    request: Request,
    search: Optional[str] = Query(None, description="Name, email, phone or registration number"),
    user_type: Optional[str] = Query(None, description="Role, or 'all'"),
    filter_status: Optional[UserStatusFilter] = Query(None),
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_super_admin),
):
    users, total = UserService(db).list_users(pagination, search, user_type, filter_status)
    return envelope(request, AdminUserPage(
        data=users, total_count=total, page=pagination.page, page_size=pagination.page_size
    ))

@admin_router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: AdminCreateUserRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    """Create a verified account; the temporary password is emailed to the user"""
    return envelope(request, UserService(db).admin_create_user(payload, admin, request))

@admin_router.put("/users/{user_id}")
def update_user(
    user_id: UUID,
    payload: AdminUpdateUserRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    return envelope(request, UserService(db).admin_update_user(user_id, payload, admin, request))

@admin_router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    UserService(db).admin_delete_user(user_id, admin, request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@admin_router.patch("/users/{user_id}/status")
def update_user_status(
    user_id: UUID,
    payload: UpdateUserStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    """Activate or deactivate an account"""
    return envelope(request, UserService(db).set_active(user_id, payload.is_active, admin, request))

@admin_router.post("/users/{user_id}/approve")
def approve_employee(
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    """Activate a pending employee account"""
    return envelope(request, UserService(db).approve_employee(user_id, admin, request))

@admin_router.post("/users/{user_id}/reject", status_code=status.HTTP_204_NO_CONTENT)
def reject_employee(
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    """Reject a pending employee; the account is removed"""
    UserService(db).reject_employee(user_id, admin, request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
