from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from src.auth.dependencies import get_current_user
from src.auth.schemas import (
    SignInRequest, RefreshRequest, SignOutRequest, ForgotPasswordRequest, ResetPasswordRequest, MessageResponse
)
from src.auth.service import AuthService, user_response
from src.common.responses import envelope
from src.database import get_db
from src.models import User

router = APIRouter()

@router.post("/signin")
def sign_in(payload: SignInRequest, request: Request, db: Session = Depends(get_db)):
    """Sign in with email and password; returns the profile with access and refresh tokens"""
    user = AuthService(db).sign_in(payload.email, payload.password, request)
    return envelope(request, user)

@router.post("/refresh")
def refresh_tokens(payload: RefreshRequest, request: Request, db: Session = Depends(get_db)):
    """Rotate a refresh token"""
    return envelope(request, AuthService(db).refresh(payload.refresh_token))

@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(
    request: Request,
    payload: Optional[SignOutRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Revoke the given refresh token, or every session when none is sent"""
    AuthService(db).sign_out(current_user, payload.refresh_token if payload else None, request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.get("/me")
def read_current_user(request: Request, current_user: User = Depends(get_current_user)):
    """Get current user profile"""
    return envelope(request, user_response(current_user))

@router.get("/verify")
def verify_email(request: Request, token: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    """Confirm an email address from the emailed link"""
    return envelope(request, AuthService(db).verify_email(token))

@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, request: Request, db: Session = Depends(get_db)):
    """Send a password reset link. Always succeeds so account existence is not leaked."""
    AuthService(db).forgot_password(payload.email)
    return envelope(request, MessageResponse(
        message="If an account exists for this email, a password reset link has been sent."
    ))

@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, request: Request, db: Session = Depends(get_db)):
    """Set a new password using a reset token"""
    AuthService(db).reset_password(payload.token, payload.new_password, request)
    return envelope(request, MessageResponse(message="Password has been reset successfully"))
