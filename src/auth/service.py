import logging
import uuid
from datetime import timedelta
from typing import Optional, Tuple
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from src.audit.schemas import AuditAction, AuditStatus
from src.audit.service import AuditService
from src.auth import errors
from src.auth.roles import Role
from src.auth.schemas import AuthTokens, UserResponse
from src.auth.utils import (
    create_access_token, generate_refresh_token, generate_url_token, get_password_hash,
    hash_token, verify_and_update_password
)
from src.config import settings
from src.database import utcnow
from src.models import User, RefreshToken, AccessToken
from src.worker.queue import enqueue
from src.worker.schemas import JobType, PasswordResetPayload

logger = logging.getLogger(__name__)

EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
PASSWORD_RESET = "PASSWORD_RESET"
VERIFICATION_TOKEN_TTL = timedelta(hours=24)
PASSWORD_RESET_TOKEN_TTL = timedelta(hours=1)


def user_response(user: User, tokens: Optional[AuthTokens] = None) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        phone_number=user.phone_number,
        user_type=user.user_type,
        created_at=user.created_at,
        auth=tokens,
    )


def issue_access_token(db: Session, user: User, token_type: str, ttl: timedelta) -> str:
    """Create a single-use emailed token; only its sha256 is stored"""
    raw = generate_url_token()
    db.add(AccessToken(
        token_hash=hash_token(raw),
        user_id=user.id,
        type=token_type,
        expires_at=utcnow() + ttl,
    ))
    return raw


class AuthService:
    """Sign-in, token rotation, email verification and password reset"""

    def __init__(self, db: Session):
        self.db = db

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    # ================================
    # Tokens
    # ================================
    def _issue_tokens(self, user: User) -> Tuple[AuthTokens, RefreshToken]:
        access_token, expires_at = create_access_token(user.id, user.user_type, user.email)
        refresh_token = generate_refresh_token()
        row = RefreshToken(
            id=uuid.uuid4(),
            user_id=user.id,
            token_hash=hash_token(refresh_token),
            expires_at=utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )
        self.db.add(row)
        return AuthTokens(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at), row

    def issue_tokens(self, user: User) -> AuthTokens:
        tokens, _ = self._issue_tokens(user)
        return tokens

    def refresh(self, refresh_token: str) -> AuthTokens:
        """Rotate a refresh token. Presenting a revoked token revokes the whole family."""
        stored = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(refresh_token)
        ).with_for_update().first()
        if stored is None:
            raise errors.INVALID_REFRESH_TOKEN()

        if stored.revoked:
            logger.warning("revoked refresh token reused for user %s, revoking all sessions", stored.user_id)
            self.revoke_all(stored.user_id)
            self.db.commit()
            raise errors.INVALID_REFRESH_TOKEN()

        if stored.expires_at <= utcnow():
            raise errors.REFRESH_TOKEN_EXPIRED()

        user = self.get_user_by_id(stored.user_id)
        if user is None or not user.is_active:
            raise errors.USER_INACTIVE()

        tokens, replacement = self._issue_tokens(user)
        stored.revoked = True
        stored.replaced_by = replacement.id
        self.db.commit()
        return tokens

    def revoke_all(self, user_id: UUID) -> None:
        self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False)
        ).update({RefreshToken.revoked: True}, synchronize_session=False)

    # ================================
    # Sign in / out
    # ================================
    def sign_in(self, email: str, password: str, request: Optional[Request] = None) -> UserResponse:
        email = email.strip().lower()
        AuditService.log(self.db, AuditAction.LOGIN_ATTEMPT, request=request, details={"email": email})

        user = self.get_user_by_email(email)
        if user is None:
            self._login_failed(None, email, "user not found", request)
            raise errors.USER_NOT_FOUND()

        valid, new_hash = verify_and_update_password(password, user.password_hash)
        if not valid:
            self._login_failed(user.id, email, "invalid password", request)
            raise errors.INVALID_PASSWORD()

        if not user.is_active:
            self._login_failed(user.id, email, "inactive account", request)
            if user.user_type == Role.EMPLOYEE.value:
                raise errors.USER_PENDING_APPROVAL()
            raise errors.USER_INACTIVE()

        if not user.is_verified:
            self._login_failed(user.id, email, "email not verified", request)
            raise errors.USER_NOT_VERIFIED()

        if new_hash:
            logger.info("upgrading legacy password hash for user %s", user.id)
            user.password_hash = new_hash
            user.password_algo = "bcrypt"

        tokens = self.issue_tokens(user)
        AuditService.log(self.db, AuditAction.LOGIN_SUCCESS, request=request, actor_id=user.id, target_id=user.id)
        self.db.commit()
        return user_response(user, tokens)

    def _login_failed(self, user_id: Optional[UUID], email: str, reason: str, request: Optional[Request]) -> None:
        AuditService.log(
            self.db,
            AuditAction.LOGIN_FAILURE,
            AuditStatus.FAILURE,
            request=request,
            actor_id=user_id,
            target_id=user_id,
            details={"email": email, "reason": reason},
            commit=True,
        )

    def sign_out(self, user: User, refresh_token: Optional[str], request: Optional[Request] = None) -> None:
        if refresh_token:
            self.db.query(RefreshToken).filter(
                RefreshToken.user_id == user.id,
                RefreshToken.token_hash == hash_token(refresh_token),
            ).update({RefreshToken.revoked: True}, synchronize_session=False)
        else:
            self.revoke_all(user.id)
        AuditService.log(self.db, AuditAction.LOGOUT, request=request, actor_id=user.id, target_id=user.id)
        self.db.commit()

    # ================================
    # Email verification
    # ================================
    def _consume_token(self, raw_token: str, token_type: str, invalid, expired) -> AccessToken:
        stored = self.db.query(AccessToken).filter(
            AccessToken.token_hash == hash_token(raw_token),
            AccessToken.type == token_type,
        ).first()
        if stored is None:
            raise invalid()
        if stored.expires_at <= utcnow():
            self.db.delete(stored)
            self.db.commit()
            raise expired()
        return stored

    def verify_email(self, raw_token: str) -> UserResponse:
        stored = self._consume_token(
            raw_token, EMAIL_VERIFICATION, errors.INVALID_VERIFICATION_TOKEN, errors.VERIFICATION_TOKEN_EXPIRED
        )
        user = self.get_user_by_id(stored.user_id)
        if user is None:
            raise errors.INVALID_VERIFICATION_TOKEN()

        user.is_verified = True
        # employees stay inactive until an admin approves them
        if user.user_type != Role.EMPLOYEE.value:
            user.is_active = True
        self.db.delete(stored)

        tokens = self.issue_tokens(user) if user.is_active else None
        self.db.commit()
        return user_response(user, tokens)

    # ================================
    # Password reset
    # ================================
    def forgot_password(self, email: str) -> None:
        """Email a reset link; unknown or inactive accounts are silently ignored"""
        user = self.get_user_by_email(email)
        if user is None or not user.is_active:
            logger.info("password reset requested for unknown or inactive account")
            return

        # only the newest link stays valid
        self.db.query(AccessToken).filter(
            AccessToken.user_id == user.id, AccessToken.type == PASSWORD_RESET
        ).delete(synchronize_session=False)
        raw = issue_access_token(self.db, user, PASSWORD_RESET, PASSWORD_RESET_TOKEN_TTL)
        enqueue(self.db, JobType.SEND_PASSWORD_RESET_EMAIL, PasswordResetPayload(
            email=user.email,
            name=user.name,
            link=f"{settings.FRONTEND_FORGOT_URL}?token={raw}",
        ))
        self.db.commit()

    def reset_password(self, raw_token: str, new_password: str, request: Optional[Request] = None) -> None:
        stored = self._consume_token(raw_token, PASSWORD_RESET, errors.INVALID_RESET_TOKEN, errors.RESET_TOKEN_EXPIRED)
        user = self.get_user_by_id(stored.user_id)
        if user is None:
            raise errors.INVALID_RESET_TOKEN()

        user.password_hash = get_password_hash(new_password)
        user.password_algo = "bcrypt"
        self.db.delete(stored)
        self.revoke_all(user.id)
        AuditService.log(self.db, AuditAction.PASSWORD_CHANGE, request=request, actor_id=user.id, target_id=user.id)
        self.db.commit()
