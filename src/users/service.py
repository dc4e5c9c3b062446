import logging
import re
import secrets
import uuid
from typing import Optional, Tuple, List
from uuid import UUID

from email_validator import validate_email, EmailNotValidError
from fastapi import Request
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.audit.schemas import AuditAction
from src.audit.service import AuditService
from src.auth.roles import Role
from src.auth.service import EMAIL_VERIFICATION, VERIFICATION_TOKEN_TTL, issue_access_token
from src.auth.utils import get_password_hash
from src.common.params import Pagination
from src.config import settings
from src.models import User, StudentProfile, EmployeeProfile, AccessToken, Ticket, GatewayTransaction
from src.users import errors
from src.users.schemas import (
    RegisterRequest, RegisterResponse, AdminCreateUserRequest, AdminUpdateUserRequest,
    AdminUserItem, UserStatusFilter
)
from src.worker.queue import enqueue
from src.worker.schemas import (
    JobType, StudentVerifyPayload, EmployeeWaitPayload, EmployeeApprovedPayload, AccountCreatedPayload
)

logger = logging.getLogger(__name__)

GIKI_EMAIL_DOMAIN = "@giki.edu.pk"
REG_ID_YEAR = re.compile(r"^(\d{4})")
SELF_REGISTER_TYPES = {"student": Role.STUDENT.value, "employee": Role.EMPLOYEE.value}


def normalize_email(raw: str) -> str:
    try:
        result = validate_email(raw.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise errors.INVALID_EMAIL().wrap(e)
    return result.normalized.lower()


def parse_batch_year(reg_id: str) -> int:
    """Students' registration numbers start with their intake year, e.g. 2021xxx"""
    reg_id = reg_id.strip()
    match = REG_ID_YEAR.match(reg_id)
    if len(reg_id) < 4 or not match:
        raise errors.INVALID_REG_ID()
    return int(match.group(1))


def to_admin_item(user: User) -> AdminUserItem:
    return AdminUserItem(
        id=user.id,
        name=user.name,
        email=user.email,
        phone_number=user.phone_number,
        user_type=user.user_type,
        is_active=user.is_active,
        is_verified=user.is_verified,
        reg_id=user.student_profile.reg_id if user.student_profile else None,
        created_at=user.created_at,
    )


class UserService:
    """Self-registration and back-office user management"""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: UUID) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise errors.USER_NOT_FOUND()
        return user

    def _check_phone_free(self, phone_number: Optional[str], user_id: Optional[UUID] = None) -> None:
        if not phone_number:
            return
        query = self.db.query(User).filter(User.phone_number == phone_number)
        if user_id is not None:
            query = query.filter(User.id != user_id)
        if query.first():
            raise errors.DUPLICATE_PHONE()

    def _check_reg_id_free(self, reg_id: str, user_id: Optional[UUID] = None) -> None:
        profile = self.db.query(StudentProfile).filter(StudentProfile.reg_id == reg_id).first()
        if profile and profile.user_id != user_id:
            raise errors.REG_ID_CONFLICT()

    # ================================
    # Registration
    # ================================
    def register(self, payload: RegisterRequest, request: Optional[Request] = None) -> RegisterResponse:
        user_type_raw = payload.user_type.strip().lower()
        if not user_type_raw:
            raise errors.INVALID_USER_TYPE()
        if user_type_raw not in SELF_REGISTER_TYPES:
            raise errors.INVALID_USER_TYPE(user_type=user_type_raw)
        user_type = SELF_REGISTER_TYPES[user_type_raw]

        email = normalize_email(payload.email)
        if not email.endswith(GIKI_EMAIL_DOMAIN) and user_type != Role.EMPLOYEE.value:
            raise errors.EMAIL_RESTRICTED()

        reg_id, batch_year = None, None
        if user_type == Role.STUDENT.value:
            if not payload.reg_id or not payload.reg_id.strip():
                raise errors.MISSING_REG_ID()
            reg_id = payload.reg_id.strip()
            batch_year = parse_batch_year(reg_id)

        name = payload.name.strip()
        phone_number = payload.phone_number.strip()

        existing = self.db.query(User).filter(User.email == email).first()
        if existing and existing.is_verified:
            raise errors.USER_EXISTS()

        self._check_phone_free(phone_number, existing.id if existing else None)
        if reg_id:
            self._check_reg_id_free(reg_id, existing.id if existing else None)

        if existing:
            # unverified re-registration: refresh details and resend the email
            user = existing
            user.name = name
            user.phone_number = phone_number
            user.password_hash = get_password_hash(payload.password)
            user.password_algo = "bcrypt"
            user.user_type = user_type
            self.db.query(AccessToken).filter(
                AccessToken.user_id == user.id, AccessToken.type == EMAIL_VERIFICATION
            ).delete(synchronize_session=False)
        else:
            user = User(
                id=uuid.uuid4(),
                name=name,
                email=email,
                phone_number=phone_number,
                password_hash=get_password_hash(payload.password),
                password_algo="bcrypt",
                user_type=user_type,
                is_active=False,
                is_verified=False,
            )
            self.db.add(user)
            try:
                self.db.flush()
            except IntegrityError as e:
                self.db.rollback()
                raise errors.DUPLICATE_EMAIL.wrap(e)

        try:
            self._upsert_profile(user, payload, reg_id, batch_year)
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise errors.DUPLICATE_REG_ID.wrap(e)

        if user_type == Role.STUDENT.value:
            raw_token = issue_access_token(self.db, user, EMAIL_VERIFICATION, VERIFICATION_TOKEN_TTL)
            enqueue(self.db, JobType.SEND_STUDENT_VERIFY_EMAIL, StudentVerifyPayload(
                email=user.email,
                name=user.name,
                link=f"{settings.FRONTEND_URL}/verify?token={raw_token}",
            ))
        else:
            enqueue(self.db, JobType.SEND_EMPLOYEE_WAIT_EMAIL, EmployeeWaitPayload(email=user.email, name=user.name))

        AuditService.log(
            self.db, AuditAction.REGISTER, request=request, actor_id=user.id, target_id=user.id,
            details={"user_type": user_type, "resent": existing is not None},
        )
        self.db.commit()
        logger.info("registered %s account %s", user_type.lower(), user.id)
        return RegisterResponse(
            id=user.id, name=user.name, email=user.email, user_type=user.user_type, created_at=user.created_at
        )

    def _upsert_profile(self, user: User, payload: RegisterRequest, reg_id: Optional[str], batch_year: Optional[int]):
        if user.user_type == Role.STUDENT.value:
            user.employee_profile = None
            profile = user.student_profile
            if profile is None:
                profile = StudentProfile(user_id=user.id)
                user.student_profile = profile
            profile.reg_id = reg_id
            profile.batch_year = batch_year
            profile.degree_program = payload.degree_program
        elif user.user_type == Role.EMPLOYEE.value:
            user.student_profile = None
            profile = user.employee_profile
            if profile is None:
                profile = EmployeeProfile(user_id=user.id, employee_id=str(uuid.uuid4()))
                user.employee_profile = profile
            profile.designation = payload.designation
            profile.department = payload.department

    # ================================
    # Admin user management
    # ================================
    def list_users(
        self,
        pagination: Pagination,
        search: Optional[str] = None,
        user_type: Optional[str] = None,
        filter_status: Optional[UserStatusFilter] = None,
    ) -> Tuple[List[AdminUserItem], int]:
        query = self.db.query(User).outerjoin(StudentProfile, StudentProfile.user_id == User.id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                User.name.ilike(pattern),
                User.email.ilike(pattern),
                User.phone_number.ilike(pattern),
                StudentProfile.reg_id.ilike(pattern),
            ))
        if user_type and user_type.lower() != "all":
            query = query.filter(User.user_type == user_type.upper())
        if filter_status == UserStatusFilter.ACTIVE:
            query = query.filter(User.is_active.is_(True))
        elif filter_status == UserStatusFilter.INACTIVE:
            query = query.filter(User.is_active.is_(False))
        elif filter_status == UserStatusFilter.PENDING:
            query = query.filter(User.user_type == Role.EMPLOYEE.value, User.is_active.is_(False))

        total = query.count()
        users = query.order_by(User.created_at.desc()).offset(pagination.offset).limit(pagination.limit).all()
        return [to_admin_item(user) for user in users], total

    def admin_create_user(
        self, payload: AdminCreateUserRequest, admin: User, request: Optional[Request] = None
    ) -> AdminUserItem:
        try:
            user_type = Role(payload.user_type.strip().upper()).value
        except ValueError:
            raise errors.INVALID_USER_TYPE(user_type=payload.user_type)

        email = normalize_email(payload.email)
        if self.db.query(User).filter(User.email == email).first():
            raise errors.DUPLICATE_EMAIL()
        phone_number = payload.phone_number.strip() if payload.phone_number else None
        self._check_phone_free(phone_number)

        temp_password = secrets.token_urlsafe(9)
        user = User(
            id=uuid.uuid4(),
            name=payload.name.strip(),
            email=email,
            phone_number=phone_number,
            password_hash=get_password_hash(temp_password),
            password_algo="bcrypt",
            user_type=user_type,
            is_active=True,
            is_verified=True,
        )
        self.db.add(user)
        try:
            self.db.flush()
            if user_type == Role.STUDENT.value:
                if not payload.reg_id:
                    raise errors.MISSING_REG_ID()
                reg_id = payload.reg_id.strip()
                self._check_reg_id_free(reg_id)
                user.student_profile = StudentProfile(
                    user_id=user.id, reg_id=reg_id, batch_year=parse_batch_year(reg_id)
                )
            elif user_type == Role.EMPLOYEE.value:
                user.employee_profile = EmployeeProfile(user_id=user.id, employee_id=str(uuid.uuid4()))
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise errors.USER_CREATION_FAILED.wrap(e)

        enqueue(self.db, JobType.SEND_ACCOUNT_CREATED_EMAIL, AccountCreatedPayload(
            email=user.email, name=user.name, password=temp_password
        ))
        AuditService.log(
            self.db, AuditAction.ADMIN_CREATE_USER, request=request, actor_id=admin.id, target_id=user.id,
            details={"user_type": user_type},
        )
        self.db.commit()
        self.db.refresh(user)
        return to_admin_item(user)

    def admin_update_user(
        self, user_id: UUID, payload: AdminUpdateUserRequest, admin: User, request: Optional[Request] = None
    ) -> AdminUserItem:
        user = self.get_user(user_id)
        changes = payload.model_dump(exclude_unset=True)

        if "user_type" in changes and changes["user_type"] is not None:
            try:
                changes["user_type"] = Role(changes["user_type"].strip().upper()).value
            except ValueError:
                raise errors.INVALID_USER_TYPE(user_type=changes["user_type"])
        if changes.get("phone_number"):
            changes["phone_number"] = changes["phone_number"].strip()
            self._check_phone_free(changes["phone_number"], user.id)

        for field, value in changes.items():
            if value is not None:
                setattr(user, field, value.strip() if isinstance(value, str) else value)

        AuditService.log(
            self.db, AuditAction.ADMIN_UPDATE_USER, request=request, actor_id=admin.id, target_id=user.id,
            details={"fields": sorted(changes)},
        )
        self.db.commit()
        self.db.refresh(user)
        return to_admin_item(user)

    def set_active(self, user_id: UUID, is_active: bool, admin: User, request: Optional[Request] = None) -> AdminUserItem:
        user = self.get_user(user_id)
        user.is_active = is_active
        AuditService.log(
            self.db, AuditAction.ADMIN_UPDATE_USER, request=request, actor_id=admin.id, target_id=user.id,
            details={"is_active": is_active},
        )
        self.db.commit()
        self.db.refresh(user)
        return to_admin_item(user)

    def admin_delete_user(self, user_id: UUID, admin: User, request: Optional[Request] = None) -> None:
        user = self.get_user(user_id)
        has_history = (
            self.db.query(Ticket.id).filter(Ticket.user_id == user.id).first()
            or self.db.query(GatewayTransaction.txn_ref_no).filter(GatewayTransaction.user_id == user.id).first()
        )
        if has_history:
            raise errors.USER_HAS_HISTORY()

        details = {"email": user.email, "name": user.name}
        self.db.delete(user)
        AuditService.log(
            self.db, AuditAction.ADMIN_DELETE_USER, request=request, actor_id=admin.id, target_id=user_id,
            details=details,
        )
        self.db.commit()

    def approve_employee(self, user_id: UUID, admin: User, request: Optional[Request] = None) -> AdminUserItem:
        user = self.get_user(user_id)
        if user.user_type != Role.EMPLOYEE.value:
            raise errors.NOT_AN_EMPLOYEE()
        if user.is_active:
            raise errors.ALREADY_VERIFIED()

        user.is_active = True
        user.is_verified = True
        enqueue(self.db, JobType.SEND_EMPLOYEE_APPROVED_EMAIL, EmployeeApprovedPayload(
            email=user.email, name=user.name, link=f"{settings.FRONTEND_URL}/login"
        ))
        AuditService.log(
            self.db, AuditAction.ADMIN_UPDATE_USER, request=request, actor_id=admin.id, target_id=user.id,
            details={"approved": True},
        )
        self.db.commit()
        self.db.refresh(user)
        return to_admin_item(user)

    def reject_employee(self, user_id: UUID, admin: User, request: Optional[Request] = None) -> None:
        user = self.get_user(user_id)
        if user.user_type != Role.EMPLOYEE.value:
            raise errors.NOT_AN_EMPLOYEE()
        if user.is_active:
            raise errors.ALREADY_VERIFIED()

        enqueue(self.db, JobType.SEND_EMPLOYEE_REJECTED_EMAIL, EmployeeWaitPayload(email=user.email, name=user.name))
        details = {"email": user.email, "rejected": True}
        self.db.delete(user)
        AuditService.log(
            self.db, AuditAction.ADMIN_DELETE_USER, request=request, actor_id=admin.id, target_id=user_id,
            details=details,
        )
        self.db.commit()
