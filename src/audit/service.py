import logging
from typing import Any, Dict, Optional, Tuple, List
from uuid import UUID

from fastapi import Request
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from src.audit.schemas import AuditAction, AuditStatus, SecurityEventRow
from src.common.ip import client_ip
from src.common.params import Pagination
from src.models import AuditLog, User

logger = logging.getLogger(__name__)

class AuditService:
    """Writes and queries the security audit trail"""

    @staticmethod
    def log(
        db: Session,
        action: AuditAction,
        status: AuditStatus = AuditStatus.SUCCESS,
        request: Optional[Request] = None,
        actor_id: Optional[UUID] = None,
        target_id: Optional[UUID] = None,
        details: Optional[Dict[str, Any]] = None,
        commit: bool = False,
    ) -> None:
        """Record a security event in the caller's session.

        With ``commit=True`` the event is committed immediately, which is
        what failure paths use before raising. Write failures are logged and
        swallowed so auditing never breaks the request.
        """
        entry = AuditLog(
            action=action.value if isinstance(action, AuditAction) else action,
            status=status.value if isinstance(status, AuditStatus) else status,
            actor_id=actor_id,
            target_id=target_id,
            details=details or {},
            ip_address=client_ip(request) if request is not None else None,
            user_agent=request.headers.get("User-Agent") if request is not None else None,
        )
        db.add(entry)
        if not commit:
            return
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("failed to write audit event %s", entry.action)

    @staticmethod
    def list_events(
        db: Session,
        pagination: Pagination,
        action: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[SecurityEventRow], int]:
        actor = aliased(User)
        target = aliased(User)
        query = (
            db.query(AuditLog, actor, target)
            .outerjoin(actor, AuditLog.actor_id == actor.id)
            .outerjoin(target, AuditLog.target_id == target.id)
        )
        if action:
            query = query.filter(AuditLog.action == action.upper())
        if status:
            query = query.filter(AuditLog.status == status.upper())
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                actor.name.ilike(pattern),
                actor.email.ilike(pattern),
                target.name.ilike(pattern),
                target.email.ilike(pattern),
                AuditLog.ip_address.ilike(pattern),
            ))

        total = query.count()
        rows = (
            query.order_by(AuditLog.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )

        events = []
        for log, actor_user, target_user in rows:
            events.append(SecurityEventRow(
                id=log.id,
                action=log.action,
                ip_address=log.ip_address,
                user_agent=log.user_agent,
                status=log.status,
                created_at=log.created_at,
                details=log.details or {},
                actor_id=log.actor_id,
                actor_name=actor_user.name if actor_user else None,
                actor_email=actor_user.email if actor_user else None,
                target_id=log.target_id,
                target_name=target_user.name if target_user else None,
                target_email=target_user.email if target_user else None,
            ))
        return events, total
