from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from src.audit.schemas import SecurityEventList, ListMeta
from src.audit.service import AuditService
from src.auth.dependencies import require_super_admin
from src.common.params import Pagination, pagination_params
from src.common.responses import envelope
from src.database import get_db

router = APIRouter()

@router.get("/audit-logs")
def list_security_events(
    request: Request,
    action: Optional[str] = Query(None, description="Filter by action, e.g. LOGIN_FAILURE"),
    status: Optional[str] = Query(None, description="SUCCESS or FAILURE"),
    search: Optional[str] = Query(None, description="Actor/target name or email, or IP"),
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
    _admin=Depends(require_super_admin),
):
    """List security audit events, newest first"""
    events, total = AuditService.list_events(db, pagination, action=action, status=status, search=search)
    total_pages = (total + pagination.page_size - 1) // pagination.page_size
    result = SecurityEventList(
        data=events,
        meta=ListMeta(
            current_page=pagination.page,
            page_size=pagination.page_size,
            total_items=total,
            total_pages=total_pages,
        ),
    )
    return envelope(request, result)
