from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from src.auth.dependencies import get_current_user, require_super_admin
from src.common.params import Pagination, pagination_params
from src.common.responses import envelope
from src.database import get_db
from src.feedback.schemas import FeedbackRequest, FeedbackPage
from src.feedback.service import FeedbackService
from src.models import User

router = APIRouter()
admin_router = APIRouter()

@router.post("", status_code=status.HTTP_201_CREATED)
def submit_feedback(
    payload: FeedbackRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Rate the service from 1 to 5 with an optional comment"""
    return envelope(request, FeedbackService(db).submit(current_user, payload.rating, payload.comment))

# Admin endpoints
@admin_router.get("/feedback")
def list_feedback(
    request: Request,
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
    _admin=Depends(require_super_admin),
):
    items, total = FeedbackService(db).list_feedback(pagination)
    return envelope(request, FeedbackPage(
        data=items, total_count=total, page=pagination.page, page_size=pagination.page_size
    ))
