import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.common.params import Pagination
from src.feedback import errors
from src.feedback.schemas import FeedbackItem
from src.models import Feedback, User

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


class FeedbackService:
    def __init__(self, db: Session):
        self.db = db

    def submit(self, user: User, rating: int, comment: Optional[str]) -> FeedbackItem:
        if not MIN_RATING <= rating <= MAX_RATING:
            raise errors.INVALID_RATING(rating=rating)

        entry = Feedback(user_id=user.id, rating=rating, comment=(comment or "").strip() or None)
        self.db.add(entry)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise errors.FEEDBACK_CREATION_FAILED.wrap(e)

        logger.info("feedback %s from user %s, rating %d", entry.id, user.id, rating)
        return FeedbackItem(
            id=entry.id,
            user_id=user.id,
            user_name=user.name,
            user_email=user.email,
            rating=entry.rating,
            comment=entry.comment,
            created_at=entry.created_at,
        )

    def list_feedback(self, pagination: Pagination) -> Tuple[List[FeedbackItem], int]:
        """Newest first, with the author's name and email when the account still exists"""
        query = self.db.query(Feedback, User).outerjoin(User, Feedback.user_id == User.id)
        total = query.count()
        rows = (
            query.order_by(Feedback.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )
        items = [
            FeedbackItem(
                id=entry.id,
                user_id=entry.user_id,
                user_name=user.name if user else None,
                user_email=user.email if user else None,
                rating=entry.rating,
                comment=entry.comment,
                created_at=entry.created_at,
            )
            for entry, user in rows
        ]
        return items, total
