from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from uuid import UUID

class FeedbackRequest(BaseModel):
    rating: int
    comment: Optional[str] = Field(None, max_length=2000)

class FeedbackItem(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    rating: int
    comment: Optional[str] = None
    created_at: datetime

class FeedbackPage(BaseModel):
    data: List[FeedbackItem]
    total_count: int
    page: int
    page_size: int
