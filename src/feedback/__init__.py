"""
Feedback Module

Star ratings and comments submitted by signed-in users, listed for super
admins.

Key Components:
- service.py: FeedbackService
- router.py: POST /feedback and GET /admin/feedback
"""

from .router import router, admin_router
from .service import FeedbackService

__all__ = [
    "router",
    "admin_router",
    "FeedbackService",
]
