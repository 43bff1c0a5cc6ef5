"""
JudgeSync - API Routers
"""

from .admin import router as admin_router
from .sync import router as sync_router
from .webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "sync_router",
    "webhooks_router",
]
