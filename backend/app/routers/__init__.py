"""BlueCarbon Ledger - API Routers"""
from .auth import router as auth_router
from .submissions import router as submissions_router
from .credits import router as credits_router
from .admin import router as admin_router

__all__ = [
    "auth_router",
    "submissions_router",
    "credits_router",
    "admin_router",
]
