"""
API package for the MailSync backend.

This package contains FastAPI routers for all API endpoints.
"""

from .health import router as health_router
from .mailbox import router as mailbox_router

__all__ = [
    "health_router",
    "mailbox_router",
]
