"""Route modules."""

from .admin import router as admin_router
from .internal import router as internal_router
from .payments import router as payments_router

__all__ = ["admin_router", "internal_router", "payments_router"]
