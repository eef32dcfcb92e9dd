"""
API Routes for raindrop-mfa.
"""
from .auth import router as auth_router
from .health import router as health_router
from .mfa import router as mfa_router

__all__ = [
    "auth_router",
    "health_router",
    "mfa_router",
]
