"""
raindrop-mfa REST API.

FastAPI application hosting the Hydro Raindrop MFA gate.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
