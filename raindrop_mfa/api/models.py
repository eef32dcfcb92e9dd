"""
Pydantic Models for the raindrop-mfa API.

Request and response models for all API endpoints.
"""
from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, ConfigDict


# ============================================
# Authentication Models
# ============================================

class UserLogin(BaseModel):
    """
    Primary login request.

    Credentials are checked by the host application; the MFA gate then
    decides whether the login completes or is held back for MFA.
    """
    login: str = Field(..., min_length=1, description="Account login name")
    password: str = Field(..., description="Account password")
    redirect_to: Optional[str] = Field(None, description="Where to go once login completes")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "login": "alice",
                "password": "correct horse battery staple",
                "redirect_to": "/dashboard"
            }
        }
    )


class LoginResponse(BaseModel):
    """Outcome of a primary login."""
    state: str = Field(..., description="no_mfa_required, needs_setup or needs_verify")
    redirect: Optional[str] = Field(None, description="Page the client should open next")
    user_id: Optional[str] = None


# ============================================
# MFA Page Models
# ============================================

class FlashMessage(BaseModel):
    type: str
    message: str


class SetupPageResponse(BaseModel):
    """
    Data for the HydroID setup page.

    The form posts ``hydro_id`` plus ``identity-submit`` (or ``skip-setup``)
    and the ``_nonce`` value back to ``form_action``.
    """
    state: str
    nonce: str
    skip_allowed: bool
    form_action: str
    redirect_to: Optional[str] = None
    messages: List[FlashMessage] = []


class VerifyPageResponse(BaseModel):
    """
    Data for the verify page.

    ``challenge`` is the six-digit message the user confirms in the Hydro
    app; the form posts ``verify-submit`` (or ``cancel``) and ``_nonce``.
    """
    state: str
    challenge: Optional[int] = Field(None, description="Message to sign in the Hydro app")
    nonce: str
    first_time_verify: bool = False
    form_action: str
    redirect_to: Optional[str] = None
    messages: List[FlashMessage] = []


class MfaStatusResponse(BaseModel):
    """MFA status of the logged-in user."""
    user_id: str
    policy_enabled: bool
    mfa_method: str
    hydro_id: Optional[str] = None
    mfa_enabled: bool
    mfa_confirmed: bool
    account_blocked: bool
    confirm_url: Optional[str] = Field(None, description="Set while a registered HydroID awaits its first verification")
    enable_url: Optional[str] = None
    disable_url: Optional[str] = None


# ============================================
# Health Models
# ============================================

class HealthStatus(BaseModel):
    """Health check response."""
    status: str = Field(..., description="healthy, degraded or unhealthy")
    version: str
    services: Dict[str, str]
    timestamp: datetime


# ============================================
# Error Models
# ============================================

class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this format with an error message,
    optional detail, and error code for programmatic handling.
    """
    error: str = Field(..., description="Error type/summary")
    detail: Optional[str] = Field(None, description="Detailed error message")
    code: Optional[str] = Field(None, description="Error code for programmatic handling")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Forbidden",
                "detail": "Your account has been blocked.",
                "code": "ACCOUNT_BLOCKED"
            }
        }
    )
