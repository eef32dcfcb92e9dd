"""
FastAPI Dependencies for the raindrop-mfa API.

Provides:
- Redis client
- Gate services (store, identity client, host users and sessions)
- Per-request MFA policy, request context and state machine
- Applying gate decisions to responses
"""
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import redis
from fastapi import Depends, HTTPException, Request, status

from ..auth.challenge_store import ChallengeStore
from ..auth.flash import FlashStore
from ..auth.host import HOST_SESSION_HOURS, HostSessions, UserDirectory
from ..auth.identity_client import IdentityClient
from ..auth.nonce import NonceSigner
from ..auth.session_cookie import SessionCookie, get_signing_salt
from ..auth.state_machine import (
    CookieAction,
    Decision,
    GateUrls,
    MfaState,
    MfaStateMachine,
    RequestContext,
)
from ..database.kv_store import KeyValueStore
from ..database.profile_db import PolicyConfig, PolicyStore, ProfileStore
from ..utils.config import Settings

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

_redis_client: Optional[redis.Redis] = None


def get_redis_client(settings: Settings) -> Optional[redis.Redis]:
    """
    Get Redis client singleton.

    Returns None if Redis is not configured or unavailable.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    if not settings.redis_host:
        return None

    try:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password,
            db=settings.redis_db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        # Test connection
        _redis_client.ping()
        logger.info(f"Redis connected: {settings.redis_host}:{settings.redis_port}")
        return _redis_client
    except redis.ConnectionError as e:
        logger.warning(f"Redis connection failed: {e}. MFA state will use in-memory fallback.")
        _redis_client = None
        return None


# ============================================
# Gate Services
# ============================================

@dataclass
class GateServices:
    """Process-wide collaborators, created once by ``create_app``."""
    settings: Settings
    store: KeyValueStore
    identity_client: IdentityClient
    users: UserDirectory
    host_sessions: HostSessions
    flashes: FlashStore


def get_services(request: Request) -> GateServices:
    return request.app.state.services


def get_user_directory(request: Request) -> UserDirectory:
    return get_services(request).users


def get_policy(request: Request) -> PolicyConfig:
    """Load MFA policy once per request."""
    policy = getattr(request.state, "mfa_policy", None)
    if policy is None:
        policy = PolicyStore(get_services(request).store).load()
        request.state.mfa_policy = policy
    return policy


def build_session_cookie(services: GateServices) -> SessionCookie:
    settings = services.settings
    return SessionCookie(
        get_signing_salt(services.store, settings.cookie_salt),
        name=settings.cookie_name,
        site_path=settings.site_path,
        secure=settings.cookie_secure,
    )


def get_state_machine(request: Request) -> MfaStateMachine:
    """Build the MFA state machine for this request."""
    machine = getattr(request.state, "mfa_machine", None)
    if machine is not None:
        return machine

    services = get_services(request)
    settings = services.settings
    cookie = build_session_cookie(services)

    machine = MfaStateMachine(
        policy=get_policy(request),
        profiles=ProfileStore(services.store),
        challenges=ChallengeStore(services.store, services.identity_client),
        cookie=cookie,
        nonces=NonceSigner(cookie.secret),
        client=services.identity_client,
        flashes=services.flashes,
        urls=GateUrls.from_settings(settings),
        require_secure=settings.require_secure,
    )
    request.state.mfa_machine = machine
    return machine


# ============================================
# Request Context
# ============================================

def is_secure_request(request: Request) -> bool:
    """HTTPS directly or behind a TLS-terminating proxy."""
    if request.url.scheme == "https":
        return True
    return request.headers.get("x-forwarded-proto", "").lower() == "https"


def build_request_context(request: Request, form: Optional[Mapping[str, str]] = None) -> RequestContext:
    services = get_services(request)
    settings = services.settings

    host_user_id = services.host_sessions.validate_session(
        request.cookies.get(settings.host_cookie_name)
    )

    return RequestContext(
        method=request.method,
        is_secure=is_secure_request(request),
        path=request.url.path,
        form=dict(form or {}),
        query=dict(request.query_params),
        cookie=request.cookies.get(settings.cookie_name),
        host_user_id=host_user_id,
        is_admin=services.users.is_admin(host_user_id),
    )


def get_request_context(request: Request) -> RequestContext:
    ctx = getattr(request.state, "mfa_context", None)
    if ctx is None:
        ctx = build_request_context(request)
        request.state.mfa_context = ctx
    return ctx


def get_gate_decision(request: Request) -> Decision:
    """The decision the gate middleware reached for this request."""
    decision = getattr(request.state, "mfa_decision", None)
    if decision is None:
        return Decision(state=MfaState.NO_MFA_REQUIRED)
    return decision


async def get_current_user(ctx: RequestContext = Depends(get_request_context)) -> str:
    """
    Return the user id of the host session.

    Raises:
        HTTPException: If nobody is logged in.
    """
    if not ctx.host_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return ctx.host_user_id


# ============================================
# Applying Decisions
# ============================================

def apply_decision(request: Request, response, decision: Decision) -> None:
    """Set or clear cookies and log users in or out as the decision says."""
    services = get_services(request)
    settings = services.settings
    machine = get_state_machine(request)

    if decision.cookie is CookieAction.SET and decision.cookie_value:
        machine.cookie.set_on(response, decision.cookie_value)
    elif decision.cookie is CookieAction.CLEAR:
        machine.cookie.clear_on(response)

    if decision.logout:
        services.host_sessions.invalidate_session(request.cookies.get(settings.host_cookie_name))
        response.delete_cookie(
            settings.host_cookie_name,
            path="/",
            secure=settings.cookie_secure,
            httponly=True,
            samesite="lax",
        )
        logger.info("Host session ended by MFA gate")

    if decision.login_user_id:
        token = services.host_sessions.create_session(decision.login_user_id)
        response.set_cookie(
            settings.host_cookie_name,
            token,
            max_age=HOST_SESSION_HOURS * 3600,
            path="/",
            secure=settings.cookie_secure,
            httponly=True,
            samesite="lax",
        )
        logger.info(f"Host session started for user {decision.login_user_id}")
