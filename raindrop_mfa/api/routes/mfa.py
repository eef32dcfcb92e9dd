"""
MFA Page Endpoints.

The setup and verify "pages" are JSON payloads a front end renders as
forms. Form submissions (POST) are processed by the gate middleware before
these handlers run; the handlers only render the resulting page state.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..models import (
    ErrorResponse,
    FlashMessage,
    MfaStatusResponse,
    SetupPageResponse,
    VerifyPageResponse,
)
from ..deps import (
    get_current_user,
    get_gate_decision,
    get_request_context,
    get_state_machine,
)
from ...auth.nonce import ACTION_MFA, ACTION_SETUP
from ...auth.state_machine import (
    ACTION_DISABLE,
    ACTION_ENABLE,
    QUERY_ACTION,
    QUERY_FIRST_TIME,
    Decision,
    MfaStateMachine,
    RequestContext,
    with_query,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/mfa", tags=["MFA"])


def _form_action(request: Request) -> str:
    """Forms post back to the exact URL they were rendered on."""
    if request.url.query:
        return f"{request.url.path}?{request.url.query}"
    return request.url.path


def _pending_user(machine: MfaStateMachine, ctx: RequestContext, decision: Decision) -> Optional[str]:
    return decision.mfa_user_id or machine.current_user(ctx)


def _messages(machine: MfaStateMachine, user_id: Optional[str]):
    if not user_id:
        return []
    return [FlashMessage(**message) for message in machine.flash_for(user_id).pop_all()]


@router.api_route(
    "/setup",
    methods=["GET", "POST"],
    response_model=SetupPageResponse,
    responses={401: {"model": ErrorResponse, "description": "No pending MFA session"}},
)
async def setup_page(
    request: Request,
    machine: MfaStateMachine = Depends(get_state_machine),
    ctx: RequestContext = Depends(get_request_context),
    decision: Decision = Depends(get_gate_decision),
):
    """
    HydroID setup page.

    Post ``hydro_id`` with ``identity-submit`` to register, or
    ``skip-setup`` when the policy allows skipping.
    """
    user_id = _pending_user(machine, ctx, decision)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No pending MFA session",
        )

    return SetupPageResponse(
        state=decision.state.value,
        nonce=machine.nonce_for(ACTION_SETUP, user_id),
        skip_allowed=machine.policy.setup_skippable,
        form_action=_form_action(request),
        redirect_to=ctx.redirect_to,
        messages=_messages(machine, user_id),
    )


@router.api_route(
    "/verify",
    methods=["GET", "POST"],
    response_model=VerifyPageResponse,
    responses={
        401: {"model": ErrorResponse, "description": "No pending MFA session"},
        503: {"model": ErrorResponse, "description": "MFA is not properly configured"},
    },
)
async def verify_page(
    request: Request,
    machine: MfaStateMachine = Depends(get_state_machine),
    ctx: RequestContext = Depends(get_request_context),
    decision: Decision = Depends(get_gate_decision),
):
    """
    Verify page.

    Shows the challenge message to confirm in the Hydro app. Post
    ``verify-submit`` once confirmed, or ``cancel`` to abort the login.
    """
    user_id = _pending_user(machine, ctx, decision)
    if user_id is None and not ctx.is_admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No pending MFA session",
        )

    # An administrator without a pending MFA session sees the page, no challenge
    challenge = machine.challenges.get_or_create(user_id) if user_id else None

    return VerifyPageResponse(
        state=decision.state.value,
        challenge=challenge,
        nonce=machine.nonce_for(ACTION_MFA, user_id),
        first_time_verify=ctx.first_time_verify,
        form_action=_form_action(request),
        redirect_to=ctx.redirect_to,
        messages=_messages(machine, user_id),
    )


@router.get("/status", response_model=MfaStatusResponse)
async def mfa_status(
    user_id: str = Depends(get_current_user),
    machine: MfaStateMachine = Depends(get_state_machine),
):
    """
    MFA status of the logged-in user.

    Includes the links to confirm a pending HydroID and to enable or disable
    MFA, as applicable.
    """
    profile = machine.profiles.get(user_id)
    policy = machine.policy
    urls = machine.urls

    confirm_url = enable_url = disable_url = None
    if policy.enabled:
        if profile.is_set_up and not profile.mfa_confirmed:
            confirm_url = with_query(urls.verify, {QUERY_FIRST_TIME: "1"})
        if profile.is_set_up and profile.mfa_confirmed:
            disable_url = with_query(urls.verify, {QUERY_ACTION: ACTION_DISABLE})
        if not profile.is_set_up:
            enable_url = with_query(urls.setup, {QUERY_ACTION: ACTION_ENABLE})

    return MfaStatusResponse(
        user_id=user_id,
        policy_enabled=policy.enabled,
        mfa_method=policy.mfa_method.value,
        hydro_id=profile.identity or None,
        mfa_enabled=profile.mfa_enabled,
        mfa_confirmed=profile.mfa_confirmed,
        account_blocked=profile.account_blocked,
        confirm_url=confirm_url,
        enable_url=enable_url,
        disable_url=disable_url,
    )
