"""
Authentication Endpoints.

Primary login and logout. A successful password check runs the MFA gate's
authenticate hook, which may hold the login back for setup or verification.
"""
import logging
from dataclasses import replace

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..models import UserLogin, LoginResponse, ErrorResponse
from ..deps import (
    apply_decision,
    get_current_user,
    get_request_context,
    get_state_machine,
    get_user_directory,
)
from ...auth.host import UserDirectory
from ...auth.state_machine import (
    QUERY_REDIRECT,
    CookieAction,
    Decision,
    MfaState,
    MfaStateMachine,
    RequestContext,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        403: {"model": ErrorResponse, "description": "Account blocked after failed MFA attempts"},
        503: {"model": ErrorResponse, "description": "MFA is not properly configured"},
    },
)
async def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    users: UserDirectory = Depends(get_user_directory),
    machine: MfaStateMachine = Depends(get_state_machine),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Check primary credentials, then hand over to the MFA gate.

    When MFA is required the response carries the page to open next and the
    MFA session cookie; the host session is only started once MFA passes.
    """
    account = users.check_password(credentials.login, credentials.password)
    if account is None:
        logger.warning(f"Failed login attempt for: {credentials.login}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid login or password",
        )

    if credentials.redirect_to:
        ctx = replace(ctx, query={**ctx.query, QUERY_REDIRECT: credentials.redirect_to})

    decision = machine.authenticate(account.user_id, ctx)
    apply_decision(request, response, decision)

    redirect = decision.redirect
    if decision.state is MfaState.NO_MFA_REQUIRED:
        redirect = machine.destination(ctx)
        logger.info(f"User logged in without MFA: {account.login}")

    return LoginResponse(
        state=decision.state.value,
        redirect=redirect,
        user_id=account.user_id,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    response: Response,
    user_id: str = Depends(get_current_user),
):
    """
    Logout current session.

    Ends the host session and drops any pending MFA session.
    """
    apply_decision(
        request,
        response,
        Decision(state=MfaState.NO_MFA_REQUIRED, cookie=CookieAction.CLEAR, logout=True),
    )
    logger.info(f"User logged out: {user_id}")

    return None
