"""
Hydro Raindrop MFA state machine.

The gate runs in two places:

- ``authenticate`` right after the host application accepted primary
  credentials, to decide whether the login must be held back for MFA.
- ``verify`` on every request, to process the setup/verify/skip/cancel forms
  and to keep a mid-MFA browser on the right page.

Neither touches the transport. Each call receives a RequestContext and
returns a Decision that the HTTP layer applies (redirect, cookie set/clear,
host login/logout). Policy is passed in once per request and never re-read.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import urlencode

from ..database.profile_db import MfaMethod, MfaProfile, PolicyConfig, ProfileStore
from .attempt_policy import AttemptPolicy
from .challenge_store import ChallengeStore
from .errors import AccountBlocked, IdentityServiceError
from .flash import FlashBag, FlashStore
from .identity_client import ClientOutcome, ClientResult, IdentityClient
from .nonce import ACTION_MFA, ACTION_SETUP, NonceSigner
from .session_cookie import SessionCookie

logger = logging.getLogger(__name__)

# POST fields
FORM_IDENTITY_SUBMIT = "identity-submit"
FORM_VERIFY_SUBMIT = "verify-submit"
FORM_SKIP_SETUP = "skip-setup"
FORM_CANCEL = "cancel"
FORM_NONCE = "_nonce"
FORM_HYDRO_ID = "hydro_id"

# GET markers
QUERY_FIRST_TIME = "first-time-verify"
QUERY_ACTION = "action"
QUERY_REDIRECT = "redirect_to"

ACTION_ENABLE = "enable"
ACTION_DISABLE = "disable"

HYDRO_ID_MIN_LENGTH = 3
HYDRO_ID_MAX_LENGTH = 32
# Identities are embedded in the pipe-delimited session cookie
HYDRO_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")

MSG_INVALID_HYDRO_ID = "Please provide a valid HydroID."
MSG_REGISTERED = "Your HydroID has been successfully set-up. Enter security code in the Hydro app."
MSG_ALREADY_MAPPED = (
    "Your HydroID was already mapped to this site. Mapping is removed. "
    "Please re-enter your HydroID to proceed."
)
MSG_UNMAP_FAILED = "Your HydroID is already mapped to this site and the mapping could not be removed."
MSG_REGISTRATION_FAILED = "Your HydroID could not be registered."
MSG_AUTH_FAILED = "Authentication failed."
MSG_BLOCKED = "Your account has been blocked."
MSG_DISABLED = "Hydro Raindrop MFA has been disabled for your account."
MSG_DISABLE_FAILED = "Hydro Raindrop MFA could not be disabled. Please try again."


class MfaState(str, Enum):
    NO_MFA_REQUIRED = "no_mfa_required"
    NEEDS_SETUP = "needs_setup"
    NEEDS_VERIFY = "needs_verify"
    BLOCKED = "blocked"
    AUTHENTICATED = "authenticated"


class CookieAction(str, Enum):
    KEEP = "keep"
    SET = "set"
    CLEAR = "clear"


@dataclass(frozen=True)
class RequestContext:
    """Everything the gate needs to know about the current request."""
    method: str = "GET"
    is_secure: bool = False
    path: str = "/"
    form: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    cookie: Optional[str] = None
    host_user_id: Optional[str] = None
    is_admin: bool = False

    @property
    def first_time_verify(self) -> bool:
        return str(self.query.get(QUERY_FIRST_TIME, "")) == "1"

    @property
    def action(self) -> str:
        return str(self.query.get(QUERY_ACTION, ""))

    @property
    def enable_requested(self) -> bool:
        return self.action == ACTION_ENABLE

    @property
    def disable_requested(self) -> bool:
        return self.action == ACTION_DISABLE

    @property
    def redirect_to(self) -> Optional[str]:
        return self.form.get(QUERY_REDIRECT) or self.query.get(QUERY_REDIRECT) or None

    def submitted(self, name: str) -> bool:
        return name in self.form


@dataclass(frozen=True)
class Decision:
    """What the HTTP layer must do with the current request."""
    state: MfaState
    redirect: Optional[str] = None
    cookie: CookieAction = CookieAction.KEEP
    cookie_value: Optional[str] = None
    login_user_id: Optional[str] = None
    logout: bool = False
    mfa_user_id: Optional[str] = None


@dataclass(frozen=True)
class GateUrls:
    home: str = "/"
    login: str = "/auth/login"
    setup: str = "/mfa/setup"
    verify: str = "/mfa/verify"
    default_redirect: str = "/"

    @classmethod
    def from_settings(cls, settings) -> "GateUrls":
        return cls(
            home=settings.home_url,
            login=settings.login_url,
            setup=settings.setup_url,
            verify=settings.verify_url,
            default_redirect=settings.default_redirect,
        )


def requires_verify(profile: MfaProfile, policy: PolicyConfig, first_time_verify: bool = False) -> bool:
    """Whether the user must confirm a challenge before getting through."""
    if not policy.enabled:
        return False
    if not profile.identity or not profile.mfa_enabled:
        return False
    # A freshly set-up identity must pass one verification to become confirmed
    return profile.mfa_confirmed or first_time_verify


def requires_setup(
    profile: MfaProfile,
    policy: PolicyConfig,
    enable_requested: bool = False,
    first_time_verify: bool = False,
) -> bool:
    """Whether the user must register a HydroID before getting through."""
    if not policy.enabled:
        return False
    if enable_requested:
        return True
    if policy.mfa_method is MfaMethod.OPTIONAL:
        return False
    return not requires_verify(profile, policy, first_time_verify)


def is_valid_hydro_id(hydro_id: str) -> bool:
    if not HYDRO_ID_MIN_LENGTH <= len(hydro_id) <= HYDRO_ID_MAX_LENGTH:
        return False
    return HYDRO_ID_PATTERN.fullmatch(hydro_id) is not None


def is_safe_redirect(url: Optional[str]) -> bool:
    """Only same-site relative paths are followed."""
    return bool(url) and url.startswith("/") and not url.startswith("//") and "\\" not in url


def with_query(url: str, params: Mapping[str, str]) -> str:
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(dict(params))}"


class MfaStateMachine:
    """
    Orchestrates the MFA gate for a single request.

    Example usage:
        machine = MfaStateMachine(policy=..., profiles=..., challenges=...,
                                  cookie=..., nonces=..., client=..., flashes=...)
        decision = machine.verify(ctx)
    """

    def __init__(
        self,
        *,
        policy: PolicyConfig,
        profiles: ProfileStore,
        challenges: ChallengeStore,
        cookie: SessionCookie,
        nonces: NonceSigner,
        client: IdentityClient,
        flashes: FlashStore,
        urls: GateUrls = GateUrls(),
        require_secure: bool = True,
    ):
        self.policy = policy
        self.profiles = profiles
        self.challenges = challenges
        self.cookie = cookie
        self.nonces = nonces
        self.client = client
        self.flashes = flashes
        self.urls = urls
        self.require_secure = require_secure
        self.attempts = AttemptPolicy(profiles, policy.max_attempts)

    # ==========================================
    # Helpers
    # ==========================================

    def current_user(self, ctx: RequestContext) -> Optional[str]:
        """User id bound by a valid MFA session cookie, if any."""
        return self.cookie.validate(ctx.cookie, self.profiles.get_identity)

    def destination(self, ctx: RequestContext) -> str:
        """Where to send the user once the gate lets them through."""
        redirect_to = ctx.redirect_to
        if is_safe_redirect(redirect_to):
            return redirect_to
        return self.urls.default_redirect

    def _carried_query(self, ctx: RequestContext, **overrides: str) -> dict:
        params = {
            key: str(ctx.query[key])
            for key in (QUERY_FIRST_TIME, QUERY_ACTION, QUERY_REDIRECT)
            if ctx.query.get(key)
        }
        if ctx.redirect_to and QUERY_REDIRECT not in params:
            params[QUERY_REDIRECT] = ctx.redirect_to
        params.update(overrides)
        return params

    def _setup_target(self, ctx: RequestContext) -> str:
        if self.policy.setup_page_enabled:
            return with_query(self.urls.setup, self._carried_query(ctx))
        return with_query(ctx.path, self._carried_query(ctx))

    def _verify_target(self, ctx: RequestContext, **overrides: str) -> str:
        base = self.urls.verify if self.policy.verify_page_enabled else ctx.path
        params = self._carried_query(ctx, **overrides)
        # Enabling is finished once setup is; verification is a plain first-time check
        if params.get(QUERY_ACTION) == ACTION_ENABLE:
            del params[QUERY_ACTION]
        return with_query(base, params)

    def _issue(self, user_id: str, identity: str) -> str:
        return self.cookie.issue(user_id, identity)

    def nonce_for(self, action: str, user_id: Optional[str]) -> str:
        return self.nonces.create(action, user_id)

    def flash_for(self, user_id: str) -> FlashBag:
        return self.flashes.for_user(user_id)

    # ==========================================
    # Primary login hook
    # ==========================================

    def authenticate(self, user_id: str, ctx: RequestContext) -> Decision:
        """
        Run after primary credentials were accepted for ``user_id``.

        Raises:
            AccountBlocked: If the account is locked by failed MFA attempts.
        """
        user_id = str(user_id)
        profile = self.profiles.get(user_id)

        if profile.account_blocked:
            logger.info(f"Rejected login for blocked user {user_id}")
            raise AccountBlocked(user_id)

        if requires_setup(profile, self.policy, ctx.enable_requested, ctx.first_time_verify):
            logger.info(f"User {user_id} authenticates and requires Hydro Raindrop MFA setup.")
            return Decision(
                state=MfaState.NEEDS_SETUP,
                redirect=self._setup_target(ctx) if self.policy.setup_page_enabled else None,
                cookie=CookieAction.SET,
                cookie_value=self._issue(user_id, profile.identity),
                mfa_user_id=user_id,
            )

        if requires_verify(profile, self.policy, ctx.first_time_verify):
            logger.info(f"User {user_id} authenticates and requires Hydro Raindrop MFA.")
            self.challenges.invalidate(user_id)
            return Decision(
                state=MfaState.NEEDS_VERIFY,
                redirect=self._verify_target(ctx) if self.policy.verify_page_enabled else None,
                cookie=CookieAction.SET,
                cookie_value=self._issue(user_id, profile.identity),
                mfa_user_id=user_id,
            )

        return Decision(state=MfaState.NO_MFA_REQUIRED, login_user_id=user_id)

    # ==========================================
    # Per-request hook
    # ==========================================

    def verify(self, ctx: RequestContext) -> Decision:
        """Process MFA forms and route a mid-MFA browser to the right page."""
        mfa_user = self.current_user(ctx)

        if ctx.method.upper() == "POST" and (ctx.is_secure or not self.require_secure):
            decision = self._handle_post(ctx, mfa_user)
            if decision is not None:
                return decision

        decision = self._start_from_session(ctx, mfa_user)
        if decision is not None:
            return decision

        # Administrators may always open the verify page, so a broken
        # configuration cannot lock them out.
        if (
            ctx.host_user_id
            and ctx.is_admin
            and self.policy.verify_page_enabled
            and ctx.path == self.urls.verify
        ):
            return Decision(state=MfaState.AUTHENTICATED, mfa_user_id=mfa_user)

        return self._guard_pages(ctx, mfa_user)

    def _start_from_session(self, ctx: RequestContext, mfa_user: Optional[str]) -> Optional[Decision]:
        """Confirm, enable or disable MFA from an already logged-in session."""
        if not ctx.host_user_id or mfa_user is not None:
            return None
        if not (ctx.first_time_verify or ctx.enable_requested or ctx.disable_requested):
            return None

        user_id = ctx.host_user_id
        profile = self.profiles.get(user_id)

        if requires_setup(profile, self.policy, ctx.enable_requested, ctx.first_time_verify):
            logger.info(f"Start Hydro Raindrop MFA setup for logged-in user {user_id}.")
            return Decision(
                state=MfaState.NEEDS_SETUP,
                redirect=self._setup_target(ctx) if self.policy.setup_page_enabled else None,
                cookie=CookieAction.SET,
                cookie_value=self._issue(user_id, profile.identity),
                mfa_user_id=user_id,
            )

        wants_disable = ctx.disable_requested and profile.is_set_up and self.policy.enabled
        if requires_verify(profile, self.policy, ctx.first_time_verify) or wants_disable:
            logger.info(f"Start Hydro Raindrop MFA verification for logged-in user {user_id}.")
            self.challenges.invalidate(user_id)
            return Decision(
                state=MfaState.NEEDS_VERIFY,
                redirect=self._verify_target(ctx) if self.policy.verify_page_enabled else None,
                cookie=CookieAction.SET,
                cookie_value=self._issue(user_id, profile.identity),
                mfa_user_id=user_id,
            )

        return None

    def _guard_pages(self, ctx: RequestContext, mfa_user: Optional[str]) -> Decision:
        on_verify_page = ctx.path == self.urls.verify
        on_setup_page = ctx.path == self.urls.setup

        if mfa_user is None:
            if (self.policy.verify_page_enabled and on_verify_page) or (
                self.policy.setup_page_enabled and on_setup_page
            ):
                return Decision(state=MfaState.NO_MFA_REQUIRED, redirect=self.urls.home)
            state = MfaState.AUTHENTICATED if ctx.host_user_id else MfaState.NO_MFA_REQUIRED
            return Decision(state=state)

        profile = self.profiles.get(mfa_user)

        if profile.account_blocked:
            return Decision(
                state=MfaState.BLOCKED,
                redirect=self.urls.login,
                cookie=CookieAction.CLEAR,
                logout=ctx.host_user_id is not None,
                mfa_user_id=mfa_user,
            )

        if requires_verify(profile, self.policy, ctx.first_time_verify):
            if self.policy.verify_page_enabled and not on_verify_page:
                logger.info(f"User {mfa_user} not on Hydro Raindrop MFA page. Redirecting...")
                return Decision(
                    state=MfaState.NEEDS_VERIFY,
                    redirect=self._verify_target(ctx),
                    mfa_user_id=mfa_user,
                )
            return Decision(state=MfaState.NEEDS_VERIFY, mfa_user_id=mfa_user)

        if requires_setup(profile, self.policy, ctx.enable_requested, ctx.first_time_verify):
            if self.policy.setup_page_enabled and not on_setup_page:
                logger.info(f"User {mfa_user} not on Hydro Raindrop setup page. Redirecting...")
                return Decision(
                    state=MfaState.NEEDS_SETUP,
                    redirect=self._setup_target(ctx),
                    mfa_user_id=mfa_user,
                )
            return Decision(state=MfaState.NEEDS_SETUP, mfa_user_id=mfa_user)

        return Decision(state=MfaState.NO_MFA_REQUIRED, mfa_user_id=mfa_user)

    # ==========================================
    # Form submissions
    # ==========================================

    def _handle_post(self, ctx: RequestContext, mfa_user: Optional[str]) -> Optional[Decision]:
        if ctx.submitted(FORM_IDENTITY_SUBMIT) or ctx.submitted(FORM_SKIP_SETUP):
            nonce_action = ACTION_SETUP
        elif ctx.submitted(FORM_VERIFY_SUBMIT) or ctx.submitted(FORM_CANCEL):
            nonce_action = ACTION_MFA
        else:
            return None

        if not self.nonces.verify(ctx.form.get(FORM_NONCE), nonce_action, mfa_user):
            logger.info("Nonce verification failed.")
            if mfa_user:
                self.challenges.invalidate(mfa_user)
            return Decision(
                state=MfaState.NO_MFA_REQUIRED,
                redirect=self.urls.home,
                cookie=CookieAction.CLEAR,
            )

        if ctx.submitted(FORM_CANCEL):
            return self._cancel(ctx, mfa_user)

        if mfa_user is None:
            return None

        if ctx.submitted(FORM_IDENTITY_SUBMIT):
            return self._submit_identity(ctx, mfa_user)
        if ctx.submitted(FORM_VERIFY_SUBMIT):
            return self._submit_verification(ctx, mfa_user)
        return self._skip_setup(ctx, mfa_user)

    def _submit_identity(self, ctx: RequestContext, user_id: str) -> Decision:
        flash = self.flash_for(user_id)
        hydro_id = str(ctx.form.get(FORM_HYDRO_ID) or "").strip()

        if not is_valid_hydro_id(hydro_id):
            flash.error(MSG_INVALID_HYDRO_ID)
            return Decision(state=MfaState.NEEDS_SETUP, mfa_user_id=user_id)

        try:
            result = self.client.register_identity(hydro_id)

            if result.outcome is ClientOutcome.ALREADY_MAPPED:
                # The remote mapping outlived the local profile; drop it so the
                # user can register the same HydroID again.
                logger.info(f"User is already mapped to this application: {result.message}")
                unmapped = self.client.unregister_identity(hydro_id)
                if unmapped.ok:
                    flash.warning(MSG_ALREADY_MAPPED)
                else:
                    logger.warning(f"Unregistering user failed: {unmapped.message}")
                    flash.error(MSG_UNMAP_FAILED)
                return Decision(
                    state=MfaState.NEEDS_SETUP,
                    redirect=self._setup_target(ctx),
                    mfa_user_id=user_id,
                )
        except IdentityServiceError as e:
            logger.error(f"Identity service error during setup for user {user_id}: {e}")
            flash.error(IdentityServiceError.public_message)
            return Decision(state=MfaState.NEEDS_SETUP, mfa_user_id=user_id)

        if not result.ok:
            flash.error(result.message or MSG_REGISTRATION_FAILED)
            self.profiles.reset_mfa(user_id)
            return Decision(
                state=MfaState.NEEDS_SETUP,
                cookie=CookieAction.SET,
                cookie_value=self._issue(user_id, ""),
                mfa_user_id=user_id,
            )

        self.profiles.save_registration(user_id, hydro_id)
        flash.info(MSG_REGISTERED)

        target = self._verify_target(ctx, **{QUERY_FIRST_TIME: "1"})
        return Decision(
            state=MfaState.NEEDS_VERIFY,
            redirect=target,
            cookie=CookieAction.SET,
            cookie_value=self._issue(user_id, hydro_id),
            mfa_user_id=user_id,
        )

    def _submit_verification(self, ctx: RequestContext, user_id: str) -> Decision:
        profile = self.profiles.get(user_id)
        challenge = self.challenges.current(user_id)

        try:
            if challenge is None:
                logger.info(f"No live challenge for user {user_id}")
                result = ClientResult(ClientOutcome.VERIFICATION_FAILED, "challenge expired")
            else:
                result = self.client.verify_challenge(profile.identity, challenge)
        except IdentityServiceError as e:
            logger.error(f"Identity service error during verification for user {user_id}: {e}")
            self.flash_for(user_id).error(IdentityServiceError.public_message)
            return Decision(state=MfaState.NEEDS_VERIFY, mfa_user_id=user_id)

        if result.ok:
            return self._verification_succeeded(ctx, user_id, profile)
        return self._verification_failed(user_id, result)

    def _verification_succeeded(self, ctx: RequestContext, user_id: str, profile: MfaProfile) -> Decision:
        logger.info(f"MFA success for user {user_id}.")
        self.challenges.invalidate(user_id)
        self.attempts.record_success(user_id)

        if ctx.first_time_verify:
            self.profiles.mark_confirmed(user_id)

        if ctx.disable_requested:
            self._disable(user_id, profile.identity)

        return Decision(
            state=MfaState.AUTHENTICATED,
            redirect=self.destination(ctx),
            cookie=CookieAction.CLEAR,
            login_user_id=user_id if ctx.host_user_id is None else None,
            mfa_user_id=user_id,
        )

    def _disable(self, user_id: str, identity: str) -> None:
        flash = self.flash_for(user_id)
        try:
            result = self.client.unregister_identity(identity)
        except IdentityServiceError as e:
            result = ClientResult(ClientOutcome.UNREGISTRATION_FAILED, str(e))

        if result.ok:
            self.profiles.reset_mfa(user_id)
            flash.info(MSG_DISABLED)
        else:
            logger.warning(f"Could not unregister user {user_id}: {result.message}")
            flash.error(MSG_DISABLE_FAILED)

    def _verification_failed(self, user_id: str, result: ClientResult) -> Decision:
        flash = self.flash_for(user_id)
        flash.error(MSG_AUTH_FAILED)
        if result.message:
            logger.info(f"Verification failed for user {user_id}: {result.message}")

        self.challenges.invalidate(user_id)
        _, blocked = self.attempts.record_failure(user_id)

        if blocked:
            flash.error(MSG_BLOCKED)
            return Decision(
                state=MfaState.BLOCKED,
                redirect=self.urls.login,
                cookie=CookieAction.CLEAR,
                logout=True,
                mfa_user_id=user_id,
            )

        return Decision(state=MfaState.NEEDS_VERIFY, mfa_user_id=user_id)

    def _skip_setup(self, ctx: RequestContext, user_id: str) -> Optional[Decision]:
        if not self.policy.setup_skippable:
            logger.info(f"User {user_id} tried to skip enforced MFA setup.")
            return None

        logger.info(f"User {user_id} skips Hydro Raindrop MFA setup.")
        self.challenges.invalidate(user_id)
        return Decision(
            state=MfaState.NO_MFA_REQUIRED,
            redirect=self.destination(ctx),
            cookie=CookieAction.CLEAR,
            login_user_id=user_id if ctx.host_user_id is None else None,
            mfa_user_id=user_id,
        )

    def _cancel(self, ctx: RequestContext, user_id: Optional[str]) -> Decision:
        logger.info("User cancels MFA.")
        if user_id:
            self.challenges.invalidate(user_id)

        # A fresh login simply stays anonymous; an existing session is ended.
        return Decision(
            state=MfaState.NO_MFA_REQUIRED,
            redirect=self.urls.home,
            cookie=CookieAction.CLEAR,
            logout=ctx.host_user_id is not None,
            mfa_user_id=user_id,
        )
