"""
Hydro Raindrop MFA gate.

This package provides:
- The MFA state machine (authenticate / verify hooks)
- Signed MFA session cookie and form nonces
- Challenge storage and failed-attempt lockout
- The identity-service client contract
"""
from .errors import (
    MfaError,
    AccountBlocked,
    IdentityServiceError,
    ConfigurationError,
    ServiceUnavailable,
)
from .identity_client import (
    ClientOutcome,
    ClientResult,
    IdentityClient,
    UnconfiguredIdentityClient,
)
from .session_cookie import SessionCookie, get_signing_salt
from .nonce import NonceSigner
from .challenge_store import ChallengeStore
from .attempt_policy import AttemptPolicy
from .flash import FlashStore
from .host import UserDirectory, HostSessions
from .state_machine import (
    MfaState,
    MfaStateMachine,
    RequestContext,
    Decision,
    CookieAction,
    GateUrls,
    requires_setup,
    requires_verify,
)

__all__ = [
    "MfaError",
    "AccountBlocked",
    "IdentityServiceError",
    "ConfigurationError",
    "ServiceUnavailable",
    "ClientOutcome",
    "ClientResult",
    "IdentityClient",
    "UnconfiguredIdentityClient",
    "SessionCookie",
    "get_signing_salt",
    "NonceSigner",
    "ChallengeStore",
    "AttemptPolicy",
    "FlashStore",
    "UserDirectory",
    "HostSessions",
    "MfaState",
    "MfaStateMachine",
    "RequestContext",
    "Decision",
    "CookieAction",
    "GateUrls",
    "requires_setup",
    "requires_verify",
]
