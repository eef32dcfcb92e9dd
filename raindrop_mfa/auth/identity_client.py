"""
Contract for the remote identity-verification service (Hydro Raindrop).

The wire protocol is owned by the service SDK; this module only fixes the
interface the MFA gate depends on. Expected negative results come back as
ClientResult values. Exceptions are reserved for faults that make the service
unusable (``IdentityServiceError``).
"""
import secrets
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class ClientOutcome(str, Enum):
    OK = "ok"
    VERIFICATION_FAILED = "verification_failed"
    ALREADY_MAPPED = "already_mapped"
    REGISTRATION_FAILED = "registration_failed"
    UNREGISTRATION_FAILED = "unregistration_failed"


@dataclass(frozen=True)
class ClientResult:
    outcome: ClientOutcome
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is ClientOutcome.OK


OK = ClientResult(ClientOutcome.OK)


def generate_message() -> int:
    """Random six-digit challenge message."""
    return 100000 + secrets.randbelow(900000)


class IdentityClient(ABC):
    """
    Black-box client for the identity service.

    Implementations may raise ``IdentityServiceError`` (or a subclass) from
    any method when credentials are invalid or the service is unreachable.
    """

    def generate_challenge(self) -> int:
        """Issue a new challenge message for the user to confirm in the app."""
        return generate_message()

    @abstractmethod
    def verify_challenge(self, identity: str, challenge: int) -> ClientResult:
        """OK, or VERIFICATION_FAILED when the app did not sign ``challenge``."""

    @abstractmethod
    def register_identity(self, identity: str) -> ClientResult:
        """OK, ALREADY_MAPPED or REGISTRATION_FAILED."""

    @abstractmethod
    def unregister_identity(self, identity: str) -> ClientResult:
        """OK or UNREGISTRATION_FAILED."""


class UnconfiguredIdentityClient(IdentityClient):
    """Stand-in used while credentials are missing. Every call fails closed."""

    def __init__(self, reason: str = "identity service credentials are not configured"):
        self.reason = reason

    def _fail(self):
        raise ConfigurationError(self.reason)

    def generate_challenge(self) -> int:
        self._fail()

    def verify_challenge(self, identity: str, challenge: int) -> ClientResult:
        self._fail()

    def register_identity(self, identity: str) -> ClientResult:
        self._fail()

    def unregister_identity(self, identity: str) -> ClientResult:
        self._fail()
