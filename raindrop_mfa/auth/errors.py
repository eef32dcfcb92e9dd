"""
Exceptions raised by the MFA gate.

Routine outcomes (wrong challenge response, identity already mapped, ...) are
NOT exceptions; see ``ClientOutcome`` in ``identity_client.py``. The classes
below cover conditions that end the request.
"""


class MfaError(Exception):
    """Base class for MFA gate errors."""


class AccountBlocked(MfaError):
    """The account was locked after too many failed MFA attempts."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Your account has been blocked.")


class IdentityServiceError(MfaError):
    """The identity service cannot be used; the gate fails closed."""

    public_message = "Hydro Raindrop MFA is not properly configured."


class ConfigurationError(IdentityServiceError):
    """Identity-service credentials are missing or were rejected."""


class ServiceUnavailable(IdentityServiceError):
    """The identity service could not be reached."""
