"""
User MFA profiles and global MFA policy, persisted in the key-value store.

Profile fields are stored one key per field, so a partial reset deletes
exactly the fields it names:

    user:{id}:hydro_id
    user:{id}:mfa_enabled
    user:{id}:mfa_confirmed
    user:{id}:mfa_failed_attempts
    user:{id}:account_blocked

Policy options are stored under ``option:*`` and loaded once per request
into an immutable PolicyConfig.
"""
import logging
from dataclasses import dataclass
from enum import Enum

from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)


FIELD_HYDRO_ID = "hydro_id"
FIELD_MFA_ENABLED = "mfa_enabled"
FIELD_MFA_CONFIRMED = "mfa_confirmed"
FIELD_FAILED_ATTEMPTS = "mfa_failed_attempts"
FIELD_ACCOUNT_BLOCKED = "account_blocked"

# Fields wiped by a full MFA reset. The block flag is deliberately not one of them.
MFA_FIELDS = (FIELD_HYDRO_ID, FIELD_MFA_ENABLED, FIELD_MFA_CONFIRMED, FIELD_FAILED_ATTEMPTS)

OPTION_ENABLED = "option:raindrop_enabled"
OPTION_MFA_METHOD = "option:raindrop_mfa_method"
OPTION_MAX_ATTEMPTS = "option:raindrop_mfa_maximum_attempts"
OPTION_VERIFY_PAGE = "option:raindrop_custom_mfa_page"
OPTION_SETUP_PAGE = "option:raindrop_custom_setup_page"


def _as_bool(value) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value, default: int = 0) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


@dataclass(frozen=True)
class MfaProfile:
    """Snapshot of a user's MFA state."""
    user_id: str
    identity: str = ""
    mfa_enabled: bool = False
    mfa_confirmed: bool = False
    failed_attempts: int = 0
    account_blocked: bool = False

    @property
    def is_set_up(self) -> bool:
        return bool(self.identity) and self.mfa_enabled


class ProfileStore:
    """Read and write User MFA profiles."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(user_id: str, field: str) -> str:
        return f"user:{user_id}:{field}"

    def get(self, user_id: str) -> MfaProfile:
        """Load the profile for a user. Missing fields take their defaults."""
        user_id = str(user_id)
        return MfaProfile(
            user_id=user_id,
            identity=self.store.get(self._key(user_id, FIELD_HYDRO_ID)) or "",
            mfa_enabled=_as_bool(self.store.get(self._key(user_id, FIELD_MFA_ENABLED))),
            mfa_confirmed=_as_bool(self.store.get(self._key(user_id, FIELD_MFA_CONFIRMED))),
            failed_attempts=_as_int(self.store.get(self._key(user_id, FIELD_FAILED_ATTEMPTS))),
            account_blocked=_as_bool(self.store.get(self._key(user_id, FIELD_ACCOUNT_BLOCKED))),
        )

    def get_identity(self, user_id: str) -> str:
        return self.store.get(self._key(str(user_id), FIELD_HYDRO_ID)) or ""

    def save_registration(self, user_id: str, identity: str) -> None:
        """Persist a freshly registered identity, awaiting first verification."""
        user_id = str(user_id)
        self.store.set(self._key(user_id, FIELD_HYDRO_ID), identity)
        self.store.set(self._key(user_id, FIELD_MFA_ENABLED), "1")
        self.store.set(self._key(user_id, FIELD_MFA_CONFIRMED), "0")
        self.store.set(self._key(user_id, FIELD_FAILED_ATTEMPTS), "0")
        logger.info(f"Registered HydroID for user {user_id}")

    def mark_confirmed(self, user_id: str) -> None:
        self.store.set(self._key(str(user_id), FIELD_MFA_CONFIRMED), "1")
        logger.info(f"MFA confirmed for user {user_id}")

    def reset_mfa(self, user_id: str) -> None:
        """Delete the four MFA fields so setup restarts from scratch."""
        user_id = str(user_id)
        for field in MFA_FIELDS:
            self.store.delete(self._key(user_id, field))
        logger.info(f"Reset MFA profile for user {user_id}")

    def set_failed_attempts(self, user_id: str, count: int) -> None:
        self.store.set(self._key(str(user_id), FIELD_FAILED_ATTEMPTS), str(count))

    def set_blocked(self, user_id: str, blocked: bool) -> None:
        key = self._key(str(user_id), FIELD_ACCOUNT_BLOCKED)
        if blocked:
            self.store.set(key, "1")
        else:
            self.store.delete(key)


class MfaMethod(str, Enum):
    """How strongly MFA is pushed on users."""
    OPTIONAL = "optional"
    PROMPTED = "prompted"
    ENFORCED = "enforced"


@dataclass(frozen=True)
class PolicyConfig:
    """Global MFA policy, immutable for the duration of a request."""
    enabled: bool = False
    mfa_method: MfaMethod = MfaMethod.OPTIONAL
    max_attempts: int = 0
    verify_page_enabled: bool = True
    setup_page_enabled: bool = True

    @property
    def setup_skippable(self) -> bool:
        return self.mfa_method in (MfaMethod.OPTIONAL, MfaMethod.PROMPTED)


class PolicyStore:
    """Load and save the global PolicyConfig."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> PolicyConfig:
        raw_method = self.store.get(OPTION_MFA_METHOD) or MfaMethod.OPTIONAL.value
        try:
            method = MfaMethod(raw_method)
        except ValueError:
            logger.warning(f"Unknown MFA method '{raw_method}', treating as optional")
            method = MfaMethod.OPTIONAL

        verify_page = self.store.get(OPTION_VERIFY_PAGE)
        setup_page = self.store.get(OPTION_SETUP_PAGE)

        return PolicyConfig(
            enabled=_as_bool(self.store.get(OPTION_ENABLED)),
            mfa_method=method,
            max_attempts=max(0, _as_int(self.store.get(OPTION_MAX_ATTEMPTS))),
            verify_page_enabled=True if verify_page is None else _as_bool(verify_page),
            setup_page_enabled=True if setup_page is None else _as_bool(setup_page),
        )

    def save(self, policy: PolicyConfig) -> None:
        self.store.set(OPTION_ENABLED, "1" if policy.enabled else "0")
        self.store.set(OPTION_MFA_METHOD, policy.mfa_method.value)
        self.store.set(OPTION_MAX_ATTEMPTS, str(policy.max_attempts))
        self.store.set(OPTION_VERIFY_PAGE, "1" if policy.verify_page_enabled else "0")
        self.store.set(OPTION_SETUP_PAGE, "1" if policy.setup_page_enabled else "0")
        logger.info(
            f"Saved MFA policy: enabled={policy.enabled} method={policy.mfa_method.value} "
            f"max_attempts={policy.max_attempts}"
        )
