"""
Signed MFA session cookie.

The cookie marks a browser as "primary login passed, MFA pending" and is
independent of the host application's own session cookie.

Wire format:

    base64(tag|obfuscated_user_id|identity|expires_at) + "|" + hex(HMAC-SHA1)

The MAC is computed over the base64 value with the server-side salt. The user
id is obfuscated (reversible, salted) so raw ids never appear in the cookie;
the MAC, not the obfuscation, is what makes the cookie tamper-evident.

Validation fails closed: every anomaly yields None and the caller cannot tell
a forged cookie from an expired or malformed one.
"""
import base64
import binascii
import hashlib
import hmac
import logging
import secrets
import time
from typing import Callable, Optional, Sequence

from ..database.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

COOKIE_TAG = "raindrop_mfa.v1"
COOKIE_LIFETIME = 24 * 3600
DELIMITER = "|"

SALT_OPTION = "option:raindrop_cookie_salt"

_signing_salt: Optional[str] = None


def get_signing_salt(store: KeyValueStore, pinned: Optional[str] = None) -> str:
    """
    Return the process-wide signing salt, creating and persisting it if absent.

    Args:
        store: Durable store holding the salt between restarts.
        pinned: Salt from configuration; takes precedence over the store.
    """
    global _signing_salt

    if _signing_salt is None:
        salt = pinned or store.get(SALT_OPTION)
        if not salt:
            salt = secrets.token_hex(32)
            store.set(SALT_OPTION, salt)
            logger.info("Generated new MFA cookie signing salt")
        _signing_salt = salt

    return _signing_salt


def reset_signing_salt() -> None:
    """Forget the cached salt (tests and key rotation)."""
    global _signing_salt
    _signing_salt = None


def _keystream(salt: str, length: int) -> bytes:
    stream = b""
    counter = 0
    while len(stream) < length:
        stream += hashlib.sha256(f"{salt}:uid:{counter}".encode("utf-8")).digest()
        counter += 1
    return stream[:length]


def obfuscate_user_id(user_id: str, salt: str) -> str:
    """Reversible, salted encoding of a user id (not encryption)."""
    data = str(user_id).encode("utf-8")
    masked = bytes(a ^ b for a, b in zip(data, _keystream(salt, len(data))))
    return base64.urlsafe_b64encode(masked).decode("ascii").rstrip("=")


def reveal_user_id(token: str, salt: str) -> Optional[str]:
    """Inverse of obfuscate_user_id, or None if ``token`` is not decodable."""
    try:
        masked = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        data = bytes(a ^ b for a, b in zip(masked, _keystream(salt, len(masked))))
        return data.decode("utf-8") or None
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None


class SessionCookie:
    """Issue, validate and clear the MFA session cookie."""

    def __init__(
        self,
        secret: str,
        name: str = "raindrop_mfa",
        site_path: str = "/",
        secure: bool = True,
        lifetime: int = COOKIE_LIFETIME,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret
        self.name = name
        self.site_path = site_path or "/"
        self.secure = secure
        self.lifetime = lifetime
        self._clock = clock

    @property
    def paths(self) -> Sequence[str]:
        """Every path the cookie may have been set under."""
        if self.site_path == "/":
            return ("/",)
        return ("/", self.site_path)

    def sign(self, value: str) -> str:
        return hmac.new(
            self.secret.encode("utf-8"),
            value.encode("utf-8"),
            hashlib.sha1,
        ).hexdigest()

    def issue(self, user_id: str, identity: str) -> str:
        """Build a signed cookie value binding this browser to ``user_id``."""
        expires_at = int(self._clock()) + self.lifetime
        inner = DELIMITER.join([
            COOKIE_TAG,
            obfuscate_user_id(str(user_id), self.secret),
            identity or "",
            str(expires_at),
        ])
        value = base64.b64encode(inner.encode("utf-8")).decode("ascii")
        return f"{value}{DELIMITER}{self.sign(value)}"

    def validate(self, raw: Optional[str], lookup_identity: Callable[[str], str]) -> Optional[str]:
        """
        Return the user id bound by ``raw``, or None.

        Args:
            raw: Cookie value as received from the browser.
            lookup_identity: Returns the stored identity for a user id.
        """
        if not raw:
            return None

        parts = raw.rsplit(DELIMITER, 1)
        if len(parts) != 2:
            return None

        value, signature = parts
        if not hmac.compare_digest(self.sign(value).encode("utf-8"), signature.encode("utf-8")):
            return None

        try:
            inner = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, ValueError, UnicodeDecodeError):
            return None

        fields = inner.split(DELIMITER)
        if len(fields) != 4:
            return None

        tag, obfuscated, identity, expires_raw = fields

        user_id = reveal_user_id(obfuscated, self.secret)
        if tag != COOKIE_TAG or user_id is None:
            return None

        try:
            expires_at = int(expires_raw)
        except ValueError:
            return None

        if expires_at <= self._clock():
            return None

        if lookup_identity(user_id) != identity:
            return None

        return user_id

    def set_on(self, response, value: str) -> None:
        """Attach ``value`` to a Starlette/FastAPI response."""
        response.set_cookie(
            self.name,
            value,
            max_age=self.lifetime,
            path=self.site_path,
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )

    def clear_on(self, response) -> None:
        """Expire the cookie on every path it may have been set under."""
        for path in self.paths:
            response.delete_cookie(
                self.name,
                path=path,
                secure=self.secure,
                httponly=True,
                samesite="lax",
            )
