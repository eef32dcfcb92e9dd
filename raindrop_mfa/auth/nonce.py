"""
Anti-forgery tokens for the MFA setup and verify forms.

A token is bound to an action, a user id and a 12-hour tick; tokens from the
current and the previous tick are accepted, so a token lives 12-24 hours.
"""
import hashlib
import hmac
import time
from typing import Callable, Optional

ACTION_SETUP = "raindrop_setup"
ACTION_MFA = "raindrop_mfa"

NONCE_TICK_SECONDS = 12 * 3600
NONCE_LENGTH = 20


class NonceSigner:
    """Create and check per-action form tokens."""

    def __init__(self, secret: str, clock: Callable[[], float] = time.time):
        self.secret = secret
        self._clock = clock

    def _tick(self) -> int:
        return int(self._clock() // NONCE_TICK_SECONDS)

    def _token(self, action: str, user_id: Optional[str], tick: int) -> str:
        message = f"{action}|{user_id or ''}|{tick}".encode("utf-8")
        digest = hmac.new(self.secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
        return digest[:NONCE_LENGTH]

    def create(self, action: str, user_id: Optional[str]) -> str:
        return self._token(action, user_id, self._tick())

    def verify(self, token: Optional[str], action: str, user_id: Optional[str]) -> bool:
        if not token:
            return False
        tick = self._tick()
        return any(
            hmac.compare_digest(self._token(action, user_id, candidate), token)
            for candidate in (tick, tick - 1)
        )
