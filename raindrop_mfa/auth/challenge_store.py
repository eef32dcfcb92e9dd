"""
Per-user challenge messages.

Each user has at most one live challenge. It is reused until it expires
(90 seconds) so re-rendering the verify page keeps showing the same code in
the Hydro app; expiry is left entirely to the key-value store.
"""
import logging
from typing import Optional

from ..database.kv_store import KeyValueStore
from .identity_client import IdentityClient

logger = logging.getLogger(__name__)

# TTL for challenge messages (seconds)
CHALLENGE_TTL = 90


class ChallengeStore:
    """Get-or-create and invalidate challenges, keyed by user id."""

    def __init__(self, store: KeyValueStore, client: IdentityClient, ttl: int = CHALLENGE_TTL):
        self.store = store
        self.client = client
        self.ttl = ttl

    @staticmethod
    def _key(user_id: str) -> str:
        return f"challenge:{user_id}"

    def current(self, user_id: str) -> Optional[int]:
        """Return the live challenge for a user without creating one."""
        value = self.store.get(self._key(user_id))
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Discarding malformed challenge for user {user_id}")
            self.invalidate(user_id)
            return None

    def get_or_create(self, user_id: str) -> int:
        """
        Return the user's live challenge, minting one if none exists.

        Raises:
            IdentityServiceError: If the identity service cannot issue one.
        """
        challenge = self.current(user_id)
        if challenge is not None:
            return challenge

        challenge = int(self.client.generate_challenge())
        self.store.set(self._key(user_id), str(challenge), ttl=self.ttl)
        logger.debug(f"Created challenge for user {user_id}")
        return challenge

    def invalidate(self, user_id: str) -> None:
        self.store.delete(self._key(user_id))
