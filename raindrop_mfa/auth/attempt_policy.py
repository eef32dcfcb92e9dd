"""
Failed MFA attempt tracking and account lockout.

Lockout is sticky: once blocked, an account stays blocked until an operator
clears it. A successful verification only resets the counter.
"""
import logging
from typing import Tuple

from ..database.profile_db import ProfileStore

logger = logging.getLogger(__name__)


class AttemptPolicy:
    """
    Count consecutive failed verifications per user.

    Args:
        profiles: Profile storage.
        max_attempts: Failures tolerated before blocking; 0 means unlimited.
    """

    def __init__(self, profiles: ProfileStore, max_attempts: int = 0):
        self.profiles = profiles
        self.max_attempts = max_attempts

    def record_failure(self, user_id: str) -> Tuple[int, bool]:
        """
        Record one failed attempt.

        Returns:
            Tuple of (attempt count, whether this call blocked the account).
            When blocking, the stored counter is reset to 0 and 0 is returned.
        """
        count = self.profiles.get(user_id).failed_attempts + 1
        logger.info(f"MFA failed for user {user_id}, attempts: {count}")

        if self.max_attempts > 0 and count > self.max_attempts:
            self.profiles.set_failed_attempts(user_id, 0)
            self.profiles.set_blocked(user_id, True)
            logger.warning(f"Blocked user {user_id} after {count} failed MFA attempts")
            return 0, True

        self.profiles.set_failed_attempts(user_id, count)
        return count, False

    def record_success(self, user_id: str) -> None:
        self.profiles.set_failed_attempts(user_id, 0)

    def is_blocked(self, user_id: str) -> bool:
        return self.profiles.get(user_id).account_blocked

    def clear_block(self, user_id: str) -> None:
        """Operator action: lift a lockout and reset the counter."""
        self.profiles.set_blocked(user_id, False)
        self.profiles.set_failed_attempts(user_id, 0)
        logger.info(f"Cleared MFA block for user {user_id}")
