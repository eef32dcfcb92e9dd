"""
Host-application glue: user accounts and the host's own login sessions.

Primary authentication belongs to the application the MFA gate protects.
These minimal implementations give the gate something concrete to drive
(establish login, force logout, check administrator rights) and can be
swapped for the host's real user and session services.
"""
import json
import uuid
import secrets
import logging
from dataclasses import dataclass
from typing import Optional

import bcrypt

from ..database.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

HOST_SESSION_HOURS = 24


@dataclass(frozen=True)
class UserAccount:
    user_id: str
    login: str
    password_hash: str
    is_admin: bool = False


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Returns:
        Bcrypt hash string.
    """
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    return bcrypt.checkpw(
        password.encode('utf-8'),
        password_hash.encode('utf-8')
    )


class UserDirectory:
    """
    User accounts stored in the key-value store.

    Example usage:
        users = UserDirectory(store)
        user_id = users.create_user("alice", "correct horse")
        account = users.check_password("alice", "correct horse")
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def create_user(
        self,
        login: str,
        password: str,
        is_admin: bool = False,
        user_id: Optional[str] = None,
    ) -> str:
        """
        Create a new user account.

        Raises:
            ValueError: If the login already exists.
        """
        login_key = f"login:{login.lower().strip()}"
        if self.store.get(login_key):
            raise ValueError(f"User with login '{login}' already exists")

        user_id = user_id or str(uuid.uuid4())
        record = {
            "user_id": user_id,
            "login": login.strip(),
            "password_hash": hash_password(password),
            "is_admin": is_admin,
        }
        self.store.set(f"account:{user_id}", json.dumps(record))
        self.store.set(login_key, user_id)

        logger.info(f"Created user: {login} (id={user_id})")
        return user_id

    def get_user(self, user_id: str) -> Optional[UserAccount]:
        raw = self.store.get(f"account:{user_id}")
        if not raw:
            return None
        record = json.loads(raw)
        return UserAccount(
            user_id=record["user_id"],
            login=record["login"],
            password_hash=record["password_hash"],
            is_admin=bool(record.get("is_admin")),
        )

    def get_user_by_login(self, login: str) -> Optional[UserAccount]:
        user_id = self.store.get(f"login:{login.lower().strip()}")
        return self.get_user(user_id) if user_id else None

    def check_password(self, login: str, password: str) -> Optional[UserAccount]:
        """Primary credential check. Returns the account or None."""
        account = self.get_user_by_login(login)
        if account is None or not verify_password(password, account.password_hash):
            return None
        return account

    def is_admin(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        account = self.get_user(user_id)
        return bool(account and account.is_admin)


class HostSessions:
    """The host application's own login sessions (random bearer tokens)."""

    def __init__(self, store: KeyValueStore, expires_hours: int = HOST_SESSION_HOURS):
        self.store = store
        self.ttl = expires_hours * 3600

    def create_session(self, user_id: str) -> str:
        """
        Create a new session for a user.

        Returns:
            Session token (secure random 64-char hex string).
        """
        session_token = secrets.token_hex(32)
        self.store.set(f"session:{session_token}", str(user_id), ttl=self.ttl)
        logger.debug(f"Created session for user {user_id}")
        return session_token

    def validate_session(self, session_token: Optional[str]) -> Optional[str]:
        """Return the user id of a live session, or None."""
        if not session_token:
            return None
        return self.store.get(f"session:{session_token}")

    def invalidate_session(self, session_token: Optional[str]) -> None:
        if session_token:
            self.store.delete(f"session:{session_token}")
            logger.debug("Invalidated session")
