"""
Pytest configuration and shared fixtures for raindrop-mfa tests.

This module provides common test fixtures for:
- A controllable clock and in-memory key-value store
- A scriptable identity-service client
- MFA state machines built for a given policy
- Mock Redis client
- FastAPI test clients with seeded users
"""
import pytest
from pathlib import Path

# Add project root to Python path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient

from raindrop_mfa.api.main import create_app
from raindrop_mfa.auth.challenge_store import ChallengeStore
from raindrop_mfa.auth.flash import FlashStore
from raindrop_mfa.auth.identity_client import OK, ClientResult, IdentityClient
from raindrop_mfa.auth.nonce import NonceSigner
from raindrop_mfa.auth.session_cookie import SessionCookie, reset_signing_salt
from raindrop_mfa.auth.state_machine import GateUrls, MfaStateMachine
from raindrop_mfa.database.kv_store import MemoryKeyValueStore
from raindrop_mfa.database.profile_db import MfaMethod, PolicyConfig, PolicyStore, ProfileStore
from raindrop_mfa.utils.config import Settings

TEST_SALT = "test-signing-salt"
START_TIME = 1_700_000_000.0


# ============================================
# Time and Storage Fixtures
# ============================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory key-value store driven by the fake clock."""
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture
def profiles(store):
    return ProfileStore(store)


@pytest.fixture(autouse=True)
def _reset_signing_salt():
    """Every test starts without a cached cookie salt."""
    reset_signing_salt()
    yield
    reset_signing_salt()


# ============================================
# Identity Service Fixtures
# ============================================

class FakeIdentityClient(IdentityClient):
    """
    Scriptable identity client.

    Set ``*_result`` attributes to steer outcomes, or ``error`` to make every
    call raise. Calls are recorded in ``calls``.
    """

    def __init__(self):
        self.verify_result = OK
        self.register_result = OK
        self.unregister_result = OK
        self.next_challenge = 123456
        self.error = None
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if self.error is not None:
            raise self.error

    def calls_to(self, name):
        return [call for call in self.calls if call[0] == name]

    def generate_challenge(self) -> int:
        self._record("generate_challenge")
        return self.next_challenge

    def verify_challenge(self, identity: str, challenge: int) -> ClientResult:
        self._record("verify_challenge", identity, challenge)
        return self.verify_result

    def register_identity(self, identity: str) -> ClientResult:
        self._record("register_identity", identity)
        return self.register_result

    def unregister_identity(self, identity: str) -> ClientResult:
        self._record("unregister_identity", identity)
        return self.unregister_result


@pytest.fixture
def identity_client():
    return FakeIdentityClient()


# ============================================
# State Machine Fixtures
# ============================================

def make_policy(
    method: MfaMethod = MfaMethod.ENFORCED,
    enabled: bool = True,
    max_attempts: int = 0,
    **kwargs,
) -> PolicyConfig:
    return PolicyConfig(enabled=enabled, mfa_method=method, max_attempts=max_attempts, **kwargs)


@pytest.fixture
def session_cookie(clock):
    return SessionCookie(TEST_SALT, clock=clock)


@pytest.fixture
def make_machine(store, profiles, identity_client, session_cookie, clock):
    """Factory: build an MfaStateMachine for a given policy."""

    def _make(
        policy: PolicyConfig = None,
        require_secure: bool = True,
        profile_store: ProfileStore = None,
    ) -> MfaStateMachine:
        return MfaStateMachine(
            policy=policy or make_policy(),
            profiles=profile_store or profiles,
            challenges=ChallengeStore(store, identity_client),
            cookie=session_cookie,
            nonces=NonceSigner(TEST_SALT, clock=clock),
            client=identity_client,
            flashes=FlashStore(store),
            urls=GateUrls(),
            require_secure=require_secure,
        )

    return _make


# ============================================
# Redis Fixtures
# ============================================

@pytest.fixture
def mock_redis_client():
    """
    Mock Redis client for testing the Redis-backed store.
    Implements basic get/set/setex/delete operations with in-memory store.
    """
    class MockRedisClient:
        def __init__(self):
            self.store = {}
            self.expiry = {}

        def ping(self):
            return True

        def get(self, key):
            return self.store.get(key)

        def set(self, key, value, ex=None):
            self.store[key] = value
            if ex:
                self.expiry[key] = ex
            return True

        def setex(self, key, seconds, value):
            self.store[key] = value
            self.expiry[key] = seconds
            return True

        def delete(self, key):
            if key in self.store:
                del self.store[key]
            if key in self.expiry:
                del self.expiry[key]
            return True

        def exists(self, key):
            return key in self.store

    return MockRedisClient()


# ============================================
# API Fixtures
# ============================================

@pytest.fixture
def settings():
    return Settings(cookie_salt=TEST_SALT)


@pytest.fixture
def app(settings, store, identity_client):
    return create_app(settings=settings, store=store, identity_client=identity_client)


@pytest.fixture
def set_policy(store):
    """Persist a global MFA policy."""

    def _set(policy: PolicyConfig) -> PolicyConfig:
        PolicyStore(store).save(policy)
        return policy

    return _set


@pytest.fixture
def client(app):
    """HTTPS test client that does not follow redirects."""
    with TestClient(app, base_url="https://testserver", follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture
def sample_user(app):
    """
    Provide a regular user account.
    """
    users = app.state.services.users
    user_id = users.create_user("alice", "secure_test_password_123!", user_id="1001")
    return {"user_id": user_id, "login": "alice", "password": "secure_test_password_123!"}


@pytest.fixture
def admin_user(app):
    users = app.state.services.users
    user_id = users.create_user("root", "admin_test_password_456!", is_admin=True, user_id="1")
    return {"user_id": user_id, "login": "root", "password": "admin_test_password_456!"}
