"""
Tests for the signed MFA session cookie.

Covers:
- Issue/validate round trip and identity binding
- Expiry boundary
- Tampering and malformed values (fail closed)
- Signing salt persistence
- Cookie attributes on responses
"""
import base64

import pytest
from starlette.responses import Response

from raindrop_mfa.auth.session_cookie import (
    COOKIE_LIFETIME,
    COOKIE_TAG,
    SALT_OPTION,
    SessionCookie,
    get_signing_salt,
    obfuscate_user_id,
    reveal_user_id,
)
from raindrop_mfa.database.kv_store import MemoryKeyValueStore


def identities(mapping):
    return lambda user_id: mapping.get(user_id, "")


# ============================================
# Validation Tests
# ============================================

class TestCookieValidation:
    """Test issue and validate."""

    def test_valid_cookie_returns_user_id(self, session_cookie):
        """A freshly issued cookie resolves to its user."""
        value = session_cookie.issue("42", "hydro42")
        assert session_cookie.validate(value, identities({"42": "hydro42"})) == "42"

    def test_cookie_without_identity(self, session_cookie):
        """Users without a HydroID yet are bound with an empty identity."""
        value = session_cookie.issue("7", "")
        assert session_cookie.validate(value, identities({})) == "7"

    def test_identity_change_invalidates_cookie(self, session_cookie):
        """A cookie issued for another identity is rejected."""
        value = session_cookie.issue("42", "hydro42")
        assert session_cookie.validate(value, identities({"42": "someone_else"})) is None

    def test_valid_until_lifetime_elapses(self, session_cookie, clock):
        """Cookie is valid one second before expiry and invalid at expiry."""
        value = session_cookie.issue("42", "hydro42")
        lookup = identities({"42": "hydro42"})

        clock.advance(COOKIE_LIFETIME - 1)
        assert session_cookie.validate(value, lookup) == "42"

        clock.advance(1)
        assert session_cookie.validate(value, lookup) is None

    @pytest.mark.parametrize("raw", [None, "", "garbage", "a|b|c", "|", "abc|\u00e9\u00e9"])
    def test_malformed_values_rejected(self, session_cookie, raw):
        """Anything that is not a signed cookie fails closed."""
        assert session_cookie.validate(raw, identities({})) is None

    def test_tampered_payload_rejected(self, session_cookie):
        """Changing the payload breaks the MAC."""
        value = session_cookie.issue("42", "hydro42")
        payload, signature = value.rsplit("|", 1)
        inner = base64.b64decode(payload).decode().replace("hydro42", "hydro43")
        forged = base64.b64encode(inner.encode()).decode() + "|" + signature

        assert session_cookie.validate(forged, identities({"42": "hydro43"})) is None

    def test_tampered_signature_rejected(self, session_cookie):
        """Flipping one hex digit of the MAC is detected."""
        value = session_cookie.issue("42", "hydro42")
        last = "0" if value[-1] != "0" else "1"
        assert session_cookie.validate(value[:-1] + last, identities({"42": "hydro42"})) is None

    def test_any_single_byte_change_rejected(self, session_cookie):
        """Every position of payload, delimiter and MAC is covered by the check."""
        value = session_cookie.issue("42", "hydro42")
        lookup = identities({"42": "hydro42"})
        assert session_cookie.validate(value, lookup) == "42"

        for position in range(len(value)):
            mutated = value[:position] + chr(ord(value[position]) ^ 1) + value[position + 1:]
            assert session_cookie.validate(mutated, lookup) is None, position

    def test_other_secret_rejected(self, session_cookie, clock):
        """A cookie signed with a different salt does not validate."""
        other = SessionCookie("another-salt", clock=clock)
        value = other.issue("42", "hydro42")
        assert session_cookie.validate(value, identities({"42": "hydro42"})) is None

    def test_wrong_tag_rejected(self, session_cookie, clock):
        """Correctly signed values with a foreign tag are rejected."""
        inner = "|".join(["other.v1", obfuscate_user_id("42", session_cookie.secret), "hydro42", str(int(clock()) + 60)])
        payload = base64.b64encode(inner.encode()).decode()
        forged = f"{payload}|{session_cookie.sign(payload)}"
        assert session_cookie.validate(forged, identities({"42": "hydro42"})) is None

    def test_wrong_field_count_rejected(self, session_cookie):
        """Correctly signed values with extra fields are rejected."""
        inner = "|".join([COOKIE_TAG, "x", "y", "z", "1"])
        payload = base64.b64encode(inner.encode()).decode()
        forged = f"{payload}|{session_cookie.sign(payload)}"
        assert session_cookie.validate(forged, identities({})) is None

    def test_raw_user_id_not_in_cookie(self, session_cookie):
        """The decoded payload does not contain the plain user id."""
        value = session_cookie.issue("user-123456", "hydro42")
        inner = base64.b64decode(value.rsplit("|", 1)[0]).decode()
        assert "user-123456" not in inner


class TestUserIdObfuscation:
    """Test the reversible user id encoding."""

    def test_reveal_inverts_obfuscate(self):
        token = obfuscate_user_id("1001", "salt")
        assert token != "1001"
        assert reveal_user_id(token, "salt") == "1001"

    def test_reveal_garbage_returns_none(self):
        assert reveal_user_id("@@@", "salt") is None


# ============================================
# Salt Tests
# ============================================

class TestSigningSalt:
    """Test signing salt creation and persistence."""

    def test_salt_generated_and_persisted(self):
        """First use generates a salt and stores it."""
        store = MemoryKeyValueStore()
        salt = get_signing_salt(store)

        assert len(salt) == 64
        assert store.get(SALT_OPTION) == salt

    def test_existing_salt_reused(self):
        """A stored salt survives a process restart."""
        store = MemoryKeyValueStore()
        store.set(SALT_OPTION, "persisted-salt")
        assert get_signing_salt(store) == "persisted-salt"

    def test_pinned_salt_wins(self):
        store = MemoryKeyValueStore()
        store.set(SALT_OPTION, "persisted-salt")
        assert get_signing_salt(store, pinned="from-config") == "from-config"


# ============================================
# Response Tests
# ============================================

class TestCookieOnResponse:
    """Test cookie attributes."""

    def test_set_cookie_attributes(self, session_cookie):
        """Cookie is HttpOnly, Secure and scoped to the site path."""
        response = Response()
        session_cookie.set_on(response, "value")
        header = response.headers["set-cookie"]

        assert header.startswith("raindrop_mfa=value")
        assert "HttpOnly" in header
        assert "Secure" in header
        assert "Path=/" in header
        assert f"Max-Age={COOKIE_LIFETIME}" in header

    def test_clear_on_every_path(self, clock):
        """Clearing expires the cookie on both the root and the site path."""
        cookie = SessionCookie("salt", site_path="/blog", clock=clock)
        response = Response()
        cookie.clear_on(response)

        headers = [v for k, v in response.raw_headers if k == b"set-cookie"]
        assert len(headers) == 2
        assert any(b"Path=/blog" in h for h in headers)
        assert any(b"Path=/;" in h or h.endswith(b"Path=/") for h in headers)
