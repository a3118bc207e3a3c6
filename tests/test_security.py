"""
Unit Tests for password digests and bearer-token sessions

Test coverage for:
- Salted password hashing and verification
- Authorization header parsing
- Token issue / verify / expiry / revoke
"""
from datetime import timedelta

import pytest

from errors import TokenError, Unauthenticated
from schemas import Role
from security import (
    CredentialIssuer,
    bearer_token,
    claims_for,
    hash_password,
    verify_password,
)


@pytest.fixture
def issuer(users, sessions):
    return CredentialIssuer(users, sessions, ttl_seconds=3600)


@pytest.fixture
def stored_user(users):
    return users.create("worker@example.com", hash_password("Test1234!"), Role.USER)


# -----------------------------------------------------------------------------
# Passwords
# -----------------------------------------------------------------------------
class TestPasswords:
    def test_round_trip(self):
        digest = hash_password("s3cret!")
        assert verify_password(digest, "s3cret!")
        assert not verify_password(digest, "s3cret")

    def test_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_plaintext_never_stored(self):
        assert "s3cret!" not in hash_password("s3cret!")

    @pytest.mark.parametrize("digest", ["", "nosalt", None])
    def test_malformed_digest_fails(self, digest):
        assert not verify_password(digest, "anything")


# -----------------------------------------------------------------------------
# Authorization header
# -----------------------------------------------------------------------------
class TestBearerToken:
    def test_extracts_token(self):
        assert bearer_token("Bearer abc123") == "abc123"

    def test_missing_header(self):
        with pytest.raises(Unauthenticated):
            bearer_token(None)

    @pytest.mark.parametrize("header", ["abc123", "Basic abc123", "Bearer", "Bearer a b", "bearer abc"])
    def test_malformed_header(self, header):
        with pytest.raises(TokenError) as exc:
            bearer_token(header)
        assert exc.value.reason == TokenError.MALFORMED


# -----------------------------------------------------------------------------
# Credential issuer
# -----------------------------------------------------------------------------
class TestCredentialIssuer:
    def test_authenticate(self, issuer, stored_user):
        user = issuer.authenticate("WORKER@example.com ", "Test1234!")
        assert user["_id"] == stored_user["_id"]

    def test_authenticate_wrong_password(self, issuer, stored_user):
        with pytest.raises(Unauthenticated) as exc:
            issuer.authenticate("worker@example.com", "wrong")
        assert exc.value.message == "Invalid credentials"

    def test_authenticate_unknown_user(self, issuer):
        with pytest.raises(Unauthenticated):
            issuer.authenticate("nobody@example.com", "Test1234!")

    def test_issue_and_verify(self, issuer, stored_user):
        claims = claims_for(stored_user)
        token = issuer.issue_token(claims)
        assert issuer.verify_token(token) == {
            "id": str(stored_user["_id"]),
            "email": "worker@example.com",
            "role": "user",
        }

    def test_expired_token(self, issuer, stored_user, now):
        token = issuer.issue_token(claims_for(stored_user), now=now)
        with pytest.raises(TokenError) as exc:
            issuer.verify_token(token, now=now + timedelta(hours=1, seconds=1))
        assert exc.value.reason == TokenError.EXPIRED

    def test_token_valid_just_before_expiry(self, issuer, stored_user, now):
        token = issuer.issue_token(claims_for(stored_user), now=now)
        assert issuer.verify_token(token, now=now + timedelta(minutes=59))["id"] == str(stored_user["_id"])

    def test_expired_session_removed(self, issuer, sessions, stored_user, now):
        token = issuer.issue_token(claims_for(stored_user), now=now)
        with pytest.raises(TokenError):
            issuer.verify_token(token, now=now + timedelta(hours=2))
        assert sessions.find(token) is None

    def test_unknown_token(self, issuer):
        with pytest.raises(TokenError) as exc:
            issuer.verify_token("invalidtoken")
        assert exc.value.reason == TokenError.INVALID

    @pytest.mark.parametrize("token", ["", "a.b.c", "x" * 300, "has space"])
    def test_malformed_token(self, issuer, token):
        with pytest.raises(TokenError) as exc:
            issuer.verify_token(token)
        assert exc.value.reason == TokenError.MALFORMED

    def test_revoke(self, issuer, stored_user):
        token = issuer.issue_token(claims_for(stored_user))
        assert issuer.revoke(token)
        with pytest.raises(TokenError):
            issuer.verify_token(token)

    def test_login_purges_expired_sessions(self, issuer, sessions, stored_user, now):
        old = issuer.issue_token(claims_for(stored_user), now=now - timedelta(hours=3))
        issuer.issue_token(claims_for(stored_user), now=now)
        assert sessions.find(old) is None
