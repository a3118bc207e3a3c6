"""Password digests and bearer-token sessions."""
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from database import from_storage, utcnow
from errors import TokenError, Unauthenticated
from stores import SessionStore, UserStore

logger = logging.getLogger("maintenance_tracker.security")

TOKEN_BYTES = 32


def hash_password(password: str) -> str:
    """Hash a password for storage as ``salt:hexdigest``."""
    salt = secrets.token_hex(16)
    digest = hashlib.sha256((salt + password).encode()).hexdigest()
    return f"{salt}:{digest}"


def verify_password(password_hash: str, password: str) -> bool:
    salt, sep, stored = (password_hash or "").partition(":")
    if not sep:
        return False
    digest = hashlib.sha256((salt + password).encode()).hexdigest()
    return hmac.compare_digest(digest, stored)


def claims_for(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": str(user["_id"]), "email": user["email"], "role": user.get("role", "user")}


def bearer_token(authorization: Optional[str]) -> str:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise Unauthenticated()
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise TokenError(TokenError.MALFORMED)
    return parts[1]


class CredentialIssuer:
    """Checks email/password pairs and issues short-lived bearer tokens.

    Tokens are opaque random strings; the claims they stand for live in the
    session collection next to an expiry stamp that is checked on every
    verification.
    """

    def __init__(self, users: UserStore, sessions: SessionStore, ttl_seconds: int = 3600):
        self.users = users
        self.sessions = sessions
        self.ttl = timedelta(seconds=ttl_seconds)

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        user = self.users.find_by_email(email)
        if not user or not verify_password(user.get("password", ""), password):
            logger.warning(f"Login rejected | email={email}")
            raise Unauthenticated("Invalid credentials")
        return user

    def issue_token(self, claims: Dict[str, Any], now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        self.sessions.purge_expired(now)
        token = secrets.token_urlsafe(TOKEN_BYTES)
        self.sessions.create(token, claims["id"], dict(claims), now + self.ttl)
        return token

    def verify_token(self, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        if not token or len(token) > 256 or not token.replace("-", "").replace("_", "").isalnum():
            raise TokenError(TokenError.MALFORMED)
        session = self.sessions.find(token)
        if not session:
            logger.info("Token rejected | reason=invalid")
            raise TokenError(TokenError.INVALID)
        if from_storage(session["expires_at"]) <= now:
            self.sessions.delete(token)
            logger.info(f"Token rejected | reason=expired | user_id={session['user_id']}")
            raise TokenError(TokenError.EXPIRED)
        return dict(session["claims"])

    def revoke(self, token: str) -> bool:
        return self.sessions.delete(token)
