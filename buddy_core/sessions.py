"""
Session Token Module

One authority issues every session, whichever way the user proved who they
are. Tokens are HS256-signed JWTs carrying the authentication method as a
claim, so downstream code can tell a face sign-in from a password sign-in
without a second session mechanism.

Claims:
    sub: Local user ID
    amr: Authentication method ("password" or "face")
    typ: Always "session"
    iat / exp: Issue and expiry time
    jti: Unique token ID

Usage:
    from buddy_core.sessions import get_session_manager

    sessions = get_session_manager()
    token = sessions.issue("usr_a1b2c3d4", method="face")
    claims = sessions.verify(token)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

METHOD_PASSWORD = "password"
METHOD_FACE = "face"
AUTH_METHODS = (METHOD_PASSWORD, METHOD_FACE)

TOKEN_TYPE = "session"


class SessionError(Exception):
    """Raised when a session token is missing, expired, or invalid."""


@dataclass
class SessionClaims:
    """Verified contents of a session token."""

    user_id: str
    method: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


class SessionManager:
    """
    Issues and verifies session tokens.

    Args:
        secret: Signing key. Must be non-empty.
        algorithm: JWT algorithm (default HS256).
        ttl_minutes: Token lifetime.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_minutes: int = 60 * 24 * 7):
        if not secret:
            raise ValueError("Session secret must be configured")
        self._secret = secret
        self.algorithm = algorithm
        self.ttl = timedelta(minutes=int(ttl_minutes))

    def issue(self, user_id: str, method: str) -> str:
        """
        Issue a signed session token.

        Args:
            user_id: Local user ID the session belongs to.
            method: How the user authenticated ("password" or "face").

        Returns:
            Encoded JWT string.
        """
        if method not in AUTH_METHODS:
            raise ValueError(f"Unknown authentication method: {method}")

        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "amr": method,
            "typ": TOKEN_TYPE,
            "iat": now,
            "exp": now + self.ttl,
            "jti": uuid.uuid4().hex,
        }
        token = jwt.encode(payload, self._secret, algorithm=self.algorithm)
        logger.debug(f"Issued {method} session for {user_id} (jti={payload['jti']})")
        return token

    def verify(self, token: Optional[str]) -> SessionClaims:
        """
        Verify a session token and return its claims.

        Raises:
            SessionError: If the token is missing, expired, tampered with,
                          or not a session token.
        """
        if not token:
            raise SessionError("Missing session token")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp", "iat", "jti"]},
            )
        except jwt.ExpiredSignatureError:
            raise SessionError("Session expired")
        except jwt.InvalidTokenError as e:
            raise SessionError(f"Invalid session token: {e}")

        if payload.get("typ") != TOKEN_TYPE:
            raise SessionError("Invalid token type")
        if payload.get("amr") not in AUTH_METHODS:
            raise SessionError("Invalid authentication method claim")

        return SessionClaims(
            user_id=payload["sub"],
            method=payload["amr"],
            token_id=payload["jti"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


# Singleton instance
_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """
    Get or create the singleton SessionManager from the session config.

    Raises:
        ValueError: If no session secret is configured.
    """
    global _session_manager

    if _session_manager is None:
        from buddy_core.config import get_session_config

        config = get_session_config()
        _session_manager = SessionManager(
            secret=config.get("secret"),
            algorithm=config.get("algorithm", "HS256"),
            ttl_minutes=config.get("ttl_minutes", 60 * 24 * 7),
        )

    return _session_manager
