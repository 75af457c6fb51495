"""
Tests for session tokens.

Run with: pytest tests/test_sessions.py -v
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import jwt
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from buddy_core.sessions import (
    METHOD_FACE,
    METHOD_PASSWORD,
    SessionError,
    SessionManager,
)

SECRET = "test-session-secret-0123456789abcdef"


@pytest.fixture
def sessions():
    return SessionManager(SECRET, ttl_minutes=30)


class TestSessionManager:

    def test_requires_secret(self):
        with pytest.raises(ValueError):
            SessionManager("")

    def test_issue_and_verify(self, sessions):
        token = sessions.issue("usr_abc12345", METHOD_PASSWORD)
        claims = sessions.verify(token)

        assert claims.user_id == "usr_abc12345"
        assert claims.method == METHOD_PASSWORD
        assert claims.expires_at > claims.issued_at
        assert claims.expires_at - claims.issued_at == timedelta(minutes=30)

    def test_face_method_claim(self, sessions):
        claims = sessions.verify(sessions.issue("usr_abc12345", METHOD_FACE))
        assert claims.method == METHOD_FACE

    def test_unknown_method_rejected(self, sessions):
        with pytest.raises(ValueError):
            sessions.issue("usr_abc12345", "magic-link")

    def test_token_ids_unique(self, sessions):
        a = sessions.verify(sessions.issue("usr_abc12345", METHOD_FACE))
        b = sessions.verify(sessions.issue("usr_abc12345", METHOD_FACE))
        assert a.token_id != b.token_id

    def test_missing_token(self, sessions):
        with pytest.raises(SessionError):
            sessions.verify(None)
        with pytest.raises(SessionError):
            sessions.verify("")

    def test_expired_token(self):
        expired = SessionManager(SECRET, ttl_minutes=-1)
        token = expired.issue("usr_abc12345", METHOD_PASSWORD)
        with pytest.raises(SessionError, match="expired"):
            expired.verify(token)

    def test_wrong_secret(self, sessions):
        other = SessionManager("another-secret-0123456789abcdefghij")
        token = other.issue("usr_abc12345", METHOD_PASSWORD)
        with pytest.raises(SessionError):
            sessions.verify(token)

    def test_tampered_token(self, sessions):
        token = sessions.issue("usr_abc12345", METHOD_PASSWORD)
        header, payload, signature = token.split(".")
        tampered = ".".join([header, payload, signature[:-4] + "AAAA"])
        with pytest.raises(SessionError):
            sessions.verify(tampered)

    def test_rejects_non_session_token(self, sessions):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "sub": "usr_abc12345",
                "amr": METHOD_PASSWORD,
                "typ": "refresh",
                "iat": now,
                "exp": now + timedelta(minutes=5),
                "jti": "x",
            },
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(SessionError, match="type"):
            sessions.verify(token)

    def test_rejects_missing_claims(self, sessions):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "usr_abc12345", "exp": now + timedelta(minutes=5)},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(SessionError):
            sessions.verify(token)
