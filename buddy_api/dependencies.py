"""
Shared FastAPI dependencies.

Route handlers receive their collaborators (store, session manager,
identity provider, completion service, matcher) through these functions so
tests can swap any of them with app.dependency_overrides.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, Response

from buddy_core.completion import CompletionClient, get_completion_client
from buddy_core.config import get_api_config, get_matching_config, get_session_config
from buddy_core.identity import (
    IdentityProviderClient,
    WebhookVerifier,
    get_identity_client,
    get_webhook_verifier,
)
from buddy_core.matching import CosineEmbeddingMatcher
from buddy_core.sessions import SessionClaims, SessionError, SessionManager, get_session_manager
from buddy_core.store import StudyStore, get_store

logger = logging.getLogger(__name__)

DEFAULT_COOKIE_NAME = "study_session"


def get_db() -> StudyStore:
    return get_store()


def get_sessions() -> SessionManager:
    try:
        return get_session_manager()
    except ValueError as e:
        logger.error(f"Session manager unavailable: {e}")
        raise HTTPException(status_code=503, detail="Sessions are not configured")


def get_identity() -> IdentityProviderClient:
    return get_identity_client()


def get_webhook() -> WebhookVerifier:
    try:
        return get_webhook_verifier()
    except ValueError as e:
        logger.error(f"Webhook verifier unavailable: {e}")
        raise HTTPException(status_code=503, detail="Webhooks are not configured")


def get_completion() -> CompletionClient:
    return get_completion_client()


def get_matcher() -> CosineEmbeddingMatcher:
    return CosineEmbeddingMatcher(get_matching_config())


def _cookie_settings() -> Dict[str, Any]:
    config = get_session_config()
    return {
        "name": config.get("cookie_name", DEFAULT_COOKIE_NAME),
        "secure": bool(config.get("cookie_secure", False)),
        "max_age": int(config.get("ttl_minutes", 60 * 24 * 7)) * 60,
    }


def set_session_cookie(response: Response, token: str) -> None:
    """Attach the session token as an HttpOnly cookie."""
    settings = _cookie_settings()
    response.set_cookie(
        key=settings["name"],
        value=token,
        max_age=settings["max_age"],
        httponly=True,
        secure=settings["secure"],
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=_cookie_settings()["name"])


def get_session_token(request: Request) -> Optional[str]:
    """
    Read the bearer token from the Authorization header or the session cookie.

    The header wins when both are present.
    """
    header = request.headers.get("authorization")
    if header:
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return request.cookies.get(_cookie_settings()["name"])


def get_current_session(
    request: Request,
    sessions: SessionManager = Depends(get_sessions),
) -> SessionClaims:
    """Resolve and verify the caller's session, or fail with 401."""
    token = get_session_token(request)
    try:
        return sessions.verify(token)
    except SessionError as e:
        raise HTTPException(status_code=401, detail=str(e))


def get_current_user(
    claims: SessionClaims = Depends(get_current_session),
    store: StudyStore = Depends(get_db),
) -> Dict[str, Any]:
    """Load the local user behind the caller's session, or fail with 404."""
    user = store.get_user(claims.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    """
    Guard for user management routes.

    When no admin token is configured the routes behave as if they don't exist.
    """
    expected = get_api_config().get("admin_token")
    if not expected:
        raise HTTPException(status_code=404, detail="Not found")
    if x_admin_token != expected:
        raise HTTPException(status_code=403, detail="Invalid admin token")
