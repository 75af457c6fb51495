"""
Authentication API Routes

Password sign-in and sign-up against the identity provider, plus session
introspection. Every successful sign-in ends the same way: the local user
record is refreshed from the provider and a session token is issued by the
single session authority (buddy_core.sessions).

- POST /auth/sign-in
- POST /auth/sign-up
- POST /auth/sign-out
- GET  /auth/me
- POST /auth/sync
- POST /auth/password
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response

from buddy_api.dependencies import (
    clear_session_cookie,
    get_current_session,
    get_current_user,
    get_db,
    get_identity,
    get_sessions,
    set_session_cookie,
)
from buddy_api.schemas import (
    MeResponse,
    PasswordUpdateRequest,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    SuccessResponse,
    UserInfo,
)
from buddy_core.identity import (
    IdentityConflict,
    IdentityNotFound,
    IdentityProviderClient,
    IdentityProviderError,
    InvalidCredentials,
)
from buddy_core.sessions import METHOD_PASSWORD, SessionClaims, SessionManager
from buddy_core.store import USER_ACTIVE, ConflictError, StoreError, StudyStore

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/sign-in", response_model=SessionResponse)
async def sign_in(
    request: SignInRequest,
    response: Response,
    store: StudyStore = Depends(get_db),
    identity: IdentityProviderClient = Depends(get_identity),
    sessions: SessionManager = Depends(get_sessions),
):
    """
    Sign in with email and password.

    The identity provider checks the credentials; the local user record is
    created or refreshed from the provider's copy.

    Raises:
        401: Unknown account or wrong password.
        409: The email is linked to a different local account.
        502: Identity provider failure.
    """
    try:
        verified = await identity.verify_password(request.email, request.password)
    except InvalidCredentials:
        store.log_authentication(user_id=None, method=METHOD_PASSWORD, success=False)
        logger.warning("Password sign-in rejected")
        raise HTTPException(status_code=401, detail="Invalid email or password")
    except IdentityProviderError as e:
        raise HTTPException(status_code=502, detail=f"Identity provider error: {e}")

    try:
        user = store.upsert_user_from_identity(
            external_id=verified.external_id,
            email=verified.email,
            first_name=verified.first_name,
            last_name=verified.last_name,
        )
    except ConflictError as e:
        logger.error(f"Local user conflict for identity {verified.external_id}: {e}")
        raise HTTPException(status_code=409, detail="Account is linked to another user")

    store.log_authentication(user_id=user["user_id"], method=METHOD_PASSWORD, success=True)

    token = sessions.issue(user["user_id"], METHOD_PASSWORD)
    set_session_cookie(response, token)
    logger.info(f"Password sign-in for {user['user_id']}")

    return SessionResponse(
        user=UserInfo.from_record(user),
        method=METHOD_PASSWORD,
        token=token,
    )


@router.post("/sign-up", response_model=SessionResponse)
async def sign_up(
    request: SignUpRequest,
    response: Response,
    store: StudyStore = Depends(get_db),
    identity: IdentityProviderClient = Depends(get_identity),
    sessions: SessionManager = Depends(get_sessions),
):
    """
    Create an account with a password and sign in.

    Raises:
        409: The email is already registered.
        500: The identity was created but the local record could not be written.
        502: Identity provider failure.
    """
    existing = store.get_user_by_email(request.email)
    if existing is not None and existing["status"] == USER_ACTIVE:
        raise HTTPException(status_code=409, detail="An account already exists for this email")

    try:
        created = await identity.create_identity(
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
            password=request.password,
        )
    except IdentityConflict:
        raise HTTPException(status_code=409, detail="An account already exists for this email")
    except IdentityProviderError as e:
        raise HTTPException(status_code=502, detail=f"Identity provider error: {e}")

    try:
        user = store.upsert_user_from_identity(
            external_id=created.external_id,
            email=created.email or request.email,
            first_name=created.first_name,
            last_name=created.last_name,
        )
    except StoreError as e:
        logger.error(
            f"Identity {created.external_id} was created upstream but the local "
            f"user write failed: {e}"
        )
        raise HTTPException(status_code=500, detail="Failed to create local user")

    token = sessions.issue(user["user_id"], METHOD_PASSWORD)
    set_session_cookie(response, token)
    logger.info(f"Signed up {user['user_id']} with password")

    return SessionResponse(
        user=UserInfo.from_record(user),
        method=METHOD_PASSWORD,
        token=token,
    )


@router.post("/sign-out", response_model=SuccessResponse)
async def sign_out(response: Response):
    """Clear the session cookie."""
    clear_session_cookie(response)
    return SuccessResponse(message="Signed out")


@router.get("/me", response_model=MeResponse)
async def me(
    claims: SessionClaims = Depends(get_current_session),
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """Return the signed-in user and how they authenticated."""
    return MeResponse(
        user=UserInfo.from_record(user),
        method=claims.method,
        has_face_embedding=store.has_face_embedding(user["user_id"]),
    )


@router.post("/sync", response_model=UserInfo)
async def sync_user(
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
    identity: IdentityProviderClient = Depends(get_identity),
):
    """
    Refresh the local user record from the identity provider.

    Raises:
        400: The user has no linked identity.
        404: The identity no longer exists upstream.
    """
    if not user.get("external_id"):
        raise HTTPException(status_code=400, detail="User has no linked identity")

    try:
        current = await identity.get_identity(user["external_id"])
    except IdentityNotFound:
        raise HTTPException(status_code=404, detail="User not found in identity provider")
    except IdentityProviderError as e:
        raise HTTPException(status_code=502, detail=f"Identity provider error: {e}")

    try:
        synced = store.upsert_user_from_identity(
            external_id=current.external_id,
            email=current.email,
            first_name=current.first_name,
            last_name=current.last_name,
        )
    except ConflictError as e:
        logger.error(f"Could not sync identity {current.external_id}: {e}")
        raise HTTPException(status_code=409, detail="Account is linked to another user")

    logger.info(f"Synced user {synced['user_id']} from identity provider")
    return UserInfo.from_record(synced)


@router.post("/password", response_model=SuccessResponse)
async def update_password(
    request: PasswordUpdateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    identity: IdentityProviderClient = Depends(get_identity),
):
    """Set a new password on the signed-in user's identity."""
    if not user.get("external_id"):
        raise HTTPException(status_code=400, detail="User has no linked identity")

    try:
        await identity.update_credential(user["external_id"], request.new_password)
    except IdentityNotFound:
        raise HTTPException(status_code=404, detail="User not found in identity provider")
    except IdentityProviderError as e:
        raise HTTPException(status_code=502, detail=f"Identity provider error: {e}")

    return SuccessResponse(message="Password updated")
