"""
Face Authentication API Routes

The browser computes a face embedding from a webcam frame and sends only
the numeric vector. This module enrolls embeddings and signs users in by
comparing a fresh embedding against the enrolled ones.

- POST   /face/register   Enroll (replace) the signed-in user's face
- DELETE /face/register   Remove the signed-in user's face
- POST   /face/login      Sign in by face (1:N, or 1:1 when an email is given)
- POST   /face/pending    Store a face before the account exists
- GET    /face/pending    Fetch a stored pending face
- DELETE /face/pending    Clean up pending faces for an email
- POST   /face/sign-up    Create a passwordless account and sign in by face
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse

from buddy_api.dependencies import (
    get_current_user,
    get_db,
    get_identity,
    get_matcher,
    get_sessions,
    set_session_cookie,
)
from buddy_api.schemas import (
    CleanupRequest,
    CleanupResponse,
    FaceEmbeddingRequest,
    FaceLoginFailure,
    FaceLoginRequest,
    FaceSignUpRequest,
    PendingEmbeddingResponse,
    PendingEnrollmentRequest,
    SessionResponse,
    SuccessResponse,
    UserInfo,
)
from buddy_core.identity import IdentityConflict, IdentityProviderClient, IdentityProviderError
from buddy_core.matching import CosineEmbeddingMatcher, validate_embedding
from buddy_core.sessions import METHOD_FACE, SessionManager
from buddy_core.store import USER_ACTIVE, ConflictError, StoreError, StudyStore

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/face", tags=["face"])


def parse_embedding(values, matcher: CosineEmbeddingMatcher):
    """Validate a client embedding against the configured dimension, or 400."""
    try:
        return validate_embedding(values, dim=matcher.embedding_dim)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid face embedding: {e}")


@router.post("/register", response_model=SuccessResponse)
async def register_face(
    request: FaceEmbeddingRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
    matcher: CosineEmbeddingMatcher = Depends(get_matcher),
):
    """Enroll the signed-in user's face, replacing any previous enrollment."""
    embedding = parse_embedding(request.embedding, matcher)
    store.replace_face_embedding(user["user_id"], embedding)
    return SuccessResponse(message="Face registered")


@router.delete("/register", response_model=SuccessResponse)
async def remove_face(
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """Remove the signed-in user's enrolled face."""
    removed = store.delete_face_embeddings(user["user_id"])
    if removed == 0:
        raise HTTPException(status_code=404, detail="No face registered")
    logger.info(f"Removed {removed} face embedding(s) for {user['user_id']}")
    return SuccessResponse(message="Face removed")


@router.post(
    "/login",
    response_model=SessionResponse,
    responses={401: {"model": FaceLoginFailure}},
)
async def face_login(
    request: FaceLoginRequest,
    response: Response,
    store: StudyStore = Depends(get_db),
    matcher: CosineEmbeddingMatcher = Depends(get_matcher),
    sessions: SessionManager = Depends(get_sessions),
):
    """
    Sign in by face.

    Without an email, the probe is compared against every enrolled face
    (1:N identification). With an email, only that account's face is used.
    The best candidate is accepted only if it reaches the configured
    threshold; otherwise the response is 401 with the best similarity seen.

    An unknown email, or one with no enrolled face, fails the same way as
    a mismatch so the response does not reveal which accounts exist.

    Raises:
        400: Malformed embedding.
    """
    probe = parse_embedding(request.embedding, matcher)

    if request.email:
        user = store.get_user_by_email(request.email)
        candidates = []
        if user is not None and user["status"] == USER_ACTIVE:
            candidates = store.list_face_embeddings(user_id=user["user_id"])
    else:
        candidates = store.list_face_embeddings()

    result = matcher.identify(probe, candidates)

    if not result.matched:
        store.log_authentication(
            user_id=None, method=METHOD_FACE, success=False, score=result.score
        )
        logger.warning(
            f"Face not recognized: best={result.score:.3f} over "
            f"{result.n_candidates} candidate(s), threshold={result.threshold}"
        )
        return JSONResponse(
            status_code=401,
            content=FaceLoginFailure(
                error="Face not recognized", similarity=result.score
            ).model_dump(),
        )

    user = store.get_user(result.user_id)
    if user is None:
        # Deleted between the scan and the lookup.
        raise HTTPException(status_code=404, detail="User not found")

    store.log_authentication(
        user_id=user["user_id"], method=METHOD_FACE, success=True, score=result.score
    )

    token = sessions.issue(user["user_id"], METHOD_FACE)
    set_session_cookie(response, token)
    logger.info(f"Face sign-in for {user['user_id']} (similarity={result.score:.3f})")

    return SessionResponse(
        user=UserInfo.from_record(user),
        method=METHOD_FACE,
        token=token,
        similarity=result.score,
    )


@router.post("/pending", response_model=SuccessResponse)
async def store_pending_face(
    request: PendingEnrollmentRequest,
    store: StudyStore = Depends(get_db),
    matcher: CosineEmbeddingMatcher = Depends(get_matcher),
):
    """
    Store a face embedding for an email that has not signed up yet.

    Raises:
        409: An account already exists for this email.
    """
    embedding = parse_embedding(request.embedding, matcher)
    try:
        store.create_pending_user(request.email, embedding)
    except ConflictError:
        raise HTTPException(status_code=409, detail="An account already exists for this email")
    return SuccessResponse(message="Face embedding stored temporarily")


@router.get("/pending", response_model=PendingEmbeddingResponse)
async def get_pending_face(email: str, store: StudyStore = Depends(get_db)):
    """Return the pending face embedding stored for an email."""
    pending = store.get_pending_user(email)
    embeddings = (
        store.list_face_embeddings(user_id=pending["user_id"], active_only=False)
        if pending else []
    )
    if not embeddings:
        raise HTTPException(status_code=404, detail="No stored face embedding found")

    _, embedding = embeddings[-1]
    return PendingEmbeddingResponse(email=email, face_embedding=embedding.tolist())


@router.delete("/pending", response_model=CleanupResponse)
async def cleanup_pending_face(request: CleanupRequest, store: StudyStore = Depends(get_db)):
    """Delete pending face sign-ups for an email."""
    deleted = store.delete_pending_users(request.email)
    return CleanupResponse(deleted=deleted)


@router.post("/sign-up", response_model=SessionResponse)
async def face_sign_up(
    request: FaceSignUpRequest,
    response: Response,
    store: StudyStore = Depends(get_db),
    identity: IdentityProviderClient = Depends(get_identity),
    matcher: CosineEmbeddingMatcher = Depends(get_matcher),
    sessions: SessionManager = Depends(get_sessions),
):
    """
    Create a passwordless account whose credential is the user's face.

    The embedding comes from the request or from an earlier /face/pending
    call for the same email. The identity is created upstream first; the
    local user is then activated (or created) and the face stored.

    Raises:
        400: No usable embedding.
        409: The email is already registered.
        500: The identity was created but the local write failed.
        502: Identity provider failure.
    """
    embedding = None
    if request.embedding is not None:
        embedding = parse_embedding(request.embedding, matcher)

    existing = store.get_user_by_email(request.email)
    if existing is not None and existing["status"] == USER_ACTIVE:
        raise HTTPException(status_code=409, detail="An account already exists for this email")

    pending = existing
    if embedding is None and (pending is None or not store.has_face_embedding(pending["user_id"])):
        raise HTTPException(status_code=400, detail="No face embedding provided or stored")

    try:
        created = await identity.create_identity(
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
        )
    except IdentityConflict:
        raise HTTPException(status_code=409, detail="An account already exists for this email")
    except IdentityProviderError as e:
        raise HTTPException(status_code=502, detail=f"Identity provider error: {e}")

    try:
        if pending is not None:
            user = store.activate_pending_user(
                pending["user_id"],
                external_id=created.external_id,
                first_name=created.first_name or request.first_name,
                last_name=created.last_name or request.last_name,
            )
        else:
            user = store.create_user(
                email=created.email or request.email,
                external_id=created.external_id,
                first_name=created.first_name or request.first_name,
                last_name=created.last_name or request.last_name,
            )
        if embedding is not None:
            store.replace_face_embedding(user["user_id"], embedding)
    except StoreError as e:
        logger.error(
            f"Identity {created.external_id} was created upstream but the local "
            f"face sign-up failed: {e}"
        )
        raise HTTPException(status_code=500, detail="Failed to complete face sign-up")

    store.log_authentication(user_id=user["user_id"], method=METHOD_FACE, success=True, score=1.0)

    token = sessions.issue(user["user_id"], METHOD_FACE)
    set_session_cookie(response, token)
    logger.info(f"Face sign-up complete for {user['user_id']}")

    return SessionResponse(
        user=UserInfo.from_record(user),
        method=METHOD_FACE,
        token=token,
    )
