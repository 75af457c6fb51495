"""
User Management API Routes

This module provides admin REST endpoints for local user records:
- GET /users: List users (optionally by status)
- GET /users/{user_id}: Get user details
- DELETE /users/{user_id}: Delete a user and everything they own

All routes require the X-Admin-Token header. With no admin token configured
they answer 404.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from buddy_api.dependencies import get_db, require_admin
from buddy_api.schemas import (
    DeleteUserResponse,
    UserDetailResponse,
    UserInfo,
    UserListResponse,
)
from buddy_core.store import StudyStore

# Create router
router = APIRouter(tags=["users"], dependencies=[Depends(require_admin)])


@router.get("/users", response_model=UserListResponse)
async def list_users(status: Optional[str] = None, store: StudyStore = Depends(get_db)):
    """
    List local users, newest first.

    Args:
        status: Optional filter, "active" or "pending".
    """
    users = store.list_users(status=status)

    return UserListResponse(
        users=[UserInfo.from_record(u) for u in users],
        total=len(users),
    )


@router.get("/users/{user_id}", response_model=UserDetailResponse)
async def get_user(user_id: str, store: StudyStore = Depends(get_db)):
    """
    Get detailed information about a specific user.

    Raises:
        404: If the user is not found.
    """
    user = store.get_user(user_id)

    if user is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")

    return UserDetailResponse(
        **UserInfo.from_record(user).model_dump(),
        has_face_embedding=store.has_face_embedding(user_id),
        recent_auth_attempts=len(store.get_auth_logs(user_id=user_id)),
    )


@router.delete("/users/{user_id}", response_model=DeleteUserResponse)
async def delete_user(user_id: str, store: StudyStore = Depends(get_db)):
    """
    Delete a user with their embeddings, notes and history.

    The identity provider account is not touched.

    Raises:
        404: If the user is not found.
    """
    if store.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")

    success = store.delete_user(user_id)

    return DeleteUserResponse(
        success=success,
        user_id=user_id,
        message=f"User {user_id} deleted successfully" if success else "Deletion failed",
    )
