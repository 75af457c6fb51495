"""
Notes API Routes

Owner-scoped notes with restorable versions. Every title or content change
snapshots the previous state, so any earlier version can be restored.

- GET    /notes
- POST   /notes
- GET    /notes/{note_id}
- PATCH  /notes/{note_id}
- DELETE /notes/{note_id}
- GET    /notes/{note_id}/versions
- POST   /notes/versions/{version_id}/restore
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from buddy_api.dependencies import get_current_user, get_db
from buddy_api.schemas import (
    NoteCreateRequest,
    NoteListResponse,
    NoteSchema,
    NoteUpdateRequest,
    NoteVersionListResponse,
    NoteVersionSchema,
    SuccessResponse,
)
from buddy_core.store import NotFoundError, StudyStore

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/notes", tags=["notes"])


@router.get("", response_model=NoteListResponse)
async def list_notes(
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """List the user's notes, most recently updated first."""
    notes = store.list_notes(user["user_id"])
    return NoteListResponse(notes=[NoteSchema(**n) for n in notes])


@router.post("", response_model=NoteSchema, status_code=201)
async def create_note(
    request: NoteCreateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """Create a note. Missing title defaults to "Untitled Note"."""
    note = store.create_note(
        user["user_id"],
        title=request.title,
        content=request.content,
        tags=request.tags,
    )
    return NoteSchema(**note)


@router.get("/{note_id}", response_model=NoteSchema)
async def get_note(
    note_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    try:
        note = store.get_note(user["user_id"], note_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Note not found")
    return NoteSchema(**note)


@router.patch("/{note_id}", response_model=NoteSchema)
async def update_note(
    note_id: str,
    request: NoteUpdateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """
    Update a note. Omitted fields are left unchanged.

    A version holding the previous title, content and tags is saved
    whenever the title or content is part of the update.
    """
    try:
        note = store.update_note(
            user["user_id"],
            note_id,
            title=request.title,
            content=request.content,
            tags=request.tags,
            is_pinned=request.is_pinned,
            is_starred=request.is_starred,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Note not found")
    return NoteSchema(**note)


@router.delete("/{note_id}", response_model=SuccessResponse)
async def delete_note(
    note_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """Delete a note together with its versions."""
    try:
        store.delete_note(user["user_id"], note_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Note not found")
    return SuccessResponse(message="Note deleted")


@router.get("/{note_id}/versions", response_model=NoteVersionListResponse)
async def list_note_versions(
    note_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """List a note's saved versions, newest first."""
    try:
        versions = store.list_note_versions(user["user_id"], note_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Note not found")
    return NoteVersionListResponse(versions=[NoteVersionSchema(**v) for v in versions])


@router.post("/versions/{version_id}/restore", response_model=NoteSchema)
async def restore_note_version(
    version_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """
    Restore a note to an earlier version.

    The note's current state is itself saved as a version first, so a
    restore can be undone.
    """
    try:
        note = store.restore_note_version(user["user_id"], version_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Version not found")
    return NoteSchema(**note)
