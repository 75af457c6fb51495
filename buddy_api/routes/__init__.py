"""
API Routes Package

This package contains route handlers organized by feature:
- auth.py: Password sign-in/sign-up and session endpoints
- face.py: Face enrollment and face sign-in
- study.py: Plan/quiz/explanation generation and study history
- notes.py: Versioned notes
- webhooks.py: Identity provider user events
- management.py: Admin user management
"""

from buddy_api.routes.auth import router as auth_router
from buddy_api.routes.face import router as face_router
from buddy_api.routes.study import router as study_router
from buddy_api.routes.notes import router as notes_router
from buddy_api.routes.webhooks import router as webhooks_router
from buddy_api.routes.management import router as management_router

__all__ = [
    "auth_router",
    "face_router",
    "study_router",
    "notes_router",
    "webhooks_router",
    "management_router",
]
