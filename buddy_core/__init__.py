"""
Core Module for the Study Buddy API

This package contains the framework-independent functionality: configuration,
face matching, persistence, sessions and the external service clients.

Main components:
    - config: Configuration loading and management
    - matching: Cosine-similarity face matching
    - store: SQLite persistence for users, embeddings and study content
    - sessions: Session token issuing and verification
    - identity: Identity provider client and webhook verification
    - completion: Completion service client (plans, quizzes, explanations)

Usage:
    from buddy_core.config import get_config
    from buddy_core.matching import CosineEmbeddingMatcher
    from buddy_core.store import get_store
"""

from buddy_core.config import (
    get_config,
    get_section,
    get_matching_config,
    get_storage_config,
    get_session_config,
    get_identity_config,
    get_completion_config,
    get_api_config,
    get_server_config,
)

from buddy_core.matching import (
    CosineEmbeddingMatcher,
    IdentificationResult,
    MatchResult,
    cosine_similarity,
)

from buddy_core.store import (
    StudyStore,
    StoreError,
    NotFoundError,
    ConflictError,
    get_store,
    generate_user_id,
)

from buddy_core.sessions import (
    SessionManager,
    SessionClaims,
    SessionError,
    get_session_manager,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_matching_config",
    "get_storage_config",
    "get_session_config",
    "get_identity_config",
    "get_completion_config",
    "get_api_config",
    "get_server_config",
    # Matching
    "CosineEmbeddingMatcher",
    "IdentificationResult",
    "MatchResult",
    "cosine_similarity",
    # Store
    "StudyStore",
    "StoreError",
    "NotFoundError",
    "ConflictError",
    "get_store",
    "generate_user_id",
    # Sessions
    "SessionManager",
    "SessionClaims",
    "SessionError",
    "get_session_manager",
]
