"""
Matching Module for Face Authentication

This package contains the face-matching routine used by face sign-in.

Components:
    - interfaces: Result dataclasses and the abstract matcher interface
    - embedding_matcher: Cosine similarity matcher with threshold decision

Usage:
    from buddy_core.matching import CosineEmbeddingMatcher
    matcher = CosineEmbeddingMatcher({"accept_threshold": 0.6})
    result = matcher.identify(probe, [("usr_a1b2c3d4", stored), ...])
"""

from buddy_core.matching.interfaces import (
    Candidate,
    EmbeddingMatcher,
    IdentificationResult,
    MatchResult,
)
from buddy_core.matching.embedding_matcher import (
    CosineEmbeddingMatcher,
    cosine_similarity,
    normalize_embedding,
    validate_embedding,
)

__all__ = [
    # Data classes
    "Candidate",
    "IdentificationResult",
    "MatchResult",
    # Abstract interface
    "EmbeddingMatcher",
    # Concrete implementation
    "CosineEmbeddingMatcher",
    # Helpers
    "cosine_similarity",
    "normalize_embedding",
    "validate_embedding",
]
