"""
Matching Interfaces Module

This module defines the result types and the abstract interface for face
embedding matchers.

Two questions are asked of a matcher:
1. Verification (1:1) - is this probe the same face as that template?
2. Identification (1:N) - which enrolled user, if any, does this probe
   belong to?

Usage:
    from buddy_core.matching.interfaces import MatchResult, EmbeddingMatcher
"""

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple


@dataclass
class MatchResult:
    """
    Result of a single 1:1 comparison.

    Attributes:
        score: Raw cosine similarity in [-1, 1].
               1.0 = identical direction, 0.0 = unrelated (or not comparable).
        details: Dictionary containing algorithm-specific details.
                 Useful for debugging and analysis.
                 Examples: {"method": "cosine", "error": "dim_mismatch"}
        is_match: Boolean decision based on threshold comparison.
    """

    score: float
    details: Dict[str, Any]
    is_match: bool


@dataclass
class IdentificationResult:
    """
    Result of a 1:N scan over enrolled embeddings.

    Attributes:
        matched: True if the best candidate reached the accept threshold.
        user_id: Owner of the best candidate when matched, otherwise None.
        score: Best similarity seen during the scan, even when it is below
               threshold (0.0 when there were no candidates).
        n_candidates: Number of stored embeddings that were scanned.
        threshold: Threshold the decision was made against.
    """

    matched: bool
    user_id: Optional[str]
    score: float
    n_candidates: int
    threshold: float
    details: Dict[str, Any] = field(default_factory=dict)


# A stored candidate: (owning user id, embedding vector)
Candidate = Tuple[str, Sequence[float]]


class EmbeddingMatcher(ABC):
    """
    Abstract base class for face embedding matching.

    Implemented in: buddy_core/matching/embedding_matcher.py

    Typical approach:
        1. Compute a similarity between probe and template embeddings
        2. Compare the similarity against an accept threshold
        3. For identification, keep the best candidate over a full scan
    """

    @abstractmethod
    def compare(
        self,
        probe_embedding: np.ndarray,
        template_embedding: np.ndarray,
    ) -> MatchResult:
        """
        Compare two face embeddings.

        Args:
            probe_embedding: Embedding from the current capture. Shape (D,).
            template_embedding: Embedding from enrollment. Shape (D,).

        Returns:
            MatchResult with similarity score and threshold decision.
        """
        pass

    @abstractmethod
    def identify(
        self,
        probe_embedding: np.ndarray,
        candidates: Iterable[Candidate],
    ) -> IdentificationResult:
        """
        Find the enrolled user a probe embedding belongs to.

        Args:
            probe_embedding: Embedding from the current capture. Shape (D,).
            candidates: Iterable of (user_id, embedding) pairs, scanned in order.

        Returns:
            IdentificationResult with the accepted user or a negative outcome.
        """
        pass
