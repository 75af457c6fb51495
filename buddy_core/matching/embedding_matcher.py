"""
Embedding Matcher: Compare face embeddings via cosine similarity.

Concrete implementation of the EmbeddingMatcher interface defined in interfaces.py.

The browser-side model produces a 128-dim descriptor per captured frame.
This matcher compares those descriptors with cosine similarity
(dot(a, b) / (|a| * |b|)) and accepts the best candidate of a linear scan
only when it reaches the configured threshold.
"""

import logging
from typing import Iterable, Optional, Sequence

import numpy as np

from buddy_core.matching.interfaces import (
    Candidate,
    EmbeddingMatcher,
    IdentificationResult,
    MatchResult,
)

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6
DEFAULT_EMBEDDING_DIM = 128

_ZERO_NORM_EPS = 1e-12


def _as_vector(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 instead of raising when the vectors have different lengths,
    are empty, or either has zero norm. The result is clamped to [-1, 1].
    """
    a = _as_vector(a)
    b = _as_vector(b)

    if a.shape[0] != b.shape[0] or a.shape[0] == 0:
        return 0.0

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a < _ZERO_NORM_EPS or norm_b < _ZERO_NORM_EPS:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


def normalize_embedding(embedding: Sequence[float]) -> np.ndarray:
    """Scale an embedding to unit length. A zero vector is returned unchanged."""
    vector = _as_vector(embedding)
    norm = float(np.linalg.norm(vector))
    if norm < _ZERO_NORM_EPS:
        return vector
    return vector / norm


def validate_embedding(embedding: Sequence[float], dim: Optional[int] = None) -> np.ndarray:
    """
    Check that an embedding is a flat, finite, non-empty numeric vector.

    Args:
        embedding: Raw values as received from a client.
        dim: Required length, or None to accept any length.

    Returns:
        The embedding as a float32 array.

    Raises:
        ValueError: If the embedding is empty, has the wrong length, or
                    contains NaN/inf.
    """
    try:
        vector = np.asarray(embedding, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Embedding must be a list of numbers: {e}")

    if vector.ndim != 1 or vector.shape[0] == 0:
        raise ValueError("Embedding must be a non-empty flat list of numbers")
    if dim is not None and vector.shape[0] != dim:
        raise ValueError(f"Embedding must have {dim} values, got {vector.shape[0]}")
    if not np.all(np.isfinite(vector)):
        raise ValueError("Embedding contains non-finite values")

    return vector


class CosineEmbeddingMatcher(EmbeddingMatcher):
    """
    Compare face embeddings via cosine similarity against a fixed threshold.

    Identification is a linear scan with no index. The best candidate is only
    replaced on a strictly greater score, so among equal scores the first
    candidate in input order wins.

    Args:
        config: Dictionary with optional keys:
            - accept_threshold: Minimum similarity to accept (default 0.6)
            - embedding_dim: Expected dimension (default 128, informational)
    """

    def __init__(self, config: dict = None):
        if config is None:
            config = {}
        self.threshold = float(config.get("accept_threshold", DEFAULT_THRESHOLD))
        self.embedding_dim = int(config.get("embedding_dim", DEFAULT_EMBEDDING_DIM))

    def compare(
        self,
        probe_embedding: np.ndarray,
        template_embedding: np.ndarray,
    ) -> MatchResult:
        """
        Compare two face embeddings.

        Args:
            probe_embedding: (D,) embedding from the current capture.
            template_embedding: (D,) enrolled embedding.

        Returns:
            MatchResult with the raw cosine similarity as score.
        """
        if probe_embedding is None or template_embedding is None:
            logger.warning("Received None embedding")
            return MatchResult(
                score=0.0,
                details={"method": "cosine", "error": "null_embedding"},
                is_match=False,
            )

        probe = _as_vector(probe_embedding)
        template = _as_vector(template_embedding)

        details = {"method": "cosine", "embedding_dim": int(probe.shape[0])}
        if probe.shape[0] != template.shape[0]:
            details["error"] = "dim_mismatch"
        elif np.linalg.norm(probe) < _ZERO_NORM_EPS or np.linalg.norm(template) < _ZERO_NORM_EPS:
            details["error"] = "zero_norm"

        score = cosine_similarity(probe, template)
        details["threshold"] = self.threshold

        return MatchResult(
            score=score,
            details=details,
            is_match="error" not in details and score >= self.threshold,
        )

    def identify(
        self,
        probe_embedding: np.ndarray,
        candidates: Iterable[Candidate],
    ) -> IdentificationResult:
        """
        Scan all candidates and accept the first maximal one above threshold.

        Args:
            probe_embedding: (D,) embedding from the current capture.
            candidates: (user_id, embedding) pairs in scan order.

        Returns:
            IdentificationResult. When nothing reaches the threshold,
            matched is False, user_id is None and score is the best
            (sub-threshold) similarity seen.
        """
        probe = _as_vector(probe_embedding)

        best_user_id: Optional[str] = None
        best_score = 0.0
        n_candidates = 0
        n_skipped = 0

        for user_id, embedding in candidates:
            n_candidates += 1
            template = _as_vector(embedding)
            if template.shape[0] != probe.shape[0]:
                n_skipped += 1
                continue

            score = cosine_similarity(probe, template)
            if best_user_id is None or score > best_score:
                best_score = score
                best_user_id = user_id

        if n_skipped:
            logger.debug(f"Skipped {n_skipped} candidate(s) with mismatched dimension")

        if best_user_id is None:
            best_score = 0.0

        matched = best_user_id is not None and best_score >= self.threshold

        logger.debug(
            f"Identification scan: candidates={n_candidates}, "
            f"best={best_score:.4f}, threshold={self.threshold}, matched={matched}"
        )

        return IdentificationResult(
            matched=matched,
            user_id=best_user_id if matched else None,
            score=best_score,
            n_candidates=n_candidates,
            threshold=self.threshold,
            details={"method": "cosine_linear_scan", "skipped_dim_mismatch": n_skipped},
        )
