"""Exact cosine-similarity ranking over stored units."""

from typing import List, Sequence

import numpy as np

from .document_store import RetrievableUnit, ScoredUnit


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Returns 0.0 when either vector has zero length.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Dimension mismatch: {a.shape[0]} != {b.shape[0]}")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


def rank(query: Sequence[float], units: Sequence[RetrievableUnit], k: int) -> List[ScoredUnit]:
    """Return the ``k`` units most similar to ``query``, best first.

    Every unit is scored (exact top-K). Equal scores keep insertion order.
    """
    if k <= 0 or not units:
        return []

    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray([unit.embedding for unit in units], dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        raise ValueError(f"Query dimension {q.shape[0]} does not match stored units")

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

    # Stable sort on negated scores keeps insertion order among ties
    order = np.argsort(-scores, kind="stable")[:k]
    return [ScoredUnit(unit=units[i], score=float(scores[i])) for i in order]
