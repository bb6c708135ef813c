"""Brute-force cosine similarity ranking.

Every candidate vector is scored against the query, so a query costs
O(collection size x dimensions). There is no index; large collections pay the
full scan on every search.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product over the product of magnitudes; 0.0 if either vector is zero."""
    va = np.asarray(a, dtype="float64")
    vb = np.asarray(b, dtype="float64")
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def _scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    scores = np.zeros(len(matrix), dtype="float64")
    nonzero = norms > 0
    scores[nonzero] = dots[nonzero] / norms[nonzero]
    return scores


def rank(
    query: Sequence[float],
    candidates: Iterable[Tuple[str, Sequence[float]]],
    number: int = 10,
    skip_id: Optional[str] = None,
) -> List[Tuple[str, float]]:
    """Return the ``number`` best ``(id, score)`` pairs for ``query``.

    Results are sorted by descending score with ties broken by ascending id.
    ``skip_id`` is left out of the results when present.
    """
    if number <= 0:
        return []
    ids: List[str] = []
    rows: List[np.ndarray] = []
    for item_id, vector in candidates:
        if skip_id is not None and item_id == skip_id:
            continue
        ids.append(item_id)
        rows.append(np.asarray(vector, dtype="float64"))
    if not ids:
        return []

    query_vec = np.asarray(query, dtype="float64").reshape(-1)
    matrix = np.vstack(rows)
    if matrix.shape[1] != query_vec.shape[0]:
        raise ValueError(
            f"Query has {query_vec.shape[0]} dimensions, stored vectors have {matrix.shape[1]}"
        )
    scores = _scores(query_vec, matrix)
    ranked = sorted(zip(ids, scores.tolist()), key=lambda pair: (-pair[1], pair[0]))
    return ranked[:number]
