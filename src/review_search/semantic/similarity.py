"""Vector and path similarity helpers used by reranking."""

import os
from typing import Optional, Sequence

import numpy as np


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity clamped to [-1, 1]; 0.0 for missing, mismatched or zero vectors."""
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return 0.0

    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not np.isfinite(norm):
        return 0.0

    similarity = float(np.dot(va, vb) / norm)
    if not np.isfinite(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))


def path_similarity(path_a: Optional[str], path_b: Optional[str]) -> float:
    """Shared leading directories divided by the mean directory depth of both paths."""
    if not path_a or not path_b:
        return 0.0

    dirs_a = [part for part in os.path.dirname(path_a.replace("\\", "/")).split("/") if part]
    dirs_b = [part for part in os.path.dirname(path_b.replace("\\", "/")).split("/") if part]
    if not dirs_a and not dirs_b:
        return 1.0

    common = 0
    for part_a, part_b in zip(dirs_a, dirs_b):
        if part_a != part_b:
            break
        common += 1

    average_depth = (len(dirs_a) + len(dirs_b)) / 2
    return max(0.0, min(1.0, common / average_depth))
