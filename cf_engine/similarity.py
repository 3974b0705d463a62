"""
Similarity Module

Pairwise similarity between the rows of a sparse rating matrix (users, or
items when the matrix is transposed), computed over co-rated entries only:
- cosine
- MSD (1 / (1 + mean squared difference))
- Pearson correlation

Shrinkage divides a raw similarity by 1 + shrinkage / overlap, so estimates
backed by few co-ratings are pulled towards zero.
"""

import logging
from typing import Dict, Tuple

import numpy as np
from scipy.sparse import csr_matrix

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SIMILARITIES = ('cosine', 'msd', 'pearson')


def shrink(similarity, overlap, shrinkage: float):
    """
    Apply shrinkage to a similarity (scalar or array).

    Args:
        similarity: Raw similarity
        overlap: Number of co-rated entries behind it
        shrinkage: Shrinkage constant (>= 0)

    Returns:
        similarity / (1 + shrinkage / overlap), or 0 where overlap is 0

    Example:
        >>> shrink(0.8, 10, 10)
        0.4
    """
    if shrinkage < 0:
        raise ConfigurationError(f"shrinkage must be >= 0, got {shrinkage}")
    similarity = np.asarray(similarity, dtype=np.float64)
    overlap = np.asarray(overlap, dtype=np.float64)
    with np.errstate(divide='ignore', invalid='ignore'):
        shrunk = np.where(overlap > 0, similarity * overlap / (overlap + shrinkage), 0.0)
    return float(shrunk) if shrunk.ndim == 0 else shrunk


def _safe_divide(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    out = np.zeros_like(num, dtype=np.float64)
    np.divide(num, den, out=out, where=den > 1e-12)
    return out


def compute_similarity_matrix(matrix: csr_matrix, kind: str = 'msd',
                              shrinkage: float = 0.0) -> Tuple[np.ndarray, np.ndarray]:
    """
    Similarity between all rows of a sparse rating matrix.

    Args:
        matrix: (n_entities, n_features) ratings, explicit entries only
        kind: 'cosine', 'msd' or 'pearson'
        shrinkage: Shrinkage constant

    Returns:
        Tuple of (similarity, overlap), both dense (n_entities, n_entities).
        Pairs without co-rated entries have similarity 0.
    """
    if kind not in SIMILARITIES:
        raise ConfigurationError(f"Unknown similarity '{kind}'. Choose from {SIMILARITIES}")

    values = csr_matrix(matrix, dtype=np.float64)
    binary = values.copy()
    binary.data = np.ones_like(binary.data)
    squares = values.multiply(values).tocsr()

    overlap = (binary @ binary.T).toarray()
    products = (values @ values.T).toarray()
    # sum over co-rated entries of row a's squared values: [a, b]
    sq_sums = (squares @ binary.T).toarray()

    if kind == 'cosine':
        sim = _safe_divide(products, np.sqrt(sq_sums * sq_sums.T))
    elif kind == 'msd':
        sq_diff = sq_sums + sq_sums.T - 2.0 * products
        msd = _safe_divide(np.maximum(sq_diff, 0.0), overlap)
        sim = np.where(overlap > 0, 1.0 / (msd + 1.0), 0.0)
    else:
        sums = (values @ binary.T).toarray()
        mean_term = _safe_divide(sums * sums.T, overlap)
        cov = products - mean_term
        var_a = sq_sums - _safe_divide(sums * sums, overlap)
        # Round-off residue of a constant co-rated vector counts as zero variance
        var_a[var_a < 1e-10 * np.maximum(sq_sums, 1.0)] = 0.0
        sim = _safe_divide(cov, np.sqrt(var_a * var_a.T))

    if shrinkage != 0:
        sim = shrink(sim, overlap, shrinkage)

    logger.debug(f"Computed {kind} similarity for {sim.shape[0]} entities (shrinkage={shrinkage})")
    return sim, overlap


# ----------------------------------------------------------------------
# Per-pair helpers over {key: value} vectors
# ----------------------------------------------------------------------

def _co_rated(a: Dict, b: Dict) -> Tuple[np.ndarray, np.ndarray]:
    common = sorted(set(a) & set(b))
    return np.array([a[k] for k in common], dtype=np.float64), np.array([b[k] for k in common], dtype=np.float64)


def cosine(a: Dict, b: Dict) -> float:
    x, y = _co_rated(a, b)
    den = np.sqrt(np.sum(x * x) * np.sum(y * y))
    return float(np.sum(x * y) / den) if len(x) and den > 1e-12 else 0.0


def msd(a: Dict, b: Dict) -> float:
    x, y = _co_rated(a, b)
    if not len(x):
        return 0.0
    return float(1.0 / (np.mean((x - y) ** 2) + 1.0))


def pearson(a: Dict, b: Dict) -> float:
    x, y = _co_rated(a, b)
    if not len(x):
        return 0.0
    dx, dy = x - x.mean(), y - y.mean()
    den = np.sqrt(np.sum(dx * dx) * np.sum(dy * dy))
    return float(np.sum(dx * dy) / den) if den > 1e-12 else 0.0
