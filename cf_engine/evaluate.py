"""
Model Evaluation Module

Provides evaluation metrics for fitted models against a test dataset:
- RMSE (Root Mean Squared Error)
- MAE (Mean Absolute Error)
- Precision@K
- Recall@K
- MAP (Mean Average Precision)
- NDCG (Normalized Discounted Cumulative Gain)
- MRR (Mean Reciprocal Rank)

Every evaluator is a pure function of (fitted model, test dataset), so the
same fold may be scored concurrently.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Set

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error

from .config import UNBOUNDED_K
from .dataset import Dataset
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Ranked-list metrics for a single user
# ----------------------------------------------------------------------

def precision_at_k(relevant: Set, ranked: Sequence, k: int = 10) -> float:
    """
    Precision@K: fraction of the first K ranked items that are relevant

    Args:
        relevant: Set of relevant item IDs
        ranked: Item IDs ordered by score
        k: Cutoff

    Returns:
        Precision@K in [0, 1]
    """
    top = list(ranked[:k])
    if not top or not relevant:
        return 0.0
    return len(relevant.intersection(top)) / len(top)


def recall_at_k(relevant: Set, ranked: Sequence, k: int = 10) -> float:
    """Recall@K: fraction of relevant items found in the first K"""
    if not relevant:
        return 0.0
    return len(relevant.intersection(ranked[:k])) / len(relevant)


def average_precision_at_k(relevant: Set, ranked: Sequence, k: int = 10) -> float:
    """AP@K: mean of precision at each hit, over min(|relevant|, K)"""
    if not relevant:
        return 0.0
    hits = 0
    total = 0.0
    for pos, item in enumerate(ranked[:k]):
        if item in relevant:
            hits += 1
            total += hits / (pos + 1)
    return total / min(len(relevant), k)


def ndcg_at_k(relevant: Set, ranked: Sequence, k: int = 10) -> float:
    """
    NDCG@K with binary relevance

    DCG = Σ_{hits} 1 / log2(rank + 1), normalised by the DCG of an ideal list
    holding every relevant item first.
    """
    if not relevant:
        return 0.0
    top = list(ranked[:k])
    dcg = sum(1.0 / np.log2(pos + 2) for pos, item in enumerate(top) if item in relevant)
    ideal = sum(1.0 / np.log2(pos + 2) for pos in range(min(len(relevant), k)))
    return dcg / ideal if ideal > 0 else 0.0


def reciprocal_rank_at_k(relevant: Set, ranked: Sequence, k: int = 10) -> float:
    """1 / rank of the first relevant item within the first K, or 0"""
    for pos, item in enumerate(ranked[:k]):
        if item in relevant:
            return 1.0 / (pos + 1)
    return 0.0


# ----------------------------------------------------------------------
# Model-level evaluators
# ----------------------------------------------------------------------

def evaluate_rmse(model, test_set: Dataset) -> float:
    """
    Calculate Root Mean Squared Error on a test set.

    Metric: How accurately the model predicts ratings
    Operationalization: RMSE = sqrt(mean((predicted - actual)^2))

    Returns:
        RMSE value (lower is better), NaN for an empty test set
    """
    if len(test_set) == 0:
        return float('nan')
    predictions = model.predict_many(zip(test_set.user_ids.tolist(), test_set.item_ids.tolist()))
    return float(np.sqrt(mean_squared_error(test_set.values, predictions)))


def evaluate_mae(model, test_set: Dataset) -> float:
    """Mean Absolute Error on a test set (lower is better)."""
    if len(test_set) == 0:
        return float('nan')
    predictions = model.predict_many(zip(test_set.user_ids.tolist(), test_set.item_ids.tolist()))
    return float(mean_absolute_error(test_set.values, predictions))


def evaluate_ranking(model, test_set: Dataset, metric: Callable[[Set, Sequence, int], float],
                     k: int = 10) -> float:
    """
    Average a ranked-list metric over the users of a test set.

    Candidates are every item known to the model or present in the test set;
    items the user rated in training are excluded. The relevant set of a user
    is every item they rated in the test set.

    Returns:
        Mean metric across test users (0.0 for an empty test set)
    """
    if len(test_set) == 0:
        return 0.0
    candidates = sorted(set(model.train_set.items.tolist()) | set(test_set.items.tolist()))

    scores: List[float] = []
    for user_index, user_id in enumerate(test_set.users.tolist()):
        item_indices, _ = test_set.user_row(user_index)
        relevant = set(test_set.items[item_indices].tolist())
        ranked = model.rank(user_id, candidates, n=k, exclude_seen=True)
        scores.append(metric(relevant, ranked, k))

    return float(np.mean(scores))


@dataclass(frozen=True)
class Evaluator:
    """A named metric: evaluator(model, test_set) -> float."""
    name: str
    kind: str  # 'regression' or 'ranking'
    func: Callable[..., float]
    k: int = UNBOUNDED_K

    def __call__(self, model, test_set: Dataset) -> float:
        if self.kind == 'regression':
            return self.func(model, test_set)
        return evaluate_ranking(model, test_set, self.func, self.k)


def _ranking_evaluator(label: str, func: Callable, k: int) -> Evaluator:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise ConfigurationError(f"k must be a positive integer, got {k!r}")
    name = label if k >= UNBOUNDED_K else f"{label}@{k}"
    return Evaluator(name=name, kind='ranking', func=func, k=int(k))


RMSE = Evaluator(name='rmse', kind='regression', func=evaluate_rmse)
MAE = Evaluator(name='mae', kind='regression', func=evaluate_mae)


def Precision(k: int = UNBOUNDED_K) -> Evaluator:
    return _ranking_evaluator('precision', precision_at_k, k)


def Recall(k: int = UNBOUNDED_K) -> Evaluator:
    return _ranking_evaluator('recall', recall_at_k, k)


def MAP(k: int = UNBOUNDED_K) -> Evaluator:
    return _ranking_evaluator('map', average_precision_at_k, k)


def NDCG(k: int = UNBOUNDED_K) -> Evaluator:
    return _ranking_evaluator('ndcg', ndcg_at_k, k)


def MRR(k: int = UNBOUNDED_K) -> Evaluator:
    return _ranking_evaluator('mrr', reciprocal_rank_at_k, k)


def evaluate_model(model, test_set: Dataset, evaluators: Sequence[Evaluator]) -> Dict[str, float]:
    """
    Score one fitted model with several evaluators.

    Example:
        >>> report = evaluate_model(model, test_set, [RMSE, MAE, Precision(5)])
        >>> sorted(report)
        ['mae', 'precision@5', 'rmse']
    """
    report = {}
    for evaluator in evaluators:
        report[evaluator.name] = evaluator(model, test_set)
        logger.debug(f"{evaluator.name}: {report[evaluator.name]:.4f}")
    return report
