"""
Model Training Module

Handles train/test splitting and cross-validation orchestration.
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from sklearn.model_selection import KFold, train_test_split

from . import config
from .dataset import Dataset
from .evaluate import Evaluator
from .exceptions import ConfigurationError, UnsupportedOperation

logger = logging.getLogger(__name__)


class Fold(NamedTuple):
    """A (train, test) pair. Disjoint; their union is the split dataset."""
    train: Dataset
    test: Dataset


class KFoldSplitter:
    """
    Split ratings into `n_folds` nearly equal, disjoint groups.

    Fold i uses group i as test set and the remaining groups as training set.
    The assignment is a seeded shuffle, so the same seed and dataset always
    give the same folds.

    Example:
        >>> splitter = KFoldSplitter(5)
        >>> folds = list(splitter.split(dataset))
        >>> len(folds)
        5
    """

    def __init__(self, n_folds: int = config.CROSS_VALIDATION_CONFIG['n_folds'],
                 random_state: Optional[int] = config.CROSS_VALIDATION_CONFIG['random_state']):
        if isinstance(n_folds, bool) or not isinstance(n_folds, (int, np.integer)) or n_folds < 2:
            raise ConfigurationError(f"n_folds must be an integer >= 2, got {n_folds!r}")
        self.n_folds = int(n_folds)
        self.random_state = random_state

    def get_n_folds(self) -> int:
        return self.n_folds

    def split(self, dataset: Dataset, seed: Optional[int] = None) -> Iterator[Fold]:
        """
        Args:
            dataset: Ratings to split
            seed: Overrides the splitter's random_state

        Raises:
            ConfigurationError: If the dataset has fewer ratings than folds
        """
        if len(dataset) < self.n_folds:
            raise ConfigurationError(
                f"Cannot split {len(dataset)} ratings into {self.n_folds} folds"
            )
        kfold = KFold(n_splits=self.n_folds, shuffle=True,
                      random_state=self.random_state if seed is None else seed)
        positions = np.arange(len(dataset))
        return (Fold(dataset.subset(train_idx), dataset.subset(test_idx))
                for train_idx, test_idx in kfold.split(positions))


class RatioSplitter:
    """Single random hold-out split with `test_size` of the ratings as test set."""

    def __init__(self, test_size: float = 0.2,
                 random_state: Optional[int] = config.CROSS_VALIDATION_CONFIG['random_state']):
        if not 0.0 < test_size < 1.0:
            raise ConfigurationError(f"test_size must be in (0, 1), got {test_size}")
        self.test_size = test_size
        self.random_state = random_state

    def get_n_folds(self) -> int:
        return 1

    def split(self, dataset: Dataset, seed: Optional[int] = None) -> Iterator[Fold]:
        if len(dataset) < 2:
            raise ConfigurationError(f"Cannot hold out a test set from {len(dataset)} ratings")
        train_idx, test_idx = train_test_split(
            np.arange(len(dataset)),
            test_size=self.test_size,
            random_state=self.random_state if seed is None else seed,
        )
        return iter([Fold(dataset.subset(np.sort(train_idx)), dataset.subset(np.sort(test_idx)))])


def _check_evaluators(model, evaluators: Sequence[Evaluator]) -> None:
    if not evaluators:
        raise ConfigurationError("At least one evaluator is required")
    names = [evaluator.name for evaluator in evaluators]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate evaluator names: {duplicates}")
    for evaluator in evaluators:
        if evaluator.kind == 'regression' and not model.supports_predict:
            raise UnsupportedOperation(f"{type(model).__name__} cannot predict ratings for '{evaluator.name}'")
        if evaluator.kind == 'ranking' and not model.supports_rank:
            raise UnsupportedOperation(f"{type(model).__name__} cannot rank items for '{evaluator.name}'")


def _run_fold(model, fold_index: int, fold: Fold,
              evaluators: Sequence[Evaluator]) -> Tuple[int, Dict[str, float]]:
    start_time = time.time()
    fitted = model.clone().fit(fold.train)
    scores = {evaluator.name: evaluator(fitted, fold.test) for evaluator in evaluators}
    summary = ", ".join(f"{name}={value:.4f}" for name, value in scores.items())
    logger.info(f"Fold {fold_index + 1}: {summary} ({time.time() - start_time:.2f}s)")
    return fold_index, scores


def cross_validate(model, dataset: Dataset, evaluators: Sequence[Evaluator],
                   splitter=None, seed: Optional[int] = None,
                   n_jobs: Optional[int] = config.CROSS_VALIDATION_CONFIG['n_jobs']) -> Dict[str, List[float]]:
    """
    Cross-validate a model.

    For each fold a fresh clone of `model` is fitted on the training part and
    scored by every evaluator on the test part. Folds run on a bounded
    thread pool; scores are merged by fold index so the order never depends
    on completion order.

    Args:
        model: Unfitted (or template) model; never fitted itself
        dataset: Ratings to cross-validate on
        evaluators: Evaluators to apply to every fold
        splitter: Fold generator (default: KFoldSplitter with configured folds)
        seed: Overrides the splitter's random_state
        n_jobs: Worker threads (default: min(cpu count, number of folds))

    Returns:
        Mapping evaluator name -> one score per fold, in fold order

    Raises:
        ConfigurationError: Bad evaluators or an impossible split
        UnsupportedOperation: An evaluator needs a capability the model lacks
        FitError: Any fold failed to train; no partial results are returned

    Example:
        >>> results = cross_validate(SVD(), dataset, [RMSE, MAE], KFoldSplitter(5))
        >>> len(results['rmse'])
        5
    """
    _check_evaluators(model, evaluators)
    splitter = splitter if splitter is not None else KFoldSplitter()
    folds = list(splitter.split(dataset, seed))

    n_workers = n_jobs or os.cpu_count() or 1
    n_workers = max(1, min(n_workers, len(folds)))
    logger.info(f"Cross-validating {type(model).__name__} on {len(dataset)} ratings: "
                f"{len(folds)} folds, {n_workers} workers")

    results: Dict[int, Dict[str, float]] = {}
    if n_workers == 1:
        for fold_index, fold in enumerate(folds):
            index, scores = _run_fold(model, fold_index, fold, evaluators)
            results[index] = scores
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [executor.submit(_run_fold, model, fold_index, fold, evaluators)
                       for fold_index, fold in enumerate(folds)]
            try:
                for future in as_completed(futures):
                    index, scores = future.result()
                    results[index] = scores
            except Exception:
                for future in futures:
                    future.cancel()
                raise

    return {
        evaluator.name: [results[index][evaluator.name] for index in range(len(folds))]
        for evaluator in evaluators
    }


def summarize(results: Dict[str, List[float]]) -> Dict[str, Dict[str, float]]:
    """Mean and standard deviation of each score series."""
    return {
        name: {'mean': float(np.mean(scores)), 'std': float(np.std(scores))}
        for name, scores in results.items()
    }
