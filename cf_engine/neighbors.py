"""
Neighborhood Models

- KNN: user-based or item-based k-nearest-neighbours with four
  aggregation modes (basic, centered, zscore, baseline)
- SlopeOne: weighted average of item-to-item rating deviations
"""

import logging
from typing import Any, Mapping, Optional

import numpy as np

from . import config
from .dataset import Dataset
from .model import Baseline, BaseModel
from .similarity import compute_similarity_matrix

logger = logging.getLogger(__name__)


class KNN(BaseModel):
    """
    k-nearest-neighbours rating prediction.

    With user_based=True the neighbours of (u, i) are the users who rated i,
    otherwise the items rated by u. Only the `k` most similar neighbours with
    a positive similarity and a non-empty overlap contribute:

    - basic:    r̂ = Σ s·r / Σ s
    - centered: r̂ = mean_x + Σ s·(r - mean_n) / Σ s
    - zscore:   r̂ = mean_x + std_x · Σ s·(r - mean_n)/std_n / Σ s
    - baseline: r̂ = b_ui + Σ s·(r - b_n) / Σ s, b from a fitted Baseline

    When no neighbour qualifies (or the user / item is unknown) the
    prediction is the global mean, or the baseline estimate in baseline mode.
    Equal similarities are broken by ascending inner index.
    """

    defaults = config.KNN_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        if self.params['mode'] == 'baseline':
            # Validate the nested parameters up front
            Baseline(self.params['baseline_params'])
        self.similarities: Optional[np.ndarray] = None
        self.overlaps: Optional[np.ndarray] = None
        self.means: Optional[np.ndarray] = None
        self.stds: Optional[np.ndarray] = None
        self.baseline: Optional[Baseline] = None

    def _fit(self, train_set: Dataset) -> None:
        p = self.params
        if p['user_based']:
            matrix = train_set.to_csr()
            self.means = np.asarray(train_set.user_means)
            counts = train_set.user_counts
            indices = train_set.user_indices
        else:
            matrix = train_set.to_csc().T.tocsr()
            self.means = np.asarray(train_set.item_means)
            counts = train_set.item_counts
            indices = train_set.item_indices

        deviations = (train_set.values - self.means[indices]) ** 2
        variances = np.bincount(indices, weights=deviations, minlength=len(counts)) / np.maximum(counts, 1)
        stds = np.sqrt(variances)
        self.stds = np.where(stds > 0, stds, 1.0)

        self.similarities, self.overlaps = compute_similarity_matrix(matrix, p['similarity'], p['shrinkage'])

        if p['mode'] == 'baseline':
            self.baseline = Baseline(p['baseline_params']).fit(train_set)
        else:
            self.baseline = None

    def _fallback(self, user_index, item_index) -> float:
        if self.baseline is not None:
            return self.baseline._estimate(user_index, item_index)
        return self.global_mean

    def _estimate(self, user_index, item_index):
        if user_index is None or item_index is None:
            return self._fallback(user_index, item_index)

        p = self.params
        if p['user_based']:
            target = user_index
            neighbors, ratings = self.train_set.item_column(item_index)
        else:
            target = item_index
            neighbors, ratings = self.train_set.user_row(user_index)

        sims = self.similarities[target, neighbors]
        qualified = (sims > 0) & (self.overlaps[target, neighbors] > 0) & (neighbors != target)
        if not qualified.any():
            return self._fallback(user_index, item_index)

        neighbors, ratings, sims = neighbors[qualified], ratings[qualified], sims[qualified]
        top = np.lexsort((neighbors, -sims))[:p['k']]
        neighbors, ratings, sims = neighbors[top], ratings[top], sims[top]

        mode = p['mode']
        if mode == 'basic':
            deviations = ratings
        elif mode == 'centered':
            deviations = ratings - self.means[neighbors]
        elif mode == 'zscore':
            deviations = (ratings - self.means[neighbors]) / self.stds[neighbors]
        elif p['user_based']:
            deviations = ratings - (self.global_mean + self.baseline.user_bias[neighbors]
                                    + self.baseline.item_bias[item_index])
        else:
            deviations = ratings - self.baseline._scores(user_index, neighbors)

        estimate = np.dot(sims, deviations) / np.sum(sims)

        if mode == 'centered':
            estimate += self.means[target]
        elif mode == 'zscore':
            estimate = self.means[target] + estimate * self.stds[target]
        elif mode == 'baseline':
            estimate += self.baseline._estimate(user_index, item_index)
        return estimate


class SlopeOne(BaseModel):
    """
    Weighted Slope One.

    dev_ij is the mean of r_ui - r_uj over users who rated both items and
    freq_ij their number. Then
        r̂_ui = Σ_j (r_uj + dev_ij) · freq_ij / Σ_j freq_ij
    over the items j rated by u. A user with no co-rated support gets their
    own mean; unknown users or items get the global mean.
    """

    defaults = config.SLOPE_ONE_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        self.deviations: Optional[np.ndarray] = None
        self.frequencies: Optional[np.ndarray] = None
        self.user_means: Optional[np.ndarray] = None

    def _fit(self, train_set: Dataset) -> None:
        ratings = train_set.to_csr()
        binary = train_set.binary_csr()

        self.frequencies = (binary.T @ binary).toarray()
        diff_sums = (ratings.T @ binary).toarray() - (binary.T @ ratings).toarray()
        self.deviations = np.divide(diff_sums, self.frequencies,
                                    out=np.zeros_like(diff_sums), where=self.frequencies > 0)
        np.fill_diagonal(self.frequencies, 0)
        self.user_means = np.asarray(train_set.user_means)
        self._ratings = ratings
        logger.debug(f"SlopeOne: {np.count_nonzero(self.frequencies)} co-rated item pairs")

    def _user_vector(self, user_index: int):
        start, end = self._ratings.indptr[user_index], self._ratings.indptr[user_index + 1]
        return self._ratings.indices[start:end], self._ratings.data[start:end]

    def _estimate(self, user_index, item_index):
        if user_index is None or item_index is None:
            return self.global_mean
        return float(self._scores(user_index, np.array([item_index]))[0])

    def _scores(self, user_index, item_indices):
        if user_index is None:
            return np.full(len(item_indices), self.global_mean)
        rated, values = self._user_vector(user_index)
        freq = self.frequencies[np.ix_(item_indices, rated)]
        dev = self.deviations[np.ix_(item_indices, rated)]
        weight = freq.sum(axis=1)
        num = ((dev + values[None, :]) * freq).sum(axis=1)
        return np.divide(num, weight, out=np.full(len(item_indices), self.user_means[user_index]),
                         where=weight > 0)
