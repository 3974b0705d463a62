"""
Co-Clustering Model

Users and items are assigned to clusters jointly. Prediction:
    r̂_ui = mean_u + mean_i - mean(C_u) - mean(C_i) + mean(C_u, C_i)

Where:
- mean_u, mean_i = user and item mean ratings
- C_u, C_i = user and item clusters
- mean(C_u, C_i) = mean rating of the co-cluster cell
"""

import logging
from typing import Any, Mapping, Optional, Tuple

import numpy as np

from . import config
from .dataset import Dataset
from .model import BaseModel

logger = logging.getLogger(__name__)


class CoClustering(BaseModel):
    """
    Co-clustering by iterative relocation.

    Every epoch recomputes cluster means, then moves each user, and after
    them each item, to the cluster that minimises its squared prediction
    error. Training stops early once no assignment changes. Empty clusters
    take the global mean. Unknown users fall back to the item mean, unknown
    items to the user mean, and both unknown to the global mean.
    """

    defaults = config.COCLUSTERING_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        self.user_clusters: Optional[np.ndarray] = None
        self.item_clusters: Optional[np.ndarray] = None
        self.user_cluster_means: Optional[np.ndarray] = None
        self.item_cluster_means: Optional[np.ndarray] = None
        self.cocluster_means: Optional[np.ndarray] = None
        self.user_means: Optional[np.ndarray] = None
        self.item_means: Optional[np.ndarray] = None

    def _cluster_means(self, train_set: Dataset, user_clusters: np.ndarray,
                       item_clusters: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        n_uc, n_ic = self.params['n_user_clusters'], self.params['n_item_clusters']
        ratings = train_set.values
        uc = user_clusters[train_set.user_indices]
        ic = item_clusters[train_set.item_indices]
        cells = uc * n_ic + ic

        def means(keys, size):
            counts = np.bincount(keys, minlength=size)
            sums = np.bincount(keys, weights=ratings, minlength=size)
            return np.divide(sums, counts, out=np.full(size, train_set.global_mean), where=counts > 0)

        return means(uc, n_uc), means(ic, n_ic), means(cells, n_uc * n_ic).reshape(n_uc, n_ic)

    def _fit(self, train_set: Dataset) -> None:
        p = self.params
        rng = np.random.RandomState(p['random_state'])
        n_uc, n_ic = p['n_user_clusters'], p['n_item_clusters']

        users, items, ratings = train_set.user_indices, train_set.item_indices, train_set.values
        user_means = np.asarray(train_set.user_means)
        item_means = np.asarray(train_set.item_means)

        user_clusters = rng.randint(0, n_uc, size=train_set.n_users)
        item_clusters = rng.randint(0, n_ic, size=train_set.n_items)

        for epoch in range(p['n_epochs']):
            uc_means, ic_means, cc_means = self._cluster_means(train_set, user_clusters, item_clusters)

            # Relocate users
            ic = item_clusters[items]
            base = user_means[users] + item_means[items] - ic_means[ic]
            estimates = base[:, None] - uc_means[None, :] + cc_means[:, ic].T
            errors = (ratings[:, None] - estimates) ** 2
            costs = np.column_stack([
                np.bincount(users, weights=errors[:, c], minlength=train_set.n_users) for c in range(n_uc)
            ])
            new_user_clusters = np.argmin(costs, axis=1)

            # Relocate items
            uc = new_user_clusters[users]
            base = user_means[users] + item_means[items] - uc_means[uc]
            estimates = base[:, None] - ic_means[None, :] + cc_means[uc, :]
            errors = (ratings[:, None] - estimates) ** 2
            costs = np.column_stack([
                np.bincount(items, weights=errors[:, c], minlength=train_set.n_items) for c in range(n_ic)
            ])
            new_item_clusters = np.argmin(costs, axis=1)

            moved = int(np.sum(new_user_clusters != user_clusters) + np.sum(new_item_clusters != item_clusters))
            user_clusters, item_clusters = new_user_clusters, new_item_clusters
            logger.debug(f"CoClustering epoch {epoch + 1}/{p['n_epochs']}: {moved} relocations")
            if moved == 0:
                break

        self.user_clusters = user_clusters
        self.item_clusters = item_clusters
        self.user_cluster_means, self.item_cluster_means, self.cocluster_means = \
            self._cluster_means(train_set, user_clusters, item_clusters)
        self._check_finite(epoch, cocluster_means=self.cocluster_means)
        self.user_means = user_means
        self.item_means = item_means

    def _estimate(self, user_index, item_index):
        if user_index is None and item_index is None:
            return self.global_mean
        if user_index is None:
            return self.item_means[item_index]
        if item_index is None:
            return self.user_means[user_index]
        return float(self._scores(user_index, np.array([item_index]))[0])

    def _scores(self, user_index, item_indices):
        if user_index is None:
            return self.item_means[item_indices]
        uc = self.user_clusters[user_index]
        ic = self.item_clusters[item_indices]
        return (self.user_means[user_index] + self.item_means[item_indices]
                - self.user_cluster_means[uc] - self.item_cluster_means[ic]
                + self.cocluster_means[uc, ic])
