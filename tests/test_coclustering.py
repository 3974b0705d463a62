"""
Tests for cf_engine.coclustering module
----------------------------------------
Covers:
- Cluster assignments and cluster means
- Prediction formula and its single-cluster special case
- Fallbacks for unknown users / items
- Training fit and determinism
"""

import numpy as np
import pytest

from cf_engine.coclustering import CoClustering


def _train_rmse(model, dataset):
    predictions = model.predict_many(zip(dataset.user_ids.tolist(), dataset.item_ids.tolist()))
    return np.sqrt(np.mean((predictions - dataset.values) ** 2))


class TestCoClustering:

    def test_assignments_in_range(self, small_dataset):
        model = CoClustering({'n_user_clusters': 4, 'n_item_clusters': 2}).fit(small_dataset)
        assert model.user_clusters.shape == (small_dataset.n_users,)
        assert model.item_clusters.shape == (small_dataset.n_items,)
        assert model.user_clusters.min() >= 0 and model.user_clusters.max() < 4
        assert model.item_clusters.min() >= 0 and model.item_clusters.max() < 2
        assert model.cocluster_means.shape == (4, 2)

    def test_single_cluster_is_mean_model(self, tiny_dataset):
        """With one cluster each: r̂ = mean_u + mean_i - μ"""
        model = CoClustering({'n_user_clusters': 1, 'n_item_clusters': 1}).fit(tiny_dataset)
        mu = tiny_dataset.global_mean
        # user 2 mean 3.0, item 20 mean 3.0
        assert model.predict(2, 20) == pytest.approx(3.0 + 3.0 - mu)

    def test_prediction_formula(self, small_dataset):
        model = CoClustering().fit(small_dataset)
        u, i = 3, 5
        uc, ic = model.user_clusters[u], model.item_clusters[i]
        expected = (model.user_means[u] + model.item_means[i]
                    - model.user_cluster_means[uc] - model.item_cluster_means[ic]
                    + model.cocluster_means[uc, ic])
        low, high = small_dataset.rating_scale
        assert model.predict(small_dataset.users[u], small_dataset.items[i]) == \
            pytest.approx(float(np.clip(expected, low, high)))

    def test_cluster_means_match_assignments(self, small_dataset):
        model = CoClustering().fit(small_dataset)
        uc = model.user_clusters[small_dataset.user_indices]
        for c in range(model.params['n_user_clusters']):
            members = small_dataset.values[uc == c]
            if len(members):
                assert model.user_cluster_means[c] == pytest.approx(members.mean())

    def test_unknown_user_gets_item_mean(self, tiny_dataset):
        model = CoClustering().fit(tiny_dataset)
        assert model.predict(99, 30) == pytest.approx(3.5)

    def test_unknown_item_gets_user_mean(self, tiny_dataset):
        model = CoClustering().fit(tiny_dataset)
        assert model.predict(1, 99) == pytest.approx(3.0)

    def test_fits_better_than_global_mean(self, small_dataset):
        model = CoClustering({'n_epochs': 30}).fit(small_dataset)
        assert _train_rmse(model, small_dataset) < np.std(small_dataset.values)

    def test_deterministic(self, small_dataset):
        a = CoClustering().fit(small_dataset)
        b = CoClustering().fit(small_dataset)
        np.testing.assert_array_equal(a.user_clusters, b.user_clusters)
        np.testing.assert_array_equal(a.item_clusters, b.item_clusters)
