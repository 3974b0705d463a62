"""
Tests for cf_engine.model module
---------------------------------
Covers:
- Parameter resolution (defaults, overrides, validation, immutability)
- fit() input checks, NotFittedError, get_params() / clone()
- predict() / rank() contract shared by every model
- Baseline bias estimation and convergence
- SVD (sgd + bpr), SVD++, NMF, WRMF specifics
- Divergence raises FitError
- Determinism for a fixed random_state
"""

import logging

import numpy as np
import pytest

from cf_engine.coclustering import CoClustering
from cf_engine.dataset import Dataset
from cf_engine.exceptions import ConfigurationError, FitError, NotFittedError, UnsupportedOperation
from cf_engine.model import NMF, SVD, WRMF, Baseline, ItemPop, SVDpp
from cf_engine.neighbors import KNN, SlopeOne

# -------------------------------------------------------------------
# Fixtures
# -------------------------------------------------------------------

PREDICTORS = {
    'baseline': lambda: Baseline(),
    'svd': lambda: SVD({'n_factors': 5, 'n_epochs': 10}),
    'svdpp': lambda: SVDpp({'n_factors': 5, 'n_epochs': 5}),
    'nmf': lambda: NMF({'n_factors': 3, 'n_epochs': 20}),
    'knn': lambda: KNN({'k': 10}),
    'slope_one': lambda: SlopeOne(),
    'coclustering': lambda: CoClustering(),
}

RANKERS = {
    **PREDICTORS,
    'svd_bpr': lambda: SVD({'optimizer': 'bpr', 'n_factors': 5, 'n_epochs': 5, 'lr': 0.05}),
    'wrmf': lambda: WRMF({'n_factors': 5, 'n_epochs': 3}),
    'item_pop': lambda: ItemPop(),
}


@pytest.fixture
def popularity_dataset():
    """Item 3 rated by 3 users, items 1 and 2 by 2, item 4 by 1."""
    return Dataset.from_ratings([
        (1, 3, 4.0), (2, 3, 5.0), (3, 3, 1.0),
        (1, 2, 3.0), (2, 2, 2.0),
        (2, 1, 4.0), (3, 1, 3.0),
        (3, 4, 5.0),
    ])


# -------------------------------------------------------------------
# Parameters
# -------------------------------------------------------------------

class TestParameters:

    def test_defaults(self):
        model = SVD()
        assert model.params['n_factors'] == 100
        assert model.params['lr'] == 0.005
        assert model.params['optimizer'] == 'sgd'

    def test_overrides_merge_with_defaults(self):
        model = SVD({'n_factors': 7})
        assert model.params['n_factors'] == 7
        assert model.params['reg'] == 0.02

    def test_unknown_parameter(self):
        with pytest.raises(ConfigurationError, match="unknown parameters"):
            SVD({'n_factor': 7})

    @pytest.mark.parametrize("params", [
        {'n_factors': 0},
        {'n_epochs': 2.5},
        {'lr': -0.1},
        {'reg': -1},
        {'optimizer': 'adam'},
    ])
    def test_invalid_values(self, params):
        with pytest.raises(ConfigurationError):
            SVD(params)

    def test_nmf_init_bounds(self):
        with pytest.raises(ConfigurationError, match="init_low"):
            NMF({'init_low': 1.0, 'init_high': 0.5})

    def test_params_are_immutable(self):
        model = Baseline()
        with pytest.raises(TypeError):
            model.params['reg_user'] = 0

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            Baseline({'n_epochs': 0})

    def test_get_params_and_clone(self, tiny_dataset):
        model = SVD({'n_factors': 3, 'n_epochs': 2}).fit(tiny_dataset)
        copy = model.clone()
        assert copy.get_params() == model.get_params()
        assert not copy.is_fitted
        assert copy is not model


# -------------------------------------------------------------------
# fit() contract
# -------------------------------------------------------------------

class TestFit:

    def test_requires_dataset(self):
        with pytest.raises(ConfigurationError):
            Baseline().fit([(1, 1, 5.0)])

    def test_rejects_empty_dataset(self):
        with pytest.raises(ConfigurationError):
            Baseline().fit(Dataset.from_ratings([]))

    def test_predict_before_fit(self):
        with pytest.raises(NotFittedError):
            Baseline().predict(1, 10)

    def test_rank_before_fit(self):
        with pytest.raises(NotFittedError):
            ItemPop().rank(1)

    def test_fit_returns_self_and_records_time(self, tiny_dataset):
        model = Baseline()
        assert model.fit(tiny_dataset) is model
        assert model.is_fitted
        assert model.fit_time >= 0

    @pytest.mark.parametrize("name", sorted(RANKERS))
    def test_fit_does_not_modify_dataset(self, small_dataset, name):
        before = small_dataset.to_dataframe().copy()
        RANKERS[name]().fit(small_dataset)
        assert small_dataset.to_dataframe().equals(before)


# -------------------------------------------------------------------
# Shared predict / rank contract
# -------------------------------------------------------------------

class TestPredictContract:

    @pytest.mark.parametrize("name", sorted(PREDICTORS))
    def test_predictions_finite_and_in_scale(self, small_split, name):
        train, test = small_split
        model = PREDICTORS[name]().fit(train)
        predictions = model.predict_many(zip(test.user_ids.tolist(), test.item_ids.tolist()))
        low, high = train.rating_scale
        assert np.all(np.isfinite(predictions))
        assert np.all((predictions >= low) & (predictions <= high))

    @pytest.mark.parametrize("name", sorted(PREDICTORS))
    def test_unknown_user_and_item(self, small_dataset, name):
        model = PREDICTORS[name]().fit(small_dataset)
        known_user = small_dataset.users[0]
        known_item = small_dataset.items[0]
        for user_id, item_id in [(-1, known_item), (known_user, -1), (-1, -1)]:
            assert np.isfinite(model.predict(user_id, item_id))
        assert model.predict(-1, -1) == pytest.approx(small_dataset.global_mean)

    @pytest.mark.parametrize("name", sorted(PREDICTORS))
    def test_deterministic(self, small_dataset, name):
        pairs = list(zip(small_dataset.user_ids[:50].tolist(), small_dataset.item_ids[:50].tolist()))
        first = PREDICTORS[name]().fit(small_dataset).predict_many(pairs)
        second = PREDICTORS[name]().fit(small_dataset).predict_many(pairs)
        np.testing.assert_array_equal(first, second)

    @pytest.mark.parametrize("model", [ItemPop(), WRMF({'n_factors': 2, 'n_epochs': 1}),
                                       SVD({'optimizer': 'bpr', 'n_factors': 2, 'n_epochs': 1})])
    def test_rank_only_models_refuse_predict(self, tiny_dataset, model):
        model.fit(tiny_dataset)
        with pytest.raises(UnsupportedOperation):
            model.predict(1, 10)

    def test_unsupported_operation_is_not_implemented_error(self, tiny_dataset):
        with pytest.raises(NotImplementedError):
            ItemPop().fit(tiny_dataset).predict(1, 10)


class TestRankContract:

    @pytest.mark.parametrize("name", sorted(RANKERS))
    def test_rank_excludes_seen_items(self, small_dataset, name):
        model = RANKERS[name]().fit(small_dataset)
        user_id = small_dataset.users[0]
        ranked = model.rank(user_id)
        seen = set(small_dataset.user_ratings(user_id))
        assert not seen & set(ranked)
        assert set(ranked) | seen == set(small_dataset.items.tolist())

    @pytest.mark.parametrize("name", sorted(RANKERS))
    def test_rank_unknown_user(self, small_dataset, name):
        ranked = RANKERS[name]().fit(small_dataset).rank(-1, n=5)
        assert len(ranked) == 5

    def test_rank_include_seen_and_n(self, tiny_dataset):
        model = Baseline().fit(tiny_dataset)
        assert len(model.rank(1, exclude_seen=False)) == 4
        assert len(model.rank(1, n=1)) == 1
        assert model.rank(1, candidates=[]) == []

    def test_unknown_candidates_rank_last(self, tiny_dataset):
        model = Baseline().fit(tiny_dataset)
        ranked = model.rank(2, candidates=[999, 20, 40, 998])
        assert ranked[2:] == [998, 999]

    def test_popularity_order(self, popularity_dataset):
        model = ItemPop().fit(popularity_dataset)
        assert model.rank(99) == [3, 1, 2, 4]

    def test_ties_break_by_ascending_item_id(self, tiny_dataset):
        # every item in tiny_dataset has two ratings
        model = ItemPop().fit(tiny_dataset)
        assert model.rank(99) == [10, 20, 30, 40]
        assert model.rank(99, candidates=[40, 30, 20, 10]) == [10, 20, 30, 40]


# -------------------------------------------------------------------
# Baseline
# -------------------------------------------------------------------

class TestBaseline:

    def test_single_pass_biases(self, tiny_dataset):
        """One unregularized pass: user biases first, then item biases."""
        model = Baseline({'reg_user': 0, 'reg_item': 0, 'n_epochs': 1}).fit(tiny_dataset)
        mu = 27.0 / 8
        assert model.user_bias[0] == pytest.approx(3.0 - mu)
        assert model.user_bias[1] == pytest.approx(3.0 - mu)
        # item 10: ratings 5 (user 1) and 4 (user 2)
        assert model.item_bias[0] == pytest.approx(((5 - 3.0) + (4 - 3.0)) / 2)

    def test_regularization_shrinks_biases(self, small_dataset):
        loose = Baseline({'reg_user': 0, 'reg_item': 0}).fit(small_dataset)
        tight = Baseline({'reg_user': 100, 'reg_item': 100}).fit(small_dataset)
        assert np.abs(tight.item_bias).sum() < np.abs(loose.item_bias).sum()

    def test_converges(self, small_dataset):
        model = Baseline({'n_epochs': 500}).fit(small_dataset)
        assert model.converged
        assert model.n_epochs_run < 500

    def test_require_convergence(self, small_dataset):
        with pytest.raises(FitError) as excinfo:
            Baseline({'n_epochs': 1, 'tolerance': 0.0, 'require_convergence': True}).fit(small_dataset)
        assert excinfo.value.model_name == 'Baseline'
        assert excinfo.value.epoch == 0

    def test_unknown_user_uses_item_bias(self, tiny_dataset):
        model = Baseline().fit(tiny_dataset)
        expected = model.global_mean + model.item_bias[tiny_dataset.item_inner_id(10)]
        assert model.predict(99, 10) == pytest.approx(expected)


# -------------------------------------------------------------------
# Latent-factor models
# -------------------------------------------------------------------

class TestSVD:

    def test_training_reduces_error(self, small_dataset):
        model = SVD({'n_factors': 10, 'n_epochs': 30, 'lr': 0.01}).fit(small_dataset)
        history = [h['train_rmse'] for h in model.training_history]
        assert len(history) == 30
        assert history[-1] < history[0]

    def test_factor_shapes(self, small_dataset):
        model = SVD({'n_factors': 4, 'n_epochs': 1}).fit(small_dataset)
        assert model.user_factors.shape == (small_dataset.n_users, 4)
        assert model.item_factors.shape == (small_dataset.n_items, 4)

    @pytest.mark.filterwarnings("ignore::RuntimeWarning")
    def test_divergence_raises_fit_error(self, small_dataset):
        model = SVD({'n_factors': 5, 'n_epochs': 20, 'lr': 1000.0})
        with pytest.raises(FitError) as excinfo:
            model.fit(small_dataset)
        assert excinfo.value.model_name == 'SVD'
        assert not model.is_fitted

    @pytest.mark.filterwarnings("ignore::RuntimeWarning")
    def test_fit_error_is_arithmetic_error(self, small_dataset):
        with pytest.raises(ArithmeticError):
            SVD({'n_factors': 5, 'n_epochs': 20, 'lr': 1000.0}).fit(small_dataset)

    def test_different_seeds_differ(self, small_dataset):
        a = SVD({'n_factors': 5, 'n_epochs': 2, 'random_state': 1}).fit(small_dataset)
        b = SVD({'n_factors': 5, 'n_epochs': 2, 'random_state': 2}).fit(small_dataset)
        assert not np.allclose(a.user_factors, b.user_factors)


class TestSVDBPR:

    def test_positive_items_score_above_negatives(self, small_dataset):
        model = SVD({'optimizer': 'bpr', 'n_factors': 10, 'n_epochs': 40,
                     'lr': 0.05, 'reg': 0.01}).fit(small_dataset)
        wins = []
        for user_index in range(small_dataset.n_users):
            rated, _ = small_dataset.user_row(user_index)
            unrated = np.setdiff1d(np.arange(small_dataset.n_items), rated)
            if len(rated) == 0 or len(unrated) == 0:
                continue
            scores = model._scores(user_index, np.arange(small_dataset.n_items))
            wins.append(scores[rated].mean() > scores[unrated].mean())
        assert np.mean(wins) > 0.7

    def test_history_records_loss(self, small_dataset):
        model = SVD({'optimizer': 'bpr', 'n_factors': 3, 'n_epochs': 2}).fit(small_dataset)
        assert [h['epoch'] for h in model.training_history] == [1, 2]
        assert all('bpr_loss' in h for h in model.training_history)

    def test_user_who_rated_everything(self):
        data = Dataset.from_ratings([(1, 1, 5.0), (1, 2, 4.0), (2, 1, 3.0)])
        model = SVD({'optimizer': 'bpr', 'n_factors': 2, 'n_epochs': 3}).fit(data)
        assert model.rank(1) == []
        assert model.rank(2) == [2]


class TestSVDpp:

    def test_implicit_term_cached_per_user(self, small_dataset):
        model = SVDpp({'n_factors': 4, 'n_epochs': 2}).fit(small_dataset)
        assert model._user_implicit.shape == (small_dataset.n_users, 4)
        rated, _ = small_dataset.user_row(0)
        expected = model.implicit_factors[rated].sum(axis=0) / np.sqrt(len(rated))
        np.testing.assert_allclose(model._user_implicit[0], expected)

    def test_differs_from_svd(self, small_dataset):
        pairs = [(small_dataset.users[0], small_dataset.items[0])]
        svd = SVD({'n_factors': 4, 'n_epochs': 5}).fit(small_dataset).predict_many(pairs)
        svdpp = SVDpp({'n_factors': 4, 'n_epochs': 5}).fit(small_dataset).predict_many(pairs)
        assert svd[0] != svdpp[0]


class TestNMF:

    def test_factors_stay_non_negative(self, small_dataset):
        model = NMF({'n_factors': 4, 'n_epochs': 30}).fit(small_dataset)
        assert np.all(model.user_factors >= 0)
        assert np.all(model.item_factors >= 0)

    def test_fits_training_data(self, small_dataset):
        model = NMF({'n_factors': 5, 'n_epochs': 100}).fit(small_dataset)
        predictions = model.predict_many(zip(small_dataset.user_ids.tolist(), small_dataset.item_ids.tolist()))
        rmse = np.sqrt(np.mean((predictions - small_dataset.values) ** 2))
        # better than predicting a constant
        assert rmse < np.std(small_dataset.values)

    def test_unknown_falls_back_to_global_mean(self, small_dataset):
        model = NMF({'n_factors': 2, 'n_epochs': 2}).fit(small_dataset)
        assert model.predict(-1, small_dataset.items[0]) == pytest.approx(small_dataset.global_mean)


class TestWRMF:

    def test_rated_items_rank_high(self, small_dataset):
        model = WRMF({'n_factors': 8, 'n_epochs': 5, 'alpha': 10.0}).fit(small_dataset)
        user_index = 0
        rated, _ = small_dataset.user_row(user_index)
        scores = model._scores(user_index, np.arange(small_dataset.n_items))
        unrated = np.setdiff1d(np.arange(small_dataset.n_items), rated)
        assert scores[rated].mean() > scores[unrated].mean()

    def test_singular_system_raises_fit_error(self, small_dataset, mocker):
        mocker.patch('cf_engine.model.np.linalg.solve', side_effect=np.linalg.LinAlgError("singular"))
        with pytest.raises(FitError, match="singular"):
            WRMF({'n_factors': 2, 'n_epochs': 1}).fit(small_dataset)

    def test_item_factors_solve_full_weighted_system(self, small_dataset):
        params = {'n_factors': 4, 'n_epochs': 2, 'alpha': 2.0, 'reg': 0.1}
        model = WRMF(params).fit(small_dataset)
        X, Y = model.user_factors, model.item_factors

        # Last half-epoch: every item row solves the dense system over all users
        dense = small_dataset.to_csr().toarray()
        preference = (dense != 0).astype(np.float64)
        confidence = 1.0 + params['alpha'] * dense
        for item_index in range(small_dataset.n_items):
            c = confidence[:, item_index]
            lhs = X.T @ (c[:, None] * X) + params['reg'] * np.eye(4)
            rhs = X.T @ (c * preference[:, item_index])
            np.testing.assert_allclose(Y[item_index], np.linalg.solve(lhs, rhs), rtol=1e-6, atol=1e-9)


def test_non_finite_estimate_logs_warning(tiny_dataset, mocker, caplog):
    model = Baseline().fit(tiny_dataset)
    mocker.patch.object(model, '_estimate', return_value=float('nan'))
    with caplog.at_level(logging.WARNING, logger='cf_engine.model'):
        prediction = model.predict(1, 10)
    assert prediction == pytest.approx(tiny_dataset.global_mean)
    assert "non-finite estimate" in caplog.text
