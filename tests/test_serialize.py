"""
Tests for cf_engine.serialize module
-------------------------------------
Covers:
- save_model()
- load_model()
- get_model_size()
- verify_model_integrity()
"""

import numpy as np
import pytest

from cf_engine import serialize
from cf_engine.exceptions import NotFittedError
from cf_engine.model import SVD, ItemPop
from cf_engine.neighbors import KNN


# -------------------------------------------------------------------
# Tests for saving and loading models
# -------------------------------------------------------------------

class TestSaveLoadModel:
    """Tests for save_model(), load_model(), get_model_size()"""

    def test_save_model(self, tmp_path, tiny_dataset):
        """Saving a model should create a pickle file, creating parent directories."""
        model_path = tmp_path / "models" / "model.pkl"
        serialize.save_model(SVD({'n_factors': 2, 'n_epochs': 2}).fit(tiny_dataset), model_path)
        assert model_path.exists()
        assert model_path.stat().st_size > 0

    def test_refuses_unfitted_model(self, tmp_path):
        with pytest.raises(NotFittedError):
            serialize.save_model(SVD(), tmp_path / "model.pkl")

    @pytest.mark.parametrize("model", [
        SVD({'n_factors': 3, 'n_epochs': 3}),
        KNN({'mode': 'baseline'}),
    ])
    def test_round_trip_predictions(self, tmp_path, small_dataset, model):
        model.fit(small_dataset)
        model_path = tmp_path / "model.pkl"
        serialize.save_model(model, model_path)
        loaded = serialize.load_model(model_path)

        pairs = list(zip(small_dataset.user_ids[:20].tolist(), small_dataset.item_ids[:20].tolist()))
        np.testing.assert_array_equal(loaded.predict_many(pairs), model.predict_many(pairs))
        assert loaded.get_params() == model.get_params()

    def test_loaded_params_stay_read_only(self, tmp_path, tiny_dataset):
        model_path = tmp_path / "model.pkl"
        serialize.save_model(ItemPop().fit(tiny_dataset), model_path)
        loaded = serialize.load_model(model_path)
        with pytest.raises(TypeError):
            loaded.params['x'] = 1
        assert loaded.rank(99) == [10, 20, 30, 40]

    def test_load_model_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            serialize.load_model(tmp_path / "missing.pkl")

    def test_get_model_size(self, tmp_path, tiny_dataset):
        model_path = tmp_path / "model.pkl"
        serialize.save_model(ItemPop().fit(tiny_dataset), model_path)
        size_mb = serialize.get_model_size(model_path)
        assert size_mb == pytest.approx(model_path.stat().st_size / 1024 ** 2)

    def test_get_model_size_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            serialize.get_model_size(tmp_path / "missing.pkl")


# -------------------------------------------------------------------
# Tests for verify_model_integrity()
# -------------------------------------------------------------------

class TestVerifyModelIntegrity:

    def test_valid_model(self, tmp_path, tiny_dataset):
        model_path = tmp_path / "model.pkl"
        serialize.save_model(ItemPop().fit(tiny_dataset), model_path)
        assert serialize.verify_model_integrity(model_path) is True

    def test_corrupted_file(self, tmp_path):
        model_path = tmp_path / "model.pkl"
        model_path.write_bytes(b"not a pickle")
        assert serialize.verify_model_integrity(model_path) is False

    def test_missing_file(self, tmp_path):
        assert serialize.verify_model_integrity(tmp_path / "missing.pkl") is False
