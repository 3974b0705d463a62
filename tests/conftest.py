"""
Pytest configuration and shared fixtures

This file contains fixtures that are available to all test files.
"""

import os
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from cf_engine.data_io import SQLiteStorage
from cf_engine.dataset import Dataset

# ---------------------------------------------------
# Rating fixtures
# ---------------------------------------------------

@pytest.fixture
def tiny_ratings():
    """
    Tiny rating triples (3 users, 4 items) for unit tests

        item:   10  20  30  40
        user 1:  5   3   .   1
        user 2:  4   .   2   .
        user 3:  .   3   5   4
    """
    return [
        (1, 10, 5.0), (1, 20, 3.0), (1, 40, 1.0),
        (2, 10, 4.0), (2, 30, 2.0),
        (3, 20, 3.0), (3, 30, 5.0), (3, 40, 4.0),
    ]


@pytest.fixture
def tiny_dataset(tiny_ratings):
    return Dataset.from_ratings(tiny_ratings)


@pytest.fixture
def tiny_ratings_df(tiny_ratings):
    return pd.DataFrame(tiny_ratings, columns=['user_id', 'item_id', 'rating'])


@pytest.fixture(scope="session")
def small_dataset():
    """
    Synthetic dataset with latent structure: 40 users, 30 items, ~40% density,
    integer ratings 1-5. Non-contiguous IDs.
    """
    rng = np.random.RandomState(7)
    n_users, n_items = 40, 30
    user_taste = rng.normal(0, 1, (n_users, 2))
    item_traits = rng.normal(0, 1, (n_items, 2))
    scores = 3.0 + user_taste @ item_traits.T + rng.normal(0, 0.5, (n_users, n_items))
    mask = rng.random_sample((n_users, n_items)) < 0.4

    users, items = np.nonzero(mask)
    values = np.clip(np.rint(scores[users, items]), 1, 5)
    return Dataset(users * 3 + 100, items * 7 + 1000, values)


@pytest.fixture(scope="session")
def small_split(small_dataset):
    """(train, test) hold-out of small_dataset"""
    from cf_engine.train import RatioSplitter
    (fold,) = list(RatioSplitter(0.2, random_state=0).split(small_dataset))
    return fold.train, fold.test

# ---------------------------------------------------
# Storage fixtures
# ---------------------------------------------------

@pytest.fixture
def storage(tmp_path):
    """Initialized SQLite storage in a temporary directory."""
    store = SQLiteStorage(tmp_path / "db" / "test.db")
    store.init()
    return store


@pytest.fixture
def ratings_csv(tmp_path, tiny_ratings):
    """Tab-separated ratings file without header (MovieLens u.data layout)."""
    path = tmp_path / "u.data"
    lines = [f"{u}\t{i}\t{int(r)}\t881250949" for u, i, r in tiny_ratings]
    path.write_text("\n".join(lines) + "\n")
    return path

# ---------------------------------------------------
# Benchmark data
# ---------------------------------------------------

@pytest.fixture(scope="session")
def ml100k_path():
    """Path to ml-100k u.data from CF_ENGINE_ML100K, or skip."""
    path = os.getenv("CF_ENGINE_ML100K")
    if not path or not Path(path).exists():
        pytest.skip("Set CF_ENGINE_ML100K to the ml-100k u.data file to run benchmarks")
    return Path(path)
