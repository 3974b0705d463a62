"""
Rating Dataset Module

Immutable in-memory index over (user, item, rating) observations:
- Raw ID <-> inner index mappings (inner indices follow ascending raw ID)
- Sparse user-item matrices (CSR by user, CSC by item)
- Global mean and per-user / per-item counts and means

"""

from typing import Any, Dict, Iterable, Iterator, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csc_matrix, csr_matrix

from .exceptions import ConfigurationError


class Rating(NamedTuple):
    """A single observation. Immutable once recorded."""
    user_id: Any
    item_id: Any
    value: float


def _freeze(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


class Dataset:
    """
    Read-only collection of ratings plus derived indices.

    Every rating appears exactly once in the user index (CSR rows) and once in
    the item index (CSC columns). Duplicate (user, item) pairs keep the last
    value seen.

    Example:
        >>> data = Dataset.from_ratings([(1, 10, 5.0), (1, 20, 3.0), (2, 10, 4.0)])
        >>> data.n_users, data.n_items, data.global_mean
        (2, 2, 4.0)
        >>> data.user_ratings(1)
        {10: 5.0, 20: 3.0}
    """

    def __init__(self, user_ids: Sequence, item_ids: Sequence, values: Sequence[float]):
        frame = pd.DataFrame({
            'user_id': np.asarray(user_ids),
            'item_id': np.asarray(item_ids),
            'rating': np.asarray(values, dtype=np.float64),
        })
        if len(frame) and frame['rating'].isna().any():
            raise ConfigurationError("Ratings must not contain NaN values")
        frame = frame.drop_duplicates(subset=['user_id', 'item_id'], keep='last')

        self.user_ids = _freeze(frame['user_id'].to_numpy())
        self.item_ids = _freeze(frame['item_id'].to_numpy())
        self.values = _freeze(frame['rating'].to_numpy(dtype=np.float64))

        # Mappings (inner index -> raw ID is sorted ascending)
        users, user_indices = np.unique(self.user_ids, return_inverse=True)
        items, item_indices = np.unique(self.item_ids, return_inverse=True)
        self.users = _freeze(users)
        self.items = _freeze(items)
        self.user_indices = _freeze(user_indices.reshape(-1).astype(np.int64))
        self.item_indices = _freeze(item_indices.reshape(-1).astype(np.int64))
        self.user_mapping: Dict[Any, int] = {u: idx for idx, u in enumerate(users.tolist())}
        self.item_mapping: Dict[Any, int] = {i: idx for idx, i in enumerate(items.tolist())}

        self.n_users = len(users)
        self.n_items = len(items)
        self.n_ratings = len(self.values)

        # Sparse indices
        self._csr = csr_matrix(
            (self.values, (self.user_indices, self.item_indices)),
            shape=(self.n_users, self.n_items),
            dtype=np.float64,
        )
        self._csr.sort_indices()
        self._csc = self._csr.tocsc()
        self._csc.sort_indices()

        # Statistics
        self.global_mean = float(self.values.mean()) if self.n_ratings else 0.0
        self.user_counts = _freeze(np.bincount(self.user_indices, minlength=self.n_users))
        self.item_counts = _freeze(np.bincount(self.item_indices, minlength=self.n_items))
        user_sums = np.bincount(self.user_indices, weights=self.values, minlength=self.n_users)
        item_sums = np.bincount(self.item_indices, weights=self.values, minlength=self.n_items)
        with np.errstate(invalid='ignore', divide='ignore'):
            self.user_means = _freeze(np.where(self.user_counts > 0, user_sums / self.user_counts, self.global_mean))
            self.item_means = _freeze(np.where(self.item_counts > 0, item_sums / self.item_counts, self.global_mean))

        if self.n_ratings:
            self.rating_scale: Tuple[float, float] = (float(self.values.min()), float(self.values.max()))
        else:
            self.rating_scale = (0.0, 0.0)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_ratings(cls, ratings: Iterable[Tuple[Any, Any, float]]) -> 'Dataset':
        """Build a dataset from an iterable of (user_id, item_id, value) triples."""
        rows = list(ratings)
        if not rows:
            return cls([], [], [])
        user_ids, item_ids, values = zip(*rows)
        return cls(user_ids, item_ids, values)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, user_col: str = 'user_id',
                       item_col: str = 'item_id', rating_col: str = 'rating') -> 'Dataset':
        """
        Build a dataset from a DataFrame.

        Args:
            df: DataFrame holding one rating per row
            user_col: Column with user IDs
            item_col: Column with item IDs
            rating_col: Column with rating values

        Raises:
            ConfigurationError: If a column is missing
        """
        missing = {user_col, item_col, rating_col} - set(df.columns)
        if missing:
            raise ConfigurationError(
                f"DataFrame missing required columns: {sorted(missing)}. "
                f"Found columns: {list(df.columns)}"
            )
        return cls(df[user_col].to_numpy(), df[item_col].to_numpy(), df[rating_col].to_numpy())

    def subset(self, indices: Sequence[int]) -> 'Dataset':
        """New dataset holding the ratings at the given positions."""
        indices = np.asarray(indices, dtype=np.int64)
        return Dataset(self.user_ids[indices], self.item_ids[indices], self.values[indices])

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            'user_id': self.user_ids,
            'item_id': self.item_ids,
            'rating': self.values,
        })

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return self.n_ratings

    def __iter__(self) -> Iterator[Rating]:
        for user_id, item_id, value in zip(self.user_ids.tolist(), self.item_ids.tolist(), self.values.tolist()):
            yield Rating(user_id, item_id, value)

    def __repr__(self) -> str:
        return f"Dataset(n_ratings={self.n_ratings}, n_users={self.n_users}, n_items={self.n_items})"

    def user_inner_id(self, user_id) -> Optional[int]:
        return self.user_mapping.get(user_id)

    def item_inner_id(self, item_id) -> Optional[int]:
        return self.item_mapping.get(item_id)

    def user_row(self, user_index: int) -> Tuple[np.ndarray, np.ndarray]:
        """(item inner indices, values) rated by a user, ascending item index."""
        start, end = self._csr.indptr[user_index], self._csr.indptr[user_index + 1]
        return self._csr.indices[start:end], self._csr.data[start:end]

    def item_column(self, item_index: int) -> Tuple[np.ndarray, np.ndarray]:
        """(user inner indices, values) that rated an item, ascending user index."""
        start, end = self._csc.indptr[item_index], self._csc.indptr[item_index + 1]
        return self._csc.indices[start:end], self._csc.data[start:end]

    def user_ratings(self, user_id) -> Dict[Any, float]:
        """Mapping item_id -> value for a user (empty for unknown users)."""
        user_index = self.user_inner_id(user_id)
        if user_index is None:
            return {}
        indices, values = self.user_row(user_index)
        return dict(zip(self.items[indices].tolist(), values.tolist()))

    def item_ratings(self, item_id) -> Dict[Any, float]:
        """Mapping user_id -> value for an item (empty for unknown items)."""
        item_index = self.item_inner_id(item_id)
        if item_index is None:
            return {}
        indices, values = self.item_column(item_index)
        return dict(zip(self.users[indices].tolist(), values.tolist()))

    def to_csr(self) -> csr_matrix:
        """User x item rating matrix (a copy; the internal index stays untouched)."""
        return self._csr.copy()

    def to_csc(self) -> csc_matrix:
        """Item-major view of the rating matrix (a copy)."""
        return self._csc.copy()

    def binary_csr(self) -> csr_matrix:
        """User x item matrix with 1.0 wherever a rating exists."""
        matrix = self._csr.copy()
        matrix.data = np.ones_like(matrix.data)
        return matrix
