"""
Data I/O Module

Storage and bulk ingestion for ratings and recommendation lists:
- SQLiteStorage: ratings, item catalog, per-user top lists, metadata counters
- CSV loading of ratings and item catalogs (configurable delimiter / header)
- Streaming ingestion into an explicit storage handle
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from . import config
from .dataset import Dataset, Rating

logger = logging.getLogger(__name__)


class SQLiteStorage:
    """
    Ratings and recommendations persisted in a SQLite database.

    Tables:
    - ratings: one row per (user_id, item_id); a new rating replaces the old
    - items: catalog of recommendable items
    - recommends: per-user top list, `ranking` is the 0-based position
    - status: named integer counters (`version`, `last_count`)

    Example:
        >>> storage = SQLiteStorage("data/cf_engine.db")
        >>> storage.init()
        >>> storage.put_rating(1, 10, 4.0)
        >>> storage.current_ratings()
        1
    """

    def __init__(self, db_path: Union[str, Path] = config.STORAGE_CONFIG['db_path']):
        self.db_path = str(db_path)

    def __repr__(self) -> str:
        return f"SQLiteStorage({self.db_path!r})"

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def init(self) -> None:
        """Create the tables (if missing) and the `version` / `last_count` counters."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ratings (
                    user_id INTEGER NOT NULL,
                    item_id INTEGER NOT NULL,
                    rating REAL NOT NULL,
                    PRIMARY KEY (user_id, item_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    item_id INTEGER PRIMARY KEY
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recommends (
                    user_id INTEGER NOT NULL,
                    item_id INTEGER NOT NULL,
                    ranking INTEGER NOT NULL,
                    PRIMARY KEY (user_id, item_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS status (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)
            conn.executemany("INSERT OR IGNORE INTO status (name, value) VALUES (?, 0)",
                             [('version',), ('last_count',)])
            conn.commit()
        logger.info(f"Initialized storage at {self.db_path}")

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def put_rating(self, user_id: int, item_id: int, rating: float) -> None:
        """Insert a rating, replacing any earlier rating of the same pair."""
        self.put_ratings([(user_id, item_id, rating)])

    def put_ratings(self, ratings: Iterable[Tuple[int, int, float]]) -> int:
        """Upsert many ratings in one transaction. Rated items join the catalog."""
        rows = [(int(u), int(i), float(r)) for u, i, r in ratings]
        with self._get_connection() as conn:
            conn.executemany("""
                INSERT INTO ratings (user_id, item_id, rating) VALUES (?, ?, ?)
                ON CONFLICT (user_id, item_id) DO UPDATE SET rating = excluded.rating
            """, rows)
            conn.executemany("INSERT OR IGNORE INTO items (item_id) VALUES (?)",
                             [(item_id,) for _, item_id, _ in rows])
            conn.commit()
        return len(rows)

    def put_items(self, item_ids: Iterable[int]) -> int:
        rows = [(int(item_id),) for item_id in item_ids]
        with self._get_connection() as conn:
            conn.executemany("INSERT OR IGNORE INTO items (item_id) VALUES (?)", rows)
            conn.commit()
        return len(rows)

    def iter_ratings(self) -> Iterator[Rating]:
        """Stream every stored rating ordered by (user_id, item_id)."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT user_id, item_id, rating FROM ratings ORDER BY user_id, item_id")
            for user_id, item_id, rating in cursor:
                yield Rating(user_id, item_id, rating)

    def load_dataset(self) -> Dataset:
        with self._get_connection() as conn:
            df = pd.read_sql_query(
                "SELECT user_id, item_id, rating FROM ratings ORDER BY user_id, item_id", conn
            )
        return Dataset.from_dataframe(df)

    def current_ratings(self) -> int:
        """Number of ratings stored right now."""
        with self._get_connection() as conn:
            (count,) = conn.execute("SELECT COUNT(*) FROM ratings").fetchone()
        return int(count)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_meta(self, name: str) -> int:
        """
        Raises:
            KeyError: If the counter was never set
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM status WHERE name = ?", (name,)).fetchone()
        if row is None:
            raise KeyError(f"No metadata named '{name}' in {self.db_path}")
        return int(row[0])

    def set_meta(self, name: str, value: int) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO status (name, value) VALUES (?, ?)
                ON CONFLICT (name) DO UPDATE SET value = excluded.value
            """, (name, int(value)))
            conn.commit()

    def last_ratings(self) -> int:
        """Number of ratings at the time of the last recommendation update."""
        return self.get_meta('last_count')

    def version(self) -> int:
        return self.get_meta('version')

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def get_recommends(self, user_id: int) -> List[int]:
        """Top list of a user, best first (empty if none was stored)."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT item_id FROM recommends WHERE user_id = ? ORDER BY ranking", (int(user_id),)
            ).fetchall()
        return [item_id for (item_id,) in rows]

    def update_recommends(self, user_id: int, items: Iterable[int]) -> None:
        """Replace the top list of a user."""
        rows = [(int(user_id), int(item_id), position) for position, item_id in enumerate(items)]
        with self._get_connection() as conn:
            conn.execute("DELETE FROM recommends WHERE user_id = ?", (int(user_id),))
            conn.executemany("INSERT INTO recommends (user_id, item_id, ranking) VALUES (?, ?, ?)", rows)
            conn.commit()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_list(self) -> List[int]:
        """Every catalog item, ascending ID."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT item_id FROM items ORDER BY item_id").fetchall()
        return [item_id for (item_id,) in rows]

    def get_random(self, n: int, seed: Optional[int] = None) -> List[int]:
        """Up to n distinct catalog items drawn uniformly at random."""
        items = self.get_list()
        if n <= 0 or not items:
            return []
        rng = np.random.RandomState(seed)
        chosen = rng.choice(len(items), size=min(n, len(items)), replace=False)
        return [items[idx] for idx in chosen]

    def get_popular(self, n: int) -> List[int]:
        """The n most rated items, ties broken by ascending item ID."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT item_id FROM ratings
                GROUP BY item_id
                ORDER BY COUNT(*) DESC, item_id ASC
                LIMIT ?
            """, (max(int(n), 0),)).fetchall()
        return [item_id for (item_id,) in rows]


# ============================================================================
# CSV loading
# ============================================================================

def _read_delimited(path: Union[str, Path], sep: str, header: bool, encoding: str) -> pd.DataFrame:
    if not Path(path).exists():
        raise FileNotFoundError(f"File not found: {path}")
    # Multi-character separators (e.g. '::') need the python engine
    engine = 'python' if len(sep) > 1 else 'c'
    return pd.read_csv(path, sep=sep, header=0 if header else None, engine=engine, encoding=encoding)


def load_ratings_from_csv(path: Union[str, Path], sep: str = config.STORAGE_CONFIG['csv_sep'],
                          header: bool = config.STORAGE_CONFIG['csv_header'],
                          encoding: str = 'utf-8') -> pd.DataFrame:
    """
    Load ratings from a delimited text file.

    The first three columns are read as user ID, item ID and rating; any
    further columns (e.g. timestamps) are ignored. Rows with missing or
    non-numeric fields are skipped with a warning.

    Args:
        path: File to read
        sep: Field delimiter
        header: Whether the first row is a header
        encoding: Text encoding of the file

    Returns:
        DataFrame with columns: user_id, item_id, rating

    Example:
        >>> df = load_ratings_from_csv("data/ml-100k/u.data", sep="\\t")
        >>> list(df.columns)
        ['user_id', 'item_id', 'rating']
    """
    raw = _read_delimited(path, sep, header, encoding)
    if raw.shape[1] < 3:
        raise ValueError(f"{path}: expected at least 3 columns, found {raw.shape[1]}")

    df = raw.iloc[:, :3].apply(pd.to_numeric, errors='coerce')
    df.columns = ['user_id', 'item_id', 'rating']
    n_before = len(df)
    df = df.dropna()
    if len(df) < n_before:
        logger.warning(f"{path}: skipped {n_before - len(df)} malformed rating rows")

    df = df.astype({'user_id': np.int64, 'item_id': np.int64, 'rating': np.float64})
    logger.info(f"Loaded {len(df)} ratings from {path}")
    return df.reset_index(drop=True)


def load_items_from_csv(path: Union[str, Path], sep: str = config.STORAGE_CONFIG['csv_sep'],
                        header: bool = config.STORAGE_CONFIG['csv_header'],
                        encoding: str = 'utf-8') -> pd.DataFrame:
    """
    Load an item catalog from a delimited text file; the first column is the item ID.

    Returns:
        DataFrame with column: item_id
    """
    raw = _read_delimited(path, sep, header, encoding)
    item_ids = pd.to_numeric(raw.iloc[:, 0], errors='coerce')
    n_before = len(item_ids)
    item_ids = item_ids.dropna()
    if len(item_ids) < n_before:
        logger.warning(f"{path}: skipped {n_before - len(item_ids)} malformed item rows")

    df = pd.DataFrame({'item_id': item_ids.astype(np.int64)}).drop_duplicates()
    logger.info(f"Loaded {len(df)} items from {path}")
    return df.reset_index(drop=True)


def load_dataset_from_csv(path: Union[str, Path], sep: str = config.STORAGE_CONFIG['csv_sep'],
                          header: bool = config.STORAGE_CONFIG['csv_header'],
                          encoding: str = 'utf-8') -> Dataset:
    """Read a ratings file straight into a Dataset."""
    return Dataset.from_dataframe(load_ratings_from_csv(path, sep, header, encoding))


def ingest_ratings(storage: SQLiteStorage, path: Union[str, Path],
                   sep: str = config.STORAGE_CONFIG['csv_sep'],
                   header: bool = config.STORAGE_CONFIG['csv_header'],
                   encoding: str = 'utf-8') -> int:
    """
    Load ratings from a delimited file into storage.

    Returns:
        Number of ratings written
    """
    df = load_ratings_from_csv(path, sep, header, encoding)
    return storage.put_ratings(df.itertuples(index=False, name=None))


def ingest_items(storage: SQLiteStorage, path: Union[str, Path],
                 sep: str = config.STORAGE_CONFIG['csv_sep'],
                 header: bool = config.STORAGE_CONFIG['csv_header'],
                 encoding: str = 'utf-8') -> int:
    """Load an item catalog from a delimited file into storage."""
    df = load_items_from_csv(path, sep, header, encoding)
    return storage.put_items(df['item_id'].tolist())
