"""
Recommendation Pipeline Orchestrator

Main entry point for refreshing stored recommendations:
1. Check whether enough new ratings arrived since the last update
2. Load the rating dataset from storage
3. Train the configured model
4. Write every user's top-N list back to storage
5. Bump the version counter and record the rating count
6. Optionally save the fitted model to disk

Also holds the model registry used to build models by name.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from . import config
from .coclustering import CoClustering
from .data_io import SQLiteStorage
from .exceptions import ConfigurationError
from .model import NMF, SVD, WRMF, Baseline, BaseModel, ItemPop, SVDpp
from .neighbors import KNN, SlopeOne
from .serialize import get_model_size, load_model, save_model

logger = logging.getLogger(__name__)

MODEL_REGISTRY = {
    'baseline': Baseline,
    'svd': SVD,
    'svdpp': SVDpp,
    'nmf': NMF,
    'wrmf': WRMF,
    'knn': KNN,
    'slope_one': SlopeOne,
    'coclustering': CoClustering,
    'item_pop': ItemPop,
}


def create_model(name: str, params: Optional[Mapping[str, Any]] = None) -> BaseModel:
    """
    Build an unfitted model by registry name.

    Example:
        >>> create_model('knn', {'k': 60, 'similarity': 'pearson'})
        KNN(k=60, similarity='pearson', ...)

    Raises:
        ConfigurationError: Unknown name or invalid parameters
    """
    model_class = MODEL_REGISTRY.get(name.lower())
    if model_class is None:
        raise ConfigurationError(f"Unknown model '{name}'. Available: {sorted(MODEL_REGISTRY)}")
    return model_class(params)


def needs_update(storage: SQLiteStorage,
                 threshold: int = config.STORAGE_CONFIG['update_threshold']) -> bool:
    """True once at least `threshold` ratings were added since the last update."""
    current = storage.current_ratings()
    last = storage.last_ratings()
    logger.info(f"Ratings: {current} now, {last} at last update (threshold {threshold})")
    return current - last >= threshold


def run_update_pipeline(storage: SQLiteStorage,
                        model_name: str = 'svd',
                        params: Optional[Mapping[str, Any]] = None,
                        n_recommendations: int = config.STORAGE_CONFIG['n_recommendations'],
                        model_output_path: Optional[Union[str, Path]] = None) -> Dict:
    """
    Recompute and store the top-N list of every user.

    Args:
        storage: Storage holding ratings; receives the new lists
        model_name: Registry name of the model to train
        params: Model parameters (defaults if None)
        n_recommendations: Length of each user's list
        model_output_path: If given, the fitted model is pickled there

    Returns:
        Dict with pipeline results:
        - model: str
        - version: int
        - n_ratings: int
        - n_users: int
        - training_time_sec: float
        - model_path / model_size_mb (if saved)

    Example:
        >>> results = run_update_pipeline(SQLiteStorage("data/cf_engine.db"), 'svd')
        >>> results['version']
        1
    """
    start_time = time.time()
    model = create_model(model_name, params)

    logger.info("=" * 60)
    logger.info(f"STARTING RECOMMENDATION UPDATE ({type(model).__name__})")
    logger.info("=" * 60)

    logger.info(f"[1/4] Loading ratings from {storage.db_path}...")
    dataset = storage.load_dataset()
    logger.info(f"  Loaded {len(dataset)} ratings ({dataset.n_users} users, {dataset.n_items} items)")

    logger.info("[2/4] Training model...")
    model.fit(dataset)

    logger.info(f"[3/4] Writing top-{n_recommendations} lists...")
    candidates = storage.get_list() or dataset.items.tolist()
    for user_id in dataset.users.tolist():
        items = model.rank(user_id, candidates, n=n_recommendations, exclude_seen=True)
        storage.update_recommends(user_id, items)
    logger.info(f"  Updated {dataset.n_users} users")

    logger.info("[4/4] Updating status counters...")
    version = storage.version() + 1
    storage.set_meta('version', version)
    storage.set_meta('last_count', len(dataset))

    results = {
        'model': type(model).__name__,
        'version': version,
        'n_ratings': len(dataset),
        'n_users': dataset.n_users,
    }

    if model_output_path is not None:
        save_model(model, model_output_path)
        results['model_path'] = str(model_output_path)
        results['model_size_mb'] = get_model_size(model_output_path)

    results['training_time_sec'] = time.time() - start_time
    logger.info("=" * 60)
    logger.info(f"UPDATE COMPLETED: version {version} in {results['training_time_sec']:.2f} seconds")
    logger.info("=" * 60)
    return results


def run_inference_pipeline(model_path: Union[str, Path], user_id: int,
                           n_recommendations: int = config.STORAGE_CONFIG['n_recommendations']) -> list:
    """
    Recommend items for a single user from a saved model.

    Example:
        >>> run_inference_pipeline("models/model.pkl", user_id=196)[:3]
        [50, 181, 100]
    """
    logger.info(f"Loading model from {model_path}...")
    model = load_model(model_path)

    recommendations = model.rank(user_id, n=n_recommendations, exclude_seen=True)
    logger.info(f"Generated {len(recommendations)} recommendations for user {user_id}")
    return recommendations


if __name__ == "__main__":
    """
    Refresh recommendations from the command line.

    Usage:
        python -m cf_engine.pipeline                          # SVD, default database
        python -m cf_engine.pipeline --model knn --force      # Update regardless of new ratings
    """
    import argparse

    parser = argparse.ArgumentParser(description='Refresh stored recommendations')
    parser.add_argument('--db', type=str, default=config.STORAGE_CONFIG['db_path'],
                        help='SQLite database path')
    parser.add_argument('--model', type=str, default='svd', choices=sorted(MODEL_REGISTRY),
                        help='Model to train (default: svd)')
    parser.add_argument('--n', type=int, default=config.STORAGE_CONFIG['n_recommendations'],
                        help='Recommendations per user')
    parser.add_argument('--output', type=str, default=None, help='Save the fitted model here')
    parser.add_argument('--force', action='store_true', help='Ignore the update threshold')
    args = parser.parse_args()

    config.setup_logging()
    storage = SQLiteStorage(args.db)
    storage.init()

    if args.force or needs_update(storage):
        results = run_update_pipeline(storage, args.model, n_recommendations=args.n,
                                      model_output_path=args.output)
        logger.info(f"Version: {results['version']}")
    else:
        logger.info("Not enough new ratings; skipping update")
