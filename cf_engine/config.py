"""
Configuration file for CF Engine

Contains all hyperparameters, paths, and constants used across the engine.
"""

import logging
import numbers
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

load_dotenv()

# ============================================================================
# PATHS
# ============================================================================

PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
MODELS_DIR = PROJECT_ROOT / "models"

DEFAULT_DB_PATH = Path(os.getenv("CF_ENGINE_DB_PATH", str(DATA_DIR / "cf_engine.db")))
DEFAULT_MODEL_PATH = MODELS_DIR / "model.pkl"

# ============================================================================
# GLOBAL SETTINGS
# ============================================================================

RANDOM_SEED = int(os.getenv("CF_ENGINE_SEED", "42"))

# An unbounded ranking cutoff
UNBOUNDED_K = 2 ** 31 - 1

# ============================================================================
# MODEL HYPERPARAMETERS
# ============================================================================

BASELINE_CONFIG = {
    "reg_user": 15.0,  # Regularization of user biases
    "reg_item": 10.0,  # Regularization of item biases
    "n_epochs": 10,  # Maximum number of alternating passes
    "tolerance": 1e-6,  # Stop once the largest bias change is below this
    "require_convergence": False,  # Raise FitError if the epoch cap is hit first
}

SVD_CONFIG = {
    "n_factors": 100,  # Number of latent factors
    "n_epochs": 20,  # Number of SGD passes
    "lr": 0.005,  # Learning rate
    "reg": 0.02,  # L2 regularization on all learned terms
    "init_mean": 0.0,  # Mean of the normal factor initialization
    "init_std": 0.1,  # Std-dev of the normal factor initialization
    "optimizer": "sgd",  # 'sgd' (rating regression) or 'bpr' (pairwise ranking)
    "shuffle": True,  # Shuffle ratings every epoch
    "random_state": RANDOM_SEED,
}

SVDPP_CONFIG = {
    "n_factors": 20,
    "n_epochs": 20,
    "lr": 0.007,
    "reg": 0.02,
    "init_mean": 0.0,
    "init_std": 0.1,
    "shuffle": True,
    "random_state": RANDOM_SEED,
}

NMF_CONFIG = {
    "n_factors": 15,
    "n_epochs": 50,
    "reg_user": 0.06,
    "reg_item": 0.06,
    "init_low": 0.0,  # Factors drawn uniformly from [init_low, init_high)
    "init_high": 1.0,
    "random_state": RANDOM_SEED,
}

WRMF_CONFIG = {
    "n_factors": 20,
    "n_epochs": 10,
    "reg": 0.015,
    "alpha": 1.0,  # Confidence of an observed pair is 1 + alpha * rating
    "init_mean": 0.0,
    "init_std": 0.1,
    "random_state": RANDOM_SEED,
}

KNN_CONFIG = {
    "k": 40,  # Maximum number of neighbours
    "similarity": "msd",  # 'msd', 'cosine' or 'pearson'
    "user_based": True,  # Neighbours are users (True) or items (False)
    "shrinkage": 0.0,  # Similarity is divided by 1 + shrinkage / overlap
    "mode": "basic",  # 'basic', 'centered', 'zscore' or 'baseline'
    "baseline_params": None,  # Parameters of the Baseline model used in 'baseline' mode
}

SLOPE_ONE_CONFIG = {}

COCLUSTERING_CONFIG = {
    "n_user_clusters": 3,
    "n_item_clusters": 3,
    "n_epochs": 20,
    "random_state": RANDOM_SEED,
}

ITEM_POP_CONFIG = {}

# ============================================================================
# CROSS-VALIDATION / EVALUATION CONFIGURATION
# ============================================================================

CROSS_VALIDATION_CONFIG = {
    "n_folds": 5,
    "random_state": RANDOM_SEED,
    "n_jobs": int(os.getenv("CF_ENGINE_N_JOBS")) if os.getenv("CF_ENGINE_N_JOBS") else None,
}

EVALUATION_CONFIG = {
    "regression": ["rmse", "mae"],
    "k_values": [5, 10],  # Cutoffs for precision@k, recall@k
}

# ============================================================================
# STORAGE / INGESTION CONFIGURATION
# ============================================================================

STORAGE_CONFIG = {
    "db_path": str(DEFAULT_DB_PATH),
    "csv_sep": ",",
    "csv_header": False,
    "n_recommendations": 10,
    "update_threshold": 1,  # New ratings required before recomputing recommendations
}

# ============================================================================
# LOGGING
# ============================================================================

LOGGING_CONFIG = {
    "level": os.getenv("CF_ENGINE_LOG_LEVEL", "INFO"),
    "format": '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
}


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts. Library modules never call this."""
    logging.basicConfig(
        level=getattr(logging, (level or LOGGING_CONFIG["level"]).upper(), logging.INFO),
        format=LOGGING_CONFIG["format"],
    )


# ============================================================================
# PARAMETER RESOLUTION
# ============================================================================

# name -> (kind, constraint)
PARAM_RULES = {
    "n_factors": ("int", 1),
    "n_epochs": ("int", 1),
    "k": ("int", 1),
    "n_user_clusters": ("int", 1),
    "n_item_clusters": ("int", 1),
    "lr": ("positive", None),
    "reg": ("non_negative", None),
    "reg_user": ("non_negative", None),
    "reg_item": ("non_negative", None),
    "tolerance": ("non_negative", None),
    "alpha": ("non_negative", None),
    "shrinkage": ("non_negative", None),
    "init_std": ("non_negative", None),
    "init_mean": ("real", None),
    "init_low": ("non_negative", None),
    "init_high": ("positive", None),
    "optimizer": ("choice", ("sgd", "bpr")),
    "similarity": ("choice", ("msd", "cosine", "pearson")),
    "mode": ("choice", ("basic", "centered", "zscore", "baseline")),
    "shuffle": ("bool", None),
    "user_based": ("bool", None),
    "require_convergence": ("bool", None),
}


def _check_value(model_name: str, key: str, value: Any) -> None:
    rule = PARAM_RULES.get(key)
    if rule is None:
        return
    kind, constraint = rule
    where = f"{model_name}: parameter '{key}'"

    if kind == "bool":
        if not isinstance(value, (bool, int)):
            raise ConfigurationError(f"{where} must be a boolean, got {value!r}")
    elif kind == "choice":
        if value not in constraint:
            raise ConfigurationError(f"{where} must be one of {constraint}, got {value!r}")
    elif kind == "int":
        if isinstance(value, bool) or not isinstance(value, numbers.Integral):
            raise ConfigurationError(f"{where} must be an integer, got {value!r}")
        if value < constraint:
            raise ConfigurationError(f"{where} must be >= {constraint}, got {value}")
    else:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise ConfigurationError(f"{where} must be a number, got {value!r}")
        if kind == "positive" and not value > 0:
            raise ConfigurationError(f"{where} must be > 0, got {value}")
        if kind == "non_negative" and not value >= 0:
            raise ConfigurationError(f"{where} must be >= 0, got {value}")


def resolve_params(model_name: str, defaults: Mapping[str, Any],
                   overrides: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
    """
    Merge caller parameters over per-algorithm defaults.

    Args:
        model_name: Name used in error messages
        defaults: Documented defaults of the algorithm
        overrides: Caller-supplied parameters (may be None)

    Returns:
        Read-only mapping with every parameter of the algorithm

    Raises:
        ConfigurationError: On unknown keys or invalid values

    Example:
        >>> params = resolve_params("SVD", SVD_CONFIG, {"n_factors": 10})
        >>> params["n_factors"], params["lr"]
        (10, 0.005)
    """
    overrides = dict(overrides or {})
    unknown = set(overrides) - set(defaults)
    if unknown:
        raise ConfigurationError(
            f"{model_name}: unknown parameters {sorted(unknown)}. "
            f"Valid parameters: {sorted(defaults)}"
        )

    params: Dict[str, Any] = {**defaults, **overrides}
    for key, value in params.items():
        _check_value(model_name, key, value)

    if "init_low" in params and "init_high" in params:
        if params["init_low"] >= params["init_high"]:
            raise ConfigurationError(
                f"{model_name}: init_low ({params['init_low']}) must be < "
                f"init_high ({params['init_high']})"
            )

    return MappingProxyType(params)
