"""
Model Serialization Module

Handles saving and loading fitted models to/from disk.
"""

import logging
import os
import pickle
from pathlib import Path
from typing import Any, Union

from .exceptions import NotFittedError

logger = logging.getLogger(__name__)


def save_model(model: Any, path: Union[str, Path]) -> None:
    """
    Save a fitted model to a pickle file.

    Args:
        model: Fitted model (any BaseModel subclass)
        path: File path to save model (.pkl extension)

    Raises:
        NotFittedError: If the model has not been fitted

    Example:
        >>> save_model(SVD().fit(train_set), "models/svd.pkl")
    """
    if not getattr(model, 'is_fitted', False):
        raise NotFittedError(f"Refusing to save unfitted {type(model).__name__}")

    # Ensure directory exists
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'wb') as f:
        pickle.dump(model, f, protocol=pickle.HIGHEST_PROTOCOL)

    logger.info(f"Model saved to: {output_path}")


def load_model(path: Union[str, Path]) -> Any:
    """
    Load a fitted model from a pickle file.

    Args:
        path: File path to saved model (.pkl)

    Returns:
        Loaded model object

    Raises:
        FileNotFoundError: If model file doesn't exist

    Example:
        >>> model = load_model("models/svd.pkl")
        >>> model.predict(196, 242)
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model file not found: {path}")

    with open(path, 'rb') as f:
        model = pickle.load(f)

    logger.info(f"Model loaded from: {path}")
    return model


def get_model_size(path: Union[str, Path]) -> float:
    """
    Get size of saved model file in megabytes.

    Args:
        path: Path to model file

    Returns:
        Model size in MB
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model file not found: {path}")

    return os.path.getsize(path) / (1024 ** 2)


def verify_model_integrity(path: Union[str, Path]) -> bool:
    """
    Verify that a saved model can be loaded and is fitted.

    Returns:
        True if the model loads successfully, False otherwise
    """
    try:
        model = load_model(path)
    except (OSError, EOFError, AttributeError, ImportError, pickle.UnpicklingError) as e:
        logger.warning(f"Model integrity check failed: {e}")
        return False
    return bool(getattr(model, 'is_fitted', False))
