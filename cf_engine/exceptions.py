"""
Error kinds raised by the engine.

Sparse-data fallbacks (a user or item with no qualifying neighbours or no
prior ratings) are not errors: each model returns its documented fallback
estimate instead of raising.
"""

from typing import Optional


class CFEngineError(Exception):
    """Base class for all engine errors"""
    pass


class ConfigurationError(CFEngineError, ValueError):
    """Raised for an invalid or unknown parameter, or an impossible split"""
    pass


class FitError(CFEngineError, ArithmeticError):
    """Raised when training diverges or fails to converge"""

    def __init__(self, message: str, model_name: Optional[str] = None,
                 epoch: Optional[int] = None):
        super().__init__(message)
        self.model_name = model_name
        self.epoch = epoch


class UnsupportedOperation(CFEngineError, NotImplementedError):
    """Raised when calling predict on a rank-only model or vice versa"""
    pass


class NotFittedError(CFEngineError, RuntimeError):
    """Raised when attempting to use an untrained model"""
    pass
