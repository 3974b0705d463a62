"""
CF Engine Package for Rating Prediction and Item Ranking

This package contains modular components for:
- Rating datasets and k-fold splitting
- Similarity computation (cosine, MSD, Pearson with shrinkage)
- Model training (baseline, SVD, SVD++, NMF, WRMF, KNN, SlopeOne, co-clustering, item popularity)
- Model evaluation (RMSE, MAE, precision@k, recall@k, MAP, NDCG, MRR)
- Cross-validation
- Storage / bulk ingestion collaborators and the recommendation update pipeline
"""

from .dataset import Dataset, Rating
from .exceptions import (
    CFEngineError,
    ConfigurationError,
    FitError,
    NotFittedError,
    UnsupportedOperation,
)
from .model import SVD, WRMF, Baseline, ItemPop, NMF, SVDpp
from .neighbors import KNN, SlopeOne
from .coclustering import CoClustering
from .evaluate import MAE, MAP, MRR, NDCG, RMSE, Precision, Recall
from .train import KFoldSplitter, RatioSplitter, cross_validate, summarize
from .data_io import SQLiteStorage
from .pipeline import MODEL_REGISTRY, create_model

__version__ = "0.1.0"
