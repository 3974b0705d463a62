"""
Rating Prediction and Ranking Models

Model capability shared by every algorithm (fit / predict / rank) and the
latent-factor family:
- ItemPop: non-personalized popularity ranking
- Baseline: r_ui = μ + b_u + b_i, biases by alternating least squares
- SVD: r_ui = μ + b_u + b_i + q_i^T p_u, trained by SGD (or BPR for ranking)
- SVD++: SVD plus an implicit-feedback term over every item the user rated
- NMF: non-negative factors, multiplicative updates
- WRMF: weighted ALS over all (user, item) pairs, implicit feedback ranking

Where:
- μ = global mean rating
- b_u, b_i = user and item biases
- p_u, q_i = user and item latent factors
"""

import logging
import time
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.special import expit

from . import config
from .dataset import Dataset
from .exceptions import ConfigurationError, FitError, NotFittedError, UnsupportedOperation

logger = logging.getLogger(__name__)


class BaseModel(ABC):
    """
    Capability shared by all models.

    Subclasses implement `_fit` and either `_estimate` (rating prediction)
    or `_scores` (ranking), and declare what they support through
    `supports_predict` / `supports_rank`.

    Unknown users or items never raise: each model returns its documented
    fallback estimate (the global mean unless stated otherwise).
    """

    defaults: Mapping[str, Any] = {}

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        self.params = config.resolve_params(type(self).__name__, self.defaults, params)
        self.train_set: Optional[Dataset] = None
        self.global_mean: Optional[float] = None
        self.fit_time: Optional[float] = None

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    @property
    def supports_predict(self) -> bool:
        return True

    @property
    def supports_rank(self) -> bool:
        return True

    @property
    def is_fitted(self) -> bool:
        return self.train_set is not None

    def get_params(self) -> dict:
        return dict(self.params)

    def clone(self) -> 'BaseModel':
        """Fresh, unfitted instance with identical parameters."""
        return type(self)(self.get_params())

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.params.items())
        return f"{type(self).__name__}({params})"

    # mappingproxy does not pickle
    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        state['params'] = dict(self.params)
        return state

    def __setstate__(self, state: dict) -> None:
        state['params'] = MappingProxyType(state['params'])
        self.__dict__.update(state)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def fit(self, train_set: Dataset) -> 'BaseModel':
        """
        Train the model on a dataset. The dataset is never modified.

        Raises:
            ConfigurationError: If train_set is not a non-empty Dataset
            FitError: If training diverges or fails to converge
        """
        if not isinstance(train_set, Dataset):
            raise ConfigurationError(f"fit() expects a Dataset, got {type(train_set).__name__}")
        if len(train_set) == 0:
            raise ConfigurationError("Cannot fit on an empty dataset")

        name = type(self).__name__
        logger.info(f"Fitting {name} on {train_set.n_ratings} ratings "
                    f"({train_set.n_users} users, {train_set.n_items} items)")
        start_time = time.time()

        self.train_set = None
        self.global_mean = train_set.global_mean
        self._fit(train_set)
        self.train_set = train_set

        self.fit_time = time.time() - start_time
        logger.info(f"{name} fitted in {self.fit_time:.2f}s")
        return self

    @abstractmethod
    def _fit(self, train_set: Dataset) -> None:
        ...

    def _check_finite(self, epoch: int, **arrays: np.ndarray) -> None:
        for label, array in arrays.items():
            if array is not None and not np.all(np.isfinite(array)):
                raise FitError(
                    f"{type(self).__name__}: non-finite values in {label} after epoch {epoch + 1}; "
                    f"lower the learning rate or raise the regularization",
                    model_name=type(self).__name__,
                    epoch=epoch,
                )

    def _check_fitted(self) -> None:
        if not self.is_fitted:
            raise NotFittedError(f"{type(self).__name__} must be fitted before use")

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def _estimate(self, user_index: Optional[int], item_index: Optional[int]) -> float:
        raise UnsupportedOperation(f"{type(self).__name__} does not predict ratings")

    def _scores(self, user_index: Optional[int], item_indices: np.ndarray) -> np.ndarray:
        """Ranking scores for known items (inner indices). Higher is better."""
        return np.array([self._estimate(user_index, int(i)) for i in item_indices], dtype=np.float64)

    def predict(self, user_id, item_id) -> float:
        """
        Predict the rating of a user for an item, clipped to the training
        rating scale.

        Raises:
            UnsupportedOperation: If the model only ranks
            NotFittedError: If the model is not fitted
        """
        if not self.supports_predict:
            raise UnsupportedOperation(f"{type(self).__name__} does not support predict(); use rank()")
        self._check_fitted()

        estimate = self._estimate(self.train_set.user_inner_id(user_id),
                                  self.train_set.item_inner_id(item_id))
        if not np.isfinite(estimate):
            logger.warning(f"{type(self).__name__}: non-finite estimate for user {user_id!r}, "
                           f"item {item_id!r}; using the global mean")
            estimate = self.global_mean
        low, high = self.train_set.rating_scale
        return float(np.clip(estimate, low, high))

    def predict_many(self, pairs: Iterable[Tuple[Any, Any]]) -> np.ndarray:
        return np.array([self.predict(u, i) for u, i in pairs], dtype=np.float64)

    def rank(self, user_id, candidates: Optional[Sequence] = None, n: Optional[int] = None,
             exclude_seen: bool = True) -> List:
        """
        Order candidate items for a user, best first.

        Args:
            user_id: User to rank for
            candidates: Item IDs to rank (default: every training item)
            n: Keep only the first n items
            exclude_seen: Drop items the user rated in the training set

        Returns:
            List of item IDs. Equal scores are ordered by ascending item ID;
            items unknown to the model go last.

        Raises:
            UnsupportedOperation: If the model only predicts
            NotFittedError: If the model is not fitted
        """
        if not self.supports_rank:
            raise UnsupportedOperation(f"{type(self).__name__} does not support rank(); use predict()")
        self._check_fitted()

        if candidates is None:
            candidates = self.train_set.items.tolist()
        candidates = sorted(set(candidates))

        user_index = self.train_set.user_inner_id(user_id)
        if exclude_seen and user_index is not None:
            seen_indices, _ = self.train_set.user_row(user_index)
            seen = set(self.train_set.items[seen_indices].tolist())
            candidates = [item for item in candidates if item not in seen]
        if not candidates:
            return []

        inner = np.array([self.train_set.item_mapping.get(item, -1) for item in candidates], dtype=np.int64)
        known = inner >= 0
        scores = np.full(len(candidates), -np.inf)
        if known.any():
            scores[known] = self._scores(user_index, inner[known])
        scores = np.where(np.isnan(scores), -np.inf, scores)

        order = np.argsort(-scores, kind='stable')
        if n is not None:
            order = order[:n]
        return [candidates[idx] for idx in order]


# ============================================================================
# ItemPop
# ============================================================================

class ItemPop(BaseModel):
    """
    Non-personalized ranking by number of ratings. Supports rank() only.
    """

    defaults = config.ITEM_POP_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        self.popularity: Optional[np.ndarray] = None

    @property
    def supports_predict(self) -> bool:
        return False

    def _fit(self, train_set: Dataset) -> None:
        self.popularity = np.asarray(train_set.item_counts, dtype=np.float64)

    def _scores(self, user_index, item_indices):
        return self.popularity[item_indices]


# ============================================================================
# Baseline
# ============================================================================

class Baseline(BaseModel):
    """
    Bias-only model: r_ui = μ + b_u + b_i.

    Biases minimise the regularized squared error by alternating closed-form
    updates:
        b_u = Σ_i (r_ui - μ - b_i) / (reg_user + |I(u)|)
        b_i = Σ_u (r_ui - μ - b_u) / (reg_item + |U(i)|)
    until the largest bias change is below `tolerance` or `n_epochs` passes.
    Unknown users / items contribute a zero bias.
    """

    defaults = config.BASELINE_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        self.user_bias: Optional[np.ndarray] = None
        self.item_bias: Optional[np.ndarray] = None
        self.n_epochs_run = 0
        self.converged = False

    def _fit(self, train_set: Dataset) -> None:
        p = self.params
        users, items, ratings = train_set.user_indices, train_set.item_indices, train_set.values
        mu = train_set.global_mean

        user_bias = np.zeros(train_set.n_users)
        item_bias = np.zeros(train_set.n_items)
        user_den = p['reg_user'] + train_set.user_counts
        item_den = p['reg_item'] + train_set.item_counts

        self.converged = False
        for epoch in range(p['n_epochs']):
            new_user_bias = np.bincount(users, weights=ratings - mu - item_bias[items],
                                        minlength=train_set.n_users) / np.where(user_den > 0, user_den, 1.0)
            new_item_bias = np.bincount(items, weights=ratings - mu - new_user_bias[users],
                                        minlength=train_set.n_items) / np.where(item_den > 0, item_den, 1.0)
            self._check_finite(epoch, user_bias=new_user_bias, item_bias=new_item_bias)

            change = max(np.max(np.abs(new_user_bias - user_bias)), np.max(np.abs(new_item_bias - item_bias)))
            user_bias, item_bias = new_user_bias, new_item_bias
            self.n_epochs_run = epoch + 1
            logger.debug(f"Baseline epoch {epoch + 1}: max bias change {change:.2e}")
            if change < p['tolerance']:
                self.converged = True
                break

        if not self.converged and p['require_convergence']:
            raise FitError(
                f"Baseline: bias change still above {p['tolerance']} after {p['n_epochs']} epochs",
                model_name='Baseline',
                epoch=p['n_epochs'] - 1,
            )

        self.user_bias = user_bias
        self.item_bias = item_bias

    def _estimate(self, user_index, item_index):
        estimate = self.global_mean
        if user_index is not None:
            estimate += self.user_bias[user_index]
        if item_index is not None:
            estimate += self.item_bias[item_index]
        return estimate

    def _scores(self, user_index, item_indices):
        base = self.global_mean + (self.user_bias[user_index] if user_index is not None else 0.0)
        return base + self.item_bias[item_indices]


# ============================================================================
# SVD
# ============================================================================

class SVD(BaseModel):
    """
    Biased matrix factorization.

    optimizer='sgd' minimises the regularized squared rating error:
        e_ui = r_ui - r̂_ui
        b_u += lr * (e_ui - reg * b_u)
        b_i += lr * (e_ui - reg * b_i)
        p_u += lr * (e_ui * q_i - reg * p_u)
        q_i += lr * (e_ui * p_u - reg * q_i)

    optimizer='bpr' learns factors only, from sampled (user, positive item,
    negative item) triples, increasing q_i^T p_u - q_j^T p_u. Scores are then
    not ratings, so predict() is unsupported in that mode.
    """

    defaults = config.SVD_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        self.user_factors: Optional[np.ndarray] = None
        self.item_factors: Optional[np.ndarray] = None
        self.user_bias: Optional[np.ndarray] = None
        self.item_bias: Optional[np.ndarray] = None
        self.training_history: List[dict] = []

    @property
    def supports_predict(self) -> bool:
        return self.params['optimizer'] == 'sgd'

    def _initialize_factors(self, rng: np.random.RandomState, n_users: int, n_items: int) -> None:
        p = self.params
        self.user_factors = rng.normal(p['init_mean'], p['init_std'], (n_users, p['n_factors']))
        self.item_factors = rng.normal(p['init_mean'], p['init_std'], (n_items, p['n_factors']))
        self.user_bias = np.zeros(n_users)
        self.item_bias = np.zeros(n_items)

    def _fit(self, train_set: Dataset) -> None:
        rng = np.random.RandomState(self.params['random_state'])
        self._initialize_factors(rng, train_set.n_users, train_set.n_items)
        self.training_history = []
        if self.params['optimizer'] == 'bpr':
            self._fit_bpr(train_set, rng)
        else:
            self._fit_sgd(train_set, rng)

    def _fit_sgd(self, train_set: Dataset, rng: np.random.RandomState) -> None:
        p = self.params
        lr, reg = p['lr'], p['reg']
        mu = train_set.global_mean
        users, items, ratings = train_set.user_indices, train_set.item_indices, train_set.values
        n_samples = len(ratings)

        for epoch in range(p['n_epochs']):
            order = rng.permutation(n_samples) if p['shuffle'] else np.arange(n_samples)
            epoch_loss = 0.0

            for idx in order:
                u, i, r = users[idx], items[idx], ratings[idx]
                pu = self.user_factors[u]
                qi = self.item_factors[i]

                error = r - (mu + self.user_bias[u] + self.item_bias[i] + np.dot(pu, qi))
                epoch_loss += error ** 2

                self.user_bias[u] += lr * (error - reg * self.user_bias[u])
                self.item_bias[i] += lr * (error - reg * self.item_bias[i])

                user_factor_old = pu.copy()
                self.user_factors[u] += lr * (error * qi - reg * pu)
                self.item_factors[i] += lr * (error * user_factor_old - reg * qi)

            self._check_finite(epoch, user_factors=self.user_factors, item_factors=self.item_factors,
                               user_bias=self.user_bias, item_bias=self.item_bias)
            rmse = float(np.sqrt(epoch_loss / n_samples))
            self.training_history.append({'epoch': epoch + 1, 'train_rmse': rmse})
            logger.debug(f"SVD epoch {epoch + 1}/{p['n_epochs']}: train RMSE {rmse:.4f}")

    def _sample_triples(self, train_set: Dataset, rng: np.random.RandomState) -> Tuple[np.ndarray, ...]:
        """Draw one epoch of (user, positive, negative) triples."""
        n_samples = train_set.n_ratings
        matrix = train_set.binary_csr()
        counts = np.asarray(train_set.user_counts)

        users = rng.randint(0, train_set.n_users, size=n_samples)
        # Users who rated every item have no negative
        users = users[counts[users] < train_set.n_items]
        if len(users) == 0:
            empty = np.zeros(0, dtype=np.int64)
            return empty, empty, empty
        offsets = (rng.random_sample(len(users)) * counts[users]).astype(np.int64)
        positives = matrix.indices[matrix.indptr[users] + offsets]
        negatives = rng.randint(0, train_set.n_items, size=len(users))

        collided = np.asarray(matrix[users, negatives]).ravel() > 0
        while collided.any():
            negatives[collided] = rng.randint(0, train_set.n_items, size=int(collided.sum()))
            collided[collided] = np.asarray(matrix[users[collided], negatives[collided]]).ravel() > 0
        return users, positives, negatives

    def _fit_bpr(self, train_set: Dataset, rng: np.random.RandomState) -> None:
        p = self.params
        lr, reg = p['lr'], p['reg']
        self.user_bias = None
        self.item_bias = None

        for epoch in range(p['n_epochs']):
            users, positives, negatives = self._sample_triples(train_set, rng)
            epoch_loss = 0.0

            for u, i, j in zip(users, positives, negatives):
                pu = self.user_factors[u].copy()
                qi = self.item_factors[i].copy()
                qj = self.item_factors[j].copy()

                diff = np.dot(pu, qi - qj)
                grad = expit(-diff)
                epoch_loss -= np.log(expit(diff) + 1e-12)

                self.item_factors[i] += lr * (grad * pu - reg * qi)
                self.item_factors[j] += lr * (-grad * pu - reg * qj)
                self.user_factors[u] += lr * (grad * (qi - qj) - reg * pu)

            self._check_finite(epoch, user_factors=self.user_factors, item_factors=self.item_factors)
            loss = float(epoch_loss / max(len(users), 1))
            self.training_history.append({'epoch': epoch + 1, 'bpr_loss': loss})
            logger.debug(f"SVD(bpr) epoch {epoch + 1}/{p['n_epochs']}: loss {loss:.4f}")

    def _estimate(self, user_index, item_index):
        estimate = self.global_mean
        if user_index is not None:
            estimate += self.user_bias[user_index]
        if item_index is not None:
            estimate += self.item_bias[item_index]
        if user_index is not None and item_index is not None:
            estimate += np.dot(self.user_factors[user_index], self.item_factors[item_index])
        return estimate

    def _scores(self, user_index, item_indices):
        if self.params['optimizer'] == 'bpr':
            if user_index is None:
                return np.zeros(len(item_indices))
            return self.item_factors[item_indices] @ self.user_factors[user_index]
        scores = self.global_mean + self.item_bias[item_indices]
        if user_index is not None:
            scores = scores + self.user_bias[user_index] + self.item_factors[item_indices] @ self.user_factors[user_index]
        return scores


# ============================================================================
# SVD++
# ============================================================================

class SVDpp(BaseModel):
    """
    SVD with implicit feedback:
        r̂_ui = μ + b_u + b_i + q_i^T (p_u + |N(u)|^-1/2 Σ_{j ∈ N(u)} y_j)

    N(u) is every item the user rated, whatever the rating value. Training
    visits users in turn; the implicit sum is computed once per user visit
    and the y_j gradients are applied at the end of the visit.
    """

    defaults = config.SVDPP_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        self.user_factors: Optional[np.ndarray] = None
        self.item_factors: Optional[np.ndarray] = None
        self.implicit_factors: Optional[np.ndarray] = None
        self.user_bias: Optional[np.ndarray] = None
        self.item_bias: Optional[np.ndarray] = None
        self._user_implicit: Optional[np.ndarray] = None

    def _implicit_term(self, train_set: Dataset, user_index: int) -> np.ndarray:
        indices, _ = train_set.user_row(user_index)
        return self.implicit_factors[indices].sum(axis=0) / np.sqrt(len(indices))

    def _fit(self, train_set: Dataset) -> None:
        p = self.params
        lr, reg = p['lr'], p['reg']
        mu = train_set.global_mean
        rng = np.random.RandomState(p['random_state'])

        n_users, n_items, n_factors = train_set.n_users, train_set.n_items, p['n_factors']
        self.user_factors = rng.normal(p['init_mean'], p['init_std'], (n_users, n_factors))
        self.item_factors = rng.normal(p['init_mean'], p['init_std'], (n_items, n_factors))
        self.implicit_factors = rng.normal(p['init_mean'], p['init_std'], (n_items, n_factors))
        self.user_bias = np.zeros(n_users)
        self.item_bias = np.zeros(n_items)

        for epoch in range(p['n_epochs']):
            user_order = rng.permutation(n_users) if p['shuffle'] else np.arange(n_users)
            epoch_loss = 0.0

            for u in user_order:
                rated, ratings = train_set.user_row(u)
                norm = 1.0 / np.sqrt(len(rated))
                implicit = self.implicit_factors[rated].sum(axis=0) * norm
                implicit_grad = np.zeros(n_factors)

                positions = rng.permutation(len(rated)) if p['shuffle'] else range(len(rated))
                for pos in positions:
                    i, r = rated[pos], ratings[pos]
                    pu = self.user_factors[u]
                    qi = self.item_factors[i]

                    error = r - (mu + self.user_bias[u] + self.item_bias[i] + np.dot(qi, pu + implicit))
                    epoch_loss += error ** 2

                    self.user_bias[u] += lr * (error - reg * self.user_bias[u])
                    self.item_bias[i] += lr * (error - reg * self.item_bias[i])

                    user_factor_old = pu.copy()
                    item_factor_old = qi.copy()
                    self.user_factors[u] += lr * (error * qi - reg * pu)
                    self.item_factors[i] += lr * (error * (user_factor_old + implicit) - reg * qi)
                    implicit_grad += error * norm * item_factor_old

                self.implicit_factors[rated] += lr * (implicit_grad - reg * self.implicit_factors[rated])

            self._check_finite(epoch, user_factors=self.user_factors, item_factors=self.item_factors,
                               implicit_factors=self.implicit_factors,
                               user_bias=self.user_bias, item_bias=self.item_bias)
            logger.debug(f"SVD++ epoch {epoch + 1}/{p['n_epochs']}: "
                         f"train RMSE {np.sqrt(epoch_loss / train_set.n_ratings):.4f}")

        self._user_implicit = np.vstack([
            self._implicit_term(train_set, u) for u in range(n_users)
        ])

    def _estimate(self, user_index, item_index):
        estimate = self.global_mean
        if user_index is not None:
            estimate += self.user_bias[user_index]
        if item_index is not None:
            estimate += self.item_bias[item_index]
        if user_index is not None and item_index is not None:
            estimate += np.dot(self.item_factors[item_index],
                               self.user_factors[user_index] + self._user_implicit[user_index])
        return estimate

    def _scores(self, user_index, item_indices):
        scores = self.global_mean + self.item_bias[item_indices]
        if user_index is not None:
            user_vector = self.user_factors[user_index] + self._user_implicit[user_index]
            scores = scores + self.user_bias[user_index] + self.item_factors[item_indices] @ user_vector
        return scores


# ============================================================================
# NMF
# ============================================================================

class NMF(BaseModel):
    """
    Non-negative matrix factorization: r̂_ui = q_i^T p_u with p_u, q_i >= 0.

    Factors start uniform in [init_low, init_high) and follow multiplicative
    updates, which keep them non-negative:
        p_uf *= Σ_i q_if r_ui / (Σ_i q_if r̂_ui + |I(u)| reg_user p_uf)
        q_if *= Σ_u p_uf r_ui / (Σ_u p_uf r̂_ui + |U(i)| reg_item q_if)
    Unknown users or items fall back to the global mean.
    """

    defaults = config.NMF_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        self.user_factors: Optional[np.ndarray] = None
        self.item_factors: Optional[np.ndarray] = None

    def _fit(self, train_set: Dataset) -> None:
        p = self.params
        rng = np.random.RandomState(p['random_state'])
        n_factors = p['n_factors']
        P = rng.uniform(p['init_low'], p['init_high'], (train_set.n_users, n_factors))
        Q = rng.uniform(p['init_low'], p['init_high'], (train_set.n_items, n_factors))

        ratings = train_set.to_csr()
        estimates = train_set.to_csr()
        # Ratings in the row-major order of the CSR data array
        order = np.lexsort((train_set.item_indices, train_set.user_indices))
        users, items = train_set.user_indices[order], train_set.item_indices[order]
        user_counts = np.asarray(train_set.user_counts, dtype=np.float64)[:, None]
        item_counts = np.asarray(train_set.item_counts, dtype=np.float64)[:, None]

        for epoch in range(p['n_epochs']):
            estimates.data = np.sum(P[users] * Q[items], axis=1)

            user_num = ratings @ Q
            user_denom = estimates @ Q + user_counts * p['reg_user'] * P
            item_num = ratings.T @ P
            item_denom = estimates.T @ P + item_counts * p['reg_item'] * Q

            P = P * np.divide(user_num, user_denom, out=np.zeros_like(P), where=user_denom > 0)
            Q = Q * np.divide(item_num, item_denom, out=np.zeros_like(Q), where=item_denom > 0)
            self._check_finite(epoch, user_factors=P, item_factors=Q)

        self.user_factors = P
        self.item_factors = Q

    def _estimate(self, user_index, item_index):
        if user_index is None or item_index is None:
            return self.global_mean
        return np.dot(self.user_factors[user_index], self.item_factors[item_index])

    def _scores(self, user_index, item_indices):
        if user_index is None:
            return np.full(len(item_indices), self.global_mean)
        return self.item_factors[item_indices] @ self.user_factors[user_index]


# ============================================================================
# WRMF
# ============================================================================

class WRMF(BaseModel):
    """
    Weighted regularized matrix factorization for implicit feedback.

    Every (user, item) pair is an observation: preference 1 with confidence
    1 + alpha * r_ui when rated, preference 0 with confidence 1 otherwise.
    Each epoch solves, per user then per item,
        x_u = (Y^T C^u Y + reg I)^-1 Y^T C^u p(u)
    using Y^T C^u Y = Y^T Y + Y^T (C^u - I) Y so only rated items are visited.
    Supports rank() only.
    """

    defaults = config.WRMF_CONFIG

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(params)
        self.user_factors: Optional[np.ndarray] = None
        self.item_factors: Optional[np.ndarray] = None

    @property
    def supports_predict(self) -> bool:
        return False

    def _solve(self, fixed: np.ndarray, rows: Tuple[np.ndarray, np.ndarray], base_gram: np.ndarray) -> np.ndarray:
        """Solve one entity's system; base_gram is fixed^T fixed + reg I, shared by all entities."""
        indices, values = rows
        if len(indices) == 0:
            return np.zeros(fixed.shape[1])
        confidence = 1.0 + self.params['alpha'] * values
        rated = fixed[indices]
        gram = base_gram + rated.T @ ((confidence - 1.0)[:, None] * rated)
        return np.linalg.solve(gram, rated.T @ confidence)

    def _fit(self, train_set: Dataset) -> None:
        p = self.params
        rng = np.random.RandomState(p['random_state'])
        n_factors = p['n_factors']
        X = rng.normal(p['init_mean'], p['init_std'], (train_set.n_users, n_factors))
        Y = rng.normal(p['init_mean'], p['init_std'], (train_set.n_items, n_factors))
        reg_eye = p['reg'] * np.eye(n_factors)

        for epoch in range(p['n_epochs']):
            try:
                item_gram = Y.T @ Y + reg_eye
                X = np.vstack([self._solve(Y, train_set.user_row(u), item_gram) for u in range(train_set.n_users)])
                user_gram = X.T @ X + reg_eye
                Y = np.vstack([self._solve(X, train_set.item_column(i), user_gram) for i in range(train_set.n_items)])
            except np.linalg.LinAlgError as e:
                raise FitError(f"WRMF: singular system in epoch {epoch + 1}: {e}",
                               model_name='WRMF', epoch=epoch) from e
            self._check_finite(epoch, user_factors=X, item_factors=Y)
            logger.debug(f"WRMF epoch {epoch + 1}/{p['n_epochs']} done")

        self.user_factors = X
        self.item_factors = Y

    def _scores(self, user_index, item_indices):
        if user_index is None:
            return np.zeros(len(item_indices))
        return self.item_factors[item_indices] @ self.user_factors[user_index]
