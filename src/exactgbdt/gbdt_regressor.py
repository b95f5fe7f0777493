"""
Exact-greedy gradient boosting regressor.

The boosting loop around the split core: the training matrix is turned
into a column store once per ``fit``, then every round grows one tree on
the squared-error gradients of the current predictions and adds its
shrunk output to them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .base import BaseEstimator, Callback, EarlyStoppingCallback
from .dataset import ColumnDataset
from .grower import TreeGrower
from .loss_functions import Loss, SquaredErrorLoss, get_loss_function
from .splitter import Splitter
from .utils import (
    check_array,
    check_X_y,
    check_is_fitted,
    log_message,
    log_training_progress,
    r2_score,
)


class ExactGBDTRegressor(BaseEstimator):
    """
    Gradient boosting regressor with exact-greedy, column-scan split search.

    Trees are grown depth-wise: at every level all open nodes are searched
    in one pass per feature. Missing values (NaN) are sent to the left child.

    Parameters
    ----------
    num_iterations : int, default=100
        Number of boosting rounds (trees).
    learning_rate : float, default=0.3
        Shrinkage of each tree's output.
    max_depth : int, default=6
        Maximum tree depth. -1 means unlimited.
    lambda_l2 : float, default=1.0
        L2 regularization (λ).
    gamma : float, default=0.0
        Penalty subtracted from each candidate split's gain (γ).
    objective : str or Loss, default='squared_error'
        Only squared-error objectives are accepted.
    early_stopping_rounds : int or None, default=None
        Stop when the ``eval_set`` loss has not improved for this many rounds.
    allow_nan : bool, default=True
        Accept NaN (missing) feature values.
    warm_start : bool, default=False
        Keep the trees of the previous fit and add new ones.
    verbose : int, default=0
        0 silent, 1 progress, 2 debug.
    n_estimators, reg_lambda : optional
        Aliases of ``num_iterations`` and ``lambda_l2``.

    Attributes
    ----------
    trees_ : list of RegressionTree
    init_prediction_ : float
        Mean training target; every prediction starts from it.
    n_features_ : int
    n_iter_ : int
        Number of trees built.
    best_iteration_ : int or None
        Index of the tree with the lowest ``eval_set`` loss when early
        stopping is on.
    training_history_ : dict
        ``train_loss`` and ``val_loss`` per round.

    Examples
    --------
    >>> from exactgbdt import ExactGBDTRegressor
    >>> import numpy as np
    >>> X = np.random.randn(100, 5)
    >>> y = X[:, 0] + 2 * X[:, 1]
    >>> model = ExactGBDTRegressor(num_iterations=20, max_depth=3)
    >>> model.fit(X, y)
    >>> predictions = model.predict(X)
    """

    def __init__(
        self,
        num_iterations: int = 100,
        learning_rate: float = 0.3,
        max_depth: int = 6,
        lambda_l2: float = 1.0,
        gamma: float = 0.0,
        objective: Any = 'squared_error',
        early_stopping_rounds: Optional[int] = None,
        allow_nan: bool = True,
        warm_start: bool = False,
        verbose: int = 0,
        n_estimators: Optional[int] = None,
        reg_lambda: Optional[float] = None,
    ):
        params = dict(
            num_iterations=num_iterations,
            learning_rate=learning_rate,
            max_depth=max_depth,
            lambda_l2=lambda_l2,
            gamma=gamma,
            early_stopping_rounds=early_stopping_rounds,
            allow_nan=allow_nan,
            warm_start=warm_start,
            verbose=verbose,
        )
        # Aliases win over the canonical names when given
        if n_estimators is not None:
            del params['num_iterations']
            params['n_estimators'] = n_estimators
        if reg_lambda is not None:
            del params['lambda_l2']
            params['reg_lambda'] = reg_lambda
        super().__init__(**params)

        self.objective = objective
        self.init_prediction_: Optional[float] = None
        self.loss_function_: Optional[Loss] = None
        self.best_iteration_: Optional[int] = None

    def _get_loss_function(self) -> Loss:
        # The split core always works on squared-error gradient pairs
        if isinstance(self.objective, SquaredErrorLoss):
            return self.objective
        if isinstance(self.objective, Loss):
            raise ValueError(
                f"objective {type(self.objective).__name__} is not supported; "
                "only squared error can be optimised"
            )
        if isinstance(self.objective, str):
            return get_loss_function(self.objective)
        raise ValueError(
            f"objective must be a string or Loss instance, got {type(self.objective)}"
        )

    # -------------------------------------------------------------------------
    # Training
    # -------------------------------------------------------------------------

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        *,
        eval_set: Optional[Tuple[np.ndarray, np.ndarray]] = None,
        callbacks: Optional[List[Callback]] = None,
    ) -> "ExactGBDTRegressor":
        """
        Fit the regressor.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Training features, NaN for missing values.
        y : array-like of shape (n_samples,)
            Training targets.
        eval_set : tuple of (X_val, y_val) or None, default=None
            Held-out data; its loss drives ``early_stopping_rounds``.
        callbacks : list of Callback or None, default=None
            Called after every round.

        Returns
        -------
        self : ExactGBDTRegressor
        """
        self._validate_params()
        X, y = check_X_y(X, y, allow_nan=self.params.allow_nan)

        if self.params.warm_start and self.is_fitted_:
            if X.shape[1] != self.n_features_:
                raise ValueError(
                    f"Number of features mismatch. Expected {self.n_features_}, "
                    f"got {X.shape[1]}."
                )
        else:
            self._start_fresh(X, y)

        val = None
        if eval_set is not None:
            val = check_X_y(*eval_set, allow_nan=self.params.allow_nan)
            if val[0].shape[1] != self.n_features_:
                raise ValueError(
                    f"eval_set has {val[0].shape[1]} features, expected {self.n_features_}"
                )

        self.callbacks_ = list(callbacks or [])
        stopper = None
        if self.params.early_stopping_rounds is not None and val is not None:
            stopper = EarlyStoppingCallback(patience=self.params.early_stopping_rounds)
            self.callbacks_.append(stopper)
        for callback in self.callbacks_:
            callback.on_train_begin(self)

        n_before = self.n_iter_
        self._boost(X, y, val)

        if stopper is not None and stopper.best_iteration is not None:
            self.best_iteration_ = n_before + stopper.best_iteration
        self.is_fitted_ = True
        return self

    def _start_fresh(self, X: np.ndarray, y: np.ndarray) -> None:
        self._reset_fitted_state()
        self.n_features_ = X.shape[1]
        self.best_iteration_ = None
        self.loss_function_ = self._get_loss_function()
        self.init_prediction_ = self.loss_function_.init_prediction(y)

    def _raw_predict(self, X: np.ndarray) -> np.ndarray:
        y_pred = np.full(X.shape[0], self.init_prediction_)
        for tree in self.trees_:
            y_pred += self.params.learning_rate * tree.predict(X)
        return y_pred

    def _boost(
        self,
        X: np.ndarray,
        y: np.ndarray,
        val: Optional[Tuple[np.ndarray, np.ndarray]],
    ) -> None:
        """Run up to ``num_iterations`` rounds."""
        params = self.params
        dataset = ColumnDataset.from_dense(X)
        splitter = Splitter(
            dataset, lambda_l2=params.lambda_l2, gamma=params.gamma, verbose=params.verbose
        )
        grower = TreeGrower(splitter, max_depth=params.max_depth, verbose=params.verbose)
        log_message(
            f"training on {dataset.n_instances} instances, "
            f"{dataset.n_features} features",
            verbose=params.verbose,
        )

        # Trees from a warm start already contribute
        y_pred = self._raw_predict(X)
        val_pred = self._raw_predict(val[0]) if val is not None else None

        for iteration in range(params.num_iterations):
            tree = grower.grow(y_pred, y)
            y_pred += params.learning_rate * tree.predict(X)
            self.trees_.append(tree)
            self.n_iter_ += 1

            train_loss = self.loss_function_(y, y_pred)
            self.training_history_["train_loss"].append(train_loss)
            val_loss = None
            if val is not None:
                val_pred += params.learning_rate * tree.predict(val[0])
                val_loss = self.loss_function_(val[1], val_pred)
                self.training_history_["val_loss"].append(val_loss)

            log_training_progress(
                iteration + 1,
                params.num_iterations,
                train_loss if val_loss is None else val_loss,
                verbose=params.verbose,
                metric_name="train_loss" if val_loss is None else "val_loss",
            )

            # Every callback sees the round even if an earlier one asks to stop
            stop = [cb.on_iteration_end(iteration, self, train_loss, val_loss)
                    for cb in self.callbacks_]
            if any(stop):
                log_message(
                    f"stopping early after {self.n_iter_} trees",
                    verbose=params.verbose,
                )
                break

    # -------------------------------------------------------------------------
    # Inference
    # -------------------------------------------------------------------------

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Predict targets: ``init_prediction_ + learning_rate * Σ tree(X)``.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            NaN marks missing values.

        Returns
        -------
        y_pred : np.ndarray of shape (n_samples,)
        """
        check_is_fitted(self)
        X = check_array(X, ensure_2d=True, allow_nan=self.params.allow_nan)
        if X.shape[1] != self.n_features_:
            raise ValueError(
                f"Expected {self.n_features_} features, got {X.shape[1]}"
            )
        return self._raw_predict(X)

    def score(self, X: np.ndarray, y: np.ndarray) -> float:
        """R² of the predictions on ``(X, y)``."""
        return r2_score(y, self.predict(X))

    @property
    def feature_importances_(self) -> np.ndarray:
        """Total split gain per feature across trees, normalised to sum to 1."""
        check_is_fitted(self)
        importances = np.zeros(self.n_features_)
        for tree in self.trees_:
            importances += tree.feature_importances_
        total = importances.sum()
        return importances / total if total > 0 else importances

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _get_extra_save_data(self) -> Dict[str, Any]:
        objective = self.objective if isinstance(self.objective, str) else "squared_error"
        return {
            "objective": objective,
            "init_prediction_": self.init_prediction_,
            "best_iteration_": self.best_iteration_,
        }

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        self.objective = model_data.get("objective", "squared_error")
        self.init_prediction_ = model_data.get("init_prediction_", 0.0)
        self.best_iteration_ = model_data.get("best_iteration_")
        self.loss_function_ = self._get_loss_function()


__all__ = ['ExactGBDTRegressor']
