"""
Configuration, training callbacks and the shared estimator base.

``BoosterParams`` holds every hyperparameter of the boosting loop and the
split core. Estimators keep one instance in ``self.params``; callbacks
observe the loop after each round and may ask it to stop.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, List, Optional

import numpy as np

from .utils import check_is_fitted

# Model file layout version written by ``save_model``.
MODEL_FORMAT_VERSION = 1


# =============================================================================
# Hyperparameters
# =============================================================================

# Alternative spellings accepted on input
PARAM_ALIASES = {
    'n_estimators': 'num_iterations',
    'num_boost_round': 'num_iterations',
    'reg_lambda': 'lambda_l2',
    'eta': 'learning_rate',
}


@dataclass
class BoosterParams:
    """
    Hyperparameters of an exact-greedy booster.

    Parameters
    ----------
    num_iterations : int
        Trees to build.
    learning_rate : float
        Shrinkage applied to every tree's output.
    max_depth : int
        Deepest level a node may be split at; -1 means no limit.
    lambda_l2 : float
        λ, added to every Hessian sum in gains and leaf weights.
    gamma : float
        γ, charged against every candidate split's gain.
    early_stopping_rounds : int or None
        Patience, in rounds, on the validation loss.
    allow_nan : bool
        Accept NaN feature values and treat them as missing.
    warm_start : bool
        Append to the trees of a previous fit instead of starting over.
    verbose : int
        0 silent, 1 per-round progress, 2 every split.
    """
    num_iterations: int = 100
    learning_rate: float = 0.3
    max_depth: int = 6
    lambda_l2: float = 1.0
    gamma: float = 0.0
    early_stopping_rounds: Optional[int] = None
    allow_nan: bool = True
    warm_start: bool = False
    verbose: int = 0

    @classmethod
    def names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @staticmethod
    def canonical_name(name: str) -> str:
        return PARAM_ALIASES.get(name, name)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "BoosterParams":
        """
        Build parameters from a mapping.

        Aliases are resolved; keys that name no parameter are dropped, so
        model files carrying extra entries still load.
        """
        known = set(cls.names())
        resolved = {}
        for key, value in params.items():
            key = cls.canonical_name(key)
            if key in known:
                resolved[key] = value
        return cls(**resolved)

    def validate(self) -> None:
        """
        Check every parameter against its allowed range.

        Raises
        ------
        ValueError
            Naming the first parameter that is out of range.
        """
        checks = [
            (self.num_iterations > 0, 'num_iterations', 'must be positive'),
            (self.learning_rate > 0, 'learning_rate', 'must be positive'),
            (self.max_depth == -1 or self.max_depth > 0, 'max_depth',
             'must be -1 or positive'),
            (self.lambda_l2 >= 0, 'lambda_l2', 'must be non-negative'),
            (self.gamma >= 0, 'gamma', 'must be non-negative'),
            (self.early_stopping_rounds is None or self.early_stopping_rounds > 0,
             'early_stopping_rounds', 'must be positive or None'),
            (self.verbose >= 0, 'verbose', 'must be non-negative'),
        ]
        for ok, name, rule in checks:
            if not ok:
                raise ValueError(f"{name} {rule}, got {getattr(self, name)!r}")


# =============================================================================
# Callbacks
# =============================================================================

class Callback(ABC):
    """
    Hook into the boosting loop.

    ``on_train_begin`` runs once per ``fit`` call; ``on_iteration_end`` runs
    after each tree has been added and returns True to stop training.
    """

    def on_train_begin(self, model: "BaseEstimator") -> None:
        pass

    @abstractmethod
    def on_iteration_end(
        self,
        iteration: int,
        model: "BaseEstimator",
        train_loss: float,
        val_loss: Optional[float] = None,
    ) -> bool:
        """
        Parameters
        ----------
        iteration : int
            0-based index of the round that just finished.
        model : BaseEstimator
            Estimator being trained; its ``trees_`` already include the
            new tree.
        train_loss, val_loss : float
            Losses after this round; ``val_loss`` is None without an
            evaluation set.

        Returns
        -------
        stop : bool
        """


class EarlyStoppingCallback(Callback):
    """
    Stop once the monitored loss stalls.

    The validation loss is monitored when available, the training loss
    otherwise.

    Parameters
    ----------
    patience : int
        Rounds without improvement tolerated before stopping.
    min_delta : float
        Decrease required to count as an improvement.

    Attributes
    ----------
    best_loss : float or None
    best_iteration : int or None
    stopped_iteration : int or None
        Round at which the stop was requested.
    """

    def __init__(self, patience: int = 10, min_delta: float = 0.0):
        if patience <= 0:
            raise ValueError(f"patience must be positive, got {patience}")
        self.patience = patience
        self.min_delta = min_delta
        self.on_train_begin(None)

    def on_train_begin(self, model: Optional["BaseEstimator"]) -> None:
        self.best_loss: Optional[float] = None
        self.best_iteration: Optional[int] = None
        self.stopped_iteration: Optional[int] = None
        self.wait = 0

    def on_iteration_end(self, iteration, model, train_loss, val_loss=None) -> bool:
        loss = train_loss if val_loss is None else val_loss
        if self.best_loss is None or loss < self.best_loss - self.min_delta:
            self.best_loss = loss
            self.best_iteration = iteration
            self.wait = 0
            return False

        self.wait += 1
        if self.wait < self.patience:
            return False
        self.stopped_iteration = iteration
        return True


class PrintProgressCallback(Callback):
    """Print the losses every ``print_every`` rounds."""

    def __init__(self, print_every: int = 10):
        self.print_every = print_every

    def on_iteration_end(self, iteration, model, train_loss, val_loss=None) -> bool:
        if (iteration + 1) % self.print_every == 0:
            line = f"[Iter {iteration + 1}] train_loss: {train_loss:.6f}"
            if val_loss is not None:
                line += f", val_loss: {val_loss:.6f}"
            print(line)
        return False


# =============================================================================
# Estimator base
# =============================================================================

class BaseEstimator(ABC):
    """
    State and persistence shared by exactgbdt estimators.

    Subclasses implement ``fit``/``predict`` and may store extra fitted
    attributes through ``_get_extra_save_data``/``_load_extra_save_data``.
    """

    def __init__(self, **params: Any):
        self.params = BoosterParams.from_dict(params)
        self._reset_fitted_state()

    def _reset_fitted_state(self) -> None:
        self.trees_: List[Any] = []
        self.n_features_: Optional[int] = None
        self.n_iter_: int = 0
        self.is_fitted_: bool = False
        self.callbacks_: List[Callback] = []
        self.training_history_: Dict[str, List[float]] = {
            "train_loss": [],
            "val_loss": [],
        }

    @property
    def num_iterations(self) -> int:
        return self.params.num_iterations

    @property
    def learning_rate(self) -> float:
        return self.params.learning_rate

    @property
    def max_depth(self) -> int:
        return self.params.max_depth

    @property
    def verbose(self) -> int:
        return self.params.verbose

    @abstractmethod
    def fit(self, X, y, **kwargs) -> "BaseEstimator":
        ...

    @abstractmethod
    def predict(self, X) -> np.ndarray:
        ...

    def get_params(self) -> Dict[str, Any]:
        return self.params.to_dict()

    def set_params(self, **params: Any) -> "BaseEstimator":
        """
        Update hyperparameters in place; aliases are accepted.

        Raises
        ------
        ValueError
            If a name matches no parameter.
        """
        known = set(BoosterParams.names())
        for key, value in params.items():
            name = BoosterParams.canonical_name(key)
            if name not in known:
                raise ValueError(f"Invalid parameter: {key}")
            setattr(self.params, name, value)
        return self

    def _validate_params(self) -> None:
        self.params.validate()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible snapshot of the fitted model."""
        check_is_fitted(self)
        data = {
            "format_version": MODEL_FORMAT_VERSION,
            "estimator": type(self).__name__,
            "params": self.params.to_dict(),
            "n_features_": self.n_features_,
            "n_iter_": self.n_iter_,
            "trees_": [tree.to_dict() for tree in self.trees_],
            "training_history_": self.training_history_,
        }
        data.update(self._get_extra_save_data())
        return data

    def from_dict(self, data: Dict[str, Any]) -> "BaseEstimator":
        """Restore the state written by ``to_dict``."""
        from .tree import RegressionTree

        version = data.get("format_version", MODEL_FORMAT_VERSION)
        if version > MODEL_FORMAT_VERSION:
            raise ValueError(
                f"model format {version} is newer than supported "
                f"({MODEL_FORMAT_VERSION})"
            )

        self._reset_fitted_state()
        self.params = BoosterParams.from_dict(data["params"])
        self.n_features_ = data["n_features_"]
        self.n_iter_ = data["n_iter_"]
        self.trees_ = [RegressionTree.from_dict(tree) for tree in data["trees_"]]
        self.training_history_.update(data.get("training_history_", {}))
        self._load_extra_save_data(data)
        self.is_fitted_ = True
        return self

    def save_model(self, path: str) -> None:
        """Write the fitted model to ``path`` as JSON."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def load_model(self, path: str) -> "BaseEstimator":
        """Read a model written by ``save_model``; returns ``self``."""
        with open(path, 'r') as f:
            return self.from_dict(json.load(f))

    def _get_extra_save_data(self) -> Dict[str, Any]:
        return {}

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        pass

    def __repr__(self) -> str:
        defaults = BoosterParams()
        changed = ", ".join(
            f"{name}={value!r}"
            for name, value in self.get_params().items()
            if value != getattr(defaults, name)
        )
        return f"{type(self).__name__}({changed})"
