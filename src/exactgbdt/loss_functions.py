"""
Objective functions.

Only squared error is provided: the split core assumes unit Hessians and
``gradient = prediction - target``. The ``Loss`` interface keeps the
estimator independent of that choice for the loss value and the initial
prediction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np


class Loss(ABC):
    """
    Interface of a twice-differentiable objective.

    Implementations give the loss value reported during training, the
    first and second derivatives with respect to the prediction, and the
    constant the boosting starts from.
    """

    @abstractmethod
    def __call__(self, y_true: np.ndarray, y_pred: np.ndarray) -> float:
        ...

    @abstractmethod
    def gradient(self, y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def hessian(self, y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def init_prediction(self, y: np.ndarray) -> float:
        ...

    def gradient_hessian(
        self, y_true: np.ndarray, y_pred: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        return self.gradient(y_true, y_pred), self.hessian(y_true, y_pred)


class SquaredErrorLoss(Loss):
    """
    L(y, f) = 0.5 * (y - f)^2, averaged over samples.

    With the 0.5 factor, dL/df = f - y and d²L/df² = 1.
    """

    def __call__(self, y_true: np.ndarray, y_pred: np.ndarray) -> float:
        return float(0.5 * np.mean((y_true - y_pred) ** 2))

    def gradient(self, y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
        return y_pred - y_true

    def hessian(self, y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
        return np.ones_like(y_true, dtype=float)

    def init_prediction(self, y: np.ndarray) -> float:
        """The mean target minimises the loss of a constant model."""
        return float(np.mean(y))


_OBJECTIVES = {
    'squared_error': SquaredErrorLoss,
    'mse': SquaredErrorLoss,
    'l2': SquaredErrorLoss,
    'mean_squared_error': SquaredErrorLoss,
    'reg:squarederror': SquaredErrorLoss,
}


def get_loss_function(objective: str) -> Loss:
    """
    Look up an objective by name.

    Names are case-insensitive and ``-`` is read as ``_``.

    Raises
    ------
    ValueError
        For anything but a squared-error alias.
    """
    key = objective.lower().replace('-', '_')
    try:
        return _OBJECTIVES[key]()
    except KeyError:
        raise ValueError(
            f"Unknown objective '{objective}'. Supported: {sorted(_OBJECTIVES)}"
        ) from None


__all__ = ['Loss', 'SquaredErrorLoss', 'get_loss_function']
