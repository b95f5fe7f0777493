"""
Input validation, package exceptions, regression metrics and logging.

NumPy only. Logging follows the package convention of printing
``[ExactGBDT]``-prefixed lines gated by the caller's ``verbose`` level.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np


ArrayLike = Union[np.ndarray, List[Any], Tuple[Any, ...]]


# =============================================================================
# Exceptions
# =============================================================================

class NotFittedError(ValueError):
    """Raised when an estimator is used before ``fit``."""


class InvariantViolationError(RuntimeError):
    """
    Raised when an internal bookkeeping contract of the split core is broken.

    Examples are re-initialising the active-node buffer while it still holds
    nodes, child statistics that do not add up to their parent, or splitting
    a node that has already been finalised. These indicate a programming
    defect in the caller and abort the boosting round.
    """


# =============================================================================
# Validation
# =============================================================================

def _as_array(X: Any, dtype: type) -> np.ndarray:
    """Convert lists, tuples, pandas objects and array-likes to ndarray."""
    if isinstance(X, (list, tuple)):
        return np.array(X, dtype=dtype)
    # pandas DataFrame / Series expose their data as ``.values``
    data = getattr(X, 'values', X)
    try:
        return np.asarray(data, dtype=dtype)
    except (TypeError, ValueError) as e:
        raise TypeError(
            f"Cannot convert input of type {type(X).__name__} to numpy array: {e}"
        ) from e


def check_array(
    X: ArrayLike,
    *,
    ensure_2d: bool = True,
    allow_nan: bool = True,
    dtype: type = float,
    copy: bool = False,
) -> np.ndarray:
    """
    Validate an array and convert it to ``dtype``.

    Parameters
    ----------
    X : array-like
        ndarray, nested sequence or pandas object.
    ensure_2d : bool, default=True
        Reshape 1D input to a single column; reject 3D and higher.
    allow_nan : bool, default=True
        Whether NaN, the missing-value marker, is accepted.
    dtype : type, default=float
    copy : bool, default=False
        Return a copy even when ``X`` already is a suitable ndarray.

    Returns
    -------
    X_converted : np.ndarray

    Raises
    ------
    ValueError
        On empty input, infinite values, disallowed NaN or bad
        dimensionality.
    TypeError
        If the input cannot be converted.
    """
    if isinstance(X, np.ndarray):
        arr = X.copy() if copy else X
        if arr.dtype != dtype:
            arr = arr.astype(dtype)
    else:
        arr = _as_array(X, dtype)

    if ensure_2d:
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        elif arr.ndim != 2:
            raise ValueError(f"Expected 2D array, got {arr.ndim}D array instead.")

    if arr.size == 0:
        raise ValueError("Input array cannot be empty.")
    if np.isinf(arr).any():
        raise ValueError("Input array contains infinite values.")
    if not allow_nan and np.isnan(arr).any():
        raise ValueError("Input array contains NaN values but allow_nan=False.")
    return arr


def check_X_y(
    X: ArrayLike,
    y: ArrayLike,
    *,
    allow_nan: bool = True,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Validate a feature matrix and its regression targets together.

    ``X`` may hold NaN (missing values) when ``allow_nan``; ``y`` must be
    finite and one-dimensional (a single column is flattened).

    Raises
    ------
    ValueError
        If either array is invalid or their lengths differ.
    """
    X = check_array(X, ensure_2d=True, allow_nan=allow_nan)
    y = check_array(y, ensure_2d=False, allow_nan=False)

    if y.ndim == 2 and y.shape[1] == 1:
        y = y[:, 0]
    if y.ndim != 1:
        raise ValueError(f"y has shape {y.shape}, expected 1D array.")
    if len(X) != len(y):
        raise ValueError(
            f"Found input variables with inconsistent numbers of samples: "
            f"X has {len(X)} samples, y has {len(y)} samples."
        )
    return X, y


def _is_set(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (list, np.ndarray)):
        return len(value) > 0
    return True


def check_is_fitted(estimator: Any, attributes: Optional[Sequence[str]] = None) -> None:
    """
    Raise ``NotFittedError`` unless one of ``attributes`` is set.

    An attribute counts as set when it is not None, not False and not an
    empty list or array. Defaults to ``('trees_', 'is_fitted_')``.
    """
    if attributes is None:
        attributes = ('trees_', 'is_fitted_')
    if not any(_is_set(getattr(estimator, name, None)) for name in attributes):
        raise NotFittedError(
            f"This {type(estimator).__name__} instance is not fitted yet. "
            "Call 'fit' with appropriate arguments before using this estimator."
        )


# =============================================================================
# Metrics
# =============================================================================

def mean_squared_error(y_true: ArrayLike, y_pred: ArrayLike) -> float:
    residual = np.asarray(y_true, dtype=float) - np.asarray(y_pred, dtype=float)
    return float(np.mean(residual ** 2))


def r2_score(y_true: ArrayLike, y_pred: ArrayLike) -> float:
    """
    Coefficient of determination.

    Returns 0.0 for constant targets instead of dividing by zero.
    """
    y_true = np.asarray(y_true, dtype=float)
    ss_tot = np.sum((y_true - y_true.mean()) ** 2)
    if ss_tot == 0:
        return 0.0
    ss_res = np.sum((y_true - np.asarray(y_pred, dtype=float)) ** 2)
    return float(1 - ss_res / ss_tot)


# =============================================================================
# Logging
# =============================================================================

LOG_PREFIX = "[ExactGBDT]"


def log_message(message: str, *, verbose: int = 0, level: int = 1) -> None:
    """
    Print ``message`` when ``verbose >= level``.

    Level 1 is per-round progress, level 2 is per-split debugging.
    """
    if verbose >= level:
        print(f"{LOG_PREFIX} {message}")


def log_training_progress(
    iteration: int,
    total_iterations: int,
    metric_value: float,
    *,
    verbose: int = 0,
    metric_name: str = "loss",
) -> None:
    """
    Report one finished round (``iteration`` is 1-based).
    """
    percent = 100.0 * iteration / total_iterations
    log_message(
        f"Iter {iteration}/{total_iterations} ({percent:.1f}%) - "
        f"{metric_name}: {metric_value:.6f}",
        verbose=verbose,
    )
