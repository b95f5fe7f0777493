"""
Test suite for utility functions in the exactgbdt package.

Covers input validation, the fitted check and the regression metrics.
"""

import numpy as np
import pandas as pd
import pytest

import sys
from pathlib import Path
_repo_root = Path(__file__).resolve().parents[1]
src_path = str(_repo_root / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from exactgbdt import ExactGBDTRegressor
from exactgbdt.utils import (
    check_array,
    check_X_y,
    check_is_fitted,
    NotFittedError,
    mean_squared_error,
    r2_score,
)


# =============================================================================
# check_array Tests
# =============================================================================

def test_check_array_accepts_numpy():
    X = np.array([[1, 2], [3, 4]])
    result = check_array(X)
    assert isinstance(result, np.ndarray)
    assert result.shape == (2, 2)
    assert result.dtype == float


def test_check_array_accepts_list():
    result = check_array([[1, 2], [3, 4]])
    assert isinstance(result, np.ndarray)
    assert result.shape == (2, 2)


def test_check_array_accepts_dataframe():
    df = pd.DataFrame({"a": [1.0, 2.0, np.nan], "b": [4.0, 5.0, 6.0]})
    result = check_array(df)
    assert result.shape == (3, 2)
    assert np.isnan(result[2, 0])


def test_check_array_reshapes_1d_input():
    result = check_array(np.array([1.0, 2.0, 3.0]))
    assert result.shape == (3, 1)
    assert check_array(np.array([1.0, 2.0]), ensure_2d=False).shape == (2,)


def test_check_array_rejects_infinite_values():
    X = np.array([[1, 2], [np.inf, 4]])
    with pytest.raises(ValueError, match="infinite"):
        check_array(X, allow_nan=False)


def test_check_array_handles_nan_when_allowed():
    X = np.array([[1, 2], [np.nan, 4]])
    result = check_array(X, allow_nan=True)
    assert np.isnan(result[1, 0])


def test_check_array_rejects_nan_when_disallowed():
    with pytest.raises(ValueError, match="NaN"):
        check_array(np.array([[np.nan, 1.0]]), allow_nan=False)


def test_check_array_rejects_empty_input():
    with pytest.raises(ValueError, match="empty"):
        check_array(np.zeros((0, 3)))


def test_check_array_copy():
    X = np.array([[1.0, 2.0]])
    assert check_array(X, copy=True) is not X
    assert check_array(X) is X


# =============================================================================
# check_X_y Tests
# =============================================================================

def test_check_X_y_compatible_shapes():
    X = np.array([[1, 2], [3, 4], [5, 6]])
    y = np.array([1, 0, 1])
    X_checked, y_checked = check_X_y(X, y)
    assert X_checked.shape == (3, 2)
    assert y_checked.shape == (3,)


def test_check_X_y_accepts_pandas():
    X = pd.DataFrame({"a": [1.0, 2.0], "b": [3.0, 4.0]})
    y = pd.Series([0.5, 1.5])
    X_checked, y_checked = check_X_y(X, y)
    np.testing.assert_array_equal(y_checked, [0.5, 1.5])
    assert X_checked.shape == (2, 2)


def test_check_X_y_ravels_column_vector():
    _, y = check_X_y(np.ones((3, 1)), np.array([[1.0], [2.0], [3.0]]))
    assert y.shape == (3,)


def test_check_X_y_incompatible_shapes():
    X = np.array([[1, 2], [3, 4]])
    y = np.array([1, 0, 1])
    with pytest.raises(ValueError, match="inconsistent"):
        check_X_y(X, y)


def test_check_X_y_rejects_nan_targets():
    with pytest.raises(ValueError):
        check_X_y(np.ones((2, 1)), np.array([1.0, np.nan]))


def test_check_X_y_rejects_2d_targets():
    with pytest.raises(ValueError, match="1D"):
        check_X_y(np.ones((2, 1)), np.ones((2, 2)))


# =============================================================================
# check_is_fitted Tests
# =============================================================================

def test_check_is_fitted_raises_if_not_fitted():
    model = ExactGBDTRegressor(num_iterations=10)
    with pytest.raises(NotFittedError):
        check_is_fitted(model)


def test_not_fitted_error_is_value_error():
    assert issubclass(NotFittedError, ValueError)


def test_check_is_fitted_passes_when_fitted():
    model = ExactGBDTRegressor(num_iterations=10)
    X = np.array([[1, 2], [3, 4], [5, 6]])
    y = np.array([1.0, 0.5, 1.5])
    model.fit(X, y)
    check_is_fitted(model)


def test_regressor_fits_dataframe():
    df = pd.DataFrame({
        "x0": np.linspace(0, 1, 40),
        "x1": np.r_[np.full(20, np.nan), np.linspace(0, 1, 20)],
    })
    y = pd.Series(np.where(df["x0"] > 0.5, 2.0, -2.0))
    model = ExactGBDTRegressor(num_iterations=20, max_depth=2).fit(df, y)
    assert model.score(df, y) > 0.9


# =============================================================================
# Metrics Tests
# =============================================================================

def test_mean_squared_error():
    y_true = np.array([1.0, 2.0, 3.0])
    assert mean_squared_error(y_true, y_true) == 0.0

    y_pred = np.array([2.0, 2.0, 2.0])
    assert np.isclose(mean_squared_error(y_true, y_pred), 2 / 3)


def test_r2_score():
    y_true = np.array([1.0, 2.0, 3.0])
    assert r2_score(y_true, y_true) == 1.0
    assert r2_score(y_true, np.full(3, 2.0)) == 0.0


def test_r2_score_constant_target():
    assert r2_score(np.ones(4), np.zeros(4)) == 0.0
