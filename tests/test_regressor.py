"""
Test suite for ExactGBDTRegressor.
"""

import os
import tempfile

import numpy as np
import pytest

import sys
from pathlib import Path
_repo_root = Path(__file__).resolve().parents[1]
src_path = str(_repo_root / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from exactgbdt import (
    BoosterParams,
    EarlyStoppingCallback,
    ExactGBDTRegressor,
    Loss,
    NotFittedError,
    RegressionTree,
    SquaredErrorLoss,
)
from exactgbdt.utils import mean_squared_error as mse_score


def _synthetic_regression(seed: int = 42):
    """Generate synthetic regression data."""
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(300, 5))
    noise = rng.normal(scale=0.05, size=300)
    y = 2.0 * X[:, 0] - 3.0 * X[:, 1] + 1.5 * np.tanh(X[:, 2]) + noise
    return X, y


def test_regressor_beats_mean_baseline():
    """Test that regressor beats mean baseline."""
    X, y = _synthetic_regression()
    baseline_mse = mse_score(y, np.full_like(y, y.mean()))

    model = ExactGBDTRegressor(
        num_iterations=50,
        learning_rate=0.1,
        max_depth=4,
        lambda_l2=1.0,
    )
    model.fit(X, y)

    model_mse = mse_score(y, model.predict(X))
    assert model_mse < baseline_mse * 0.2


def test_predict_shape_matches_input():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=10, learning_rate=0.2)
    model.fit(X, y)
    assert model.predict(X[:15]).shape == (15,)


def test_training_loss_decreases():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=15, learning_rate=0.2, max_depth=3)
    model.fit(X, y)

    history = model.training_history_["train_loss"]
    assert len(history) == 15
    assert history[-1] < history[0]
    assert all(b <= a + 1e-12 for a, b in zip(history, history[1:]))


def test_prediction_is_init_plus_shrunk_tree_sum():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=5, learning_rate=0.3, max_depth=2)
    model.fit(X, y)

    expected = np.full(len(y), y.mean())
    for tree in model.trees_:
        expected += 0.3 * tree.predict(X)
    np.testing.assert_allclose(model.predict(X), expected)
    assert model.init_prediction_ == pytest.approx(y.mean())


def test_early_stopping_with_eval_set():
    X, y = _synthetic_regression()
    rng = np.random.default_rng(7)
    X_val = rng.normal(size=(60, 5))
    y_val = rng.normal(size=60)

    model = ExactGBDTRegressor(
        num_iterations=200,
        learning_rate=0.3,
        max_depth=3,
        early_stopping_rounds=3,
    )
    model.fit(X, y, eval_set=(X_val, y_val))
    assert model.n_iter_ < 200
    assert len(model.training_history_["val_loss"]) == model.n_iter_


def test_callback_can_stop_training():
    X, y = _synthetic_regression()
    callback = EarlyStoppingCallback(patience=1, min_delta=1e6)
    model = ExactGBDTRegressor(num_iterations=50, learning_rate=0.1, max_depth=2)
    model.fit(X, y, callbacks=[callback])
    assert model.n_iter_ == 2
    assert callback.stopped_iteration == 1


def test_constant_target_builds_single_leaf_trees():
    X, _ = _synthetic_regression()
    y = np.full(X.shape[0], 3.5)
    model = ExactGBDTRegressor(num_iterations=3)
    model.fit(X, y)

    assert all(len(tree) == 1 for tree in model.trees_)
    np.testing.assert_allclose(model.predict(X), 3.5)


def test_disallow_nan_raises():
    rng = np.random.default_rng(42)
    X = rng.normal(size=(50, 3))
    X[0, 0] = np.nan
    y = rng.normal(size=50)
    model = ExactGBDTRegressor(num_iterations=5, allow_nan=False)

    with pytest.raises(ValueError):
        model.fit(X, y)


def test_allow_nan_works():
    X, y = _synthetic_regression()
    X = X.copy()
    X[::7, 0] = np.nan
    X[::5, 3] = np.nan

    model = ExactGBDTRegressor(num_iterations=20, learning_rate=0.2, max_depth=3)
    model.fit(X, y)
    preds = model.predict(X)
    assert preds.shape == (300,)
    assert np.all(np.isfinite(preds))


def test_missing_feature_is_learned_from_present_values():
    # Instances without the feature go left, together with the small values
    X = np.array([[1.0], [2.0], [np.nan], [10.0], [11.0], [np.nan]])
    y = np.array([0.0, 0.0, 0.0, 5.0, 5.0, 0.0])
    model = ExactGBDTRegressor(num_iterations=30, learning_rate=0.5, lambda_l2=0.0)
    model.fit(X, y)
    np.testing.assert_allclose(model.predict(X), y, atol=1e-3)


def test_save_and_load_model():
    X, y = _synthetic_regression()
    X = X.copy()
    X[::9, 1] = np.nan
    model = ExactGBDTRegressor(num_iterations=8, learning_rate=0.2, max_depth=3)
    model.fit(X, y)

    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "model.json")
        model.save_model(path)
        loaded = ExactGBDTRegressor().load_model(path)

    assert loaded.n_iter_ == model.n_iter_
    assert loaded.params == model.params
    assert all(isinstance(tree, RegressionTree) for tree in loaded.trees_)
    np.testing.assert_allclose(loaded.predict(X), model.predict(X))


def test_warm_start_adds_trees():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=5, warm_start=True)
    model.fit(X, y)
    first_loss = model.training_history_["train_loss"][-1]
    model.fit(X, y)

    assert len(model.trees_) == 10
    assert model.training_history_["train_loss"][-1] <= first_loss


def test_warm_start_rejects_feature_mismatch():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=2, warm_start=True)
    model.fit(X, y)
    with pytest.raises(ValueError):
        model.fit(X[:, :3], y)


def test_sklearn_style_aliases():
    model = ExactGBDTRegressor(n_estimators=7, reg_lambda=3.0)
    assert model.num_iterations == 7
    assert model.params.lambda_l2 == 3.0


def test_feature_importances_sum_to_one():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=10, max_depth=3)
    model.fit(X, y)

    importances = model.feature_importances_
    assert importances.shape == (5,)
    assert importances.sum() == pytest.approx(1.0)
    # Features 3 and 4 do not drive the target
    assert importances[1] > importances[3]
    assert importances[0] > importances[4]


def test_score_is_r2():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=30, learning_rate=0.2, max_depth=4)
    model.fit(X, y)
    assert 0.8 < model.score(X, y) <= 1.0


def test_predict_before_fit_raises():
    with pytest.raises(NotFittedError):
        ExactGBDTRegressor().predict(np.zeros((2, 2)))


def test_predict_rejects_wrong_feature_count():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=2).fit(X, y)
    with pytest.raises(ValueError):
        model.predict(X[:, :2])


@pytest.mark.parametrize("params", [
    {"num_iterations": 0},
    {"learning_rate": 0.0},
    {"max_depth": 0},
    {"lambda_l2": -1.0},
    {"gamma": -0.5},
    {"early_stopping_rounds": 0},
    {"objective": "poisson"},
])
def test_invalid_params_raise(params):
    X, y = _synthetic_regression()
    with pytest.raises(ValueError):
        ExactGBDTRegressor(**params).fit(X, y)


def test_set_params_and_repr():
    model = ExactGBDTRegressor()
    model.set_params(max_depth=2, gamma=0.5)
    assert model.get_params()["max_depth"] == 2
    assert "gamma=0.5" in repr(model)
    with pytest.raises(ValueError):
        model.set_params(num_leaves=31)


def test_best_iteration_tracks_lowest_validation_loss():
    X, y = _synthetic_regression()
    rng = np.random.default_rng(11)
    X_val = rng.normal(size=(50, 5))
    y_val = rng.normal(size=50)

    model = ExactGBDTRegressor(
        num_iterations=100, learning_rate=0.3, max_depth=3, early_stopping_rounds=4
    )
    model.fit(X, y, eval_set=(X_val, y_val))

    val_loss = model.training_history_["val_loss"]
    assert model.best_iteration_ == int(np.argmin(val_loss))
    assert model.n_iter_ == model.best_iteration_ + 1 + 4


def test_callbacks_are_reset_between_fits():
    X, y = _synthetic_regression()
    callback = EarlyStoppingCallback(patience=2)
    model = ExactGBDTRegressor(num_iterations=3, max_depth=2)
    model.fit(X, y, callbacks=[callback])
    first_best = callback.best_loss
    model.fit(X, y, callbacks=[callback])
    assert callback.best_loss == pytest.approx(first_best)
    assert callback.stopped_iteration is None


def test_params_accept_aliases():
    params = BoosterParams.from_dict({"eta": 0.05, "num_boost_round": 9, "unknown": 1})
    assert params.learning_rate == 0.05
    assert params.num_iterations == 9

    model = ExactGBDTRegressor().set_params(reg_lambda=4.0)
    assert model.params.lambda_l2 == 4.0


def test_load_rejects_newer_model_format():
    X, y = _synthetic_regression()
    model = ExactGBDTRegressor(num_iterations=2).fit(X, y)
    data = model.to_dict()
    assert data["estimator"] == "ExactGBDTRegressor"
    data["format_version"] = data["format_version"] + 1
    with pytest.raises(ValueError, match="newer"):
        ExactGBDTRegressor().from_dict(data)


class _AbsoluteLoss(Loss):
    def __call__(self, y_true, y_pred):
        return float(np.mean(np.abs(y_true - y_pred)))

    def gradient(self, y_true, y_pred):
        return np.sign(y_pred - y_true)

    def hessian(self, y_true, y_pred):
        return np.zeros_like(y_true)

    def init_prediction(self, y):
        return float(np.median(y))


def test_only_squared_error_loss_objects_are_accepted():
    X, y = _synthetic_regression()
    with pytest.raises(ValueError, match="not supported"):
        ExactGBDTRegressor(num_iterations=2, objective=_AbsoluteLoss()).fit(X, y)

    model = ExactGBDTRegressor(num_iterations=2, objective=SquaredErrorLoss()).fit(X, y)
    assert model.init_prediction_ == pytest.approx(y.mean())
