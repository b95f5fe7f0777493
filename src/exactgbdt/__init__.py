"""
exactgbdt - exact-greedy gradient boosted decision trees on sparse columns.

The package is built around a split core that works on column-oriented,
sparse feature data: every feature is kept as its observed
``(instance, value)`` pairs sorted by value, and split search walks these
columns with running gradient statistics.

Features:
- Squared-error gradient pairs and Newton leaf weights
- Exact split search for a single node or for all open nodes at once
- Minimum child weight, value tolerance and inline gamma pruning
- Missing values routed to the left child
- Depth-wise tree growth, early stopping, callbacks, JSON persistence

Example usage:
    >>> from exactgbdt import ExactGBDTRegressor
    >>> import numpy as np
    >>>
    >>> X = np.random.randn(100, 5)
    >>> y = X[:, 0] + 2 * X[:, 1] + np.random.randn(100) * 0.1
    >>> regressor = ExactGBDTRegressor(num_iterations=50, max_depth=3)
    >>> regressor.fit(X, y)
    >>> predictions = regressor.predict(X)
"""

__version__ = "0.1.0"

# Core estimator
from .gbdt_regressor import ExactGBDTRegressor

# Split core
from .dataset import ColumnDataset, FeatureColumn
from .node_stat import (
    NodeStat,
    SplitPoint,
    calc_gain,
    leaf_weight,
    MIN_CHILD_WEIGHT,
    VALUE_EPSILON,
)
from .assignment import ActiveNodeBuffer, NodeAssignment
from .splitter import Splitter

# Trees
from .tree import RegressionTree, TreeNode, InternalNode, LeafNode
from .grower import TreeGrower

# Loss functions
from .loss_functions import Loss, SquaredErrorLoss, get_loss_function

# Base classes
from .base import (
    BaseEstimator,
    BoosterParams,
    Callback,
    EarlyStoppingCallback,
    PrintProgressCallback,
)

# Utility functions
from .utils import (
    check_array,
    check_X_y,
    check_is_fitted,
    mean_squared_error,
    r2_score,
    NotFittedError,
    InvariantViolationError,
    log_message,
    log_training_progress,
)

__all__ = [
    "__version__",
    # Estimator
    "ExactGBDTRegressor",
    # Split core
    "ColumnDataset",
    "FeatureColumn",
    "NodeStat",
    "SplitPoint",
    "calc_gain",
    "leaf_weight",
    "MIN_CHILD_WEIGHT",
    "VALUE_EPSILON",
    "ActiveNodeBuffer",
    "NodeAssignment",
    "Splitter",
    # Trees
    "RegressionTree",
    "TreeNode",
    "InternalNode",
    "LeafNode",
    "TreeGrower",
    # Loss functions
    "Loss",
    "SquaredErrorLoss",
    "get_loss_function",
    # Base classes
    "BaseEstimator",
    "BoosterParams",
    "Callback",
    "EarlyStoppingCallback",
    "PrintProgressCallback",
    # Utilities
    "check_array",
    "check_X_y",
    "check_is_fitted",
    "mean_squared_error",
    "r2_score",
    "NotFittedError",
    "InvariantViolationError",
    "log_message",
    "log_training_progress",
]
