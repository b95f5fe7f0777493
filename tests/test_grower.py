"""
Test suite for depth-wise tree growth.
"""

import numpy as np
import pytest

import sys
from pathlib import Path
_repo_root = Path(__file__).resolve().parents[1]
src_path = str(_repo_root / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from exactgbdt.dataset import ColumnDataset
from exactgbdt.grower import TreeGrower
from exactgbdt.splitter import Splitter


def _grower(X, lambda_l2=1.0, gamma=0.0, max_depth=6):
    splitter = Splitter(ColumnDataset.from_dense(X), lambda_l2=lambda_l2, gamma=gamma)
    return TreeGrower(splitter, max_depth=max_depth)


def test_stump_on_four_instances():
    X = np.array([[1.0], [2.0], [3.0], [4.0]])
    targets = np.array([1.0, 1.0, -1.0, -1.0])
    tree = _grower(X, lambda_l2=1.0, max_depth=1).grow(np.zeros(4), targets)

    assert len(tree) == 3
    assert tree.root.state.feature_id == 0
    assert tree.root.state.threshold == pytest.approx(2.5)
    # Leaf weights -G/(H+λ) with G = -2 and +2
    assert tree[1].state.weight == pytest.approx(2.0 / 3.0)
    assert tree[2].state.weight == pytest.approx(-2.0 / 3.0)


def test_grow_closes_every_node_and_releases_state():
    rng = np.random.default_rng(0)
    X = rng.normal(size=(80, 3))
    X[rng.random(X.shape) < 0.1] = np.nan
    targets = X[:, 0] * 2.0 + rng.normal(scale=0.1, size=80)
    targets = np.nan_to_num(targets)

    grower = _grower(X, max_depth=4)
    tree = grower.grow(np.zeros(80), targets)

    assert all(not node.is_open for node in tree.nodes)
    assert tree.max_depth_reached_ <= 4
    assert len(grower.splitter.buffer) == 0
    assert grower.splitter.assignment.pruned.all()


def test_leaf_weights_are_newton_steps_of_their_instances():
    rng = np.random.default_rng(1)
    X = rng.integers(0, 6, size=(60, 2)).astype(float)
    X[rng.random(X.shape) < 0.15] = np.nan
    targets = rng.normal(size=60)
    predictions = rng.normal(scale=0.1, size=60)
    lam = 2.0

    tree = _grower(X, lambda_l2=lam, max_depth=3).grow(predictions, targets)
    gradients = predictions - targets
    leaves = tree.apply(X)
    for leaf_id in np.unique(leaves):
        mine = leaves == leaf_id
        expected = -gradients[mine].sum() / (mine.sum() + lam)
        assert tree[leaf_id].state.weight == pytest.approx(expected, abs=1e-9)


def test_training_partition_matches_tree_routing():
    rng = np.random.default_rng(2)
    X = rng.normal(size=(50, 2))
    X[rng.random(X.shape) < 0.2] = np.nan
    targets = rng.normal(size=50)

    grower = _grower(X, lambda_l2=0.5, max_depth=3)
    tree = grower.grow(np.zeros(50), targets)
    np.testing.assert_array_equal(
        grower.splitter.assignment.node_ids, tree.apply(X)
    )


def test_no_split_when_gamma_dominates():
    X = np.array([[1.0], [2.0], [3.0], [4.0]])
    targets = np.array([1.0, 1.0, -1.0, -1.0])
    tree = _grower(X, lambda_l2=1.0, gamma=100.0).grow(np.zeros(4), targets)
    assert len(tree) == 1
    assert tree.root.is_leaf
    assert tree.root.state.weight == pytest.approx(0.0)


def test_unlimited_depth_fits_distinct_targets():
    X = np.arange(8, dtype=float).reshape(-1, 1)
    targets = np.array([0.0, 10.0, 0.0, 10.0, 0.0, 10.0, 0.0, 10.0])
    tree = _grower(X, lambda_l2=0.0, max_depth=-1).grow(np.zeros(8), targets)
    np.testing.assert_allclose(tree.predict(X), targets)


def test_grower_can_be_reused_across_rounds():
    X = np.array([[1.0], [2.0], [3.0], [4.0]])
    grower = _grower(X, lambda_l2=0.0, max_depth=2)
    first = grower.grow(np.zeros(4), np.array([1.0, 2.0, 3.0, 4.0]))
    second = grower.grow(first.predict(X), np.array([1.0, 2.0, 3.0, 4.0]))
    assert len(first) > 1
    assert second.n_leaves_ >= 1


def test_invalid_max_depth():
    splitter = Splitter(ColumnDataset.from_dense(np.array([[1.0]])))
    with pytest.raises(ValueError):
        TreeGrower(splitter, max_depth=0)
    with pytest.raises(ValueError):
        TreeGrower(splitter, max_depth=-3)
