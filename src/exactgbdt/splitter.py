"""
Exact-greedy split finding and node splitting.

The ``Splitter`` owns the per-round training state of one tree: the
gradient pairs, the instance-to-node assignment and the active-node
buffer. It offers the operations the tree grower drives:

1. ``compute_gradients`` - squared-error gradients, root statistics.
2. ``find_best_split`` / ``find_best_splits`` - best feature and threshold
   for one node, or for all active nodes with one scan per feature.
3. ``split_node`` - create two children and move the parent's instances.
4. ``leaf_weight`` / ``finalize`` - close a node as a leaf.
5. ``update_node_stat`` - register the next set of splittable nodes.

Feature columns are stored and scanned in ascending value order. The
running accumulator holds the node's instances seen so far, i.e. those
below the boundary, and the gain is evaluated against its complement
``parent - accumulated``, which also contains the instances missing the
feature. ``split_node`` however sends missing values left together with
the small values, so the child statistics recorded with a split point are
rebuilt from the node's missing-value sums to describe the children that
are actually created.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .assignment import ActiveNodeBuffer, NodeAssignment, ROOT_NODE_ID
from .dataset import ColumnDataset
from .node_stat import (
    GRADIENT_SUM_TOLERANCE,
    MIN_CHILD_WEIGHT,
    VALUE_EPSILON,
    NodeStat,
    SplitPoint,
    calc_gain,
    leaf_weight,
)
from .tree import RegressionTree, TreeNode
from .utils import InvariantViolationError, check_array, log_message


class Splitter:
    """
    Split-search and node-mutation core for one boosting round.

    Parameters
    ----------
    dataset : ColumnDataset
        Column store of the training instances. Never modified.
    lambda_l2 : float, default=0.0
        L2 regularization on gain denominators and leaf weights (λ).
    gamma : float, default=0.0
        Complexity penalty charged on every evaluated split (γ).
    verbose : int, default=0
        Verbosity level (2 logs every split and finalisation).

    Attributes
    ----------
    gradients, hessians : np.ndarray of shape (n_instances,)
        Gradient pairs of the current round.
    assignment : NodeAssignment
        Owning node of every instance.
    buffer : ActiveNodeBuffer
        Splittable nodes and their statistics.
    """

    def __init__(
        self,
        dataset: ColumnDataset,
        lambda_l2: float = 0.0,
        gamma: float = 0.0,
        verbose: int = 0,
    ):
        if lambda_l2 < 0:
            raise ValueError(f"lambda_l2 must be non-negative, got {lambda_l2}")
        if gamma < 0:
            raise ValueError(f"gamma must be non-negative, got {gamma}")

        self.dataset = dataset
        self.lambda_l2 = lambda_l2
        self.gamma = gamma
        self.verbose = verbose

        n = dataset.n_instances
        self.gradients = np.zeros(n)
        self.hessians = np.zeros(n)
        self.assignment = NodeAssignment(n)
        self.buffer = ActiveNodeBuffer()
        self._split_nodes: Set[int] = set()

    # -------------------------------------------------------------------------
    # Gradients and node statistics
    # -------------------------------------------------------------------------

    def compute_gradients(
        self,
        predictions: np.ndarray,
        targets: np.ndarray,
    ) -> NodeStat:
        """
        Compute squared-error gradient pairs and seed the root node.

        gradient = prediction - target, hessian = 1. Every instance is put
        back into the root, whose statistics are registered at buffer
        position 0.

        Returns
        -------
        root_stat : NodeStat
            Sum of all gradient pairs.
        """
        predictions = check_array(predictions, ensure_2d=False, allow_nan=False)
        targets = check_array(targets, ensure_2d=False, allow_nan=False)
        n = self.dataset.n_instances
        if predictions.shape != (n,) or targets.shape != (n,):
            raise ValueError(
                f"predictions and targets must have shape ({n},), "
                f"got {predictions.shape} and {targets.shape}"
            )

        self.gradients = predictions - targets
        self.hessians = np.ones(n)

        root_stat = NodeStat()
        for grad, hess in zip(self.gradients.tolist(), self.hessians.tolist()):
            root_stat.add(grad, hess)

        self.assignment.reset()
        self._split_nodes.clear()
        self.buffer.reset([ROOT_NODE_ID], [root_stat])
        return root_stat.copy()

    def update_node_stat(
        self,
        nodes: Sequence[TreeNode],
        stats: Sequence[NodeStat],
    ) -> None:
        """
        Register a new set of splittable nodes with their statistics.

        The buffer must be empty: every previously active node has to be
        split or finalised first.
        """
        self.buffer.reset([node.node_id for node in nodes], stats)

    def compute_node_stat(self, node_id: int) -> NodeStat:
        """Sum the gradient pairs of the instances owned by ``node_id``."""
        stat = NodeStat()
        owned = np.flatnonzero(self.assignment.owned_by(node_id))
        for grad, hess in zip(
            self.gradients[owned].tolist(), self.hessians[owned].tolist()
        ):
            stat.add(grad, hess)
        return stat

    def calc_gain(self, parent: NodeStat, right: NodeStat, left: NodeStat) -> float:
        return calc_gain(parent, right, left, self.lambda_l2, self.gamma)

    # -------------------------------------------------------------------------
    # Split search
    # -------------------------------------------------------------------------

    def _scan_node_entries(
        self,
        feature_id: int,
        values: np.ndarray,
        grads: np.ndarray,
        hess: np.ndarray,
        parent: NodeStat,
    ) -> SplitPoint:
        """
        Best boundary among one node's entries of one feature.

        ``values`` ascend and the gradient pairs are aligned with them. The
        accumulator before entry ``i`` covers the entries below the boundary
        between ``i - 1`` and ``i``; the gain pits it against ``parent``
        minus the accumulator.
        """
        best = SplitPoint()
        if len(values) < 2:
            return best

        cum_gd = np.cumsum(grads)
        cum_hess = np.cumsum(hess)
        acc_gd, acc_hess = cum_gd[:-1], cum_hess[:-1]
        rest_gd = parent.sum_gd - acc_gd
        rest_hess = parent.sum_hess - acc_hess

        distinct = np.abs(values[1:] - values[:-1]) > VALUE_EPSILON
        candidates = (
            distinct
            & (acc_hess >= MIN_CHILD_WEIGHT)
            & (rest_hess >= MIN_CHILD_WEIGHT)
        )
        if not np.any(candidates):
            return best

        idx = np.flatnonzero(candidates)
        a_gd, a_hess = acc_gd[idx], acc_hess[idx]
        c_gd, c_hess = rest_gd[idx], rest_hess[idx]

        if np.any(np.abs(parent.sum_gd - c_gd - a_gd) >= GRADIENT_SUM_TOLERANCE):
            raise InvariantViolationError(
                f"gradient sums do not add up while scanning feature {feature_id}"
            )
        if np.any(c_hess + a_hess != parent.sum_hess):
            raise InvariantViolationError(
                f"hessian sums do not add up while scanning feature {feature_id}"
            )

        lam = self.lambda_l2
        gains = (
            (a_gd * a_gd) / (a_hess + lam)
            + (c_gd * c_gd) / (c_hess + lam)
            - (parent.sum_gd * parent.sum_gd) / (parent.sum_hess + lam)
            - self.gamma
        )

        # argmax keeps the first of equal gains, i.e. the lowest boundary
        k = int(np.argmax(gains))
        pos = idx[k] + 1

        # Only the entries above the boundary go right; the missing ones
        # join the small values on the left
        right = NodeStat(
            float(cum_gd[-1] - a_gd[k]), float(cum_hess[-1] - a_hess[k])
        )
        left = NodeStat()
        left.subtract(parent, right)
        best.update(
            gains[k],
            (values[pos] + values[pos - 1]) * 0.5,
            feature_id,
            left_stat=left,
            right_stat=right,
        )
        return best

    def best_split_value(
        self,
        feature_id: int,
        parent: NodeStat,
        node_id: int,
    ) -> SplitPoint:
        """
        Best split of ``node_id`` on a single feature.

        Instances not owned by the node are skipped.
        """
        column = self.dataset.column(feature_id)
        mine = self.assignment.owned_by(node_id)[column.instance_ids]
        ids = column.instance_ids[mine]
        return self._scan_node_entries(
            feature_id,
            column.values[mine],
            self.gradients[ids],
            self.hessians[ids],
            parent,
        )

    def find_best_split(
        self,
        node_id: int,
        parent: Optional[NodeStat] = None,
    ) -> SplitPoint:
        """
        Best split of one node over all features.

        Parameters
        ----------
        node_id : int
            Node to search.
        parent : NodeStat or None
            Statistics of the node; taken from the buffer when None.

        Returns
        -------
        split : SplitPoint
            The sentinel when no split has positive gain and respects the
            minimum child weight.
        """
        if parent is None:
            parent = self.buffer.stat(node_id)

        best = SplitPoint()
        for f in range(self.dataset.n_features):
            best.merge(self.best_split_value(f, parent, node_id))
        return best

    def _scan_feature(self, feature_id: int, lookup: np.ndarray) -> List[SplitPoint]:
        """
        One pass over a feature for every active node.

        The walk keeps an accumulator and a last-seen value per buffer
        position. Here it is regrouped: a stable sort by buffer position
        turns the column into one ascending run per node, each run being
        exactly the subsequence that position sees during the walk. A
        run's prefix sums are then that position's accumulator, and its
        first entry is the first hit that only initialises it.

        Writes only to its own per-position candidates, so features can be
        scanned independently and reduced afterwards.
        """
        capacity = self.buffer.capacity
        candidates = [SplitPoint() for _ in range(capacity)]

        column = self.dataset.column(feature_id)
        live = ~self.assignment.pruned[column.instance_ids]
        ids, values = column.instance_ids[live], column.values[live]
        if len(ids) == 0:
            return candidates

        positions = lookup[self.assignment.node_ids[ids]]
        if np.any(positions < 0):
            raise InvariantViolationError(
                f"instances of feature {feature_id} belong to inactive nodes"
            )

        # Stable sort keeps every node's entries ascending
        order = np.argsort(positions, kind="stable")
        positions = positions[order]
        ids = ids[order]
        values = values[order]
        grads = self.gradients[ids]
        hess = self.hessians[ids]

        starts = np.flatnonzero(np.r_[True, positions[1:] != positions[:-1]])
        ends = np.r_[starts[1:], len(positions)]
        for start, end in zip(starts.tolist(), ends.tolist()):
            pos = int(positions[start])
            candidates[pos] = self._scan_node_entries(
                feature_id,
                values[start:end],
                grads[start:end],
                hess[start:end],
                self.buffer.stat_at(pos),
            )
        return candidates

    def find_best_splits(self) -> Dict[int, SplitPoint]:
        """
        Best split of every active node, scanning each feature once.

        Per-feature candidates are reduced into one split point per node,
        keeping the largest gain; ties go to the lowest feature id, then to
        the lowest boundary.

        Returns
        -------
        splits : dict of int to SplitPoint
            Keyed by node id, in buffer order. Each accepted split point
            carries the left and right child statistics.
        """
        active = list(self.buffer)
        if not active:
            return {}

        lookup = self.buffer.lookup_table(int(self.assignment.node_ids.max()))
        best = [SplitPoint() for _ in range(self.buffer.capacity)]
        for f in range(self.dataset.n_features):
            for pos, candidate in enumerate(self._scan_feature(f, lookup)):
                best[pos].merge(candidate)

        return {nid: best[self.buffer.position(nid)] for nid in active}

    # -------------------------------------------------------------------------
    # Node mutation
    # -------------------------------------------------------------------------

    def split_node(
        self,
        tree: RegressionTree,
        node_id: int,
        split: SplitPoint,
    ) -> Tuple[TreeNode, TreeNode]:
        """
        Materialise ``split`` on ``node_id`` and repartition its instances.

        Instances observing the split feature go right when ``value >=
        threshold`` and left otherwise; instances missing the feature go
        left. Afterwards no instance is owned by the parent, and the parent
        leaves the active buffer.

        Returns
        -------
        left, right : TreeNode
            The new children.

        Raises
        ------
        InvariantViolationError
            If the node is not active (never registered, already split or
            finalised) or ``split`` is the no-split sentinel.
        """
        if not split.is_valid:
            raise InvariantViolationError(f"no valid split to apply on node {node_id}")
        if node_id not in self.buffer:
            raise InvariantViolationError(
                f"node {node_id} is not active and cannot be split"
            )

        left, right = tree.add_children(
            node_id, split.feature_id, split.threshold, split.gain
        )

        column = self.dataset.column(split.feature_id)
        owned = self.assignment.owned_by(node_id)
        in_column = owned[column.instance_ids]
        ids = column.instance_ids[in_column]
        go_right = column.values[in_column] >= split.threshold
        self.assignment.assign(ids[go_right], right.node_id)
        self.assignment.assign(ids[~go_right], left.node_id)

        # Missing values default left
        undecided = np.flatnonzero(self.assignment.owned_by(node_id))
        self.assignment.assign(undecided, left.node_id)

        self.buffer.release(node_id)
        self._split_nodes.add(node_id)

        log_message(
            f"split node {node_id} on feature {split.feature_id} at "
            f"{split.threshold:.6g} (gain={split.gain:.6g}, "
            f"missing->left: {len(undecided)})",
            verbose=self.verbose,
            level=2,
        )
        return left, right

    def leaf_weight(self, node_id: int) -> float:
        """Newton step ``-G / (H + λ)`` for an active node."""
        return leaf_weight(self.buffer.stat(node_id), self.lambda_l2)

    def finalize(self, node_id: int) -> int:
        """
        Retire a leaf: drop it from the buffer and prune its instances.

        Calling it again, or on a node that has already been split, changes
        nothing.

        Returns
        -------
        n_pruned : int
            Number of instances pruned by this call.

        Raises
        ------
        InvariantViolationError
            If the node is not active but still owns instances.
        """
        if node_id in self._split_nodes:
            return 0
        if not self.buffer.release(node_id) and np.any(
            self.assignment.owned_by(node_id)
        ):
            raise InvariantViolationError(
                f"node {node_id} owns instances but is not active"
            )
        n_pruned = self.assignment.prune(node_id)
        if n_pruned:
            log_message(
                f"finalized node {node_id} ({n_pruned} instances)",
                verbose=self.verbose,
                level=2,
            )
        return n_pruned


__all__ = ['Splitter']
