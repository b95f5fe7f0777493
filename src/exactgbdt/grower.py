"""
Depth-wise tree growth on top of the ``Splitter``.

Each growth step searches every open node of the current level in one
batched pass, splits the nodes that found a valid split and closes the
others as leaves. The children's statistics come straight from the search
snapshot and seed the next level.
"""

from __future__ import annotations

from typing import List

import numpy as np

from .node_stat import NodeStat
from .splitter import Splitter
from .tree import RegressionTree, TreeNode
from .utils import log_message


class TreeGrower:
    """
    Grow one regression tree per boosting round.

    Parameters
    ----------
    splitter : Splitter
        Split core bound to the training columns.
    max_depth : int, default=6
        Maximum depth of the tree. -1 means unlimited.
    verbose : int, default=0
        Verbosity level (2 logs every growth step).
    """

    def __init__(self, splitter: Splitter, max_depth: int = 6, verbose: int = 0):
        if max_depth < -1 or max_depth == 0:
            raise ValueError(f"max_depth must be -1 or positive, got {max_depth}")
        self.splitter = splitter
        self.max_depth = max_depth
        self.verbose = verbose

    def _can_split(self, node: TreeNode) -> bool:
        return self.max_depth == -1 or node.depth < self.max_depth

    def _close(self, tree: RegressionTree, node: TreeNode) -> None:
        tree.set_leaf(node.node_id, self.splitter.leaf_weight(node.node_id))
        self.splitter.finalize(node.node_id)

    def grow(self, predictions: np.ndarray, targets: np.ndarray) -> RegressionTree:
        """
        Fit a tree to the squared-error gradients of ``predictions``.

        Returns
        -------
        tree : RegressionTree
            Fully closed tree: every node is internal or a leaf.
        """
        splitter = self.splitter
        tree = RegressionTree(n_features=splitter.dataset.n_features)
        splitter.compute_gradients(predictions, targets)

        frontier: List[TreeNode] = [tree.root]
        while frontier:
            if not any(self._can_split(node) for node in frontier):
                for node in frontier:
                    self._close(tree, node)
                break

            splits = splitter.find_best_splits()
            next_frontier: List[TreeNode] = []
            next_stats: List[NodeStat] = []
            for node in frontier:
                split = splits[node.node_id]
                if split.is_valid and self._can_split(node):
                    left, right = splitter.split_node(tree, node.node_id, split)
                    next_frontier.extend([left, right])
                    next_stats.extend([split.left_stat, split.right_stat])
                else:
                    self._close(tree, node)

            log_message(
                f"depth {frontier[0].depth}: {len(frontier)} open, "
                f"{len(next_frontier) // 2} split",
                verbose=self.verbose,
                level=2,
            )
            if next_frontier:
                splitter.update_node_stat(next_frontier, next_stats)
            frontier = next_frontier

        return tree


__all__ = ['TreeGrower']
