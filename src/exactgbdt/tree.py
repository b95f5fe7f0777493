"""
Regression tree storage and inference.

Nodes live in a flat list indexed by node id. A node is either still open
(being grown), internal (split on a feature) or a leaf (holding a weight);
the last two are separate tagged states so a split node never carries a
leaf weight and vice versa.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from .assignment import ROOT_NODE_ID


# Node Data Structures

@dataclass(frozen=True)
class InternalNode:
    """
    State of a node that has been split.

    Attributes
    ----------
    feature_id : int
        Feature tested at this node.
    threshold : float
        Instances with ``value >= threshold`` go right, the rest and
        instances missing the feature go left.
    left_id, right_id : int
        Child node ids.
    gain : float
        Gain of the split.
    """
    feature_id: int
    threshold: float
    left_id: int
    right_id: int
    gain: float = 0.0


@dataclass(frozen=True)
class LeafNode:
    """State of a finalised node: its output weight."""
    weight: float


NodeState = Union[InternalNode, LeafNode]


@dataclass
class TreeNode:
    """
    A node of the tree.

    Attributes
    ----------
    node_id : int
        Position of the node in the tree's node list.
    parent_id : int or None
        Parent node id, None for the root.
    depth : int
        Root is at depth 0.
    state : InternalNode, LeafNode or None
        None while the node is still open for splitting.
    """
    node_id: int
    parent_id: Optional[int] = None
    depth: int = 0
    state: Optional[NodeState] = None

    @property
    def is_leaf(self) -> bool:
        return isinstance(self.state, LeafNode)

    @property
    def is_internal(self) -> bool:
        return isinstance(self.state, InternalNode)

    @property
    def is_open(self) -> bool:
        return self.state is None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize node to dictionary."""
        result: Dict[str, Any] = {
            'node_id': self.node_id,
            'parent_id': self.parent_id,
            'depth': self.depth,
        }
        if isinstance(self.state, InternalNode):
            result['internal'] = {
                'feature_id': self.state.feature_id,
                'threshold': self.state.threshold,
                'left_id': self.state.left_id,
                'right_id': self.state.right_id,
                'gain': self.state.gain,
            }
        elif isinstance(self.state, LeafNode):
            result['leaf'] = {'weight': self.state.weight}
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreeNode":
        """Deserialize node from dictionary."""
        state: Optional[NodeState] = None
        if 'internal' in data:
            state = InternalNode(**data['internal'])
        elif 'leaf' in data:
            state = LeafNode(**data['leaf'])
        return cls(
            node_id=data['node_id'],
            parent_id=data.get('parent_id'),
            depth=data.get('depth', 0),
            state=state,
        )


# Regression Tree

class RegressionTree:
    """
    Flat, id-indexed regression tree.

    Parameters
    ----------
    n_features : int or None
        Number of features the tree was grown on; used for importances.
    """

    def __init__(self, n_features: Optional[int] = None):
        self.n_features_ = n_features
        self.nodes: List[TreeNode] = [TreeNode(node_id=ROOT_NODE_ID)]

    @property
    def root(self) -> TreeNode:
        return self.nodes[ROOT_NODE_ID]

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, node_id: int) -> TreeNode:
        return self.nodes[node_id]

    @property
    def n_leaves_(self) -> int:
        return sum(1 for node in self.nodes if node.is_leaf)

    @property
    def max_depth_reached_(self) -> int:
        return max(node.depth for node in self.nodes)

    def add_children(
        self,
        parent_id: int,
        feature_id: int,
        threshold: float,
        gain: float = 0.0,
    ) -> Tuple[TreeNode, TreeNode]:
        """
        Split an open node, allocating two children with sequential ids.

        Returns
        -------
        left, right : TreeNode
        """
        parent = self.nodes[parent_id]
        if not parent.is_open:
            raise ValueError(f"node {parent_id} has already been split or finalised")

        left_id = len(self.nodes)
        right_id = left_id + 1
        left = TreeNode(node_id=left_id, parent_id=parent_id, depth=parent.depth + 1)
        right = TreeNode(node_id=right_id, parent_id=parent_id, depth=parent.depth + 1)
        self.nodes.extend([left, right])

        parent.state = InternalNode(
            feature_id=int(feature_id),
            threshold=float(threshold),
            left_id=left_id,
            right_id=right_id,
            gain=float(gain),
        )
        return left, right

    def set_leaf(self, node_id: int, weight: float) -> None:
        node = self.nodes[node_id]
        if node.is_internal:
            raise ValueError(f"node {node_id} has been split and cannot become a leaf")
        node.state = LeafNode(weight=float(weight))

    def _flatten(self) -> Tuple[np.ndarray, ...]:
        n = len(self.nodes)
        feature = np.zeros(n, dtype=np.int64)
        threshold = np.zeros(n)
        left = np.full(n, -1, dtype=np.int64)
        right = np.full(n, -1, dtype=np.int64)
        value = np.zeros(n)
        for node in self.nodes:
            if isinstance(node.state, InternalNode):
                feature[node.node_id] = node.state.feature_id
                threshold[node.node_id] = node.state.threshold
                left[node.node_id] = node.state.left_id
                right[node.node_id] = node.state.right_id
            elif isinstance(node.state, LeafNode):
                value[node.node_id] = node.state.weight
            else:
                raise RuntimeError(f"node {node.node_id} is still open")
        return feature, threshold, left, right, value

    def apply(self, X: np.ndarray) -> np.ndarray:
        """Leaf id reached by each row of ``X``."""
        X = np.asarray(X, dtype=float)
        if X.ndim != 2:
            raise ValueError(f"Expected 2D array, got {X.ndim}D array instead.")
        feature, threshold, left, right, _ = self._flatten()

        node_idx = np.zeros(X.shape[0], dtype=np.int64)
        rows = np.arange(X.shape[0])
        active = left[node_idx] >= 0
        while np.any(active):
            idx = rows[active]
            cur = node_idx[idx]
            values = X[idx, feature[cur]]
            # NaN compares False and falls through to the left child
            go_right = values >= threshold[cur]
            node_idx[idx] = np.where(go_right, right[cur], left[cur])
            active = left[node_idx] >= 0
        return node_idx

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Make predictions for input samples.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Feature matrix, NaN for missing values.

        Returns
        -------
        predictions : np.ndarray of shape (n_samples,)
            Leaf weights reached by each sample.
        """
        _, _, _, _, value = self._flatten()
        return value[self.apply(X)]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize tree to dictionary."""
        return {
            'n_features_': self.n_features_,
            'nodes': [node.to_dict() for node in self.nodes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegressionTree":
        """Deserialize tree from dictionary."""
        tree = cls(n_features=data.get('n_features_'))
        tree.nodes = [TreeNode.from_dict(node) for node in data['nodes']]
        return tree

    @property
    def feature_importances_(self) -> np.ndarray:
        """
        Feature importances based on total split gain, normalised.
        """
        if self.n_features_ is None:
            raise RuntimeError("Tree does not know its number of features.")

        importances = np.zeros(self.n_features_)
        for node in self.nodes:
            if isinstance(node.state, InternalNode):
                importances[node.state.feature_id] += node.state.gain

        total = np.sum(importances)
        if total > 0:
            importances /= total
        return importances

    def __repr__(self) -> str:
        return f"RegressionTree(n_nodes={len(self.nodes)}, n_leaves={self.n_leaves_})"


# Module Export

__all__ = ['RegressionTree', 'TreeNode', 'InternalNode', 'LeafNode']
