"""
Node statistics and split points.

A node is summarised by the sums of the gradients and Hessians of the
instances it owns. Subtracting the statistics of one child from its parent
gives the other child, which is what lets the column scans derive both
sides of a candidate split from a single running accumulator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .utils import InvariantViolationError

# Minimum Hessian sum on each side of a split.
MIN_CHILD_WEIGHT = 1.0

# Consecutive feature values closer than this are the same value.
VALUE_EPSILON = 2e-6

# Allowed drift between a parent's gradient sum and its children's.
GRADIENT_SUM_TOLERANCE = 1e-4


@dataclass
class NodeStat:
    """
    Sufficient statistics of a node.

    Attributes
    ----------
    sum_gd : float
        Sum of first-order gradients.
    sum_hess : float
        Sum of second-order gradients.
    """
    sum_gd: float = 0.0
    sum_hess: float = 0.0

    def add(self, grad: float, hess: float) -> None:
        self.sum_gd += grad
        self.sum_hess += hess

    def subtract(self, parent: "NodeStat", child: "NodeStat") -> None:
        """Set this stat to ``parent - child``."""
        self.sum_gd = parent.sum_gd - child.sum_gd
        self.sum_hess = parent.sum_hess - child.sum_hess

    def copy(self) -> "NodeStat":
        return NodeStat(self.sum_gd, self.sum_hess)

    def clear(self) -> None:
        self.sum_gd = 0.0
        self.sum_hess = 0.0

    def is_empty(self) -> bool:
        """True while nothing with a noticeable Hessian has been accumulated."""
        return abs(self.sum_hess) < 1e-4


@dataclass
class SplitPoint:
    """
    Best split found so far for one node.

    Starts as the "no split" sentinel: zero gain and no feature. Only a
    strictly larger gain replaces the current candidate, so among equal
    gains the first one offered wins.

    Attributes
    ----------
    gain : float
        Gain of the best candidate (0.0 while none has been accepted).
    threshold : float or None
        Split value; instances with ``value >= threshold`` go right.
    feature_id : int or None
        Feature of the best candidate, None for the sentinel.
    left_stat, right_stat : NodeStat or None
        Statistics of the children the split creates, captured when the
        candidate was accepted. Instances missing the feature are counted
        on the left.
    """
    gain: float = 0.0
    threshold: Optional[float] = None
    feature_id: Optional[int] = None
    left_stat: Optional[NodeStat] = None
    right_stat: Optional[NodeStat] = None

    @property
    def is_valid(self) -> bool:
        return self.feature_id is not None

    def update(
        self,
        gain: float,
        threshold: float,
        feature_id: int,
        left_stat: Optional[NodeStat] = None,
        right_stat: Optional[NodeStat] = None,
    ) -> bool:
        """
        Replace the candidate if ``gain`` is strictly better.

        Returns
        -------
        updated : bool
            Whether the candidate was replaced.
        """
        if gain > self.gain:
            self.gain = float(gain)
            self.threshold = float(threshold)
            self.feature_id = int(feature_id)
            self.left_stat = left_stat.copy() if left_stat is not None else None
            self.right_stat = right_stat.copy() if right_stat is not None else None
            return True
        return False

    def merge(self, other: "SplitPoint") -> bool:
        """Fold another candidate for the same node into this one."""
        if not other.is_valid:
            return False
        return self.update(
            other.gain, other.threshold, other.feature_id,
            other.left_stat, other.right_stat,
        )

    def key(self):
        """Comparable ``(gain, threshold, feature_id)`` triple."""
        return (self.gain, self.threshold, self.feature_id)


# =============================================================================
# Gain and Weight
# =============================================================================

def _score(stat: NodeStat, lambda_l2: float) -> float:
    return (stat.sum_gd * stat.sum_gd) / (stat.sum_hess + lambda_l2)


def calc_gain(
    parent: NodeStat,
    right: NodeStat,
    left: NodeStat,
    lambda_l2: float,
    gamma: float,
) -> float:
    """
    Second-order gain of splitting ``parent`` into ``left`` and ``right``.

    gain = G_R^2/(H_R + λ) + G_L^2/(H_L + λ) - G^2/(H + λ) - γ

    There is no 0.5 factor and γ is charged on every evaluated split, so a
    candidate only survives the search if it pays for its own complexity.

    Raises
    ------
    InvariantViolationError
        If the children do not add up to the parent.
    """
    if abs(parent.sum_gd - left.sum_gd - right.sum_gd) >= GRADIENT_SUM_TOLERANCE:
        raise InvariantViolationError(
            f"gradient sums do not add up: parent={parent.sum_gd}, "
            f"left={left.sum_gd}, right={right.sum_gd}"
        )
    if parent.sum_hess != left.sum_hess + right.sum_hess:
        raise InvariantViolationError(
            f"hessian sums do not add up: parent={parent.sum_hess}, "
            f"left={left.sum_hess}, right={right.sum_hess}"
        )

    gain = (
        _score(left, lambda_l2)
        + _score(right, lambda_l2)
        - _score(parent, lambda_l2)
    )
    return gain - gamma


def leaf_weight(stat: NodeStat, lambda_l2: float) -> float:
    """
    Ridge-regularised Newton step for a leaf.

    value = -G / (H + λ)
    """
    return -stat.sum_gd / (stat.sum_hess + lambda_l2)


__all__ = [
    'NodeStat',
    'SplitPoint',
    'calc_gain',
    'leaf_weight',
    'MIN_CHILD_WEIGHT',
    'VALUE_EPSILON',
    'GRADIENT_SUM_TOLERANCE',
]
