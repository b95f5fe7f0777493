"""
Instance-to-node bookkeeping.

``NodeAssignment`` records, for every instance, the tree node that currently
owns it or that it has been pruned (its node was finalised as a leaf).
``ActiveNodeBuffer`` maps each currently splittable node to a dense buffer
position, which indexes the per-node scratch state of the batched search.

Buffer invariants:

* the keys are exactly the splittable node ids;
* positions are ``0 .. len(buffer) - 1`` in insertion order;
* the buffer is only (re)initialised when empty;
* positions stay valid until the next split or finalisation.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np

from .node_stat import NodeStat
from .utils import InvariantViolationError

ROOT_NODE_ID = 0


class NodeAssignment:
    """
    Owning node of each instance.

    Pruned instances keep their last node id for inspection but are flagged
    separately, so no node id value doubles as the "removed" marker.

    Parameters
    ----------
    n_instances : int
        Number of instances.
    """

    def __init__(self, n_instances: int):
        self._node_ids = np.full(n_instances, ROOT_NODE_ID, dtype=np.int64)
        self._pruned = np.zeros(n_instances, dtype=bool)

    def __len__(self) -> int:
        return len(self._node_ids)

    def reset(self) -> None:
        """Put every instance back into the root node."""
        self._node_ids[:] = ROOT_NODE_ID
        self._pruned[:] = False

    @property
    def node_ids(self) -> np.ndarray:
        view = self._node_ids.view()
        view.flags.writeable = False
        return view

    @property
    def pruned(self) -> np.ndarray:
        view = self._pruned.view()
        view.flags.writeable = False
        return view

    def node_of(self, instance_id: int) -> Optional[int]:
        """Owning node id, or None if the instance has been pruned."""
        if self._pruned[instance_id]:
            return None
        return int(self._node_ids[instance_id])

    def owned_by(self, node_id: int) -> np.ndarray:
        """Boolean mask of the instances owned by ``node_id``."""
        return ~self._pruned & (self._node_ids == node_id)

    def assign(self, instance_ids: np.ndarray, node_id: int) -> None:
        """Move live instances to ``node_id``."""
        instance_ids = np.asarray(instance_ids, dtype=np.int64)
        if np.any(self._pruned[instance_ids]):
            raise InvariantViolationError(
                f"cannot assign pruned instances to node {node_id}"
            )
        self._node_ids[instance_ids] = node_id

    def prune(self, node_id: int) -> int:
        """Flag every instance owned by ``node_id`` as pruned; return how many."""
        mask = self.owned_by(node_id)
        self._pruned[mask] = True
        return int(np.count_nonzero(mask))


class ActiveNodeBuffer:
    """
    Node id to buffer position map for the splittable nodes.

    Each entry also carries the node's statistics snapshot, so one
    structure decides both where a node lives and what it sums to.
    """

    def __init__(self):
        self._positions: Dict[int, int] = {}
        self._stats: List[NodeStat] = []
        self._node_ids: List[int] = []

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._positions

    def __iter__(self) -> Iterator[int]:
        return iter(self._positions)

    @property
    def capacity(self) -> int:
        """Number of positions handed out by the last reset."""
        return len(self._node_ids)

    def reset(self, node_ids: Sequence[int], stats: Sequence[NodeStat]) -> None:
        """
        Register a fresh set of splittable nodes at positions ``0..n-1``.

        Raises
        ------
        InvariantViolationError
            If nodes from the previous set are still registered, or the
            number of statistics does not match the number of nodes.
        """
        if self._positions:
            raise InvariantViolationError(
                f"active-node buffer still holds nodes {sorted(self._positions)}"
            )
        if len(node_ids) != len(stats):
            raise InvariantViolationError(
                f"got {len(node_ids)} nodes but {len(stats)} statistics"
            )
        if len(set(node_ids)) != len(node_ids):
            raise InvariantViolationError(f"duplicate node ids in {list(node_ids)}")

        self._node_ids = [int(n) for n in node_ids]
        self._stats = [stat.copy() for stat in stats]
        self._positions = {nid: pos for pos, nid in enumerate(self._node_ids)}

    def position(self, node_id: int) -> int:
        try:
            return self._positions[node_id]
        except KeyError:
            raise InvariantViolationError(f"node {node_id} is not active") from None

    def stat(self, node_id: int) -> NodeStat:
        return self._stats[self.position(node_id)]

    def stat_at(self, position: int) -> NodeStat:
        return self._stats[position]

    def node_at(self, position: int) -> int:
        return self._node_ids[position]

    def release(self, node_id: int) -> bool:
        """Drop a node from the map; return whether it was present."""
        return self._positions.pop(node_id, None) is not None

    def lookup_table(self, max_node_id: int) -> np.ndarray:
        """
        Array mapping node id to buffer position, -1 for inactive nodes.
        """
        table = np.full(max_node_id + 1, -1, dtype=np.int64)
        for nid, pos in self._positions.items():
            if nid <= max_node_id:
                table[nid] = pos
        return table


__all__ = ['NodeAssignment', 'ActiveNodeBuffer', 'ROOT_NODE_ID']
