"""
Column-oriented sparse feature storage.

Each feature is stored as the list of ``(instance id, value)`` pairs of the
instances that observe it, sorted ascending by value. Missing values (NaN
in dense input, absent pairs in sparse input) simply do not appear in the
column. Columns are built once and are read-only afterwards.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .utils import ArrayLike, check_array


class FeatureColumn:
    """
    Sorted ``(instance id, value)`` pairs of one feature.

    Parameters
    ----------
    feature_id : int
        Index of the feature.
    instance_ids : np.ndarray of int
        Instances observing the feature.
    values : np.ndarray of float
        Observed values, same length as ``instance_ids``.
    """

    def __init__(
        self,
        feature_id: int,
        instance_ids: np.ndarray,
        values: np.ndarray,
    ):
        instance_ids = np.asarray(instance_ids, dtype=np.int64)
        values = np.asarray(values, dtype=float)
        if instance_ids.shape != values.shape or instance_ids.ndim != 1:
            raise ValueError(
                f"instance_ids and values must be 1D arrays of equal length, "
                f"got {instance_ids.shape} and {values.shape}"
            )

        # Stable so equal values keep instance order
        order = np.argsort(values, kind="stable")
        self.feature_id = feature_id
        self.instance_ids = instance_ids[order]
        self.values = values[order]
        self.instance_ids.flags.writeable = False
        self.values.flags.writeable = False

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self):
        return zip(self.instance_ids.tolist(), self.values.tolist())

    def __repr__(self) -> str:
        return f"FeatureColumn(feature_id={self.feature_id}, n_values={len(self)})"


class ColumnDataset:
    """
    Immutable column store over ``n_instances`` instances.

    Parameters
    ----------
    columns : sequence of FeatureColumn
        One column per feature, indexed by feature id.
    n_instances : int
        Number of instances; instance ids range over ``[0, n_instances)``.
    """

    def __init__(self, columns: Sequence[FeatureColumn], n_instances: int):
        if n_instances <= 0:
            raise ValueError(f"n_instances must be positive, got {n_instances}")
        for f, column in enumerate(columns):
            if column.feature_id != f:
                raise ValueError(
                    f"column at position {f} has feature_id {column.feature_id}"
                )
            if len(column) and (
                column.instance_ids.min() < 0
                or column.instance_ids.max() >= n_instances
            ):
                raise ValueError(
                    f"feature {f} references instance ids outside [0, {n_instances})"
                )
            if len(np.unique(column.instance_ids)) != len(column):
                raise ValueError(f"feature {f} lists an instance more than once")

        self._columns: Tuple[FeatureColumn, ...] = tuple(columns)
        self.n_instances = n_instances

    @property
    def n_features(self) -> int:
        return len(self._columns)

    @property
    def columns(self) -> Tuple[FeatureColumn, ...]:
        return self._columns

    def column(self, feature_id: int) -> FeatureColumn:
        return self._columns[feature_id]

    @classmethod
    def from_dense(cls, X: ArrayLike) -> "ColumnDataset":
        """
        Build the column store from a dense matrix.

        NaN entries are treated as missing values.
        """
        X = check_array(X, ensure_2d=True, allow_nan=True)
        n_instances, n_features = X.shape
        columns = []
        for f in range(n_features):
            observed = np.flatnonzero(~np.isnan(X[:, f]))
            columns.append(FeatureColumn(f, observed, X[observed, f]))
        return cls(columns, n_instances)

    @classmethod
    def from_sparse_rows(
        cls,
        rows: Iterable[Iterable[Tuple[int, float]]],
        n_features: Optional[int] = None,
    ) -> "ColumnDataset":
        """
        Build the column store from sparse rows.

        Parameters
        ----------
        rows : iterable of iterables of (feature_id, value)
            One entry per instance, listing only its observed features,
            in the spirit of LibSVM rows.
        n_features : int or None
            Number of features. Inferred from the largest feature id when None.
        """
        ids: List[List[int]] = []
        vals: List[List[float]] = []
        n_instances = 0
        for ins_id, row in enumerate(rows):
            n_instances += 1
            for feature_id, value in row:
                feature_id = int(feature_id)
                if feature_id < 0:
                    raise ValueError(f"negative feature id {feature_id} in row {ins_id}")
                if not np.isfinite(value):
                    raise ValueError(
                        f"non-finite value for feature {feature_id} in row {ins_id}"
                    )
                while len(ids) <= feature_id:
                    ids.append([])
                    vals.append([])
                ids[feature_id].append(ins_id)
                vals[feature_id].append(float(value))

        if n_features is None:
            n_features = len(ids)
        elif n_features < len(ids):
            raise ValueError(
                f"rows reference feature {len(ids) - 1} but n_features={n_features}"
            )
        while len(ids) < n_features:
            ids.append([])
            vals.append([])

        columns = [FeatureColumn(f, ids[f], vals[f]) for f in range(n_features)]
        return cls(columns, n_instances)

    def to_dense(self) -> np.ndarray:
        """Dense ``(n_instances, n_features)`` matrix with NaN for missing values."""
        X = np.full((self.n_instances, self.n_features), np.nan)
        for column in self._columns:
            X[column.instance_ids, column.feature_id] = column.values
        return X

    def __repr__(self) -> str:
        return (
            f"ColumnDataset(n_instances={self.n_instances}, "
            f"n_features={self.n_features})"
        )


__all__ = ['FeatureColumn', 'ColumnDataset']
