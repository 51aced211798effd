#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ghynrm/layers.py

"""
Read-only containers for the observed network, its covariate layers and the
bundles used by stepwise selection.

Conventions
-----------
- All matrices are square N x N float64 arrays over one fixed node ordering.
- Pairs are enumerated once per (N, directed, selfloops):
    * directed:   all ordered (i, j) with i != j, in row-major order;
    * undirected: the strict upper triangle i < j;
    * selfloops:  the diagonal (i, i) is added in both cases.
- Arrays stored in the containers are private copies flagged read-only, so
  that fits sharing the same inputs cannot interfere with each other.

Public API
----------
- NetworkData: adjacency matrix plus directed/selfloops/regular flags
- Layer: named covariate matrix
- LayerSet: ordered mapping of layer name -> Layer
- Bundle: named group of layers selected as one unit
- make_bundles(layer_names, groups) -> tuple of Bundle
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigurationError, DomainError

Array = np.ndarray


# =============================================================================
# Pair enumeration
# =============================================================================
@lru_cache(maxsize=64)
def _pair_indices_cached(n: int, directed: bool, selfloops: bool) -> Tuple[Array, Array]:
    """Return cached (row, col) indices of the modelled pairs of an n x n matrix."""
    n = int(n)
    if directed:
        mask = np.ones((n, n), dtype=bool)
        if not selfloops:
            np.fill_diagonal(mask, False)
        i_idx, j_idx = np.nonzero(mask)
    else:
        i_idx, j_idx = np.triu_indices(n, k=0 if selfloops else 1)
    i_idx = i_idx.astype(np.int64)
    j_idx = j_idx.astype(np.int64)
    i_idx.setflags(write=False)
    j_idx.setflags(write=False)
    return i_idx, j_idx


def _readonly_square(values: Any, what: str) -> Array:
    """Copy values into a read-only square float64 matrix."""
    M = np.array(values, dtype=np.float64, copy=True)
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise ConfigurationError(f"{what} must be a square matrix, got shape {M.shape}.")
    M.setflags(write=False)
    return M


def _coerce_node_ids(node_ids: Any, n: int, what: str) -> Array:
    """Validate node labels as a one-dimensional array of length n."""
    ids = np.array(node_ids, copy=True)
    if ids.ndim != 1 or ids.shape[0] != n:
        raise ConfigurationError(f"{what} node_ids must be 1D with length {n}.")
    if np.unique(ids).size != n:
        raise ConfigurationError(f"{what} node_ids must be unique.")
    ids.setflags(write=False)
    return ids


# =============================================================================
# Network container
# =============================================================================
@dataclass(frozen=True, eq=False)
class NetworkData:
    """
    Observed interaction network and ensemble configuration.

    Parameters
    ----------
    adj:
        Square matrix of non-negative interaction counts or indicators.
    directed:
        If False the matrix must be symmetric and only i < j is modelled.
    selfloops:
        If True the diagonal is part of the modelled pairs; otherwise it is
        ignored.
    regular:
        If True the combinatorial matrix is uniform (regular gHypEG) instead
        of the degree configuration.
    node_ids:
        Labels of rows/columns. Defaults to 0..N-1.
    """
    adj: Array
    directed: bool = False
    selfloops: bool = False
    regular: bool = False
    node_ids: Optional[Array] = None
    _cache: Dict[str, Any] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        A = _readonly_square(self.adj, "Adjacency matrix")
        if np.any(~np.isfinite(A)):
            raise ConfigurationError("Adjacency matrix must contain finite values only.")
        if np.any(A < 0.0):
            raise ConfigurationError("Adjacency matrix must be non-negative.")
        if not self.directed and not np.allclose(A, A.T, rtol=1e-12, atol=1e-12):
            raise ConfigurationError("Adjacency matrix is not symmetric but directed=False.")
        object.__setattr__(self, "adj", A)
        object.__setattr__(self, "directed", bool(self.directed))
        object.__setattr__(self, "selfloops", bool(self.selfloops))
        object.__setattr__(self, "regular", bool(self.regular))

        n = int(A.shape[0])
        if self.node_ids is None:
            ids = np.arange(n, dtype=np.int64)
            ids.setflags(write=False)
        else:
            ids = _coerce_node_ids(self.node_ids, n, "Network")
        object.__setattr__(self, "node_ids", ids)

    # ------------------------- constructors -------------------------
    @classmethod
    def coerce(
        cls,
        adj: Union["NetworkData", Array],
        *,
        directed: Optional[bool] = None,
        selfloops: Optional[bool] = None,
        regular: Optional[bool] = None,
        node_ids: Optional[Sequence[Any]] = None,
    ) -> "NetworkData":
        """
        Return adj as NetworkData.

        Flags given alongside an existing NetworkData must agree with it.
        """
        if isinstance(adj, NetworkData):
            for name, value in (("directed", directed), ("selfloops", selfloops), ("regular", regular)):
                if value is not None and bool(value) != getattr(adj, name):
                    raise ConfigurationError(
                        f"{name}={value!r} conflicts with the NetworkData setting {getattr(adj, name)!r}."
                    )
            if node_ids is not None and not np.array_equal(np.asarray(node_ids), adj.node_ids):
                raise ConfigurationError("node_ids conflict with the NetworkData labels.")
            return adj
        return cls(
            adj=adj,
            directed=bool(directed) if directed is not None else False,
            selfloops=bool(selfloops) if selfloops is not None else False,
            regular=bool(regular) if regular is not None else False,
            node_ids=node_ids,
        )

    # ------------------------- pair views -------------------------
    @property
    def n_nodes(self) -> int:
        return int(self.adj.shape[0])

    @property
    def pairs(self) -> Tuple[Array, Array]:
        """Row and column indices of the modelled pairs."""
        return _pair_indices_cached(self.n_nodes, self.directed, self.selfloops)

    @property
    def n_pairs(self) -> int:
        return int(self.pairs[0].size)

    def pair_vector(self, M: Array) -> Array:
        """Extract the modelled pairs of a square matrix as a flat vector."""
        i_idx, j_idx = self.pairs
        return np.asarray(M, dtype=np.float64)[i_idx, j_idx]

    def to_matrix(self, values: Array) -> Array:
        """Scatter a pair vector back to an N x N matrix (mirrored if undirected)."""
        v = np.asarray(values, dtype=np.float64).reshape(-1)
        if v.size != self.n_pairs:
            raise ConfigurationError(f"Expected {self.n_pairs} pair values, got {v.size}.")
        i_idx, j_idx = self.pairs
        M = np.zeros((self.n_nodes, self.n_nodes), dtype=np.float64)
        M[i_idx, j_idx] = v
        if not self.directed:
            M[j_idx, i_idx] = v
        return M

    @property
    def counts(self) -> Array:
        """Observed counts over the modelled pairs (cached, read-only)."""
        c = self._cache.get("counts")
        if c is None:
            c = self.pair_vector(self.adj)
            c.setflags(write=False)
            self._cache["counts"] = c
        return c

    @property
    def m(self) -> float:
        """Total number of interactions over the modelled pairs."""
        return float(np.sum(self.counts))

    def degrees(self) -> Tuple[Array, Array]:
        """
        Return (out-degree, in-degree) of the modelled part of the matrix.

        In undirected mode both entries are the same degree vector, with a
        self-loop contributing twice to its node.
        """
        M = np.array(self.adj, dtype=np.float64, copy=True)
        if not self.selfloops:
            np.fill_diagonal(M, 0.0)
        if self.directed:
            return M.sum(axis=1), M.sum(axis=0)
        k = M.sum(axis=1) + np.diag(M)
        return k, k


# =============================================================================
# Covariate layers
# =============================================================================
@dataclass(frozen=True, eq=False)
class Layer:
    """
    Named covariate network acting as a multiplicative propensity modifier.

    Values must be finite and non-negative. A value of 1 means "no effect";
    zeros are allowed only on pairs without observed interactions, which is
    checked when the layer is combined with a network.
    """
    name: str
    values: Array
    node_ids: Optional[Array] = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError("Layer name must be a non-empty string.")
        W = _readonly_square(self.values, f"Layer {self.name!r}")
        if np.any(~np.isfinite(W)):
            raise DomainError(f"Layer {self.name!r} contains non-finite values.")
        if np.any(W < 0.0):
            raise DomainError(f"Layer {self.name!r} contains negative values.")
        object.__setattr__(self, "values", W)
        if self.node_ids is not None:
            object.__setattr__(self, "node_ids", _coerce_node_ids(self.node_ids, W.shape[0], f"Layer {self.name!r}"))

    @property
    def n_nodes(self) -> int:
        return int(self.values.shape[0])


class LayerSet:
    """
    Ordered mapping of layer name -> Layer.

    The insertion order defines the order of the coefficient vector.
    """

    def __init__(self, layers: Union[Mapping[str, Union[Array, Layer]], Sequence[Layer]]) -> None:
        items: Dict[str, Layer] = {}
        if isinstance(layers, Mapping):
            pairs = list(layers.items())
        else:
            pairs = [(lay.name, lay) for lay in layers]
        for name, value in pairs:
            if name in items:
                raise ConfigurationError(f"Duplicate layer name {name!r}.")
            if isinstance(value, Layer):
                if value.name != name:
                    raise ConfigurationError(f"Layer registered as {name!r} is named {value.name!r}.")
                items[name] = value
            else:
                items[name] = Layer(name=name, values=value)
        self._layers = items

    @classmethod
    def coerce(cls, layers: Union["LayerSet", Mapping[str, Any], Sequence[Layer]]) -> "LayerSet":
        if isinstance(layers, LayerSet):
            return layers
        return cls(layers)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._layers)

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[str]:
        return iter(self._layers)

    def __contains__(self, name: object) -> bool:
        return name in self._layers

    def __getitem__(self, name: str) -> Layer:
        try:
            return self._layers[name]
        except KeyError:
            raise ConfigurationError(f"Unknown layer {name!r}.") from None

    def __repr__(self) -> str:
        return f"LayerSet({list(self._layers)!r})"

    def subset(self, names: Sequence[str]) -> "LayerSet":
        """Return a LayerSet restricted to names, in the given order."""
        return LayerSet([self[name] for name in names])

    def validate_against(self, network: NetworkData) -> None:
        """Check dimensions and node labels of every layer against the network."""
        n = network.n_nodes
        for lay in self._layers.values():
            if lay.n_nodes != n:
                raise ConfigurationError(
                    f"Layer {lay.name!r} has dimension {lay.n_nodes}, network has {n} nodes."
                )
            if lay.node_ids is not None and not np.array_equal(lay.node_ids, network.node_ids):
                raise ConfigurationError(f"Layer {lay.name!r} node ordering does not match the network.")


# =============================================================================
# Bundles
# =============================================================================
@dataclass(frozen=True)
class Bundle:
    """Named, ordered group of layers included or excluded together."""
    name: str
    layers: Tuple[str, ...]

    def __post_init__(self) -> None:
        layers = tuple(self.layers)
        if not layers:
            raise ConfigurationError(f"Bundle {self.name!r} must contain at least one layer.")
        if len(set(layers)) != len(layers):
            raise ConfigurationError(f"Bundle {self.name!r} lists a layer twice.")
        object.__setattr__(self, "layers", layers)


def make_bundles(
    layer_names: Sequence[str],
    groups: Optional[Union[Mapping[str, Sequence[str]], Sequence[Bundle]]] = None,
) -> Tuple[Bundle, ...]:
    """
    Build selection bundles over layer_names.

    A group is placed at the position of its first layer in layer_names;
    layers that belong to no group become singleton bundles named after the
    layer. Each layer may belong to at most one bundle.
    """
    names = list(layer_names)
    known = set(names)

    if groups is None:
        group_list: List[Bundle] = []
    elif isinstance(groups, Mapping):
        group_list = [Bundle(name=str(g), layers=tuple(ls)) for g, ls in groups.items()]
    else:
        group_list = list(groups)

    owner: Dict[str, Bundle] = {}
    for b in group_list:
        for lay in b.layers:
            if lay not in known:
                raise ConfigurationError(f"Bundle {b.name!r} refers to unknown layer {lay!r}.")
            if lay in owner:
                raise ConfigurationError(
                    f"Layer {lay!r} belongs to both {owner[lay].name!r} and {b.name!r}."
                )
            owner[lay] = b

    out: List[Bundle] = []
    emitted: Dict[str, Bundle] = {}
    for lay in names:
        b = owner.get(lay, Bundle(name=lay, layers=(lay,)))
        if b.name in emitted:
            if emitted[b.name] is not b:
                raise ConfigurationError(f"Duplicate bundle name {b.name!r}.")
            continue
        emitted[b.name] = b
        out.append(b)
    return tuple(out)


__all__ = [
    "NetworkData",
    "Layer",
    "LayerSet",
    "Bundle",
    "make_bundles",
]
