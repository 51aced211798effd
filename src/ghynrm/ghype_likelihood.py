#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ghynrm/ghype_likelihood.py

"""
Log-likelihood of a multi-layer generalized hypergeometric ensemble (gHypEG).

Model
-----
For every modelled pair a = (i, j) let A_a be the observed count,
m = sum_a A_a the total count, Xi_a the combinatorial weight of the pair and
w_{l,a} > 0 the value of covariate layer l. With raw coefficients beta_l the
propensity of the pair is

    omega_a(beta) = prod_l w_{l,a} ^ exp(beta_l),

so that any real beta yields a positive propensity. The ensemble used here is
the multinomial approximation of the gHypEG:

    p_a = Xi_a omega_a / sum_b Xi_b omega_b,
    log L(beta) = log m! - sum_a log A_a! + sum_a A_a log p_a.

The sufficient statistics are the pair counts A_a and the total m. The
combinatorial matrix is

    Xi_ij = k_out,i k_in,j             (directed),
    Xi_ij = k_i k_j,  Xi_ii = k_i^2/2  (undirected),

or Xi = 1 for the regular gHypEG.

Derivatives
-----------
With s_l = exp(beta_l) and x_{l,a} = log w_{l,a}, log L is concave in s:

    d log L / d s_l         = sum_a A_a x_{l,a} - m E_p[x_l],
    d2 log L / d s_l d s_k  = -m Cov_p(x_l, x_k).

The chain rule gives the gradient and Hessian in beta:

    g_l    = s_l dL/ds_l,
    H_lk   = s_l s_k d2L/ds_l ds_k + delta_lk g_l.

Numerical conventions
---------------------
- Pairs with Xi_a = 0 or with a zero layer value carry no probability and are
  removed from the support; their observed count must be zero, so the
  term 0 * log 0 is taken as 0.
- A zero layer value on a pair with positive count cannot be explained by any
  coefficient and raises DomainError.
- The normalization uses a log-sum-exp shift; the pair loops run in Numba.

Public API
----------
- PairDesign: support-restricted design for one (network, layer list)
- build_design(network, layers, names=None) -> PairDesign
- loglikelihood(design, coefficients) -> float
- loglikelihood_derivatives(design, coefficients) -> (ll, grad, hess)
- null_loglikelihood(network) -> float (cached per NetworkData)
- null_degenerate(network) -> bool
- pair_probabilities(design, coefficients) -> N x N matrix
- ghype_loglik(adj, layers, coefficients, ...) -> float
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from numba import njit
from scipy.special import gammaln, logsumexp

from .errors import ConfigurationError, DomainError
from .layers import LayerSet, NetworkData

Array = np.ndarray


# -----------------------------------------------------------------------------
# Numba kernels
# -----------------------------------------------------------------------------
@njit(cache=True, nogil=True)
def _linear_predictor(X: Array, log_xi: Array, s: Array) -> Tuple[Array, float]:
    """
    Return eta_a = log Xi_a + sum_l s_l X[a, l] and log sum_a exp(eta_a).

    The normalizer is shifted by max(eta) before exponentiation.
    """
    P = X.shape[0]
    L = X.shape[1]
    eta = np.empty(P, dtype=np.float64)
    mx = -np.inf
    for a in range(P):
        v = log_xi[a]
        for l in range(L):
            v += s[l] * X[a, l]
        eta[a] = v
        if v > mx:
            mx = v
    acc = 0.0
    for a in range(P):
        acc += math.exp(eta[a] - mx)
    return eta, mx + math.log(acc)


@njit(cache=True, nogil=True)
def _weighted_moments(X: Array, eta: Array, log_z: float) -> Tuple[Array, Array]:
    """Return mean and covariance of the layer columns under p_a = exp(eta_a - log_z)."""
    P = X.shape[0]
    L = X.shape[1]
    mean = np.zeros(L, dtype=np.float64)
    second = np.zeros((L, L), dtype=np.float64)
    for a in range(P):
        p = math.exp(eta[a] - log_z)
        for l in range(L):
            xl = p * X[a, l]
            mean[l] += xl
            for k in range(l + 1):
                second[l, k] += xl * X[a, k]
    cov = np.empty((L, L), dtype=np.float64)
    for l in range(L):
        for k in range(l + 1):
            c = second[l, k] - mean[l] * mean[k]
            cov[l, k] = c
            cov[k, l] = c
    return mean, cov


# -----------------------------------------------------------------------------
# Network-level statistics (cached on the NetworkData instance)
# -----------------------------------------------------------------------------
def combinatorial_log_xi(network: NetworkData) -> Array:
    """
    Return log Xi over the modelled pairs, with -inf where Xi = 0.

    For regular networks Xi is uniform and the result is all zeros.
    """
    cached = network._cache.get("log_xi")
    if cached is not None:
        return cached

    if network.regular:
        log_xi = np.zeros(network.n_pairs, dtype=np.float64)
    else:
        i_idx, j_idx = network.pairs
        k_out, k_in = network.degrees()
        xi = k_out[i_idx] * k_in[j_idx]
        if not network.directed:
            xi = np.where(i_idx == j_idx, 0.5 * xi, xi)
        log_xi = np.full(xi.shape, -np.inf, dtype=np.float64)
        pos = xi > 0.0
        log_xi[pos] = np.log(xi[pos])
    log_xi.setflags(write=False)
    network._cache["log_xi"] = log_xi
    return log_xi


def log_count_factor(network: NetworkData) -> float:
    """Return log m! - sum_a log A_a!, the coefficient-free part of log L."""
    cached = network._cache.get("log_count_factor")
    if cached is None:
        c = network.counts
        cached = float(gammaln(float(np.sum(c)) + 1.0) - np.sum(gammaln(c + 1.0)))
        network._cache["log_count_factor"] = cached
    return cached


def null_degenerate(network: NetworkData) -> bool:
    """True when the layer-free log L is identically zero (no data or one pair)."""
    return network.m <= 0.0 or int(np.sum(np.isfinite(combinatorial_log_xi(network)))) <= 1


def null_loglikelihood(network: NetworkData) -> float:
    """
    Log-likelihood of the model without covariate layers (omega = 1).

    Computed once per NetworkData and reused by every fit on that network.
    """
    cached = network._cache.get("null_loglik")
    if cached is not None:
        return cached

    c = network.counts
    m = float(np.sum(c))
    log_xi = combinatorial_log_xi(network)
    support = np.isfinite(log_xi)
    if null_degenerate(network):
        ll0 = 0.0
    else:
        eta = log_xi[support]
        ll0 = log_count_factor(network) + float(np.dot(c[support], eta)) - m * float(logsumexp(eta))
    network._cache["null_loglik"] = ll0
    return ll0


# -----------------------------------------------------------------------------
# Design container
# -----------------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class PairDesign:
    """
    Support-restricted inputs of the likelihood for one list of layers.

    Attributes
    ----------
    network:
        The observed network.
    names:
        Layer names, in coefficient order.
    support:
        Boolean mask over network pairs that can carry probability.
    X:
        log layer values on the support, shape (n_support, n_layers).
    counts, log_xi:
        Observed counts and log Xi on the support.
    suff_stats:
        sum_a A_a X[a, :], the observed layer statistics.
    """
    network: NetworkData
    names: Tuple[str, ...]
    support: Array
    X: Array
    counts: Array
    log_xi: Array
    suff_stats: Array
    m: float
    log_const: float

    @property
    def n_layers(self) -> int:
        return len(self.names)

    @property
    def n_support(self) -> int:
        return int(self.counts.size)

    @property
    def degenerate(self) -> bool:
        """True when log L does not depend on the coefficients (no data or one pair)."""
        return self.m <= 0.0 or self.n_support <= 1


def _symmetrized(values: Array) -> Array:
    """Geometric-mean symmetrization sqrt(w_ij w_ji); zero if either entry is zero."""
    W = np.asarray(values, dtype=np.float64)
    pos = W > 0.0
    log_w = np.full(W.shape, -np.inf, dtype=np.float64)
    log_w[pos] = np.log(W[pos])
    both = pos & pos.T
    out = np.zeros(W.shape, dtype=np.float64)
    # log-space mean; the direct product overflows above ~1e154
    out[both] = np.exp(0.5 * (log_w + log_w.T)[both])
    return out


def build_design(
    network: NetworkData,
    layers: Union[LayerSet, Mapping[str, Any]],
    names: Optional[Sequence[str]] = None,
) -> PairDesign:
    """
    Combine a network with the layers listed in names (default: all layers).

    Raises
    ------
    ConfigurationError:
        If no layer is selected or the layers do not match the network.
    DomainError:
        If a layer is zero on a pair with positive observed count.
    """
    layer_set = LayerSet.coerce(layers)
    names = tuple(layer_set.names if names is None else names)
    if len(names) == 0:
        raise ConfigurationError("At least one covariate layer is required.")
    if len(set(names)) != len(names):
        raise ConfigurationError("Layer names in a model must be unique.")
    active = layer_set.subset(names)
    active.validate_against(network)

    counts_all = network.counts
    log_xi_all = combinatorial_log_xi(network)
    support = np.isfinite(log_xi_all).copy()

    columns = []
    for name in names:
        W = active[name].values
        if not network.directed:
            W = _symmetrized(W)
        w = network.pair_vector(W)
        zero = w <= 0.0
        bad = zero & (counts_all > 0.0)
        if np.any(bad):
            raise DomainError(
                f"Layer {name!r} is zero on {int(np.sum(bad))} pair(s) with observed interactions."
            )
        support &= ~zero
        columns.append(w)

    X = np.empty((int(np.sum(support)), len(names)), dtype=np.float64)
    for l, w in enumerate(columns):
        X[:, l] = np.log(w[support])

    counts = np.ascontiguousarray(counts_all[support], dtype=np.float64)
    log_xi = np.ascontiguousarray(log_xi_all[support], dtype=np.float64)
    support.setflags(write=False)
    return PairDesign(
        network=network,
        names=names,
        support=support,
        X=X,
        counts=counts,
        log_xi=log_xi,
        suff_stats=X.T @ counts,
        m=float(np.sum(counts_all)),
        log_const=log_count_factor(network),
    )


# -----------------------------------------------------------------------------
# Likelihood evaluation
# -----------------------------------------------------------------------------
def _validate_coefficients(coefficients: Any, n_layers: int) -> Array:
    """Coerce coefficients to a finite float64 vector of length n_layers."""
    beta = np.asarray(coefficients, dtype=np.float64).reshape(-1)
    if beta.size != n_layers:
        raise ConfigurationError(f"Expected {n_layers} coefficient(s), got {beta.size}.")
    if np.any(~np.isfinite(beta)):
        raise ConfigurationError("Coefficients must be finite.")
    return beta


def _eta(design: PairDesign, beta: Array) -> Optional[Tuple[Array, float]]:
    """Return (eta, log_z), or None if exp(beta) overflows."""
    with np.errstate(over="ignore"):
        s = np.exp(beta)
    if np.any(~np.isfinite(s)):
        return None
    eta, log_z = _linear_predictor(design.X, design.log_xi, s)
    if not np.isfinite(log_z):
        return None
    return eta, float(log_z)


def loglikelihood(design: PairDesign, coefficients: Any) -> float:
    """
    Evaluate log L(beta). Returns -inf where the propensities overflow.
    """
    beta = _validate_coefficients(coefficients, design.n_layers)
    if design.degenerate:
        return 0.0
    out = _eta(design, beta)
    if out is None:
        return -np.inf
    eta, log_z = out
    return float(design.log_const + np.dot(design.counts, eta) - design.m * log_z)


def loglikelihood_derivatives(design: PairDesign, coefficients: Any) -> Tuple[float, Array, Array]:
    """
    Return (log L, gradient, Hessian) with respect to the raw coefficients.

    Raises
    ------
    FloatingPointError:
        If the propensities overflow at the given coefficients.
    """
    beta = _validate_coefficients(coefficients, design.n_layers)
    L = design.n_layers
    if design.degenerate:
        return 0.0, np.zeros(L, dtype=np.float64), np.zeros((L, L), dtype=np.float64)

    out = _eta(design, beta)
    if out is None:
        raise FloatingPointError("Propensities overflow at the given coefficients.")
    eta, log_z = out
    ll = float(design.log_const + np.dot(design.counts, eta) - design.m * log_z)

    s = np.exp(beta)
    mean, cov = _weighted_moments(design.X, eta, log_z)
    grad_s = design.suff_stats - design.m * mean
    hess_s = -design.m * cov

    grad = s * grad_s
    hess = np.outer(s, s) * hess_s + np.diag(grad)
    return ll, grad, hess


def pair_probabilities(design: PairDesign, coefficients: Any) -> Array:
    """
    Return the N x N matrix of pair probabilities p_ij.

    Entries outside the modelled pairs are zero. In undirected mode the matrix
    is mirrored, so each unordered pair probability appears twice.
    """
    beta = _validate_coefficients(coefficients, design.n_layers)
    network = design.network
    p_all = np.zeros(network.n_pairs, dtype=np.float64)
    if design.n_support > 0:
        out = _eta(design, beta)
        if out is None:
            raise FloatingPointError("Propensities overflow at the given coefficients.")
        eta, log_z = out
        p_all[design.support] = np.exp(eta - log_z)
    return network.to_matrix(p_all)


def ghype_loglik(
    adj: Union[NetworkData, Array],
    layers: Union[LayerSet, Mapping[str, Any]],
    coefficients: Any,
    *,
    directed: Optional[bool] = None,
    selfloops: Optional[bool] = None,
    regular: Optional[bool] = None,
) -> float:
    """
    Convenience wrapper: log L of the raw matrices at the given coefficients.
    """
    network = NetworkData.coerce(adj, directed=directed, selfloops=selfloops, regular=regular)
    design = build_design(network, layers)
    return loglikelihood(design, coefficients)


__all__ = [
    "PairDesign",
    "build_design",
    "combinatorial_log_xi",
    "log_count_factor",
    "null_degenerate",
    "null_loglikelihood",
    "loglikelihood",
    "loglikelihood_derivatives",
    "pair_probabilities",
    "ghype_loglik",
]
