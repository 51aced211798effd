"""
Tests for the gHypEG likelihood engine and the network / layer containers.
"""

from __future__ import annotations

import numpy as np
import pytest
from scipy.stats import multinomial

from ghynrm import ConfigurationError, DomainError, Layer, LayerSet, NetworkData
from ghynrm.ghype_likelihood import (
    build_design,
    combinatorial_log_xi,
    ghype_loglik,
    loglikelihood,
    loglikelihood_derivatives,
    null_loglikelihood,
    pair_probabilities,
)


def _random_directed(rng: np.random.Generator, n: int = 6, m: int = 300):
    A = np.zeros((n, n))
    off = ~np.eye(n, dtype=bool)
    A[off] = rng.multinomial(m, np.full(n * (n - 1), 1.0 / (n * (n - 1))))
    layers = {
        "x": np.exp(rng.normal(0.0, 1.0, size=(n, n))),
        "y": np.exp(rng.normal(0.0, 0.5, size=(n, n))),
    }
    return A, layers


def test_regular_loglik_matches_scipy_multinomial(rng) -> None:
    """With uniform Xi, log L is the multinomial log-pmf of the pair counts."""
    A, layers = _random_directed(rng, n=4, m=40)
    beta = np.array([0.3, -0.2])
    net = NetworkData(A, directed=True, regular=True)
    design = build_design(net, layers)

    log_w = np.exp(beta[0]) * np.log(net.pair_vector(layers["x"])) + np.exp(beta[1]) * np.log(
        net.pair_vector(layers["y"])
    )
    p = np.exp(log_w - log_w.max())
    p /= p.sum()
    expected = multinomial.logpmf(net.counts, n=int(net.m), p=p)

    assert loglikelihood(design, beta) == pytest.approx(expected, rel=1e-10)


def test_null_loglik_uses_degree_combinatorial_matrix(rng) -> None:
    """Without layers, undirected pairs are drawn with p_ij proportional to k_i k_j."""
    n = 7
    A = np.zeros((n, n))
    iu, ju = np.triu_indices(n, k=1)
    A[iu, ju] = rng.integers(0, 6, size=iu.size)
    A = A + A.T

    net = NetworkData(A, directed=False)
    k = A.sum(axis=1)
    xi = k[iu] * k[ju]
    keep = xi > 0
    p = xi[keep] / xi[keep].sum()
    expected = multinomial.logpmf(A[iu, ju][keep], n=int(A[iu, ju].sum()), p=p)

    assert null_loglikelihood(net) == pytest.approx(expected, rel=1e-10)
    # cached on the instance
    assert net._cache["null_loglik"] == null_loglikelihood(net)


def test_layer_of_ones_reproduces_null_loglik(undirected_sample) -> None:
    """omega = 1 for every coefficient when the only layer is all ones."""
    A, _ = undirected_sample
    net = NetworkData(A)
    design = build_design(net, {"ones": np.ones_like(A)})
    for beta in (-3.0, 0.0, 1.7):
        assert loglikelihood(design, [beta]) == pytest.approx(null_loglikelihood(net), rel=1e-12)


def test_gradient_and_hessian_match_finite_differences(rng) -> None:
    """Analytic derivatives agree with central differences."""
    A, layers = _random_directed(rng)
    design = build_design(NetworkData(A, directed=True), layers)
    beta = np.array([0.2, -0.4])
    _, g, H = loglikelihood_derivatives(design, beta)

    h = 1e-5
    g_num = np.zeros(2)
    H_num = np.zeros((2, 2))
    for idx in range(2):
        e = np.zeros(2)
        e[idx] = h
        g_num[idx] = (loglikelihood(design, beta + e) - loglikelihood(design, beta - e)) / (2 * h)
        H_num[:, idx] = (
            loglikelihood_derivatives(design, beta + e)[1] - loglikelihood_derivatives(design, beta - e)[1]
        ) / (2 * h)

    np.testing.assert_allclose(g, g_num, rtol=1e-5, atol=1e-5)
    np.testing.assert_allclose(H, H_num, rtol=1e-4, atol=1e-4)
    np.testing.assert_allclose(H, H.T, atol=1e-12)


def test_undirected_layer_is_symmetrized_by_geometric_mean(rng) -> None:
    """An asymmetric layer acts like sqrt(W * W^T) on undirected networks."""
    A, _ = _random_directed(rng, n=5, m=50)
    A = A + A.T
    W = np.exp(rng.normal(size=(5, 5)))
    net = NetworkData(A, directed=False)

    ll_raw = ghype_loglik(net, {"w": W}, [0.4])
    ll_sym = ghype_loglik(net, {"w": np.sqrt(W * W.T)}, [0.4])
    assert ll_raw == pytest.approx(ll_sym, rel=1e-12)


def test_symmetrization_handles_very_large_layer_values() -> None:
    """The geometric mean of 1e200 and 1e180 is 1e190, not inf."""
    A = np.array([[0, 3, 1], [3, 0, 2], [1, 2, 0]], dtype=float)
    W = np.ones((3, 3))
    W[0, 1] = 1e200
    W[1, 0] = 1e180
    net = NetworkData(A, regular=True)
    design = build_design(net, {"w": W})

    assert np.all(np.isfinite(design.X))
    assert design.X[0, 0] == pytest.approx(190.0 * np.log(10.0))
    assert np.isfinite(loglikelihood(design, [-5.0]))


def test_zero_layer_value_on_empty_pair_is_removed_from_support() -> None:
    """Zero layer values are fine where nothing was observed."""
    A = np.array([[0, 3, 0], [3, 0, 2], [0, 2, 0]], dtype=float)
    W = np.array([[1, 2, 0], [2, 1, 1], [0, 1, 1]], dtype=float)
    net = NetworkData(A, regular=True)
    design = build_design(net, {"w": W})

    assert design.n_support == 2
    ll = loglikelihood(design, [0.0])
    assert np.isfinite(ll)
    P = pair_probabilities(design, [0.0])
    assert P[0, 2] == 0.0
    # p_01 : p_12 = 2 : 1
    assert P[0, 1] == pytest.approx(2.0 / 3.0)


def test_zero_layer_value_on_observed_pair_raises() -> None:
    A = np.array([[0, 3, 1], [3, 0, 2], [1, 2, 0]], dtype=float)
    W = np.array([[1, 2, 0], [2, 1, 1], [0, 1, 1]], dtype=float)
    with pytest.raises(DomainError):
        build_design(NetworkData(A), {"w": W})


def test_negative_or_non_finite_layer_values_raise() -> None:
    W = np.ones((3, 3))
    W[0, 1] = -1.0
    with pytest.raises(DomainError):
        Layer("bad", W)
    W[0, 1] = np.nan
    with pytest.raises(DomainError):
        LayerSet({"bad": W})


def test_network_validation_errors() -> None:
    """Shape, sign and symmetry problems are configuration errors."""
    with pytest.raises(ConfigurationError):
        NetworkData(np.ones((3, 4)))
    with pytest.raises(ConfigurationError):
        NetworkData(-np.ones((3, 3)))
    A = np.array([[0, 1], [0, 0]], dtype=float)
    with pytest.raises(ConfigurationError):
        NetworkData(A, directed=False)
    NetworkData(A, directed=True)


def test_layer_dimension_and_label_mismatch_raise() -> None:
    A = np.ones((3, 3)) - np.eye(3)
    net = NetworkData(A, node_ids=["a", "b", "c"])
    with pytest.raises(ConfigurationError):
        build_design(net, {"w": np.ones((4, 4))})
    with pytest.raises(ConfigurationError):
        build_design(net, [Layer("w", np.ones((3, 3)), node_ids=["a", "c", "b"])])
    build_design(net, [Layer("w", np.ones((3, 3)), node_ids=["a", "b", "c"])])


def test_design_requires_unique_non_empty_layer_list() -> None:
    net = NetworkData(np.ones((3, 3)) - np.eye(3))
    layers = {"w": np.ones((3, 3))}
    with pytest.raises(ConfigurationError):
        build_design(net, {})
    with pytest.raises(ConfigurationError):
        build_design(net, layers, ("w", "w"))
    with pytest.raises(ConfigurationError):
        build_design(net, layers, ("missing",))


def test_coefficient_length_is_checked(rng) -> None:
    A, layers = _random_directed(rng)
    design = build_design(NetworkData(A, directed=True), layers)
    with pytest.raises(ConfigurationError):
        loglikelihood(design, [0.0])
    with pytest.raises(ConfigurationError):
        loglikelihood(design, [0.0, np.inf])


def test_pair_probabilities_are_normalized(directed_sample, undirected_sample) -> None:
    A, layers = directed_sample
    design = build_design(NetworkData(A, directed=True), layers)
    P = pair_probabilities(design, [0.1, -0.3])
    assert P.sum() == pytest.approx(1.0)
    assert np.all(np.diag(P) == 0.0)

    A, layers = undirected_sample
    design = build_design(NetworkData(A), layers)
    P = pair_probabilities(design, [0.1, -0.3])
    np.testing.assert_allclose(P, P.T)
    assert np.triu(P, 1).sum() == pytest.approx(1.0)


def test_selfloops_add_diagonal_pairs() -> None:
    """Self-loops count twice toward degree and get Xi_ii = k_i^2 / 2."""
    A = np.array([[2, 1, 0], [1, 0, 3], [0, 3, 4]], dtype=float)
    net = NetworkData(A, selfloops=True)
    assert net.n_pairs == 6
    assert net.m == pytest.approx(2 + 1 + 3 + 4)

    k = A.sum(axis=1) + np.diag(A)
    i_idx, j_idx = net.pairs
    xi = k[i_idx] * k[j_idx]
    xi = np.where(i_idx == j_idx, 0.5 * xi, xi)
    np.testing.assert_allclose(np.exp(combinatorial_log_xi(net)), xi)


def test_empty_network_has_zero_loglik() -> None:
    """No interactions: log L is identically zero."""
    net = NetworkData(np.zeros((4, 4)))
    design = build_design(net, {"w": np.full((4, 4), 2.0)})
    assert design.degenerate
    assert null_loglikelihood(net) == 0.0
    assert loglikelihood(design, [1.3]) == 0.0
