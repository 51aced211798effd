"""
Shared helpers and fixtures for the ghynrm tests.

Networks are sampled from the model itself: pair counts are drawn from a
multinomial with p_ij proportional to prod_l w_l(ij) ^ e_l for known
exponents e_l, so that fitted effects have a known target.
"""

from __future__ import annotations

from typing import Dict, Sequence, Tuple

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest


def sample_layered_network(
    rng: np.random.Generator,
    n: int,
    exponents: Sequence[float],
    *,
    directed: bool = False,
    m: int = 5000,
) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
    """Return (adjacency, layers) with layers named layer0, layer1, ..."""
    layers: Dict[str, np.ndarray] = {}
    for idx in range(len(exponents)):
        Z = rng.normal(0.0, 1.0, size=(n, n))
        if not directed:
            Z = np.triu(Z, 1)
            Z = Z + Z.T
        layers[f"layer{idx}"] = np.exp(Z)

    if directed:
        mask = ~np.eye(n, dtype=bool)
        i_idx, j_idx = np.nonzero(mask)
    else:
        i_idx, j_idx = np.triu_indices(n, k=1)

    log_w = np.zeros(i_idx.size)
    for idx, e in enumerate(exponents):
        log_w += float(e) * np.log(layers[f"layer{idx}"][i_idx, j_idx])
    p = np.exp(log_w - log_w.max())
    p /= p.sum()
    counts = rng.multinomial(int(m), p)

    A = np.zeros((n, n), dtype=np.float64)
    A[i_idx, j_idx] = counts
    if not directed:
        A = A + A.T
    return A, layers


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(12345)


@pytest.fixture
def undirected_sample(rng):
    """Undirected 10-node network with two informative layers."""
    return sample_layered_network(rng, 10, [1.2, 0.8], directed=False, m=5000)


@pytest.fixture
def directed_sample(rng):
    """Directed 12-node network with two informative layers."""
    return sample_layered_network(rng, 12, [1.5, 0.5], directed=True, m=20000)


def five_node_counts() -> np.ndarray:
    """Symmetric 5-node count matrix with two empty pairs (m = 63)."""
    upper = {
        (0, 1): 12, (0, 2): 0, (0, 3): 3, (0, 4): 7,
        (1, 2): 1, (1, 3): 0, (1, 4): 25,
        (2, 3): 2, (2, 4): 9,
        (3, 4): 4,
    }
    A = np.zeros((5, 5), dtype=np.float64)
    for (i, j), c in upper.items():
        A[i, j] = c
        A[j, i] = c
    return A


def noise_layer(seed: int = 7, n: int = 5) -> np.ndarray:
    """Symmetric layer of independent U(0.5, 2) values."""
    R = np.random.default_rng(seed).uniform(0.5, 2.0, size=(n, n))
    R = np.triu(R, 1)
    noise = R + R.T
    np.fill_diagonal(noise, 1.0)
    return noise


@pytest.fixture
def proportional_scenario():
    """
    Five-node network with a predictor proportional to the adjacency matrix
    and a noise layer.

    Under the regular ensemble the predictor reproduces A / m with unit
    exponent, so its fitted coefficient is 0 rather than large.
    """
    A = five_node_counts()
    return A, {"predictor": 3.0 * A, "noise": noise_layer()}


@pytest.fixture
def five_node_scenario():
    """
    Same network with the predictor A ** exp(-2): zero exactly where A is
    zero, and the model reproduces A / m when its exponent is e^2, i.e.
    coefficient 2.
    """
    A = five_node_counts()
    return A, {"predictor": A ** np.exp(-2.0), "noise": noise_layer()}
