#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ghynrm/NRM_solver.py

"""
-----------------------------------------------------------------------------
Network Regression Model (NRM) maximum-likelihood solver.

Model
-----
An NRM explains the observed interaction counts A of a network through the
multi-layer gHypEG of ghype_likelihood:

    p_ij(beta) ∝ Xi_ij prod_l w_l(ij) ^ exp(beta_l).

The raw coefficients beta are unconstrained; the exponent exp(beta_l) applied
to layer l is reported as its "effect". Inference (standard errors, Wald
tests, confidence intervals) is carried out on the raw beta scale, so the
Wald null hypothesis beta_l = 0 reads "layer l enters with unit exponent".

Estimation
----------
- method="newton" (default):
    damped Newton iterations on beta with the analytic Hessian. When -H is not
    positive definite a diagonal shift is added until it is, the step is
    capped in max-norm, and an Armijo backtracking line search enforces
    monotone increase of log L.
- method="bfgs":
    scipy.optimize.minimize(method="BFGS") on -log L with the analytic
    gradient.

Convergence is declared when max_l |d log L / d beta_l| <= gtol * max(1, |log L|).
Exhausting max_iter, or a stalled line search away from a stationary point,
raises ConvergenceError.

Inference
---------
The covariance is the inverse of the observed information -H(beta_hat). When
the information is not positive definite (e.g. a layer that is constant on
the support) a SingularInformationError carrying the point estimates is
raised; on_singular="report" returns that result instead.

Goodness of fit
---------------
    AIC        = 2k - 2 log L,
    pseudo-R2  = 1 - log L / log L0      (McFadden; 0 when log L0 = 0),

where log L0 is the log-likelihood of the layer-free model on the same
network (computed once per NetworkData).

Public API
----------
- NRMResult: frozen container of a fitted model
- nrm(adj, layers, ...) -> NRMResult
- fit_design(design, ...) -> NRMResult
- null_model(adj, ...) -> NRMResult with no coefficients
- rebase_aic(results, reference=None) -> tuple of NRMResult
- lr_test(restricted, full) -> LRTestResult
- NRMModel: small container caching the validated design and its fit
-----------------------------------------------------------------------------
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.optimize import minimize
from scipy.stats import chi2, norm

from .errors import ConfigurationError, ConvergenceError, SingularInformationError
from .ghype_likelihood import (
    PairDesign,
    _validate_coefficients,
    build_design,
    loglikelihood,
    loglikelihood_derivatives,
    null_degenerate,
    null_loglikelihood,
    pair_probabilities,
)
from .layers import LayerSet, NetworkData

Array = np.ndarray
Method = Literal["newton", "bfgs"]
OnSingular = Literal["raise", "report"]

logger = logging.getLogger(__name__)

__all__ = [
    "NRMResult",
    "LRTestResult",
    "nrm",
    "fit_design",
    "null_model",
    "rebase_aic",
    "lr_test",
    "aic_from_loglik",
    "mcfadden_r2",
    "NRMModel",
]


# -----------------------------------------------------------------------------
# Goodness-of-fit helpers
# -----------------------------------------------------------------------------
def aic_from_loglik(loglik: float, k: int) -> float:
    """Return AIC = 2k - 2 log L."""
    return float(2.0 * int(k) - 2.0 * float(loglik))


def mcfadden_r2(loglik: float, null_loglik: float) -> float:
    """Return 1 - log L / log L0, or 0 when log L0 = 0 (degenerate data)."""
    if null_loglik == 0.0:
        return 0.0
    return float(1.0 - float(loglik) / float(null_loglik))


# =============================================================================
# Result container
# =============================================================================
@dataclass(frozen=True, eq=False)
class NRMResult:
    """
    Fitted Network Regression Model.

    Coefficients are on the raw scale; the exponent applied to each layer is
    exp(coefficient). `cov` is None when inference is unavailable. The AIC
    reported by `aic` is aic_raw - aic_offset; `rebased` only changes the
    offset.
    """
    names: Tuple[str, ...]
    coefficients: Array
    cov: Optional[Array]
    loglik: float
    null_loglik: float
    aic_raw: float
    pseudo_r2: float
    converged: bool
    n_iter: int
    method: str
    m: float
    n_nodes: int
    directed: bool
    selfloops: bool
    regular: bool
    conf_level: float = 0.95
    degenerate: bool = False
    aic_offset: float = 0.0

    # ------------------------- basic views -------------------------
    @property
    def k(self) -> int:
        """Number of estimated coefficients."""
        return len(self.names)

    @property
    def aic(self) -> float:
        return float(self.aic_raw - self.aic_offset)

    @property
    def null_aic(self) -> float:
        """AIC of the layer-free model on the same network."""
        return aic_from_loglik(self.null_loglik, 0)

    @property
    def coef(self) -> Dict[str, float]:
        """Coefficients keyed by layer name."""
        return {n: float(c) for n, c in zip(self.names, self.coefficients)}

    @property
    def effects(self) -> Dict[str, float]:
        """Exponent exp(beta_l) applied to each layer."""
        return {n: float(np.exp(c)) for n, c in zip(self.names, self.coefficients)}

    # ------------------------- inference -------------------------
    @property
    def inference_available(self) -> bool:
        return self.cov is not None

    @property
    def se(self) -> Optional[Array]:
        """Standard errors, or None when the information matrix is singular."""
        if self.cov is None:
            return None
        return np.sqrt(np.diag(self.cov))

    @property
    def zvalues(self) -> Optional[Array]:
        se = self.se
        if se is None:
            return None
        return self.coefficients / se

    @property
    def pvalues(self) -> Optional[Array]:
        """Two-sided Wald p-values 2 Phi(-|z|)."""
        z = self.zvalues
        if z is None:
            return None
        return 2.0 * norm.cdf(-np.abs(z))

    def conf_int(self, level: Optional[float] = None) -> Optional[Array]:
        """
        Wald confidence intervals, shape (k, 2).

        Parameters
        ----------
        level:
            Coverage in (0, 1). Defaults to the level used at fit time.
        """
        level = self.conf_level if level is None else float(level)
        if not (0.0 < level < 1.0):
            raise ConfigurationError("Confidence level must lie in (0, 1).")
        se = self.se
        if se is None:
            return None
        q = float(norm.ppf(0.5 + 0.5 * level))
        return np.column_stack([self.coefficients - q * se, self.coefficients + q * se])

    # ------------------------- transforms -------------------------
    def rebased(self, reference: Union[float, "NRMResult"]) -> "NRMResult":
        """
        Return a copy whose AIC is reported relative to reference.

        The offset replaces any previous one, so rebasing twice with the same
        reference equals rebasing once. Coefficients and log L are unchanged.
        """
        offset = reference.aic_raw if isinstance(reference, NRMResult) else float(reference)
        if not np.isfinite(offset):
            raise ConfigurationError("Reference AIC must be finite.")
        return replace(self, aic_offset=float(offset))

    def summary_rows(self) -> List[Dict[str, Any]]:
        """
        One dict per coefficient: name, coef, effect, se, z, p, ci_low, ci_high.

        Inference fields are None when unavailable.
        """
        se = self.se
        z = self.zvalues
        p = self.pvalues
        ci = self.conf_int()
        rows = []
        for idx, name in enumerate(self.names):
            rows.append({
                "name": name,
                "coef": float(self.coefficients[idx]),
                "effect": float(np.exp(self.coefficients[idx])),
                "se": None if se is None else float(se[idx]),
                "z": None if z is None else float(z[idx]),
                "p": None if p is None else float(p[idx]),
                "ci_low": None if ci is None else float(ci[idx, 0]),
                "ci_high": None if ci is None else float(ci[idx, 1]),
            })
        return rows


# -----------------------------------------------------------------------------
# Option validation
# -----------------------------------------------------------------------------
def _validate_options(method: str, max_iter: int, gtol: float, conf_level: float, on_singular: str) -> None:
    if method not in ("newton", "bfgs"):
        raise ConfigurationError("method must be 'newton' or 'bfgs'.")
    if int(max_iter) < 1:
        raise ConfigurationError("max_iter must be a positive integer.")
    if (not np.isfinite(gtol)) or gtol <= 0.0:
        raise ConfigurationError("gtol must be a finite positive scalar.")
    if not (0.0 < float(conf_level) < 1.0):
        raise ConfigurationError("conf_level must lie in (0, 1).")
    if on_singular not in ("raise", "report"):
        raise ConfigurationError("on_singular must be 'raise' or 'report'.")


def _gradient_converged(grad: Array, ll: float, gtol: float) -> bool:
    """Scaled stationarity test max|g| <= gtol * max(1, |log L|)."""
    if grad.size == 0:
        return True
    return float(np.max(np.abs(grad))) <= float(gtol) * max(1.0, abs(float(ll)))


# -----------------------------------------------------------------------------
# Damped Newton ascent with Armijo backtracking
# -----------------------------------------------------------------------------
def _ascent_direction(grad: Array, hess: Array) -> Array:
    """
    Solve (-H + lam I) d = g for the smallest lam in {0, 1e-10, 1e-9, ...}
    making the shifted matrix positive definite.
    """
    A = -0.5 * (hess + hess.T)
    scale = max(1.0, float(np.max(np.abs(np.diag(A))))) if A.size else 1.0
    lam = 0.0
    eye = np.eye(A.shape[0])
    for _ in range(30):
        try:
            C = np.linalg.cholesky(A + lam * eye)
        except np.linalg.LinAlgError:
            lam = 1e-10 * scale if lam == 0.0 else lam * 10.0
            continue
        y = np.linalg.solve(C, grad)
        d = np.linalg.solve(C.T, y)
        if np.all(np.isfinite(d)):
            return d
        lam = 1e-10 * scale if lam == 0.0 else lam * 10.0
    # Steepest ascent as the last resort.
    return grad / scale


def _newton_maximize(
    design: PairDesign,
    beta0: Array,
    *,
    max_iter: int,
    gtol: float,
    max_step: float = 5.0,
) -> Tuple[Array, float, int]:
    """
    Maximize log L by damped Newton iterations on beta.

    Returns (beta_hat, log L(beta_hat), n_iter).
    """
    beta = np.array(beta0, dtype=np.float64)
    try:
        ll, g, H = loglikelihood_derivatives(design, beta)
    except FloatingPointError as exc:
        raise ConvergenceError(f"Invalid starting point: {exc}", coefficients=beta, n_iter=0) from None

    n_iter = 0
    while not _gradient_converged(g, ll, gtol):
        if n_iter >= int(max_iter):
            raise ConvergenceError(
                f"Newton iterations did not converge within {max_iter} steps "
                f"(max|grad|={float(np.max(np.abs(g))):.3e}).",
                coefficients=beta,
                n_iter=n_iter,
            )
        n_iter += 1

        step = _ascent_direction(g, H)
        big = float(np.max(np.abs(step)))
        if big > max_step:
            step = step * (max_step / big)
        slope = float(np.dot(g, step))

        alpha = 1.0
        accepted = False
        for _ls in range(50):
            beta_try = beta + alpha * step
            ll_try = loglikelihood(design, beta_try)
            if np.isfinite(ll_try) and ll_try >= ll + 1e-4 * alpha * slope:
                accepted = True
                break
            alpha *= 0.5

        if not accepted:
            # No representable increase left: accept if nearly stationary.
            if _gradient_converged(g, ll, np.sqrt(gtol)):
                break
            raise ConvergenceError(
                "Line search failed to increase the log-likelihood "
                f"(max|grad|={float(np.max(np.abs(g))):.3e}).",
                coefficients=beta,
                n_iter=n_iter,
            )

        beta = beta_try
        ll, g, H = loglikelihood_derivatives(design, beta)

    return beta, float(ll), n_iter


# -----------------------------------------------------------------------------
# Quasi-Newton alternative (scipy)
# -----------------------------------------------------------------------------
def _bfgs_maximize(design: PairDesign, beta0: Array, *, max_iter: int, gtol: float) -> Tuple[Array, float, int]:
    """Maximize log L with scipy's BFGS on -log L and the analytic gradient."""

    def objective(beta: Array) -> Tuple[float, Array]:
        try:
            ll, g, _ = loglikelihood_derivatives(design, beta)
        except FloatingPointError:
            return np.inf, np.zeros_like(beta)
        return -ll, -g

    ll0 = loglikelihood(design, beta0)
    if not np.isfinite(ll0):
        raise ConvergenceError("Invalid starting point: propensities overflow.", coefficients=beta0, n_iter=0)

    with np.errstate(over="ignore", invalid="ignore"):
        res = minimize(
            objective,
            np.array(beta0, dtype=np.float64),
            jac=True,
            method="BFGS",
            options={"maxiter": int(max_iter), "gtol": float(gtol) * max(1.0, abs(ll0))},
        )

    beta = np.asarray(res.x, dtype=np.float64)
    ll, g, _ = loglikelihood_derivatives(design, beta)
    if not (res.success or _gradient_converged(g, ll, np.sqrt(gtol))):
        raise ConvergenceError(f"BFGS did not converge: {res.message}", coefficients=beta, n_iter=int(res.nit))
    return beta, float(ll), int(res.nit)


# -----------------------------------------------------------------------------
# Observed information
# -----------------------------------------------------------------------------
def _covariance_from_hessian(hess: Array) -> Optional[Array]:
    """
    Invert the observed information -H, or return None if it is singular.

    Singular means: not finite, not positive definite, or condition number
    beyond 1/eps.
    """
    info = -0.5 * (hess + hess.T)
    if info.size == 0:
        return np.zeros((0, 0), dtype=np.float64)
    if np.any(~np.isfinite(info)):
        return None
    try:
        np.linalg.cholesky(info)
    except np.linalg.LinAlgError:
        return None
    if np.linalg.cond(info) > 1.0 / np.finfo(np.float64).eps:
        return None
    cov = np.linalg.inv(info)
    return 0.5 * (cov + cov.T)


# =============================================================================
# Fitting
# =============================================================================
def _make_result(
    design: PairDesign,
    beta: Array,
    ll: float,
    cov: Optional[Array],
    *,
    n_iter: int,
    method: str,
    conf_level: float,
    degenerate: bool = False,
) -> NRMResult:
    network = design.network
    ll0 = null_loglikelihood(network)
    k = design.n_layers
    coefs = np.array(beta, dtype=np.float64)
    coefs.setflags(write=False)
    if cov is not None:
        cov = np.array(cov, dtype=np.float64)
        cov.setflags(write=False)
    return NRMResult(
        names=design.names,
        coefficients=coefs,
        cov=cov,
        loglik=float(ll),
        null_loglik=float(ll0),
        aic_raw=aic_from_loglik(ll, k),
        pseudo_r2=mcfadden_r2(ll, ll0),
        converged=True,
        n_iter=int(n_iter),
        method=method,
        m=float(design.m),
        n_nodes=network.n_nodes,
        directed=network.directed,
        selfloops=network.selfloops,
        regular=network.regular,
        conf_level=float(conf_level),
        degenerate=bool(degenerate),
    )


def fit_design(
    design: PairDesign,
    *,
    init: Optional[Sequence[float]] = None,
    method: Method = "newton",
    max_iter: int = 200,
    gtol: float = 1e-8,
    conf_level: float = 0.95,
    on_singular: OnSingular = "raise",
) -> NRMResult:
    """
    Fit an NRM on a prepared PairDesign.

    See `nrm` for the meaning of the options.
    """
    _validate_options(method, max_iter, gtol, conf_level, on_singular)
    if init is None:
        beta0 = np.zeros(design.n_layers, dtype=np.float64)
    else:
        beta0 = _validate_coefficients(init, design.n_layers)

    if design.degenerate:
        logger.debug("NRM fit [%s]: degenerate data (m=%g, support=%d).",
                     ", ".join(design.names), design.m, design.n_support)
        return _make_result(design, beta0, 0.0, None, n_iter=0, method=method,
                            conf_level=conf_level, degenerate=True)

    if method == "newton":
        beta, ll, n_iter = _newton_maximize(design, beta0, max_iter=max_iter, gtol=gtol)
    else:
        beta, ll, n_iter = _bfgs_maximize(design, beta0, max_iter=max_iter, gtol=gtol)

    _, _, H = loglikelihood_derivatives(design, beta)
    cov = _covariance_from_hessian(H)
    res = _make_result(design, beta, ll, cov, n_iter=n_iter, method=method, conf_level=conf_level)
    logger.debug("NRM fit [%s]: logL=%.6f AIC=%.4f R2=%.4f iterations=%d",
                 ", ".join(design.names), res.loglik, res.aic, res.pseudo_r2, n_iter)

    if cov is None:
        msg = f"Observed information is singular for layers {list(design.names)}; standard errors unavailable."
        if on_singular == "raise":
            raise SingularInformationError(msg, result=res)
        logger.info(msg)
    return res


def nrm(
    adj: Union[NetworkData, Array],
    layers: Union[LayerSet, Mapping[str, Any]],
    *,
    directed: Optional[bool] = None,
    selfloops: Optional[bool] = None,
    regular: Optional[bool] = None,
    init: Optional[Sequence[float]] = None,
    method: Method = "newton",
    max_iter: int = 200,
    gtol: float = 1e-8,
    conf_level: float = 0.95,
    on_singular: OnSingular = "raise",
) -> NRMResult:
    """
    Fit a Network Regression Model by maximum likelihood.

    Parameters
    ----------
    adj:
        Observed adjacency matrix (counts or indicators) or a NetworkData.
    layers:
        Mapping layer name -> N x N matrix (or Layer), or a LayerSet. The
        coefficient vector follows this order.
    directed, selfloops, regular:
        Ensemble configuration. Defaults to False when adj is a raw matrix; must
        agree with adj when adj is a NetworkData.
    init:
        Starting coefficients. Defaults to zeros (unit exponent on every layer).
    method:
        "newton" (damped Newton, analytic Hessian) or "bfgs" (scipy).
    max_iter:
        Iteration cap; exceeding it raises ConvergenceError.
    gtol:
        Stationarity tolerance, relative to max(1, |log L|).
    conf_level:
        Coverage of the reported Wald confidence intervals.
    on_singular:
        "raise" raises SingularInformationError when the information matrix
        is singular; "report" returns the result with inference fields None.

    Returns
    -------
    NRMResult

    Raises
    ------
    ConfigurationError, DomainError, ConvergenceError, SingularInformationError
    """
    network = NetworkData.coerce(adj, directed=directed, selfloops=selfloops, regular=regular)
    design = build_design(network, layers)
    return fit_design(
        design,
        init=init,
        method=method,
        max_iter=max_iter,
        gtol=gtol,
        conf_level=conf_level,
        on_singular=on_singular,
    )


def null_model(
    adj: Union[NetworkData, Array],
    *,
    directed: Optional[bool] = None,
    selfloops: Optional[bool] = None,
    regular: Optional[bool] = None,
    conf_level: float = 0.95,
) -> NRMResult:
    """Return the layer-free model (k = 0) of a network."""
    network = NetworkData.coerce(adj, directed=directed, selfloops=selfloops, regular=regular)
    ll0 = null_loglikelihood(network)
    coefs = np.zeros(0, dtype=np.float64)
    coefs.setflags(write=False)
    return NRMResult(
        names=(),
        coefficients=coefs,
        cov=np.zeros((0, 0), dtype=np.float64),
        loglik=float(ll0),
        null_loglik=float(ll0),
        aic_raw=aic_from_loglik(ll0, 0),
        pseudo_r2=0.0,
        converged=True,
        n_iter=0,
        method="none",
        m=network.m,
        n_nodes=network.n_nodes,
        directed=network.directed,
        selfloops=network.selfloops,
        regular=network.regular,
        conf_level=float(conf_level),
        degenerate=null_degenerate(network),
    )


# =============================================================================
# Model comparison
# =============================================================================
def rebase_aic(
    results: Sequence[NRMResult],
    reference: Optional[Union[float, NRMResult]] = None,
) -> Tuple[NRMResult, ...]:
    """
    Report every AIC relative to a reference AIC.

    reference may be a number, a fitted result (its raw AIC), or None for the
    minimum raw AIC of the set. This is a display transform only.
    """
    results = tuple(results)
    if not results:
        return ()
    if reference is None:
        reference = min(r.aic_raw for r in results)
    return tuple(r.rebased(reference) for r in results)


@dataclass(frozen=True)
class LRTestResult:
    """Likelihood-ratio test of a restricted model against a nesting one."""
    statistic: float
    df: int
    pvalue: float


def lr_test(restricted: NRMResult, full: NRMResult) -> LRTestResult:
    """
    Likelihood-ratio test of nested NRMs fitted on the same network.

    The statistic 2 (log L_full - log L_restricted) is referred to a
    chi-square with k_full - k_restricted degrees of freedom.
    """
    if not set(restricted.names) < set(full.names):
        raise ConfigurationError("The restricted model's layers must be a strict subset of the full model's.")
    same = (
        restricted.m == full.m
        and restricted.n_nodes == full.n_nodes
        and restricted.directed == full.directed
        and restricted.selfloops == full.selfloops
        and restricted.regular == full.regular
    )
    if not same:
        raise ConfigurationError("Models were fitted on different network configurations.")
    df = full.k - restricted.k
    stat = max(0.0, 2.0 * (full.loglik - restricted.loglik))
    return LRTestResult(statistic=float(stat), df=int(df), pvalue=float(chi2.sf(stat, df)))


# -----------------------------------------------------------------------------
# Model container
# -----------------------------------------------------------------------------
class NRMModel:
    """
    Network Regression Model on a fixed network and layer list.

    Inputs are validated once at construction. After calling fit(), the
    result is cached and can be used to compute expected counts.
    """

    def __init__(
        self,
        adj: Union[NetworkData, Array],
        layers: Union[LayerSet, Mapping[str, Any]],
        *,
        directed: Optional[bool] = None,
        selfloops: Optional[bool] = None,
        regular: Optional[bool] = None,
    ) -> None:
        self.network = NetworkData.coerce(adj, directed=directed, selfloops=selfloops, regular=regular)
        self.layers = LayerSet.coerce(layers)
        self.design = build_design(self.network, self.layers)
        self._result: Optional[NRMResult] = None

    @property
    def names(self) -> Tuple[str, ...]:
        return self.design.names

    def fit(self, **options: Any) -> NRMResult:
        """Fit the model (options as in `nrm`) and cache the result."""
        res = fit_design(self.design, **options)
        self._result = res
        return res

    def loglik(self, coefficients: Sequence[float]) -> float:
        """Evaluate log L at arbitrary coefficients."""
        return loglikelihood(self.design, coefficients)

    def probabilities(self, coefficients: Optional[Sequence[float]] = None) -> Array:
        """Pair probabilities at coefficients (default: the fitted ones)."""
        if coefficients is None:
            coefficients = self.result().coefficients
        return pair_probabilities(self.design, coefficients)

    def expected_counts(self, coefficients: Optional[Sequence[float]] = None) -> Array:
        """Expected interaction counts m * p_ij."""
        return self.design.m * self.probabilities(coefficients)

    def result(self) -> NRMResult:
        """Return the cached NRMResult."""
        if self._result is None:
            raise RuntimeError("Model is not fitted. Call fit() first.")
        return self._result
