#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ghynrm/selection.py

"""
Forward stepwise selection of covariate-layer bundles by AIC.

Algorithm
---------
Bundles are either Remaining or Included. The active model starts from the
baseline bundles (or from the layer-free model when no baseline is given).
At every step:

  1. each Remaining bundle is tentatively appended to the active layers and
     the model is refitted, warm-started from the active coefficients
     followed by zeros for the new layers;
  2. the candidate with the lowest AIC wins, ties going to the bundle listed
     first;
  3. the winner is Included only if its AIC is below the active AIC minus
     min_improvement; otherwise selection stops.

Candidate fits that raise ConvergenceError or SingularInformationError are
excluded for that step and recorded as failures. Configuration and domain
errors abort the whole selection; they are checked for every layer before
the first fit.

The candidate fits of a step are independent and may run on joblib worker
threads (n_jobs != 1). Results are gathered in bundle order before the
decision, so the trace does not depend on n_jobs.

Public API
----------
- CandidateFailure, SelectionStep, SelectionTrace
- nrm_selection(adj, layers, bundles=None, ...) -> SelectionTrace
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from joblib import Parallel, delayed

from .errors import ConfigurationError, ConvergenceError, SingularInformationError
from .ghype_likelihood import build_design
from .layers import Bundle, LayerSet, NetworkData, make_bundles
from .NRM_solver import Method, NRMResult, fit_design, null_model

Array = np.ndarray
SelectionStatus = Literal["no_improvement", "exhausted", "candidates_failed"]

logger = logging.getLogger(__name__)

__all__ = [
    "CandidateFailure",
    "SelectionStep",
    "SelectionTrace",
    "nrm_selection",
]


# =============================================================================
# Trace containers
# =============================================================================
@dataclass(frozen=True)
class CandidateFailure:
    """A bundle that could not be evaluated at a given step."""
    step: int
    bundle: str
    error: str
    message: str


@dataclass(frozen=True, eq=False)
class SelectionStep:
    """
    One accepted step of the selection.

    Step 0 is the baseline (added is None). `candidates` lists the AIC of
    every bundle evaluated at this step, in bundle order.
    """
    step: int
    added: Optional[str]
    model: NRMResult
    candidates: Tuple[Tuple[str, float], ...] = ()


@dataclass(frozen=True, eq=False)
class SelectionTrace:
    """
    Outcome of a stepwise selection.

    status:
        "no_improvement" (no Remaining bundle lowers the AIC),
        "exhausted" (every bundle was Included), or
        "candidates_failed" (no Remaining bundle could be evaluated).
    rejected:
        AIC of the candidates evaluated at the terminal step, if any.
    """
    steps: Tuple[SelectionStep, ...]
    failures: Tuple[CandidateFailure, ...]
    status: str
    bundles: Tuple[Bundle, ...]
    baseline: Tuple[str, ...] = ()
    rejected: Tuple[Tuple[str, float], ...] = ()

    @property
    def models(self) -> Tuple[NRMResult, ...]:
        return tuple(s.model for s in self.steps)

    @property
    def order(self) -> Tuple[str, ...]:
        """Bundle names in the order they were Included (baseline excluded)."""
        return tuple(s.added for s in self.steps if s.added is not None)

    @property
    def final(self) -> NRMResult:
        return self.steps[-1].model

    @property
    def partial(self) -> bool:
        """True when at least one candidate could not be evaluated."""
        return len(self.failures) > 0

    def rebased(self, reference: Optional[Union[float, NRMResult]] = None) -> "SelectionTrace":
        """
        Rebase every model's AIC on reference (default: the baseline model).
        """
        if reference is None:
            reference = self.steps[0].model
        steps = tuple(replace(s, model=s.model.rebased(reference)) for s in self.steps)
        return replace(self, steps=steps)


# -----------------------------------------------------------------------------
# Candidate evaluation
# -----------------------------------------------------------------------------
def _try_fit(
    network: NetworkData,
    layers: LayerSet,
    names: Tuple[str, ...],
    init: Array,
    options: Mapping[str, Any],
) -> Union[NRMResult, ConvergenceError, SingularInformationError]:
    """Fit one candidate; convergence-class errors are returned, not raised."""
    try:
        return fit_design(build_design(network, layers, names), init=init, **options)
    except (ConvergenceError, SingularInformationError) as exc:
        return exc


def _evaluate(
    network: NetworkData,
    layers: LayerSet,
    current: NRMResult,
    candidates: Sequence[Bundle],
    options: Mapping[str, Any],
    n_jobs: int,
) -> List[Union[NRMResult, ConvergenceError, SingularInformationError]]:
    jobs = []
    for b in candidates:
        names = tuple(current.names) + b.layers
        init = np.concatenate([np.asarray(current.coefficients, dtype=np.float64), np.zeros(len(b.layers))])
        jobs.append((names, init))
    if n_jobs == 1 or len(jobs) <= 1:
        return [_try_fit(network, layers, names, init, options) for names, init in jobs]
    return Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_try_fit)(network, layers, names, init, options) for names, init in jobs
    )


# =============================================================================
# Stepwise selection
# =============================================================================
def nrm_selection(
    adj: Union[NetworkData, Array],
    layers: Union[LayerSet, Mapping[str, Any]],
    bundles: Optional[Union[Mapping[str, Sequence[str]], Sequence[Bundle]]] = None,
    *,
    baseline: Sequence[str] = (),
    directed: Optional[bool] = None,
    selfloops: Optional[bool] = None,
    regular: Optional[bool] = None,
    min_improvement: float = 0.0,
    n_jobs: int = 1,
    method: Method = "newton",
    max_iter: int = 200,
    gtol: float = 1e-8,
    conf_level: float = 0.95,
) -> SelectionTrace:
    """
    Forward stepwise selection of layer bundles minimizing AIC.

    Parameters
    ----------
    adj:
        Observed adjacency matrix or NetworkData.
    layers:
        All candidate layers (mapping name -> matrix, or LayerSet).
    bundles:
        Groups of layers selected together, as a mapping group -> layer names
        or a sequence of Bundle. Ungrouped layers form singleton bundles.
    baseline:
        Bundle names forced into every model. Without a baseline the
        selection starts from the layer-free model.
    min_improvement:
        A candidate is accepted only if it lowers the AIC by more than this.
    n_jobs:
        Number of joblib worker threads for the candidate fits of a step.
    method, max_iter, gtol, conf_level:
        Passed to the solver for every fit.

    Returns
    -------
    SelectionTrace

    Raises
    ------
    ConfigurationError, DomainError:
        Invalid inputs, detected before any fit.
    ConvergenceError, SingularInformationError:
        Only if the baseline model itself cannot be fitted.
    """
    network = NetworkData.coerce(adj, directed=directed, selfloops=selfloops, regular=regular)
    layer_set = LayerSet.coerce(layers)
    if len(layer_set) == 0:
        raise ConfigurationError("At least one candidate layer is required.")
    layer_set.validate_against(network)
    for name in layer_set.names:
        build_design(network, layer_set, (name,))

    all_bundles = make_bundles(layer_set.names, bundles)
    by_name = {b.name: b for b in all_bundles}
    baseline = tuple(baseline)
    for name in baseline:
        if name not in by_name:
            raise ConfigurationError(f"Unknown baseline bundle {name!r}.")
    if len(set(baseline)) != len(baseline):
        raise ConfigurationError("Baseline bundles must be unique.")
    if (not np.isfinite(min_improvement)) or min_improvement < 0.0:
        raise ConfigurationError("min_improvement must be a finite non-negative scalar.")
    if int(n_jobs) == 0:
        raise ConfigurationError("n_jobs must be non-zero.")

    options = {
        "method": method,
        "max_iter": max_iter,
        "gtol": gtol,
        "conf_level": conf_level,
        "on_singular": "raise",
    }

    if baseline:
        names = tuple(lay for bname in baseline for lay in by_name[bname].layers)
        current = fit_design(build_design(network, layer_set, names), **options)
    else:
        current = null_model(network, conf_level=conf_level)
    remaining = [b for b in all_bundles if b.name not in baseline]

    steps: List[SelectionStep] = [SelectionStep(step=0, added=None, model=current)]
    failures: List[CandidateFailure] = []
    rejected: Tuple[Tuple[str, float], ...] = ()
    status: SelectionStatus = "exhausted"
    logger.debug("Selection baseline [%s]: AIC=%.4f", ", ".join(current.names), current.aic_raw)

    step = 0
    while remaining:
        step += 1
        outcomes = _evaluate(network, layer_set, current, remaining, options, int(n_jobs))

        scored = []
        for idx, (b, out) in enumerate(zip(remaining, outcomes)):
            if isinstance(out, NRMResult):
                scored.append((out.aic_raw, idx, b, out))
            else:
                failures.append(CandidateFailure(step=step, bundle=b.name, error=type(out).__name__, message=str(out)))
                logger.warning("Step %d: candidate %r excluded (%s: %s)", step, b.name, type(out).__name__, out)
        tried = tuple((b.name, float(aic)) for aic, _, b, _ in scored)

        if not scored:
            status = "candidates_failed"
            break

        best_aic, _, best_bundle, best_res = min(scored, key=lambda t: (t[0], t[1]))
        if not best_aic < current.aic_raw - float(min_improvement):
            status = "no_improvement"
            rejected = tried
            logger.debug("Step %d: best candidate %r (AIC=%.4f) does not improve AIC=%.4f",
                         step, best_bundle.name, best_aic, current.aic_raw)
            break

        logger.info("Step %d: added %r (AIC %.4f -> %.4f)", step, best_bundle.name, current.aic_raw, best_aic)
        current = best_res
        remaining = [b for b in remaining if b.name != best_bundle.name]
        steps.append(SelectionStep(step=step, added=best_bundle.name, model=best_res, candidates=tried))

    return SelectionTrace(
        steps=tuple(steps),
        failures=tuple(failures),
        status=status,
        bundles=all_bundles,
        baseline=baseline,
        rejected=rejected,
    )
