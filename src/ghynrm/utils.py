#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ghynrm/utils.py

"""
Console reports and plots for fitted NRMs and selection traces.

The estimation modules only expose numbers; this module turns them into the
tables and figures used interactively (coefficient tables, side-by-side model
comparisons, AIC paths of a stepwise selection).
"""

from __future__ import annotations

import os
from typing import Any, List, Optional, Sequence

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.figure import Figure

from .NRM_solver import NRMResult, rebase_aic
from .selection import SelectionTrace


# =============================================================================
# Small helpers
# =============================================================================
def ensure_images_dir(base_dir: str = "./images") -> str:
    """Ensure the image directory exists and return its path."""
    os.makedirs(base_dir, exist_ok=True)
    return base_dir


def _format_kv(k: str, v: Any, width: int = 22) -> str:
    """Format a key-value pair with aligned keys."""
    return f"{k:<{width}}: {v}"


def significance_stars(p: Optional[float]) -> str:
    """Return '***', '**', '*' or '' for p < 0.001, 0.01, 0.05."""
    if p is None or not np.isfinite(p):
        return ""
    if p < 0.001:
        return "***"
    if p < 0.01:
        return "**"
    if p < 0.05:
        return "*"
    return ""


def _fmt_num(x: Optional[float], digits: int = 4) -> str:
    if x is None:
        return "n/a"
    return f"{x:.{digits}f}"


def _fmt_p(p: Optional[float]) -> str:
    if p is None:
        return "n/a"
    if p < 1e-4:
        return f"{p:.2e}"
    return f"{p:.4f}"


# =============================================================================
# Tables
# =============================================================================
def coefficient_table(result: NRMResult) -> str:
    """Return a fixed-width coefficient table of a fitted model."""
    rows = result.summary_rows()
    width = max([len("layer")] + [len(r["name"]) for r in rows])
    level = int(round(100 * result.conf_level))
    header = (
        f"{'layer':<{width}}  {'coef':>10}  {'effect':>10}  {'se':>10}  "
        f"{'z':>8}  {'p':>10}  {f'{level}% CI':>23}"
    )
    lines = [header, "-" * len(header)]
    for r in rows:
        ci = "n/a" if r["ci_low"] is None else f"[{r['ci_low']:.4f}, {r['ci_high']:.4f}]"
        lines.append(
            f"{r['name']:<{width}}  {r['coef']:>10.4f}  {r['effect']:>10.4f}  {_fmt_num(r['se']):>10}  "
            f"{_fmt_num(r['z'], 2):>8}  {_fmt_p(r['p']):>10}  {ci:>23} {significance_stars(r['p'])}"
        )
    return "\n".join(lines)


def print_model_report(result: NRMResult, *, title: str = "Network regression model") -> None:
    """Print configuration, goodness of fit and coefficients of a model."""
    print("\n" + "=" * 78)
    print(title)
    print("=" * 78)
    print(_format_kv("Nodes", result.n_nodes))
    print(_format_kv("Interactions (m)", f"{result.m:g}"))
    print(_format_kv("Directed", result.directed))
    print(_format_kv("Self-loops", result.selfloops))
    print(_format_kv("Regular", result.regular))
    print(_format_kv("Method", result.method))
    print(_format_kv("Iterations", result.n_iter))
    print("-" * 78)
    print(_format_kv("log-likelihood", f"{result.loglik:.4f}"))
    print(_format_kv("null log-likelihood", f"{result.null_loglik:.4f}"))
    print(_format_kv("AIC", f"{result.aic:.4f}"))
    print(_format_kv("McFadden R2", f"{result.pseudo_r2:.4f}"))
    if result.degenerate:
        print("Degenerate data: log-likelihood does not depend on the coefficients.")
    if result.k:
        print("-" * 78)
        print(coefficient_table(result))
        if not result.inference_available:
            print("Observed information is singular: standard errors unavailable.")
    print("=" * 78 + "\n")


def comparison_rows(
    results: Sequence[NRMResult],
    labels: Optional[Sequence[str]] = None,
    *,
    rebase: bool = True,
) -> List[List[str]]:
    """
    Build a side-by-side table of models: one row per layer with
    "coef (se) stars", then AIC, McFadden R2 and m.

    With rebase=True the AICs are reported relative to the smallest one.
    """
    results = tuple(results)
    if labels is None:
        labels = [f"Model {i + 1}" for i in range(len(results))]
    if len(labels) != len(results):
        raise ValueError("labels must match the number of results.")
    shown = rebase_aic(results) if rebase else results

    layer_names: List[str] = []
    for r in results:
        for name in r.names:
            if name not in layer_names:
                layer_names.append(name)

    table = [[""] + list(labels)]
    for name in layer_names:
        row = [name]
        for r in results:
            if name not in r.names:
                row.append("")
                continue
            idx = r.names.index(name)
            coef = float(r.coefficients[idx])
            if r.se is None:
                row.append(f"{coef:.3f}")
            else:
                p = float(r.pvalues[idx])
                row.append(f"{coef:.3f} ({float(r.se[idx]):.3f}){significance_stars(p)}")
        table.append(row)
    table.append(["AIC"] + [f"{r.aic:.2f}" for r in shown])
    table.append(["McFadden R2"] + [f"{r.pseudo_r2:.3f}" for r in results])
    table.append(["m"] + [f"{r.m:g}" for r in results])
    return table


def print_comparison_table(
    results: Sequence[NRMResult],
    labels: Optional[Sequence[str]] = None,
    *,
    rebase: bool = True,
) -> None:
    """Print the table built by comparison_rows."""
    table = comparison_rows(results, labels, rebase=rebase)
    widths = [max(len(row[c]) for row in table) for c in range(len(table[0]))]
    for i, row in enumerate(table):
        print("  ".join(cell.ljust(w) if c == 0 else cell.rjust(w) for c, (cell, w) in enumerate(zip(row, widths))))
        if i == 0 or i == len(table) - 4:
            print("-" * (sum(widths) + 2 * (len(widths) - 1)))
    print("*** p < 0.001, ** p < 0.01, * p < 0.05")


def print_selection_report(trace: SelectionTrace) -> None:
    """Print the inclusion order, AIC path and failures of a selection."""
    print("\n" + "=" * 78)
    print("Stepwise NRM selection report")
    print("=" * 78)
    print(_format_kv("Bundles", ", ".join(b.name for b in trace.bundles)))
    print(_format_kv("Baseline", ", ".join(trace.baseline) if trace.baseline else "(none)"))
    print(_format_kv("Status", trace.status))
    print(_format_kv("Order", " → ".join(trace.order) if trace.order else "(nothing added)"))
    print("-" * 78)
    for s in trace.steps:
        label = "baseline" if s.added is None else f"+ {s.added}"
        print(f"  step {s.step:>2}  {label:<28} AIC={s.model.aic:.4f}  R2={s.model.pseudo_r2:.4f}")
    if trace.rejected:
        best = min(trace.rejected, key=lambda t: t[1])
        print(f"  stopped: best remaining {best[0]!r} with AIC={best[1]:.4f}")
    if trace.partial:
        print("-" * 78)
        print(f"Candidates that could not be evaluated ({len(trace.failures)}):")
        for f in trace.failures:
            print(f"  • step {f.step}: {f.bundle} ({f.error}) {f.message}")
    print("=" * 78 + "\n")


# =============================================================================
# Plots
# =============================================================================
def plot_coefficients(
    result: NRMResult,
    *,
    save_fig: bool = False,
    images_dir: Optional[str] = None,
    filename: str = "nrm_coefficients.pdf",
    show: bool = False,
) -> Figure:
    """
    Plot coefficients with Wald confidence intervals (when available).
    """
    if result.k == 0:
        raise ValueError("The model has no coefficients to plot.")
    y = np.arange(result.k)
    coefs = np.asarray(result.coefficients, dtype=float)

    fig, ax = plt.subplots(figsize=(8, 1.0 + 0.6 * result.k), dpi=150)
    ci = result.conf_int()
    if ci is not None:
        err = np.vstack([coefs - ci[:, 0], ci[:, 1] - coefs])
        ax.errorbar(coefs, y, xerr=err, fmt="o", capsize=4, linewidth=1.5, markersize=5)
    else:
        ax.plot(coefs, y, "o", markersize=5)
    ax.axvline(0.0, color="grey", linestyle="--", linewidth=1.0)
    ax.set_yticks(y)
    ax.set_yticklabels(result.names)
    ax.invert_yaxis()
    ax.set_xlabel("Coefficient (log exponent)", fontsize=12)
    ax.tick_params(axis="both", labelsize=11)
    plt.tight_layout()
    if save_fig:
        images_dir = ensure_images_dir() if images_dir is None else ensure_images_dir(images_dir)
        fig.savefig(os.path.join(images_dir, filename), dpi=300)
    if show:
        plt.show()
    return fig


def plot_selection_trace(
    trace: SelectionTrace,
    *,
    rebase: bool = True,
    save_fig: bool = False,
    images_dir: Optional[str] = None,
    filename: str = "nrm_selection_aic.pdf",
    show: bool = False,
) -> Figure:
    """
    Plot the AIC and McFadden R2 of each accepted selection step.

    With rebase=True the AIC is shown relative to the baseline model.
    """
    shown = trace.rebased() if rebase else trace
    steps = [s.step for s in shown.steps]
    labels = ["baseline" if s.added is None else f"+{s.added}" for s in shown.steps]
    aic = [s.model.aic for s in shown.steps]
    r2 = [s.model.pseudo_r2 for s in shown.steps]

    fig, ax = plt.subplots(figsize=(9, 5), dpi=150)
    ax.plot(steps, aic, marker="o", linewidth=2.0, markersize=5, label="AIC")
    ax.set_xticks(steps)
    ax.set_xticklabels(labels, rotation=30, ha="right")
    ax.set_ylabel("AIC" + (" (relative to baseline)" if rebase else ""), fontsize=12)
    ax2 = ax.twinx()
    ax2.plot(steps, r2, marker="s", linewidth=1.5, markersize=4, color="tab:orange", label="McFadden R2")
    ax2.set_ylabel("McFadden R2", fontsize=12)
    handles = ax.get_legend_handles_labels()[0] + ax2.get_legend_handles_labels()[0]
    ax.legend(handles, [h.get_label() for h in handles], loc="best", frameon=True)
    plt.tight_layout()
    if save_fig:
        images_dir = ensure_images_dir() if images_dir is None else ensure_images_dir(images_dir)
        fig.savefig(os.path.join(images_dir, filename), dpi=300)
    if show:
        plt.show()
    return fig


__all__ = [
    "ensure_images_dir",
    "significance_stars",
    "coefficient_table",
    "print_model_report",
    "comparison_rows",
    "print_comparison_table",
    "print_selection_report",
    "plot_coefficients",
    "plot_selection_trace",
]
