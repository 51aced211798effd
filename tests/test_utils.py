"""
Smoke tests for console reports and plots (Agg backend, no display).
"""

from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pytest
from matplotlib.figure import Figure

from ghynrm import nrm, nrm_selection, null_model, utils


def test_significance_stars() -> None:
    assert utils.significance_stars(0.0001) == "***"
    assert utils.significance_stars(0.005) == "**"
    assert utils.significance_stars(0.03) == "*"
    assert utils.significance_stars(0.2) == ""
    assert utils.significance_stars(None) == ""


def test_model_report_lists_every_layer(undirected_sample, capsys) -> None:
    A, layers = undirected_sample
    res = nrm(A, layers)
    table = utils.coefficient_table(res)
    assert "layer0" in table and "layer1" in table
    assert "95% CI" in table

    utils.print_model_report(res)
    out = capsys.readouterr().out
    assert "McFadden R2" in out
    assert "layer1" in out


def test_report_without_inference(undirected_sample, capsys) -> None:
    A, _ = undirected_sample
    res = nrm(A, {"flat": np.ones_like(A)}, on_singular="report")
    assert "n/a" in utils.coefficient_table(res)
    utils.print_model_report(res)
    assert "singular" in capsys.readouterr().out


def test_comparison_rows_are_rebased(undirected_sample, capsys) -> None:
    A, layers = undirected_sample
    models = [null_model(A), nrm(A, {"layer0": layers["layer0"]}), nrm(A, layers)]
    rows = utils.comparison_rows(models, ["null", "one", "two"])

    assert rows[0] == ["", "null", "one", "two"]
    aic_row = next(r for r in rows if r[0] == "AIC")
    assert "0.00" in aic_row[1:]
    layer1_row = next(r for r in rows if r[0] == "layer1")
    assert layer1_row[1] == "" and layer1_row[2] == ""

    with pytest.raises(ValueError):
        utils.comparison_rows(models, ["only one label"])

    utils.print_comparison_table(models)
    assert "Model 3" in capsys.readouterr().out


def test_selection_report_and_plots(undirected_sample, tmp_path, capsys) -> None:
    A, layers = undirected_sample
    trace = nrm_selection(A, layers)

    utils.print_selection_report(trace)
    out = capsys.readouterr().out
    assert trace.status in out

    fig = utils.plot_selection_trace(trace, save_fig=True, images_dir=str(tmp_path), filename="trace.png")
    assert isinstance(fig, Figure)
    assert (tmp_path / "trace.png").exists()
    plt.close(fig)

    fig = utils.plot_coefficients(trace.final, save_fig=True, images_dir=str(tmp_path), filename="coef.png")
    assert isinstance(fig, Figure)
    assert (tmp_path / "coef.png").exists()
    plt.close(fig)

    with pytest.raises(ValueError):
        utils.plot_coefficients(trace.steps[0].model)
