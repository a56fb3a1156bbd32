"""K-search progress figures: residual slopes per expression bin."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

import matplotlib.pyplot as plt
import numpy as np

from scnorm.core.types import KIteration
from scnorm.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from scnorm.plotting.utils import sanitize_label, save_figure


def plot_k_iteration(
    iteration: KIteration,
    *,
    condition: Any,
    thresh: float,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
):
    """Scatter residual slopes by evaluation bin, with bin summaries and the thresh band."""
    fig, ax = plt.subplots(figsize=style.figsize_progress)
    bins = iteration.gene_bins.reindex(iteration.gene_residual_slopes.index)
    x = bins.to_numpy(dtype=float)
    jitter = np.random.default_rng(0).uniform(-0.2, 0.2, size=x.size)
    ax.scatter(
        x + jitter,
        iteration.gene_residual_slopes.to_numpy(dtype=float),
        s=style.s_gene,
        alpha=style.alpha_gene,
        color=style.color_gene,
        linewidths=0.0,
        label="genes",
    )
    ax.plot(
        np.arange(iteration.bin_summaries.size),
        iteration.bin_summaries,
        marker="o",
        color=style.color_summary,
        label="bin summary",
    )
    for y in (-float(thresh), float(thresh)):
        ax.axhline(y, linestyle="--", linewidth=1.0, color=style.color_thresh)
    ax.axhline(0.0, linewidth=0.8, color="black")
    ax.set_xlabel("expression bin (low to high)", fontsize=style.axis_label_fontsize)
    ax.set_ylabel("slope after normalization", fontsize=style.axis_label_fontsize)
    status = "sufficient" if iteration.sufficient else "insufficient"
    ax.set_title(
        f"Condition: {condition}  K = {iteration.k} ({status})",
        fontsize=style.title_fontsize,
    )
    ax.legend(loc="best", frameon=False)
    return fig, ax


def write_progress_plots(
    iterations: Sequence[KIteration],
    *,
    condition: Any,
    thresh: float,
    outdir: str | Path,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> list[Path]:
    """Write one PNG per K tried; returns the written paths."""
    out = Path(outdir)
    paths: list[Path] = []
    for it in iterations:
        fig, _ = plot_k_iteration(it, condition=condition, thresh=thresh, style=style)
        path = out / f"k_search_{sanitize_label(condition)}_K{it.k:02d}.png"
        save_figure(fig, path, style=style)
        paths.append(path)
    return paths
