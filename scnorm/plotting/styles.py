"""Shared plotting style settings for deterministic figure outputs."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PlotStyle:
    """Centralized plotting defaults for K-search progress figures."""

    dpi: int = 150
    figsize_progress: tuple[float, float] = (7.0, 4.5)
    s_gene: float = 6.0
    alpha_gene: float = 0.35
    color_gene: str = "#4c72b0"
    color_summary: str = "#c44e52"
    color_thresh: str = "#7f7f7f"
    axis_label_fontsize: int = 10
    title_fontsize: int = 11


DEFAULT_PLOT_STYLE = PlotStyle()
