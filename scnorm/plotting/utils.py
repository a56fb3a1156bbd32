"""Shared plotting utilities."""

from __future__ import annotations

from pathlib import Path

import matplotlib.figure
import matplotlib.pyplot as plt

from scnorm.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle


def sanitize_label(label: object, max_len: int = 40) -> str:
    """Filesystem-safe stem for a condition label."""
    clean = "".join(ch if (ch.isalnum() or ch == "_") else "_" for ch in str(label))
    clean = clean.strip("_") or "condition"
    return clean[:max_len]


def save_figure(
    fig: matplotlib.figure.Figure,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
    close: bool = True,
) -> None:
    """Save figure deterministically and optionally close it."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, dpi=style.dpi, facecolor="white", bbox_inches="tight")
    if close:
        plt.close(fig)
