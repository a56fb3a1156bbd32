"""Rank-based partition of genes into slope-homogeneous groups."""

from __future__ import annotations

import math

import numpy as np
import pandas as pd

from scnorm.core.types import GeneGroup, Grouping
from scnorm.core.utils import slope_mode
from scnorm.errors import ConfigurationError, DataValidationError

MIN_FIT_GENES = 5


def _closest_to_mode(values: np.ndarray, mode: float, n_keep: int) -> np.ndarray:
    dist = np.abs(values - float(mode))
    keep = np.argsort(dist, kind="mergesort")[:n_keep]
    return np.sort(keep)


def group_genes(
    slopes: pd.Series,
    k: int,
    *,
    prop_to_use: float = 0.25,
) -> Grouping:
    """Split genes into `k` groups of near-equal size by slope rank.

    Ties in slope keep the original gene order. Each group's target slope is
    the median of its members; its fit genes are the `prop_to_use` fraction
    of members closest to the group's slope mode (never fewer than
    ``MIN_FIT_GENES`` when the group has that many).
    """
    k = int(k)
    n_genes = int(slopes.size)
    if k < 1:
        raise ConfigurationError(f"K must be >= 1, got {k}.")
    if k > n_genes:
        raise ConfigurationError(
            f"K={k} exceeds the number of filtered genes ({n_genes}); "
            "choose a smaller K or relax the gene filter."
        )
    if not 0.0 < float(prop_to_use) <= 1.0:
        raise ConfigurationError(f"prop_to_use must lie in (0, 1], got {prop_to_use}.")

    values = slopes.to_numpy(dtype=float)
    if not np.isfinite(values).all():
        bad = list(slopes.index[~np.isfinite(values)][:5])
        raise DataValidationError(f"Slopes must be finite; offending genes include {bad}.")

    genes = np.asarray(slopes.index)
    order = np.argsort(values, kind="mergesort")
    groups: list[GeneGroup] = []
    for idx, chunk in enumerate(np.array_split(order, k)):
        member_slopes = values[chunk]
        mode = slope_mode(member_slopes)
        n_fit = max(math.ceil(float(prop_to_use) * chunk.size), MIN_FIT_GENES)
        n_fit = min(n_fit, int(chunk.size))
        fit_pos = _closest_to_mode(member_slopes, mode, n_fit)
        groups.append(
            GeneGroup(
                index=idx,
                genes=tuple(genes[chunk].tolist()),
                fit_genes=tuple(genes[chunk[fit_pos]].tolist()),
                target_slope=float(np.median(member_slopes)),
                mode_slope=float(mode),
            )
        )
    return Grouping(k=k, groups=tuple(groups))
