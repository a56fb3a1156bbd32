"""Second-stage quantile regression producing per-sample group scale factors."""

from __future__ import annotations

import numpy as np
import pandas as pd

from scnorm.core.slopes import aligned_log_depth
from scnorm.core.types import GeneGroup, GroupFit
from scnorm.core.utils import dither, fit_quantile_line
from scnorm.errors import ConfigurationError, DataValidationError


def pooled_depth_response(
    counts: pd.DataFrame,
    log_depth: np.ndarray,
    *,
    dither_counts: bool = False,
    rng: np.random.Generator | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Stack gene-centred log non-zero counts against centred log depth.

    Each gene's log values are centred on their own median so genes of
    different abundance share one intercept; depth is centred on the median
    log depth of the condition.
    """
    center = float(np.median(log_depth))
    values = counts.to_numpy(dtype=float)
    xs: list[np.ndarray] = []
    ys: list[np.ndarray] = []
    for row in values:
        nonzero = row > 0
        if not nonzero.any():
            continue
        y = row[nonzero]
        if dither_counts:
            y = dither(y, rng)
        log_y = np.log(y)
        ys.append(log_y - float(np.median(log_y)))
        xs.append(log_depth[nonzero] - center)
    if not xs:
        return np.empty(0, dtype=float), np.empty(0, dtype=float)
    return np.concatenate(xs), np.concatenate(ys)


def fit_group_scale(
    counts: pd.DataFrame,
    depth: pd.Series,
    group: GeneGroup,
    *,
    tau: float = 0.5,
    dither_counts: bool = False,
    rng: np.random.Generator | None = None,
) -> GroupFit:
    """Estimate per-sample scale factors for one gene group.

    The pooled quantile regression at `tau` gives the group's common slope
    ``b``; sample j gets ``exp(b * (log d_j - median(log d)))``, the ratio of
    the predicted value at its own depth to the prediction at the median
    depth. Dividing member counts by these factors removes the first-order
    depth dependence shared by the group.
    """
    if dither_counts and rng is None:
        raise ConfigurationError(
            "dither_counts=True requires an explicit random generator for reproducibility."
        )
    if not group.genes:
        raise DataValidationError(f"Group {group.index} has no member genes.")
    missing = [g for g in group.genes if g not in counts.index]
    if missing:
        raise DataValidationError(
            f"Group {group.index} references genes absent from the counts: {missing[:5]}."
        )

    log_depth = aligned_log_depth(counts, depth)
    if float(np.ptp(log_depth)) <= 1e-12:
        raise DataValidationError(
            f"All samples share the same sequencing depth; group {group.index} "
            "cannot be scaled. Remove the condition or add samples of varying depth."
        )

    fit_genes = list(group.fit_genes) or list(group.genes)
    x, y = pooled_depth_response(
        counts.loc[fit_genes], log_depth, dither_counts=dither_counts, rng=rng
    )
    intercept, slope = fit_quantile_line(x, y, tau, label=f"group {group.index}")

    center = float(np.median(log_depth))
    factors = pd.Series(
        np.exp(slope * (log_depth - center)), index=counts.columns, name="scale_factor"
    )
    normalized = counts.loc[list(group.genes)].astype(float).div(factors, axis=1)
    return GroupFit(
        group=group,
        factors=factors,
        normalized=normalized,
        pooled_slope=float(slope),
        pooled_intercept=float(intercept),
    )
