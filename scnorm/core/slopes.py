"""Per-gene count-depth slopes by quantile regression."""

from __future__ import annotations

import numpy as np
import pandas as pd

from scnorm.core.utils import dither, fit_quantile_line
from scnorm.errors import ConfigurationError, DataValidationError


def sequencing_depth(counts: pd.DataFrame) -> pd.Series:
    """Total counts per sample (column sums)."""
    return counts.sum(axis=0).astype(float)


def aligned_log_depth(counts: pd.DataFrame, depth: pd.Series) -> np.ndarray:
    depth_arr = pd.Series(depth).reindex(counts.columns).to_numpy(dtype=float)
    if not np.isfinite(depth_arr).all():
        raise DataValidationError(
            "Sequencing depth is missing for at least one sample of the count matrix."
        )
    if np.any(depth_arr <= 0):
        raise DataValidationError("Sequencing depth must be > 0 for every sample.")
    return np.log(depth_arr)


def estimate_slopes(
    counts: pd.DataFrame,
    depth: pd.Series,
    *,
    tau: float = 0.5,
    filter_cell_num: int = 10,
    dither_counts: bool = False,
    rng: np.random.Generator | None = None,
) -> pd.Series:
    """Quantile-regression slope of log(count) on log(depth) for every gene.

    Only non-zero observations enter each fit. Genes are expected to have been
    filtered upstream; a gene with fewer than `filter_cell_num` non-zero
    samples, or whose non-zero counts are all equal, raises
    `DataValidationError` instead of yielding a spurious slope. With
    `dither_counts=True` raw counts are jittered by `rng` before the log
    transform, gene by gene in row order.
    """
    if dither_counts and rng is None:
        raise ConfigurationError(
            "dither_counts=True requires an explicit random generator for reproducibility."
        )
    log_depth = aligned_log_depth(counts, depth)
    values = counts.to_numpy(dtype=float)

    slopes = np.empty(values.shape[0], dtype=float)
    for i, gene in enumerate(counts.index):
        row = values[i]
        nonzero = row > 0
        n_nonzero = int(nonzero.sum())
        if n_nonzero < int(filter_cell_num):
            raise DataValidationError(
                f"Gene '{gene}' has {n_nonzero} non-zero samples, fewer than "
                f"filter_cell_num={filter_cell_num}; filter genes before estimating slopes."
            )
        y = row[nonzero]
        if dither_counts:
            y = dither(y, rng)
        elif float(np.ptp(y)) == 0.0:
            raise DataValidationError(
                f"Gene '{gene}' has the same non-zero count ({y[0]:g}) in every sample; "
                "its depth slope is undefined. Filter constant genes before estimating "
                "slopes or enable ditherCounts."
            )
        _, slopes[i] = fit_quantile_line(
            log_depth[nonzero], np.log(y), tau, label=f"gene '{gene}'"
        )
    return pd.Series(slopes, index=counts.index, name="slope")
