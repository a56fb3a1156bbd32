"""Small pure helpers for core computations."""

from __future__ import annotations

import warnings

import numpy as np
from scipy.stats import gaussian_kde
from statsmodels.regression.quantile_regression import QuantReg
from statsmodels.tools.sm_exceptions import IterationLimitWarning

from scnorm.errors import DataQualityWarning, DataValidationError

MODE_GRID_SIZE = 512
QUANTREG_MAX_ITER = 5000


def finite_1d(name: str, values: np.ndarray) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    if arr.size == 0:
        raise ValueError(f"{name} must be non-empty.")
    if not np.isfinite(arr).all():
        raise ValueError(f"{name} must be finite.")
    return arr


def dither(values: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Symmetric uniform jitter of total width 1 to break ties among counts.

    Values stay at or above half their original size, which only matters for
    fractional inputs (integer counts >= 1 never reach that floor).
    """
    arr = np.asarray(values, dtype=float)
    jittered = arr + rng.uniform(-0.5, 0.5, size=arr.shape)
    return np.maximum(jittered, 0.5 * arr)


def slope_mode(values: np.ndarray) -> float:
    """Location of the highest Gaussian-KDE density; median for tiny or flat inputs."""
    arr = finite_1d("values", values)
    if arr.size < 3 or float(np.ptp(arr)) <= 1e-12:
        return float(np.median(arr))
    kde = gaussian_kde(arr)
    grid = np.linspace(float(arr.min()), float(arr.max()), MODE_GRID_SIZE)
    return float(grid[int(np.argmax(kde(grid)))])


def fit_quantile_line(
    x: np.ndarray,
    y: np.ndarray,
    tau: float,
    *,
    label: str = "regression",
    max_iter: int | None = None,
) -> tuple[float, float]:
    """Return `(intercept, slope)` of the tau-th quantile regression of y on x.

    A fit that stops at the solver's iteration limit is kept, but reported as
    a `DataQualityWarning` naming `label` (e.g. ``"gene 'Actb'"``).
    """
    xs = finite_1d("x", x)
    ys = finite_1d("y", y)
    if xs.size != ys.size:
        raise ValueError("x and y must have the same length.")
    if xs.size < 3:
        raise DataValidationError(
            f"Quantile regression needs at least 3 observations, got {xs.size}."
        )
    if float(np.ptp(xs)) <= 1e-12:
        raise DataValidationError(
            "Quantile regression is undefined when all samples share the same "
            "sequencing depth; check that the condition has samples of varying depth."
        )
    limit = int(QUANTREG_MAX_ITER if max_iter is None else max_iter)
    design = np.column_stack([np.ones_like(xs), xs])
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", IterationLimitWarning)
        fit = QuantReg(ys, design).fit(q=float(tau), vcov="iid", max_iter=limit)
    for w in caught:
        if issubclass(w.category, IterationLimitWarning):
            warnings.warn(
                f"Quantile regression for {label} stopped at the iteration limit "
                f"({limit}) before converging; its slope may be imprecise. Many tied "
                "low counts are the usual cause; consider ditherCounts=True.",
                DataQualityWarning,
                stacklevel=2,
            )
        else:
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
    intercept, slope = (float(v) for v in np.asarray(fit.params, dtype=float))
    return intercept, slope
