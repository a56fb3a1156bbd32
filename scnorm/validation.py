"""Fail-fast input validation, quality diagnostics and condition-local gene filtering."""

from __future__ import annotations

import logging
import warnings
from typing import Any, Sequence

import numpy as np
import pandas as pd

from scnorm.core.types import CountData, GeneFilter, SCnormConfig
from scnorm.errors import (
    ConfigurationError,
    DataQualityWarning,
    DataValidationError,
    FilterInsufficiencyError,
)

ZERO_FRACTION_WARN = 0.80
MIN_DETECTED_GENES = 100


def _check_names(index: pd.Index, what: str) -> None:
    if isinstance(index, pd.RangeIndex):
        raise DataValidationError(
            f"Must supply {what} names; the count matrix only has a positional index."
        )
    if index.isna().any():
        raise DataValidationError(f"Some {what} names are missing (NA).")
    if index.has_duplicates:
        dups = list(index[index.duplicated()].unique()[:5])
        raise DataValidationError(f"{what.capitalize()} names must be unique; duplicated: {dups}.")


def validate_conditions(conditions: Any, n_columns: int) -> None:
    if conditions is None:
        raise DataValidationError("Must supply conditions (one label per sample).")
    n = len(conditions)
    if n != int(n_columns):
        raise DataValidationError(
            f"Number of columns in the expression matrix ({n_columns}) must match the "
            f"length of the conditions vector ({n})."
        )
    if pd.isna(pd.Series(list(conditions), dtype=object)).any():
        raise DataValidationError("Conditions contain missing (NA) labels.")


def validate_count_data(data: CountData) -> None:
    """Raise `DataValidationError` for malformed matrices before any fitting."""
    counts = data.counts
    if counts.shape[0] == 0 or counts.shape[1] == 0:
        raise DataValidationError(f"Count matrix is empty (shape {counts.shape}).")
    _check_names(counts.index, "gene/row")
    _check_names(counts.columns, "sample/cell")
    validate_conditions(data.conditions, counts.shape[1])
    if not data.conditions.index.equals(counts.columns):
        raise DataValidationError("Condition labels must be indexed by the sample names.")

    non_numeric = [c for c, dt in counts.dtypes.items() if not pd.api.types.is_numeric_dtype(dt)]
    if non_numeric:
        raise DataValidationError(
            f"Count matrix must be numeric; non-numeric columns include {non_numeric[:5]}."
        )
    values = counts.to_numpy(dtype=float)
    if np.isnan(values).any():
        raise DataValidationError(
            "Data contains at least one value of NA; remove or impute it before normalizing."
        )
    if not np.isfinite(values).all():
        raise DataValidationError("Data contains infinite values.")
    if (values < 0).any():
        raise DataValidationError("Counts must be non-negative.")
    zero_cols = counts.columns[values.sum(axis=0) == 0]
    if len(zero_cols) > 0:
        raise DataValidationError(
            f"Data contains {len(zero_cols)} column(s) with all zeros (e.g. {list(zero_cols[:5])}). "
            "Remove these columns before normalizing; quality control of the cells is "
            "highly recommended."
        )


def validate_config(config: SCnormConfig, n_conditions: int) -> tuple[int, ...] | None:
    """Validate knobs and expand K to one value per condition."""
    config.validate()
    ks = config.k_values()
    if ks is None:
        return None
    if len(ks) == 1:
        return ks * int(n_conditions)
    if len(ks) != int(n_conditions):
        raise ConfigurationError(
            f"K has {len(ks)} values but there are {n_conditions} conditions; "
            "give one K for all conditions or exactly one per condition."
        )
    return ks


def quality_diagnostics(
    counts: pd.DataFrame, logger: logging.Logger | None = None
) -> list[str]:
    """Emit `DataQualityWarning` for excessive sparsity or poorly detected samples."""
    log = logger if isinstance(logger, logging.Logger) else logging.getLogger("scnorm")
    values = counts.to_numpy(dtype=float)
    messages: list[str] = []

    zero_frac = float(np.mean(values == 0))
    if zero_frac > ZERO_FRACTION_WARN:
        messages.append(
            f"More than {ZERO_FRACTION_WARN:.0%} of the data are zeros ({zero_frac:.1%}). "
            "Remove low quality cells, or adjust FilterExpression and FilterCellNum; "
            "SCnorm may not be appropriate for this data."
        )
    detected = (values != 0).sum(axis=0)
    low = counts.columns[detected <= MIN_DETECTED_GENES]
    if len(low) > 0:
        messages.append(
            f"{len(low)} sample(s) have {MIN_DETECTED_GENES} or fewer genes detected "
            f"(e.g. {list(low[:5])}). Check the data quality or the filtering criteria."
        )
    if not np.allclose(values, np.round(values)):
        messages.append(
            "Counts contain non-integer values; SCnorm expects raw (integer) counts."
        )
    for msg in messages:
        warnings.warn(msg, DataQualityWarning, stacklevel=2)
        log.warning(msg)
    return messages


def filter_genes(
    counts: pd.DataFrame, filter_cell_num: int = 10, filter_expression: float = 0.0
) -> GeneFilter:
    """Keep genes with enough non-zero samples and high enough non-zero median.

    Genes whose non-zero counts are all equal carry no depth information and
    are excluded as well.
    """
    values = counts.to_numpy(dtype=float)
    n_nonzero = (values > 0).sum(axis=1)
    med = np.full(values.shape[0], np.nan)
    varies = np.zeros(values.shape[0], dtype=bool)
    for i, row in enumerate(values):
        nz = row[row > 0]
        if nz.size:
            med[i] = float(np.median(nz))
            varies[i] = float(np.ptp(nz)) > 0.0
    keep = (n_nonzero >= int(filter_cell_num)) & (med >= float(filter_expression)) & varies
    return GeneFilter(
        kept=tuple(counts.index[keep].tolist()),
        excluded=tuple(counts.index[~keep].tolist()),
    )


def filter_conditions(
    data: CountData,
    *,
    filter_cell_num: int,
    filter_expression: float,
    min_genes: int = 100,
    logger: logging.Logger | None = None,
) -> dict[Any, GeneFilter]:
    """Filter genes within each condition; too few survivors aborts the run."""
    log = logger if isinstance(logger, logging.Logger) else logging.getLogger("scnorm")
    log.info("Gene filter is applied within each condition.")
    filters: dict[Any, GeneFilter] = {}
    for level in data.levels:
        cols = data.conditions.index[data.conditions == level]
        gf = filter_genes(data.counts[cols], filter_cell_num, filter_expression)
        filters[level] = gf
        log.info(
            "%d genes in condition %s will not be included in the normalization "
            "due to the specified filter criteria.",
            len(gf.excluded),
            level,
        )
    short = {lvl: len(gf.kept) for lvl, gf in filters.items() if len(gf.kept) < int(min_genes)}
    if short:
        raise FilterInsufficiencyError(
            f"At least one condition has fewer than {min_genes} genes passing the filter "
            f"({short}). Check the data quality or relax FilterCellNum/FilterExpression."
        )
    return filters


def condition_columns(data: CountData, level: Any) -> Sequence[Any]:
    return list(data.conditions.index[data.conditions == level])
