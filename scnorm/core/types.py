"""Typed configuration and result containers for SCnorm core operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from scnorm.errors import ConfigurationError

EVAL_SUMMARIES: tuple[str, ...] = ("mode", "median")


@dataclass(frozen=True)
class SCnormConfig:
    """Run configuration. Field names are the SCnorm knobs in snake_case."""

    filter_cell_num: int = 10
    filter_expression: float = 0.0
    thresh: float = 0.1
    k: int | tuple[int, ...] | None = None
    prop_to_use: float = 0.25
    tau: float = 0.5
    dither_counts: bool = False
    seed: int = 1
    use_spikes: bool = False
    use_zeros_to_scale: bool = False
    report_sf: bool = False
    max_k: int = 25
    min_group_size: int = 10
    eval_bins: int = 10
    eval_summary: str = "mode"
    max_exceed_fraction: float = 0.0
    min_scaling_genes: int = 10
    min_genes_per_condition: int = 100

    def k_values(self) -> tuple[int, ...] | None:
        if self.k is None:
            return None
        if isinstance(self.k, (int, np.integer)):
            return (int(self.k),)
        return tuple(int(v) for v in self.k)

    def validate(self) -> "SCnormConfig":
        if int(self.filter_cell_num) < 10:
            raise ConfigurationError(
                f"filter_cell_num={self.filter_cell_num} is below the stability floor; "
                "must set filter_cell_num >= 10 (lower values give unstable per-gene fits)."
            )
        if not 0.0 < float(self.tau) < 1.0:
            raise ConfigurationError(f"tau must lie in (0, 1), got {self.tau}.")
        if not 0.0 < float(self.prop_to_use) <= 1.0:
            raise ConfigurationError(
                f"prop_to_use must lie in (0, 1], got {self.prop_to_use}."
            )
        if float(self.thresh) <= 0.0:
            raise ConfigurationError(f"thresh must be > 0, got {self.thresh}.")
        if int(self.max_k) < 1:
            raise ConfigurationError(f"max_k must be >= 1, got {self.max_k}.")
        if int(self.min_group_size) < 1:
            raise ConfigurationError(
                f"min_group_size must be >= 1, got {self.min_group_size}."
            )
        if int(self.eval_bins) < 1:
            raise ConfigurationError(f"eval_bins must be >= 1, got {self.eval_bins}.")
        if self.eval_summary not in EVAL_SUMMARIES:
            raise ConfigurationError(
                f"eval_summary must be one of {EVAL_SUMMARIES}, got '{self.eval_summary}'."
            )
        if not 0.0 <= float(self.max_exceed_fraction) < 1.0:
            raise ConfigurationError(
                "max_exceed_fraction must lie in [0, 1), "
                f"got {self.max_exceed_fraction}."
            )
        if int(self.min_scaling_genes) < 1:
            raise ConfigurationError(
                f"min_scaling_genes must be >= 1, got {self.min_scaling_genes}."
            )
        ks = self.k_values()
        if ks is not None:
            if len(ks) == 0:
                raise ConfigurationError("k was given but is empty.")
            if any(v < 1 for v in ks):
                raise ConfigurationError(f"Every K must be >= 1, got {list(ks)}.")
        return self


@dataclass(frozen=True)
class SufficiencyRule:
    """Predicate deciding whether a K removed the depth dependence.

    A K is sufficient when the fraction of evaluation bins whose summary
    residual slope exceeds ``thresh`` in absolute value is at most
    ``max_exceed_fraction``.
    """

    thresh: float = 0.1
    max_exceed_fraction: float = 0.0

    def n_exceeding(self, bin_summaries: np.ndarray) -> int:
        arr = np.asarray(bin_summaries, dtype=float).ravel()
        return int(np.sum(np.abs(arr) > float(self.thresh)))

    def is_sufficient(self, bin_summaries: np.ndarray) -> bool:
        arr = np.asarray(bin_summaries, dtype=float).ravel()
        if arr.size == 0:
            raise ValueError("bin_summaries must be non-empty.")
        if not np.isfinite(arr).all():
            return False
        frac = self.n_exceeding(arr) / float(arr.size)
        return frac <= float(self.max_exceed_fraction)


@dataclass(frozen=True)
class CountData:
    """Plain count matrix (genes x samples) plus one condition label per sample."""

    counts: pd.DataFrame
    conditions: pd.Series
    spike_ins: tuple[str, ...] = ()

    @property
    def levels(self) -> list[Any]:
        return list(pd.unique(self.conditions))


@dataclass(frozen=True)
class GeneFilter:
    kept: tuple[str, ...]
    excluded: tuple[str, ...]


@dataclass(frozen=True)
class GeneGroup:
    """One slope-homogeneous group of genes.

    - `genes`: members in slope-rank order.
    - `fit_genes`: members whose slopes lie closest to `mode_slope`; only these
      enter the pooled scale regression.
    """

    index: int
    genes: tuple[str, ...]
    fit_genes: tuple[str, ...]
    target_slope: float
    mode_slope: float


@dataclass(frozen=True)
class Grouping:
    k: int
    groups: tuple[GeneGroup, ...]

    def membership(self) -> pd.Series:
        """Gene -> group index."""
        pairs = [(g, grp.index) for grp in self.groups for g in grp.genes]
        return pd.Series(
            [idx for _, idx in pairs], index=[g for g, _ in pairs], dtype=int
        )


@dataclass(frozen=True)
class GroupFit:
    """Per-sample scale factors and normalized counts for one group."""

    group: GeneGroup
    factors: pd.Series
    normalized: pd.DataFrame
    pooled_slope: float
    pooled_intercept: float


@dataclass(frozen=True)
class KIteration:
    """Diagnostic state of one K-search step."""

    k: int
    bin_summaries: np.ndarray
    max_abs_residual: float
    n_exceeding: int
    sufficient: bool
    gene_residual_slopes: pd.Series
    gene_bins: pd.Series


@dataclass(frozen=True)
class NormalizationResult:
    """Within-condition output for the filtered genes of one condition."""

    condition: Any
    normalized: pd.DataFrame
    scale_factors: pd.DataFrame
    chosen_k: int
    genes_excluded: tuple[str, ...]
    grouping: Grouping
    slopes: pd.Series
    iterations: tuple[KIteration, ...] = ()
    converged: bool = True
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class FinalResult:
    """Output of `scnorm.normalize`."""

    normalized: pd.DataFrame
    scale_factors: pd.DataFrame | None
    genes_filtered_out: dict[Any, tuple[str, ...]]
    chosen_k: dict[Any, int]
    adjustments: dict[Any, float]
    condition_results: dict[Any, NormalizationResult]
    warnings: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
