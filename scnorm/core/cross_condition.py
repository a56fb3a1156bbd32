"""Rescaling of within-condition normalized counts onto a common scale."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd

from scnorm.core.types import NormalizationResult
from scnorm.errors import FilterInsufficiencyError


def common_genes(results: Sequence[NormalizationResult]) -> list[Any]:
    """Genes normalized in every condition, in the first condition's order."""
    if not results:
        return []
    shared = set(results[0].normalized.index)
    for res in results[1:]:
        shared &= set(res.normalized.index)
    return [g for g in results[0].normalized.index if g in shared]


def gene_statistic(
    normalized: pd.DataFrame, genes: Iterable[Any], *, use_zeros: bool = False
) -> pd.Series:
    """Per-gene mean normalized expression, over non-zero values unless `use_zeros`."""
    sub = normalized.loc[list(genes)]
    if use_zeros:
        return sub.mean(axis=1)
    return sub.where(sub > 0).mean(axis=1)


def scaling_genes(
    results: Sequence[NormalizationResult],
    *,
    spike_ins: Iterable[Any] = (),
    use_spikes: bool = False,
    min_genes: int = 10,
) -> list[Any]:
    genes = common_genes(results)
    source = "genes normalized in every condition"
    if use_spikes:
        spikes = set(spike_ins)
        genes = [g for g in genes if g in spikes]
        source = "spike-ins normalized in every condition"
    if len(genes) < int(min_genes):
        raise FilterInsufficiencyError(
            f"Only {len(genes)} {source} are available for scaling across conditions "
            f"(need at least {min_genes}). Relax FilterCellNum/FilterExpression"
            + (" or disable use_spikes." if use_spikes else ".")
        )
    return genes


def condition_adjustments(
    results: Sequence[NormalizationResult],
    genes: Sequence[Any],
    *,
    use_zeros: bool = False,
) -> list[float]:
    """Divisor per condition aligning its gene statistics to the first condition.

    For every other condition the divisor is the median over genes of
    ``stat_condition / stat_reference``; genes whose statistic is zero or
    undefined in either condition are skipped.
    """
    reference = gene_statistic(results[0].normalized, genes, use_zeros=use_zeros)
    out = [1.0]
    for res in results[1:]:
        stat = gene_statistic(res.normalized, genes, use_zeros=use_zeros)
        ratio = (stat / reference).to_numpy(dtype=float)
        ratio = ratio[np.isfinite(ratio) & (ratio > 0)]
        if ratio.size == 0:
            raise FilterInsufficiencyError(
                f"No gene has a positive statistic in both the reference condition and "
                f"condition {res.condition}; cannot scale across conditions. "
                "Try use_zeros_to_scale=True or relax the gene filter."
            )
        out.append(float(np.median(ratio)))
    return out


def scale_across_conditions(
    results: Sequence[NormalizationResult],
    *,
    spike_ins: Iterable[Any] = (),
    use_spikes: bool = False,
    use_zeros_to_scale: bool = False,
    min_genes: int = 10,
    logger: logging.Logger | None = None,
) -> tuple[list[NormalizationResult], dict[Any, float]]:
    """Apply one multiplicative adjustment per condition.

    Normalized values are divided by the condition's adjustment and the
    reported scale factors multiplied by it, so ``normalized = counts /
    scale_factors`` keeps holding. A single condition is returned unchanged.
    """
    log = logger if isinstance(logger, logging.Logger) else logging.getLogger("scnorm")
    results = list(results)
    if len(results) < 2:
        return results, {res.condition: 1.0 for res in results}

    genes = scaling_genes(
        results, spike_ins=spike_ins, use_spikes=use_spikes, min_genes=min_genes
    )
    log.info("Scaling data between conditions using %d genes", len(genes))
    adjustments = condition_adjustments(results, genes, use_zeros=use_zeros_to_scale)

    scaled = [
        dataclasses.replace(
            res,
            normalized=res.normalized / adj,
            scale_factors=res.scale_factors * adj,
        )
        for res, adj in zip(results, adjustments)
    ]
    return scaled, {res.condition: adj for res, adj in zip(results, adjustments)}
