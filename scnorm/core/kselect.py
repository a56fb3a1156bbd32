"""Iterative search over the number of gene groups K."""

from __future__ import annotations

import logging
import warnings
from concurrent.futures import Executor
from typing import Any

import numpy as np
import pandas as pd

from scnorm.core.group_fit import fit_group_scale
from scnorm.core.grouping import group_genes
from scnorm.core.slopes import estimate_slopes
from scnorm.core.types import (
    GroupFit,
    Grouping,
    KIteration,
    NormalizationResult,
    SCnormConfig,
    SufficiencyRule,
)
from scnorm.core.utils import slope_mode
from scnorm.errors import ConvergenceWarning
from scnorm.parallel import parallel_map
from scnorm.seeding import task_rng


def _logger(logger: logging.Logger | None) -> logging.Logger:
    if isinstance(logger, logging.Logger):
        return logger
    return logging.getLogger("scnorm")


def k_upper_bound(n_genes: int, max_k: int, min_group_size: int) -> int:
    """Largest K searched: groups must keep at least `min_group_size` genes."""
    by_size = int(n_genes) // max(1, int(min_group_size))
    return max(1, min(int(max_k), by_size))


def expression_bins(counts: pd.DataFrame, n_bins: int) -> pd.Series:
    """Assign genes to `n_bins` equal-size bins by median non-zero log expression."""
    values = counts.to_numpy(dtype=float)
    med = np.empty(values.shape[0], dtype=float)
    for i, row in enumerate(values):
        nz = row[row > 0]
        med[i] = float(np.median(np.log(nz))) if nz.size else -np.inf
    order = np.argsort(med, kind="mergesort")
    bins = np.empty(values.shape[0], dtype=int)
    for b, chunk in enumerate(np.array_split(order, min(int(n_bins), values.shape[0]))):
        bins[chunk] = b
    return pd.Series(bins, index=counts.index, name="eval_bin")


def _fit_group_task(task: dict[str, Any]) -> GroupFit:
    group = task["group"]
    rng = None
    if task["dither_counts"]:
        rng = task_rng(task["seed"], "group", task["condition"], task["k"], group.index)
    return fit_group_scale(
        task["counts"],
        task["depth"],
        group,
        tau=task["tau"],
        dither_counts=task["dither_counts"],
        rng=rng,
    )


def fit_k(
    counts: pd.DataFrame,
    depth: pd.Series,
    slopes: pd.Series,
    k: int,
    *,
    config: SCnormConfig,
    condition: Any = None,
    executor: Executor | None = None,
) -> tuple[Grouping, pd.DataFrame, pd.DataFrame]:
    """Group the genes into `k` groups and scale each group.

    Returns the grouping, the normalized counts and the broadcast scale
    factors, both genes x samples in the row order of `slopes`.
    """
    grouping = group_genes(slopes, k, prop_to_use=config.prop_to_use)
    tasks = [
        {
            "counts": counts.loc[list(grp.genes)],
            "depth": depth,
            "group": grp,
            "tau": float(config.tau),
            "dither_counts": bool(config.dither_counts),
            "seed": int(config.seed),
            "condition": condition,
            "k": int(k),
        }
        for grp in grouping.groups
    ]
    fits = parallel_map(_fit_group_task, tasks, executor=executor)

    normalized = pd.concat([fit.normalized for fit in fits]).reindex(slopes.index)
    factor_rows = [
        pd.DataFrame(
            np.tile(fit.factors.to_numpy(), (len(fit.group.genes), 1)),
            index=list(fit.group.genes),
            columns=counts.columns,
        )
        for fit in fits
    ]
    scale_factors = pd.concat(factor_rows).reindex(slopes.index)
    return grouping, normalized, scale_factors


def evaluate_k(
    normalized: pd.DataFrame,
    depth: pd.Series,
    bins: pd.Series,
    k: int,
    *,
    rule: SufficiencyRule,
    tau: float = 0.5,
    filter_cell_num: int = 10,
    summary: str = "mode",
) -> KIteration:
    """Refit per-gene slopes on normalized counts and summarise them per bin."""
    residual = estimate_slopes(
        normalized, depth, tau=tau, filter_cell_num=filter_cell_num
    )
    aligned_bins = bins.reindex(residual.index)
    summaries = []
    for b in sorted(aligned_bins.unique()):
        vals = residual[aligned_bins == b].to_numpy(dtype=float)
        if summary == "median":
            summaries.append(float(np.median(vals)))
        else:
            summaries.append(slope_mode(vals))
    bin_summaries = np.asarray(summaries, dtype=float)
    return KIteration(
        k=int(k),
        bin_summaries=bin_summaries,
        max_abs_residual=float(np.max(np.abs(bin_summaries))),
        n_exceeding=rule.n_exceeding(bin_summaries),
        sufficient=rule.is_sufficient(bin_summaries),
        gene_residual_slopes=residual,
        gene_bins=aligned_bins,
    )


def normalize_fixed_k(
    counts: pd.DataFrame,
    depth: pd.Series,
    slopes: pd.Series,
    k: int,
    *,
    config: SCnormConfig,
    condition: Any = None,
    genes_excluded: tuple[str, ...] = (),
    executor: Executor | None = None,
) -> NormalizationResult:
    """Normalize one condition at a caller-chosen K (no search)."""
    grouping, normalized, scale_factors = fit_k(
        counts, depth, slopes, k, config=config, condition=condition, executor=executor
    )
    return NormalizationResult(
        condition=condition,
        normalized=normalized,
        scale_factors=scale_factors,
        chosen_k=int(k),
        genes_excluded=tuple(genes_excluded),
        grouping=grouping,
        slopes=slopes,
    )


def select_k(
    counts: pd.DataFrame,
    depth: pd.Series,
    slopes: pd.Series,
    *,
    config: SCnormConfig,
    condition: Any = None,
    genes_excluded: tuple[str, ...] = (),
    executor: Executor | None = None,
    logger: logging.Logger | None = None,
    emit_warnings: bool = True,
) -> NormalizationResult:
    """Search K = 1, 2, ... until the residual depth dependence is within `thresh`.

    Two exits: the sufficiency rule holds (converged), or the upper bound on K
    is reached, in which case the last K tried is kept and a `ConvergenceWarning`
    is recorded on the result (and emitted unless `emit_warnings=False`).
    Every step is recorded as a `KIteration`.
    """
    log = _logger(logger)
    rule = SufficiencyRule(
        thresh=float(config.thresh),
        max_exceed_fraction=float(config.max_exceed_fraction),
    )
    counts = counts.loc[slopes.index]
    bins = expression_bins(counts, int(config.eval_bins))
    k_max = k_upper_bound(slopes.size, int(config.max_k), int(config.min_group_size))

    iterations: list[KIteration] = []
    run_warnings: list[str] = []
    log.info("Finding K for condition %s (searching K = 1..%d)", condition, k_max)
    k = 1
    while True:
        log.info("Trying K = %d", k)
        grouping, normalized, scale_factors = fit_k(
            counts, depth, slopes, k, config=config, condition=condition, executor=executor
        )
        iteration = evaluate_k(
            normalized,
            depth,
            bins,
            k,
            rule=rule,
            tau=float(config.tau),
            filter_cell_num=int(config.filter_cell_num),
            summary=str(config.eval_summary),
        )
        iterations.append(iteration)
        log.info(
            "K = %d: max |residual slope| = %.3f, %d of %d bins above %.3f",
            k,
            iteration.max_abs_residual,
            iteration.n_exceeding,
            iteration.bin_summaries.size,
            rule.thresh,
        )
        if iteration.sufficient:
            converged = True
            break
        if k >= k_max:
            converged = False
            msg = (
                f"Condition {condition}: K search reached its bound (K = {k}) without "
                f"all residual slopes falling within thresh={rule.thresh} "
                f"(max |residual| = {iteration.max_abs_residual:.3f}); using K = {k}. "
                "Consider raising max_k, lowering min_group_size or relaxing thresh."
            )
            if emit_warnings:
                warnings.warn(msg, ConvergenceWarning, stacklevel=2)
            log.warning(msg)
            run_warnings.append(msg)
            break
        k += 1

    return NormalizationResult(
        condition=condition,
        normalized=normalized,
        scale_factors=scale_factors,
        chosen_k=int(k),
        genes_excluded=tuple(genes_excluded),
        grouping=grouping,
        slopes=slopes,
        iterations=tuple(iterations),
        converged=converged,
        warnings=tuple(run_warnings),
    )
