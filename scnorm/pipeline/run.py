"""End-to-end SCnorm run: validate, filter, normalize per condition, rescale, assemble."""

from __future__ import annotations

import functools
import logging
import warnings
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd
from anndata import AnnData

from scnorm.adapters import AnnDataInput, to_count_data
from scnorm.config import config_from_dict
from scnorm.core.cross_condition import scale_across_conditions
from scnorm.core.kselect import normalize_fixed_k, select_k
from scnorm.core.slopes import estimate_slopes, sequencing_depth
from scnorm.core.types import FinalResult, NormalizationResult, SCnormConfig
from scnorm.errors import ConfigurationError, ConvergenceWarning
from scnorm.parallel import parallel_map
from scnorm.seeding import task_rng
from scnorm.validation import (
    condition_columns,
    filter_conditions,
    quality_diagnostics,
    validate_config,
    validate_count_data,
)
from scnorm.within_sample import correct_within_sample


@dataclass(frozen=True)
class ConditionTask:
    """Everything one condition's normalization needs; no shared state."""

    condition: Any
    counts: pd.DataFrame
    depth: pd.Series
    genes_excluded: tuple[Any, ...]
    k: int | None
    config: SCnormConfig


def _logger(logger: logging.Logger | None) -> logging.Logger:
    if isinstance(logger, logging.Logger):
        return logger
    return logging.getLogger("scnorm")


def normalize_condition(
    task: ConditionTask,
    *,
    group_executor: Executor | None = None,
    logger: logging.Logger | None = None,
) -> NormalizationResult:
    """Slopes, then either a fixed-K fit or the K search, for one condition."""
    cfg = task.config
    rng = task_rng(cfg.seed, "slopes", task.condition) if cfg.dither_counts else None
    slopes = estimate_slopes(
        task.counts,
        task.depth,
        tau=cfg.tau,
        filter_cell_num=cfg.filter_cell_num,
        dither_counts=cfg.dither_counts,
        rng=rng,
    )
    if task.k is not None:
        return normalize_fixed_k(
            task.counts,
            task.depth,
            slopes,
            task.k,
            config=cfg,
            condition=task.condition,
            genes_excluded=task.genes_excluded,
            executor=group_executor,
        )
    return select_k(
        task.counts,
        task.depth,
        slopes,
        config=cfg,
        condition=task.condition,
        genes_excluded=task.genes_excluded,
        executor=group_executor,
        logger=logger,
        emit_warnings=False,
    )


def _check_spikes(spike_ins: Sequence[Any], genes: pd.Index) -> None:
    if not spike_ins:
        raise ConfigurationError(
            "use_spikes=True but no spike-in genes were supplied; pass spike_ins or "
            "disable use_spikes."
        )
    missing = [g for g in spike_ins if g not in genes]
    if missing:
        raise ConfigurationError(
            f"{len(missing)} spike-in(s) are not rows of the count matrix (e.g. {missing[:5]})."
        )


def _assemble(
    blocks: Iterable[pd.DataFrame], genes: pd.Index, samples: pd.Index
) -> pd.DataFrame:
    frame = pd.concat([b.reindex(genes) for b in blocks], axis=1)
    return frame.reindex(columns=samples).astype(float)


def normalize(
    data: Any,
    conditions: Any = None,
    *,
    config: SCnormConfig | None = None,
    spike_ins: Iterable[Any] | None = None,
    within_sample: Sequence[float] | np.ndarray | pd.Series | None = None,
    executor: Executor | None = None,
    n_jobs: int = 1,
    progress_dir: str | Path | None = None,
    logger: logging.Logger | None = None,
    **params: Any,
) -> FinalResult:
    """Normalize a count matrix for gene-specific sequencing-depth dependence.

    `data` is any input `scnorm.adapters.to_count_data` accepts. Extra keyword
    `params` override `config` fields and may use either the snake_case names
    or the camel-case ones (``FilterCellNum=20``, ``Thresh=0.05``, ...).

    All validation happens before any regression is fitted. Conditions are
    normalized independently (through `executor` or `n_jobs` when there are
    several; with one condition the executor is used for the per-group fits),
    then rescaled onto the first condition.
    """
    log = _logger(logger)
    cfg = config or SCnormConfig()
    if params:
        cfg = config_from_dict(params, base=cfg)

    count_data = to_count_data(data, conditions, spike_ins=spike_ins)
    validate_count_data(count_data)
    levels = count_data.levels
    ks = validate_config(cfg, len(levels))
    counts = count_data.counts
    if cfg.use_spikes:
        _check_spikes(count_data.spike_ins, counts.index)

    work_counts = counts
    if within_sample is not None:
        log.info(
            "Using the loess method of Risso et al. (2011) for within-sample normalization."
        )
        work_counts = correct_within_sample(counts, within_sample)

    run_warnings = quality_diagnostics(counts, logger=log)
    filters = filter_conditions(
        count_data,
        filter_cell_num=cfg.filter_cell_num,
        filter_expression=cfg.filter_expression,
        min_genes=cfg.min_genes_per_condition,
        logger=log,
    )
    if ks is not None:
        for level, k in zip(levels, ks):
            if k > len(filters[level].kept):
                raise ConfigurationError(
                    f"K={k} for condition {level} exceeds its {len(filters[level].kept)} "
                    "filtered genes; choose a smaller K."
                )
        log.warning(
            "Normalizing assuming K = %s; letting SCnorm choose K is recommended.", list(ks)
        )
    if cfg.dither_counts:
        log.info("Dithering counts with seed %d; results are reproducible for this seed.", cfg.seed)

    tasks = []
    for i, level in enumerate(levels):
        cols = condition_columns(count_data, level)
        kept = list(filters[level].kept)
        tasks.append(
            ConditionTask(
                condition=level,
                counts=work_counts.loc[kept, cols],
                depth=sequencing_depth(counts[cols]),
                genes_excluded=filters[level].excluded,
                k=None if ks is None else int(ks[i]),
                config=cfg,
            )
        )

    if len(tasks) > 1:
        log.info(
            "Normalizing %d conditions (%s)",
            len(tasks),
            "executor" if executor is not None else f"n_jobs={max(1, int(n_jobs))}",
        )
        worker = functools.partial(normalize_condition, logger=log)
        results = parallel_map(worker, tasks, executor=executor, n_jobs=n_jobs)
    else:
        results = [normalize_condition(tasks[0], group_executor=executor, logger=log)]

    for res in results:
        for msg in res.warnings:
            warnings.warn(msg, ConvergenceWarning, stacklevel=2)
            run_warnings.append(msg)

    if progress_dir is not None:
        from scnorm.plotting.progress import write_progress_plots

        for res in results:
            write_progress_plots(
                res.iterations, condition=res.condition, thresh=cfg.thresh, outdir=progress_dir
            )

    scaled, adjustments = scale_across_conditions(
        results,
        spike_ins=count_data.spike_ins,
        use_spikes=cfg.use_spikes,
        use_zeros_to_scale=cfg.use_zeros_to_scale,
        min_genes=cfg.min_scaling_genes,
        logger=log,
    )

    normalized = _assemble((r.normalized for r in scaled), counts.index, counts.columns)
    scale_factors = None
    if cfg.report_sf:
        scale_factors = _assemble((r.scale_factors for r in scaled), counts.index, counts.columns)

    log.info("Done!")
    return FinalResult(
        normalized=normalized,
        scale_factors=scale_factors,
        genes_filtered_out={lvl: filters[lvl].excluded for lvl in levels},
        chosen_k={r.condition: r.chosen_k for r in scaled},
        adjustments=adjustments,
        condition_results={r.condition: r for r in scaled},
        warnings=tuple(run_warnings),
        metadata={
            "n_genes": int(counts.shape[0]),
            "n_samples": int(counts.shape[1]),
            "conditions": [str(lvl) for lvl in levels],
            "within_sample": within_sample is not None,
        },
    )


def normalize_anndata(
    adata: AnnData,
    condition_key: str,
    *,
    layer: str | None = None,
    spike_key: str | None = None,
    key_added: str = "scnorm",
    copy: bool = False,
    **kwargs: Any,
) -> AnnData | None:
    """Run `normalize` on an AnnData and store the results on it.

    Writes ``layers[f"{key_added}_normcounts"]`` (cells x genes, NaN for genes
    filtered out in a cell's condition), ``layers[f"{key_added}_scale_factors"]``
    when ``report_sf`` is set, and a summary dict under ``uns[key_added]``.
    Returns the modified copy when `copy=True`, else None.
    """
    result = normalize(
        AnnDataInput(adata, condition_key=condition_key, layer=layer, spike_key=spike_key),
        **kwargs,
    )
    target = adata.copy() if copy else adata
    order = pd.Index(target.var_names)
    target.layers[f"{key_added}_normcounts"] = (
        result.normalized.reindex(order).to_numpy(dtype=float).T
    )
    if result.scale_factors is not None:
        target.layers[f"{key_added}_scale_factors"] = (
            result.scale_factors.reindex(order).to_numpy(dtype=float).T
        )
    target.uns[key_added] = {
        "chosen_k": {str(c): int(k) for c, k in result.chosen_k.items()},
        "adjustments": {str(c): float(a) for c, a in result.adjustments.items()},
        "genes_filtered_out": {
            str(c): list(map(str, g)) for c, g in result.genes_filtered_out.items()
        },
        "warnings": list(result.warnings),
    }
    return target if copy else None
