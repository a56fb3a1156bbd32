"""Synthetic count matrices with a known, gene-specific count-depth relationship."""

from __future__ import annotations

import numpy as np
import pandas as pd

from scnorm.adapters import MatrixInput
from scnorm.seeding import rng_from_seed


def simulate_depth_dependent_counts(
    n_genes: int = 500,
    n_samples: int = 90,
    n_conditions: int = 2,
    *,
    slope_range: tuple[float, float] = (0.0, 1.0),
    mean_range: tuple[float, float] = (5.0, 100.0),
    depth_sd: float = 0.4,
    condition_effects: tuple[float, ...] | None = None,
    seed: int = 0,
) -> MatrixInput:
    """Poisson counts whose slope on relative depth rises linearly with gene rank.

    Gene i has mean ``mu_i * r_j ** s_i`` in sample j, where ``s_i`` runs
    linearly over `slope_range` and ``mu_i`` log-linearly over `mean_range`
    (so expression level and slope increase together, as in real data).
    ``r_j`` is log-normal with sd `depth_sd`. Samples are split into
    `n_conditions` consecutive blocks labelled 1..n; `condition_effects`
    optionally multiplies every mean in a condition.
    """
    if n_genes < 1 or n_samples < 1:
        raise ValueError("n_genes and n_samples must be positive.")
    if n_conditions < 1 or n_conditions > n_samples:
        raise ValueError("n_conditions must lie in [1, n_samples].")
    rng = rng_from_seed(seed)

    slopes = np.linspace(float(slope_range[0]), float(slope_range[1]), n_genes)
    means = np.exp(np.linspace(np.log(mean_range[0]), np.log(mean_range[1]), n_genes))
    rel_depth = np.exp(rng.normal(0.0, float(depth_sd), size=n_samples))

    blocks = np.array_split(np.arange(n_samples), n_conditions)
    labels = np.empty(n_samples, dtype=int)
    effect = np.ones(n_samples, dtype=float)
    for c, idx in enumerate(blocks):
        labels[idx] = c + 1
        if condition_effects is not None:
            effect[idx] = float(condition_effects[c])

    mu = means[:, None] * rel_depth[None, :] ** slopes[:, None] * effect[None, :]
    counts = rng.poisson(mu)

    genes = [f"Gene{i + 1}" for i in range(n_genes)]
    samples = [f"Cell{j + 1}" for j in range(n_samples)]
    frame = pd.DataFrame(counts, index=genes, columns=samples)
    return MatrixInput(
        counts=frame,
        conditions=pd.Series(labels, index=samples, name="condition"),
    )
