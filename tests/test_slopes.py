from __future__ import annotations

import warnings

import numpy as np
import pandas as pd
import pytest
from statsmodels.tools.sm_exceptions import IterationLimitWarning

import scnorm.core.utils as utils_mod
from scnorm.core.slopes import estimate_slopes, sequencing_depth
from scnorm.errors import ConfigurationError, DataQualityWarning, DataValidationError
from scnorm.seeding import rng_from_seed


def _known_depth_counts(n_genes=60, n_samples=200, seed=11):
    rng = np.random.default_rng(seed)
    slopes = np.linspace(0.0, 1.0, n_genes)
    depth = np.exp(rng.normal(0.0, 0.5, size=n_samples))
    mu = 80.0 * depth[None, :] ** slopes[:, None]
    counts = pd.DataFrame(
        rng.poisson(mu),
        index=[f"g{i}" for i in range(n_genes)],
        columns=[f"c{j}" for j in range(n_samples)],
    )
    return counts, pd.Series(depth, index=counts.columns), slopes


def test_slopes_recover_known_depth_dependence():
    counts, depth, truth = _known_depth_counts()
    est = estimate_slopes(counts, depth, tau=0.5, filter_cell_num=10)
    assert list(est.index) == list(counts.index)
    assert np.isfinite(est).all()
    assert np.median(np.abs(est.to_numpy() - truth)) < 0.1
    assert np.corrcoef(est.to_numpy(), truth)[0, 1] > 0.95


def test_sequencing_depth_is_column_sums():
    counts = pd.DataFrame({"a": [1, 2, 3], "b": [0, 5, 0]}, index=["x", "y", "z"])
    depth = sequencing_depth(counts)
    assert depth.to_dict() == {"a": 6.0, "b": 5.0}


def test_gene_with_too_few_nonzero_samples_fails_loudly():
    counts, depth, _ = _known_depth_counts(n_genes=5, n_samples=30)
    counts.iloc[2, 5:] = 0
    with pytest.raises(DataValidationError, match="g2"):
        estimate_slopes(counts, depth, filter_cell_num=10)


def test_constant_depth_is_rejected():
    counts, _, _ = _known_depth_counts(n_genes=5, n_samples=30)
    flat = pd.Series(1000.0, index=counts.columns)
    with pytest.raises(DataValidationError, match="same sequencing depth"):
        estimate_slopes(counts, flat)


def test_dither_requires_explicit_generator():
    counts, depth, _ = _known_depth_counts(n_genes=3, n_samples=30)
    with pytest.raises(ConfigurationError):
        estimate_slopes(counts, depth, dither_counts=True)


def test_dither_is_reproducible_for_a_fixed_seed():
    counts, depth, _ = _known_depth_counts(n_genes=10, n_samples=40)
    a = estimate_slopes(counts, depth, dither_counts=True, rng=rng_from_seed(1))
    b = estimate_slopes(counts, depth, dither_counts=True, rng=rng_from_seed(1))
    c = estimate_slopes(counts, depth, dither_counts=True, rng=rng_from_seed(2))
    pd.testing.assert_series_equal(a, b)
    assert not np.allclose(a.to_numpy(), c.to_numpy())


def test_constant_gene_fails_loudly_without_dither():
    counts, depth, _ = _known_depth_counts(n_genes=5, n_samples=40)
    counts.iloc[3, :] = 7
    with pytest.raises(DataValidationError, match="g3.*same non-zero count"):
        estimate_slopes(counts, depth)
    dithered = estimate_slopes(counts, depth, dither_counts=True, rng=rng_from_seed(0))
    assert np.isfinite(dithered["g3"])


def test_unfinished_fit_is_reported_per_gene(monkeypatch):
    rng = np.random.default_rng(21)
    depth = pd.Series(np.exp(rng.normal(0.0, 0.5, size=60)), index=[f"c{j}" for j in range(60)])
    counts = pd.DataFrame(
        rng.choice([1, 1, 1, 2, 2, 3], size=(2, 60)),
        index=["tiedA", "tiedB"],
        columns=depth.index,
    )
    monkeypatch.setattr(utils_mod, "QUANTREG_MAX_ITER", 1)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        estimate_slopes(counts, depth)
    categories = {w.category for w in caught}
    assert IterationLimitWarning not in categories
    messages = [str(w.message) for w in caught if w.category is DataQualityWarning]
    assert any("gene 'tiedA'" in m and "ditherCounts" in m for m in messages)
    assert any("gene 'tiedB'" in m for m in messages)
