from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from scnorm.errors import ConfigurationError
from scnorm.within_sample import correct_within_sample


def _gc_biased_counts(n_genes=300, n_samples=6, seed=2):
    rng = np.random.default_rng(seed)
    gc = rng.uniform(0.3, 0.7, size=n_genes)
    base = np.exp(rng.normal(4.0, 0.3, size=n_genes))
    strength = np.linspace(1.0, 4.0, n_samples)
    mu = base[:, None] * np.exp(strength[None, :] * (gc[:, None] - 0.5))
    counts = pd.DataFrame(
        rng.poisson(mu),
        index=[f"g{i}" for i in range(n_genes)],
        columns=[f"s{j}" for j in range(n_samples)],
    )
    return counts, pd.Series(gc, index=counts.index)


def test_feature_trend_is_removed_in_every_sample():
    counts, gc = _gc_biased_counts()
    corrected = correct_within_sample(counts, gc)
    for col in counts.columns:
        before = np.corrcoef(gc, np.log(counts[col]))[0, 1]
        after = np.corrcoef(gc, np.log(corrected[col]))[0, 1]
        assert abs(after) < 0.1
        assert abs(after) < abs(before)


def test_sample_median_is_preserved_and_zeros_stay_zero():
    counts, gc = _gc_biased_counts()
    counts.iloc[:10, 0] = 0
    corrected = correct_within_sample(counts, gc.to_numpy())
    assert (corrected.iloc[:10, 0] == 0).all()
    col = counts.iloc[:, 1]
    assert np.median(np.log(corrected.iloc[:, 1])) == pytest.approx(np.median(np.log(col)), abs=0.05)


def test_feature_length_must_match_genes():
    counts, gc = _gc_biased_counts()
    with pytest.raises(ConfigurationError, match="must match the number of genes"):
        correct_within_sample(counts, gc.to_numpy()[:-1])


def test_feature_must_be_finite():
    counts, gc = _gc_biased_counts()
    feat = gc.to_numpy().copy()
    feat[0] = np.nan
    with pytest.raises(ConfigurationError, match="finite"):
        correct_within_sample(counts, feat)
