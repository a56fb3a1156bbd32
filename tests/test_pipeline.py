from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData

from scnorm import normalize, normalize_anndata
from scnorm.errors import ConfigurationError
from scnorm.pipeline.io import write_outputs
from scnorm.simulate import simulate_depth_dependent_counts

SPARSE_GENES = ["Sparse1", "Sparse2", "Sparse3"]


def _with_condition_specific_genes(sim):
    counts, conds = sim.counts, sim.conditions
    rng = np.random.default_rng(99)
    extra = np.zeros((len(SPARSE_GENES), counts.shape[1]), dtype=int)
    first = (conds == 1).to_numpy()
    extra[:, first] = rng.poisson(20.0, size=(len(SPARSE_GENES), int(first.sum())))
    extra = pd.DataFrame(extra, index=SPARSE_GENES, columns=counts.columns)
    return pd.concat([counts, extra]), conds


@pytest.fixture(scope="module")
def two_conditions():
    counts, conds = _with_condition_specific_genes(simulate_depth_dependent_counts(seed=0))
    result = normalize(counts, conds, report_sf=True)
    return counts, conds, result


@pytest.fixture(scope="module")
def small_sim():
    return simulate_depth_dependent_counts(n_genes=200, n_samples=60, seed=5)


def test_output_matches_input_layout(two_conditions):
    counts, _, result = two_conditions
    assert list(result.normalized.index) == list(counts.index)
    assert list(result.normalized.columns) == list(counts.columns)
    assert result.scale_factors.shape == counts.shape
    assert result.metadata["n_genes"] == counts.shape[0]


def test_each_condition_converges_with_several_groups(two_conditions):
    _, _, result = two_conditions
    assert set(result.chosen_k) == {1, 2}
    for cond, res in result.condition_results.items():
        assert res.converged
        assert result.chosen_k[cond] > 1
        assert np.all(np.abs(res.iterations[-1].bin_summaries) <= 0.1)
    assert result.adjustments[1] == 1.0
    assert result.adjustments[2] > 0


def test_condition_filtered_genes_are_missing_only_there(two_conditions):
    counts, conds, result = two_conditions
    assert set(SPARSE_GENES) <= set(result.genes_filtered_out[2])
    assert not set(SPARSE_GENES) & set(result.genes_filtered_out[1])
    cols_1 = conds.index[conds == 1]
    cols_2 = conds.index[conds == 2]
    assert result.normalized.loc[SPARSE_GENES, cols_2].isna().all().all()
    assert result.normalized.loc[SPARSE_GENES, cols_1].notna().all().all()


def test_scale_factors_reconstruct_counts(two_conditions):
    counts, _, result = two_conditions
    product = (result.normalized * result.scale_factors).to_numpy()
    mask = np.isfinite(product)
    np.testing.assert_allclose(product[mask], counts.to_numpy(dtype=float)[mask], rtol=1e-9)


def test_write_outputs(two_conditions, tmp_path):
    _, _, result = two_conditions
    paths = write_outputs(result, tmp_path / "out")
    assert paths["normalized"].exists()
    assert paths["scale_factors"].exists()
    summary = json.loads(paths["summary"].read_text(encoding="utf-8"))
    assert set(summary["chosen_k"]) == {"1", "2"}
    assert summary["converged"] == {"1": True, "2": True}
    assert len(summary["k_search"]["1"]) == summary["chosen_k"]["1"]


def test_executor_gives_identical_results(small_sim):
    serial = normalize(small_sim.counts, small_sim.conditions, K=2)
    with ThreadPoolExecutor(max_workers=2) as pool:
        threaded = normalize(small_sim.counts, small_sim.conditions, K=2, executor=pool)
    pd.testing.assert_frame_equal(serial.normalized, threaded.normalized)
    assert serial.adjustments == threaded.adjustments


def test_dither_is_reproducible_per_seed(small_sim):
    kwargs = dict(K=2, ditherCounts=True)
    a = normalize(small_sim.counts, small_sim.conditions, seed=3, **kwargs)
    b = normalize(small_sim.counts, small_sim.conditions, seed=3, **kwargs)
    c = normalize(small_sim.counts, small_sim.conditions, seed=4, **kwargs)
    pd.testing.assert_frame_equal(a.normalized, b.normalized)
    assert not np.allclose(a.normalized.to_numpy(), c.normalized.to_numpy(), equal_nan=True)


def test_fixed_k_skips_the_search(small_sim):
    result = normalize(small_sim.counts, small_sim.conditions, K=[2, 3])
    assert result.chosen_k == {1: 2, 2: 3}
    assert all(res.iterations == () for res in result.condition_results.values())
    assert result.scale_factors is None


def test_within_sample_length_mismatch(small_sim):
    with pytest.raises(ConfigurationError, match="within_sample"):
        normalize(small_sim.counts, small_sim.conditions, K=2, within_sample=np.ones(5))


def test_within_sample_feature_runs(small_sim):
    gc = np.linspace(0.3, 0.7, small_sim.counts.shape[0])
    result = normalize(small_sim.counts, small_sim.conditions, K=2, within_sample=gc)
    assert result.metadata["within_sample"] is True
    assert np.isfinite(result.normalized.to_numpy()).all()


def test_progress_plots_written_per_k(small_sim, tmp_path):
    outdir = tmp_path / "progress"
    result = normalize(small_sim.counts, small_sim.conditions, Thresh=5.0, progress_dir=outdir)
    assert result.chosen_k == {1: 1, 2: 1}
    written = sorted(p.name for p in outdir.glob("*.png"))
    assert written == ["k_search_1_K01.png", "k_search_2_K01.png"]


def test_normalize_anndata_stores_layers(small_sim):
    counts = small_sim.counts
    adata = AnnData(
        X=counts.T.to_numpy(dtype=float),
        obs=pd.DataFrame(
            {"group": [f"c{v}" for v in small_sim.conditions]}, index=counts.columns
        ),
        var=pd.DataFrame(index=counts.index),
    )
    out = normalize_anndata(adata, "group", K=2, reportSF=True, copy=True)
    assert "scnorm_normcounts" not in adata.layers
    assert out.layers["scnorm_normcounts"].shape == adata.shape
    assert out.layers["scnorm_scale_factors"].shape == adata.shape
    assert out.uns["scnorm"]["chosen_k"] == {"c1": 2, "c2": 2}
    assert out.uns["scnorm"]["adjustments"]["c1"] == 1.0

    assert normalize_anndata(adata, "group", K=2, key_added="sc") is None
    assert "sc_normcounts" in adata.layers


def test_interleaved_halves_of_one_population_need_no_adjustment():
    sim = simulate_depth_dependent_counts(
        n_genes=300, n_samples=90, n_conditions=1, depth_sd=0.2, seed=12
    )
    halves = pd.Series(
        ["a" if j % 2 == 0 else "b" for j in range(sim.counts.shape[1])],
        index=sim.counts.columns,
    )
    result = normalize(sim.counts, halves, K=3)
    assert result.adjustments["a"] == 1.0
    assert abs(result.adjustments["b"] - 1.0) < 0.1


def test_depth_independent_genes_come_back_unchanged():
    sim = simulate_depth_dependent_counts(
        n_genes=300, n_samples=80, n_conditions=1, slope_range=(1.0, 1.0), seed=13
    )
    rng = np.random.default_rng(14)
    flat_genes = [f"Flat{i + 1}" for i in range(150)]
    flat = pd.DataFrame(
        rng.poisson(50.0, size=(len(flat_genes), sim.counts.shape[1])),
        index=flat_genes,
        columns=sim.counts.columns,
    )
    counts = pd.concat([sim.counts, flat])
    result = normalize(counts, sim.conditions, K=3)

    ratio = (result.normalized.loc[flat_genes] / counts.loc[flat_genes]).to_numpy()
    ratio = ratio[np.isfinite(ratio)]
    assert abs(float(np.median(ratio)) - 1.0) < 0.05
    assert np.all(np.abs(ratio - 1.0) < 0.15)
