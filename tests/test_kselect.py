from __future__ import annotations

import numpy as np
import pytest

from scnorm.core.kselect import evaluate_k, expression_bins, fit_k, k_upper_bound, select_k
from scnorm.core.slopes import estimate_slopes, sequencing_depth
from scnorm.core.types import SCnormConfig, SufficiencyRule
from scnorm.errors import ConvergenceWarning
from scnorm.simulate import simulate_depth_dependent_counts


@pytest.fixture(scope="module")
def one_condition():
    sim = simulate_depth_dependent_counts(n_genes=300, n_samples=90, n_conditions=1, seed=4)
    counts = sim.counts
    depth = sequencing_depth(counts)
    slopes = estimate_slopes(counts, depth)
    return counts, depth, slopes


def test_sufficiency_rule_counts_bins_above_threshold():
    rule = SufficiencyRule(thresh=0.1)
    assert rule.n_exceeding(np.array([0.05, -0.2, 0.1, 0.3])) == 2
    assert rule.is_sufficient(np.array([0.05, -0.09, 0.1]))
    assert not rule.is_sufficient(np.array([0.05, -0.11]))
    assert not rule.is_sufficient(np.array([0.0, np.nan]))
    with pytest.raises(ValueError):
        rule.is_sufficient(np.array([]))


def test_sufficiency_rule_tolerates_a_fraction_of_bins():
    rule = SufficiencyRule(thresh=0.1, max_exceed_fraction=0.25)
    assert rule.is_sufficient(np.array([0.0, 0.0, 0.0, 0.5]))
    assert not rule.is_sufficient(np.array([0.0, 0.0, 0.5, 0.5]))


@pytest.mark.parametrize(
    ("n_genes", "max_k", "min_size", "expected"),
    [(300, 25, 10, 25), (120, 25, 10, 12), (5, 25, 10, 1), (300, 3, 10, 3)],
)
def test_k_upper_bound(n_genes, max_k, min_size, expected):
    assert k_upper_bound(n_genes, max_k, min_size) == expected


def test_expression_bins_are_balanced_and_ordered(one_condition):
    counts, _, _ = one_condition
    bins = expression_bins(counts, 10)
    assert bins.value_counts().max() - bins.value_counts().min() <= 1
    assert sorted(bins.unique()) == list(range(10))
    low = counts.loc[bins[bins == 0].index]
    high = counts.loc[bins[bins == 9].index]
    assert low.where(low > 0).median(axis=1).median() < high.where(high > 0).median(axis=1).median()


def test_more_groups_reduce_residual_dependence(one_condition):
    counts, depth, slopes = one_condition
    cfg = SCnormConfig()
    bins = expression_bins(counts, cfg.eval_bins)
    rule = SufficiencyRule(thresh=cfg.thresh)
    worst = []
    for k in (1, 2, 3, 4):
        _, normalized, _ = fit_k(counts, depth, slopes, k, config=cfg)
        worst.append(evaluate_k(normalized, depth, bins, k, rule=rule).max_abs_residual)
    assert worst[0] > cfg.thresh
    assert worst[-1] < worst[0]
    for prev, cur in zip(worst, worst[1:]):
        assert cur <= prev + 0.1


def test_fit_k_covers_every_gene(one_condition):
    counts, depth, slopes = one_condition
    grouping, normalized, factors = fit_k(counts, depth, slopes, 3, config=SCnormConfig())
    assert list(normalized.index) == list(slopes.index)
    assert normalized.shape == factors.shape == counts.shape
    np.testing.assert_allclose(
        normalized.to_numpy(), counts.loc[slopes.index].to_numpy() / factors.to_numpy()
    )
    assert len(grouping.membership()) == counts.shape[0]


def test_select_k_converges_above_one(one_condition):
    counts, depth, slopes = one_condition
    res = select_k(counts, depth, slopes, config=SCnormConfig(), condition="A")
    assert res.converged
    assert res.chosen_k > 1
    assert [it.k for it in res.iterations] == list(range(1, res.chosen_k + 1))
    assert not res.iterations[0].sufficient
    assert res.iterations[-1].sufficient
    assert np.all(np.abs(res.iterations[-1].bin_summaries) <= 0.1)
    assert res.warnings == ()


def test_select_k_exhaustion_warns_and_keeps_last_k(one_condition):
    counts, depth, slopes = one_condition
    with pytest.warns(ConvergenceWarning, match="reached its bound"):
        res = select_k(counts, depth, slopes, config=SCnormConfig(max_k=1), condition="A")
    assert not res.converged
    assert res.chosen_k == 1
    assert len(res.warnings) == 1
