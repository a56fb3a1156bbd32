"""Core normalization subpackage (no plotting, no filesystem I/O)."""

from scnorm.core.cross_condition import scale_across_conditions
from scnorm.core.group_fit import fit_group_scale
from scnorm.core.grouping import group_genes
from scnorm.core.kselect import evaluate_k, fit_k, normalize_fixed_k, select_k
from scnorm.core.slopes import estimate_slopes, sequencing_depth
from scnorm.core.types import (
    CountData,
    FinalResult,
    GeneFilter,
    GeneGroup,
    Grouping,
    GroupFit,
    KIteration,
    NormalizationResult,
    SCnormConfig,
    SufficiencyRule,
)

__all__ = [
    "CountData",
    "FinalResult",
    "GeneFilter",
    "GeneGroup",
    "Grouping",
    "GroupFit",
    "KIteration",
    "NormalizationResult",
    "SCnormConfig",
    "SufficiencyRule",
    "estimate_slopes",
    "evaluate_k",
    "fit_group_scale",
    "fit_k",
    "group_genes",
    "normalize_fixed_k",
    "scale_across_conditions",
    "select_k",
    "sequencing_depth",
]
