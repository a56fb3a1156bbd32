"""SCnorm: gene-group normalization of single-cell counts for sequencing depth."""

from scnorm._version import __version__
from scnorm.adapters import AnnDataInput, MatrixInput, to_count_data
from scnorm.config import config_from_dict, load_config
from scnorm.core.types import FinalResult, NormalizationResult, SCnormConfig
from scnorm.errors import (
    ConfigurationError,
    ConvergenceWarning,
    DataQualityWarning,
    DataValidationError,
    FilterInsufficiencyError,
    SCnormError,
)
from scnorm.pipeline.run import normalize, normalize_anndata

__all__ = [
    "__version__",
    "AnnDataInput",
    "MatrixInput",
    "to_count_data",
    "config_from_dict",
    "load_config",
    "FinalResult",
    "NormalizationResult",
    "SCnormConfig",
    "ConfigurationError",
    "ConvergenceWarning",
    "DataQualityWarning",
    "DataValidationError",
    "FilterInsufficiencyError",
    "SCnormError",
    "normalize",
    "normalize_anndata",
]
