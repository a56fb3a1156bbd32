"""Exception and warning taxonomy for SCnorm runs."""

from __future__ import annotations


class SCnormError(Exception):
    """Base class for all fatal SCnorm errors."""


class ConfigurationError(SCnormError, ValueError):
    """Bad or inconsistent parameters (e.g. K length, FilterCellNum too low)."""


class DataValidationError(SCnormError, ValueError):
    """Malformed input: missing names, NAs, all-zero columns, length mismatch."""


class FilterInsufficiencyError(SCnormError, ValueError):
    """Too few genes left after filtering for reliable regression."""


class DataQualityWarning(UserWarning):
    """Non-fatal data quality diagnostic (sparsity, low detection)."""


class ConvergenceWarning(UserWarning):
    """K search exhausted its bound without reaching the sufficiency threshold."""
