"""Orchestration and I/O for complete SCnorm runs."""

from scnorm.pipeline.io import result_summary, setup_logger, write_json, write_outputs
from scnorm.pipeline.run import normalize, normalize_anndata, normalize_condition

__all__ = [
    "normalize",
    "normalize_anndata",
    "normalize_condition",
    "result_summary",
    "setup_logger",
    "write_json",
    "write_outputs",
]
