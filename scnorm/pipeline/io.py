"""Pipeline I/O and logging helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from scnorm.core.types import FinalResult


def ensure_dir(path: str | Path) -> None:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)


def setup_logger(log_path: Path, logger_name: str) -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def read_counts_csv(path: str | Path) -> pd.DataFrame:
    """Read a genes x samples CSV whose first column holds gene names."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Input file '{p}' not found.")
    return pd.read_csv(p, index_col=0)


def read_conditions(path: str | Path) -> list[str]:
    """Read one condition label per line (or the last column of a CSV)."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Conditions file '{p}' not found.")
    if p.suffix.lower() == ".csv":
        frame = pd.read_csv(p)
        return frame.iloc[:, -1].astype(str).tolist()
    lines = p.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip()]


def result_summary(result: FinalResult) -> dict[str, Any]:
    iterations = {
        str(cond): [
            {
                "k": it.k,
                "max_abs_residual": float(it.max_abs_residual),
                "n_exceeding": int(it.n_exceeding),
                "sufficient": bool(it.sufficient),
                "bin_summaries": np.asarray(it.bin_summaries, dtype=float).tolist(),
            }
            for it in res.iterations
        ]
        for cond, res in result.condition_results.items()
    }
    return {
        "chosen_k": {str(c): int(k) for c, k in result.chosen_k.items()},
        "adjustments": {str(c): float(a) for c, a in result.adjustments.items()},
        "genes_filtered_out": {
            str(c): list(genes) for c, genes in result.genes_filtered_out.items()
        },
        "converged": {
            str(c): bool(res.converged) for c, res in result.condition_results.items()
        },
        "k_search": iterations,
        "warnings": list(result.warnings),
        "metadata": result.metadata,
    }


def write_outputs(result: FinalResult, outdir: str | Path) -> dict[str, Path]:
    """Write normalized counts, optional scale factors and a JSON run summary."""
    out = Path(outdir)
    ensure_dir(out)
    paths = {"normalized": out / "normalized.csv", "summary": out / "summary.json"}
    result.normalized.to_csv(paths["normalized"])
    if result.scale_factors is not None:
        paths["scale_factors"] = out / "scale_factors.csv"
        result.scale_factors.to_csv(paths["scale_factors"])
    write_json(paths["summary"], result_summary(result))
    return paths
