"""Command-line interface for SCnorm."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable

import scanpy as sc

from scnorm.adapters import AnnDataInput, MatrixInput
from scnorm.config import config_from_dict, load_json_config
from scnorm.core.types import SCnormConfig
from scnorm.pipeline.io import (
    ensure_dir,
    read_conditions,
    read_counts_csv,
    setup_logger,
    write_outputs,
)
from scnorm.pipeline.run import normalize


def _read_adata(h5ad_path: str):
    path = Path(h5ad_path)
    if not path.exists():
        raise FileNotFoundError(f"Input file '{h5ad_path}' not found.")
    return sc.read_h5ad(path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Normalize single-cell counts for gene-specific sequencing-depth dependence."
    )
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--counts", help="CSV of counts (genes x samples, first column = gene names)")
    src.add_argument("--h5ad", help="AnnData .h5ad file (cells x genes)")
    parser.add_argument("--conditions", help="File with one condition label per sample")
    parser.add_argument("--condition-key", help="adata.obs column holding conditions")
    parser.add_argument("--layer", default=None, help="AnnData layer with raw counts")
    parser.add_argument("--spike-key", default=None, help="Boolean adata.var column marking spike-ins")
    parser.add_argument("--config", default=None, help="JSON config with SCnorm parameters")
    parser.add_argument("--outdir", default="scnorm_out", help="Output directory")
    parser.add_argument("--filter-cell-num", type=int, default=None)
    parser.add_argument("--filter-expression", type=float, default=None)
    parser.add_argument("--thresh", type=float, default=None)
    parser.add_argument("--k", type=int, nargs="+", default=None, help="Fixed K (skips the search)")
    parser.add_argument("--prop-to-use", type=float, default=None)
    parser.add_argument("--tau", type=float, default=None)
    parser.add_argument("--dither-counts", action="store_true")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--use-spikes", action="store_true")
    parser.add_argument("--use-zeros-to-scale", action="store_true")
    parser.add_argument("--report-sf", action="store_true")
    parser.add_argument("--n-jobs", type=int, default=1)
    parser.add_argument(
        "--progress-plots", action="store_true", help="Write one figure per K tried"
    )
    return parser


def _config_from_args(args: argparse.Namespace) -> SCnormConfig:
    cfg = SCnormConfig()
    if args.config is not None:
        cfg = config_from_dict(load_json_config(args.config), base=cfg)
    overrides = {
        "filter_cell_num": args.filter_cell_num,
        "filter_expression": args.filter_expression,
        "thresh": args.thresh,
        "k": tuple(args.k) if args.k is not None else None,
        "prop_to_use": args.prop_to_use,
        "tau": args.tau,
        "seed": args.seed,
    }
    flags = {
        "dither_counts": args.dither_counts,
        "use_spikes": args.use_spikes,
        "use_zeros_to_scale": args.use_zeros_to_scale,
        "report_sf": args.report_sf,
    }
    updates = {k: v for k, v in overrides.items() if v is not None}
    updates.update({k: True for k, v in flags.items() if v})
    return config_from_dict(updates, base=cfg)


def main(argv: Iterable[str] | None = None) -> int:
    """Run SCnorm from the command line.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success).
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    outdir = Path(args.outdir)
    ensure_dir(outdir)
    logger = setup_logger(outdir / "scnorm.log", "scnorm")
    cfg = _config_from_args(args)

    if args.h5ad is not None:
        if args.condition_key is None and args.conditions is None:
            parser.error("--h5ad needs --condition-key or --conditions.")
        data = AnnDataInput(
            _read_adata(args.h5ad),
            condition_key=args.condition_key,
            layer=args.layer,
            spike_key=args.spike_key,
        )
    else:
        if args.conditions is None:
            parser.error("--counts needs --conditions.")
        data = MatrixInput(counts=read_counts_csv(args.counts))

    conditions = read_conditions(args.conditions) if args.conditions is not None else None
    result = normalize(
        data,
        conditions,
        config=cfg,
        n_jobs=args.n_jobs,
        progress_dir=(outdir / "progress") if args.progress_plots else None,
        logger=logger,
    )
    paths = write_outputs(result, outdir)
    for name, path in sorted(paths.items()):
        logger.info("wrote %s: %s", name, path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
