"""Boundary adapter turning supported input containers into a plain `CountData`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd
import scipy.sparse as sp
from anndata import AnnData

from scnorm.core.types import CountData
from scnorm.errors import DataValidationError
from scnorm.validation import validate_conditions


@dataclass(frozen=True)
class MatrixInput:
    """Genes x samples count table with explicit row and column names."""

    counts: pd.DataFrame
    conditions: Sequence[Any] | pd.Series | None = None
    spike_ins: tuple[Any, ...] = ()


@dataclass(frozen=True)
class AnnDataInput:
    """Cells x genes AnnData; conditions and spike-ins come from `obs` / `var`."""

    adata: AnnData
    condition_key: str | None = None
    layer: str | None = None
    spike_key: str | None = None


def _dense(matrix: Any) -> np.ndarray:
    if sp.issparse(matrix):
        return np.asarray(matrix.toarray())
    return np.asarray(matrix)


def _conditions_series(conditions: Any, columns: pd.Index) -> pd.Series:
    validate_conditions(conditions, len(columns))
    if isinstance(conditions, pd.Series) and set(conditions.index) == set(columns):
        return conditions.reindex(columns).rename("condition")
    return pd.Series(list(conditions), index=columns, name="condition")


def _from_matrix(inp: MatrixInput, spike_ins: Iterable[Any] | None) -> CountData:
    counts = inp.counts
    conditions = _conditions_series(inp.conditions, counts.columns)
    spikes = tuple(spike_ins) if spike_ins is not None else tuple(inp.spike_ins)
    return CountData(counts=counts, conditions=conditions, spike_ins=spikes)


def _from_anndata(inp: AnnDataInput, conditions: Any, spike_ins: Iterable[Any] | None) -> CountData:
    adata = inp.adata
    if inp.layer is not None:
        if inp.layer not in adata.layers:
            raise DataValidationError(f"adata.layers['{inp.layer}'] not found.")
        matrix = adata.layers[inp.layer]
    else:
        matrix = adata.X
    counts = pd.DataFrame(
        _dense(matrix).T,
        index=pd.Index(adata.var_names, name=None),
        columns=pd.Index(adata.obs_names, name=None),
    )

    if conditions is None and inp.condition_key is not None:
        if inp.condition_key not in adata.obs.columns:
            raise DataValidationError(f"adata.obs['{inp.condition_key}'] not found.")
        conditions = adata.obs[inp.condition_key].astype(object).to_numpy()

    if spike_ins is None and inp.spike_key is not None:
        if inp.spike_key not in adata.var.columns:
            raise DataValidationError(f"adata.var['{inp.spike_key}'] not found.")
        mask = adata.var[inp.spike_key].to_numpy(dtype=bool)
        spike_ins = adata.var_names[mask].tolist()

    return CountData(
        counts=counts,
        conditions=_conditions_series(conditions, counts.columns),
        spike_ins=tuple(spike_ins) if spike_ins is not None else (),
    )


def to_count_data(
    data: Any,
    conditions: Any = None,
    *,
    spike_ins: Iterable[Any] | None = None,
    gene_names: Sequence[Any] | None = None,
    sample_names: Sequence[Any] | None = None,
) -> CountData:
    """Normalize every supported input shape into `CountData`.

    Accepted: `MatrixInput`, `AnnDataInput`, a genes x samples `DataFrame`,
    a bare `AnnData` (with `conditions` as an `obs` column name or a
    sequence), or a 2-D array / sparse matrix together with `gene_names` and
    `sample_names`.
    """
    if isinstance(data, CountData):
        return data
    if isinstance(data, AnnData):
        if isinstance(conditions, str):
            data, conditions = AnnDataInput(data, condition_key=conditions), None
        else:
            data = AnnDataInput(data)
    if isinstance(data, AnnDataInput):
        return _from_anndata(data, conditions, spike_ins)

    if isinstance(data, pd.DataFrame):
        data = MatrixInput(counts=data, conditions=conditions)
    elif isinstance(data, np.ndarray) or sp.issparse(data):
        arr = _dense(data)
        if arr.ndim != 2:
            raise DataValidationError(f"Count matrix must be 2-D, got shape {arr.shape}.")
        if gene_names is None:
            raise DataValidationError("Must supply gene/row names for an unnamed matrix.")
        if sample_names is None:
            raise DataValidationError("Must supply sample/cell names for an unnamed matrix.")
        data = MatrixInput(
            counts=pd.DataFrame(arr, index=list(gene_names), columns=list(sample_names)),
            conditions=conditions,
        )
    if isinstance(data, MatrixInput):
        if conditions is not None and data.conditions is None:
            data = MatrixInput(data.counts, conditions, data.spike_ins)
        return _from_matrix(data, spike_ins)

    raise DataValidationError(
        f"Unsupported input type {type(data).__name__}; pass a DataFrame, AnnData, "
        "MatrixInput, AnnDataInput or a named 2-D array."
    )
