"""Within-sample correction for a gene-specific feature (GC content, length).

Follows the loess approach of Risso et al. (2011): in every sample the log
non-zero counts are regressed on the feature with lowess, the fitted trend
is removed and the sample's median log count is added back.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
from statsmodels.nonparametric.smoothers_lowess import lowess

from scnorm.errors import ConfigurationError


def correct_within_sample(
    counts: pd.DataFrame,
    feature: Sequence[float] | np.ndarray | pd.Series,
    *,
    frac: float = 0.3,
) -> pd.DataFrame:
    if isinstance(feature, pd.Series) and set(feature.index) == set(counts.index):
        feat = feature.reindex(counts.index).to_numpy(dtype=float)
    else:
        feat = np.asarray(feature, dtype=float).ravel()
    if feat.size != counts.shape[0]:
        raise ConfigurationError(
            f"Length of within_sample ({feat.size}) must match the number of genes "
            f"({counts.shape[0]})."
        )
    if not np.isfinite(feat).all():
        raise ConfigurationError("within_sample must be finite for every gene.")

    values = counts.to_numpy(dtype=float)
    out = values.copy()
    for j in range(values.shape[1]):
        col = values[:, j]
        nonzero = col > 0
        if int(nonzero.sum()) < 3:
            continue
        log_y = np.log(col[nonzero])
        fitted = lowess(log_y, feat[nonzero], frac=float(frac), return_sorted=False)
        out[nonzero, j] = np.exp(log_y - fitted + float(np.median(log_y)))
    return pd.DataFrame(out, index=counts.index, columns=counts.columns)
