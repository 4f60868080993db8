import logging

import numpy as np
import pandas as pd

from .errors import ConfigurationError, DataShapeError
from .models import AggregatedDataset, AggregatedPoint

logger = logging.getLogger(__name__)

DEFAULT_TRIM_TRAILING_ROWS = 2

def aggregate(table: pd.DataFrame, trim_trailing_rows: int = DEFAULT_TRIM_TRAILING_ROWS,
              source: str = None) -> AggregatedDataset:
    """
    Collapse a replicate table into one (concentration, mean, std) point per row.

    Column 0 holds the concentration, every other column is one replicate.
    The last `trim_trailing_rows` rows are dropped first: source files end
    with duplicate zero-concentration control rows that cannot be fitted.
    """
    if trim_trailing_rows < 0:
        raise ConfigurationError(f"trim_trailing_rows must be >= 0 (got {trim_trailing_rows}).")
    if table.shape[1] < 2:
        raise DataShapeError(
            f"Need a concentration column and at least one replicate column, got {table.shape[1]} column(s).",
            source=source,
        )

    # Clamp at zero: a negative slice end would keep the leading rows
    used = table.iloc[:max(len(table) - trim_trailing_rows, 0)]
    logger.debug("Trimmed %d trailing row(s), %d row(s) left", len(table) - len(used), len(used))
    if used.empty:
        raise DataShapeError("No data rows left after trimming trailing rows.", source=source)

    label = str(table.columns[0])
    # Rename column 0 so it can be addressed the same way whatever the header says
    frame = used.rename(columns={table.columns[0]: "concentration"})
    numeric = frame.apply(pd.to_numeric, errors="coerce")
    if numeric.isna().any().any():
        bad_rows = numeric.index[numeric.isna().any(axis=1)].tolist()
        raise DataShapeError(f"Missing or non-numeric values in rows {bad_rows}.", source=source)

    conc = numeric["concentration"].to_numpy(dtype=float)
    if np.any(conc <= 0):
        bad = conc[conc <= 0].tolist()
        raise DataShapeError(
            f"Concentrations must be strictly positive, found {bad}. "
            "Increase trim_trailing_rows if the table ends with control rows.",
            source=source,
        )

    replicates = numeric.drop(columns="concentration")
    n_replicates = replicates.shape[1]
    means = replicates.mean(axis=1).to_numpy()
    if n_replicates >= 2:
        stds = replicates.std(axis=1, ddof=1).to_numpy()
    else:
        stds = [None] * len(means)

    points = [
        AggregatedPoint(concentration=c, mean=m, std=None if s is None else float(s))
        for c, m, s in zip(conc, means, stds)
    ]
    return AggregatedDataset(points=points, n_replicates=n_replicates, concentration_label=label)
