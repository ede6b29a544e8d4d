# src/epi_ensembles/export/reshape.py
"""
Reshape, relabel and export result tables.

Every wide-to-long conversion in the package goes through ``melt_measures`` so
that curves, totals and costs all come out with the same key columns.
Category orderings and display labels are supplied by the caller; a code with
no label in the mapping is passed through unchanged.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import InvalidConfiguration

# Start logger
logger = logging.getLogger(__name__)


def melt_measures(
    frame: pd.DataFrame,
    keys: Sequence[str],
    measures: Optional[Sequence[str]] = None,
    var_name: str = "measure",
    value_name: str = "value",
) -> pd.DataFrame:
    """Turn one column per measure into one row per (keys, measure).

    Parameters
    ----------
    frame :
        Wide table.
    keys :
        Columns that identify a row (they are repeated for every measure).
    measures :
        Columns holding values; defaults to every column not in ``keys``.
    var_name, value_name :
        Names of the measure and value columns in the output.
    """
    keys = list(keys)
    missing = [k for k in keys if k not in frame.columns]
    if missing:
        raise KeyError(f"Key columns not in table: {missing}")
    if measures is None:
        measures = [c for c in frame.columns if c not in keys]
    measures = list(measures)

    if not measures:
        return pd.DataFrame(columns=keys + [var_name, value_name])

    long = frame.melt(id_vars=keys, value_vars=measures, var_name=var_name, value_name=value_name)
    long[value_name] = pd.to_numeric(long[value_name], errors="coerce")
    return long


def order_categories(frame: pd.DataFrame, column: str, order: Sequence[str]) -> pd.DataFrame:
    """Make ``column`` an ordered categorical following ``order``.

    Values that are not part of ``order`` are kept, placed after the declared
    ones in the order they first appear.
    """
    out = frame.copy()
    present = pd.unique(out[column].dropna())
    declared = list(dict.fromkeys(order))
    extra = [v for v in present if v not in declared]
    if extra:
        logger.debug("Column %s has values outside the declared order: %s", column, extra)
    out[column] = pd.Categorical(out[column], categories=declared + extra, ordered=True)
    return out


def relabel(frame: pd.DataFrame, column: str, mapping: Mapping[str, str]) -> pd.DataFrame:
    """Replace codes in ``column`` by display labels; unmapped codes stay as they are."""
    out = frame.copy()
    if isinstance(out[column].dtype, pd.CategoricalDtype):
        cats = [mapping.get(c, c) for c in out[column].cat.categories]
        # labels can collide, so rebuild the categorical in declared order
        values = out[column].astype(object).map(lambda v: mapping.get(v, v) if pd.notna(v) else v)
        out[column] = pd.Categorical(values, categories=list(dict.fromkeys(cats)), ordered=out[column].cat.ordered)
    else:
        out[column] = out[column].map(lambda v: mapping.get(v, v) if pd.notna(v) else v)
    return out


def quantile_summary(
    records: pd.DataFrame,
    by: Sequence[str],
    quantiles: Sequence[float] = (0.25, 0.5, 0.75),
    decimals: Optional[int] = 2,
    value: str = "value",
) -> pd.DataFrame:
    """Rounded percentile columns (``p25``, ``p50``, ...) per group.

    A coarser alternative to the interval tables, computed from the same
    long-format records.
    """
    qs = [float(q) for q in quantiles]
    if not qs or any(not 0.0 <= q <= 1.0 for q in qs):
        raise InvalidConfiguration(f"Quantiles must lie in [0, 1], got {list(quantiles)}")

    by = list(by)
    grouped = records.dropna(subset=[value]).groupby(by, dropna=False, sort=True, observed=True)[value]
    aggs = {percentile_name(q): (lambda s, q=q: s.quantile(q)) for q in qs}
    table = grouped.agg(n_samples="size", **aggs).reset_index()
    if decimals is not None:
        table[list(aggs)] = table[list(aggs)].round(decimals)
    return table


def percentile_name(q: float) -> str:
    pct = 100.0 * float(q)
    return f"p{int(round(pct))}" if np.isclose(pct, round(pct)) else f"p{pct:g}".replace(".", "_")


def export_table(frame: pd.DataFrame, path, index: bool = False) -> Path:
    """Write a flat CSV, creating parent folders as needed."""
    csv_path = Path(path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(csv_path, index=index)
    logger.info("CSV written to: %s (%d rows)", csv_path, len(frame))
    return csv_path


@dataclass
class DataReshaper:
    """Caller-declared display labels and category orders for report tables."""

    policy_labels: Dict[str, str] = field(default_factory=dict)
    group_labels: Dict[str, str] = field(default_factory=dict)
    policy_order: Sequence[str] = ()
    group_order: Sequence[str] = ()
    policy_column: str = "policy"
    group_column: str = "group"

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Order, then relabel, whichever of the policy/group columns are present.

        Ordering is declared on codes, so it happens before relabelling; the
        labelled categorical keeps the same order.
        """
        out = frame
        for column, order, labels in (
            (self.policy_column, self.policy_order, self.policy_labels),
            (self.group_column, self.group_order, self.group_labels),
        ):
            if column not in out.columns:
                continue
            if order:
                out = order_categories(out, column, order)
            if labels:
                out = relabel(out, column, labels)
        return out

    def summary(self, records, by=None, quantiles=(0.25, 0.5, 0.75), decimals=2):
        if by is None:
            by = [c for c in (self.policy_column, "measure", self.group_column) if c in records.columns]
        return self.apply(quantile_summary(records, by=by, quantiles=quantiles, decimals=decimals))
