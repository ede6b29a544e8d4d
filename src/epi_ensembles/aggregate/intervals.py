# src/epi_ensembles/aggregate/intervals.py
"""
Empirical credible intervals over the sample dimension.

For a width w the interval is [Q((1 - w) / 2), Q(1 - (1 - w) / 2)] where Q is
the linear-interpolation quantile of the values that share a grouping key.
Every width is computed independently from the same grouped values and
returned as its own row, so 50% and 95% bands come from one call.

Groups with fewer than two distinct values collapse to that value and are
flagged ``degenerate``; an AggregationDegenerate warning is emitted, never an
exception.
"""

import logging
import warnings
from typing import Iterable, List, Sequence

import numpy as np
import pandas as pd

from ..errors import AggregationDegenerate, InvalidConfiguration

# Start logger
logger = logging.getLogger(__name__)

DEFAULT_WIDTHS = (0.5, 0.95)
CURVE_BY = ("policy", "window_start", "window_end")
POINT_BY = ("measure", "group", "policy", "window_start", "window_end")
INTERVAL_COLUMNS = ["width", "lower", "median", "upper", "n_samples", "degenerate"]

# Stand-in for missing key values while grouping
_MISSING = "__missing__"


def validate_widths(widths: Iterable[float]) -> List[float]:
    out = []
    for w in widths:
        try:
            w = float(w)
        except (TypeError, ValueError) as exc:
            raise InvalidConfiguration(f"Interval widths must be numbers, got {w!r}") from exc
        if not 0.0 < w < 1.0:
            raise InvalidConfiguration(f"Interval widths must lie in (0, 1), got {w}")
        if w not in out:
            out.append(w)
    if not out:
        raise InvalidConfiguration("At least one interval width is required")
    return out


def quantile_bounds(width: float):
    """Lower and upper quantile levels for a central interval of ``width``."""
    tail = (1.0 - width) / 2.0
    return tail, 1.0 - tail


def width_label(width: float) -> str:
    pct = 100.0 * float(width)
    return str(int(round(pct))) if np.isclose(pct, round(pct)) else f"{pct:g}".replace(".", "_")


def interval_table(
    records: pd.DataFrame,
    keys: Sequence[str],
    widths: Iterable[float] = DEFAULT_WIDTHS,
    value: str = "value",
) -> pd.DataFrame:
    """Interval rows per (keys, width) over whatever values each group holds.

    Rows whose value is missing are dropped first, so a time point reported by
    only some samples is summarised over just those samples.
    """
    widths = validate_widths(widths)
    keys = list(keys)
    missing = [k for k in keys + [value] if k not in records.columns]
    if missing:
        raise KeyError(f"Columns not in records: {missing}")

    data = records.dropna(subset=[value])
    if data.empty:
        return pd.DataFrame(columns=keys + INTERVAL_COLUMNS)

    # None/NaN keys (e.g. the overall "group") must survive grouping
    data = data.copy()
    filled = []
    for k in keys:
        if data[k].isna().any():
            data[k] = data[k].astype(object).where(data[k].notna(), _MISSING)
            filled.append(k)

    grouped = data.groupby(keys, sort=True, observed=True)[value]
    stats = grouped.agg(n_samples="size", n_distinct="nunique", median="median")
    for i, w in enumerate(widths):
        lo_q, hi_q = quantile_bounds(w)
        stats[f"lower_{i}"] = grouped.quantile(lo_q)
        stats[f"upper_{i}"] = grouped.quantile(hi_q)
    stats = stats.reset_index()

    frames = []
    for i, w in enumerate(widths):
        part = stats[keys + ["median", "n_samples", "n_distinct"]].copy()
        part["width"] = w
        part["lower"] = stats[f"lower_{i}"]
        part["upper"] = stats[f"upper_{i}"]
        frames.append(part)
    table = pd.concat(frames, ignore_index=True)

    degenerate = table["n_distinct"] < 2
    table.loc[degenerate, "lower"] = table.loc[degenerate, "median"]
    table.loc[degenerate, "upper"] = table.loc[degenerate, "median"]
    table["degenerate"] = degenerate

    for k in filled:
        table[k] = table[k].where(table[k] != _MISSING, None)

    n_degenerate = int(degenerate.sum()) // len(widths)
    if n_degenerate:
        logger.info("%d of %d groups collapsed to a single value", n_degenerate, len(stats))
        warnings.warn(
            f"{n_degenerate} of {len(stats)} groups have fewer than two distinct values; "
            "their intervals are degenerate",
            AggregationDegenerate,
            stacklevel=2,
        )

    table = table.sort_values(keys + ["width"], kind="stable", key=_sort_key).reset_index(drop=True)
    return table[keys + INTERVAL_COLUMNS]


def _sort_key(col):
    # object columns may mix None and strings; None sorts first
    if col.dtype == object:
        return col.map(lambda v: "" if pd.isna(v) else str(v))
    return col


def _present(records, columns):
    return [c for c in columns if c in records.columns]


def curve_intervals(records, widths=DEFAULT_WIDTHS, by=CURVE_BY, value="value") -> pd.DataFrame:
    """Credible bands per (time, measure, *by) for long-format curve records."""
    keys = ["time", "measure"] + [c for c in _present(records, by) if c not in ("time", "measure")]
    return interval_table(records, keys, widths, value=value)


def point_intervals(records, widths=DEFAULT_WIDTHS, by=POINT_BY, value="value") -> pd.DataFrame:
    """Credible intervals per key for per-sample scalar totals or costs."""
    keys = _present(records, by)
    if not keys:
        raise InvalidConfiguration(f"None of the grouping columns {list(by)} are in the records")
    return interval_table(records, keys, widths, value=value)


def widen_intervals(table: pd.DataFrame) -> pd.DataFrame:
    """One row per key with ``lower_<w>`` / ``upper_<w>`` columns for each width."""
    keys = [c for c in table.columns if c not in INTERVAL_COLUMNS]
    base = table.drop_duplicates(subset=keys)[keys + ["median", "n_samples", "degenerate"]]
    for w, part in table.groupby("width", sort=True):
        label = width_label(w)
        bounds = part[keys + ["lower", "upper"]].rename(
            columns={"lower": f"lower_{label}", "upper": f"upper_{label}"}
        )
        base = base.merge(bounds, on=keys, how="left")
    return base.reset_index(drop=True)


class ResultAggregator:
    """Curve and point interval computation at a fixed set of widths."""

    def __init__(self, widths=DEFAULT_WIDTHS):
        self.widths = validate_widths(widths)

    def curve_intervals(self, records, by=CURVE_BY):
        return curve_intervals(records, self.widths, by=by)

    def point_intervals(self, records, by=POINT_BY):
        return point_intervals(records, self.widths, by=by)
