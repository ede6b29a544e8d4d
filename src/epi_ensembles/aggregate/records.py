# src/epi_ensembles/aggregate/records.py
"""Flatten an EnsembleResult into long-format ResultRecord tables.

Three tables come out, all sharing the scenario key columns
``sample, policy, window_start, window_end``:

- curves : one row per (key, time, measure)
- totals : one row per (key, measure, group); group is None for overall totals
- costs  : one row per (key, domain, cost_type)
"""

from typing import Optional, Sequence

import pandas as pd

from ..export.reshape import melt_measures

KEY_COLUMNS = ["sample", "policy", "window_start", "window_end"]
CURVE_COLUMNS = KEY_COLUMNS + ["time", "measure", "value"]
TOTAL_COLUMNS = KEY_COLUMNS + ["measure", "group", "value"]
COST_COLUMNS = KEY_COLUMNS + ["domain", "cost_type", "value"]


def key_fields(key):
    return {
        "sample": key.sample,
        "policy": key.policy,
        "window_start": key.window.start,
        "window_end": key.window.end,
    }


def curve_records(result, measures: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Time series of every run in long format.

    Runs of different length simply contribute fewer rows; nothing is padded.
    """
    frames = []
    for key, run in result.runs.items():
        ts = run.timeseries
        if ts.empty:
            continue
        cols = run.measures if measures is None else [m for m in measures if m in ts.columns]
        if not cols:
            continue
        wide = ts[["time"] + cols].copy()
        for name, value in key_fields(key).items():
            wide[name] = value
        frames.append(melt_measures(wide, keys=KEY_COLUMNS + ["time"], measures=cols))

    if not frames:
        return pd.DataFrame(columns=CURVE_COLUMNS)
    long = pd.concat(frames, ignore_index=True)
    return long.dropna(subset=["value"])[CURVE_COLUMNS].reset_index(drop=True)


def total_records(result, measures: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Overall and per-group totals in long format."""
    rows = []
    for key, run in result.runs.items():
        base = key_fields(key)
        if run.totals:
            rows.append({**base, "group": None, **run.totals})
        by_group = {}
        for measure, groups in run.group_totals.items():
            for group, value in groups.items():
                by_group.setdefault(group, {})[measure] = value
        for group, values in by_group.items():
            rows.append({**base, "group": group, **values})

    if not rows:
        return pd.DataFrame(columns=TOTAL_COLUMNS)
    wide = pd.DataFrame(rows)
    if measures is not None:
        measures = [m for m in measures if m in wide.columns]
    long = melt_measures(wide, keys=KEY_COLUMNS + ["group"], measures=measures)
    # not every measure is reported both overall and by group
    long = long.dropna(subset=["value"])
    long["group"] = long["group"].astype(object).where(long["group"].notna(), None)
    return long[TOTAL_COLUMNS].reset_index(drop=True)


def cost_records(result) -> pd.DataFrame:
    rows = []
    for key, run in result.runs.items():
        base = key_fields(key)
        for (domain, cost_type), value in run.costs.items():
            rows.append({**base, "domain": domain, "cost_type": cost_type, "value": value})
    if not rows:
        return pd.DataFrame(columns=COST_COLUMNS)
    return pd.DataFrame(rows, columns=COST_COLUMNS)
