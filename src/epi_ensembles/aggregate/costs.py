# src/epi_ensembles/aggregate/costs.py
"""
Split cost records into deterministic and stochastic components.

Closure-driven costs (closures, lost education) depend only on the policy and
how long it is active, so they are reduced to the median across samples.
Absence, mortality and life-year costs vary with the disease parameters and
keep their full distribution, summarised with the interval estimator.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import pandas as pd

from ..simulate.scenarios import BASELINE_POLICY
from .intervals import DEFAULT_WIDTHS, point_intervals, validate_widths, width_label
from .records import KEY_COLUMNS

# Start logger
logger = logging.getLogger(__name__)

DETERMINISTIC_COSTS = ("closures", "education")
SCENARIO_COLUMNS = ["policy", "window_start", "window_end"]
COST_BY = ("domain", "cost_type", "policy", "window_start", "window_end")
BREAKDOWN_COLUMNS = SCENARIO_COLUMNS + ["domain", "cost_type", "statistic", "value"]
TOTAL_DOMAIN = "total"


@dataclass
class CostBreakdown:
    deterministic: pd.DataFrame
    stochastic: pd.DataFrame
    totals: pd.DataFrame
    sample_totals: pd.DataFrame

    def to_records(self) -> pd.DataFrame:
        """(policy, window, domain, cost_type, statistic, value) rows for reporting."""
        frames = []
        if not self.deterministic.empty:
            frames.append(self.deterministic[BREAKDOWN_COLUMNS])
        for table, domain in ((self.stochastic, None), (self.totals, TOTAL_DOMAIN)):
            if table.empty:
                continue
            frames.append(_interval_rows(table, domain))
        if not frames:
            return pd.DataFrame(columns=BREAKDOWN_COLUMNS)
        return pd.concat(frames, ignore_index=True)[BREAKDOWN_COLUMNS]


def _interval_rows(table, domain=None):
    t = table.copy()
    if domain is not None:
        t["domain"] = domain
        t["cost_type"] = domain
    rows = [t.drop_duplicates(subset=SCENARIO_COLUMNS + ["domain", "cost_type"]).assign(statistic="median")
            .rename(columns={"median": "value"})[BREAKDOWN_COLUMNS]]
    for w, part in t.groupby("width", sort=True):
        label = width_label(w)
        for bound in ("lower", "upper"):
            rows.append(part.assign(statistic=f"{bound}_{label}").rename(columns={bound: "value"})[BREAKDOWN_COLUMNS])
    return pd.concat(rows, ignore_index=True)


class CostDecomposer:
    """Reduce cost records per (policy, window, domain, cost_type).

    Args:
        deterministic: cost types or domains treated as deterministic.
        exclude_domains: domains left out of this presentation, e.g.
            ``("life_years",)`` when costs are shown in money.
        floor: value reported for deterministic costs of scenarios with no
            active closure (zero-length window or the baseline policy).
        widths: interval widths for the stochastic components.
        baseline_policies: policy ids with no closures.
    """

    def __init__(
        self,
        deterministic: Iterable[str] = DETERMINISTIC_COSTS,
        exclude_domains: Iterable[str] = (),
        floor: float = 0.0,
        widths=DEFAULT_WIDTHS,
        baseline_policies: Optional[Sequence[str]] = None,
    ):
        self.deterministic = frozenset(deterministic)
        self.exclude_domains = frozenset(exclude_domains)
        self.floor = float(floor)
        self.widths = validate_widths(widths)
        self.baseline_policies = frozenset(baseline_policies if baseline_policies is not None else (BASELINE_POLICY,))

    def is_deterministic(self, records: pd.DataFrame) -> pd.Series:
        return records["cost_type"].isin(self.deterministic) | records["domain"].isin(self.deterministic)

    def no_active_closure(self, records: pd.DataFrame) -> pd.Series:
        duration = records["window_end"] - records["window_start"]
        return (duration == 0) | records["policy"].isin(self.baseline_policies)

    def filter(self, records: pd.DataFrame) -> pd.DataFrame:
        if not self.exclude_domains:
            return records
        return records[~records["domain"].isin(self.exclude_domains)]

    def deterministic_costs(self, records: pd.DataFrame) -> pd.DataFrame:
        det = records.copy()
        idle = self.no_active_closure(det)
        if idle.any():
            logger.debug("Setting %d closure cost records with no active closure to %g", int(idle.sum()), self.floor)
            det.loc[idle, "value"] = self.floor
        table = (
            det.groupby(SCENARIO_COLUMNS + ["domain", "cost_type"], sort=True)["value"]
            .median()
            .reset_index()
        )
        table["statistic"] = "median"
        return table[BREAKDOWN_COLUMNS]

    def sample_totals(self, records, deterministic_table, stochastic_records) -> pd.DataFrame:
        """Per-sample total cost: deterministic medians plus that sample's stochastic costs."""
        scenarios = records[KEY_COLUMNS].drop_duplicates()
        stoch_sum = stochastic_records.groupby(KEY_COLUMNS)["value"].sum().rename("stochastic").reset_index()
        det_sum = deterministic_table.groupby(SCENARIO_COLUMNS)["value"].sum().rename("deterministic").reset_index()

        out = scenarios.merge(stoch_sum, on=KEY_COLUMNS, how="left").merge(det_sum, on=SCENARIO_COLUMNS, how="left")
        out[["stochastic", "deterministic"]] = out[["stochastic", "deterministic"]].fillna(0.0)
        out["value"] = out["stochastic"] + out["deterministic"]
        return out.reset_index(drop=True)

    def decompose(self, records: pd.DataFrame) -> CostBreakdown:
        records = self.filter(records)
        mask = self.is_deterministic(records)
        det_records = records[mask]
        stoch_records = records[~mask]

        deterministic = self.deterministic_costs(det_records)
        if stoch_records.empty:
            stochastic = pd.DataFrame(columns=list(COST_BY) + ["width", "lower", "median", "upper", "n_samples", "degenerate"])
        else:
            stochastic = point_intervals(stoch_records, self.widths, by=COST_BY)

        if records.empty:
            sample_totals = pd.DataFrame(columns=KEY_COLUMNS + ["stochastic", "deterministic", "value"])
            totals = pd.DataFrame(columns=SCENARIO_COLUMNS + ["width", "lower", "median", "upper", "n_samples", "degenerate"])
        else:
            sample_totals = self.sample_totals(records, deterministic, stoch_records)
            totals = point_intervals(sample_totals, self.widths, by=SCENARIO_COLUMNS)

        logger.info(
            "Decomposed %d cost records: %d deterministic, %d stochastic",
            len(records), len(det_records), len(stoch_records),
        )
        return CostBreakdown(
            deterministic=deterministic,
            stochastic=stochastic,
            totals=totals,
            sample_totals=sample_totals,
        )
