import pandas as pd
import pytest

from epi_ensembles.aggregate.costs import BREAKDOWN_COLUMNS, CostDecomposer
from epi_ensembles.aggregate.records import COST_COLUMNS, cost_records
from epi_ensembles.simulate.ensemble_runner import ScenarioEnsembleRunner
from epi_ensembles.simulate.scenarios import TimingWindow

import fake_simulator


def cost_rows(policy, window, values_by_pair):
    rows = []
    for (domain, cost_type), values in values_by_pair.items():
        for i, v in enumerate(values, start=1):
            rows.append(
                {
                    "sample": f"sample_{i}",
                    "policy": policy,
                    "window_start": window[0],
                    "window_end": window[1],
                    "domain": domain,
                    "cost_type": cost_type,
                    "value": v,
                }
            )
    return pd.DataFrame(rows, columns=COST_COLUMNS)


def test_zero_duration_window_floors_closure_costs():
    records = cost_rows(
        "elimination",
        (30, 30),
        {("economic", "closures"): [120.0, 80.0, 95.0], ("economic", "absences"): [1.0, 2.0, 3.0]},
    )
    breakdown = CostDecomposer().decompose(records)
    det = breakdown.deterministic
    assert len(det) == 1
    assert det["value"].iloc[0] == 0.0

    floored = CostDecomposer(floor=5.0).decompose(records).deterministic
    assert floored["value"].iloc[0] == 5.0


def test_baseline_policy_floors_closure_costs():
    records = cost_rows("none", (0, 60), {("education", "total"): [10.0, 12.0]})
    det = CostDecomposer().decompose(records).deterministic
    assert det["value"].iloc[0] == 0.0
    # a custom baseline id is honoured too
    records = cost_rows("status_quo", (0, 60), {("education", "total"): [10.0, 12.0]})
    assert CostDecomposer().decompose(records).deterministic["value"].iloc[0] == 11.0
    assert (
        CostDecomposer(baseline_policies=["status_quo"]).decompose(records).deterministic["value"].iloc[0] == 0.0
    )


def test_deterministic_costs_take_the_median():
    records = cost_rows("school_closures", (0, 60), {("economic", "closures"): [100.0, 300.0, 200.0, 900.0]})
    det = CostDecomposer().decompose(records).deterministic
    assert list(det.columns) == BREAKDOWN_COLUMNS
    assert det["statistic"].iloc[0] == "median"
    assert det["value"].iloc[0] == 250.0


def test_stochastic_costs_keep_intervals():
    records = cost_rows(
        "school_closures",
        (0, 60),
        {("health", "mortality"): [float(v) for v in range(101)], ("economic", "closures"): [50.0] * 101},
    )
    breakdown = CostDecomposer(widths=(0.5,)).decompose(records)
    stoch = breakdown.stochastic
    assert set(stoch["domain"]) == {"health"}
    row = stoch.iloc[0]
    assert row["lower"] == pytest.approx(25.0)
    assert row["median"] == pytest.approx(50.0)
    assert row["upper"] == pytest.approx(75.0)

    # every sample total is its mortality cost plus the closure median
    totals = breakdown.sample_totals.sort_values("value")
    assert totals["value"].iloc[0] == 50.0
    assert totals["value"].iloc[-1] == 150.0
    assert (totals["deterministic"] == 50.0).all()
    assert breakdown.totals.iloc[0]["median"] == pytest.approx(100.0)


def test_excluded_domains_are_dropped():
    records = cost_rows(
        "school_closures",
        (0, 60),
        {("health", "mortality"): [1.0, 2.0], ("life_years", "mortality"): [10.0, 20.0]},
    )
    breakdown = CostDecomposer(exclude_domains=["life_years"]).decompose(records)
    assert set(breakdown.stochastic["domain"]) == {"health"}
    assert breakdown.sample_totals["value"].max() == 2.0


def test_domain_can_be_declared_deterministic():
    records = cost_rows("school_closures", (0, 60), {("education", "total"): [4.0, 6.0, 8.0]})
    breakdown = CostDecomposer().decompose(records)
    assert breakdown.stochastic.empty
    assert breakdown.deterministic["value"].iloc[0] == 6.0


def test_to_records_statistics(samples, policies):
    windows = [TimingWindow(0, 60), TimingWindow(20, 20)]
    result = ScenarioEnsembleRunner(fake_simulator.simulate, "X", 60).run(samples, policies, windows)
    breakdown = CostDecomposer().decompose(cost_records(result))
    table = breakdown.to_records()

    assert list(table.columns) == BREAKDOWN_COLUMNS
    assert set(table["statistic"]) == {"median", "lower_50", "upper_50", "lower_95", "upper_95"}
    assert "total" in set(table["domain"])

    closures = table[(table["cost_type"] == "closures") & (table["window_start"] == 20)]
    assert (closures["value"] == 0.0).all()
    full = table[
        (table["cost_type"] == "closures") & (table["window_start"] == 0) & (table["policy"] == "elimination")
    ]
    assert full["value"].iloc[0] == pytest.approx(100.0 * 60 * 1.0)

    totals = table[(table["domain"] == "total") & (table["policy"] == "elimination") & (table["window_start"] == 0)]
    stat = totals.set_index("statistic")["value"]
    assert stat["lower_95"] <= stat["lower_50"] <= stat["median"] <= stat["upper_50"] <= stat["upper_95"]
