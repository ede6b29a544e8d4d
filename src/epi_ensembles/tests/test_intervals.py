import numpy as np
import pandas as pd
import pytest

from epi_ensembles.aggregate.intervals import (
    INTERVAL_COLUMNS,
    ResultAggregator,
    curve_intervals,
    point_intervals,
    quantile_bounds,
    validate_widths,
    widen_intervals,
    width_label,
)
from epi_ensembles.errors import AggregationDegenerate, InvalidConfiguration


def make_curve_records(values_by_time, policy="none", measure="cases"):
    rows = []
    for t, values in values_by_time.items():
        for i, v in enumerate(values, start=1):
            rows.append({"sample": f"sample_{i}", "policy": policy, "time": t, "measure": measure, "value": v})
    return pd.DataFrame(rows)


def test_quantile_bounds():
    assert quantile_bounds(0.5) == (0.25, 0.75)
    lo, hi = quantile_bounds(0.95)
    assert lo == pytest.approx(0.025)
    assert hi == pytest.approx(0.975)


def test_known_linear_quantiles():
    records = make_curve_records({0: list(range(101))})
    table = curve_intervals(records, widths=(0.5, 0.95))

    assert list(table.columns) == ["time", "measure", "policy"] + INTERVAL_COLUMNS
    half = table[table["width"] == 0.5].iloc[0]
    wide = table[table["width"] == 0.95].iloc[0]
    assert half["lower"] == pytest.approx(25.0)
    assert half["upper"] == pytest.approx(75.0)
    assert wide["lower"] == pytest.approx(2.5)
    assert wide["upper"] == pytest.approx(97.5)
    assert half["median"] == pytest.approx(50.0)
    assert half["n_samples"] == 101
    assert not half["degenerate"]


def test_monotone_and_nested_for_every_group():
    rng = np.random.default_rng(0)
    records = pd.concat(
        [
            make_curve_records({t: rng.gamma(2.0, 3.0, size=40) for t in range(10)}, policy=p, measure=m)
            for p in ("none", "elimination")
            for m in ("cases", "deaths")
        ],
        ignore_index=True,
    )
    table = curve_intervals(records, widths=(0.5, 0.8, 0.95))

    assert np.all(table["lower"] <= table["median"])
    assert np.all(table["median"] <= table["upper"])

    wide = widen_intervals(table)
    assert len(wide) == 10 * 2 * 2
    assert np.all(wide["lower_95"] <= wide["lower_50"])
    assert np.all(wide["upper_95"] >= wide["upper_50"])
    assert np.all(wide["lower_80"] <= wide["lower_50"])


def test_degenerate_group_collapses_with_warning():
    records = make_curve_records({0: [4.0] * 12, 1: [1.0, 2.0, 3.0]})
    with pytest.warns(AggregationDegenerate):
        table = curve_intervals(records, widths=(0.5, 0.95))

    flat = table[table["time"] == 0]
    assert len(flat) == 2
    assert (flat["lower"] == 4.0).all()
    assert (flat["upper"] == 4.0).all()
    assert (flat["median"] == 4.0).all()
    assert flat["degenerate"].all()
    assert not table[table["time"] == 1]["degenerate"].any()


def test_single_sample_group_is_degenerate():
    records = make_curve_records({0: [7.5]})
    with pytest.warns(AggregationDegenerate):
        table = curve_intervals(records)
    assert (table["lower"] == 7.5).all() and (table["upper"] == 7.5).all()


def test_missing_time_points_use_reporting_samples_only():
    records = make_curve_records({0: [1.0, 2.0, 3.0, 4.0], 1: [10.0, 20.0]})
    gap = pd.DataFrame([{"sample": "sample_3", "policy": "none", "time": 1, "measure": "cases", "value": np.nan}])
    records = pd.concat([records, gap], ignore_index=True)
    table = curve_intervals(records, widths=(0.5,))

    t1 = table[table["time"] == 1].iloc[0]
    assert t1["n_samples"] == 2
    assert t1["lower"] == pytest.approx(12.5)
    assert t1["upper"] == pytest.approx(17.5)
    assert table[table["time"] == 0].iloc[0]["n_samples"] == 4


def test_point_intervals_keep_missing_group():
    records = pd.DataFrame(
        {
            "sample": ["s1", "s2", "s3", "s1", "s2", "s3"],
            "policy": ["none"] * 6,
            "measure": ["deaths"] * 6,
            "group": [None, None, None, "60+", "60+", "60+"],
            "value": [10.0, 20.0, 30.0, 5.0, 6.0, 7.0],
        }
    )
    table = point_intervals(records, widths=(0.5,))
    assert len(table) == 2
    overall = table[table["group"].isna()].iloc[0]
    older = table[table["group"] == "60+"].iloc[0]
    assert overall["median"] == 20.0
    assert overall["lower"] == pytest.approx(15.0)
    assert older["upper"] == pytest.approx(6.5)


def test_point_intervals_separate_windows():
    records = pd.DataFrame(
        {
            "policy": ["p"] * 4,
            "window_start": [0, 0, 10, 10],
            "window_end": [30, 30, 30, 30],
            "measure": ["cases"] * 4,
            "value": [1.0, 3.0, 100.0, 300.0],
        }
    )
    table = point_intervals(records, widths=(0.95,))
    assert len(table) == 2
    assert table.set_index("window_start").loc[10, "median"] == 200.0


@pytest.mark.parametrize("widths", [(0.0,), (1.0,), (1.5,), (-0.2,), ()])
def test_invalid_widths(widths):
    with pytest.raises(InvalidConfiguration):
        validate_widths(widths)


def test_widths_are_independent_and_deduplicated():
    assert validate_widths([0.95, 0.5, 0.95]) == [0.95, 0.5]
    records = make_curve_records({0: [1.0, 5.0, 9.0]})
    both = curve_intervals(records, widths=(0.5, 0.95))
    only_half = curve_intervals(records, widths=(0.5,))
    pd.testing.assert_frame_equal(
        both[both["width"] == 0.5].reset_index(drop=True), only_half.reset_index(drop=True)
    )


def test_width_label():
    assert width_label(0.5) == "50"
    assert width_label(0.95) == "95"
    assert width_label(0.975) == "97_5"


def test_result_aggregator_wraps_both_operations():
    agg = ResultAggregator(widths=(0.9,))
    curves = make_curve_records({0: [1.0, 2.0], 1: [3.0, 5.0]})
    assert set(agg.curve_intervals(curves)["width"]) == {0.9}
    totals = curves.groupby(["sample", "policy", "measure"], as_index=False)["value"].sum()
    point = agg.point_intervals(totals)
    assert list(point.columns) == ["measure", "policy"] + INTERVAL_COLUMNS
    assert point.iloc[0]["lower"] < point.iloc[0]["upper"]
