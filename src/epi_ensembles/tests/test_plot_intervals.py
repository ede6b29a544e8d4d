import pandas as pd
import pytest

from epi_ensembles.export.plot_intervals import band_alpha, band_groups, load_interval_csv, plot_curve_bands


def make_table():
    rows = []
    for policy in ("none", "elimination"):
        for t in range(5):
            for w, spread in ((0.5, 1.0), (0.95, 3.0)):
                rows.append({
                    "time": t, "measure": "cases", "policy": policy, "width": w,
                    "lower": 10.0 - spread, "median": 10.0, "upper": 10.0 + spread,
                })
    return pd.DataFrame(rows)


def test_band_alpha_narrowest_darkest():
    assert band_alpha(0, 1) == 0.35
    assert band_alpha(0, 2) > band_alpha(1, 2)


def test_plot_curve_bands_saves_png(tmp_path):
    path = plot_curve_bands(make_table(), "cases", save_path=tmp_path / "figs" / "cases.png", capacity=12.0)
    assert path.exists()
    assert path.stat().st_size > 0


def test_plot_curve_bands_unknown_measure(tmp_path):
    with pytest.raises(ValueError):
        plot_curve_bands(make_table(), "deaths", save_path=tmp_path / "deaths.png")


def test_load_interval_csv_checks_columns(tmp_path):
    good = tmp_path / "bands.csv"
    make_table().to_csv(good, index=False)
    assert len(load_interval_csv(good)) == 20

    bad = tmp_path / "bad.csv"
    pd.DataFrame({"time": [0], "value": [1.0]}).to_csv(bad, index=False)
    with pytest.raises(ValueError):
        load_interval_csv(bad)


def make_window_table():
    """Same policy under a full-horizon and a zero-length closure window."""
    frames = []
    for start, end, level in ((0, 4, 10.0), (0, 0, 50.0)):
        t = make_table()
        t["window_start"] = start
        t["window_end"] = end
        t[["lower", "median", "upper"]] += level
        frames.append(t)
    return pd.concat(frames, ignore_index=True)


def test_band_groups_split_timing_windows():
    table = make_window_table()
    groups = list(band_groups(table, "none"))
    assert [label for label, _ in groups] == ["[0, 0]", "[0, 4]"]
    for _, rows in groups:
        # one row per (time, width) within a window, never two interleaved windows
        assert not rows.duplicated(subset=["time", "width"]).any()
        assert rows[["window_start", "window_end"]].drop_duplicates().shape[0] == 1

    single = list(band_groups(make_table(), "none"))
    assert len(single) == 1 and single[0][0] is None
    assert list(band_groups(table, "no_such_policy")) == []


def test_plot_curve_bands_with_several_windows(tmp_path):
    path = plot_curve_bands(make_window_table(), "cases", save_path=tmp_path / "windows.png")
    assert path.exists()
