import json

import pytest

from epi_ensembles.config import ExperimentConfig, parse_policy, parse_window
from epi_ensembles.errors import InvalidConfiguration
from epi_ensembles.simulate.scenarios import PolicyVariant, TimingWindow

EXAMPLE = {
    "region": "Pakistan",
    "horizon": 60,
    "sampler": {
        "n": 100,
        "seed": 42,
        "primary": {"name": "r0", "shape": [2, 5], "bounds": [1.2, 2.1]},
        "secondary": {
            "name": "severity",
            "shape": [2, 2],
            "bounds": [0.5, 1.5],
            "profile": [0.2, 1.0, 3.0],
            "groups": ["0-19", "20-59", "60+"],
        },
    },
    "policies": ["none", {"id": "school_closures", "intensities": [1, 0, 0], "label": "School closures"}],
    "windows": [[0, 60], {"start": 10, "end": 40}],
    "widths": [0.5, 0.95],
    "costs": {"exclude_domains": ["life_years"]},
    "report": {"group_labels": {"60+": "Older adults"}},
}


def test_defaults_are_valid():
    cfg = ExperimentConfig().validate()
    assert cfg.windows == [TimingWindow(0, 60)]
    assert [p.id for p in cfg.policies] == ["none"]
    assert cfg.widths == (0.5, 0.95)


def test_from_dict():
    cfg = ExperimentConfig.from_dict(EXAMPLE)
    assert cfg.region == "Pakistan"
    assert cfg.sampler.n == 100
    assert cfg.sampler.primary.bounds == (1.2, 2.1)
    assert cfg.sampler.secondary.profile == [0.2, 1.0, 3.0]
    assert cfg.policies[1] == PolicyVariant("school_closures", (1.0, 0.0, 0.0), label="School closures")
    assert cfg.windows == [TimingWindow(0, 60), TimingWindow(10, 40)]
    assert cfg.costs.exclude_domains == ("life_years",)
    assert cfg.report.group_labels == {"60+": "Older adults"}


def test_window_defaults_follow_horizon():
    cfg = ExperimentConfig.from_dict({"horizon": 90})
    assert cfg.windows == [TimingWindow(0, 90)]


def test_from_json(tmp_path):
    path = tmp_path / "experiment.json"
    path.write_text(json.dumps(EXAMPLE))
    assert ExperimentConfig.from_json(path).sampler.seed == 42

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(InvalidConfiguration):
        ExperimentConfig.from_json(bad)
    with pytest.raises(InvalidConfiguration):
        ExperimentConfig.from_json(tmp_path / "missing.json")


@pytest.mark.parametrize(
    "data",
    [
        {"horizon": 0},
        {"horizon": 30, "windows": [[0, 60]]},
        {"widths": [1.2]},
        {"sampler": {"n": 0}},
        {"sampler": {"primary": {"name": "r0", "bounds": [2.1, 1.2]}}},
        {"sampler": {"primary": {"name": "r0", "bounds": [1.2]}}},
        {"sampler": {"size": 10}},
        {"regions": "typo"},
        {"costs": {"floor": 0, "cap": 1}},
        {"report": []},
        [],
        # missing required keys and values of the wrong type
        {"sampler": {"primary": {"shape": [2, 5], "bounds": [1.2, 2.1]}}},
        {"sampler": {"primary": {"name": "r0", "shape": ["a", 5], "bounds": [1.2, 2.1]}}},
        {"sampler": {"primary": {"name": "r0", "shape": 2, "bounds": [1.2, 2.1]}}},
        {"sampler": {"secondary": {"name": "severity", "profile": ["high"]}}},
        {"sampler": {"n": "many"}},
        {"sampler": {"n": 2.5}},
        {"sampler": {"seed": -1}},
        {"sampler": {"seed": "abc"}},
        {"policies": [{"id": "x", "intensities": [1, "high"]}]},
        {"policies": [{"id": "x", "intensities": 3}]},
        {"policies": "none"},
        {"horizon": "60"},
        {"horizon": None},
        {"windows": [["a", 10]]},
        {"windows": "0-60"},
        {"widths": 0.5},
        {"widths": ["wide"]},
        {"costs": {"floor": "zero"}},
        {"costs": {"exclude_domains": "life_years"}},
    ],
)
def test_invalid_configurations(data):
    with pytest.raises(InvalidConfiguration):
        ExperimentConfig.from_dict(data)


def test_parse_policy_and_window():
    assert parse_policy("elimination") == PolicyVariant("elimination")
    assert parse_policy({"id": "status_quo", "baseline": True}).is_baseline
    with pytest.raises(InvalidConfiguration):
        parse_policy({"intensities": [1]})
    with pytest.raises(InvalidConfiguration):
        parse_policy(3)

    assert parse_window((5, 20)) == TimingWindow(5, 20)
    for bad in ["0,60", [1, 2, 3], {"start": 0}, {"start": 0, "end": 5, "step": 1}]:
        with pytest.raises(InvalidConfiguration):
            parse_window(bad)
