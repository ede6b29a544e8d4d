# src/epi_ensembles/config.py
"""
Experiment configuration.

An experiment is described by a JSON file, e.g.

    {
      "region": "Pakistan",
      "horizon": 60,
      "sampler": {"n": 100, "seed": 42,
                  "primary": {"name": "r0", "shape": [2, 5], "bounds": [1.2, 2.1]},
                  "secondary": {"name": "severity", "shape": [2, 2], "bounds": [0.5, 1.5],
                                "profile": [0.2, 0.5, 1.0, 2.3], "groups": ["0-19", "20-39", "40-59", "60+"]}},
      "policies": ["none", {"id": "school_closures", "intensities": [1, 0, 0]}],
      "windows": [[0, 60]],
      "widths": [0.5, 0.95]
    }

Missing sections fall back to the dataclass defaults.
"""

import dataclasses
import json
import logging
import numbers
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .aggregate.costs import DETERMINISTIC_COSTS
from .aggregate.intervals import DEFAULT_WIDTHS, validate_widths
from .errors import InvalidConfiguration
from .sample.draw_parameters import FieldSpec, ParameterSampler, SamplerConfig
from .simulate.scenarios import PolicyVariant, TimingWindow

# Start logger
logger = logging.getLogger(__name__)


@dataclass
class CostConfig:
    deterministic: Tuple[str, ...] = DETERMINISTIC_COSTS
    exclude_domains: Tuple[str, ...] = ()
    floor: float = 0.0


@dataclass
class ReportConfig:
    policy_labels: Dict[str, str] = field(default_factory=dict)
    group_labels: Dict[str, str] = field(default_factory=dict)
    policy_order: List[str] = field(default_factory=list)
    group_order: List[str] = field(default_factory=list)
    summary_quantiles: Tuple[float, ...] = (0.25, 0.5, 0.75)
    decimals: Optional[int] = 2


@dataclass
class ExperimentConfig:
    region: str = "default"
    horizon: float = 60
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    policies: List[PolicyVariant] = field(default_factory=lambda: [PolicyVariant("none")])
    windows: Optional[List[TimingWindow]] = None
    widths: Tuple[float, ...] = DEFAULT_WIDTHS
    executor: str = "serial"
    max_workers: Optional[int] = None
    costs: CostConfig = field(default_factory=CostConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    def __post_init__(self):
        # Default to the policy being active over the whole horizon
        if self.windows is None:
            self.windows = [TimingWindow(0, self.horizon)]

    def validate(self):
        if isinstance(self.horizon, bool) or not isinstance(self.horizon, numbers.Real) or self.horizon <= 0:
            raise InvalidConfiguration(f"Horizon must be a number > 0, got {self.horizon!r}")
        for w in self.windows:
            w.validate(self.horizon)
        validate_widths(self.widths)
        if isinstance(self.costs.floor, bool) or not isinstance(self.costs.floor, numbers.Real):
            raise InvalidConfiguration(f"Cost floor must be a number, got {self.costs.floor!r}")
        ParameterSampler(self.sampler)
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "ExperimentConfig":
        if not isinstance(data, dict):
            raise InvalidConfiguration("Experiment configuration must be a JSON object")
        _check_keys(cls, data, "experiment")

        kwargs = {k: v for k, v in data.items() if k not in ("sampler", "policies", "windows", "costs", "report")}
        if "widths" in kwargs:
            kwargs["widths"] = tuple(_as_list(kwargs["widths"], "widths"))
        if "sampler" in data:
            kwargs["sampler"] = parse_sampler(data["sampler"])
        if "policies" in data:
            kwargs["policies"] = [parse_policy(p) for p in _as_list(data["policies"], "policies")]
        if data.get("windows") is not None:
            kwargs["windows"] = [parse_window(w) for w in _as_list(data["windows"], "windows")]
        if "costs" in data:
            costs = _build(CostConfig, data["costs"], "costs")
            costs.deterministic = tuple(_as_list(costs.deterministic, "costs.deterministic"))
            costs.exclude_domains = tuple(_as_list(costs.exclude_domains, "costs.exclude_domains"))
            kwargs["costs"] = costs
        if "report" in data:
            kwargs["report"] = _build(ReportConfig, data["report"], "report")

        return cls(**kwargs).validate()

    @classmethod
    def from_json(cls, path) -> "ExperimentConfig":
        config_path = Path(path)
        if not config_path.exists():
            raise InvalidConfiguration(f"Configuration file not found: {config_path}")
        try:
            with config_path.open("r") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise InvalidConfiguration(f"Could not parse {config_path}: {exc}") from exc
        logger.info("Loaded experiment configuration from %s", config_path)
        return cls.from_dict(data)


def _as_list(value, where):
    if not isinstance(value, (list, tuple)):
        raise InvalidConfiguration(f"'{where}' must be a list, got {value!r}")
    return value


def _check_keys(cls, data, where):
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidConfiguration(f"Unknown {where} setting(s): {unknown}")


def _build(cls, data, where):
    if not isinstance(data, dict):
        raise InvalidConfiguration(f"'{where}' must be a JSON object")
    _check_keys(cls, data, where)
    try:
        return cls(**data)
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"Invalid '{where}' settings: {exc}") from exc


def parse_field(data, where) -> FieldSpec:
    spec = _build(FieldSpec, data, where)
    try:
        spec.shape = tuple(spec.shape)
        if spec.bounds is not None:
            spec.bounds = tuple(spec.bounds)
    except TypeError as exc:
        raise InvalidConfiguration(f"{where}: shape and bounds must be lists") from exc
    if spec.bounds is not None and len(spec.bounds) != 2:
        raise InvalidConfiguration(f"{where}: bounds must be [lo, hi]")
    return spec


def parse_sampler(data) -> SamplerConfig:
    if not isinstance(data, dict):
        raise InvalidConfiguration("'sampler' must be a JSON object")
    _check_keys(SamplerConfig, data, "sampler")
    kwargs = dict(data)
    if "primary" in kwargs:
        kwargs["primary"] = parse_field(kwargs["primary"], "sampler.primary")
    if kwargs.get("secondary") is not None:
        kwargs["secondary"] = parse_field(kwargs["secondary"], "sampler.secondary")
    try:
        return SamplerConfig(**kwargs)
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"Invalid 'sampler' settings: {exc}") from exc


def parse_policy(data) -> PolicyVariant:
    if isinstance(data, str):
        return PolicyVariant(data)
    if not isinstance(data, dict) or "id" not in data:
        raise InvalidConfiguration(f"Policy must be an id or an object with an 'id', got {data!r}")
    return _build(PolicyVariant, data, "policy")


def parse_window(data) -> TimingWindow:
    if isinstance(data, dict):
        _check_keys(TimingWindow, data, "window")
        if "start" not in data or "end" not in data:
            raise InvalidConfiguration(f"Window needs both 'start' and 'end', got {data!r}")
        return TimingWindow(data["start"], data["end"])
    if isinstance(data, Sequence) and not isinstance(data, str) and len(data) == 2:
        return TimingWindow(data[0], data[1])
    raise InvalidConfiguration(f"Window must be [start, end] or {{'start', 'end'}}, got {data!r}")
