# src/epi_ensembles/simulate/simulator.py
"""
Boundary to the external epidemic simulator.

A simulator is any callable

    simulator(region, parameters, policy, window, horizon) -> Mapping

treated as a pure function. The returned mapping may contain:

- "timeseries"   : DataFrame (or column mapping) with a "time" column and
                   one column per measure
- "totals"       : {measure: value}
- "group_totals" : {measure: {group: value}}
- "costs"        : {domain: {cost_type: value}} or {domain: value}
- "capacity"     : regional constant such as hospital bed capacity
"""

import importlib
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import pandas as pd

from ..errors import InvalidConfiguration, SimulationFailure
from .scenarios import ScenarioKey

Simulator = Callable[..., Mapping[str, Any]]

# cost_type used when the simulator reports a single value for a domain
DOMAIN_TOTAL = "total"


@dataclass(frozen=True, eq=False)
class SimulationRun:
    key: ScenarioKey
    timeseries: pd.DataFrame
    totals: Mapping[str, float] = field(default_factory=dict)
    group_totals: Mapping[str, Mapping[str, float]] = field(default_factory=dict)
    costs: Mapping[Tuple[str, str], float] = field(default_factory=dict)
    capacity: Optional[float] = None

    @property
    def measures(self):
        return [c for c in self.timeseries.columns if c != "time"]


def _as_float(key, value, what):
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise SimulationFailure(key, f"non-numeric {what}: {value!r}") from exc


def _timeseries_frame(key, raw) -> pd.DataFrame:
    if raw is None:
        return pd.DataFrame({"time": pd.Series([], dtype=float)})
    try:
        df = raw.copy() if isinstance(raw, pd.DataFrame) else pd.DataFrame(dict(raw))
    except (TypeError, ValueError) as exc:
        raise SimulationFailure(key, "timeseries could not be read as a table") from exc
    if "time" not in df.columns:
        raise SimulationFailure(key, "timeseries has no 'time' column")
    return df.reset_index(drop=True)


def normalise_output(key: ScenarioKey, output) -> SimulationRun:
    """Validate a raw simulator output and freeze it into a SimulationRun."""
    if not isinstance(output, Mapping):
        raise SimulationFailure(key, f"simulator returned {type(output).__name__}, expected a mapping")

    timeseries = _timeseries_frame(key, output.get("timeseries"))

    totals = {str(m): _as_float(key, v, f"total '{m}'") for m, v in (output.get("totals") or {}).items()}

    group_totals: Dict[str, Dict[str, float]] = {}
    for measure, by_group in (output.get("group_totals") or {}).items():
        if not isinstance(by_group, Mapping):
            raise SimulationFailure(key, f"group totals for '{measure}' must map group -> value")
        group_totals[str(measure)] = {
            str(g): _as_float(key, v, f"group total '{measure}/{g}'") for g, v in by_group.items()
        }

    costs: Dict[Tuple[str, str], float] = {}
    for domain, entry in (output.get("costs") or {}).items():
        if isinstance(entry, Mapping):
            for cost_type, v in entry.items():
                costs[(str(domain), str(cost_type))] = _as_float(key, v, f"cost '{domain}/{cost_type}'")
        else:
            costs[(str(domain), DOMAIN_TOTAL)] = _as_float(key, entry, f"cost '{domain}'")

    capacity = output.get("capacity")
    if capacity is not None:
        capacity = _as_float(key, capacity, "capacity")
        if math.isnan(capacity):
            capacity = None

    if timeseries.empty and not totals and not group_totals and not costs:
        raise SimulationFailure(key, "simulator returned no results")

    return SimulationRun(
        key=key,
        timeseries=timeseries,
        totals=totals,
        group_totals=group_totals,
        costs=costs,
        capacity=capacity,
    )


def load_simulator(target: str) -> Simulator:
    """Import a simulator given as ``package.module:callable``."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise InvalidConfiguration(f"Simulator must be given as 'module:callable', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise InvalidConfiguration(f"Could not import simulator module {module_name!r}: {exc}") from exc

    obj = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            raise InvalidConfiguration(f"{module_name!r} has no attribute {attr!r}") from exc
    if not callable(obj):
        raise InvalidConfiguration(f"Simulator {target!r} is not callable")
    return obj
