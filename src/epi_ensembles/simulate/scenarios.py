# src/epi_ensembles/simulate/scenarios.py
"""Policy variants, timing windows and the scenario cross product."""

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple

from ..errors import InvalidConfiguration

BASELINE_POLICY = "none"


@dataclass(frozen=True)
class PolicyVariant:
    """An intervention, passed through to the simulator untouched.

    ``intensities`` holds e.g. per-sector closure intensities; the core never
    interprets it.
    """

    id: str
    intensities: Tuple[float, ...] = ()
    label: Optional[str] = None
    baseline: bool = False

    def __post_init__(self):
        object.__setattr__(self, "intensities", tuple(float(x) for x in self.intensities))

    @property
    def is_baseline(self):
        return self.baseline or self.id == BASELINE_POLICY

    @property
    def display_label(self):
        return self.label if self.label is not None else self.id


@dataclass(frozen=True, order=True)
class TimingWindow:
    start: float
    end: float

    @property
    def duration(self):
        return self.end - self.start

    def validate(self, horizon):
        try:
            ordered = 0 <= self.start <= self.end <= horizon
        except TypeError as exc:
            raise InvalidConfiguration(
                f"Timing window bounds must be numbers, got start={self.start!r}, end={self.end!r}"
            ) from exc
        if not ordered:
            raise InvalidConfiguration(
                f"Timing window must satisfy 0 <= start <= end <= horizon, "
                f"got start={self.start}, end={self.end}, horizon={horizon}"
            )
        return self


class ScenarioKey(NamedTuple):
    """Unit of ensemble work: (sample tag, policy id, timing window)."""

    sample: str
    policy: str
    window: TimingWindow

    def __str__(self):
        return f"{self.sample}/{self.policy}/[{self.window.start}, {self.window.end}]"


def _check_unique(values, what):
    seen = set()
    for v in values:
        if v in seen:
            raise InvalidConfiguration(f"Duplicate {what}: {v!r}")
        seen.add(v)


def build_scenarios(
    sample_tags: Sequence[str],
    policies: Sequence[PolicyVariant],
    windows: Sequence[TimingWindow],
    horizon: float,
) -> List[ScenarioKey]:
    """Return the full cross product samples x policies x windows, sample-major.

    Everything is validated here so a malformed experiment fails before the
    first simulation is dispatched.
    """
    if horizon is None or horizon <= 0:
        raise InvalidConfiguration(f"Horizon must be > 0, got {horizon}")
    if not sample_tags:
        raise InvalidConfiguration("No parameter samples to simulate")
    if not policies:
        raise InvalidConfiguration("No policy variants to simulate")
    if not windows:
        raise InvalidConfiguration("No timing windows to simulate")

    _check_unique(sample_tags, "sample tag")
    _check_unique([p.id for p in policies], "policy id")
    _check_unique(windows, "timing window")
    for w in windows:
        w.validate(horizon)

    return [
        ScenarioKey(tag, policy.id, window)
        for tag in sample_tags
        for policy in policies
        for window in windows
    ]
