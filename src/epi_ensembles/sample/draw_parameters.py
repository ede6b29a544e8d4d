# src/epi_ensembles/sample/draw_parameters.py
"""
Draw a reproducible ensemble of disease parameters.

The primary field (e.g. R0) is drawn from a two-parameter shape distribution,
shifted with ``raw * scale + offset`` and then rescaled so that the realised
minimum lands exactly on ``lo`` and the realised maximum exactly on ``hi``.
A secondary field (e.g. severity) is drawn from its own seeded stream and,
when a profile is given, spread over subgroups with that profile normalised
to mean 1.
"""

import logging
import numbers
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ..errors import InvalidConfiguration

# Start logger
logger = logging.getLogger(__name__)

# Two-parameter shape distributions, frozen from (a, b)
DISTRIBUTIONS = {
    "beta": lambda a, b: stats.beta(a, b),
    "gamma": lambda a, b: stats.gamma(a, scale=b),
}


@dataclass
class FieldSpec:
    name: str
    shape: Tuple[float, float] = (2.0, 5.0)
    distribution: str = "beta"
    bounds: Optional[Tuple[float, float]] = None
    scale: float = 1.0
    offset: float = 0.0
    profile: Optional[Sequence[float]] = None
    groups: Optional[Sequence[str]] = None


@dataclass
class SamplerConfig:
    n: int = 100
    seed: Optional[int] = 42
    primary: FieldSpec = field(default_factory=lambda: FieldSpec(name="r0", bounds=(1.2, 2.1)))
    secondary: Optional[FieldSpec] = None
    sort: bool = True
    label: str = "sample"


@dataclass(frozen=True)
class ParameterSample:
    """One immutable draw: a tag plus named numeric fields.

    Vector fields (per-group profiles) are stored as tuples.
    """

    tag: str
    fields: Mapping[str, object]

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def __getitem__(self, name):
        return self.fields[name]

    def as_dict(self):
        return dict(self.fields)


class ParameterEnsemble:
    """Ordered collection of samples sharing one field schema."""

    def __init__(self, samples: Sequence[ParameterSample], groups: Sequence[str] = ()):
        self.samples = tuple(samples)
        self.groups = tuple(groups)

        if not self.samples:
            raise InvalidConfiguration("An ensemble needs at least one parameter sample")

        tags = [s.tag for s in self.samples]
        if len(set(tags)) != len(tags):
            raise InvalidConfiguration("Sample tags must be unique within an ensemble")

        schema = set(self.samples[0].fields)
        for s in self.samples[1:]:
            if set(s.fields) != schema:
                raise InvalidConfiguration(
                    f"Sample {s.tag} has fields {sorted(s.fields)}, expected {sorted(schema)}"
                )

    def __len__(self):
        return len(self.samples)

    def __iter__(self) -> Iterator[ParameterSample]:
        return iter(self.samples)

    def __getitem__(self, i):
        return self.samples[i]

    @property
    def tags(self):
        return [s.tag for s in self.samples]

    @property
    def field_names(self):
        return list(self.samples[0].fields)

    def by_tag(self, tag: str) -> ParameterSample:
        for s in self.samples:
            if s.tag == tag:
                return s
        raise KeyError(tag)

    def values(self, name: str) -> np.ndarray:
        """Field values in ensemble order; shape (n,) or (n, n_groups)."""
        return np.asarray([s[name] for s in self.samples], dtype=float)

    def to_frame(self) -> pd.DataFrame:
        """One row per sample; vector fields expand to ``<field>_<group>`` columns."""
        rows = []
        for s in self.samples:
            row = {"sample": s.tag}
            for name, value in s.fields.items():
                if isinstance(value, tuple):
                    labels = self.groups if len(self.groups) == len(value) else range(1, len(value) + 1)
                    for g, v in zip(labels, value):
                        row[f"{name}_{g}"] = v
                else:
                    row[name] = value
            rows.append(row)
        return pd.DataFrame(rows)


def rescale_to_interval(values, lo: float, hi: float) -> np.ndarray:
    """Map the realised range of ``values`` linearly onto [lo, hi].

    The minimum maps to exactly ``lo`` and the maximum to exactly ``hi``
    (``lo * (1 - t) + hi * t`` is exact at t = 0 and t = 1). A zero-width
    realised range, e.g. a single draw, maps every value to the midpoint.
    """
    if lo >= hi:
        raise InvalidConfiguration(f"Rescale interval must satisfy lo < hi, got [{lo}, {hi}]")

    x = np.asarray(values, dtype=float)
    x_min = x.min()
    span = x.max() - x_min
    if span == 0.0:
        logger.warning("Zero realised range over %d draw(s); using interval midpoint", x.size)
        return np.full_like(x, 0.5 * (lo + hi))

    t = (x - x_min) / span
    return np.clip(lo * (1.0 - t) + hi * t, lo, hi)


def normalise_profile(profile) -> np.ndarray:
    """Scale a per-group profile so its entries average to 1."""
    try:
        p = np.asarray(profile, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"Profile entries must be numbers, got {profile!r}") from exc
    if p.ndim != 1 or p.size == 0:
        raise InvalidConfiguration("Profile must be a non-empty 1D sequence")
    if np.any(p < 0) or p.mean() <= 0:
        raise InvalidConfiguration("Profile entries must be non-negative with a positive mean")
    return p / p.mean()


def _is_integer(value):
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _as_floats(values, what, name):
    try:
        return tuple(float(v) for v in values)
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"{name}: {what} must be numbers, got {values!r}") from exc


def validate_field(spec: FieldSpec, require_bounds: bool = False):
    # Raise some errors
    shape = _as_floats(spec.shape, "shape parameters", spec.name)
    if len(shape) != 2:
        raise InvalidConfiguration(f"{spec.name}: shape must have exactly two parameters")
    a, b = shape
    _as_floats((spec.scale, spec.offset), "scale and offset", spec.name)
    if a <= 0 or b <= 0:
        raise InvalidConfiguration(f"{spec.name}: shape parameters must be > 0, got ({a}, {b})")
    if spec.distribution not in DISTRIBUTIONS:
        raise InvalidConfiguration(
            f"{spec.name}: unknown distribution '{spec.distribution}' (choose from {sorted(DISTRIBUTIONS)})"
        )
    if spec.bounds is None:
        if require_bounds:
            raise InvalidConfiguration(f"{spec.name}: a rescale interval [lo, hi] is required")
    else:
        bounds = _as_floats(spec.bounds, "bounds", spec.name)
        if len(bounds) != 2:
            raise InvalidConfiguration(f"{spec.name}: bounds must be [lo, hi]")
        lo, hi = bounds
        if lo >= hi:
            raise InvalidConfiguration(f"{spec.name}: rescale interval must satisfy lo < hi, got [{lo}, {hi}]")
    if spec.profile is not None:
        p = normalise_profile(spec.profile)
        if spec.groups is not None and len(spec.groups) != p.size:
            raise InvalidConfiguration(
                f"{spec.name}: {len(spec.groups)} group labels for a profile of length {p.size}"
            )


def sample_order(values, sort: bool = True) -> np.ndarray:
    """Ascending stable order of ``values``; ties keep draw order."""
    x = np.asarray(values, dtype=float)
    return np.argsort(x, kind="stable") if sort else np.arange(x.size)


def draw_field(spec: FieldSpec, n: int, rng: np.random.Generator) -> np.ndarray:
    """Draw n raw values, shift them, and rescale if the field has bounds."""
    a, b = spec.shape
    dist = DISTRIBUTIONS[spec.distribution](float(a), float(b))
    raw = np.asarray(dist.rvs(size=n, random_state=rng), dtype=float)

    values = raw * float(spec.scale) + float(spec.offset)
    if spec.bounds is not None:
        values = rescale_to_interval(values, float(spec.bounds[0]), float(spec.bounds[1]))
    return values


class ParameterSampler:
    """Produce tagged, reproducible ParameterSamples from a SamplerConfig.

    Every field gets its own child stream of ``SeedSequence(seed)``, so the
    secondary field is independent of the primary one while both remain fixed
    by the single seed.
    """

    def __init__(self, config: SamplerConfig):
        self.config = config
        self.validate()

    def validate(self):
        cfg = self.config
        if not _is_integer(cfg.n) or cfg.n <= 0:
            raise InvalidConfiguration(f"Sample count must be an integer > 0, got {cfg.n!r}")
        if cfg.seed is not None and (not _is_integer(cfg.seed) or cfg.seed < 0):
            raise InvalidConfiguration(f"Seed must be a non-negative integer or None, got {cfg.seed!r}")
        validate_field(cfg.primary, require_bounds=True)
        if cfg.secondary is not None:
            validate_field(cfg.secondary)
            if cfg.secondary.name == cfg.primary.name:
                raise InvalidConfiguration("Primary and secondary fields need different names")

    def streams(self):
        n_fields = 1 if self.config.secondary is None else 2
        children = np.random.SeedSequence(self.config.seed).spawn(n_fields)
        return [np.random.default_rng(c) for c in children]

    def draw(self) -> ParameterEnsemble:
        cfg = self.config
        n = int(cfg.n)
        if cfg.seed is None:
            logger.warning("No seed given; the parameter ensemble will not be reproducible")

        rngs = self.streams()
        primary = draw_field(cfg.primary, n, rngs[0])
        secondary = draw_field(cfg.secondary, n, rngs[1]) if cfg.secondary is not None else None

        order = sample_order(primary, cfg.sort)

        profile = None
        groups = ()
        if cfg.secondary is not None and cfg.secondary.profile is not None:
            profile = normalise_profile(cfg.secondary.profile)
            groups = tuple(cfg.secondary.groups) if cfg.secondary.groups is not None else ()

        samples = []
        for rank, idx in enumerate(order, start=1):
            fields = {cfg.primary.name: float(primary[idx])}
            if secondary is not None:
                magnitude = float(secondary[idx])
                if profile is None:
                    fields[cfg.secondary.name] = magnitude
                else:
                    fields[f"{cfg.secondary.name}_scale"] = magnitude
                    fields[cfg.secondary.name] = tuple(float(v) for v in magnitude * profile)
            samples.append(ParameterSample(tag=f"{cfg.label}_{rank}", fields=fields))

        logger.info(
            "Drew %d parameter samples (%s in [%g, %g], seed=%s)",
            n, cfg.primary.name, primary.min(), primary.max(), cfg.seed,
        )
        return ParameterEnsemble(samples, groups=groups)


def draw_parameters(config: SamplerConfig) -> ParameterEnsemble:
    """Wrap ParameterSampler for callers that only need the ensemble."""
    return ParameterSampler(config).draw()
