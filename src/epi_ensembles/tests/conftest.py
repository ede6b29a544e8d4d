import pytest

from epi_ensembles.sample.draw_parameters import FieldSpec, SamplerConfig, draw_parameters
from epi_ensembles.simulate.scenarios import PolicyVariant, TimingWindow

from fake_simulator import AGE_GROUPS, POLICY_INTENSITIES


@pytest.fixture
def policies():
    return [PolicyVariant(pid, intensities) for pid, intensities in POLICY_INTENSITIES.items()]


@pytest.fixture
def full_window():
    return TimingWindow(0, 60)


@pytest.fixture
def sampler_config():
    return SamplerConfig(
        n=20,
        seed=7,
        primary=FieldSpec(name="r0", shape=(2, 5), bounds=(1.2, 2.1)),
        secondary=FieldSpec(
            name="severity",
            shape=(2, 2),
            bounds=(0.5, 1.5),
            profile=(0.2, 1.0, 3.0),
            groups=AGE_GROUPS,
        ),
    )


@pytest.fixture
def samples(sampler_config):
    return draw_parameters(sampler_config)
