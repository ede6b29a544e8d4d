# src/epi_ensembles/errors.py
"""Errors raised by the ensemble pipeline.

InvalidConfiguration is raised before any simulation runs. SimulationFailure
aborts an ensemble and names the scenario that broke it. AggregationDegenerate
is only ever a warning.
"""


class InvalidConfiguration(ValueError):
    """Malformed sampling bounds, empty ensembles, bad windows or widths."""


class SimulationFailure(RuntimeError):
    """The external simulator raised, or returned nothing usable, for a key."""

    def __init__(self, key, message=None):
        self.key = key
        self.message = message if message is not None else "simulation failed"
        super().__init__(f"{self.message} (scenario {key})")

    def __reduce__(self):
        # failures raised in worker processes come back pickled
        return (self.__class__, (self.key, self.message))


class AggregationDegenerate(UserWarning):
    """A group had fewer than two distinct values; its interval collapsed."""
