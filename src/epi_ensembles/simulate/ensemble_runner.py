# src/epi_ensembles/simulate/ensemble_runner.py
"""
Run the external simulator once per ScenarioKey.

The runner forms samples x policies x windows, dispatches every scenario
(serially or on a thread/process pool), and only returns once every key has
a result. The first failure cancels whatever has not started and is raised as
SimulationFailure; a partial set of runs is never handed on.
"""

import logging
import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import InvalidConfiguration, SimulationFailure
from ..sample.draw_parameters import ParameterEnsemble
from .scenarios import PolicyVariant, ScenarioKey, TimingWindow, build_scenarios
from .simulator import SimulationRun, Simulator, normalise_output

# Start logger
logger = logging.getLogger(__name__)

EXECUTORS = {
    "serial": None,
    "thread": ThreadPoolExecutor,
    "process": ProcessPoolExecutor,
}


@dataclass
class EnsembleResult:
    region: str
    horizon: float
    samples: ParameterEnsemble
    policies: Tuple[PolicyVariant, ...]
    windows: Tuple[TimingWindow, ...]
    runs: Dict[ScenarioKey, SimulationRun]

    def __len__(self):
        return len(self.runs)

    @property
    def keys(self):
        return list(self.runs)

    @property
    def capacity(self) -> Optional[float]:
        """Regional capacity constant reported by the simulator, if any."""
        for run in self.runs.values():
            if run.capacity is not None:
                return run.capacity
        return None

    def policy(self, policy_id: str) -> PolicyVariant:
        for p in self.policies:
            if p.id == policy_id:
                return p
        raise KeyError(policy_id)


def simulate_scenario(simulator, region, horizon, key, parameters, policy, window) -> SimulationRun:
    """Call the simulator for one key and normalise what it returns.

    Module level so that it can be shipped to worker processes.
    """
    try:
        output = simulator(region, parameters, policy, window, horizon)
    except SimulationFailure:
        raise
    except Exception as exc:
        raise SimulationFailure(key, f"simulator raised {type(exc).__name__}: {exc}") from exc
    return normalise_output(key, output)


class ScenarioEnsembleRunner:
    """Execute one simulation per (sample, policy, window) and collect the runs.

    Args:
        simulator: callable ``(region, parameters, policy, window, horizon)``.
            A missing simulator raises InvalidConfiguration here rather than
            SimulationFailure, since no ScenarioKey exists yet to report;
            ``load_simulator`` reports an unimportable one the same way.
        region: country/region identifier passed through to the simulator.
        horizon: total simulation length.
        executor: "serial", "thread" or "process". Pools require a reentrant
            simulator; a process pool also requires it to be picklable.
        max_workers: pool size (None lets concurrent.futures decide).
    """

    def __init__(
        self,
        simulator: Simulator,
        region: str,
        horizon: float,
        executor: str = "serial",
        max_workers: Optional[int] = None,
    ):
        if simulator is None:
            raise InvalidConfiguration("No simulator given")
        if executor not in EXECUTORS:
            raise InvalidConfiguration(f"Unknown executor '{executor}' (choose from {sorted(EXECUTORS)})")
        if max_workers is not None and max_workers < 1:
            raise InvalidConfiguration(f"max_workers must be >= 1, got {max_workers}")
        self.simulator = simulator
        self.region = region
        self.horizon = horizon
        self.executor = executor
        self.max_workers = max_workers

    def _tasks(self, samples, policies, keys):
        by_tag = {s.tag: s for s in samples}
        by_policy = {p.id: p for p in policies}
        # a fresh parameter dict per scenario; nothing is shared between runs
        return [(key, by_tag[key.sample].as_dict(), by_policy[key.policy], key.window) for key in keys]

    def _run_serial(self, tasks) -> Dict[ScenarioKey, SimulationRun]:
        runs = {}
        for key, parameters, policy, window in tasks:
            logger.debug("Simulating %s", key)
            runs[key] = simulate_scenario(self.simulator, self.region, self.horizon, key, parameters, policy, window)
        return runs

    def _run_pooled(self, tasks) -> Dict[ScenarioKey, SimulationRun]:
        runs = {}
        pool = EXECUTORS[self.executor](max_workers=self.max_workers)
        try:
            futures = {
                pool.submit(
                    simulate_scenario, self.simulator, self.region, self.horizon, key, parameters, policy, window
                ): key
                for key, parameters, policy, window in tasks
            }
            for fut in as_completed(futures):
                key = futures[fut]
                runs[key] = fut.result()
                logger.debug("Collected %s (%d/%d)", key, len(runs), len(futures))
        except BaseException:
            # all-or-nothing: drop anything still queued before re-raising
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
        return runs

    def run(
        self,
        samples: ParameterEnsemble,
        policies: Sequence[PolicyVariant],
        windows: Sequence[TimingWindow],
    ) -> EnsembleResult:
        keys = build_scenarios(samples.tags, policies, windows, self.horizon)
        tasks = self._tasks(samples, policies, keys)

        logger.info(
            "Running %d scenarios (%d samples x %d policies x %d windows) with %s executor",
            len(keys), len(samples), len(policies), len(windows), self.executor,
        )
        t0 = time.perf_counter()
        if self.executor == "serial":
            runs = self._run_serial(tasks)
        else:
            runs = self._run_pooled(tasks)

        check_complete(keys, runs)
        logger.info("Collected %d simulation runs in %.2fs", len(runs), time.perf_counter() - t0)

        # keep the declared cross-product order regardless of completion order
        return EnsembleResult(
            region=self.region,
            horizon=self.horizon,
            samples=samples,
            policies=tuple(policies),
            windows=tuple(windows),
            runs={key: runs[key] for key in keys},
        )


def check_complete(keys: List[ScenarioKey], runs: Dict[ScenarioKey, SimulationRun]):
    """Every declared key exactly once, nothing else."""
    declared = set(keys)
    for key in keys:
        if key not in runs:
            raise SimulationFailure(key, "missing result")
        if runs[key].key != key:
            raise SimulationFailure(key, f"result is tagged {runs[key].key}")
    extra = [k for k in runs if k not in declared]
    if extra:
        raise SimulationFailure(extra[0], "result for an undeclared scenario")
