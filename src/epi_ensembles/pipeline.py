# src/epi_ensembles/pipeline.py
"""
End-to-end experiment: sample -> simulate -> aggregate -> label -> export.
"""

import json
import logging
import pathlib
import time
from dataclasses import dataclass
from typing import Dict, Optional

import pandas as pd

from .aggregate.costs import CostBreakdown, CostDecomposer
from .aggregate.intervals import ResultAggregator, INTERVAL_COLUMNS
from .aggregate.records import cost_records, curve_records, total_records
from .config import ExperimentConfig
from .export.reshape import DataReshaper, export_table, quantile_summary
from .sample.draw_parameters import draw_parameters
from .simulate.ensemble_runner import EnsembleResult, ScenarioEnsembleRunner
from .simulate.simulator import Simulator

# Start logger
logger = logging.getLogger(__name__)


@dataclass
class ExperimentResult:
    config: ExperimentConfig
    ensemble: EnsembleResult
    curves: pd.DataFrame
    curve_intervals: pd.DataFrame
    totals: pd.DataFrame
    point_intervals: pd.DataFrame
    costs: pd.DataFrame
    cost_breakdown: CostBreakdown
    summary: pd.DataFrame
    reshaper: DataReshaper

    @property
    def capacity(self) -> Optional[float]:
        return self.ensemble.capacity

    def tables(self) -> Dict[str, pd.DataFrame]:
        """Every exported table, with display labels and category order applied."""
        raw = {
            "samples": self.ensemble.samples.to_frame(),
            "curves": self.curves,
            "curve_intervals": self.curve_intervals,
            "totals": self.totals,
            "point_intervals": self.point_intervals,
            "costs": self.costs,
            "cost_breakdown": self.cost_breakdown.to_records(),
            "summary": self.summary,
        }
        return {name: self.reshaper.apply(frame) for name, frame in raw.items()}

    def metadata(self) -> dict:
        cfg = self.config
        return {
            "region": cfg.region,
            "horizon": cfg.horizon,
            "capacity": self.capacity,
            "n_samples": len(self.ensemble.samples),
            "seed": cfg.sampler.seed,
            "policies": [p.id for p in cfg.policies],
            "windows": [[w.start, w.end] for w in cfg.windows],
            "widths": list(cfg.widths),
            "n_runs": len(self.ensemble),
        }

    def write(self, out_dir) -> Dict[str, pathlib.Path]:
        out = pathlib.Path(out_dir)
        out.mkdir(parents=True, exist_ok=True)
        paths = {name: export_table(frame, out / f"{name}.csv") for name, frame in self.tables().items()}

        meta_path = out / "metadata.json"
        with meta_path.open("w") as fh:
            json.dump(self.metadata(), fh, indent=2)
        paths["metadata"] = meta_path
        logger.info("Wrote %d files to %s", len(paths), out)
        return paths


def make_reshaper(config: ExperimentConfig) -> DataReshaper:
    """Policy labels default to each variant's own label; the report section wins."""
    report = config.report
    policy_labels = {p.id: p.label for p in config.policies if p.label is not None}
    policy_labels.update(report.policy_labels)
    policy_order = report.policy_order or [p.id for p in config.policies]
    return DataReshaper(
        policy_labels=policy_labels,
        group_labels=dict(report.group_labels),
        policy_order=list(policy_order),
        group_order=list(report.group_order),
    )


def _empty_intervals(by):
    return pd.DataFrame(columns=list(by) + INTERVAL_COLUMNS)


def run_experiment(config: ExperimentConfig, simulator: Simulator) -> ExperimentResult:
    config.validate()
    t0 = time.perf_counter()

    samples = draw_parameters(config.sampler)
    runner = ScenarioEnsembleRunner(
        simulator,
        region=config.region,
        horizon=config.horizon,
        executor=config.executor,
        max_workers=config.max_workers,
    )
    ensemble = runner.run(samples, config.policies, config.windows)

    curves = curve_records(ensemble)
    totals = total_records(ensemble)
    costs = cost_records(ensemble)

    aggregator = ResultAggregator(config.widths)
    curve_table = aggregator.curve_intervals(curves) if not curves.empty else _empty_intervals(["time", "measure"])
    point_table = aggregator.point_intervals(totals) if not totals.empty else _empty_intervals(["measure"])

    decomposer = CostDecomposer(
        deterministic=config.costs.deterministic,
        exclude_domains=config.costs.exclude_domains,
        floor=config.costs.floor,
        widths=config.widths,
        baseline_policies=[p.id for p in config.policies if p.is_baseline],
    )
    breakdown = decomposer.decompose(costs)

    report = config.report
    if totals.empty:
        summary = pd.DataFrame(columns=["policy", "measure", "group", "n_samples"])
    else:
        summary = quantile_summary(
            totals,
            by=["policy", "window_start", "window_end", "measure", "group"],
            quantiles=report.summary_quantiles,
            decimals=report.decimals,
        )

    logger.info("Experiment finished in %.2fs", time.perf_counter() - t0)
    return ExperimentResult(
        config=config,
        ensemble=ensemble,
        curves=curves,
        curve_intervals=curve_table,
        totals=totals,
        point_intervals=point_table,
        costs=costs,
        cost_breakdown=breakdown,
        summary=summary,
        reshaper=make_reshaper(config),
    )
