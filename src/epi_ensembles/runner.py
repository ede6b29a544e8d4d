#!/usr/bin/env python3
# src/epi_ensembles/runner.py — command line entry point

import argparse
import dataclasses
import logging
import sys
import time
from typing import List, Optional

from .config import ExperimentConfig
from .errors import InvalidConfiguration, SimulationFailure
from .export.plot_intervals import load_interval_csv, plot_curve_bands
from .export.reshape import export_table
from .pipeline import run_experiment
from .sample.draw_parameters import draw_parameters
from .simulate.simulator import load_simulator

logger = logging.getLogger(__name__)


def load_config(args) -> ExperimentConfig:
    """Read --config (or defaults) and apply command line overrides."""
    cfg = ExperimentConfig.from_json(args.config) if args.config else ExperimentConfig()
    sampler = cfg.sampler
    if getattr(args, "N", None) is not None:
        sampler = dataclasses.replace(sampler, n=args.N)
    if getattr(args, "seed", None) is not None:
        sampler = dataclasses.replace(sampler, seed=args.seed)
    cfg.sampler = sampler
    if getattr(args, "executor", None) is not None:
        cfg.executor = args.executor
    if getattr(args, "workers", None) is not None:
        cfg.max_workers = args.workers
    return cfg.validate()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Parameter-uncertainty ensembles over intervention policies")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- sample ----------
    sample_p = sub.add_parser("sample", help="Draw the parameter ensemble and write it to CSV")
    sample_p.add_argument("--config", default=None, metavar="PATH",
                          help="Experiment JSON (default: built-in defaults)")
    sample_p.add_argument("-N", "--num", dest="N", type=int, default=None, metavar="N",
                          help="Number of parameter samples (overrides config)")
    sample_p.add_argument("--seed", type=int, default=None, metavar="SEED",
                          help="RNG seed for reproducibility (overrides config)")
    sample_p.add_argument("--out", default="data/samples.csv", metavar="PATH",
                          help="Output CSV path (default: data/samples.csv)")

    # ---------- run ----------
    run_p = sub.add_parser("run", help="Run the full ensemble and write aggregated tables")
    run_p.add_argument("--config", default=None, metavar="PATH")
    run_p.add_argument("--simulator", required=True, metavar="MODULE:CALLABLE",
                       help="Simulator callable, e.g. mymodel.api:simulate")
    run_p.add_argument("--out-dir", default="data/results", metavar="DIR")
    run_p.add_argument("-N", "--num", dest="N", type=int, default=None, metavar="N")
    run_p.add_argument("--seed", type=int, default=None, metavar="SEED")
    run_p.add_argument("--executor", choices=["serial", "thread", "process"], default=None)
    run_p.add_argument("--workers", type=int, default=None, metavar="N")
    run_p.add_argument("--plot", action="append", default=[], metavar="MEASURE",
                       help="Also plot credible bands for this measure (repeatable)")

    # ---------- plot ----------
    plot_p = sub.add_parser("plot", help="Plot credible bands from a curve_intervals CSV")
    plot_p.add_argument("--csv", default="data/results/curve_intervals.csv", metavar="PATH")
    plot_p.add_argument("--measure", required=True)
    plot_p.add_argument("--out", default="figs/curve_intervals.png", metavar="PATH")
    plot_p.add_argument("--capacity", type=float, default=None,
                        help="Draw a horizontal capacity line (e.g. hospital beds)")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    t0 = time.perf_counter()

    try:
        if args.cmd == "sample":
            cfg = load_config(args)
            samples = draw_parameters(cfg.sampler)
            export_table(samples.to_frame(), args.out)
            print("Samples ->", args.out)

        elif args.cmd == "run":
            cfg = load_config(args)
            simulator = load_simulator(args.simulator)
            result = run_experiment(cfg, simulator)
            paths = result.write(args.out_dir)
            for measure in args.plot:
                plot_curve_bands(
                    result.tables()["curve_intervals"],
                    measure,
                    save_path=f"{args.out_dir}/{measure}_intervals.png",
                    capacity=result.capacity,
                )
            print(f"Results ({len(paths)} files) ->", args.out_dir)

        elif args.cmd == "plot":
            table = load_interval_csv(args.csv)
            plot_curve_bands(table, args.measure, save_path=args.out, capacity=args.capacity)
            print("Interval plot ->", args.out)

    except InvalidConfiguration as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2
    except SimulationFailure as exc:
        logger.error("Simulation failed for %s: %s", exc.key, exc.message)
        return 1

    print(f"Done in {time.perf_counter() - t0:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
