# src/epi_ensembles/export/plot_intervals.py
# Quick-look ribbons for curve interval tables; report styling lives elsewhere.
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

# Start logger
logger = logging.getLogger(__name__)

# ---------- IO and helpers ----------

def load_interval_csv(path) -> pd.DataFrame:
    df = pd.read_csv(path)
    needed = {"time", "measure", "width", "lower", "upper"}
    missing = needed - set(df.columns)
    if missing:
        raise ValueError(f"Interval CSV missing columns: {sorted(missing)}")
    return df


def band_alpha(rank: int, n_widths: int) -> float:
    """Narrowest band darkest, widest band lightest."""
    if n_widths <= 1:
        return 0.35
    return 0.45 - 0.3 * rank / (n_widths - 1)


def band_groups(df: pd.DataFrame, policy=None):
    """
    Yield (window label, rows) for one policy, one entry per timing window.
    The window label is None when the table holds a single window.
    """
    part = df if policy is None else df[df["policy"] == policy]
    if part.empty:
        return
    if not {"window_start", "window_end"} <= set(part.columns):
        yield None, part
        return
    windows = part[["window_start", "window_end"]].drop_duplicates().sort_values(["window_start", "window_end"])
    for start, end in windows.itertuples(index=False):
        rows = part[(part["window_start"] == start) & (part["window_end"] == end)]
        yield (f"[{start:g}, {end:g}]" if len(windows) > 1 else None), rows

# ---------- plotting routines ----------

def plot_curve_bands(
    table: pd.DataFrame,
    measure: str,
    save_path: str = "figs/curve_intervals.png",
    policies: Optional[Sequence[str]] = None,
    capacity: Optional[float] = None,
    figsize: Tuple[int, int] = (10, 6),
):
    """
    Draw nested credible bands over time for one measure, one colour per policy:
    - widest width lightest, narrowest darkest
    - median as a solid line when the table carries one
    - optional dashed capacity line (e.g. hospital beds)
    """
    df = table[table["measure"] == measure]
    if df.empty:
        raise ValueError(f"No interval rows for measure '{measure}'")

    if policies is None:
        policies = list(pd.unique(df["policy"])) if "policy" in df.columns else [None]
    widths = sorted(df["width"].unique(), reverse=True)
    colours = plt.cm.tab10(np.linspace(0, 1, 10))

    fig, ax = plt.subplots(figsize=figsize)
    series = 0
    for policy in policies:
        for window, part in band_groups(df, policy):
            colour = colours[series % len(colours)]
            series += 1
            name = " ".join(str(p) for p in (policy, window) if p is not None)
            for rank, w in enumerate(widths):
                band = part[part["width"] == w].sort_values("time")
                ax.fill_between(
                    band["time"], band["lower"], band["upper"],
                    color=colour, alpha=band_alpha(len(widths) - 1 - rank, len(widths)), linewidth=0,
                    label=f"{name} {int(round(w * 100))}%".strip(),
                )
            if "median" in part.columns:
                mid = part[part["width"] == widths[0]].sort_values("time")
                ax.plot(mid["time"], mid["median"], color=colour, linewidth=1.8)

    if capacity is not None:
        ax.axhline(capacity, color="red", linestyle="--", linewidth=1.2, label="capacity")

    ax.set_xlabel("Time")
    ax.set_ylabel(measure)
    ax.set_title(f"{measure}: credible intervals by policy")
    ax.grid(alpha=0.25)
    ax.legend(loc="upper left", fontsize="small")
    Path(save_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(save_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info("Saved interval plot to %s", save_path)
    return Path(save_path)
