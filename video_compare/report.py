import csv
import logging
import os
import sys
import time

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from .constants import (
    CHART_DPI, CHART_FILL_ALPHA, CHART_HEIGHT, CHART_SERIES, CHART_WIDTH, HIGH_PERCENTILE,
    LOW_PERCENTILE,
)
from .errors import ChartRenderError

logger = logging.getLogger(__name__)

CSV_HEADER = ["frame", "score"]


class ProgressReporter:
    """
    Live progress on stderr.

    Hidden when stderr is not a terminal so piped output stays clean. With an
    unknown total the bar degrades to a plain counter.
    """

    def __init__(self, total=None, description="Comparing", disable=None):
        if disable is None:
            disable = not sys.stderr.isatty()
        self._bar = tqdm(total=total, desc=description, unit="frame",
                         file=sys.stderr, disable=disable, dynamic_ncols=True)

    def advance(self, running_average):
        self._bar.set_postfix_str(f"avg {running_average:.4f}", refresh=False)
        self._bar.update(1)

    def write(self, line):
        # Goes to stdout so verbose per-frame output can be piped
        tqdm.write(line, file=sys.stdout)

    def close(self):
        self._bar.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def write_csv(path, result):
    """Write per-frame scores ascending by frame index."""
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for frame_index, score in sorted(result.items()):
            writer.writerow([frame_index, repr(float(score))])
    logger.info("Wrote %d scores to %s", result.frame_count, path)


def read_csv(path):
    rows = []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header != CSV_HEADER:
            raise ValueError(f"{path}: expected header {','.join(CSV_HEADER)}, got {header}")
        for row in reader:
            if not row:
                continue
            rows.append((int(row[0]), float(row[1])))
    return rows


def format_summary(result):
    lines = [
        f"Video Score for {result.frame_count} frames",
        f"Mean: {result.mean:.8f}",
        f"Median: {result.median:.8f}",
        f"Std Dev: {result.std_dev:.8f}",
        f"{LOW_PERCENTILE}th Percentile: {result.percentile_5:.8f}",
        f"{HIGH_PERCENTILE}th Percentile: {result.percentile_95:.8f}",
    ]
    return "\n".join(lines)


def draw_chart(result, metric_name="ssimulacra2", y_range=(0.0, 100.0)):
    """Plot the per-frame scores as an area chart. Returns a matplotlib Figure."""
    items = sorted(result.items())
    frames = np.array([index for index, _ in items], dtype=np.float64)
    scores = np.array([score for _, score in items], dtype=np.float64)

    y_min, y_max = y_range
    finite = scores[np.isfinite(scores)]
    if finite.size:
        y_min = min(y_min, float(finite.min()))
        y_max = max(y_max, float(finite.max()))
    if y_max <= y_min:
        y_max = y_min + 1.0

    fig = plt.figure(figsize=(CHART_WIDTH / CHART_DPI, CHART_HEIGHT / CHART_DPI), dpi=CHART_DPI)
    ax = fig.add_subplot(1, 1, 1)
    if scores.size:
        ax.fill_between(frames, scores, y_min, color=CHART_SERIES, alpha=CHART_FILL_ALPHA)
        # A lone sample has no area, the marker keeps it visible
        ax.plot(frames, scores, color=CHART_SERIES, marker="o" if scores.size == 1 else None)
    ax.set_ylim(y_min, y_max)
    ax.set_xlabel("Frame")
    ax.set_ylabel(metric_name)
    ax.set_title(f"{metric_name.upper()} per frame "
                 f"({result.frame_count} frames, mean {result.mean:.4f})")
    ax.grid(True)
    return fig


def render_chart(result, output_dir=".", metric_name="ssimulacra2", y_range=(0.0, 100.0)):
    """
    Save the score chart as `<metric>-video-<unix timestamp>.png`.

    Returns:
        str: Path of the written PNG.

    Raises:
        ChartRenderError: Plotting or writing failed.
    """
    path = os.path.join(output_dir, f"{metric_name}-video-{int(time.time())}.png")
    fig = None
    try:
        os.makedirs(output_dir, exist_ok=True)
        fig = draw_chart(result, metric_name=metric_name, y_range=y_range)
        fig.savefig(path, dpi=CHART_DPI)
    except (OSError, ValueError) as exc:
        raise ChartRenderError(f"Failed to render chart to {path}: {exc}") from exc
    finally:
        if fig is not None:
            plt.close(fig)
    logger.info("Chart written to %s", path)
    return path
