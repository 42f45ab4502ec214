import bisect
import logging
import math
from dataclasses import dataclass, field

import numpy as np

from .constants import HIGH_PERCENTILE, LOW_PERCENTILE, RUNNING_AVERAGE_WINDOW

logger = logging.getLogger(__name__)


@dataclass
class AggregateResult:
    """Frame-ordered scores plus exact summary statistics."""
    scores: dict = field(default_factory=dict)
    mean: float = math.nan
    median: float = math.nan
    std_dev: float = math.nan
    percentile_5: float = math.nan
    percentile_95: float = math.nan
    warnings: list = field(default_factory=list)

    @property
    def frame_count(self):
        return len(self.scores)

    @property
    def frame_indices(self):
        return list(self.scores.keys())

    @property
    def values(self):
        return list(self.scores.values())

    def items(self):
        return list(self.scores.items())


def summarize(values):
    """
    Exact statistics over a score sequence.

    Percentiles use linear interpolation between order statistics (numpy's
    default method). Standard deviation is the sample estimate (ddof=1) and is
    NaN below two samples.

    Returns:
        dict: mean, median, std_dev, percentile_5, percentile_95.
    """
    if len(values) == 0:
        return dict(mean=math.nan, median=math.nan, std_dev=math.nan,
                    percentile_5=math.nan, percentile_95=math.nan)

    data = np.asarray(values, dtype=np.float64)
    low, high = np.percentile(data, [LOW_PERCENTILE, HIGH_PERCENTILE])
    return dict(
        mean=float(np.mean(data)),
        median=float(np.median(data)),
        std_dev=float(np.std(data, ddof=1)) if data.size > 1 else math.nan,
        percentile_5=float(low),
        percentile_95=float(high),
    )


class ResultAggregator:
    """
    Collects (frame_index, score) records that arrive in any order.

    `running_average` is a smoothed value for live display only: once more than
    RUNNING_AVERAGE_WINDOW samples have arrived, recent frames dominate it. The
    reported mean comes from finalize().
    """

    def __init__(self, window=RUNNING_AVERAGE_WINDOW):
        self.window = window
        self._indices = []
        self._scores = {}
        self.running_average = 0.0

    def __len__(self):
        return len(self._indices)

    def add(self, frame_index, score):
        if frame_index in self._scores:
            raise ValueError(f"Duplicate score for frame {frame_index}")
        bisect.insort(self._indices, frame_index)
        self._scores[frame_index] = score

        count = len(self._indices)
        self.running_average += (score - self.running_average) / min(count, self.window)
        return self.running_average

    def ordered_items(self):
        return [(index, self._scores[index]) for index in self._indices]

    def finalize(self, warnings=()):
        ordered = self.ordered_items()
        result = AggregateResult(scores=dict(ordered), warnings=list(warnings),
                                 **summarize([score for _, score in ordered]))
        logger.debug("Aggregated %d frames: mean=%.6f", result.frame_count, result.mean)
        return result
