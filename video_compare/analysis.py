import logging
import os
import subprocess
import tempfile

import cv2
import numpy as np
from skimage.metrics import structural_similarity as ssim

from .constants import SSIMULACRA2_BIN_ENV
from .errors import ConfigurationError, MetricComputationError
from .video_reader import find_tool

logger = logging.getLogger(__name__)


def to_8bit(rgb):
    return np.clip(np.rint(rgb * 255.0), 0, 255).astype(np.uint8)


def to_16bit(rgb):
    return np.clip(np.rint(rgb * 65535.0), 0, 65535).astype(np.uint16)


class Metric:
    """
    Scores a pair of frames.

    Both inputs are HxWx3 float32 sRGB images in [0, 1] of identical shape.
    Implementations must be safe to call from several threads at once.
    """

    name = "metric"
    score_range = (0.0, 100.0)

    def compute_score(self, source, distorted):
        raise NotImplementedError

    @staticmethod
    def _check_shapes(source, distorted):
        if source.shape != distorted.shape:
            raise MetricComputationError(
                f"frame sizes differ: {source.shape[1]}x{source.shape[0]} vs "
                f"{distorted.shape[1]}x{distorted.shape[0]}")


class Ssimulacra2Metric(Metric):
    """
    SSIMULACRA2 through the libjxl `ssimulacra2` command line tool.

    Frames are written as 16-bit PNGs into a private temporary directory and
    the tool's single-number output is parsed.
    """

    name = "ssimulacra2"
    score_range = (0.0, 100.0)

    def __init__(self, binary=None):
        self.binary = binary or find_tool(SSIMULACRA2_BIN_ENV, "ssimulacra2")
        if not self.binary:
            raise ConfigurationError(
                "ssimulacra2 executable not found (install libjxl tools, set "
                f"{SSIMULACRA2_BIN_ENV} or pass --ssimulacra2-binary)")

    def compute_score(self, source, distorted):
        self._check_shapes(source, distorted)
        with tempfile.TemporaryDirectory(prefix="video_compare_") as tmp:
            src_path = os.path.join(tmp, "source.png")
            dst_path = os.path.join(tmp, "distorted.png")
            # OpenCV writes BGR
            if not (cv2.imwrite(src_path, cv2.cvtColor(to_16bit(source), cv2.COLOR_RGB2BGR)) and
                    cv2.imwrite(dst_path, cv2.cvtColor(to_16bit(distorted), cv2.COLOR_RGB2BGR))):
                raise MetricComputationError("could not write temporary PNG frames")
            try:
                result = subprocess.run([self.binary, src_path, dst_path],
                                        capture_output=True, text=True, check=True)
            except OSError as exc:
                raise MetricComputationError(f"cannot run {self.binary}: {exc}") from exc
            except subprocess.CalledProcessError as exc:
                raise MetricComputationError(
                    f"{self.binary} failed with status {exc.returncode}: {exc.stderr.strip()}") from exc
        return self.parse_output(result.stdout)

    @staticmethod
    def parse_output(output):
        # The score is the last number printed
        for token in reversed(output.split()):
            try:
                return float(token)
            except ValueError:
                continue
        raise MetricComputationError(f"no score in ssimulacra2 output: {output.strip()!r}")


class SsimMetric(Metric):
    """SSIM (Structural Similarity Index) on 8-bit RGB."""

    name = "ssim"
    score_range = (0.0, 1.0)

    def compute_score(self, source, distorted):
        self._check_shapes(source, distorted)
        img1, img2 = to_8bit(source), to_8bit(distorted)

        # Allow small window size for small images
        win_size = min(7, min(img1.shape[0], img1.shape[1]))
        if win_size % 2 == 0:
            win_size -= 1
        if win_size < 3:
            raise MetricComputationError("frame too small for SSIM (needs at least 3x3)")

        return float(ssim(img1, img2, win_size=win_size, channel_axis=2))


class PsnrMetric(Metric):
    """PSNR (Peak Signal-to-Noise Ratio) on 8-bit RGB, in dB."""

    name = "psnr"
    score_range = (0.0, 100.0)

    def compute_score(self, source, distorted):
        self._check_shapes(source, distorted)
        return float(cv2.PSNR(to_8bit(source), to_8bit(distorted)))


METRICS = {
    Ssimulacra2Metric.name: Ssimulacra2Metric,
    SsimMetric.name: SsimMetric,
    PsnrMetric.name: PsnrMetric,
}


def get_metric(name, **kwargs):
    try:
        metric_cls = METRICS[name.lower()]
    except KeyError:
        raise ConfigurationError(f"Unknown metric '{name}' (choose from {', '.join(METRICS)})") from None
    return metric_cls(**kwargs)
