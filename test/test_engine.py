import dataclasses
import math
import threading

import cv2
import numpy as np
import pytest

from video_compare.analysis import Metric, PsnrMetric, SsimMetric
from video_compare.colorimetry import MatrixCoefficients, resolve_color_config
from video_compare.engine import compare_images, compare_videos, expected_comparisons
from video_compare.errors import (
    ConfigurationError, DecoderInitError, FrameReadError, MetricComputationError,
)
from video_compare.format_manager import ChromaSampling
from video_compare.video_reader import Decoder, Frame, VideoDetails


def make_frame(value, width=16, height=16):
    planes = (
        np.full((height, width), value, dtype=np.uint8),
        np.full((height // 2, width // 2), 128, dtype=np.uint8),
        np.full((height // 2, width // 2), 128, dtype=np.uint8),
    )
    return Frame(planes=planes, bit_depth=8)


class SyntheticDecoder(Decoder):
    """4:2:0 clip whose luma encodes the frame number."""

    def __init__(self, count, width=16, height=16, report_count=True, fail_at=None):
        self.count = count
        self.width = width
        self.height = height
        self.fail_at = fail_at
        self.position = 0
        self.details = VideoDetails(width=width, height=height, bit_depth=8,
                                    chroma_sampling=ChromaSampling.CS420,
                                    frame_count=count if report_count else None)

    def read_next_frame(self):
        if self.position == self.fail_at:
            raise FrameReadError(f"broken frame {self.position}")
        if self.position >= self.count:
            return None
        value = 16 + self.position % 200
        self.position += 1
        return make_frame(value, self.width, self.height)


class LumaMetric(Metric):
    """Scores a pair by the source brightness so every frame gets a distinct value."""

    name = "luma"

    def __init__(self, fail_on_call=None):
        self.fail_on_call = fail_on_call
        self.calls = 0
        self.threads = set()
        self._lock = threading.Lock()

    def compute_score(self, source, distorted):
        with self._lock:
            self.calls += 1
            call = self.calls
            self.threads.add(threading.current_thread().name)
        if call == self.fail_on_call:
            raise RuntimeError("metric backend crashed")
        return float(source.mean() * 100.0)


class RecordingProgress:
    def __init__(self):
        self.averages = []

    def advance(self, running_average):
        self.averages.append(running_average)


def run(source_count, distorted_count=None, metric=None, **kwargs):
    source = SyntheticDecoder(source_count)
    distorted = SyntheticDecoder(source_count if distorted_count is None else distorted_count)
    config = resolve_color_config(source.get_video_details())
    return compare_videos(source, distorted, config, config, metric or LumaMetric(), **kwargs)


def test_every_frame_of_ten():
    """Test scoring every frame of a short clip."""
    result = run(10)
    assert result.frame_indices == list(range(10))
    assert result.warnings == []


def test_increment_ten_of_hundred():
    """Test scoring every tenth frame."""
    result = run(100, increment=10)
    assert result.frame_indices == [0, 10, 20, 30, 40, 50, 60, 70, 80, 90]


def test_start_frame_window():
    """Test a window with a start frame and an increment."""
    result = run(20, start_frame=5, frames_to_compare=3, increment=2)
    assert result.frame_indices == [5, 7, 9]


def test_frame_count_mismatch_warns(caplog):
    """Test that a frame count mismatch is logged and kept."""
    with caplog.at_level("WARNING"):
        result = run(50, 48)
    assert result.frame_count == 48
    assert len(result.warnings) == 1
    assert "50" in result.warnings[0] and "48" in result.warnings[0]
    assert "Frame count mismatch" in caplog.text


@pytest.mark.parametrize("threads", [2, 4, 8])
def test_thread_count_does_not_change_results(threads):
    """Test that the worker count does not change the scores."""
    single = run(40, increment=3)
    multi = run(40, increment=3, frame_threads=threads)
    assert multi.scores == single.scores
    assert multi.mean == single.mean


def test_scores_follow_frame_content():
    """Test that each score belongs to its own frame."""
    result = run(5)
    # Brighter luma gives a higher score
    assert result.values == sorted(result.values)
    assert len(set(result.values)) == 5


def test_statistics_are_exact():
    """Test that reported statistics match numpy on the scores."""
    result = run(12, frame_threads=3)
    values = np.array(result.values)
    assert result.mean == pytest.approx(values.mean())
    assert result.median == pytest.approx(np.median(values))
    assert result.std_dev == pytest.approx(values.std(ddof=1))
    assert result.percentile_5 == pytest.approx(np.percentile(values, 5))


def test_callbacks_receive_every_record():
    """Test that progress and record callbacks see every frame."""
    progress = RecordingProgress()
    records = []
    result = run(15, frame_threads=3, progress=progress,
                 on_record=lambda index, score: records.append((index, score)))
    assert len(progress.averages) == 15
    assert sorted(records) == result.items()


def test_idempotent():
    """Test that repeated runs give the same scores."""
    assert run(20, frame_threads=4).scores == run(20, frame_threads=4).scores


def test_workers_share_the_load():
    """Test that scoring runs on the worker threads."""
    metric = LumaMetric()
    run(60, metric=metric, frame_threads=4)
    assert metric.calls == 60
    assert all(name.startswith("score-worker-") for name in metric.threads)


def test_empty_stream():
    """Test comparing empty streams."""
    result = run(0)
    assert result.frame_count == 0
    assert math.isnan(result.mean)


def test_unknown_frame_counts():
    """Test streams that do not report a frame count."""
    source = SyntheticDecoder(6, report_count=False)
    distorted = SyntheticDecoder(6, report_count=False)
    config = resolve_color_config(source.get_video_details())
    result = compare_videos(source, distorted, config, config, LumaMetric())
    assert result.frame_indices == list(range(6))


@pytest.mark.parametrize("threads", [1, 3])
def test_read_failure_propagates(threads):
    """Test that a decoder error reaches the caller."""
    source = SyntheticDecoder(30)
    distorted = SyntheticDecoder(30, fail_at=7)
    config = resolve_color_config(source.get_video_details())
    with pytest.raises(FrameReadError, match="broken frame 7"):
        compare_videos(source, distorted, config, config, LumaMetric(), frame_threads=threads)


def test_metric_failure_is_wrapped():
    """Test that a metric crash becomes MetricComputationError."""
    with pytest.raises(MetricComputationError, match="metric backend crashed"):
        run(30, metric=LumaMetric(fail_on_call=4), frame_threads=3)


def test_metric_failure_stops_decoding():
    """Test that a metric failure stops further decoding."""
    source = SyntheticDecoder(1000)
    distorted = SyntheticDecoder(1000)
    config = resolve_color_config(source.get_video_details())
    with pytest.raises(MetricComputationError):
        compare_videos(source, distorted, config, config, LumaMetric(fail_on_call=1))
    assert source.position < 1000


class CrashingDecoder(SyntheticDecoder):
    """Decoder whose backend fails with a non-library exception."""

    def read_next_frame(self):
        if self.position == self.fail_at:
            raise RuntimeError("decoder backend crashed")
        return super().read_next_frame()


def test_unexpected_decoder_error_is_wrapped():
    """Test that a foreign decoder exception reaches the caller as FrameReadError."""
    source = SyntheticDecoder(30)
    distorted = CrashingDecoder(30, fail_at=5)
    config = resolve_color_config(source.get_video_details())
    with pytest.raises(FrameReadError, match="decoder backend crashed") as excinfo:
        compare_videos(source, distorted, config, config, LumaMetric(), frame_threads=2)
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_callback_failure_stops_workers():
    """Test that an exception raised by on_record leaves no worker decoding."""
    source = SyntheticDecoder(100000)
    distorted = SyntheticDecoder(100000)
    config = resolve_color_config(source.get_video_details())

    def on_record(frame_index, score):
        raise BrokenPipeError("stdout closed")

    with pytest.raises(BrokenPipeError):
        compare_videos(source, distorted, config, config, LumaMetric(),
                       frame_threads=4, on_record=on_record)

    alive = [t.name for t in threading.enumerate() if t.name.startswith("score-worker-")]
    assert alive == []
    assert source.position < 100000


@pytest.mark.parametrize("kwargs", [
    dict(frame_threads=0),
    dict(increment=0),
    dict(frames_to_compare=0),
    dict(start_frame=-1),
    dict(start_frame=10),
    dict(start_frame=25),
])
def test_invalid_window(kwargs):
    """Test rejected pool and window parameters."""
    with pytest.raises(ConfigurationError):
        run(10, **kwargs)


def test_start_frame_needs_a_frame_count():
    """Test that a start frame needs a known frame count."""
    source = SyntheticDecoder(10, report_count=False)
    distorted = SyntheticDecoder(10, report_count=False)
    config = resolve_color_config(source.get_video_details())
    with pytest.raises(ConfigurationError):
        compare_videos(source, distorted, config, config, LumaMetric(), start_frame=2)


def test_start_frame_with_one_known_count():
    """Test a start frame when only one stream reports its length."""
    source = SyntheticDecoder(10)
    distorted = SyntheticDecoder(10, report_count=False)
    config = resolve_color_config(source.get_video_details())
    result = compare_videos(source, distorted, config, config, LumaMetric(), start_frame=8)
    assert result.frame_indices == [8, 9]


def test_resolution_mismatch():
    """Test that streams of different sizes are rejected."""
    source = SyntheticDecoder(3)
    distorted = SyntheticDecoder(3, width=32)
    config = resolve_color_config(source.get_video_details())
    with pytest.raises(ConfigurationError):
        compare_videos(source, distorted, config, config, LumaMetric())


def test_unsupported_colorimetry_rejected_before_decoding():
    """Test that unsupported colorimetry fails before any frame is read."""
    source = SyntheticDecoder(3)
    distorted = SyntheticDecoder(3)
    config = resolve_color_config(source.get_video_details())
    ictcp = dataclasses.replace(config, matrix_coefficients=MatrixCoefficients.ICTCP)
    with pytest.raises(ConfigurationError):
        compare_videos(source, distorted, config, ictcp, LumaMetric())
    assert source.position == 0


@pytest.mark.parametrize("counts, increment, start, frames, expected", [
    ((100, 100), 10, 0, None, 10),
    ((10, 12), 2, 5, None, 3),
    ((100, 100), 1, 0, 20, 20),
    ((5, 5), 1, 0, 20, 5),
    ((None, 30), 1, 0, None, 30),
    ((None, None), 1, 0, None, None),
    ((None, None), 1, 0, 5, 5),
])
def test_expected_comparisons(counts, increment, start, frames, expected):
    """Test the number of comparisons a run should produce."""
    assert expected_comparisons(counts, increment, start, frames) == expected


def test_expected_comparisons_matches_result():
    """Test the expected count against a real run."""
    result = run(37, increment=4, start_frame=3)
    assert result.frame_count == expected_comparisons((37, 37), 4, 3)


def write_png(path, image):
    assert cv2.imwrite(str(path), image)
    return path


def test_compare_images(tmp_path):
    """Test still-image comparison."""
    img = np.tile(np.arange(32, dtype=np.uint8)[np.newaxis, :, np.newaxis] * 8, (32, 1, 3))
    distorted = img.copy()
    distorted[::2, ::2] = 0
    src = write_png(tmp_path / "src.png", img)
    dst = write_png(tmp_path / "dst.png", distorted)

    assert compare_images(src, src, SsimMetric()) == pytest.approx(1.0)
    assert 0 < compare_images(src, dst, PsnrMetric()) < 100


def test_compare_images_errors(tmp_path):
    """Test still images of different sizes and a missing image."""
    small = write_png(tmp_path / "small.png", np.zeros((8, 8, 3), dtype=np.uint8))
    large = write_png(tmp_path / "large.png", np.zeros((16, 8, 3), dtype=np.uint8))
    with pytest.raises(ConfigurationError):
        compare_images(small, large, PsnrMetric())
    with pytest.raises(DecoderInitError):
        compare_images(tmp_path / "missing.png", small, PsnrMetric())
