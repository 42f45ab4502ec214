import logging
import math
import queue
import threading

import cv2

from .aggregator import ResultAggregator
from .constants import DEFAULT_FRAME_THREADS, DEFAULT_INCREMENT, DEFAULT_START_FRAME
from .cursor import FramePairCursor
from .errors import (
    ConfigurationError, DecoderInitError, FrameReadError, MetricComputationError,
    VideoCompareError,
)
from .video_converter import FrameConverter, image_to_rgb, unsupported_reason

logger = logging.getLogger(__name__)

# Queue messages besides (index, score) tuples
_WORKER_DONE = object()


class _WorkerFailure:
    def __init__(self, error):
        self.error = error


def validate_window(frame_threads, increment, start_frame, frames_to_compare):
    """Reject pool and window parameters that cannot produce a comparison."""
    if frame_threads < 1:
        raise ConfigurationError("frame_threads must be at least 1")
    if increment < 1:
        raise ConfigurationError("increment must be at least 1")
    if start_frame < 0:
        raise ConfigurationError("start frame cannot be negative")
    if frames_to_compare is not None and frames_to_compare < 1:
        raise ConfigurationError("frames to compare must be at least 1")


def expected_comparisons(frame_counts, increment=DEFAULT_INCREMENT,
                         start_frame=DEFAULT_START_FRAME, frames_to_compare=None):
    """Number of records a run should produce, or None if unknown."""
    known = [count for count in frame_counts if count is not None]
    available = None
    if known:
        remaining = max(min(known) - start_frame, 0)
        available = math.ceil(remaining / increment)
    if frames_to_compare is None:
        return available
    if available is None:
        return frames_to_compare
    return min(frames_to_compare, available)


def check_frame_counts(source_details, distorted_details, start_frame):
    """Validate the window against stream lengths. Returns non-fatal warnings."""
    warnings = []
    src_count = source_details.frame_count
    dst_count = distorted_details.frame_count

    if src_count is not None and dst_count is not None and src_count != dst_count:
        msg = (f"Frame count mismatch: source has {src_count} frames, "
               f"distorted has {dst_count}")
        logger.warning(msg)
        warnings.append(msg)

    if start_frame > 0:
        known = [count for count in (src_count, dst_count) if count is not None]
        if not known:
            raise ConfigurationError(
                "A start frame was requested but neither input reports a frame count")
        if start_frame >= min(known):
            raise ConfigurationError(
                f"Start frame {start_frame} is beyond the end of the input ({min(known)} frames)")
    return warnings


def _score_worker(cursor, src_converter, dst_converter, metric, results):
    try:
        while True:
            try:
                pair = cursor.advance()
            except VideoCompareError:
                raise
            except Exception as exc:
                raise FrameReadError(f"decoding failed: {exc}") from exc
            if pair is None:
                break
            try:
                src_rgb = src_converter.to_rgb(pair.source)
                dst_rgb = dst_converter.to_rgb(pair.distorted)
                score = float(metric.compute_score(src_rgb, dst_rgb))
            except VideoCompareError:
                raise
            except Exception as exc:
                raise MetricComputationError(f"frame {pair.index}: {exc}") from exc
            results.put((pair.index, score))
    except Exception as exc:
        logger.error("Worker %s failed: %s", threading.current_thread().name, exc)
        cursor.stop()
        results.put(_WorkerFailure(exc))
    finally:
        results.put(_WORKER_DONE)


def compare_videos(source, distorted, src_config, dst_config, metric, *,
                   frame_threads=DEFAULT_FRAME_THREADS, increment=DEFAULT_INCREMENT,
                   start_frame=DEFAULT_START_FRAME, frames_to_compare=None,
                   progress=None, on_record=None):
    """
    Score every selected frame pair of two decoders and aggregate the results.

    Decoding is serialized through a FramePairCursor; color conversion and
    scoring run in `frame_threads` worker threads.

    Args:
        source, distorted: Decoders (see video_reader.Decoder).
        src_config, dst_config (ColorConfig): Resolved colorimetry per stream.
        metric (Metric): Scorer taking two sRGB float images.
        frame_threads (int): Worker thread count.
        increment (int): Compare every Nth frame.
        start_frame (int): First frame index to compare.
        frames_to_compare (int): Number of comparisons, None for all.
        progress: Optional object with advance(running_average).
        on_record: Optional callable(frame_index, score) in arrival order.

    Returns:
        AggregateResult

    Raises:
        ConfigurationError: Before any worker starts.
        FrameReadError, MetricComputationError: First failure seen by a worker.
    """
    validate_window(frame_threads, increment, start_frame, frames_to_compare)

    for label, config in (("source", src_config), ("distorted", dst_config)):
        reason = unsupported_reason(config)
        if reason:
            raise ConfigurationError(f"Cannot convert {label} colors: {reason}")

    src_details = source.get_video_details()
    dst_details = distorted.get_video_details()
    warnings = check_frame_counts(src_details, dst_details, start_frame)

    if (src_details.width, src_details.height) != (dst_details.width, dst_details.height):
        raise ConfigurationError(
            f"Resolutions differ: source {src_details.width}x{src_details.height}, "
            f"distorted {dst_details.width}x{dst_details.height}")

    src_converter = FrameConverter(src_config)
    dst_converter = FrameConverter(dst_config)
    cursor = FramePairCursor(source, distorted, increment=increment,
                             start_frame=start_frame, frames_to_compare=frames_to_compare)
    results = queue.Queue()

    logger.info("Comparing with %d worker(s), increment=%d, start=%d, frames=%s",
                frame_threads, increment, start_frame, frames_to_compare)

    workers = []
    for i in range(frame_threads):
        worker = threading.Thread(
            target=_score_worker,
            args=(cursor, src_converter, dst_converter, metric, results),
            name=f"score-worker-{i}",
            daemon=True,
        )
        worker.start()
        workers.append(worker)

    aggregator = ResultAggregator()
    failure = None
    running = len(workers)
    try:
        while running:
            item = results.get()
            if item is _WORKER_DONE:
                running -= 1
                continue
            if isinstance(item, _WorkerFailure):
                if failure is None:
                    failure = item.error
                continue
            frame_index, score = item
            running_average = aggregator.add(frame_index, score)
            if on_record is not None:
                on_record(frame_index, score)
            if progress is not None:
                progress.advance(running_average)
    finally:
        # Decoders must be idle before the caller may close them
        cursor.stop()
        while running:
            if results.get() is _WORKER_DONE:
                running -= 1
        for worker in workers:
            worker.join()

    if failure is not None:
        raise failure

    return aggregator.finalize(warnings)


def load_image(path):
    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise DecoderInitError(f"Cannot read image {path}")
    return image_to_rgb(image)


def compare_images(source_path, distorted_path, metric):
    """Score two still images, assumed to be sRGB. Resolutions must match."""
    source = load_image(source_path)
    distorted = load_image(distorted_path)
    if source.shape != distorted.shape:
        raise ConfigurationError(
            f"Image resolutions differ: {source.shape[1]}x{source.shape[0]} vs "
            f"{distorted.shape[1]}x{distorted.shape[0]}")
    return float(metric.compute_score(source, distorted))
