import sys
import os
import argparse
import logging

from . import __version__
from .analysis import get_metric
from .colorimetry import parse_matrix, parse_primaries, parse_transfer, resolve_color_config
from .constants import (
    DEFAULT_FRAME_THREADS, DEFAULT_INCREMENT, DEFAULT_METRIC, DEFAULT_RAW_PIX_FMT,
    DEFAULT_START_FRAME, METRIC_CHOICES, STDIN_PATH,
)
from .engine import compare_images, compare_videos, expected_comparisons, validate_window
from .errors import ChartRenderError, ConfigurationError, VideoCompareError
from .log_config import parse_level, setup_logging
from .report import ProgressReporter, format_summary, render_chart, write_csv
from .video_reader import open_decoder

logger = logging.getLogger(__name__)


def _add_common_arguments(parser):
    parser.add_argument("source", help="Reference input")
    parser.add_argument("distorted", help="Distorted input")
    parser.add_argument("--metric", choices=METRIC_CHOICES, default=DEFAULT_METRIC,
                        help=f"Comparison metric (default: {DEFAULT_METRIC})")
    parser.add_argument("--ssimulacra2-binary", dest="ssimulacra2_binary",
                        help="Path to the libjxl ssimulacra2 tool (default: $SSIMULACRA2_BIN or PATH)")
    parser.add_argument("--log-level", dest="log_level", type=parse_level, default=logging.WARNING,
                        help="Logging level: debug, info, warning, error (default: warning)")
    parser.add_argument("--log-file", dest="log_file", help="Also write log records to this file")


def _add_color_arguments(parser, prefix, label):
    group = parser.add_argument_group(f"{label} colorimetry")
    group.add_argument(f"--{prefix}-matrix", dest=f"{prefix}_matrix", type=parse_matrix,
                       help="Matrix coefficients, name or code (e.g. bt709, 170m, 9)")
    group.add_argument(f"--{prefix}-transfer", dest=f"{prefix}_transfer", type=parse_transfer,
                       help="Transfer characteristics, name or code (e.g. bt709, srgb, pq)")
    group.add_argument(f"--{prefix}-primaries", dest=f"{prefix}_primaries", type=parse_primaries,
                       help="Color primaries, name or code (e.g. bt709, bt2020)")
    group.add_argument(f"--{prefix}-full-range", dest=f"{prefix}_full_range",
                       action="store_true", default=None,
                       help="Treat samples as full range (default: stream hint, else limited)")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="video_compare",
        description="Perceptual comparison of images and video frame pairs")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    image = subparsers.add_parser("image", help="Compare two still images")
    _add_common_arguments(image)

    video = subparsers.add_parser("video", help="Compare two videos frame by frame")
    _add_common_arguments(video)
    video.add_argument("-f", "--frame-threads", dest="frame_threads", type=int,
                       default=DEFAULT_FRAME_THREADS,
                       help=f"Number of scoring threads (default: {DEFAULT_FRAME_THREADS})")
    video.add_argument("-i", "--increment", type=int, default=DEFAULT_INCREMENT,
                       help="Compare every Nth frame (default: 1)")
    video.add_argument("--start-frame", dest="start_frame", type=int, default=DEFAULT_START_FRAME,
                       help="First frame to compare (default: 0)")
    video.add_argument("--frames", dest="frames_to_compare", type=int,
                       help="Number of frames to compare (default: all)")
    video.add_argument("-v", "--verbose", action="store_true", help="Print the score of every frame")
    video.add_argument("-g", "--graph", action="store_true", help="Save a PNG chart of the scores")
    video.add_argument("--graph-dir", dest="graph_dir", default=".",
                       help="Directory for the chart (default: current directory)")
    video.add_argument("--csv", dest="csv_path", help="Write per-frame scores to this CSV file")
    video.add_argument("--width", type=int, help="Width of raw YUV input")
    video.add_argument("--height", type=int, help="Height of raw YUV input")
    video.add_argument("--pix-fmt", dest="pix_fmt", default=DEFAULT_RAW_PIX_FMT,
                       help=f"Pixel format of raw YUV input (default: {DEFAULT_RAW_PIX_FMT})")
    _add_color_arguments(video, "src", "Source")
    _add_color_arguments(video, "dst", "Distorted")
    return parser


def _make_metric(args):
    kwargs = {}
    if args.metric == "ssimulacra2":
        kwargs["binary"] = args.ssimulacra2_binary
    return get_metric(args.metric, **kwargs)


def run_image(args):
    metric = _make_metric(args)
    score = compare_images(args.source, args.distorted, metric)
    print(f"Score: {score:.8f}")
    return 0


def run_video(args):
    if args.source == STDIN_PATH and args.distorted == STDIN_PATH:
        raise ConfigurationError("Only one input can be read from stdin")
    validate_window(args.frame_threads, args.increment, args.start_frame, args.frames_to_compare)

    metric = _make_metric(args)
    source = distorted = None
    try:
        source = open_decoder(args.source, args.width, args.height, args.pix_fmt)
        distorted = open_decoder(args.distorted, args.width, args.height, args.pix_fmt)
        src_details = source.get_video_details()
        dst_details = distorted.get_video_details()

        src_config = resolve_color_config(src_details, args.src_matrix, args.src_transfer,
                                          args.src_primaries, args.src_full_range)
        dst_config = resolve_color_config(dst_details, args.dst_matrix, args.dst_transfer,
                                          args.dst_primaries, args.dst_full_range)
        logger.info("Source: %s", src_config)
        logger.info("Distorted: %s", dst_config)

        total = expected_comparisons((src_details.frame_count, dst_details.frame_count),
                                     args.increment, args.start_frame, args.frames_to_compare)
        with ProgressReporter(total) as progress:
            on_record = None
            if args.verbose:
                def on_record(frame_index, score):
                    progress.write(f"Frame {frame_index}: {score:.8f}")

            result = compare_videos(
                source, distorted, src_config, dst_config, metric,
                frame_threads=args.frame_threads,
                increment=args.increment,
                start_frame=args.start_frame,
                frames_to_compare=args.frames_to_compare,
                progress=progress,
                on_record=on_record,
            )
    finally:
        for decoder in (source, distorted):
            if decoder is not None:
                decoder.close()

    print(format_summary(result))

    if args.csv_path:
        try:
            write_csv(args.csv_path, result)
            print(f"Scores written to {args.csv_path}")
        except OSError as e:
            logger.error("CSV export failed: %s", e)
            print(f"Error: could not write {args.csv_path}: {e}", file=sys.stderr)
    if args.graph:
        try:
            path = render_chart(result, args.graph_dir, metric.name, metric.score_range)
            print(f"Chart saved to {os.path.abspath(path)}")
        except ChartRenderError as e:
            logger.error("Chart export failed: %s", e)
            print(f"Error: {e}", file=sys.stderr)
    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        if args.command == "image":
            status = run_image(args)
        else:
            status = run_video(args)
    except VideoCompareError as e:
        logger.debug("Comparison failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(status)


if __name__ == "__main__":
    main()
