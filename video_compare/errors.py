class VideoCompareError(Exception):
    """Base class for every error raised by video_compare."""


class DecoderInitError(VideoCompareError):
    """A stream could not be opened or probed."""


class UnsupportedStreamError(VideoCompareError):
    """The stream uses a layout or sample type the decoders cannot produce."""


class FrameReadError(VideoCompareError):
    """Decoding failed in the middle of a stream."""


class MetricComputationError(VideoCompareError):
    """Color conversion or scoring of a frame pair failed."""


class UnrecognizedToken(VideoCompareError, ValueError):
    """A user supplied colorimetry name or code did not match anything."""

    def __init__(self, kind, token):
        super().__init__(f"Unrecognized {kind} value: {token!r}")
        self.kind = kind
        self.token = token


class ConfigurationError(VideoCompareError):
    """The requested comparison cannot be run with the given parameters."""


class ChartRenderError(VideoCompareError):
    """The score chart could not be drawn or saved."""
