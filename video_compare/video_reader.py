import logging
import mmap
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .constants import (
    DEFAULT_RAW_PIX_FMT, FFMPEG_BIN_ENV, FFPROBE_BIN_ENV, RAW_EXTENSIONS, SCRIPT_EXTENSIONS,
    STDIN_PATH, VSPIPE_BIN_ENV, Y4M_EXTENSIONS,
)
from .errors import DecoderInitError, FrameReadError, UnsupportedStreamError
from .format_manager import FormatManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoDetails:
    width: int
    height: int
    bit_depth: int
    chroma_sampling: object
    frame_count: Optional[int] = None
    full_range: Optional[bool] = None
    pix_fmt: str = ""


@dataclass
class Frame:
    """One decoded picture: Y[, U, V] planes as uint8 or uint16 arrays."""
    planes: tuple
    bit_depth: int

    @property
    def width(self):
        return self.planes[0].shape[1]

    @property
    def height(self):
        return self.planes[0].shape[0]


def planes_from_buffer(buffer, fmt, width, height):
    """Slice a packed planar frame buffer into numpy planes without copying."""
    dtype = np.uint8 if fmt.bytes_per_sample == 1 else np.dtype("<u2")
    planes = []
    offset = 0
    for rows, cols in fmt.plane_shapes(width, height):
        count = rows * cols
        plane = np.frombuffer(buffer, dtype=dtype, count=count, offset=offset).reshape((rows, cols))
        planes.append(plane)
        offset += count * fmt.bytes_per_sample
    return Frame(planes=tuple(planes), bit_depth=fmt.bit_depth)


def find_tool(env_var, default_name):
    """Resolve an external executable from the environment or PATH, or None."""
    configured = os.environ.get(env_var)
    if configured:
        return configured
    return shutil.which(default_name)


class Decoder:
    """Sequential frame producer for one stream. Not thread-safe."""

    name = "<decoder>"

    def get_video_details(self):
        return self.details

    def read_next_frame(self):
        """Return the next Frame, or None once the stream is exhausted."""
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class Y4MDecoder(Decoder):
    """YUV4MPEG2 reader for a file path or an already open binary stream."""

    def __init__(self, source, frame_count=None):
        self.format_manager = FormatManager()
        self.warnings = []  # non-fatal header oddities
        self.y4m_fps = None
        self.y4m_interlace = "progressive"
        self.y4m_par = (1, 1)
        self.y4m_extensions = []
        self.full_range = None
        self.format = None
        self._frames_read = 0
        self._path = None

        if isinstance(source, (str, os.PathLike)):
            self._path = os.fspath(source)
            self.name = self._path
            try:
                self._stream = open(self._path, "rb")
            except OSError as exc:
                raise DecoderInitError(f"Cannot open {self._path}: {exc}") from exc
            self._owns_stream = True
        else:
            self._stream = source
            self.name = getattr(source, "name", "<stream>")
            self._owns_stream = False

        try:
            header = self._stream.readline()
            self.y4m_header_len = len(header)
            self.parse_y4m_header(header)
            if frame_count is None and self._path is not None:
                frame_count = self._count_frames()
        except Exception:
            self.close()
            raise

        self.details = VideoDetails(
            width=self.width,
            height=self.height,
            bit_depth=self.format.bit_depth,
            chroma_sampling=self.format.chroma_sampling,
            frame_count=frame_count,
            full_range=self.full_range,
            pix_fmt=self.format.name,
        )
        logger.debug("Opened Y4M %s: %s", self.name, self.details)

    def parse_y4m_header(self, header):
        # YUV4MPEG2 W720 H576 F25:1 Ip A1:1 C420mpeg2 XYSCSS=420JPEG
        if not header:
            raise DecoderInitError(f"{self.name}: empty stream, no Y4M header")
        try:
            header_str = header.rstrip(b"\n").decode("ascii")
        except UnicodeDecodeError as exc:
            raise DecoderInitError(f"{self.name}: invalid Y4M header") from exc

        parts = header_str.split(" ")
        if parts[0] != "YUV4MPEG2":
            raise DecoderInitError(f"{self.name}: invalid Y4M signature {parts[0][:16]!r}")

        self.width = self.height = None
        for part in parts[1:]:
            if not part:
                continue
            if part[0] in "WH":
                try:
                    value = int(part[1:])
                except ValueError as exc:
                    raise DecoderInitError(f"{self.name}: bad Y4M field {part!r}") from exc
                if part[0] == 'W':
                    self.width = value
                else:
                    self.height = value
            elif part.startswith('C'):
                colorspace = part[1:]
                self.format = self.format_manager.get_y4m_format(colorspace)
                if self.format is None:
                    raise UnsupportedStreamError(
                        f"{self.name}: unsupported Y4M colorspace '{colorspace}'")
            elif part.startswith('F'):
                # Frame rate: F25:1 or F30000:1001
                try:
                    num_str, den_str = part[1:].split(':')
                    self.y4m_fps = int(num_str) / int(den_str)
                except (ValueError, ZeroDivisionError):
                    pass
            elif part.startswith('I'):
                # Interlace: Ip=progressive, It=tff, Ib=bff, Im=mixed
                interlace_map = {'p': 'progressive', 't': 'tff', 'b': 'bff', 'm': 'mixed'}
                self.y4m_interlace = interlace_map.get(part[1:2], 'progressive')
            elif part.startswith('A'):
                try:
                    num_str, den_str = part[1:].split(':')
                    self.y4m_par = (int(num_str), int(den_str))
                except ValueError:
                    pass
            elif part.startswith('X'):
                ext = part[1:]
                self.y4m_extensions.append(ext)
                if ext.upper() == "COLORRANGE=FULL":
                    self.full_range = True
                elif ext.upper() == "COLORRANGE=LIMITED":
                    self.full_range = False

        if not self.width or not self.height or self.width <= 0 or self.height <= 0:
            raise DecoderInitError(f"{self.name}: Y4M header is missing a valid W/H")

        if self.format is None:
            # The Y4M default colorspace is 4:2:0 8-bit
            msg = f"{self.name}: Y4M colorspace not specified, assuming 420jpeg"
            logger.warning(msg)
            self.warnings.append(msg)
            self.format = self.format_manager.get_y4m_format("420jpeg")

        self.frame_size = self.format.calculate_frame_size(self.width, self.height)
        logger.debug("Y4M header parsed: %dx%d format=%s fps=%s interlace=%s",
                     self.width, self.height, self.format.name, self.y4m_fps, self.y4m_interlace)

    def _count_frames(self):
        """Count complete frames by walking FRAME headers (handles frame parameters)."""
        file_size = os.path.getsize(self._path)
        if file_size <= self.y4m_header_len:
            return 0
        try:
            with open(self._path, "rb") as f, \
                    mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mm:
                count = 0
                offset = self.y4m_header_len
                while offset < file_size:
                    header_end = mm.find(b'\n', offset)
                    if header_end == -1:
                        break
                    if not mm[offset:header_end].startswith(b'FRAME'):
                        break
                    offset = header_end + 1 + self.frame_size
                    if offset > file_size:
                        break
                    count += 1
                return count
        except (OSError, ValueError):
            # Estimate assuming bare "FRAME\n" headers
            logger.warning("mmap failed for %s, estimating frame count", self._path)
            payload_size = self.frame_size + 6
            return (file_size - self.y4m_header_len) // payload_size

    def read_next_frame(self):
        try:
            frame_header = self._stream.readline()
        except (OSError, ValueError) as exc:
            raise FrameReadError(f"{self.name}: read failed at frame {self._frames_read}: {exc}") from exc
        if not frame_header:
            return None
        if not frame_header.startswith(b"FRAME"):
            raise FrameReadError(
                f"{self.name}: corrupt frame header at frame {self._frames_read}")

        try:
            payload = self._stream.read(self.frame_size)
        except (OSError, ValueError) as exc:
            raise FrameReadError(f"{self.name}: read failed at frame {self._frames_read}: {exc}") from exc
        if payload is None or len(payload) < self.frame_size:
            got = 0 if payload is None else len(payload)
            raise FrameReadError(
                f"{self.name}: truncated frame {self._frames_read} "
                f"({got} of {self.frame_size} bytes)")

        frame = planes_from_buffer(payload, self.format, self.width, self.height)
        self._frames_read += 1
        return frame

    def close(self):
        stream = getattr(self, "_stream", None)
        if stream is not None and self._owns_stream:
            stream.close()
        self._stream = None


class RawVideoDecoder(Decoder):
    """Headerless planar YUV file with caller supplied geometry."""

    def __init__(self, file_path, width, height, pix_fmt=DEFAULT_RAW_PIX_FMT):
        self.file_path = file_path
        self.name = os.fspath(file_path)
        self.width = width
        self.height = height
        self.warnings = []

        if not width or not height or width <= 0 or height <= 0:
            raise DecoderInitError(f"{self.name}: raw input needs a positive --width and --height")

        self.format_manager = FormatManager()
        self.format = self.format_manager.get_format(pix_fmt)
        if self.format is None:
            raise UnsupportedStreamError(f"{self.name}: unsupported raw pixel format '{pix_fmt}'")
        self.frame_size = self.format.calculate_frame_size(width, height)

        try:
            self.file_size = os.path.getsize(file_path)
            self._file = open(file_path, "rb")
        except OSError as exc:
            raise DecoderInitError(f"Cannot open {self.name}: {exc}") from exc
        logger.debug("Opening file: %s (size=%d bytes)", file_path, self.file_size)

        self.total_frames = self.file_size // self.frame_size
        remainder = self.file_size % self.frame_size
        if remainder:
            msg = (f"{self.name}: {remainder} trailing bytes do not form a whole "
                   f"{width}x{height} {self.format.name} frame")
            logger.warning(msg)
            self.warnings.append(msg)

        self._frames_read = 0
        self.details = VideoDetails(
            width=width,
            height=height,
            bit_depth=self.format.bit_depth,
            chroma_sampling=self.format.chroma_sampling,
            frame_count=self.total_frames,
            pix_fmt=self.format.name,
        )

    def read_next_frame(self):
        if self._frames_read >= self.total_frames:
            return None
        try:
            raw_data = self._file.read(self.frame_size)
        except (OSError, ValueError) as exc:
            raise FrameReadError(f"{self.name}: read failed at frame {self._frames_read}: {exc}") from exc
        if len(raw_data) < self.frame_size:
            raise FrameReadError(f"{self.name}: truncated frame {self._frames_read}")
        self._frames_read += 1
        return planes_from_buffer(raw_data, self.format, self.width, self.height)

    def close(self):
        f = getattr(self, "_file", None)
        if f is not None:
            f.close()
            self._file = None


class PipeDecoder(Y4MDecoder):
    """Y4M read from the stdout of a helper process (ffmpeg, vspipe)."""

    tool_name = "decoder process"

    def __init__(self, file_path, command, frame_count=None):
        self.file_path = os.fspath(file_path)
        self._stderr = tempfile.TemporaryFile()
        self._stderr_text = ""
        logger.debug("Spawning decoder: %s", " ".join(command))
        try:
            self._process = subprocess.Popen(
                command, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=self._stderr)
        except OSError as exc:
            self._process = None
            self._stderr.close()
            self._stderr = None
            raise DecoderInitError(f"Cannot start {self.tool_name} for {self.file_path}: {exc}") from exc

        try:
            super().__init__(self._process.stdout, frame_count=frame_count)
        except DecoderInitError as exc:
            # Y4MDecoder already closed us; stderr was captured on the way out
            raise DecoderInitError(f"{self.tool_name} could not decode {self.file_path}: "
                                   f"{self._stderr_text or exc}") from exc
        self.name = self.file_path

    def _tool_output(self):
        if self._process is not None:
            self._process.wait()
        if self._stderr is not None:
            self._stderr.seek(0)
            self._stderr_text = self._stderr.read().decode("utf-8", errors="replace").strip()
        return self._stderr_text

    def read_next_frame(self):
        frame = super().read_next_frame()
        if frame is None:
            returncode = self._process.wait()
            if returncode != 0:
                raise FrameReadError(f"{self.tool_name} exited with status {returncode} "
                                     f"on {self.file_path}: {self._tool_output()}")
        return frame

    def close(self):
        process = getattr(self, "_process", None)
        if process is not None:
            if process.poll() is None:
                process.kill()
            if process.stdout is not None:
                process.stdout.close()
            process.wait()
            self._tool_output()
            self._process = None
        stderr = getattr(self, "_stderr", None)
        if stderr is not None:
            stderr.close()
            self._stderr = None
        self._stream = None


class FFmpegDecoder(PipeDecoder):
    """Any container ffmpeg can read, transcoded on the fly to Y4M."""

    tool_name = "ffmpeg"

    def __init__(self, file_path):
        if not os.path.exists(file_path):
            raise DecoderInitError(f"Input file not found: {file_path}")
        ffmpeg = find_tool(FFMPEG_BIN_ENV, "ffmpeg")
        if ffmpeg is None:
            raise DecoderInitError("ffmpeg executable not found (set FFMPEG_BIN or install ffmpeg)")
        command = [
            ffmpeg, "-v", "error", "-nostdin", "-i", os.fspath(file_path),
            "-map", "0:v:0", "-f", "yuv4mpegpipe", "-strict", "-1", "-",
        ]
        super().__init__(file_path, command, frame_count=probe_frame_count(file_path))


class ScriptDecoder(PipeDecoder):
    """VapourSynth script rendered through vspipe."""

    tool_name = "vspipe"

    def __init__(self, file_path):
        if not os.path.exists(file_path):
            raise DecoderInitError(f"Script not found: {file_path}")
        self.vspipe = find_tool(VSPIPE_BIN_ENV, "vspipe")
        if self.vspipe is None:
            raise DecoderInitError("vspipe executable not found (set VSPIPE_BIN or install VapourSynth)")
        command = [self.vspipe, "-c", "y4m", os.fspath(file_path), "-"]
        super().__init__(file_path, command, frame_count=self._script_frame_count(file_path))

    def _script_frame_count(self, file_path):
        try:
            result = subprocess.run([self.vspipe, "--info", os.fspath(file_path)],
                                    capture_output=True, text=True, check=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            logger.warning("vspipe --info failed for %s: %s", file_path, exc)
            return None
        for line in result.stdout.splitlines():
            key, _, value = line.partition(":")
            if key.strip().lower() == "frames":
                try:
                    return int(value.strip())
                except ValueError:
                    break
        return None


def probe_frame_count(video):
    """Count video packets with ffprobe. Returns None when it cannot be determined."""
    ffprobe = find_tool(FFPROBE_BIN_ENV, "ffprobe")
    if ffprobe is None:
        logger.warning("ffprobe not found, frame count of %s is unknown", video)
        return None
    cmd = [
        ffprobe, "-v", "error", "-select_streams", "v:0", "-count_packets",
        "-show_entries", "stream=nb_read_packets", "-of", "csv=p=0", os.fspath(video),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        return int(result.stdout.strip().splitlines()[0].strip().rstrip(","))
    except (OSError, subprocess.CalledProcessError, ValueError, IndexError) as exc:
        logger.warning("ffprobe could not count frames of %s: %s", video, exc)
        return None


def open_decoder(path, width=None, height=None, pix_fmt=None):
    """Pick a decoder for a CLI input: '-' (stdin Y4M), .y4m, .vpy, raw YUV or ffmpeg."""
    path = os.fspath(path)
    if path == STDIN_PATH:
        return Y4MDecoder(sys.stdin.buffer)

    if not os.path.exists(path):
        raise DecoderInitError(f"Input file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    if ext in Y4M_EXTENSIONS:
        return Y4MDecoder(path)
    if ext in SCRIPT_EXTENSIONS:
        return ScriptDecoder(path)
    if ext in RAW_EXTENSIONS or (width and height):
        return RawVideoDecoder(path, width, height, pix_fmt or DEFAULT_RAW_PIX_FMT)
    return FFmpegDecoder(path)
