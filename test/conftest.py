import numpy as np
import pytest

from video_compare.format_manager import FormatManager


def luma_value(index, bit_depth=8):
    """Luma sample used for frame `index` of synthetic clips (limited range)."""
    return (16 + (index * 7) % 200) << (bit_depth - 8)


def synthetic_planes(index, fmt, width, height):
    dtype = np.uint8 if fmt.bytes_per_sample == 1 else np.dtype("<u2")
    shapes = fmt.plane_shapes(width, height)
    planes = [np.full(shapes[0], luma_value(index, fmt.bit_depth), dtype=dtype)]
    for shape in shapes[1:]:
        planes.append(np.full(shape, 128 << (fmt.bit_depth - 8), dtype=dtype))
    return planes


def y4m_bytes(frames, width=16, height=16, colorspace="420jpeg", extra=""):
    """Build a YUV4MPEG2 stream with `frames` synthetic pictures."""
    fmt = FormatManager().get_y4m_format(colorspace or "420jpeg")
    header = f"YUV4MPEG2 W{width} H{height} F25:1 Ip A1:1"
    if colorspace:
        header += f" C{colorspace}"
    data = bytearray((header + extra + "\n").encode("ascii"))
    for i in range(frames):
        data.extend(b"FRAME\n")
        for plane in synthetic_planes(i, fmt, width, height):
            data.extend(plane.tobytes())
    return bytes(data)


@pytest.fixture
def make_y4m(tmp_path):
    def _make(name, frames, width=16, height=16, colorspace="420jpeg", extra=""):
        path = tmp_path / name
        path.write_bytes(y4m_bytes(frames, width, height, colorspace, extra))
        return path
    return _make
