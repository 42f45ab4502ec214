from enum import Enum, auto


class ChromaSampling(Enum):
    CS420 = auto()
    CS422 = auto()
    CS444 = auto()
    CS400 = auto()  # Monochrome, luma only


# (h_sub, v_sub) as log2 shifts relative to luma
_DECIMATION = {
    ChromaSampling.CS420: (1, 1),
    ChromaSampling.CS422: (1, 0),
    ChromaSampling.CS444: (0, 0),
    ChromaSampling.CS400: (0, 0),
}


def chroma_decimation(chroma_sampling):
    """(x, y) log2 chroma shifts for a sampling mode; mono counts as 4:4:4."""
    return _DECIMATION[chroma_sampling]


class PixelFormat:
    def __init__(self, name, chroma_sampling, bit_depth=8, aliases=()):
        self.name = name
        self.chroma_sampling = chroma_sampling
        self.bit_depth = bit_depth
        self.aliases = tuple(aliases)

    @property
    def decimation(self):
        return chroma_decimation(self.chroma_sampling)

    @property
    def bytes_per_sample(self):
        return 1 if self.bit_depth <= 8 else 2

    @property
    def planes(self):
        return 1 if self.chroma_sampling == ChromaSampling.CS400 else 3

    def plane_shapes(self, width, height):
        """Return (rows, cols) of every plane, chroma dimensions rounded up."""
        shapes = [(height, width)]
        if self.planes == 3:
            sx, sy = self.decimation
            c_w = (width + (1 << sx) - 1) >> sx
            c_h = (height + (1 << sy) - 1) >> sy
            shapes.extend([(c_h, c_w), (c_h, c_w)])
        return shapes

    def calculate_frame_size(self, width, height):
        samples = sum(rows * cols for rows, cols in self.plane_shapes(width, height))
        return samples * self.bytes_per_sample

    def __repr__(self):
        return f"PixelFormat({self.name!r}, {self.chroma_sampling.name}, {self.bit_depth}-bit)"


class FormatManager:
    def __init__(self):
        self.formats = {}
        self._aliases = {}
        self._y4m_tags = {}
        self._init_formats()

    def _init_formats(self):
        # Reference: ffmpeg pix_fmt names and the yuv4mpegpipe colorspace tags

        # --- 8-bit planar YUV ---
        self._add("yuv420p", ChromaSampling.CS420, aliases=("I420", "YU12", "IYUV"),
                  y4m_tags=("420", "420jpeg", "420mpeg2", "420paldv"))
        self._add("yuv422p", ChromaSampling.CS422, aliases=("422P", "YUV422P", "I422"),
                  y4m_tags=("422",))
        self._add("yuv444p", ChromaSampling.CS444, aliases=("444P", "YUV444P", "I444"),
                  y4m_tags=("444",))
        self._add("gray", ChromaSampling.CS400, aliases=("GREY", "Y800", "GRAY8"),
                  y4m_tags=("mono",))

        # --- High bit depth planar YUV (16-bit little-endian containers) ---
        for depth in (9, 10, 12, 14, 16):
            self._add(f"yuv420p{depth}le", ChromaSampling.CS420, bit_depth=depth,
                      aliases=(f"yuv420p{depth}",), y4m_tags=(f"420p{depth}",))
            self._add(f"yuv422p{depth}le", ChromaSampling.CS422, bit_depth=depth,
                      aliases=(f"yuv422p{depth}",), y4m_tags=(f"422p{depth}",))
            self._add(f"yuv444p{depth}le", ChromaSampling.CS444, bit_depth=depth,
                      aliases=(f"yuv444p{depth}",), y4m_tags=(f"444p{depth}",))
        for depth in (10, 12, 16):
            self._add(f"gray{depth}le", ChromaSampling.CS400, bit_depth=depth,
                      aliases=(f"gray{depth}",), y4m_tags=(f"mono{depth}",))

    def _add(self, name, chroma_sampling, bit_depth=8, aliases=(), y4m_tags=()):
        fmt = PixelFormat(name, chroma_sampling, bit_depth, aliases)
        self.formats[name] = fmt
        self._aliases[name.lower()] = fmt
        for alias in aliases:
            self._aliases[alias.lower()] = fmt
        for tag in y4m_tags:
            self._y4m_tags[tag.lower()] = fmt

    def get_format(self, name):
        """Look up a format by pix_fmt name or alias. Returns None if unknown."""
        if not name:
            return None
        return self._aliases.get(name.strip().lower())

    def get_y4m_format(self, tag):
        """Look up the format for a Y4M 'C' colorspace tag. Returns None if unknown."""
        return self._y4m_tags.get(tag.strip().lower())

    def get_format_names(self):
        return list(self.formats.keys())
