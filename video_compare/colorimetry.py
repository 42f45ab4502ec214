"""Colorimetry enumerations, user token parsing and resolution heuristics.

Code points follow ITU-T H.273. Every stream (source and distorted) is
resolved on its own: the two may end up with different colorimetry.
"""
import logging
from dataclasses import dataclass
from enum import IntEnum

from .errors import UnrecognizedToken
from .format_manager import chroma_decimation

logger = logging.getLogger(__name__)


class MatrixCoefficients(IntEnum):
    IDENTITY = 0
    BT709 = 1
    UNSPECIFIED = 2
    BT470M = 4
    BT470BG = 5
    ST170M = 6
    ST240M = 7
    YCGCO = 8
    BT2020_NCL = 9
    BT2020_CL = 10
    ST2085 = 11
    CHROMATICITY_DERIVED_NCL = 12
    CHROMATICITY_DERIVED_CL = 13
    ICTCP = 14


class TransferCharacteristic(IntEnum):
    BT1886 = 1
    UNSPECIFIED = 2
    BT470M = 4
    BT470BG = 5
    ST170M = 6
    ST240M = 7
    LINEAR = 8
    LOGARITHMIC_100 = 9
    LOGARITHMIC_316 = 10
    XVYCC = 11
    BT1361E = 12
    SRGB = 13
    BT2020_10 = 14
    BT2020_12 = 15
    PERCEPTUAL_QUANTIZER = 16
    ST428 = 17
    HYBRID_LOG_GAMMA = 18


class ColorPrimaries(IntEnum):
    BT709 = 1
    UNSPECIFIED = 2
    BT470M = 4
    BT470BG = 5
    ST170M = 6
    ST240M = 7
    FILM = 8
    BT2020 = 9
    ST428 = 10
    P3_DCI = 11
    P3_DISPLAY = 12
    TECH3213 = 22


_MATRIX_ALIASES = {
    MatrixCoefficients.IDENTITY: ("identity", "rgb", "srgb", "smpte428", "xyz"),
    MatrixCoefficients.BT709: ("709", "bt709"),
    MatrixCoefficients.UNSPECIFIED: ("unspecified",),
    MatrixCoefficients.BT470M: ("bt470m", "470m"),
    MatrixCoefficients.BT470BG: ("bt470bg", "470bg", "601-625", "bt601-625", "pal"),
    MatrixCoefficients.ST170M: ("smpte170m", "170m", "601-525", "bt601-525", "bt601", "601", "ntsc"),
    MatrixCoefficients.ST240M: ("240m", "smpte240m"),
    MatrixCoefficients.YCGCO: ("ycgco",),
    MatrixCoefficients.BT2020_NCL: ("2020", "2020ncl", "2020-ncl", "bt2020", "bt2020ncl", "bt2020-ncl"),
    MatrixCoefficients.BT2020_CL: ("2020cl", "2020-cl", "bt2020cl", "bt2020-cl"),
    MatrixCoefficients.ST2085: ("2085", "smpte2085"),
    MatrixCoefficients.CHROMATICITY_DERIVED_NCL: ("cd-ncl",),
    MatrixCoefficients.CHROMATICITY_DERIVED_CL: ("cd-cl",),
    MatrixCoefficients.ICTCP: ("2100", "bt2100", "ictcp"),
}

_TRANSFER_ALIASES = {
    TransferCharacteristic.BT1886: ("709", "bt709", "1886", "bt1886", "1361", "bt1361"),
    TransferCharacteristic.UNSPECIFIED: ("unspecified",),
    TransferCharacteristic.BT470M: ("470m", "bt470m"),
    TransferCharacteristic.BT470BG: ("470bg", "bt470bg", "pal"),
    TransferCharacteristic.ST170M: ("601", "bt601", "ntsc", "smpte170m", "170m",
                                    "1358", "bt1358", "1700", "bt1700"),
    TransferCharacteristic.ST240M: ("240m", "smpte240m"),
    TransferCharacteristic.LINEAR: ("linear",),
    TransferCharacteristic.LOGARITHMIC_100: ("log100",),
    TransferCharacteristic.LOGARITHMIC_316: ("log316",),
    TransferCharacteristic.XVYCC: ("xvycc",),
    TransferCharacteristic.BT1361E: ("1361e", "bt1361e"),
    TransferCharacteristic.SRGB: ("srgb",),
    TransferCharacteristic.BT2020_10: ("2020", "bt2020", "2020-10", "bt2020-10"),
    TransferCharacteristic.BT2020_12: ("2020-12", "bt2020-12"),
    TransferCharacteristic.PERCEPTUAL_QUANTIZER: ("pq", "2084", "smpte2084", "2100", "bt2100"),
    TransferCharacteristic.ST428: ("428", "smpte428"),
    TransferCharacteristic.HYBRID_LOG_GAMMA: ("hlg", "b67", "arib-b67"),
}

_PRIMARIES_ALIASES = {
    ColorPrimaries.BT709: ("709", "bt709", "1361", "bt1361", "srgb"),
    ColorPrimaries.UNSPECIFIED: ("unspecified",),
    ColorPrimaries.BT470M: ("470m", "bt470m"),
    ColorPrimaries.BT470BG: ("470bg", "bt470bg", "601-625", "bt601-625", "pal"),
    ColorPrimaries.ST170M: ("smpte170m", "170m", "601-525", "bt601-525", "bt601", "601", "ntsc"),
    ColorPrimaries.ST240M: ("240m", "smpte240m"),
    ColorPrimaries.FILM: ("film", "c"),
    ColorPrimaries.BT2020: ("2020", "bt2020", "2100", "bt2100"),
    ColorPrimaries.ST428: ("428", "smpte428", "xyz"),
    ColorPrimaries.P3_DCI: ("p3", "p3dci", "p3-dci", "431", "smpte431"),
    ColorPrimaries.P3_DISPLAY: ("p3display", "p3-display", "432", "smpte432"),
    ColorPrimaries.TECH3213: ("3213", "tech3213"),
}


def _build_lookup(aliases):
    lookup = {}
    for member, names in aliases.items():
        for name in names:
            lookup[name] = member
    return lookup


_MATRIX_LOOKUP = _build_lookup(_MATRIX_ALIASES)
_TRANSFER_LOOKUP = _build_lookup(_TRANSFER_ALIASES)
_PRIMARIES_LOOKUP = _build_lookup(_PRIMARIES_ALIASES)


def _parse(enum_cls, lookup, kind, token):
    text = str(token).strip()
    # Numeric codes win over aliases, but only up to the last defined code point;
    # "709" and "2020" are larger and fall through to the alias table.
    if text.isdigit():
        code = int(text)
        if code <= max(enum_cls):
            try:
                return enum_cls(code)
            except ValueError:
                raise UnrecognizedToken(kind, token) from None
    member = lookup.get(text.lower())
    if member is None:
        raise UnrecognizedToken(kind, token)
    return member


def parse_matrix(token):
    return _parse(MatrixCoefficients, _MATRIX_LOOKUP, "matrix coefficients", token)


def parse_transfer(token):
    return _parse(TransferCharacteristic, _TRANSFER_LOOKUP, "transfer characteristics", token)


def parse_primaries(token):
    return _parse(ColorPrimaries, _PRIMARIES_LOOKUP, "color primaries", token)


def guess_matrix_coefficients(width, height):
    if width >= 1280 or height > 576:
        return MatrixCoefficients.BT709
    if height == 576:
        return MatrixCoefficients.BT470BG
    return MatrixCoefficients.ST170M


def guess_color_primaries(matrix, width, height):
    # Heuristic taken from mpv
    if matrix in (MatrixCoefficients.BT2020_NCL, MatrixCoefficients.BT2020_CL):
        return ColorPrimaries.BT2020
    if matrix == MatrixCoefficients.BT709 or width >= 1280 or height > 576:
        return ColorPrimaries.BT709
    if height == 576:
        return ColorPrimaries.BT470BG
    if height in (480, 488):
        return ColorPrimaries.ST170M
    return ColorPrimaries.BT709


def guess_transfer_characteristic():
    return TransferCharacteristic.BT1886


@dataclass(frozen=True)
class ColorConfig:
    bit_depth: int
    subsampling_x: int
    subsampling_y: int
    full_range: bool
    matrix_coefficients: MatrixCoefficients
    transfer_characteristics: TransferCharacteristic
    color_primaries: ColorPrimaries


def resolve_color_config(details, matrix=None, transfer=None, primaries=None, full_range=None):
    """Fill unspecified colorimetry for one stream from its resolution.

    Args:
        details (VideoDetails): Stream metadata.
        matrix, transfer, primaries: Parsed user overrides, None or UNSPECIFIED to infer.
        full_range (bool): Explicit range flag; None falls back to the stream's hint.

    Returns:
        ColorConfig: Fully specified, immutable colorimetry.
    """
    width, height = details.width, details.height

    if matrix is None or matrix == MatrixCoefficients.UNSPECIFIED:
        matrix = guess_matrix_coefficients(width, height)
    if transfer is None or transfer == TransferCharacteristic.UNSPECIFIED:
        transfer = guess_transfer_characteristic()
    if primaries is None or primaries == ColorPrimaries.UNSPECIFIED:
        primaries = guess_color_primaries(matrix, width, height)

    if full_range is None:
        full_range = bool(details.full_range)

    sub_x, sub_y = chroma_decimation(details.chroma_sampling)
    config = ColorConfig(
        bit_depth=details.bit_depth,
        subsampling_x=sub_x,
        subsampling_y=sub_y,
        full_range=full_range,
        matrix_coefficients=matrix,
        transfer_characteristics=transfer,
        color_primaries=primaries,
    )
    logger.debug("Resolved colorimetry for %dx%d: %s", width, height, config)
    return config
