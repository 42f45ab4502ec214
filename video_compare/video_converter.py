import logging

import cv2
import numpy as np

from .colorimetry import ColorPrimaries, MatrixCoefficients, TransferCharacteristic
from .constants import PQ_REFERENCE_WHITE
from .errors import DecoderInitError, MetricComputationError, UnsupportedStreamError

logger = logging.getLogger(__name__)

# (Kr, Kb) luma weights per matrix; Kg = 1 - Kr - Kb
LUMA_COEFFICIENTS = {
    MatrixCoefficients.BT709: (0.2126, 0.0722),
    MatrixCoefficients.BT470M: (0.30, 0.11),
    MatrixCoefficients.BT470BG: (0.299, 0.114),
    MatrixCoefficients.ST170M: (0.299, 0.114),
    MatrixCoefficients.ST240M: (0.212, 0.087),
    # Constant luminance is approximated with the non-constant matrix
    MatrixCoefficients.BT2020_NCL: (0.2627, 0.0593),
    MatrixCoefficients.BT2020_CL: (0.2627, 0.0593),
}

SUPPORTED_MATRICES = set(LUMA_COEFFICIENTS) | {MatrixCoefficients.IDENTITY, MatrixCoefficients.YCGCO}

# CIE xy chromaticities: red, green, blue, white point
PRIMARIES_CHROMATICITIES = {
    ColorPrimaries.BT709: ((0.640, 0.330), (0.300, 0.600), (0.150, 0.060), (0.3127, 0.3290)),
    ColorPrimaries.BT470M: ((0.670, 0.330), (0.210, 0.710), (0.140, 0.080), (0.310, 0.316)),
    ColorPrimaries.BT470BG: ((0.640, 0.330), (0.290, 0.600), (0.150, 0.060), (0.3127, 0.3290)),
    ColorPrimaries.ST170M: ((0.630, 0.340), (0.310, 0.595), (0.155, 0.070), (0.3127, 0.3290)),
    ColorPrimaries.ST240M: ((0.630, 0.340), (0.310, 0.595), (0.155, 0.070), (0.3127, 0.3290)),
    ColorPrimaries.FILM: ((0.681, 0.319), (0.243, 0.692), (0.145, 0.049), (0.310, 0.316)),
    ColorPrimaries.BT2020: ((0.708, 0.292), (0.170, 0.797), (0.131, 0.046), (0.3127, 0.3290)),
    ColorPrimaries.ST428: ((1.0, 0.0), (0.0, 1.0), (0.0, 0.0), (1 / 3, 1 / 3)),
    ColorPrimaries.P3_DCI: ((0.680, 0.320), (0.265, 0.690), (0.150, 0.060), (0.314, 0.351)),
    ColorPrimaries.P3_DISPLAY: ((0.680, 0.320), (0.265, 0.690), (0.150, 0.060), (0.3127, 0.3290)),
    ColorPrimaries.TECH3213: ((0.630, 0.340), (0.295, 0.605), (0.155, 0.077), (0.3127, 0.3290)),
}


def _gamma(power):
    return lambda x: np.power(np.clip(x, 0.0, None), power)


def _srgb_eotf(x):
    x = np.clip(x, 0.0, None)
    return np.where(x <= 0.04045, x / 12.92, np.power((x + 0.055) / 1.055, 2.4))


def _st240m_eotf(x):
    x = np.clip(x, 0.0, None)
    return np.where(x < 4 * 0.0228, x / 4.0, np.power((x + 0.1115) / 1.1115, 1 / 0.45))


def _pq_eotf(x):
    m1 = 2610 / 16384
    m2 = 2523 / 4096 * 128
    c1 = 3424 / 4096
    c2 = 2413 / 4096 * 32
    c3 = 2392 / 4096 * 32
    e = np.power(np.clip(x, 0.0, 1.0), 1 / m2)
    y = np.power(np.maximum(e - c1, 0.0) / (c2 - c3 * e), 1 / m1)
    # Absolute luminance relative to SDR reference white
    return y * (10000.0 / PQ_REFERENCE_WHITE)


def _hlg_inverse_oetf(x):
    a = 0.17883277
    b = 1 - 4 * a
    c = 0.5 - a * np.log(4 * a)
    x = np.clip(x, 0.0, 1.0)
    return np.where(x <= 0.5, x * x / 3.0, (np.exp((x - c) / a) + b) / 12.0)


# Nonlinear signal -> linear light
TRANSFER_FUNCTIONS = {
    TransferCharacteristic.BT1886: _gamma(2.4),
    TransferCharacteristic.ST170M: _gamma(2.4),
    TransferCharacteristic.BT2020_10: _gamma(2.4),
    TransferCharacteristic.BT2020_12: _gamma(2.4),
    TransferCharacteristic.BT470M: _gamma(2.2),
    TransferCharacteristic.BT470BG: _gamma(2.8),
    TransferCharacteristic.ST240M: _st240m_eotf,
    TransferCharacteristic.LINEAR: lambda x: np.clip(x, 0.0, None),
    TransferCharacteristic.SRGB: _srgb_eotf,
    TransferCharacteristic.PERCEPTUAL_QUANTIZER: _pq_eotf,
    TransferCharacteristic.HYBRID_LOG_GAMMA: _hlg_inverse_oetf,
}


def srgb_encode(linear):
    linear = np.clip(linear, 0.0, 1.0)
    return np.where(linear <= 0.0031308, linear * 12.92,
                    1.055 * np.power(linear, 1 / 2.4) - 0.055)


def rgb_to_xyz_matrix(primaries):
    """Derive the RGB -> XYZ matrix from xy chromaticities (white maps to Y=1)."""
    red, green, blue, white = PRIMARIES_CHROMATICITIES[primaries]

    def xyz(point):
        x, y = point
        return np.array([x / y, 1.0, (1 - x - y) / y]) if y else np.array([x, y, 1 - x - y])

    columns = np.column_stack([xyz(red), xyz(green), xyz(blue)])
    scale = np.linalg.solve(columns, xyz(white))
    return columns * scale


def unsupported_reason(config):
    """Explain why a ColorConfig cannot be converted, or None if it can."""
    if config.matrix_coefficients not in SUPPORTED_MATRICES:
        return f"matrix coefficients {config.matrix_coefficients.name} are not supported"
    if config.transfer_characteristics not in TRANSFER_FUNCTIONS:
        return f"transfer characteristics {config.transfer_characteristics.name} are not supported"
    if config.color_primaries not in PRIMARIES_CHROMATICITIES:
        return f"color primaries {config.color_primaries.name} are not supported"
    if not 8 <= config.bit_depth <= 16:
        return f"bit depth {config.bit_depth} is not supported"
    return None


class FrameConverter:
    """Turns decoded YUV frames into sRGB float images in [0, 1] for a metric."""

    def __init__(self, config):
        reason = unsupported_reason(config)
        if reason:
            raise MetricComputationError(reason)
        self.config = config
        self._eotf = TRANSFER_FUNCTIONS[config.transfer_characteristics]
        if config.color_primaries == ColorPrimaries.BT709:
            self._gamut = None
        else:
            target = np.linalg.inv(rgb_to_xyz_matrix(ColorPrimaries.BT709))
            self._gamut = (target @ rgb_to_xyz_matrix(config.color_primaries)).astype(np.float32)

    def _normalize_luma(self, plane):
        depth = self.config.bit_depth
        plane = plane.astype(np.float32)
        if self.config.full_range:
            return plane / float((1 << depth) - 1)
        scale = float(1 << (depth - 8))
        return (plane - 16.0 * scale) / (219.0 * scale)

    def _normalize_chroma(self, plane):
        depth = self.config.bit_depth
        plane = plane.astype(np.float32)
        if self.config.full_range:
            return (plane - float(1 << (depth - 1))) / float((1 << depth) - 1)
        scale = float(1 << (depth - 8))
        return (plane - 128.0 * scale) / (224.0 * scale)

    @staticmethod
    def _upsample(plane, width, height):
        if plane.shape == (height, width):
            return plane
        return cv2.resize(plane, (width, height), interpolation=cv2.INTER_LINEAR)

    def _yuv_to_nonlinear_rgb(self, planes):
        matrix = self.config.matrix_coefficients
        height, width = planes[0].shape

        if len(planes) == 1:
            y = self._normalize_luma(planes[0])
            return np.repeat(y[:, :, np.newaxis], 3, axis=2)

        if matrix == MatrixCoefficients.IDENTITY:
            # GBR stored in Y, U, V order
            g = self._normalize_luma(planes[0])
            b = self._upsample(self._normalize_luma(planes[1]), width, height)
            r = self._upsample(self._normalize_luma(planes[2]), width, height)
            return np.stack([r, g, b], axis=-1)

        y = self._normalize_luma(planes[0])
        u = self._upsample(self._normalize_chroma(planes[1]), width, height)
        v = self._upsample(self._normalize_chroma(planes[2]), width, height)

        if matrix == MatrixCoefficients.YCGCO:
            t = y - u
            return np.stack([t + v, y + u, t - v], axis=-1)

        kr, kb = LUMA_COEFFICIENTS[matrix]
        kg = 1.0 - kr - kb
        r = y + 2.0 * (1.0 - kr) * v
        b = y + 2.0 * (1.0 - kb) * u
        g = (y - kr * r - kb * b) / kg
        return np.stack([r, g, b], axis=-1)

    def to_rgb(self, frame):
        """Convert a Frame to an HxWx3 float32 sRGB image in [0, 1]."""
        if frame.bit_depth != self.config.bit_depth:
            raise MetricComputationError(
                f"frame is {frame.bit_depth}-bit but the stream was configured as "
                f"{self.config.bit_depth}-bit")
        try:
            rgb = np.clip(self._yuv_to_nonlinear_rgb(frame.planes), 0.0, 1.0)
            linear = self._eotf(rgb)
            if self._gamut is not None:
                linear = linear @ self._gamut.T
            return srgb_encode(linear).astype(np.float32)
        except (ValueError, cv2.error) as exc:
            raise MetricComputationError(f"color conversion failed: {exc}") from exc


def image_to_rgb(image):
    """OpenCV BGR(A)/gray image (8 or 16 bit) -> HxWx3 float32 RGB in [0, 1]."""
    if image is None:
        raise DecoderInitError("image could not be decoded")
    if image.dtype == np.uint8:
        peak = 255.0
    elif image.dtype == np.uint16:
        peak = 65535.0
    else:
        raise UnsupportedStreamError(f"unsupported image sample type {image.dtype}")

    if image.ndim == 2:
        rgb = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    elif image.shape[2] == 4:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGRA2RGB)
    else:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    return rgb.astype(np.float32) / peak
