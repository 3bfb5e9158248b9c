"""Per-pixel operators: comparison metrics, post-processing, and tonemaps.

Every function here is pure and works on Python floats or numpy arrays
(element-wise), so the statistics engine, the exporters, and any
presentation layer evaluate exactly the same formulas.

Conventions
-----------
- Metric and post-processing operate on single samples.
- Tonemaps operate on RGB vectors stored in the last axis, shape ``(..., 3)``,
  and always return values clamped to [0, 1].
- Passing anything that is not a member of the matching enum is a
  programming error and raises ``ValueError``.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Union

import numpy as np
from matplotlib.colors import LinearSegmentedColormap

from hdr_inspector.config import METRIC_EPSILON

ArrayLike = Union[float, np.ndarray]

__all__ = [
    "Metric",
    "PostProcessing",
    "Tonemap",
    "FALSE_COLOR_STOPS",
    "apply_metric",
    "apply_post_processing",
    "apply_post_processing_rgb",
    "apply_tonemap",
    "apply_exposure_and_offset",
    "to_srgb",
    "to_linear",
    "false_color",
    "false_color_colormap",
    "parse_metric",
    "parse_post_processing",
    "parse_tonemap",
]


class Metric(Enum):
    """Per-pixel comparison between an image sample and a reference sample."""

    ERROR = 0
    ABSOLUTE_ERROR = 1
    SQUARED_ERROR = 2
    RELATIVE_ABSOLUTE_ERROR = 3
    RELATIVE_SQUARED_ERROR = 4
    DIVISION = 5


class PostProcessing(Enum):
    """Scalar transform applied after the metric and before the tonemap.

    ``MAGNITUDE`` needs the whole RGB vector and is only available through
    :func:`apply_post_processing_rgb`.
    """

    IDENTITY = 0
    SQUARE = 1
    CLIP10 = 2
    CLIP100 = 3
    MAGNITUDE = 4


class Tonemap(Enum):
    """Display/export color encoding. Never used for statistics."""

    SRGB = 0
    GAMMA = 1
    FALSE_COLOR = 2
    POSITIVE_NEGATIVE = 3
    COMPLEX = 4
    VECTOR = 5
    FALSE_COLOR_RAMP = 6


# black -> purple -> magenta -> orange -> pale yellow
FALSE_COLOR_STOPS = np.array(
    [
        (0, 0, 0),
        (80, 18, 123),
        (181, 54, 121),
        (251, 136, 97),
        (251, 252, 191),
    ],
    dtype=np.float64,
) / 255.0

_METRIC_CODES: Dict[str, Metric] = {
    "E": Metric.ERROR,
    "AE": Metric.ABSOLUTE_ERROR,
    "SE": Metric.SQUARED_ERROR,
    "RAE": Metric.RELATIVE_ABSOLUTE_ERROR,
    "RSE": Metric.RELATIVE_SQUARED_ERROR,
    "D": Metric.DIVISION,
}

_POST_PROCESSING_CODES: Dict[str, PostProcessing] = {
    "ID": PostProcessing.IDENTITY,
    "SQ": PostProcessing.SQUARE,
    "C10": PostProcessing.CLIP10,
    "C100": PostProcessing.CLIP100,
    "MAG": PostProcessing.MAGNITUDE,
}

_TONEMAP_CODES: Dict[str, Tonemap] = {
    "FC": Tonemap.FALSE_COLOR,
    "POS_NEG": Tonemap.POSITIVE_NEGATIVE,
    "PN": Tonemap.POSITIVE_NEGATIVE,
    "FC_RAMP": Tonemap.FALSE_COLOR_RAMP,
}


def apply_metric(
    value: ArrayLike, reference: ArrayLike, metric: Metric, epsilon: float = METRIC_EPSILON
) -> ArrayLike:
    """Return the difference between ``value`` and ``reference`` under ``metric``."""
    if not isinstance(metric, Metric):
        raise ValueError(f"Invalid metric selected: {metric!r}")
    diff = value - reference
    if metric is Metric.ERROR:
        return diff
    if metric is Metric.ABSOLUTE_ERROR:
        return np.abs(diff)
    if metric is Metric.SQUARED_ERROR:
        return diff * diff
    if metric is Metric.RELATIVE_ABSOLUTE_ERROR:
        return np.abs(diff) / (reference + epsilon)
    if metric is Metric.RELATIVE_SQUARED_ERROR:
        return diff * diff / (reference * reference + epsilon)
    if metric is Metric.DIVISION:
        return (value + epsilon) / (reference + epsilon)
    raise ValueError(f"Invalid metric selected: {metric!r}")


def apply_post_processing(value: ArrayLike, post_processing: PostProcessing) -> ArrayLike:
    """Apply a scalar post-processing step."""
    if not isinstance(post_processing, PostProcessing):
        raise ValueError(f"Invalid post processing selected: {post_processing!r}")
    if post_processing is PostProcessing.IDENTITY:
        return value
    if post_processing is PostProcessing.SQUARE:
        return value * value
    if post_processing is PostProcessing.CLIP10:
        return np.minimum(value, 10.0)
    if post_processing is PostProcessing.CLIP100:
        return np.minimum(value, 100.0)
    if post_processing is PostProcessing.MAGNITUDE:
        raise ValueError("Magnitude post processing needs an RGB vector; use apply_post_processing_rgb.")
    raise ValueError(f"Invalid post processing selected: {post_processing!r}")


def apply_post_processing_rgb(rgb: np.ndarray, post_processing: PostProcessing) -> np.ndarray:
    """Apply post-processing to RGB vectors in the last axis.

    ``MAGNITUDE`` replaces every component with the vector length; the
    scalar variants are applied component-wise.
    """
    rgb = np.asarray(rgb, dtype=np.float32)
    if post_processing is PostProcessing.MAGNITUDE:
        length = np.linalg.norm(rgb, axis=-1, keepdims=True)
        return np.broadcast_to(length, rgb.shape).astype(np.float32)
    return np.asarray(apply_post_processing(rgb, post_processing), dtype=np.float32)


def apply_exposure_and_offset(value: ArrayLike, exposure: float = 0.0, offset: float = 0.0) -> ArrayLike:
    """Scale by ``2**exposure`` and add ``offset``."""
    return (2.0 ** exposure) * value + offset


def to_srgb(linear: ArrayLike) -> ArrayLike:
    """Encode linear values with the sRGB transfer curve (unclamped)."""
    x = np.asarray(linear, dtype=np.float64)
    encoded = np.where(
        x <= 0.0031308,
        12.92 * x,
        1.055 * np.power(np.maximum(x, 0.0031308), 1.0 / 2.4) - 0.055,
    )
    return encoded if encoded.ndim else float(encoded)


def to_linear(srgb: ArrayLike) -> ArrayLike:
    """Decode sRGB-encoded values back to linear (unclamped)."""
    y = np.asarray(srgb, dtype=np.float64)
    decoded = np.where(
        y <= 0.04045,
        y / 12.92,
        np.power((np.maximum(y, 0.04045) + 0.055) / 1.055, 2.4),
    )
    return decoded if decoded.ndim else float(decoded)


def false_color(t: ArrayLike) -> np.ndarray:
    """Sample the false-color ramp at ``t`` in [0, 1]; returns ``(..., 3)``."""
    t = np.clip(np.asarray(t, dtype=np.float64), 0.0, 1.0)
    pos = t * (len(FALSE_COLOR_STOPS) - 1)
    xp = np.arange(len(FALSE_COLOR_STOPS), dtype=np.float64)
    return np.stack([np.interp(pos, xp, FALSE_COLOR_STOPS[:, c]) for c in range(3)], axis=-1)


def false_color_colormap(name: str = "hdr_false_color") -> LinearSegmentedColormap:
    """Return the false-color ramp as a matplotlib colormap (for color bars)."""
    return LinearSegmentedColormap.from_list(name, [tuple(stop) for stop in FALSE_COLOR_STOPS])


def _false_color_ramp(v: np.ndarray) -> np.ndarray:
    v = np.clip(v, 0.0, 1.0)
    r = np.where(v < 0.5, 0.0, np.where(v < 0.75, 4.0 * (v - 0.5), 1.0))
    g = np.where(v < 0.25, 4.0 * v, np.where(v < 0.75, 1.0, 1.0 + 4.0 * (0.75 - v)))
    b = np.where(v < 0.25, 1.0, np.where(v < 0.5, 1.0 + 4.0 * (0.25 - v), 0.0))
    return np.stack([r, g, b], axis=-1)


def apply_tonemap(rgb: ArrayLike, tonemap: Tonemap, gamma: float = 2.2) -> np.ndarray:
    """Encode linear RGB for display.

    Parameters
    ----------
    rgb : array-like
        Linear RGB with the color in the last axis, shape ``(..., 3)``.
    tonemap : Tonemap
        Encoding to apply.
    gamma : float
        Exponent denominator for ``Tonemap.GAMMA``.

    Returns
    -------
    numpy.ndarray
        Encoded RGB, clamped to [0, 1], same shape as the input.

    Notes
    -----
    ``Tonemap.COMPLEX`` has no CPU mapping and always returns black.
    """
    if not isinstance(tonemap, Tonemap):
        raise ValueError(f"Invalid tonemap selected: {tonemap!r}")
    value = np.asarray(rgb, dtype=np.float64)
    if value.shape[-1:] != (3,):
        raise ValueError(f"apply_tonemap expects RGB in the last axis, got shape {value.shape}")

    if tonemap is Tonemap.SRGB:
        result = to_srgb(value)
    elif tonemap is Tonemap.GAMMA:
        result = np.power(np.maximum(value, 0.0), 1.0 / gamma)
    elif tonemap is Tonemap.FALSE_COLOR:
        with np.errstate(divide="ignore", invalid="ignore"):
            t = np.log2(value.mean(axis=-1) + 0.03125) / 10.0 + 0.5
        result = false_color(np.where(np.isnan(t), 0.0, t))
    elif tonemap is Tonemap.POSITIVE_NEGATIVE:
        negative = -2.0 * np.minimum(value, 0.0).mean(axis=-1)
        positive = 2.0 * np.maximum(value, 0.0).mean(axis=-1)
        result = np.stack([negative, positive, np.zeros_like(positive)], axis=-1)
    elif tonemap is Tonemap.COMPLEX:
        result = np.zeros_like(value)
    elif tonemap is Tonemap.VECTOR:
        norm = np.linalg.norm(value, axis=-1, keepdims=True)
        safe = np.where(norm == 0.0, 1.0, norm)
        encoded = to_srgb(0.5 * (1.0 + value / safe))
        result = np.where(norm == 0.0, value, encoded)
    elif tonemap is Tonemap.FALSE_COLOR_RAMP:
        # Exposure is applied by the caller; only gamma-correct the first channel.
        gray = np.power(np.maximum(value[..., 0], 0.0), 1.0 / 2.2)
        result = _false_color_ramp(gray)
    else:
        raise ValueError(f"Invalid tonemap selected: {tonemap!r}")

    return np.clip(result, 0.0, 1.0)


def _parse(name: str, enum_cls, codes: Dict[str, Enum], label: str):
    if isinstance(name, enum_cls):
        return name
    key = str(name).strip().upper().replace("-", "_").replace(" ", "_")
    if key in codes:
        return codes[key]
    if key in enum_cls.__members__:
        return enum_cls[key]
    compact = key.replace("_", "")
    for member_name, member in enum_cls.__members__.items():
        if member_name.replace("_", "") == compact:
            return member
    raise ValueError(f"Unknown {label}: {name!r}")


def parse_metric(name: str) -> Metric:
    """Look up a metric by name (``"relative_squared_error"``) or code (``"RSE"``)."""
    return _parse(name, Metric, _METRIC_CODES, "metric")


def parse_post_processing(name: str) -> PostProcessing:
    """Look up a post-processing variant by name or code."""
    return _parse(name, PostProcessing, _POST_PROCESSING_CODES, "post processing")


def parse_tonemap(name: str) -> Tonemap:
    """Look up a tonemap by name or code."""
    return _parse(name, Tonemap, _TONEMAP_CODES, "tonemap")
