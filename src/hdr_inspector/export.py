"""Flatten composites into interleaved RGBA buffers and save them to disk."""

from __future__ import annotations

import pathlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from hdr_inspector.compositor import composite
from hdr_inspector.image_models import Channel, Image
from hdr_inspector.logger import get_logger
from hdr_inspector.operators import (
    Metric,
    PostProcessing,
    Tonemap,
    apply_exposure_and_offset,
    apply_tonemap,
)
from hdr_inspector.parallel import ParallelExecutor

LOGGER = get_logger(__name__)

PathLike = Union[str, pathlib.Path]

__all__ = [
    "EncoderKind",
    "ImageEncoder",
    "ENCODERS",
    "flatten_rgba",
    "divide_alpha_inplace",
    "hdr_pixels",
    "ldr_pixels",
    "to_ldr",
    "find_encoder",
    "save_image",
]


def flatten_rgba(channels: Sequence[Channel], size: Tuple[int, int]) -> np.ndarray:
    """Interleave up to four channels into a flat RGBA float32 buffer.

    Channels are placed by position, not by name. When fewer than four
    channels exist the unused slots stay 0 and alpha is set to 1. An empty
    channel list yields an empty buffer.
    """
    if not channels:
        return np.empty(0, dtype=np.float32)
    w, h = int(size[0]), int(size[1])
    n = min(len(channels), 4)
    rgba = np.zeros((h * w, 4), dtype=np.float32)
    for i in range(n):
        rgba[:, i] = channels[i].data.ravel()
    if n < 4:
        rgba[:, 3] = 1.0
    return rgba.ravel()


def divide_alpha_inplace(pixels: np.ndarray) -> np.ndarray:
    """Convert premultiplied RGBA to straight alpha.

    Color is divided by alpha; pixels with alpha exactly 0 get black color.
    """
    rgba = pixels.reshape(-1, 4)
    alpha = rgba[:, 3:4]
    transparent = alpha == 0
    with np.errstate(divide="ignore", invalid="ignore"):
        rgba[:, :3] = np.where(transparent, 0.0, rgba[:, :3] / np.where(transparent, 1.0, alpha))
    return pixels


def hdr_pixels(
    image: Optional[Image],
    reference: Optional[Image] = None,
    group: str = "",
    metric: Metric = Metric.ERROR,
    post_processing: PostProcessing = PostProcessing.IDENTITY,
    divide_alpha: bool = False,
    executor: Optional[ParallelExecutor] = None,
) -> np.ndarray:
    """Return the full-resolution composite as flat RGBA float32.

    Parameters
    ----------
    image : Image or None
        Primary image; ``None`` yields an empty buffer.
    reference, group, metric, post_processing
        Composite selection, as in :func:`hdr_inspector.compositor.composite`.
    divide_alpha : bool
        Convert to straight alpha for formats that do not store premultiplied
        color.
    executor : ParallelExecutor, optional
        Pool for per-channel composite work.

    Returns
    -------
    numpy.ndarray
        Length ``4 * width * height``, or 0 when nothing can be exported.
    """
    if image is None:
        return np.empty(0, dtype=np.float32)
    channels = composite(image, reference, group, metric, post_processing, executor=executor)
    pixels = flatten_rgba(channels, image.size)
    if divide_alpha and pixels.size:
        divide_alpha_inplace(pixels)
    return pixels


def to_ldr(
    pixels: np.ndarray,
    exposure: float = 0.0,
    offset: float = 0.0,
    gamma: float = 2.2,
    tonemap: Tonemap = Tonemap.SRGB,
) -> np.ndarray:
    """Tonemap flat RGBA float pixels to flat RGBA uint8.

    Color goes through exposure/offset and the tonemap; alpha is clamped to
    [0, 1]. Both are quantized with ``v * 255 + 0.5``.
    """
    if pixels.size == 0:
        return np.empty(0, dtype=np.uint8)
    rgba = np.asarray(pixels, dtype=np.float32).reshape(-1, 4)
    with np.errstate(all="ignore"):
        color = apply_tonemap(apply_exposure_and_offset(rgba[:, :3], exposure, offset), tonemap, gamma)
    color = np.nan_to_num(color, nan=0.0)
    alpha = np.clip(np.nan_to_num(rgba[:, 3:4], nan=0.0), 0.0, 1.0)
    ldr = np.concatenate([color, alpha], axis=1) * 255.0 + 0.5
    return ldr.astype(np.uint8).ravel()


def ldr_pixels(
    image: Optional[Image],
    reference: Optional[Image] = None,
    group: str = "",
    metric: Metric = Metric.ERROR,
    post_processing: PostProcessing = PostProcessing.IDENTITY,
    divide_alpha: bool = False,
    exposure: float = 0.0,
    offset: float = 0.0,
    gamma: float = 2.2,
    tonemap: Tonemap = Tonemap.SRGB,
    executor: Optional[ParallelExecutor] = None,
) -> np.ndarray:
    """Return the display encoding of the composite as flat RGBA uint8."""
    pixels = hdr_pixels(image, reference, group, metric, post_processing, divide_alpha, executor)
    return to_ldr(pixels, exposure, offset, gamma, tonemap)


class EncoderKind(Enum):
    """Sample type an encoder consumes."""

    HDR = "hdr"  # float32 RGBA
    LDR = "ldr"  # uint8 RGBA


def _write_tiff(path: PathLike, image: np.ndarray) -> None:
    import tifffile as tif

    tif.imwrite(str(path), image, photometric="rgb", extrasamples=["assocalpha"])


def _write_png(path: PathLike, image: np.ndarray) -> None:
    import matplotlib.image as mpimg

    mpimg.imsave(str(path), image, format="png")


@dataclass(frozen=True)
class ImageEncoder:
    """A file format that exported pixels can be written to.

    Parameters
    ----------
    name : str
        Display name.
    kind : EncoderKind
        Whether ``encode`` takes float (HDR) or 8-bit (LDR) pixels.
    extensions : tuple[str, ...]
        Lowercase file suffixes including the dot.
    premultiplied_alpha : bool
        True when the format stores premultiplied color; otherwise callers
        divide alpha out before encoding.
    writer : callable
        ``writer(path, array)`` with ``array`` shaped ``(height, width, 4)``.
    """

    name: str
    kind: EncoderKind
    extensions: Tuple[str, ...]
    premultiplied_alpha: bool
    writer: Callable[[PathLike, np.ndarray], None] = field(repr=False, compare=False)

    def can_handle(self, path: PathLike) -> bool:
        return pathlib.Path(path).suffix.lower() in self.extensions

    def encode(self, pixels: np.ndarray, size: Tuple[int, int], path: PathLike) -> None:
        """Write flat RGBA ``pixels`` of ``size`` to ``path``."""
        expected = np.float32 if self.kind is EncoderKind.HDR else np.uint8
        if pixels.dtype != expected:
            raise ValueError(
                f"{self.name} encoder expects {np.dtype(expected).name} pixels, got {pixels.dtype}"
            )
        w, h = int(size[0]), int(size[1])
        if pixels.size != 4 * w * h:
            raise ValueError(f"Expected {4 * w * h} samples for {w}x{h} RGBA, got {pixels.size}")
        self.writer(path, pixels.reshape(h, w, 4))


ENCODERS: Tuple[ImageEncoder, ...] = (
    ImageEncoder("TIFF", EncoderKind.HDR, (".tif", ".tiff"), True, _write_tiff),
    ImageEncoder("PNG", EncoderKind.LDR, (".png",), False, _write_png),
)


def find_encoder(path: PathLike, encoders: Sequence[ImageEncoder] = ENCODERS) -> ImageEncoder:
    """Return the first encoder that can handle ``path``."""
    for encoder in encoders:
        if encoder.can_handle(path):
            return encoder
    raise ValueError(f"No save routine for image type '{pathlib.Path(path).suffix}' found.")


def save_image(
    path: PathLike,
    image: Optional[Image],
    reference: Optional[Image] = None,
    group: str = "",
    metric: Metric = Metric.ERROR,
    post_processing: PostProcessing = PostProcessing.IDENTITY,
    exposure: float = 0.0,
    offset: float = 0.0,
    gamma: float = 2.2,
    tonemap: Tonemap = Tonemap.SRGB,
    executor: Optional[ParallelExecutor] = None,
    encoders: Sequence[ImageEncoder] = ENCODERS,
) -> Optional[ImageEncoder]:
    """Save the current composite to ``path``.

    Returns the encoder used, or ``None`` when there is no image to save.

    Raises
    ------
    ValueError
        If no encoder handles the file extension, or the composite has no
        channels.
    """
    if image is None:
        return None
    encoder = find_encoder(path, encoders)
    LOGGER.info("Saving currently displayed image as '%s'.", path)
    start = time.perf_counter()

    divide = not encoder.premultiplied_alpha
    pixels = hdr_pixels(image, reference, group, metric, post_processing, divide, executor)
    if pixels.size == 0:
        raise ValueError(f"Nothing to save: channel group {group!r} selects no channels.")
    if encoder.kind is EncoderKind.LDR:
        pixels = to_ldr(pixels, exposure, offset, gamma, tonemap)
    encoder.encode(pixels, image.size, path)

    LOGGER.info("Saved '%s' after %.3f seconds.", path, time.perf_counter() - start)
    return encoder
