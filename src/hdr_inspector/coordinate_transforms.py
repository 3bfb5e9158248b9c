"""Crop-rectangle and image-alignment geometry.

All functions are pure and operate on integer pixel coordinates.

Conventions
-----------
- Points and sizes are ``(x, y)`` / ``(width, height)``.
- A crop is a half-open rectangle ``[min, max)`` in full-resolution pixels.
- A disabled crop (``None``) always means the full image extent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

__all__ = [
    "CropRegion",
    "normalize_corners",
    "clamp_corners",
    "resolve_crop",
    "crop_slices",
    "reference_offset",
]

Point = Tuple[int, int]


@dataclass(frozen=True)
class CropRegion:
    """Crop rectangle given by two corner points.

    The corners may arrive in any order (e.g. straight from a mouse drag);
    use :meth:`normalized` before indexing.
    """

    min_corner: Point
    max_corner: Point

    @classmethod
    def from_rect(cls, x: int, y: int, width: int, height: int) -> "CropRegion":
        """Build a region from an ``(x, y, width, height)`` rectangle."""
        return cls((int(x), int(y)), (int(x + width), int(y + height)))

    def normalized(self, size: Point) -> "CropRegion":
        """Return the region with ordered corners clamped into ``[0, size]``."""
        lo, hi = normalize_corners(self.min_corner, self.max_corner)
        lo, hi = clamp_corners(lo, hi, size)
        return CropRegion(lo, hi)

    @property
    def width(self) -> int:
        return self.max_corner[0] - self.min_corner[0]

    @property
    def height(self) -> int:
        return self.max_corner[1] - self.min_corner[1]

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def corners(self) -> Tuple[int, int, int, int]:
        """Return ``(x0, y0, x1, y1)``."""
        return (self.min_corner[0], self.min_corner[1], self.max_corner[0], self.max_corner[1])


def normalize_corners(a: Point, b: Point) -> Tuple[Point, Point]:
    """Swap coordinates per axis so that the first corner is the minimum."""
    x0, x1 = sorted((int(a[0]), int(b[0])))
    y0, y1 = sorted((int(a[1]), int(b[1])))
    return (x0, y0), (x1, y1)


def clamp_corners(lo: Point, hi: Point, size: Point) -> Tuple[Point, Point]:
    """Clamp both corners into ``[0, size]`` on each axis."""
    w, h = int(size[0]), int(size[1])

    def _clamp(p: Point) -> Point:
        return max(0, min(w, int(p[0]))), max(0, min(h, int(p[1])))

    return _clamp(lo), _clamp(hi)


def resolve_crop(crop: Optional[CropRegion], size: Point) -> CropRegion:
    """Return the effective crop for an image of ``size``.

    Parameters
    ----------
    crop : CropRegion or None
        Requested crop; ``None`` selects the full image.
    size : tuple[int, int]
        Image ``(width, height)``.
    """
    if crop is None:
        return CropRegion((0, 0), (int(size[0]), int(size[1])))
    return crop.normalized(size)


def crop_slices(crop: CropRegion) -> Tuple[slice, slice]:
    """Return ``(rows, cols)`` slices for indexing a (Y, X) array."""
    x0, y0, x1, y1 = crop.corners()
    return slice(y0, y1), slice(x0, x1)


def reference_offset(image_size: Point, reference_size: Point) -> Point:
    """Offset that aligns a reference with an image about their centers.

    ``reference_coord = image_coord + offset``. Uses integer division that
    truncates toward zero, so the offset may be negative.
    """
    dx = int(reference_size[0]) - int(image_size[0])
    dy = int(reference_size[1]) - int(image_size[1])
    return int(dx / 2), int(dy / 2)
