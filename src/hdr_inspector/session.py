"""Inspection session: selection state plus the pools and cache that serve it.

The session is the single owner of everything with a lifetime: the
statistics cache and both worker pools are created with it and released by
:meth:`InspectionSession.close`.
"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

import numpy as np

from hdr_inspector.compositor import composite, values_at
from hdr_inspector.config import DEFAULT_CONFIG, InspectorConfig
from hdr_inspector.coordinate_transforms import CropRegion
from hdr_inspector.export import ImageEncoder, hdr_pixels, ldr_pixels, save_image
from hdr_inspector.image_models import Channel, Image
from hdr_inspector.logger import get_logger, set_level
from hdr_inspector.operators import (
    Metric,
    PostProcessing,
    Tonemap,
    parse_metric,
    parse_post_processing,
    parse_tonemap,
)
from hdr_inspector.parallel import ParallelExecutor
from hdr_inspector.statistics import compute_statistics
from hdr_inspector.statistics_cache import RequestFingerprint, StatisticsCache, StatisticsHandle

LOGGER = get_logger(__name__)

__all__ = ["SelectionState", "InspectionSession"]


@dataclass(frozen=True)
class SelectionState:
    """Everything the user has currently selected.

    Notes
    -----
    ``crop`` is stored as given (corners in any order, possibly out of
    bounds); consumers normalize it against the image size.
    """

    image: Optional[Image] = None
    reference: Optional[Image] = None
    group: str = ""
    metric: Metric = Metric.ERROR
    post_processing: PostProcessing = PostProcessing.IDENTITY
    tonemap: Tonemap = Tonemap.SRGB
    exposure: float = 0.0
    offset: float = 0.0
    gamma: float = 2.2
    crop: Optional[CropRegion] = None


class InspectionSession:
    """Owner of the current selection, the statistics cache, and worker pools.

    Parameters
    ----------
    config : InspectorConfig
        Pool sizes, cache bound, display defaults, and log level.

    Notes
    -----
    Whole statistics requests run on a dedicated request pool; the
    per-channel and per-chunk work they fan out to runs on a separate
    compute pool.
    """

    def __init__(self, config: InspectorConfig = DEFAULT_CONFIG) -> None:
        self._config = config
        set_level(config.log_level)
        self._compute = ParallelExecutor(config.compute_workers, name="compute")
        self._requests = ParallelExecutor(config.request_workers, name="request")
        self._cache = StatisticsCache(self._requests, max_entries=config.cache_max_entries)
        self._state = SelectionState(
            gamma=config.default_gamma,
            exposure=config.default_exposure,
            offset=config.default_offset,
        )
        self._closed = False

    @property
    def config(self) -> InspectorConfig:
        return self._config

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def cache(self) -> StatisticsCache:
        return self._cache

    @property
    def image(self) -> Optional[Image]:
        return self._state.image

    @property
    def reference(self) -> Optional[Image]:
        return self._state.reference

    # Selection -----------------------------------------------------------

    def set_image(self, image: Optional[Image]) -> None:
        """Select the primary image, dropping cached results of the one it replaces."""
        old = self._state.image
        if old is not None and old is not image:
            self._cache.invalidate_image(old.id)
        group = self._state.group
        if image is not None and group not in {g.name for g in image.groups}:
            group = image.groups[0].name if image.groups else ""
        self._state = replace(self._state, image=image, group=group)
        if image is not None:
            LOGGER.info("Selected image %r (id=%d, %dx%d)", image.name, image.id, *image.size)

    def set_reference(self, reference: Optional[Image]) -> None:
        """Select (or clear) the reference image."""
        old = self._state.reference
        if old is not None and old is not reference:
            self._cache.invalidate_image(old.id)
        self._state = replace(self._state, reference=reference)

    def set_channel_group(self, group: str) -> None:
        self._state = replace(self._state, group=str(group))

    def set_metric(self, metric: Union[Metric, str]) -> None:
        self._state = replace(self._state, metric=parse_metric(metric))

    def set_post_processing(self, post_processing: Union[PostProcessing, str]) -> None:
        """Select scalar post-processing; ``MAGNITUDE`` is display-only and rejected."""
        parsed = parse_post_processing(post_processing)
        if parsed is PostProcessing.MAGNITUDE:
            raise ValueError("Magnitude post processing is only available on the display path.")
        self._state = replace(self._state, post_processing=parsed)

    def set_tonemap(self, tonemap: Union[Tonemap, str]) -> None:
        self._state = replace(self._state, tonemap=parse_tonemap(tonemap))

    def set_exposure(self, exposure: float) -> None:
        self._state = replace(self._state, exposure=float(exposure))

    def set_offset(self, offset: float) -> None:
        self._state = replace(self._state, offset=float(offset))

    def set_gamma(self, gamma: float) -> None:
        if gamma <= 0:
            raise ValueError(f"Gamma must be positive, got {gamma}")
        self._state = replace(self._state, gamma=float(gamma))

    def set_crop(
        self,
        crop: Optional[Union[CropRegion, Tuple[Tuple[int, int], Tuple[int, int]]]],
    ) -> None:
        """Enable cropping to ``crop`` (a region or a pair of corners); ``None`` disables it."""
        if crop is not None and not isinstance(crop, CropRegion):
            a, b = crop
            crop = CropRegion((int(a[0]), int(a[1])), (int(b[0]), int(b[1])))
        self._state = replace(self._state, crop=crop)

    def clear_crop(self) -> None:
        self.set_crop(None)

    # Queries -------------------------------------------------------------

    def fingerprint(self) -> Optional[RequestFingerprint]:
        """Return the fingerprint of the current selection, or ``None`` without an image."""
        s = self._state
        if s.image is None:
            return None
        return RequestFingerprint.for_request(
            s.image, s.reference, s.group, s.metric, s.post_processing, s.crop
        )

    def statistics(self) -> Optional[StatisticsHandle]:
        """Return the (possibly still running) statistics for the current selection.

        Never blocks. Repeated calls with an unchanged selection return the
        same handle.
        """
        fingerprint = self.fingerprint()
        if fingerprint is None:
            return None
        s = self._state
        compute = self._compute

        def _compute():
            return compute_statistics(
                s.image, s.reference, s.group, s.metric, s.post_processing, s.crop, executor=compute
            )

        return self._cache.get_or_compute(fingerprint, _compute)

    def composite(self) -> List[Channel]:
        """Return the composite for the current selection (full image, no crop)."""
        s = self._state
        return composite(s.image, s.reference, s.group, s.metric, s.post_processing, executor=self._compute)

    def values_at(self, x: int, y: int) -> List[float]:
        """Return the composite values at pixel ``(x, y)`` of the primary image."""
        s = self._state
        return values_at(s.image, s.reference, s.group, s.metric, s.post_processing, (x, y))

    # Export --------------------------------------------------------------

    def hdr_pixels(self, divide_alpha: bool = False) -> np.ndarray:
        s = self._state
        return hdr_pixels(
            s.image, s.reference, s.group, s.metric, s.post_processing, divide_alpha, self._compute
        )

    def ldr_pixels(self, divide_alpha: bool = False) -> np.ndarray:
        s = self._state
        return ldr_pixels(
            s.image,
            s.reference,
            s.group,
            s.metric,
            s.post_processing,
            divide_alpha,
            exposure=s.exposure,
            offset=s.offset,
            gamma=s.gamma,
            tonemap=s.tonemap,
            executor=self._compute,
        )

    def save(self, path: Union[str, pathlib.Path]) -> Optional[ImageEncoder]:
        """Save the current composite; see :func:`hdr_inspector.export.save_image`."""
        s = self._state
        return save_image(
            path,
            s.image,
            s.reference,
            s.group,
            s.metric,
            s.post_processing,
            exposure=s.exposure,
            offset=s.offset,
            gamma=s.gamma,
            tonemap=s.tonemap,
            executor=self._compute,
        )

    # Lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Wait for running computations, then release the pools and cache."""
        if self._closed:
            return
        self._closed = True
        self._requests.shutdown(wait=True)
        self._compute.shutdown(wait=True)
        self._cache.clear()

    def __enter__(self) -> "InspectionSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
