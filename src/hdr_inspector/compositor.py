"""Merge a primary image's channel group with an optional reference.

The composite is the common source for statistics, pixel readout, and
export. It applies metric and post-processing only; tonemaps are layered on
top by the display/export stage.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from hdr_inspector.coordinate_transforms import reference_offset
from hdr_inspector.image_models import Channel, Image, channel_tail
from hdr_inspector.operators import Metric, PostProcessing, apply_metric, apply_post_processing
from hdr_inspector.parallel import ParallelExecutor

__all__ = ["composite", "composite_names", "align_reference", "values_at", "is_only_alpha"]


def composite_names(channel_names: Sequence[str]) -> List[str]:
    """Return output names for a composite: uppercased channel tails."""
    return [channel_tail(name).upper() for name in channel_names]


def is_only_alpha(names: Sequence[str]) -> bool:
    """True when every composite channel is an alpha channel."""
    return all(name == "A" for name in names)


def align_reference(data: np.ndarray, size: Tuple[int, int], offset: Tuple[int, int]) -> np.ndarray:
    """Resample a reference grid onto an image grid of ``size``.

    Output pixel ``(x, y)`` holds ``data[y + oy, x + ox]``, or 0.0 where that
    falls outside the reference.
    """
    w, h = int(size[0]), int(size[1])
    ox, oy = int(offset[0]), int(offset[1])
    rh, rw = data.shape
    out = np.zeros((h, w), dtype=np.float32)
    x0, x1 = max(0, -ox), min(w, rw - ox)
    y0, y1 = max(0, -oy), min(h, rh - oy)
    if x1 > x0 and y1 > y0:
        out[y0:y1, x0:x1] = data[y0 + oy:y1 + oy, x0 + ox:x1 + ox]
    return out


def _combine(primary, reference, is_alpha: bool, metric: Metric, post_processing: PostProcessing):
    """Combine primary and (optional) reference samples for one channel.

    ``reference`` is ``None`` when the reference image has no channel at this
    index.
    """
    if is_alpha:
        if reference is None:
            return primary
        return 0.5 * (primary + reference)
    if reference is None:
        reference = 0.0
    return apply_post_processing(apply_metric(primary, reference, metric), post_processing)


def composite(
    image: Optional[Image],
    reference: Optional[Image],
    group: str,
    metric: Metric = Metric.ERROR,
    post_processing: PostProcessing = PostProcessing.IDENTITY,
    executor: Optional[ParallelExecutor] = None,
) -> List[Channel]:
    """Build the composite channel set for a request.

    Parameters
    ----------
    image : Image or None
        Primary image; ``None`` yields an empty composite.
    reference : Image or None
        Optional reference, aligned to the primary about their centers.
    group : str
        Channel group name selecting the participating channels.
    metric, post_processing
        Per-pixel operators.
    executor : ParallelExecutor, optional
        Pool for per-channel work; channels are processed serially without one.

    Returns
    -------
    list[Channel]
        One primary-sized channel per selected channel, named by its
        uppercased tail.
    """
    if image is None:
        return []
    if not isinstance(metric, Metric):
        raise ValueError(f"Invalid metric selected: {metric!r}")
    if not isinstance(post_processing, PostProcessing):
        raise ValueError(f"Invalid post processing selected: {post_processing!r}")
    if post_processing is PostProcessing.MAGNITUDE:
        raise ValueError("Magnitude post processing is only available on the display path.")

    names = image.channels_in_group(group)
    out_names = composite_names(names)
    only_alpha = is_only_alpha(out_names)
    outputs: List[Optional[np.ndarray]] = [None] * len(names)

    if reference is None:
        def _fill(i: int) -> None:
            with np.errstate(all="ignore"):
                data = image.channel(names[i]).data
                outputs[i] = np.asarray(apply_post_processing(data, post_processing), dtype=np.float32)
    else:
        offset = reference_offset(image.size, reference.size)
        reference_names = reference.channels_in_group(group)

        def _fill(i: int) -> None:
            with np.errstate(all="ignore"):
                primary = image.channel(names[i]).data
                ref = None
                if i < len(reference_names):
                    ref = align_reference(reference.channel(reference_names[i]).data, image.size, offset)
                is_alpha = not only_alpha and out_names[i] == "A"
                value = _combine(primary, ref, is_alpha, metric, post_processing)
                outputs[i] = np.array(value, dtype=np.float32, copy=True)

    if executor is None:
        for i in range(len(names)):
            _fill(i)
    else:
        executor.parallel_for(0, len(names), _fill)

    return [Channel.wrap(out_names[i], outputs[i]) for i in range(len(names))]


def values_at(
    image: Optional[Image],
    reference: Optional[Image],
    group: str,
    metric: Metric,
    post_processing: PostProcessing,
    position: Tuple[int, int],
) -> List[float]:
    """Return composite values at one pixel of the primary image.

    Positions outside the primary read as 0.0 before the operators apply.
    """
    if image is None:
        return []
    x, y = int(position[0]), int(position[1])
    names = image.channels_in_group(group)
    out_names = composite_names(names)
    values = [np.float32(image.sample(name, (x, y))) for name in names]
    if reference is None:
        return [float(apply_post_processing(v, post_processing)) for v in values]

    only_alpha = is_only_alpha(out_names)
    ox, oy = reference_offset(image.size, reference.size)
    reference_names = reference.channels_in_group(group)
    result = []
    with np.errstate(all="ignore"):
        for i, value in enumerate(values):
            ref = None
            if i < len(reference_names):
                ref = np.float32(reference.sample(reference_names[i], (x + ox, y + oy)))
            is_alpha = not only_alpha and out_names[i] == "A"
            result.append(float(_combine(value, ref, is_alpha, metric, post_processing)))
    return result
