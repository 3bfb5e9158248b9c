"""Region statistics and log-domain histograms over a composite.

Functions in this module are safe to run in background threads. They read
immutable channels and write only into arrays they allocate themselves.

Conventions
-----------
- NaN samples are ignored everywhere: they contribute to none of mean,
  minimum, maximum, or the histogram.
- When the composite has an alpha channel (and is not alpha-only), alpha is
  a per-pixel histogram weight and not a data channel.
- Histograms have ``HISTOGRAM_BINS`` rows and one column per data channel.
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from hdr_inspector.compositor import composite, is_only_alpha
from hdr_inspector.config import (
    HISTOGRAM_BINS,
    SPIKE_FLOOR,
    SPIKE_HEADROOM,
    SPIKE_RANK,
    SYMLOG_EPSILON,
)
from hdr_inspector.coordinate_transforms import CropRegion, crop_slices, resolve_crop
from hdr_inspector.image_models import Channel, Image
from hdr_inspector.operators import Metric, PostProcessing
from hdr_inspector.parallel import ParallelExecutor

__all__ = [
    "Statistics",
    "HistogramDomain",
    "symmetric_log",
    "symmetric_log_inverse",
    "split_alpha",
    "build_histogram",
    "normalize_histogram",
    "statistics_from_composite",
    "compute_statistics",
]

_LOG_EPSILON = float(np.log(SYMLOG_EPSILON))


@dataclass(frozen=True)
class Statistics:
    """Summary of a composite over a crop region.

    ``histogram`` is read-only and shared by every holder of the result.
    """

    mean: float
    minimum: float
    maximum: float
    histogram: np.ndarray
    histogram_zero_bin: int

    @property
    def n_channels(self) -> int:
        return int(self.histogram.shape[1])


def symmetric_log(x):
    """Sign-preserving log: ``log(x + eps) - log(eps)`` mirrored for ``x <= 0``."""
    v = np.asarray(x, dtype=np.float64)
    with np.errstate(invalid="ignore", divide="ignore"):
        out = np.where(
            v > 0,
            np.log(v + SYMLOG_EPSILON) - _LOG_EPSILON,
            -(np.log(-v + SYMLOG_EPSILON) - _LOG_EPSILON),
        )
    return out if out.ndim else float(out)


def symmetric_log_inverse(y):
    """Inverse of :func:`symmetric_log`."""
    v = np.asarray(y, dtype=np.float64)
    with np.errstate(over="ignore"):
        out = np.where(
            v > 0,
            np.exp(v + _LOG_EPSILON) - SYMLOG_EPSILON,
            -(np.exp(-v + _LOG_EPSILON) - SYMLOG_EPSILON),
        )
    return out if out.ndim else float(out)


@dataclass(frozen=True)
class HistogramDomain:
    """Mapping between sample values and histogram bins in symmetric-log space.

    Notes
    -----
    A degenerate range (``minimum == maximum``) uses a log-domain width of 1
    so every sample falls into bin 0 and bin widths stay finite.

    A range with an infinite end has an infinite width: every finite sample
    falls into bin 0, ``+inf`` into the last bin and ``-inf`` into bin 0.
    Such a domain reports unit bin widths.
    """

    min_log: float
    width: float
    bins: int = HISTOGRAM_BINS

    @classmethod
    def from_range(cls, minimum: float, maximum: float, bins: int = HISTOGRAM_BINS) -> "HistogramDomain":
        min_log = symmetric_log(minimum)
        with np.errstate(invalid="ignore"):
            width = symmetric_log(maximum) - min_log
        # inf - inf when both ends are the same infinity
        if minimum == maximum or np.isnan(width) or width == 0:
            width = 1.0
        return cls(float(min_log), float(width), int(bins))

    @property
    def unbounded(self) -> bool:
        return not np.isfinite(self.width)

    def value_to_bin(self, value):
        """Return ``clamp(floor(bins * (slog(v) - min_log) / width), 0, bins - 1)``."""
        slog = np.asarray(symmetric_log(value))
        if self.unbounded:
            raw = np.where(slog == np.inf, self.bins - 1, 0)
        else:
            with np.errstate(invalid="ignore"):
                raw = np.floor(self.bins * (slog - self.min_log) / self.width)
            raw = np.nan_to_num(raw, nan=0.0, posinf=self.bins - 1, neginf=0.0)
        idx = np.clip(raw, 0, self.bins - 1).astype(np.int32)
        return idx if idx.ndim else int(idx)

    def bin_to_value(self, bin_index):
        """Return the value at the lower edge of ``bin_index`` (fractional bins allowed)."""
        return symmetric_log_inverse(self.width * np.asarray(bin_index, dtype=np.float64) / self.bins + self.min_log)

    @property
    def zero_bin(self) -> int:
        return int(self.value_to_bin(0.0))

    def bin_widths(self) -> np.ndarray:
        if self.unbounded:
            return np.ones(self.bins)
        edges = self.bin_to_value(np.arange(self.bins + 1))
        return np.diff(edges)


@contextlib.contextmanager
def _executor_scope(executor: Optional[ParallelExecutor]) -> Iterator[ParallelExecutor]:
    if executor is not None:
        yield executor
        return
    with ParallelExecutor(name="statistics") as local:
        yield local


def split_alpha(channels: Sequence[Channel]) -> Tuple[List[Channel], Optional[Channel]]:
    """Move the alpha channel (if any) to the end.

    Returns the data channels and the alpha channel. An alpha-only composite
    has no weight channel: its alpha channels are data.
    """
    channels = list(channels)
    if is_only_alpha([c.name for c in channels]):
        return channels, None
    for i, channel in enumerate(channels):
        if channel.name == "A":
            channels[i], channels[-1] = channels[-1], channels[i]
            return channels[:-1], channels[-1]
    return channels, None


def build_histogram(
    values: Sequence[np.ndarray],
    weights: Optional[np.ndarray],
    domain: HistogramDomain,
    executor: ParallelExecutor,
) -> np.ndarray:
    """Accumulate raw (weighted) bin counts, one column per channel.

    Runs in two phases: every cell's bin index is computed to completion
    first, then each channel's column is accumulated from those indices.
    Each row total of a column equals the (weighted) number of non-NaN
    samples of that channel.
    """
    n_channels = len(values)
    n_cells = int(values[0].size) if n_channels else 0
    histogram = np.zeros((domain.bins, n_channels), dtype=np.float64)
    if n_channels == 0 or n_cells == 0:
        return histogram

    # -1 marks NaN samples, which have no bin.
    indices = np.empty((n_cells, n_channels), dtype=np.int32)
    batch = executor.batch()
    for c in range(n_channels):
        def _index(lo: int, hi: int, c: int = c) -> None:
            chunk = values[c][lo:hi]
            idx = domain.value_to_bin(chunk)
            idx[np.isnan(chunk)] = -1
            indices[lo:hi, c] = idx

        batch.parallel_for_chunks_no_wait(0, n_cells, _index)
    batch.wait_until_idle()

    def _accumulate(c: int) -> None:
        column = indices[:, c]
        valid = column >= 0
        w = weights[valid] if weights is not None else None
        histogram[:, c] = np.bincount(column[valid], weights=w, minlength=domain.bins)[: domain.bins]

    executor.parallel_for(0, n_channels, _accumulate)
    return histogram


def normalize_histogram(histogram: np.ndarray, domain: HistogramDomain) -> np.ndarray:
    """Convert counts to densities and scale by the spike-robust maximum."""
    if histogram.size == 0:
        return histogram
    widths = domain.bin_widths()
    widths = np.where(widths > 0, widths, 1.0)
    density = histogram / widths[:, None]
    flat = density.ravel()
    rank = max(0, flat.size - SPIKE_RANK)
    reference = float(np.partition(flat, rank)[rank])
    return density / (max(reference, SPIKE_FLOOR) * SPIKE_HEADROOM)


def statistics_from_composite(
    channels: Sequence[Channel],
    size: Tuple[int, int],
    crop: Optional[CropRegion] = None,
    executor: Optional[ParallelExecutor] = None,
) -> Statistics:
    """Reduce a composite to mean/min/max and a normalized histogram.

    Parameters
    ----------
    channels : sequence of Channel
        Composite channels, all of ``size``.
    size : tuple[int, int]
        Image ``(width, height)``.
    crop : CropRegion, optional
        Region to restrict to; normalized and clamped before use.
    executor : ParallelExecutor, optional
        Pool for per-channel and per-chunk tasks; a temporary pool is used
        when omitted.
    """
    data_channels, alpha = split_alpha(channels)
    n_channels = len(data_channels)
    rows, cols = crop_slices(resolve_crop(crop, size))

    with _executor_scope(executor) as ex:
        values = [np.ascontiguousarray(c.data[rows, cols]).ravel() for c in data_channels]
        weights = alpha.data[rows, cols].ravel().astype(np.float64) if alpha is not None else None

        sums = [0.0] * n_channels
        counts = [0] * n_channels
        minima = [np.inf] * n_channels
        maxima = [-np.inf] * n_channels

        def _reduce(c: int) -> None:
            valid = values[c][~np.isnan(values[c])]
            if valid.size:
                sums[c] = float(valid.sum(dtype=np.float64))
                counts[c] = int(valid.size)
                minima[c] = float(valid.min())
                maxima[c] = float(valid.max())

        ex.parallel_for(0, n_channels, _reduce)

        total = sum(counts)
        if total:
            mean = sum(sums) / total
            minimum = float(min(minima))
            maximum = float(max(maxima))
        else:
            mean, minimum, maximum = 0.0, 0.0, 0.0

        domain = HistogramDomain.from_range(minimum, maximum)
        histogram = build_histogram(values, weights, domain, ex)

    histogram = normalize_histogram(histogram, domain)
    histogram.setflags(write=False)
    return Statistics(
        mean=float(mean),
        minimum=minimum,
        maximum=maximum,
        histogram=histogram,
        histogram_zero_bin=domain.zero_bin,
    )


def compute_statistics(
    image: Image,
    reference: Optional[Image],
    group: str,
    metric: Metric = Metric.ERROR,
    post_processing: PostProcessing = PostProcessing.IDENTITY,
    crop: Optional[CropRegion] = None,
    executor: Optional[ParallelExecutor] = None,
) -> Statistics:
    """Build the composite for a request and reduce it to :class:`Statistics`."""
    if image is None:
        raise ValueError("compute_statistics requires an image.")
    with _executor_scope(executor) as ex:
        channels = composite(image, reference, group, metric, post_processing, executor=ex)
        return statistics_from_composite(channels, image.size, crop, executor=ex)
