"""Memoized, asynchronous statistics keyed by request fingerprint.

The cache stores one shared handle per fingerprint. The first request for a
fingerprint schedules the computation on a worker pool and returns at once;
every later request (including concurrent ones) receives the very same
handle, so each fingerprint is computed at most once.

Notes
-----
- There is no cancellation: a scheduled computation always runs to
  completion, even if nobody polls its handle any more.
- By default entries live as long as the cache (one inspection session).
  ``max_entries`` enables an LRU bound; only finished entries are evicted.
- Telemetry tracks hits, misses, and evictions for diagnostics.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Hashable, Optional, Tuple

from hdr_inspector.coordinate_transforms import CropRegion
from hdr_inspector.image_models import Image
from hdr_inspector.logger import get_logger
from hdr_inspector.operators import Metric, PostProcessing
from hdr_inspector.parallel import ParallelExecutor
from hdr_inspector.statistics import Statistics

LOGGER = get_logger(__name__)

__all__ = ["RequestFingerprint", "StatisticsHandle", "CacheTelemetry", "StatisticsCache"]


@dataclass(frozen=True)
class RequestFingerprint:
    """Every parameter that influences a statistics result.

    ``crop`` holds the raw corner values and is ``None`` when cropping is
    disabled.
    """

    image_id: int
    channels: str
    reference_id: Optional[int]
    metric: int
    post_processing: int
    crop: Optional[Tuple[int, int, int, int]] = None

    @classmethod
    def for_request(
        cls,
        image: Image,
        reference: Optional[Image],
        group: str,
        metric: Metric,
        post_processing: PostProcessing,
        crop: Optional[CropRegion] = None,
    ) -> "RequestFingerprint":
        return cls(
            image_id=image.id,
            channels=",".join(image.channels_in_group(group)),
            reference_id=reference.id if reference is not None else None,
            metric=metric.value,
            post_processing=post_processing.value,
            crop=crop.corners() if crop is not None else None,
        )

    @property
    def key(self) -> str:
        """Deterministic string form, e.g. ``"3-R,G,B-4-1-0-crop-0-0-8-8"``."""
        parts = [str(self.image_id), self.channels]
        if self.reference_id is not None:
            parts.append(str(self.reference_id))
        parts.extend((str(self.metric), str(self.post_processing)))
        key = "-".join(parts)
        if self.crop is not None:
            key += "-crop-" + "-".join(str(v) for v in self.crop)
        return key

    def involves(self, image_id: int) -> bool:
        return self.image_id == image_id or self.reference_id == image_id

    def __str__(self) -> str:
        return self.key


class StatisticsHandle:
    """Shared, once-settable view of a (possibly running) computation."""

    def __init__(self, fingerprint: Hashable, future: Future) -> None:
        self._fingerprint = fingerprint
        self._future = future

    @property
    def fingerprint(self) -> Hashable:
        return self._fingerprint

    def done(self) -> bool:
        """Poll for completion without blocking."""
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Statistics:
        """Block until the statistics are available.

        Raises
        ------
        concurrent.futures.TimeoutError
            If ``timeout`` elapses first.
        Exception
            Whatever the computation raised.
        """
        return self._future.result(timeout=timeout)

    def add_done_callback(self, fn: Callable[["StatisticsHandle"], None]) -> None:
        """Call ``fn(handle)`` once the computation settles (immediately if it already has)."""
        self._future.add_done_callback(lambda _future: fn(self))

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"StatisticsHandle({self._fingerprint}, {state})"


@dataclass
class CacheTelemetry:
    """Counters for cache diagnostics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    def hit_ratio(self) -> float:
        """Return cache hit ratio (0.0 to 1.0)."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.evictions = 0


class StatisticsCache:
    """Fingerprint -> handle map with at-most-one computation per fingerprint.

    Parameters
    ----------
    executor : ParallelExecutor
        Pool that runs whole statistics computations. It must not be the
        pool the computations themselves fan out to.
    max_entries : int, optional
        LRU bound; ``None`` keeps every entry until :meth:`clear`.
    """

    def __init__(self, executor: ParallelExecutor, max_entries: Optional[int] = None) -> None:
        self._executor = executor
        self._max_entries = max_entries
        self._entries: "OrderedDict[Hashable, StatisticsHandle]" = OrderedDict()
        self._lock = threading.Lock()
        self._telemetry = CacheTelemetry()

    def get_or_compute(
        self, fingerprint: Hashable, compute_fn: Callable[[], Statistics]
    ) -> StatisticsHandle:
        """Return the handle for ``fingerprint``, scheduling ``compute_fn`` on a miss.

        Never blocks on the computation and never invokes ``compute_fn`` for
        a fingerprint that already has an entry.
        """
        with self._lock:
            handle = self._entries.get(fingerprint)
            if handle is not None:
                self._telemetry.hits += 1
                self._entries.move_to_end(fingerprint)
                LOGGER.debug("Statistics cache hit: %s", fingerprint)
                return handle
            self._telemetry.misses += 1
            future = self._executor.submit(compute_fn, name=f"statistics {fingerprint}")
            handle = StatisticsHandle(fingerprint, future)
            self._entries[fingerprint] = handle
            self._evict_if_needed(keep=fingerprint)
            return handle

    def get(self, fingerprint: Hashable) -> Optional[StatisticsHandle]:
        """Return an existing handle without scheduling anything."""
        with self._lock:
            return self._entries.get(fingerprint)

    def invalidate_image(self, image_id: int) -> int:
        """Drop entries whose primary or reference image is ``image_id``.

        Running computations are not interrupted; their handles simply stop
        being served from the cache. Returns the number of dropped entries.
        """
        with self._lock:
            stale = [
                key
                for key in self._entries
                if isinstance(key, RequestFingerprint) and key.involves(image_id)
            ]
            for key in stale:
                del self._entries[key]
        if stale:
            LOGGER.debug("Dropped %d statistics entries for image %d", len(stale), image_id)
        return len(stale)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def telemetry(self) -> CacheTelemetry:
        """Return telemetry data for diagnostics."""
        return self._telemetry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fingerprint: Hashable) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def _evict_if_needed(self, keep: Hashable) -> None:
        """Evict least-recently-used finished entries other than ``keep`` while over the bound."""
        if self._max_entries is None:
            return
        while len(self._entries) > self._max_entries:
            victim = next(
                (key for key, h in self._entries.items() if key != keep and h.done()), None
            )
            if victim is None:
                LOGGER.warning(
                    "Statistics cache over its bound (%d > %d) with every entry still running",
                    len(self._entries),
                    self._max_entries,
                )
                return
            del self._entries[victim]
            self._telemetry.evictions += 1
            LOGGER.debug("Evicted statistics entry: %s", victim)
