"""Immutable image and channel containers consumed by the inspection core.

Decoding from disk happens elsewhere; these classes only hold float samples
that are already in memory and expose the sampling interface the
compositor and statistics engine read from.

Conventions
-----------
- Sample grids are float32 arrays in (Y, X) order.
- Sizes are reported as ``(width, height)``; coordinates as ``(x, y)``.
- Samples outside a grid read as 0.0.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

__all__ = [
    "Channel",
    "ChannelGroup",
    "Image",
    "channel_head",
    "channel_tail",
    "group_channels",
    "next_image_id",
]

_id_lock = threading.Lock()
_id_counter = itertools.count(1)


def next_image_id() -> int:
    """Return a process-wide unique image id."""
    with _id_lock:
        return next(_id_counter)


def channel_tail(name: str) -> str:
    """Return the part of a channel name after its group prefix.

    ``"diffuse.R"`` -> ``"R"``; ``"G"`` -> ``"G"``.
    """
    return name.rsplit(".", 1)[-1]


def channel_head(name: str) -> str:
    """Return the group prefix of a channel name (``""`` when there is none)."""
    return name.rsplit(".", 1)[0] if "." in name else ""


class Channel:
    """Named 2-D grid of float samples.

    The data array is copied to float32 and made read-only, so a Channel can
    be shared freely between worker threads.
    """

    __slots__ = ("_name", "_data")

    def __init__(self, name: str, data: np.ndarray) -> None:
        arr = np.array(data, dtype=np.float32, copy=True)
        if arr.ndim != 2:
            raise ValueError(f"Channel {name!r} expects a 2D array, got shape {arr.shape}")
        arr.setflags(write=False)
        self._name = str(name)
        self._data = arr

    @classmethod
    def wrap(cls, name: str, data: np.ndarray) -> "Channel":
        """Adopt ``data`` without copying; the caller must not write to it afterwards."""
        channel = cls.__new__(cls)
        arr = np.asarray(data, dtype=np.float32)
        if arr.ndim != 2:
            raise ValueError(f"Channel {name!r} expects a 2D array, got shape {arr.shape}")
        arr.setflags(write=False)
        channel._name = str(name)
        channel._data = arr
        return channel

    @property
    def name(self) -> str:
        return self._name

    @property
    def tail(self) -> str:
        return channel_tail(self._name)

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def size(self) -> Tuple[int, int]:
        h, w = self._data.shape
        return w, h

    @property
    def count(self) -> int:
        return int(self._data.size)

    def eval(self, index: Union[int, Tuple[int, int]]) -> float:
        """Sample by flat index or by ``(x, y)``; out-of-range reads 0.0."""
        h, w = self._data.shape
        if isinstance(index, tuple):
            x, y = int(index[0]), int(index[1])
            if x < 0 or y < 0 or x >= w or y >= h:
                return 0.0
            return float(self._data[y, x])
        index = int(index)
        if index < 0 or index >= self._data.size:
            return 0.0
        return float(self._data.flat[index])

    def __repr__(self) -> str:
        w, h = self.size
        return f"Channel({self._name!r}, {w}x{h})"


@dataclass(frozen=True)
class ChannelGroup:
    """Named subset of an image's channels that is selected together."""

    name: str
    channels: Tuple[str, ...]


def group_channels(names: Iterable[str]) -> List[ChannelGroup]:
    """Group channel names by their prefix, keeping first-seen order."""
    grouped: Dict[str, List[str]] = {}
    for name in names:
        grouped.setdefault(channel_head(name), []).append(name)
    return [ChannelGroup(head, tuple(members)) for head, members in grouped.items()]


class Image:
    """Immutable collection of equally sized channels with a unique id.

    Parameters
    ----------
    channels : sequence of Channel
        Channels in display order. Every channel must match ``size``.
    name : str
        Display name (typically the file name).
    groups : sequence of ChannelGroup, optional
        Explicit grouping; derived from channel prefixes when omitted.
    image_id : int, optional
        Identity used in cache fingerprints; a fresh id is allocated when
        omitted so a reloaded image never aliases an older one.
    """

    def __init__(
        self,
        channels: Sequence[Channel],
        name: str = "",
        groups: Optional[Sequence[ChannelGroup]] = None,
        image_id: Optional[int] = None,
    ) -> None:
        if not channels:
            raise ValueError("An image needs at least one channel.")
        size = channels[0].size
        for channel in channels:
            if channel.size != size:
                raise ValueError(
                    f"Channel {channel.name!r} has size {channel.size}, expected {size}"
                )
        self._channels: Dict[str, Channel] = {}
        for channel in channels:
            self._channels.setdefault(channel.name, channel)
        self._size = size
        self._name = name
        self._groups = tuple(groups) if groups is not None else tuple(group_channels(self._channels))
        self._id = next_image_id() if image_id is None else int(image_id)

    @classmethod
    def from_array(
        cls,
        array: np.ndarray,
        channel_names: Sequence[str] = ("R", "G", "B", "A"),
        name: str = "",
    ) -> "Image":
        """Build an image from a (Y, X) or (Y, X, C) array."""
        arr = np.asarray(array, dtype=np.float32)
        if arr.ndim == 2:
            arr = arr[:, :, None]
        if arr.ndim != 3:
            raise ValueError(f"from_array expects (Y, X) or (Y, X, C), got shape {arr.shape}")
        n = arr.shape[2]
        if len(channel_names) < n:
            raise ValueError(f"Need {n} channel names, got {len(channel_names)}")
        return cls([Channel(channel_names[c], arr[:, :, c]) for c in range(n)], name=name)

    @classmethod
    def from_channels(cls, data: Mapping[str, np.ndarray], name: str = "") -> "Image":
        """Build an image from a ``{channel_name: array}`` mapping."""
        return cls([Channel(key, value) for key, value in data.items()], name=name)

    @property
    def id(self) -> int:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> Tuple[int, int]:
        return self._size

    @property
    def count(self) -> int:
        return self._size[0] * self._size[1]

    @property
    def groups(self) -> Tuple[ChannelGroup, ...]:
        return self._groups

    @property
    def channel_names(self) -> List[str]:
        return list(self._channels)

    def channel(self, name: str) -> Optional[Channel]:
        return self._channels.get(name)

    def channels_in_group(self, group_name: str) -> List[str]:
        """Return de-duplicated channel names of a group (empty if unknown)."""
        for group in self._groups:
            if group.name == group_name:
                return list(dict.fromkeys(n for n in group.channels if n in self._channels))
        return []

    def sample(self, channel_name: str, coordinate: Union[int, Tuple[int, int]]) -> float:
        """Sample one channel by flat index or ``(x, y)``."""
        channel = self._channels.get(channel_name)
        if channel is None:
            raise ValueError(f"Image {self._name!r} has no channel {channel_name!r}")
        return channel.eval(coordinate)

    def __repr__(self) -> str:
        w, h = self._size
        return f"Image(id={self._id}, name={self._name!r}, {w}x{h}, channels={self.channel_names})"
