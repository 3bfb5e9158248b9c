"""Constants and runtime configuration for the inspection core."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

# Fixed histogram resolution; front-ends draw one column per bin.
HISTOGRAM_BINS = 400
# Stabilizer for relative metrics and division.
METRIC_EPSILON = 0.001
# Offset inside the symmetric log so that log(0) stays finite.
SYMLOG_EPSILON = 0.001
# Histogram normalization uses the N-th largest bin so a few spikes cannot dominate.
SPIKE_RANK = 10
SPIKE_FLOOR = 0.1
SPIKE_HEADROOM = 1.3

_ENV_PREFIX = "HDR_INSPECTOR_"


@dataclass(frozen=True)
class InspectorConfig:
    """Runtime settings for an inspection session.

    Notes
    -----
    ``compute_workers`` sizes the pool that runs per-channel and per-chunk
    tasks; ``request_workers`` sizes the pool that runs whole statistics
    requests. ``None`` means one worker per available CPU.
    ``cache_max_entries`` of ``None`` keeps every statistics result for the
    lifetime of the session.
    """

    compute_workers: Optional[int] = None
    request_workers: Optional[int] = 2
    cache_max_entries: Optional[int] = None
    default_gamma: float = 2.2
    default_exposure: float = 0.0
    default_offset: float = 0.0
    log_level: int = logging.INFO

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "InspectorConfig":
        """Build a config from ``HDR_INSPECTOR_*`` environment variables.

        Unset variables keep their defaults. ``LOG_LEVEL`` accepts a level
        name (``"DEBUG"``) or number.
        """
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _parse_field(f.name, raw)
        return cls(**values)


def _parse_field(name: str, raw: str):
    text = raw.strip()
    try:
        if name in ("compute_workers", "request_workers", "cache_max_entries"):
            if text.lower() in ("none", "auto"):
                return None
            value = int(text)
            if value < 1:
                raise ValueError
            return value
        if name == "log_level":
            if text.isdigit():
                return int(text)
            level = logging.getLevelName(text.upper())
            if not isinstance(level, int):
                raise ValueError
            return level
        return float(text)
    except ValueError:
        raise ValueError(f"Invalid value for {_ENV_PREFIX}{name.upper()}: {raw!r}") from None


DEFAULT_CONFIG = InspectorConfig()
