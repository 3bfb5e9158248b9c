import logging
import os

import matplotlib
import numpy as np
import pytest

from hdr_inspector.image_models import Image
from hdr_inspector.logger import attach_handler, get_logger
from hdr_inspector.parallel import ParallelExecutor

# Headless backend for the PNG encoder under CI
os.environ.setdefault("MPLBACKEND", "Agg")
matplotlib.use(os.environ.get("MPLBACKEND", "Agg"), force=True)


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def log_records():
    """Collect package log records (the package logger does not propagate)."""
    base = get_logger("hdr_inspector")
    handler = _ListHandler()
    previous = base.level
    base.setLevel(logging.DEBUG)
    attach_handler(handler)
    yield handler.records
    base.removeHandler(handler)
    base.setLevel(previous)


@pytest.fixture
def executor():
    with ParallelExecutor(max_workers=4, name="test") as ex:
        yield ex


@pytest.fixture
def rgb_image():
    """4x3 RGB image with distinct, positive values per channel."""
    h, w = 3, 4
    base = np.arange(h * w, dtype=np.float32).reshape(h, w)
    return Image.from_array(np.stack([base + 1, base + 2, base + 3], axis=-1), ("R", "G", "B"), name="rgb")


@pytest.fixture
def rgba_image():
    """2x2 premultiplied RGBA image; the bottom-right pixel is fully transparent."""
    rgba = np.array(
        [
            [[0.5, 0.25, 0.1, 0.5], [1.0, 1.0, 1.0, 1.0]],
            [[0.2, 0.4, 0.6, 0.8], [0.3, 0.3, 0.3, 0.0]],
        ],
        dtype=np.float32,
    )
    return Image.from_array(rgba, name="rgba")
