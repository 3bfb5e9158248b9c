"""HDR inspection core: per-pixel comparison, composites, and region statistics."""

from hdr_inspector.compositor import composite, values_at
from hdr_inspector.config import DEFAULT_CONFIG, InspectorConfig
from hdr_inspector.coordinate_transforms import CropRegion
from hdr_inspector.export import hdr_pixels, ldr_pixels, save_image
from hdr_inspector.image_models import Channel, ChannelGroup, Image
from hdr_inspector.operators import Metric, PostProcessing, Tonemap
from hdr_inspector.session import InspectionSession
from hdr_inspector.statistics import Statistics, compute_statistics
from hdr_inspector.statistics_cache import RequestFingerprint, StatisticsCache, StatisticsHandle

__all__ = [
    "__version__",
    "Channel",
    "ChannelGroup",
    "Image",
    "CropRegion",
    "Metric",
    "PostProcessing",
    "Tonemap",
    "composite",
    "values_at",
    "Statistics",
    "compute_statistics",
    "RequestFingerprint",
    "StatisticsCache",
    "StatisticsHandle",
    "hdr_pixels",
    "ldr_pixels",
    "save_image",
    "InspectionSession",
    "InspectorConfig",
    "DEFAULT_CONFIG",
]

__version__ = "1.0.0"
