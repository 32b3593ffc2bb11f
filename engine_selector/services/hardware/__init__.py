"""Hardware snapshot probing and caching."""

from engine_selector.services.hardware.base import DetectionFailedError
from engine_selector.services.hardware.cache import SnapshotCache
from engine_selector.services.hardware.probe import probe_snapshot

__all__ = ["DetectionFailedError", "SnapshotCache", "probe_snapshot"]
