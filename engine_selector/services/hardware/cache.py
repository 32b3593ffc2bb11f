"""
Snapshot cache.

Probing the host (especially vendor tools like nvidia-smi) is slow, so the
CLI stores the snapshot as JSON and reuses it. The cache key is explicit:
a different key, e.g. after an upgrade, is a miss and triggers a new probe.

Usage:
    cache = SnapshotCache("/tmp", key="42", probe=lambda: probe_snapshot(storage_path))
    snapshot = cache.get()
"""

import json
import os
from pathlib import Path
from typing import Callable, Optional, Union

from engine_selector import __version__
from engine_selector.schemas.hardware import HardwareSnapshot, SnapshotParseError
from engine_selector.utils.logger import log

DEFAULT_CACHE_DIR = Path("/tmp")


def default_cache_key() -> str:
    """Snap revision when running as a snap, package version otherwise."""
    return os.environ.get("SNAP_REVISION") or __version__


class SnapshotCache:
    """
    File-backed cache for one hardware snapshot.

    The probe is injected, so tests can count calls or return fixtures.
    """

    def __init__(
        self,
        cache_dir: Union[str, Path] = DEFAULT_CACHE_DIR,
        key: Optional[str] = None,
        probe: Optional[Callable[[], HardwareSnapshot]] = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.key = key or default_cache_key()
        self._probe = probe

    @property
    def path(self) -> Path:
        return self.cache_dir / f"machine-info-{self.key}.json"

    def load(self) -> Optional[HardwareSnapshot]:
        """Read the cached snapshot, or None when missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r") as f:
                return HardwareSnapshot.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, SnapshotParseError) as e:
            log.warning(f"Ignoring unreadable snapshot cache {self.path}: {e}")
            return None

    def save(self, snapshot: HardwareSnapshot) -> None:
        """Write the snapshot; failures are logged, the cache is optional."""
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(snapshot.to_dict(), f, indent=2)
            log.debug(f"Saved hardware snapshot to {self.path}")
        except OSError as e:
            log.warning(f"Could not write snapshot cache {self.path}: {e}")

    def get(self) -> HardwareSnapshot:
        """
        Return the cached snapshot, probing and storing it on a miss.

        Raises:
            RuntimeError: Cache miss and no probe configured
            DetectionFailedError: The probe failed
        """
        snapshot = self.load()
        if snapshot is not None:
            log.debug(f"Using cached hardware snapshot {self.path}")
            return snapshot

        if self._probe is None:
            raise RuntimeError("no cached hardware snapshot and no probe configured")

        snapshot = self._probe()
        self.save(snapshot)
        return snapshot

    def invalidate(self) -> bool:
        """
        Remove the cached snapshot.

        Returns:
            True if a cache file was removed
        """
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        log.debug(f"Removed snapshot cache {self.path}")
        return True
