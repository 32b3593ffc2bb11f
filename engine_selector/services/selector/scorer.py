"""
Engine scorer.

Combines memory, disk and device group checks into one score per
manifest. A score of 0 means incompatible; the issues say why.

Scoring is a pure function of (manifest, snapshot) plus the injected
snap connection predicate.
"""

from typing import List, Optional, Sequence, Tuple

from engine_selector.schemas.hardware import HardwareSnapshot
from engine_selector.schemas.manifest import (
    CPU_REQUIREMENTS,
    PCI_REQUIREMENTS,
    DeviceRequirement,
    EngineManifest,
    ScoredManifest,
    UsbRequirement,
)
from engine_selector.services.connections import ConnectionChecker, check_snap_connection
from engine_selector.services.selector import weights
from engine_selector.services.selector.cpu_matcher import match_cpu
from engine_selector.services.selector.pci_matcher import match_pci
from engine_selector.services.selector.result import MatchResult
from engine_selector.utils.logger import log

DEFAULT_STORAGE_PATH = "/var/lib/snapd"


class MeasurementMissingError(RuntimeError):
    """
    Raised when a manifest needs a memory or disk figure the snapshot lacks.

    "Not measured" is never scored as "insufficient": the whole scoring
    call fails instead.
    """

    def __init__(self, measurement: str, message: str):
        self.measurement = measurement
        self.message = message
        super().__init__(message)


def match_device(
    requirement: DeviceRequirement,
    snapshot: HardwareSnapshot,
    is_connected: ConnectionChecker = check_snap_connection,
) -> MatchResult:
    """Dispatch one device requirement to the matcher for its bus."""
    if isinstance(requirement, CPU_REQUIREMENTS):
        return match_cpu(requirement, snapshot.cpus)
    if isinstance(requirement, PCI_REQUIREMENTS):
        return match_pci(requirement, snapshot.pci_devices, is_connected)
    if isinstance(requirement, UsbRequirement):
        return MatchResult.failed("usb device matching not implemented")
    raise TypeError(f"unsupported device requirement: {type(requirement).__name__}")


def _summary(requirement: DeviceRequirement) -> str:
    if isinstance(requirement, CPU_REQUIREMENTS):
        return "required cpu device not found"
    if isinstance(requirement, UsbRequirement):
        return "required usb device not found"
    return "required pci device not found"


def check_devices_all(
    snapshot: HardwareSnapshot,
    requirements: Sequence[DeviceRequirement],
    is_connected: ConnectionChecker = check_snap_connection,
) -> Tuple[int, List[str]]:
    """
    Every requirement must match; scores of all requirements are summed.

    Returns:
        (score, issues); any issue means the group failed and score is 0
    """
    score = 0
    issues: List[str] = []

    for requirement in requirements:
        result = match_device(requirement, snapshot, is_connected)
        if result.matched:
            score += result.score
            if result.issues:
                log.debug(f"Ignoring issues of matched requirement: {result.issues}")
        else:
            issues.extend(result.issues)
            issues.append(_summary(requirement))

    if issues:
        return 0, issues
    return score, []


def check_devices_any(
    snapshot: HardwareSnapshot,
    requirements: Sequence[DeviceRequirement],
    is_connected: ConnectionChecker = check_snap_connection,
) -> Tuple[int, List[str]]:
    """
    At least one requirement must match; scores of all matching
    requirements are summed, not only the best one.

    A usb alternative is never matched and fails the group even when
    another alternative matches.

    Returns:
        (score, issues); any issue means the group failed and score is 0
    """
    score = 0
    found = 0
    unmatched: List[str] = []
    unsupported: List[str] = []

    for requirement in requirements:
        result = match_device(requirement, snapshot, is_connected)
        if result.matched:
            found += 1
            score += result.score
        else:
            unmatched.extend(result.issues)
            if isinstance(requirement, UsbRequirement):
                unsupported.extend(result.issues)

    if requirements and found == 0:
        return 0, unmatched + ["required device not found"]
    if unsupported:
        return 0, unsupported
    if unmatched:
        log.debug(f"Ignoring issues of unmatched alternatives: {unmatched}")
    return score, []


def _check_memory(manifest: EngineManifest, snapshot: HardwareSnapshot) -> Optional[str]:
    memory = snapshot.memory
    # Swap can legitimately be 0 bytes; total RAM cannot
    if memory.total_ram == 0:
        raise MeasurementMissingError("memory", "total memory not reported by host system")
    # Swap counts as usable headroom
    if memory.total_ram + memory.total_swap < manifest.memory_bytes:
        return "host system memory too small"
    return None


def _check_disk(manifest: EngineManifest, snapshot: HardwareSnapshot, storage_path: str) -> Optional[str]:
    stats = snapshot.disk.get(storage_path)
    if stats is None:
        raise MeasurementMissingError("disk", "disk space not reported by host system")
    if stats.avail < manifest.disk_space_bytes:
        return "host system disk space too small"
    return None


def check_engine(
    snapshot: HardwareSnapshot,
    manifest: EngineManifest,
    is_connected: ConnectionChecker = check_snap_connection,
    storage_path: str = DEFAULT_STORAGE_PATH,
) -> Tuple[int, List[str]]:
    """
    Score one manifest against a snapshot.

    Returns:
        (score, issues); score is 0 when any check failed

    Raises:
        MeasurementMissingError: The manifest needs memory or disk figures
            that the snapshot does not report
    """
    score = 0
    issues: List[str] = []

    if manifest.memory_bytes is not None:
        issue = _check_memory(manifest, snapshot)
        if issue:
            issues.append(issue)
        else:
            score += weights.MEMORY_SUFFICIENT

    if manifest.disk_space_bytes is not None:
        issue = _check_disk(manifest, snapshot, storage_path)
        if issue:
            issues.append(issue)
        else:
            score += weights.DISK_SUFFICIENT

    devices = manifest.devices
    if devices.allof:
        group_score, group_issues = check_devices_all(snapshot, devices.allof, is_connected)
        issues.extend(group_issues)
        score += group_score

    if devices.anyof:
        group_score, group_issues = check_devices_any(snapshot, devices.anyof, is_connected)
        issues.extend(group_issues)
        score += group_score

    if issues:
        return 0, issues
    return score, []


def score_engines(
    snapshot: HardwareSnapshot,
    manifests: Sequence[EngineManifest],
    is_connected: Optional[ConnectionChecker] = None,
    storage_path: str = DEFAULT_STORAGE_PATH,
) -> List[ScoredManifest]:
    """
    Score every manifest against one hardware snapshot.

    Args:
        snapshot: Detected hardware of the host
        manifests: Validated engine manifests
        is_connected: Snap connection predicate (defaults to asking snapctl)
        storage_path: Disk key in the snapshot that disk-space is checked against

    Returns:
        One ScoredManifest per manifest, in input order

    Raises:
        MeasurementMissingError: Any manifest needs an unmeasured figure;
            no results are returned for the batch
    """
    is_connected = is_connected or check_snap_connection

    scored = []
    for manifest in manifests:
        score, issues = check_engine(snapshot, manifest, is_connected, storage_path)
        log.debug(f"Engine {manifest.name}: score={score} issues={issues}")
        scored.append(ScoredManifest(manifest=manifest, score=score, compatibility_issues=issues))

    return scored
