"""
PCI device matcher.

Host devices are first filtered by vendor id and device id. Filtered-out
devices produce no issues; an empty result is reported once as "device
not found". The remaining devices are scored one by one and the best
device wins.
"""

from typing import List, Optional, Sequence, Tuple, Union

from engine_selector.schemas.hardware import PciDescriptor
from engine_selector.schemas.manifest import GPU, NPU, TPU, PciGenericRequirement, PciGpuRequirement
from engine_selector.services.connections import (
    ConnectionCheckError,
    ConnectionChecker,
    check_snap_connection,
)
from engine_selector.services.selector import weights
from engine_selector.services.selector.result import MatchResult
from engine_selector.utils.units import parse_compute_capability, string_to_bytes

PciRequirement = Union[PciGpuRequirement, PciGenericRequirement]

VRAM_PROPERTY = "vram"
COMPUTE_CAPABILITY_PROPERTY = "compute-capability"


class PropertyCheckError(Exception):
    """A device property requirement is not met; the message is the issue."""


def filter_pci_devices(
    devices: Sequence[PciDescriptor],
    vendor_id: Optional[int],
    device_id: Optional[int],
) -> List[PciDescriptor]:
    """
    Keep devices whose vendor id and device id match.

    Device ids are only unique within a vendor, so the device id is
    compared after the vendor filter. An unset id matches anything; a
    device id without a vendor id matches that device id from any vendor.
    """
    found = []
    for device in devices:
        if vendor_id is not None and device.vendor_id != vendor_id:
            continue
        if device_id is not None and device.device_id != device_id:
            continue
        found.append(device)
    return found


def check_type(required_type: str, device: PciDescriptor) -> bool:
    """True when the device class fits the required device type."""
    device_class = device.device_class

    if required_type == GPU:
        # 0x0001 legacy VGA, 0x03xx display controllers
        return device_class == 0x0001 or device_class & 0xFF00 == 0x0300

    if required_type in (NPU, TPU):
        # 0x12xx processing accelerator (e.g. Intel NPU), 0x0B40 co-processor (e.g. Hailo)
        return device_class & 0xFF00 == 0x1200 or device_class == 0x0B40

    return False


def check_vram(required: int, device: PciDescriptor) -> int:
    """
    Raises:
        PropertyCheckError: vRAM is missing, unparsable or too small
    """
    value = device.additional_properties.get(VRAM_PROPERTY)
    if value is None:
        raise PropertyCheckError("unable to detect vRAM")
    try:
        available = string_to_bytes(value)
    except ValueError as e:
        raise PropertyCheckError(f"error parsing vRAM: {e}")
    if available < required:
        raise PropertyCheckError(f"not enough vRAM: {available}")
    return weights.GPU_VRAM


def check_compute_capability(required: str, device: PciDescriptor) -> int:
    """
    Raises:
        PropertyCheckError: Compute capability is missing, unparsable or too low
    """
    value = device.additional_properties.get(COMPUTE_CAPABILITY_PROPERTY)
    if value is None:
        raise PropertyCheckError("unable to detect compute capability")
    try:
        available = parse_compute_capability(value)
    except ValueError as e:
        raise PropertyCheckError(f"error parsing compute capability: {e}")
    if available < parse_compute_capability(required):
        raise PropertyCheckError(f"compute capability too low: {value}")
    return weights.GPU_COMPUTE_CAPABILITY


def check_properties(requirement: PciRequirement, device: PciDescriptor) -> int:
    """
    Check the vendor-probe properties a gpu requirement declares.

    Returns:
        Extra score for the satisfied properties

    Raises:
        PropertyCheckError: The first unmet property
    """
    if not isinstance(requirement, PciGpuRequirement):
        return 0

    score = 0
    if requirement.vram is not None:
        score += check_vram(requirement.vram, device)
    if requirement.compute_capability is not None:
        score += check_compute_capability(requirement.compute_capability, device)
    return score


def score_pci_device(
    requirement: PciRequirement,
    device: PciDescriptor,
    is_connected: ConnectionChecker = check_snap_connection,
) -> Tuple[int, List[str]]:
    """
    Score one (already filtered) host device.

    Returns:
        (score, issues); the device satisfies the requirement when issues
        is empty, even with a score of 0
    """
    score = 0

    if requirement.type is not None:
        if not check_type(requirement.type, device):
            return 0, [f"device class 0x{device.device_class:04x} not of required type {requirement.type}"]
        score += weights.PCI_DEVICE_TYPE

    # Bus 0 is integrated, anything else discrete
    if device.is_discrete:
        score += weights.PCI_DEVICE_EXTERNAL

    try:
        score += check_properties(requirement, device)
    except PropertyCheckError as e:
        return 0, [str(e)]

    for connection in requirement.snap_connections:
        try:
            connected = is_connected(connection)
        except ConnectionCheckError as e:
            return 0, [f'error checking snap connection "{connection}": {e}']
        if not connected:
            return 0, [f'"{connection}" is not connected']

    return score, []


def match_pci(
    requirement: PciRequirement,
    devices: Sequence[PciDescriptor],
    is_connected: ConnectionChecker = check_snap_connection,
) -> MatchResult:
    """
    Match a pci requirement against the host's PCI devices.

    Args:
        requirement: A parsed gpu, npu, tpu or typeless pci requirement
        devices: Host PCI devices from the snapshot
        is_connected: Snap connection predicate

    Returns:
        MatchResult with the best device score; issues are prefixed with
        the device slot

    Example:
        result = match_pci(PciGpuRequirement(vendor_id=0x10de), snapshot.pci_devices)
    """
    if not devices:
        return MatchResult.failed("no pci devices on host system")

    candidates = filter_pci_devices(devices, requirement.vendor_id, requirement.device_id)
    if not candidates:
        return MatchResult.failed("device not found")

    result = MatchResult()
    for device in candidates:
        score, issues = score_pci_device(requirement, device, is_connected)
        if issues:
            result.issues.extend(f"pci {device.slot}: {issue}" for issue in issues)
            continue

        result.matched = True
        result.score = max(result.score, score)

    return result
