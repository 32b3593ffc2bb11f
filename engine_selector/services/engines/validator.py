"""
Engine manifest validation.

Manifests are checked once, when they are loaded or linted, and turned
into typed EngineManifest objects. Scoring never sees an invalid manifest.

Legal device fields depend on the requirement's (type, bus) pair and are
looked up in static tables:

    cpu / amd64     type, architecture, manufacturer-id, flags
    cpu / arm64     type, architecture, implementer-id, part-number, features
    gpu / pci|usb   type, bus, vendor-id, device-id, vram, compute-capability, snap-connections
    npu, tpu, none  type, bus, vendor-id, device-id, snap-connections

Usage:
    from engine_selector.services.engines.validator import validate

    manifest = validate("engines/cpu-avx2/engine.yaml")
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from engine_selector.schemas.hardware import AMD64, ARM64
from engine_selector.schemas.manifest import (
    CPU,
    DEVICE_TYPES,
    GPU,
    PCI,
    USB,
    CpuAmd64Requirement,
    CpuArm64Requirement,
    DeviceRequirement,
    DeviceRequirements,
    EngineManifest,
    Grade,
    PciGenericRequirement,
    PciGpuRequirement,
    UsbRequirement,
)
from engine_selector.services.engines.exceptions import (
    ManifestLoadError,
    ManifestValidationError,
)
from engine_selector.utils.units import (
    is_primitive,
    parse_compute_capability,
    parse_hex,
    string_to_bytes,
)

MANIFEST_FILENAME = "engine.yaml"

MANIFEST_FIELDS = (
    "name",
    "description",
    "vendor",
    "grade",
    "devices",
    "memory",
    "disk-space",
    "components",
    "configurations",
)

DEVICE_GROUPS = ("allof", "anyof")

DEVICE_FIELDS = (
    "type",
    "bus",
    "architecture",
    "manufacturer-id",
    "flags",
    "implementer-id",
    "part-number",
    "features",
    "vendor-id",
    "device-id",
    "vram",
    "compute-capability",
    "snap-connections",
)

CPU_FIELDS = {
    AMD64: frozenset({"type", "architecture", "manufacturer-id", "flags"}),
    ARM64: frozenset({"type", "architecture", "implementer-id", "part-number", "features"}),
}

_BUS_DEVICE_FIELDS = frozenset({"type", "bus", "vendor-id", "device-id", "snap-connections"})
_GPU_FIELDS = _BUS_DEVICE_FIELDS | {"vram", "compute-capability"}

# Keyed by device type; None is a typeless device. Same table for pci and usb.
BUS_DEVICE_FIELDS = {
    GPU: _GPU_FIELDS,
    "npu": _BUS_DEVICE_FIELDS,
    "tpu": _BUS_DEVICE_FIELDS,
    None: _BUS_DEVICE_FIELDS,
}


class _InvalidManifest(ValueError):
    """Internal: one validation problem, labelled with the manifest by parse_manifest()."""


def _is_set(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


def _string_list(value: Any, field_name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise _InvalidManifest(f"{field_name} must be a list of strings")
    return tuple(value)


def _hex_field(device: Dict[str, Any], field_name: str) -> Optional[int]:
    value = device.get(field_name)
    if value is None:
        return None
    try:
        return parse_hex(value)
    except ValueError as e:
        raise _InvalidManifest(f"{field_name}: {e}")


def _check_fields(device: Dict[str, Any], legal: frozenset, label: str) -> None:
    for field_name in DEVICE_FIELDS:
        if _is_set(device.get(field_name)) and field_name not in legal:
            raise _InvalidManifest(f"{label}: invalid field: {field_name}")


def _parse_cpu(device: Dict[str, Any]) -> DeviceRequirement:
    architecture = device.get("architecture")
    if not _is_set(architecture):
        raise _InvalidManifest("cpu: architecture field required")
    if not isinstance(architecture, str) or architecture not in CPU_FIELDS:
        raise _InvalidManifest(f"cpu: invalid architecture: {architecture}")

    _check_fields(device, CPU_FIELDS[architecture], f"cpu {architecture}")

    if architecture == AMD64:
        manufacturer_id = device.get("manufacturer-id")
        if manufacturer_id is not None and not isinstance(manufacturer_id, str):
            raise _InvalidManifest("manufacturer-id must be a string")
        return CpuAmd64Requirement(
            manufacturer_id=manufacturer_id or None,
            flags=tuple(f.lower() for f in _string_list(device.get("flags"), "flags")),
        )

    return CpuArm64Requirement(
        implementer_id=_hex_field(device, "implementer-id"),
        part_number=_hex_field(device, "part-number"),
        features=_string_list(device.get("features"), "features"),
    )


def _parse_bus_device(device: Dict[str, Any]) -> DeviceRequirement:
    device_type = device.get("type") or None
    label = device_type or "typeless"

    bus = device.get("bus") or PCI
    if bus not in (PCI, USB):
        raise _InvalidManifest(f"{label}: invalid bus: {bus}")

    _check_fields(device, BUS_DEVICE_FIELDS[device_type], f"{label}: {bus} device")

    if bus == USB:
        return UsbRequirement(
            type=device_type,
            fields={k: v for k, v in device.items() if k not in ("type", "bus") and _is_set(v)},
        )

    vendor_id = _hex_field(device, "vendor-id")
    device_id = _hex_field(device, "device-id")
    snap_connections = _string_list(device.get("snap-connections"), "snap-connections")

    if device_type != GPU:
        return PciGenericRequirement(
            type=device_type,
            vendor_id=vendor_id,
            device_id=device_id,
            snap_connections=snap_connections,
        )

    vram = None
    if device.get("vram") is not None:
        try:
            vram = string_to_bytes(device["vram"])
        except ValueError as e:
            raise _InvalidManifest(f"gpu: error parsing vram: {e}")

    compute_capability = None
    if device.get("compute-capability") is not None:
        try:
            parse_compute_capability(device["compute-capability"])
        except ValueError as e:
            raise _InvalidManifest(f"gpu: {e}")
        compute_capability = str(device["compute-capability"])

    return PciGpuRequirement(
        vendor_id=vendor_id,
        device_id=device_id,
        vram=vram,
        compute_capability=compute_capability,
        snap_connections=snap_connections,
    )


def parse_device(device: Any) -> DeviceRequirement:
    """
    Parse one device requirement into its typed variant.

    Raises:
        ValueError: The requirement is malformed or sets an illegal field
    """
    if not isinstance(device, dict):
        raise _InvalidManifest("device must be a mapping")

    for key in device:
        if key not in DEVICE_FIELDS:
            raise _InvalidManifest(f"unknown field: {key}")

    device_type = device.get("type") or None
    if device_type is not None and device_type not in DEVICE_TYPES:
        raise _InvalidManifest(f"invalid device type: {device_type}")

    if device_type == CPU:
        return _parse_cpu(device)
    return _parse_bus_device(device)


def _parse_devices(data: Any) -> DeviceRequirements:
    if data is None:
        return DeviceRequirements()
    if not isinstance(data, dict):
        raise _InvalidManifest("devices must be a mapping")

    for key in data:
        if key not in DEVICE_GROUPS:
            raise _InvalidManifest(f"unknown field: devices.{key}")

    groups: Dict[str, List[DeviceRequirement]] = {}
    for group in DEVICE_GROUPS:
        devices = data.get(group) or []
        if not isinstance(devices, list):
            raise _InvalidManifest(f"devices.{group} must be a list")
        groups[group] = []
        for i, device in enumerate(devices):
            try:
                groups[group].append(parse_device(device))
            except _InvalidManifest as e:
                raise _InvalidManifest(f"invalid device: {group} {i + 1}/{len(devices)}: {e}")

    return DeviceRequirements(allof=tuple(groups["allof"]), anyof=tuple(groups["anyof"]))


def _required_string(data: Dict[str, Any], field_name: str) -> str:
    value = data.get(field_name)
    if not _is_set(value):
        raise _InvalidManifest(f"required field is not set: {field_name}")
    if not isinstance(value, str):
        raise _InvalidManifest(f"field {field_name} must be a string")
    return value


def _size(data: Dict[str, Any], field_name: str, label: str) -> Tuple[Optional[str], Optional[int]]:
    value = data.get(field_name)
    if value is None:
        return None, None
    try:
        return str(value), string_to_bytes(value)
    except ValueError as e:
        raise _InvalidManifest(f"error parsing {label}: {e}")


def parse_manifest(
    data: Any,
    expected_name: Optional[str] = None,
    source: Union[str, Path, None] = None,
) -> EngineManifest:
    """
    Validate a decoded manifest document and build an EngineManifest.

    Args:
        data: The decoded YAML document
        expected_name: Engine directory name the manifest name must match;
            not checked when None
        source: Path or name used to label errors (defaults to the engine name)

    Returns:
        The validated manifest

    Raises:
        ManifestValidationError: The first problem found in the document
    """
    label = source or expected_name or (data.get("name") if isinstance(data, dict) else None)
    try:
        return _build_manifest(data, expected_name)
    except _InvalidManifest as e:
        raise ManifestValidationError(label, str(e))


def _build_manifest(data: Any, expected_name: Optional[str]) -> EngineManifest:
    if not _is_set(data):
        raise _InvalidManifest("empty yaml data")
    if not isinstance(data, dict):
        raise _InvalidManifest("manifest must be a mapping")

    for key in data:
        if key not in MANIFEST_FIELDS:
            raise _InvalidManifest(f"unknown field: {key}")

    name = _required_string(data, "name")
    if expected_name and name != expected_name:
        raise _InvalidManifest(
            f"engine directory name should match name in manifest: {expected_name} != {name}"
        )

    description = _required_string(data, "description")
    vendor = _required_string(data, "vendor")
    grade_value = _required_string(data, "grade")
    try:
        grade = Grade(grade_value)
    except ValueError:
        raise _InvalidManifest("grade should be 'stable' or 'devel'")

    memory, memory_bytes = _size(data, "memory", "memory")
    disk_space, disk_space_bytes = _size(data, "disk-space", "disk space")

    components = data.get("components") or []
    if not isinstance(components, list) or not all(isinstance(c, str) for c in components):
        raise _InvalidManifest("components must be a list of strings")

    configurations = data.get("configurations") or {}
    if not isinstance(configurations, dict):
        raise _InvalidManifest("configurations must be a mapping")
    for key, value in configurations.items():
        if not is_primitive(value):
            raise _InvalidManifest(f"configuration field {key} is not a primitive value: {value!r}")

    return EngineManifest(
        name=name,
        description=description,
        vendor=vendor,
        grade=grade,
        devices=_parse_devices(data.get("devices")),
        memory=memory,
        disk_space=disk_space,
        components=tuple(components),
        configurations={str(k): v for k, v in configurations.items()},
        memory_bytes=memory_bytes,
        disk_space_bytes=disk_space_bytes,
    )


def parse_manifest_yaml(
    text: str,
    expected_name: Optional[str] = None,
    source: Union[str, Path, None] = None,
) -> EngineManifest:
    """
    Decode and validate a manifest document.

    Raises:
        ManifestValidationError: Empty document, YAML syntax error or invalid content
    """
    label = source or expected_name
    text = text.strip()
    if not text:
        raise ManifestValidationError(label, "empty yaml data")

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestValidationError(label, f"error decoding: {e}")

    return parse_manifest(data, expected_name, source)


def engine_name_from_path(manifest_path: Path) -> str:
    """Engine name a manifest must declare: its parent directory name."""
    return manifest_path.parent.name


def read_manifest_file(manifest_path: Path) -> str:
    """
    Raises:
        ManifestLoadError: The file exists but cannot be read
    """
    try:
        return manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestLoadError(manifest_path, f"error reading file: {e}")


def validate(manifest_path: Union[str, Path]) -> EngineManifest:
    """
    Lint one manifest file without scoring it.

    Applies the same checks as loading: the file must be called
    engine.yaml and the declared name must match its directory.

    Args:
        manifest_path: Path to an engine.yaml file

    Returns:
        The validated manifest

    Raises:
        ManifestValidationError: The file is misnamed, missing or invalid
        ManifestLoadError: The file cannot be read

    Example:
        validate("engines/cpu-avx2/engine.yaml")
    """
    path = Path(manifest_path)

    if path.name != MANIFEST_FILENAME:
        raise ManifestValidationError(path, f"manifest file must be called {MANIFEST_FILENAME}")
    if not path.is_file():
        raise ManifestValidationError(path, "manifest file does not exist")

    return parse_manifest_yaml(
        read_manifest_file(path),
        expected_name=engine_name_from_path(path),
        source=path,
    )
