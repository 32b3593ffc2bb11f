"""
Hardware snapshot schemas.

A HardwareSnapshot is captured once per run (probed, read from the cache,
or piped in as a YAML/JSON document) and is never modified afterwards.
All dataclasses here are frozen.

Document layout:

    cpus:
      - architecture: amd64
        manufacturer-id: GenuineIntel
        flags: [avx, avx2]
    memory: {total-ram: 16777216000, total-swap: 2147483648}
    disk:
      /var/lib/snapd: {total: 500000000000, avail: 120000000000}
    pci:
      - slot: "0000:01:00.0"
        bus-number: 0x01
        device-class: 0x0300
        vendor-id: 0x10de
        device-id: 0x2684
        additional-properties: {vram: "25757220864", compute-capability: "8.9"}
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, IO, Mapping, Optional, Tuple, Union

import yaml

from engine_selector.utils.units import parse_hex

AMD64 = "amd64"
ARM64 = "arm64"
ARCHITECTURES = (AMD64, ARM64)


class SnapshotParseError(ValueError):
    """Raised when a hardware snapshot document cannot be parsed."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        self.field_name = field_name
        self.message = message
        prefix = f"{field_name}: " if field_name else ""
        super().__init__(f"Invalid hardware snapshot: {prefix}{message}")


def _hex_or_none(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    try:
        return parse_hex(value)
    except ValueError as e:
        raise SnapshotParseError(str(e), key)


def _hex_str(value: Optional[int], width: int = 4) -> Optional[str]:
    if value is None:
        return None
    return f"0x{value:0{width}x}"


def _str_tuple(data: Dict[str, Any], key: str) -> Tuple[str, ...]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise SnapshotParseError("expected a list", key)
    return tuple(str(v) for v in value)


def _int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SnapshotParseError(f"expected a non-negative integer, got {value!r}", key)
    return value


@dataclass(frozen=True)
class CpuDescriptor:
    """
    One host CPU as reported by the probe.

    amd64 CPUs carry a manufacturer id and lowercase flags; arm64 CPUs carry
    an implementer id, a part number and feature strings.
    """
    architecture: str
    # amd64
    manufacturer_id: Optional[str] = None
    flags: Tuple[str, ...] = ()
    # arm64
    implementer_id: Optional[int] = None
    part_number: Optional[int] = None
    features: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CpuDescriptor":
        if not isinstance(data, dict):
            raise SnapshotParseError("cpu entry must be a mapping", "cpus")
        architecture = data.get("architecture")
        if not architecture:
            raise SnapshotParseError("architecture not set", "cpus")
        return cls(
            architecture=str(architecture),
            manufacturer_id=data.get("manufacturer-id"),
            flags=tuple(f.lower() for f in _str_tuple(data, "flags")),
            implementer_id=_hex_or_none(data, "implementer-id"),
            part_number=_hex_or_none(data, "part-number"),
            features=_str_tuple(data, "features"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"architecture": self.architecture}
        if self.manufacturer_id is not None:
            out["manufacturer-id"] = self.manufacturer_id
        if self.flags:
            out["flags"] = list(self.flags)
        if self.implementer_id is not None:
            out["implementer-id"] = _hex_str(self.implementer_id, 2)
        if self.part_number is not None:
            out["part-number"] = _hex_str(self.part_number, 3)
        if self.features:
            out["features"] = list(self.features)
        return out


@dataclass(frozen=True)
class PciDescriptor:
    """A device on the PCI bus, with optional vendor-probe properties."""
    slot: str
    bus_number: int
    device_class: int
    vendor_id: int
    device_id: int
    programming_interface: Optional[int] = None
    subvendor_id: Optional[int] = None
    subdevice_id: Optional[int] = None
    vendor_name: Optional[str] = None
    device_name: Optional[str] = None
    subvendor_name: Optional[str] = None
    subdevice_name: Optional[str] = None
    # e.g. {"vram": "25757220864", "compute-capability": "8.9"}
    additional_properties: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "additional_properties", MappingProxyType(dict(self.additional_properties)))

    @property
    def is_discrete(self) -> bool:
        """Devices behind bus 0 are treated as integrated."""
        return self.bus_number > 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PciDescriptor":
        if not isinstance(data, dict):
            raise SnapshotParseError("pci entry must be a mapping", "pci")

        properties = data.get("additional-properties") or {}
        if not isinstance(properties, dict):
            raise SnapshotParseError("expected a mapping", "additional-properties")

        return cls(
            slot=str(data.get("slot", "")),
            bus_number=_hex_or_none(data, "bus-number") or 0,
            device_class=_hex_or_none(data, "device-class") or 0,
            vendor_id=_hex_or_none(data, "vendor-id") or 0,
            device_id=_hex_or_none(data, "device-id") or 0,
            programming_interface=_hex_or_none(data, "programming-interface"),
            subvendor_id=_hex_or_none(data, "subvendor-id"),
            subdevice_id=_hex_or_none(data, "subdevice-id"),
            vendor_name=data.get("vendor-name"),
            device_name=data.get("device-name"),
            subvendor_name=data.get("subvendor-name"),
            subdevice_name=data.get("subdevice-name"),
            additional_properties={str(k): str(v) for k, v in properties.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "slot": self.slot,
            "bus-number": _hex_str(self.bus_number, 2),
            "device-class": _hex_str(self.device_class),
        }
        if self.programming_interface is not None:
            out["programming-interface"] = _hex_str(self.programming_interface, 2)
        out["vendor-id"] = _hex_str(self.vendor_id)
        out["device-id"] = _hex_str(self.device_id)
        optional = {
            "subvendor-id": _hex_str(self.subvendor_id),
            "subdevice-id": _hex_str(self.subdevice_id),
            "vendor-name": self.vendor_name,
            "device-name": self.device_name,
            "subvendor-name": self.subvendor_name,
            "subdevice-name": self.subdevice_name,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        if self.additional_properties:
            out["additional-properties"] = dict(self.additional_properties)
        return out


@dataclass(frozen=True)
class MemoryInfo:
    """Total RAM and swap in bytes. A zero total_ram means "not measured"."""
    total_ram: int = 0
    total_swap: int = 0


@dataclass(frozen=True)
class DirStats:
    """Total and available bytes of the filesystem holding a directory."""
    total: int = 0
    avail: int = 0


@dataclass(frozen=True)
class HardwareSnapshot:
    """
    Detected hardware of one host.

    Used as read-only input to scoring. Build it with from_dict() when the
    data comes from a document, or directly in tests.
    """
    cpus: Tuple[CpuDescriptor, ...] = ()
    pci_devices: Tuple[PciDescriptor, ...] = ()
    memory: MemoryInfo = field(default_factory=MemoryInfo)
    disk: Mapping[str, DirStats] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "disk", MappingProxyType(dict(self.disk)))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "HardwareSnapshot":
        """
        Build a snapshot from a parsed hardware snapshot document.

        Raises:
            SnapshotParseError: A section has the wrong shape or an id is not hex
        """
        data = data or {}
        if not isinstance(data, dict):
            raise SnapshotParseError("document must be a mapping")

        cpus = data.get("cpus") or []
        pci = data.get("pci") or []
        if not isinstance(cpus, list):
            raise SnapshotParseError("expected a list", "cpus")
        if not isinstance(pci, list):
            raise SnapshotParseError("expected a list", "pci")

        memory_data = data.get("memory") or {}
        if not isinstance(memory_data, dict):
            raise SnapshotParseError("expected a mapping", "memory")
        memory = MemoryInfo(
            total_ram=_int(memory_data, "total-ram"),
            total_swap=_int(memory_data, "total-swap"),
        )

        disk_data = data.get("disk") or {}
        if not isinstance(disk_data, dict):
            raise SnapshotParseError("expected a mapping", "disk")
        disk = {}
        for path, stats in disk_data.items():
            if not isinstance(stats, dict):
                raise SnapshotParseError(f"expected a mapping for {path}", "disk")
            disk[str(path)] = DirStats(total=_int(stats, "total"), avail=_int(stats, "avail"))

        return cls(
            cpus=tuple(CpuDescriptor.from_dict(c) for c in cpus),
            pci_devices=tuple(PciDescriptor.from_dict(p) for p in pci),
            memory=memory,
            disk=disk,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpus": [c.to_dict() for c in self.cpus],
            "memory": {
                "total-ram": self.memory.total_ram,
                "total-swap": self.memory.total_swap,
            },
            "disk": {
                path: {"total": stats.total, "avail": stats.avail}
                for path, stats in self.disk.items()
            },
            "pci": [p.to_dict() for p in self.pci_devices],
        }


def load_snapshot(source: Union[str, IO[str]]) -> HardwareSnapshot:
    """
    Parse a hardware snapshot document (YAML or JSON) from a string or stream.

    Raises:
        SnapshotParseError: The document is not valid YAML or has the wrong shape
    """
    try:
        data = yaml.safe_load(source)
    except yaml.YAMLError as e:
        raise SnapshotParseError(f"error decoding document: {e}")
    return HardwareSnapshot.from_dict(data)
