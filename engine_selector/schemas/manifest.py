"""
Engine manifest schemas.

An engine manifest (``engine.yaml``) declares which hardware an engine
needs. Device requirements are modelled as one dataclass per (type, bus)
combination; each variant only has the fields that are legal for it, so a
parsed requirement can never carry a field the matchers would ignore.

Parsing and validation live in services/engines/validator.py.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from engine_selector.schemas.hardware import AMD64, ARM64


class Grade(Enum):
    """Engine maturity. Only stable engines are selected automatically."""
    STABLE = "stable"
    DEVEL = "devel"


# Device types
CPU = "cpu"
GPU = "gpu"
NPU = "npu"
TPU = "tpu"
DEVICE_TYPES = (CPU, GPU, NPU, TPU)

# Busses
PCI = "pci"
USB = "usb"
BUSSES = (PCI, USB)


def _hex(value: Optional[int]) -> Optional[str]:
    return None if value is None else f"0x{value:04x}"


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v not in (None, [], ())}


@dataclass(frozen=True)
class CpuAmd64Requirement:
    """An x86-64 CPU with an optional manufacturer and instruction set flags."""
    manufacturer_id: Optional[str] = None
    flags: Tuple[str, ...] = ()

    type = CPU
    architecture = AMD64

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "type": self.type,
            "architecture": self.architecture,
            "manufacturer-id": self.manufacturer_id,
            "flags": list(self.flags),
        })


@dataclass(frozen=True)
class CpuArm64Requirement:
    """An ARM64 CPU identified by implementer and part number."""
    implementer_id: Optional[int] = None
    part_number: Optional[int] = None
    features: Tuple[str, ...] = ()

    type = CPU
    architecture = ARM64

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "type": self.type,
            "architecture": self.architecture,
            "implementer-id": _hex(self.implementer_id),
            "part-number": _hex(self.part_number),
            "features": list(self.features),
        })


@dataclass(frozen=True)
class PciGpuRequirement:
    """
    A GPU on the PCI bus.

    vram is stored in bytes; compute_capability as the "<major>[.<minor>]"
    string from the manifest.
    """
    vendor_id: Optional[int] = None
    device_id: Optional[int] = None
    vram: Optional[int] = None
    compute_capability: Optional[str] = None
    snap_connections: Tuple[str, ...] = ()

    type = GPU
    bus = PCI

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "type": self.type,
            "bus": self.bus,
            "vendor-id": _hex(self.vendor_id),
            "device-id": _hex(self.device_id),
            "vram": self.vram,
            "compute-capability": self.compute_capability,
            "snap-connections": list(self.snap_connections),
        })


@dataclass(frozen=True)
class PciGenericRequirement:
    """An NPU, TPU or typeless device on the PCI bus."""
    type: Optional[str] = None
    vendor_id: Optional[int] = None
    device_id: Optional[int] = None
    snap_connections: Tuple[str, ...] = ()

    bus = PCI

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "type": self.type,
            "bus": self.bus,
            "vendor-id": _hex(self.vendor_id),
            "device-id": _hex(self.device_id),
            "snap-connections": list(self.snap_connections),
        })


@dataclass(frozen=True)
class UsbRequirement:
    """
    A device on the USB bus.

    Accepted in manifests but never matched; scoring reports it as not
    implemented. The declared fields are kept for display only.
    """
    type: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    bus = USB

    def to_dict(self) -> Dict[str, Any]:
        return _compact({"type": self.type, "bus": self.bus, **self.fields})


DeviceRequirement = Union[
    CpuAmd64Requirement,
    CpuArm64Requirement,
    PciGpuRequirement,
    PciGenericRequirement,
    UsbRequirement,
]

CPU_REQUIREMENTS = (CpuAmd64Requirement, CpuArm64Requirement)
PCI_REQUIREMENTS = (PciGpuRequirement, PciGenericRequirement)


@dataclass(frozen=True)
class DeviceRequirements:
    """Conjunctive (allof) and disjunctive (anyof) requirement groups."""
    allof: Tuple[DeviceRequirement, ...] = ()
    anyof: Tuple[DeviceRequirement, ...] = ()

    def __len__(self) -> int:
        return len(self.allof) + len(self.anyof)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.allof:
            out["allof"] = [d.to_dict() for d in self.allof]
        if self.anyof:
            out["anyof"] = [d.to_dict() for d in self.anyof]
        return out


@dataclass(frozen=True)
class EngineManifest:
    """
    One engine as declared in ``<engines-dir>/<name>/engine.yaml``.

    memory and disk_space keep the size strings from the document
    (e.g. "4G"); use memory_bytes / disk_space_bytes for comparisons.
    """
    name: str
    description: str
    vendor: str
    grade: Grade
    devices: DeviceRequirements = field(default_factory=DeviceRequirements)
    memory: Optional[str] = None
    disk_space: Optional[str] = None
    components: Tuple[str, ...] = ()
    configurations: Dict[str, Any] = field(default_factory=dict)

    # Filled in by the validator once the size strings are known to parse
    memory_bytes: Optional[int] = field(default=None, compare=False, repr=False)
    disk_space_bytes: Optional[int] = field(default=None, compare=False, repr=False)

    @property
    def is_stable(self) -> bool:
        return self.grade is Grade.STABLE

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "vendor": self.vendor,
            "grade": self.grade.value,
            "devices": self.devices.to_dict(),
        }
        if self.memory is not None:
            out["memory"] = self.memory
        if self.disk_space is not None:
            out["disk-space"] = self.disk_space
        out["components"] = list(self.components)
        out["configurations"] = dict(self.configurations)
        return out


@dataclass
class ScoredManifest:
    """
    A manifest with its score against one hardware snapshot.

    A score of 0 means incompatible; compatibility_issues explains why.
    """
    manifest: EngineManifest
    score: int = 0
    compatibility_issues: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def compatible(self) -> bool:
        return self.score > 0

    def to_dict(self) -> Dict[str, Any]:
        out = self.manifest.to_dict()
        out["score"] = self.score
        out["compatible"] = self.compatible
        if self.compatibility_issues:
            out["compatibility-issues"] = list(self.compatibility_issues)
        return out
