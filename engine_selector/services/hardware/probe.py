"""
Local hardware probe (Linux).

Builds a HardwareSnapshot of the running host:
- CPUs from /proc/cpuinfo
- RAM, swap and disk space via psutil
- PCI devices from /sys/bus/pci/devices
- NVIDIA vRAM and compute capability via nvidia-smi
- Intel GPU vRAM via clinfo

Scoring never calls this module directly; the CLI probes once (through
the snapshot cache) and passes the snapshot in.
"""

import platform
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import psutil

from engine_selector.schemas.hardware import (
    AMD64,
    ARM64,
    CpuDescriptor,
    DirStats,
    HardwareSnapshot,
    MemoryInfo,
    PciDescriptor,
)
from engine_selector.services.hardware import intel, nvidia
from engine_selector.services.hardware.base import DetectionFailedError
from engine_selector.utils.logger import log

CPUINFO_PATH = Path("/proc/cpuinfo")
PCI_DEVICES_PATH = Path("/sys/bus/pci/devices")

_MACHINE_ARCHITECTURES = {
    "x86_64": AMD64,
    "amd64": AMD64,
    "aarch64": ARM64,
    "arm64": ARM64,
}


def normalize_architecture(machine: str) -> str:
    """Map uname machine names (x86_64, aarch64) to amd64 / arm64."""
    return _MACHINE_ARCHITECTURES.get(machine.lower(), machine.lower())


def _cpuinfo_blocks(text: str) -> List[Dict[str, str]]:
    blocks = []
    current: Dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip():
            if current:
                blocks.append(current)
                current = {}
            continue
        key, sep, value = line.partition(":")
        if sep:
            current[key.strip()] = value.strip()
    if current:
        blocks.append(current)
    return blocks


def _parse_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value, 0)
    except ValueError:
        return None


def parse_cpuinfo(text: str, machine: str) -> List[CpuDescriptor]:
    """
    Parse /proc/cpuinfo into one descriptor per distinct CPU model.

    Logical processors of the same model collapse into one entry, so a
    32-thread host reports one CPU rather than 32 identical ones.

    Args:
        text: Contents of /proc/cpuinfo
        machine: uname machine name, e.g. "x86_64"

    Raises:
        DetectionFailedError: No processor entries found
    """
    architecture = normalize_architecture(machine)
    cpus: List[CpuDescriptor] = []

    for block in _cpuinfo_blocks(text):
        if "processor" not in block:
            continue

        if architecture == AMD64:
            cpu = CpuDescriptor(
                architecture=AMD64,
                manufacturer_id=block.get("vendor_id"),
                flags=tuple(block.get("flags", "").lower().split()),
            )
        elif architecture == ARM64:
            cpu = CpuDescriptor(
                architecture=ARM64,
                implementer_id=_parse_int(block.get("CPU implementer")),
                part_number=_parse_int(block.get("CPU part")),
                features=tuple(block.get("Features", "").split()),
            )
        else:
            cpu = CpuDescriptor(architecture=architecture)

        if cpu not in cpus:
            cpus.append(cpu)

    if not cpus:
        raise DetectionFailedError("CPU", "no processors listed in cpuinfo")
    return cpus


def probe_cpus(cpuinfo_path: Path = CPUINFO_PATH) -> List[CpuDescriptor]:
    try:
        text = cpuinfo_path.read_text()
    except OSError as e:
        raise DetectionFailedError("CPU", f"cannot read {cpuinfo_path}", details=str(e))
    return parse_cpuinfo(text, platform.machine())


def probe_memory() -> MemoryInfo:
    """Total RAM and swap via psutil."""
    return MemoryInfo(
        total_ram=psutil.virtual_memory().total,
        total_swap=psutil.swap_memory().total,
    )


def probe_disk(storage_path: str) -> Dict[str, DirStats]:
    """
    Disk space of the filesystem holding storage_path.

    A missing path is left out of the result, which makes scoring of
    manifests with a disk-space requirement fail loudly.
    """
    try:
        usage = psutil.disk_usage(storage_path)
    except OSError as e:
        log.warning(f"Could not measure disk space of {storage_path}: {e}")
        return {}
    return {storage_path: DirStats(total=usage.total, avail=usage.free)}


def _read_hex(path: Path) -> Optional[int]:
    try:
        return int(path.read_text().strip(), 16)
    except (OSError, ValueError):
        return None


def _bus_number(slot: str) -> int:
    # domain:bus:device.function, e.g. 0000:01:00.0
    parts = slot.split(":")
    if len(parts) < 3:
        return 0
    try:
        return int(parts[1], 16)
    except ValueError:
        return 0


def _split_class(raw: int) -> Tuple[int, int]:
    # sysfs class is 0xCCSSPP: class, subclass, programming interface
    return raw >> 8, raw & 0xFF


def read_pci_device(device_dir: Path) -> Optional[PciDescriptor]:
    """Build a descriptor from one sysfs PCI device directory."""
    raw_class = _read_hex(device_dir / "class")
    vendor_id = _read_hex(device_dir / "vendor")
    device_id = _read_hex(device_dir / "device")
    if raw_class is None or vendor_id is None or device_id is None:
        log.debug(f"Skipping incomplete PCI device {device_dir.name}")
        return None

    device_class, programming_interface = _split_class(raw_class)
    return PciDescriptor(
        slot=device_dir.name,
        bus_number=_bus_number(device_dir.name),
        device_class=device_class,
        programming_interface=programming_interface,
        vendor_id=vendor_id,
        device_id=device_id,
        subvendor_id=_read_hex(device_dir / "subsystem_vendor"),
        subdevice_id=_read_hex(device_dir / "subsystem_device"),
    )


def probe_pci_devices(devices_path: Path = PCI_DEVICES_PATH) -> List[PciDescriptor]:
    """
    List PCI devices from sysfs, with NVIDIA and Intel GPU properties attached.
    """
    if not devices_path.is_dir():
        log.warning(f"{devices_path} not found, no PCI devices detected")
        return []

    devices = []
    for device_dir in sorted(devices_path.iterdir(), key=lambda p: p.name):
        device = read_pci_device(device_dir)
        if device is None:
            continue
        if nvidia.is_nvidia_gpu(device):
            device = replace(device, additional_properties=nvidia.gpu_properties(device))
        elif intel.is_intel_gpu(device):
            device = replace(device, additional_properties=intel.gpu_properties(device))
        devices.append(device)
    return devices


def probe_snapshot(
    storage_path: str,
    cpuinfo_path: Path = CPUINFO_PATH,
    devices_path: Path = PCI_DEVICES_PATH,
) -> HardwareSnapshot:
    """
    Probe the running host.

    Args:
        storage_path: Directory whose filesystem holds engine data; used
            as the disk key in the snapshot

    Returns:
        HardwareSnapshot of the host

    Raises:
        DetectionFailedError: CPUs or memory could not be measured
    """
    cpus = probe_cpus(cpuinfo_path)

    try:
        memory = probe_memory()
    except (OSError, RuntimeError) as e:
        raise DetectionFailedError("memory", "psutil could not read memory info", details=str(e))

    snapshot = HardwareSnapshot(
        cpus=tuple(cpus),
        pci_devices=tuple(probe_pci_devices(devices_path)),
        memory=memory,
        disk=probe_disk(storage_path),
    )
    log.info(f"Probed {len(snapshot.cpus)} CPU(s) and {len(snapshot.pci_devices)} PCI device(s)")
    return snapshot
