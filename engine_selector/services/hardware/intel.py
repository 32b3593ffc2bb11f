"""
Intel GPU properties via clinfo.

Adds "vram" (bytes) to the additional properties of Intel display
controllers. clinfo reports CL_DEVICE_GLOBAL_MEM_SIZE per OpenCL device;
the device is matched to the PCI slot through CL_DEVICE_PCI_BUS_INFO_KHR.

    $ clinfo --json
    {"devices": [{"online": [{"CL_DEVICE_PCI_BUS_INFO_KHR": "PCI-E, 0000:00:02.0",
                              "CL_DEVICE_GLOBAL_MEM_SIZE": 15335931904, ...}]}], ...}
"""

import json
from typing import Any, Dict, Optional

from engine_selector.schemas.hardware import PciDescriptor
from engine_selector.utils.logger import log
from engine_selector.utils.subprocess_utils import run_command

INTEL_VENDOR_ID = 0x8086
CLINFO_TIMEOUT = 10


def _online_devices(clinfo: Dict[str, Any]):
    for platform in clinfo.get("devices") or []:
        if not isinstance(platform, dict):
            continue
        for device in platform.get("online") or []:
            if isinstance(device, dict):
                yield device


def parse_clinfo_vram(output: str, slot: str) -> Optional[int]:
    """
    Find the global memory size of the OpenCL device at a PCI slot.

    Returns:
        Size in bytes, or None if no online device sits at the slot

    Raises:
        ValueError: The output is not clinfo JSON or the size is not a number
    """
    try:
        clinfo = json.loads(output)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid clinfo json: {e}")
    if not isinstance(clinfo, dict):
        raise ValueError("clinfo json is not an object")

    for device in _online_devices(clinfo):
        if slot not in str(device.get("CL_DEVICE_PCI_BUS_INFO_KHR", "")):
            continue
        size = device.get("CL_DEVICE_GLOBAL_MEM_SIZE")
        if isinstance(size, bool):
            raise ValueError(f"invalid memory size: {size!r}")
        size = int(size)
        if size < 0:
            raise ValueError(f"negative memory size: {size}")
        return size
    return None


def vram(slot: str) -> Optional[int]:
    output = run_command(["clinfo", "--json"], timeout=CLINFO_TIMEOUT)
    if output is None:
        return None
    try:
        return parse_clinfo_vram(output, slot)
    except (TypeError, ValueError) as e:
        log.warning(f"Unexpected clinfo output for {slot}: {e}")
        return None


def is_intel_gpu(device: PciDescriptor) -> bool:
    return device.vendor_id == INTEL_VENDOR_ID and device.device_class & 0xFF00 == 0x0300


def gpu_properties(device: PciDescriptor) -> Dict[str, str]:
    """
    Query vRAM of one Intel GPU.

    Returns:
        {"vram": ...} if clinfo lists the device, otherwise empty
    """
    vram_bytes = vram(device.slot)
    if vram_bytes is None:
        log.warning(f"Could not determine vRAM of {device.slot}")
        return {}
    return {"vram": str(vram_bytes)}
