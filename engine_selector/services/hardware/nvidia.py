"""
NVIDIA GPU properties via nvidia-smi.

Adds "vram" (bytes) and "compute-capability" to the additional
properties of NVIDIA display controllers. Tool failures leave the
property absent; matching then reports "unable to detect ...".

    $ nvidia-smi --id=00000000:01:00.0 --query-gpu=memory.total --format=csv,noheader
    4096 MiB
    $ nvidia-smi --id=00000000:01:00.0 --query-gpu=compute_cap --format=csv,noheader
    8.9
"""

from typing import Dict, Optional

from engine_selector.schemas.hardware import PciDescriptor
from engine_selector.utils.logger import log
from engine_selector.utils.subprocess_utils import run_command

NVIDIA_VENDOR_ID = 0x10DE
NVIDIA_SMI_TIMEOUT = 30

_UNITS = {
    "KiB": 1024,
    "MiB": 1024 * 1024,
    "GiB": 1024 * 1024 * 1024,
}


def _nvidia_smi(slot: str, query: str) -> Optional[str]:
    return run_command(
        ["nvidia-smi", f"--id={slot}", f"--query-gpu={query}", "--format=csv,noheader"],
        timeout=NVIDIA_SMI_TIMEOUT,
    )


def parse_memory_total(output: str) -> int:
    """
    Parse nvidia-smi memory.total output such as "4096 MiB" into bytes.

    Raises:
        ValueError: The output is not a number with an optional known unit
    """
    value, _, unit = output.strip().partition(" ")
    size = int(value)
    if size < 0:
        raise ValueError(f"negative memory size: {output!r}")
    if unit:
        if unit not in _UNITS:
            raise ValueError(f"unknown memory unit: {unit}")
        size *= _UNITS[unit]
    return size


def vram(slot: str) -> Optional[int]:
    output = _nvidia_smi(slot, "memory.total")
    if output is None:
        return None
    try:
        return parse_memory_total(output)
    except ValueError as e:
        log.warning(f"Unexpected nvidia-smi vRAM output for {slot}: {e}")
        return None


def compute_capability(slot: str) -> Optional[str]:
    return _nvidia_smi(slot, "compute_cap")


def is_nvidia_gpu(device: PciDescriptor) -> bool:
    return device.vendor_id == NVIDIA_VENDOR_ID and device.device_class & 0xFF00 == 0x0300


def gpu_properties(device: PciDescriptor) -> Dict[str, str]:
    """
    Query vRAM and compute capability of one NVIDIA GPU.

    Returns:
        Properties that could be determined; empty if nvidia-smi is missing
    """
    properties = {}

    vram_bytes = vram(device.slot)
    if vram_bytes is not None:
        properties["vram"] = str(vram_bytes)
    else:
        log.warning(f"Could not determine vRAM of {device.slot}")

    capability = compute_capability(device.slot)
    if capability is not None:
        properties["compute-capability"] = capability
    else:
        log.warning(f"Could not determine compute capability of {device.slot}")

    return properties
