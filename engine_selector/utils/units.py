"""
Value parsing helpers shared by manifests, snapshots and matchers.

Byte sizes are written as ``<digits>[M|G]`` (binary units), PCI and ARM
identifiers as hexadecimal, compute capabilities as ``<major>[.<minor>]``.
"""

import re
from typing import Any, Tuple, Union

MIB = 1024 * 1024
GIB = 1024 * 1024 * 1024

_SIZE_PATTERN = re.compile(r"^(\d+)([MG]?)$")
_COMPUTE_CAPABILITY_PATTERN = re.compile(r"^(\d+)(?:\.(\d+))?$")

PRIMITIVE_TYPES = (bool, int, float, complex, str)


def string_to_bytes(size: Union[str, int]) -> int:
    """
    Parse a byte size string.

    Args:
        size: Digits with an optional ``M`` (MiB) or ``G`` (GiB) suffix,
            e.g. "300M", "4G", "5000000000". Plain integers, as YAML decodes
            unsuffixed sizes, are accepted as well.

    Returns:
        Size in bytes

    Raises:
        ValueError: The value is not a valid size

    Example:
        string_to_bytes("300M")  # Returns 314572800
    """
    if isinstance(size, bool):
        raise ValueError(f"invalid size: {size!r}")
    if isinstance(size, int):
        if size < 0:
            raise ValueError(f"invalid size: {size!r}")
        return size
    if not isinstance(size, str):
        raise ValueError(f"invalid size: {size!r}")

    match = _SIZE_PATTERN.match(size)
    if not match:
        raise ValueError(f"invalid size: {size!r}")

    digits, unit = match.groups()
    scaling = {"": 1, "M": MIB, "G": GIB}[unit]
    return int(digits) * scaling


def fmt_bytes(size: int) -> str:
    """Format a byte count with a binary unit for display."""
    if size > 1024 * GIB:
        return f"{size / (1024 * GIB):.1f}TiB"
    elif size > GIB:
        return f"{size / GIB:.1f}GiB"
    elif size > MIB:
        return f"{size / MIB:.1f}MiB"
    elif size > 1024:
        return f"{size / 1024:.1f}KiB"
    return str(size)


def parse_hex(value: Union[str, int]) -> int:
    """
    Parse a hexadecimal identifier.

    Accepts integers (YAML decodes ``0x10de`` as a number) and strings with
    or without a ``0x`` prefix, in any letter case.

    Raises:
        ValueError: The value is not hexadecimal
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid hex value: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"invalid hex value: {value!r}")
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            text = text[2:]
        if text and all(c in "0123456789abcdefABCDEF" for c in text):
            return int(text, 16)
    raise ValueError(f"invalid hex value: {value!r}")


def parse_compute_capability(value: Union[str, int, float]) -> Tuple[int, int]:
    """
    Parse a compute capability such as "8.9" into a comparable tuple.

    Raises:
        ValueError: The value is not ``<major>[.<minor>]``
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid compute capability: {value!r}")
    match = _COMPUTE_CAPABILITY_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError(f"invalid compute capability: {value!r}")
    major, minor = match.groups()
    return int(major), int(minor or 0)


def is_primitive(value: Any) -> bool:
    """True for scalar values (numbers, booleans, strings); False for None, lists and mappings."""
    return isinstance(value, PRIMITIVE_TYPES)
