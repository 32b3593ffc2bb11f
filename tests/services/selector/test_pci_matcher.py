"""
Unit tests for the PCI matcher.

Tests cover:
- Vendor/device id filtering
- Device class checks per type
- Integrated vs discrete scoring
- vRAM and compute capability properties
- Snap connection checks
"""

from unittest.mock import MagicMock

import pytest

from engine_selector.schemas.hardware import PciDescriptor
from engine_selector.schemas.manifest import PciGenericRequirement, PciGpuRequirement
from engine_selector.services.connections import ConnectionCheckError, always_connected
from engine_selector.services.selector import weights
from engine_selector.services.selector.pci_matcher import (
    check_type,
    filter_pci_devices,
    match_pci,
    score_pci_device,
)

NVIDIA = 0x10DE
INTEL = 0x8086


def create_pci_device(slot="0000:01:00.0", bus_number=1, device_class=0x0300,
                      vendor_id=NVIDIA, device_id=0x2684, **properties):
    return PciDescriptor(
        slot=slot,
        bus_number=bus_number,
        device_class=device_class,
        vendor_id=vendor_id,
        device_id=device_id,
        additional_properties={k.replace("_", "-"): v for k, v in properties.items()},
    )


def create_igpu():
    return create_pci_device(slot="0000:00:02.0", bus_number=0, vendor_id=INTEL, device_id=0x46A6)


class TestFilter:
    """Tests for vendor/device id filtering."""

    def test_vendor_filter(self):
        devices = [create_igpu(), create_pci_device()]

        assert filter_pci_devices(devices, NVIDIA, None) == [devices[1]]

    def test_vendor_and_device(self):
        devices = [create_pci_device(device_id=0x2684), create_pci_device(device_id=0x2704)]

        assert filter_pci_devices(devices, NVIDIA, 0x2704) == [devices[1]]

    def test_device_id_without_vendor_matches_any_vendor(self):
        devices = [create_pci_device(vendor_id=NVIDIA, device_id=0x1234),
                   create_pci_device(vendor_id=INTEL, device_id=0x1234),
                   create_pci_device(vendor_id=INTEL, device_id=0x9999)]

        assert filter_pci_devices(devices, None, 0x1234) == devices[:2]

    def test_no_filter(self):
        devices = [create_igpu(), create_pci_device()]
        assert filter_pci_devices(devices, None, None) == devices


class TestCheckType:
    """Tests for device class checks."""

    @pytest.mark.parametrize("device_class", [0x0300, 0x0302, 0x0380, 0x0001])
    def test_gpu_classes(self, device_class):
        assert check_type("gpu", create_pci_device(device_class=device_class))

    @pytest.mark.parametrize("device_class", [0x1200, 0x1280, 0x0B40])
    def test_accelerator_classes(self, device_class):
        device = create_pci_device(device_class=device_class)
        assert check_type("npu", device)
        assert check_type("tpu", device)

    def test_gpu_is_not_npu(self):
        assert not check_type("npu", create_pci_device(device_class=0x0300))

    def test_network_controller_is_not_gpu(self):
        assert not check_type("gpu", create_pci_device(device_class=0x0200))


class TestScoreDevice:
    """Tests for scoring a single device."""

    def test_discrete_gpu(self):
        score, issues = score_pci_device(PciGpuRequirement(), create_pci_device(), always_connected)

        assert issues == []
        assert score == weights.PCI_DEVICE_TYPE + weights.PCI_DEVICE_EXTERNAL

    def test_integrated_gpu(self):
        score, issues = score_pci_device(PciGpuRequirement(), create_igpu(), always_connected)

        assert issues == []
        assert score == weights.PCI_DEVICE_TYPE

    def test_typeless_integrated_device_matches_with_zero(self):
        """A typeless match on bus 0 satisfies the requirement with score 0."""
        score, issues = score_pci_device(
            PciGenericRequirement(vendor_id=INTEL), create_igpu(), always_connected
        )

        assert issues == []
        assert score == 0

    def test_wrong_class(self):
        device = create_pci_device(device_class=0x0200)

        score, issues = score_pci_device(PciGenericRequirement(type="npu"), device, always_connected)

        assert score == 0
        assert issues == ["device class 0x0200 not of required type npu"]

    def test_enough_vram(self):
        requirement = PciGpuRequirement(vram=4 * 1024 ** 3)
        device = create_pci_device(vram="25757220864")

        score, issues = score_pci_device(requirement, device, always_connected)

        assert issues == []
        assert score == weights.PCI_DEVICE_TYPE + weights.PCI_DEVICE_EXTERNAL + weights.GPU_VRAM

    def test_not_enough_vram(self):
        requirement = PciGpuRequirement(vram=32 * 1024 ** 3)

        _, issues = score_pci_device(requirement, create_pci_device(vram="1024"), always_connected)

        assert issues == ["not enough vRAM: 1024"]

    def test_vram_not_detected(self):
        _, issues = score_pci_device(PciGpuRequirement(vram=1), create_pci_device(), always_connected)
        assert issues == ["unable to detect vRAM"]

    def test_vram_unparsable(self):
        _, issues = score_pci_device(
            PciGpuRequirement(vram=1), create_pci_device(vram="lots"), always_connected
        )
        assert issues[0].startswith("error parsing vRAM")

    def test_compute_capability_compared_numerically(self):
        requirement = PciGpuRequirement(compute_capability="9.0")
        device = create_pci_device(compute_capability="12.0")

        score, issues = score_pci_device(requirement, device, always_connected)

        assert issues == []
        assert score == weights.PCI_DEVICE_TYPE + weights.PCI_DEVICE_EXTERNAL + weights.GPU_COMPUTE_CAPABILITY

    def test_compute_capability_too_low(self):
        requirement = PciGpuRequirement(compute_capability="8.9")

        _, issues = score_pci_device(requirement, create_pci_device(compute_capability="8.6"), always_connected)

        assert issues == ["compute capability too low: 8.6"]

    def test_compute_capability_not_detected(self):
        _, issues = score_pci_device(
            PciGpuRequirement(compute_capability="7.0"), create_pci_device(), always_connected
        )
        assert issues == ["unable to detect compute capability"]

    def test_connected(self):
        is_connected = MagicMock(return_value=True)
        requirement = PciGpuRequirement(snap_connections=("opengl", "cuda-driver-libs"))

        _, issues = score_pci_device(requirement, create_pci_device(), is_connected)

        assert issues == []
        assert is_connected.call_count == 2

    def test_not_connected(self):
        requirement = PciGpuRequirement(snap_connections=("opengl",))

        score, issues = score_pci_device(requirement, create_pci_device(), lambda c: False)

        assert score == 0
        assert issues == ['"opengl" is not connected']

    def test_connection_check_failure(self):
        def failing(connection):
            raise ConnectionCheckError(connection, "snapctl not found")

        requirement = PciGpuRequirement(snap_connections=("opengl",))

        _, issues = score_pci_device(requirement, create_pci_device(), failing)

        assert issues == ['error checking snap connection "opengl": snapctl not found']


class TestMatchPci:
    """Tests for matching against all host PCI devices."""

    def test_no_devices(self):
        result = match_pci(PciGpuRequirement(), [], always_connected)

        assert not result.matched
        assert result.issues == ["no pci devices on host system"]

    def test_device_not_found(self):
        """Filtered-out devices are summarized, not listed one by one."""
        result = match_pci(PciGpuRequirement(vendor_id=0x1002), [create_igpu(), create_pci_device()],
                           always_connected)

        assert not result.matched
        assert result.issues == ["device not found"]

    def test_discrete_preferred_over_integrated(self):
        """Integrated and discrete GPU of the same vendor: the discrete one scores."""
        igpu = create_pci_device(slot="0000:00:02.0", bus_number=0)
        dgpu = create_pci_device(slot="0000:01:00.0", bus_number=1)

        result = match_pci(PciGpuRequirement(vendor_id=NVIDIA), [igpu, dgpu], always_connected)

        assert result.matched
        assert result.score == weights.PCI_DEVICE_TYPE + weights.PCI_DEVICE_EXTERNAL

    def test_issues_prefixed_with_slot(self):
        device = create_pci_device(slot="0000:03:00.0", device_class=0x0200)

        result = match_pci(PciGpuRequirement(), [device], always_connected)

        assert result.issues == ["pci 0000:03:00.0: device class 0x0200 not of required type gpu"]

    def test_uses_injected_connection_check(self):
        is_connected = MagicMock(return_value=False)
        requirement = PciGpuRequirement(snap_connections=("opengl",))

        result = match_pci(requirement, [create_pci_device()], is_connected)

        assert not result.matched
        is_connected.assert_called_once_with("opengl")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
