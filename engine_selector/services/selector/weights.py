"""
Scoring weights.

Each constant is added to a requirement's score when the matching
criterion is satisfied. Higher totals mean a more specific match.
"""

# Reserved for dedicated TPU matching
TPU = 1000
TPU_VENDOR = 200

PCI_DEVICE = 100
PCI_DEVICE_EXTERNAL = 50
PCI_DEVICE_ID = 30
PCI_VENDOR_ID = 20
PCI_DEVICE_TYPE = 10
GPU_VRAM = 10
GPU_COMPUTE_CAPABILITY = 10

CPU_DEVICE = 10
CPU_MODEL = 8
CPU_VENDOR = 6
CPU_FLAG = 1

# Added once each for a satisfied memory and disk requirement
MEMORY_SUFFICIENT = 1
DISK_SUFFICIENT = 1
