"""
engine_selector - pick the hardware acceleration engine that fits this machine.

Scores declarative engine manifests against a snapshot of the host's CPUs,
PCI devices, memory and disk, and selects the best compatible engine.
"""

__version__ = "0.1.0"
