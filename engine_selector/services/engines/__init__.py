"""Engine manifest loading and validation."""

from engine_selector.services.engines.exceptions import (
    ManifestLoadError,
    ManifestNotFoundError,
    ManifestValidationError,
)
from engine_selector.services.engines.loader import load_manifest, load_manifests
from engine_selector.services.engines.validator import (
    MANIFEST_FILENAME,
    parse_manifest,
    validate,
)

__all__ = [
    "MANIFEST_FILENAME",
    "ManifestLoadError",
    "ManifestNotFoundError",
    "ManifestValidationError",
    "load_manifest",
    "load_manifests",
    "parse_manifest",
    "validate",
]
