"""Errors raised while loading and validating engine manifests."""

from pathlib import Path
from typing import Optional, Union


class ManifestValidationError(ValueError):
    """
    Raised when a manifest document is malformed or uses disallowed fields.

    Always fatal: the manifest is rejected before any scoring happens.
    """

    def __init__(self, manifest: Union[str, Path, None], message: str):
        self.manifest = str(manifest) if manifest else None
        self.message = message
        if self.manifest:
            super().__init__(f"{self.manifest}: {message}")
        else:
            super().__init__(message)


class ManifestNotFoundError(LookupError):
    """Raised when no manifest exists for the requested engine."""

    def __init__(self, engine_name: str, path: Optional[Path] = None):
        self.engine_name = engine_name
        self.path = path
        location = f" ({path})" if path else ""
        super().__init__(f"engine manifest not found: {engine_name}{location}")


class ManifestLoadError(RuntimeError):
    """Raised when a manifest file or the manifests directory cannot be read."""

    def __init__(self, path: Union[str, Path], message: str):
        self.path = str(path)
        self.message = message
        super().__init__(f"{self.path}: {message}")
