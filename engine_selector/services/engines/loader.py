"""
Engine manifest loader.

Engines live in a directory with one sub-directory per engine:

    engines/
      cpu-avx2/engine.yaml
      nvidia-gpu/engine.yaml

Loading is fail-fast: one malformed manifest fails the whole call, so a
broken engine is never silently left out of selection.
"""

from pathlib import Path
from typing import List, Union

from engine_selector.schemas.manifest import EngineManifest
from engine_selector.services.engines.exceptions import (
    ManifestLoadError,
    ManifestNotFoundError,
)
from engine_selector.services.engines.validator import (
    MANIFEST_FILENAME,
    parse_manifest_yaml,
    read_manifest_file,
)
from engine_selector.utils.logger import log


def load_manifest(manifests_dir: Union[str, Path], engine_name: str) -> EngineManifest:
    """
    Load and validate the manifest of a single engine.

    Args:
        manifests_dir: Directory holding one sub-directory per engine
        engine_name: Name of the engine (and of its sub-directory)

    Returns:
        The validated manifest

    Raises:
        ManifestNotFoundError: No engine.yaml exists for engine_name
        ManifestValidationError: The manifest is invalid
        ManifestLoadError: The manifest cannot be read
    """
    manifest_path = Path(manifests_dir) / engine_name / MANIFEST_FILENAME
    if not manifest_path.is_file():
        raise ManifestNotFoundError(engine_name, manifest_path)

    return parse_manifest_yaml(
        read_manifest_file(manifest_path),
        expected_name=engine_name,
        source=manifest_path,
    )


def load_manifests(manifests_dir: Union[str, Path]) -> List[EngineManifest]:
    """
    Load every engine manifest in a directory, ordered by engine name.

    Plain files next to the engine directories are ignored.

    Raises:
        ManifestLoadError: The directory cannot be read or an engine
            directory has no engine.yaml
        ManifestValidationError: Any manifest is invalid
    """
    manifests_dir = Path(manifests_dir)
    try:
        entries = sorted(manifests_dir.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ManifestLoadError(manifests_dir, f"cannot list engines: {e.strerror or e}")

    manifests = []
    for entry in entries:
        if not entry.is_dir():
            continue

        manifest_path = entry / MANIFEST_FILENAME
        if not manifest_path.is_file():
            raise ManifestLoadError(manifest_path, "manifest file does not exist")

        manifests.append(parse_manifest_yaml(
            read_manifest_file(manifest_path),
            expected_name=entry.name,
            source=manifest_path,
        ))

    log.info(f"Loaded {len(manifests)} engine manifests from {manifests_dir}")
    return manifests
