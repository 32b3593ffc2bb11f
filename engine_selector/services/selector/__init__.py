"""Compatibility scoring of engine manifests against a hardware snapshot."""

from engine_selector.services.selector.result import MatchResult
from engine_selector.services.selector.scorer import (
    DEFAULT_STORAGE_PATH,
    MeasurementMissingError,
    check_engine,
    score_engines,
)
from engine_selector.services.selector.top_engine import (
    NoCompatibleEngineError,
    display_order,
    top_engine,
)

__all__ = [
    "DEFAULT_STORAGE_PATH",
    "MatchResult",
    "MeasurementMissingError",
    "NoCompatibleEngineError",
    "check_engine",
    "display_order",
    "score_engines",
    "top_engine",
]
