"""
Top engine selection and display ordering.
"""

from typing import List, Sequence

from engine_selector.schemas.manifest import ScoredManifest


class NoCompatibleEngineError(LookupError):
    """Raised when no stable engine scored above 0."""

    def __init__(self, message: str = "no compatible engines found"):
        super().__init__(message)


def top_engine(scored: Sequence[ScoredManifest]) -> ScoredManifest:
    """
    Pick the best compatible stable engine.

    devel engines are never selected, even with the highest score. Ties
    keep input order.

    Raises:
        NoCompatibleEngineError: No stable engine has a score above 0
    """
    candidates = [s for s in scored if s.score > 0 and s.manifest.is_stable]
    if not candidates:
        raise NoCompatibleEngineError()

    # sorted() is stable
    return sorted(candidates, key=lambda s: s.score, reverse=True)[0]


def display_order(scored: Sequence[ScoredManifest]) -> List[ScoredManifest]:
    """
    Order engines for listing: highest score first, stable before devel
    at equal score. Not used for selection.
    """
    return sorted(scored, key=lambda s: (-s.score, not s.manifest.is_stable))
