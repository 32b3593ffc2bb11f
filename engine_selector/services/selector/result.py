"""Result of matching one device requirement against a snapshot."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class MatchResult:
    """
    Outcome of one device requirement.

    matched is True when at least one host device satisfied every check of
    the requirement. score is the best score among those devices (it can be
    0 for a typeless requirement on an integrated device). issues explains
    each rejected host device.
    """
    score: int = 0
    matched: bool = False
    issues: List[str] = field(default_factory=list)

    @classmethod
    def failed(cls, *issues: str) -> "MatchResult":
        return cls(score=0, matched=False, issues=list(issues))
