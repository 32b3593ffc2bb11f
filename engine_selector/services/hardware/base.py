"""Errors raised by the local hardware probe."""

from typing import Optional


class DetectionFailedError(Exception):
    """
    Raised when a hardware measurement cannot be taken.

    No fallback figure is substituted for a failed measurement.
    """

    def __init__(self, component: str, message: str, details: Optional[str] = None):
        self.component = component
        self.message = message
        self.details = details
        super().__init__(f"Failed to detect {component}: {message}")
