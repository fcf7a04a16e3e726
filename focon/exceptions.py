"""
exceptions.py - Error types raised by the focon engine
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .rays import Beam


class FoconError(Exception):
    """Base class for all errors raised by the focon package."""


class RayFault(FoconError):
    """
    A beam whose path cannot be computed.

    Raised when a surface intersection is numerically unsolvable or when
    the bounce loop exceeds its iteration limit. The ray tracer re-raises
    every fault carrying the beam exactly as it was handed to the tracer,
    so sampling code can drop that one sample.

    Attributes
    ----------
    beam : Beam or None
        The beam of the failed trace, as handed to the tracer
    """

    def __init__(self, message: str, beam: Optional["Beam"] = None):
        super().__init__(message)
        self.beam = beam


class ConfigurationError(FoconError, ValueError):
    """Invalid or inconsistent configuration parameters."""
