"""Typed failures raised by the analysis core.

All of them derive from :class:`ValueError` so callers that only care about
"bad input" keep working. ``DetectionDegraded`` is not an exception: a
degraded detection is a warning string carried by the result.
"""

from __future__ import annotations


class InvalidIndices(ValueError):
    """Manual ramp indices were rejected; no state was changed."""


class InvalidVoltage(ValueError):
    """Approval was rejected: voltage not in the catalog or already bound."""


class InsufficientData(ValueError):
    """Not enough distinct voltages (or points) for the requested operation."""


class InvalidSlope(ValueError):
    """The effective slope is non-positive or non-finite."""


class ValidationError(ValueError):
    """Export preconditions are not met."""


#: Prefix used for fallback-detection warnings in results and logs.
DETECTION_DEGRADED = "DetectionDegraded"

__all__ = [
    "InvalidIndices",
    "InvalidVoltage",
    "InsufficientData",
    "InvalidSlope",
    "ValidationError",
    "DETECTION_DEGRADED",
]
