"""
Exception types raised by the CMH engine.

All derive from ValueError so callers that already guard numeric input
with ``except ValueError`` keep working.
"""

from __future__ import annotations


class DifError(ValueError):
    """Base class for DIF engine errors."""


class UnknownGroupError(DifError):
    """Group label is neither the focal nor the reference code."""


class InsufficientDataError(DifError):
    """No stratum carries the information a statistic needs."""


class InvalidInputError(DifError):
    """Negative or non-finite frequency, or non-finite item score."""
