"""
Bridgewell Matching — Error taxonomy.

Discovery endpoints translate "not found / not matchable" into an empty
result set; the remaining cases surface through these exceptions and are
mapped to HTTP responses in ``app.main``.
"""

from __future__ import annotations


class MatchingError(Exception):
    """Base class for all matching-engine errors."""


class InvalidInputError(MatchingError):
    """Rejected before any store access (bad action, malformed message)."""


class NotFoundError(MatchingError):
    """A referenced match, task or user does not exist."""


class TransientInfraError(MatchingError):
    """Store or queue unavailable; the caller may retry."""
