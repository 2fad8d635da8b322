# src/esg_mapping/core/errors.py
from __future__ import annotations

from typing import Optional


class ESGMappingError(Exception):
    """Base class for every error raised by esg_mapping."""


class ValidationError(ESGMappingError):
    """Malformed or empty required input, rejected before processing starts."""


class InvalidStandardError(ValidationError):
    """Unknown compliance standard."""

    def __init__(self, standard: str, known: Optional[list] = None) -> None:
        self.standard = standard
        self.known = sorted(known or [])
        hint = f" (known: {', '.join(self.known)})" if self.known else ""
        super().__init__(f"Unknown compliance standard: {standard!r}{hint}")


class ProviderError(ESGMappingError):
    """
    Embedding provider unavailable, rate limited or out of quota.

    The message is safe to show to end users; the underlying exception is
    kept on ``__cause__`` for logs.
    """

    def __init__(self, message: str = "Embedding provider unavailable", *, rate_limited: bool = False) -> None:
        self.rate_limited = rate_limited
        super().__init__(message)


class PersistenceError(ESGMappingError):
    """Storage collaborator failure."""
