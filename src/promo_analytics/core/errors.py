"""
Error taxonomy for the promo analytics engine.

Every failure the engine raises on purpose derives from PromoAnalyticsError and
carries a stable machine-readable code, so the HTTP layer and the client can
map errors back and forth without string matching.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

from typing import Any, Optional


class PromoAnalyticsError(Exception):
    """Base exception for engine errors."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidInputError(PromoAnalyticsError):
    """Malformed fields, unknown enum tags, non-positive iteration counts."""

    code = "INVALID_INPUT"


class InsufficientDataError(PromoAnalyticsError):
    """History shorter than an operation's minimum where no fallback exists."""

    code = "INSUFFICIENT_DATA"


class NumericDegeneracyError(PromoAnalyticsError):
    """A zero denominator that cannot be guarded by substitution."""

    code = "NUMERIC_DEGENERACY"


class ComputeBudgetExceededError(PromoAnalyticsError):
    """Horizon or iteration count above the configured ceiling."""

    code = "COMPUTE_BUDGET_EXCEEDED"


class NotTrainedError(PromoAnalyticsError):
    """A model was used before its train step produced parameters."""

    code = "NOT_TRAINED"
