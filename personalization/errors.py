"""
Error taxonomy for the personalization engine.

Insufficient data is not an error here: scorers return an empty result with
an explanatory message instead of raising.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base exception for all engine errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(EngineError):
    """Raised when a required input is missing or malformed."""

    status_code = 400


class NotFoundError(EngineError):
    """Raised when a referenced product or customer does not exist."""

    status_code = 404


class ExternalServiceError(EngineError):
    """Raised when a collaborator call fails (network, non-2xx, timeout)."""

    status_code = 502
