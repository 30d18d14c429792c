"""
Error code definitions for the ingestion pipeline.

This module defines standardized error codes, the exception taxonomy and
result structures used across adapters, enrichment cascades, persistence
and notification delivery for consistent error handling.
"""

from enum import Enum
from typing import Dict, Any, Optional


class ErrorCode(Enum):
    """Standardized error codes for the ingestion pipeline."""

    # Recovered locally (fallback or skip the source for this pass)
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    MALFORMED_RESPONSE = "malformed_response"

    # Not an error; normal silent skip
    DUPLICATE_ITEM = "duplicate_item"

    # Fatal to a single item
    PERSISTENCE_FAILURE = "persistence_failure"
    ENRICHMENT_FAILURE = "enrichment_failure"

    # Recorded per subscriber
    DELIVERY_FAILURE = "delivery_failure"

    UNKNOWN_SOURCE = "unknown_source"
    UNKNOWN_ERROR = "unknown_error"


class PipelineError(Exception):
    """Base class for pipeline errors carrying an ErrorCode."""

    error_code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_result(self) -> Dict[str, Any]:
        return create_error_result(self.error_code, self.message, self.details)


class ProviderUnavailable(PipelineError):
    """A source adapter or enrichment provider is unreachable, timed out or out of quota."""
    error_code = ErrorCode.PROVIDER_UNAVAILABLE


class MalformedProviderResponse(PipelineError):
    """A provider answered, but the payload is missing fields or holds invalid values."""
    error_code = ErrorCode.MALFORMED_RESPONSE


class DuplicateItem(PipelineError):
    """An item with the same (platform, external id) is already in the catalog."""
    error_code = ErrorCode.DUPLICATE_ITEM


class PersistenceFailure(PipelineError):
    """The catalog store rejected or could not complete a write."""
    error_code = ErrorCode.PERSISTENCE_FAILURE


class DeliveryFailure(PipelineError):
    """External notification delivery failed for one subscriber."""
    error_code = ErrorCode.DELIVERY_FAILURE


def create_error_result(
    error_code: ErrorCode,
    error_message: str,
    error_details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create a standardized error result dictionary.

    Args:
        error_code: The ErrorCode enum value
        error_message: Human-readable error message
        error_details: Optional additional context (platform, external id, user id...)

    Returns:
        Standardized error result dictionary
    """
    return {
        'status': 'failed',
        'error_code': error_code.value,
        'error': error_message,
        'error_details': error_details or {},
    }
