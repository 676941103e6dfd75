"""
Custom exceptions for the statement ingestion pipeline.
"""
from typing import Any, Dict, Optional


class StatementPipelineException(Exception):
    """Base exception for all statement pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(StatementPipelineException):
    """Raised when a request is malformed."""
    pass


class ExternalJobError(StatementPipelineException):
    """Raised when the extraction job fails or reports partial success."""
    pass


class ExternalJobTimeout(ExternalJobError):
    """Raised when the extraction job does not finish before the deadline."""
    pass


class ModelResponseParseError(StatementPipelineException):
    """Raised when generative output is not in the expected shape."""
    pass


class LLMError(StatementPipelineException):
    """Raised when the model gateway call fails."""
    pass


class NotFoundError(StatementPipelineException):
    """Raised when an update targets a record that does not exist."""
    pass


class PersistenceError(StatementPipelineException):
    """Raised when a store read or write fails."""
    pass


class ChangeFeedError(StatementPipelineException):
    """Raised when mirroring changes to the analytics sink fails."""
    pass


class ConfigurationError(StatementPipelineException):
    """Raised when configuration is invalid."""
    pass
