"""
Custom exceptions for the testimony digest application.

Provides a hierarchy of exceptions for better error handling and debugging.
"""

from typing import Any, Dict, Optional


class DigestError(Exception):
    """Base exception for all testimony digest errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(DigestError):
    """Raised when there are configuration issues."""
    pass


class UnknownFrequencyError(ConfigurationError):
    """Raised when a notification frequency has no window rules."""

    def __init__(self, frequency: Any, **kwargs):
        super().__init__(f"Unknown notification frequency: {frequency!r}", **kwargs)
        self.frequency = frequency


class DataAccessError(DigestError):
    """Base class for data access errors."""
    pass


class RecipientStoreError(DataAccessError):
    """Recipient profile store errors."""
    pass


class IdentityServiceError(DataAccessError):
    """Identity lookup errors."""
    pass


class NotificationFeedError(DataAccessError):
    """Notification feed store errors."""
    pass


class EmailQueueError(DataAccessError):
    """Outbound email queue errors."""
    pass


class RenderError(DigestError):
    """Template rendering errors."""
    pass


class WorkflowError(DigestError):
    """Workflow execution errors."""
    pass
