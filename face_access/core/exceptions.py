"""Custom exceptions for the face access identity service."""
from typing import Optional


class AccessControlError(Exception):
    """Base exception for identity resolution operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize access control error.

        Args:
            message: Error description
            details: Additional error context
        """
        super().__init__(message)
        self.details = details or {}


class ValidationError(AccessControlError):
    """Raised when a request is malformed."""
    pass


class ShapeMismatchError(ValidationError):
    """Raised when an embedding does not have the configured dimension."""
    pass


class ObservedIdentityNotFoundError(AccessControlError):
    """Raised when an observed identity id does not exist."""
    pass


class InvalidTransitionError(AccessControlError):
    """Raised when an administrative action is not allowed for the current state."""
    pass


class DatastoreUnavailableError(AccessControlError):
    """Raised when the relational or vector datastore fails or times out."""
    pass


class UnclassifiedError(AccessControlError):
    """Raised for failures that fit no other category."""
    pass


class ServiceNotInitializedError(AccessControlError):
    """Raised when a service is requested before the container is initialized."""
    pass
