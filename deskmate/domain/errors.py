"""
Error taxonomy shared by every layer.

Entry points (channel handlers, REST routes) trap these and translate them
into error events, HTTP statuses or soft conversational replies.
"""

from typing import Any, Dict, Optional


class DeskmateError(Exception):
    """Base class for all domain errors"""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationError(DeskmateError):
    """Missing or invalid user/session identity"""

    code = "NOT_AUTHENTICATED"


class ValidationError(DeskmateError):
    """A required field is missing or malformed"""

    code = "VALIDATION_ERROR"


class NotFoundError(DeskmateError):
    """A referenced entity does not exist"""

    code = "NOT_FOUND"


class ExternalServiceError(DeskmateError):
    """A downstream service returned a non-success response"""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.service = service


class ConfigurationError(DeskmateError):
    """A required external capability is not configured"""

    code = "NOT_CONFIGURED"

    def __init__(self, capability: str, message: str):
        super().__init__(message)
        self.capability = capability


class StorageError(DeskmateError):
    """The persistent store rejected a read or write"""

    code = "STORAGE_ERROR"


class InvalidSessionError(AuthenticationError):
    """A join request without a usable user/session pair"""

    code = "INVALID_SESSION"
