# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Custom exceptions for cmdflow.

All exceptions inherit from CmdflowError for consistent error handling.
"""

from typing import Optional


class CmdflowError(Exception):
    """Base exception for all cmdflow errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[dict] = None
    ):
        """
        Initialize cmdflow error.

        Args:
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details
        """
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details
        }


class NotFoundError(CmdflowError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str, details: Optional[dict] = None):
        """
        Initialize not found error.

        Args:
            resource: Type of resource (e.g., "Run", "Workflow")
            identifier: Resource identifier
            details: Additional error details
        """
        message = f"{resource} not found: {identifier}"
        super().__init__(message, status_code=404, details=details)
        self.resource = resource
        self.identifier = identifier


class ValidationError(CmdflowError):
    """Validation failed."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=400, details=details)
        self.field = field


class ConfigurationError(CmdflowError):
    """
    Static misconfiguration of a call: unknown command path, duplicate
    registration, workflow without a trigger node, missing node config.
    """

    def __init__(self, message: str, config_file: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=400, details=details)
        self.config_file = config_file


class InvocationError(CmdflowError):
    """A command handler or node operation failed while running."""

    def __init__(self, message: str, run_id: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=500, details=details)
        self.run_id = run_id


class InvocationTimeoutError(InvocationError):
    """A network, tool or model call exceeded its configured timeout."""

    def __init__(self, message: str, timeout: Optional[float] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.timeout = timeout


class MCPError(InvocationError):
    """MCP server error."""

    def __init__(self, message: str, server_id: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.server_id = server_id


class CancellationError(CmdflowError):
    """
    Work was abandoned because an abort was requested.

    Distinct from a failure: nodes interrupted this way go back to idle.
    """

    def __init__(self, message: str = "Cancelled", details: Optional[dict] = None):
        super().__init__(message, status_code=409, details=details)


class ConflictError(CmdflowError):
    """Resource conflict."""

    def __init__(self, message: str, resource: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=409, details=details)
        self.resource = resource


# Error Message Utilities

def sanitize_error_for_user(error: Exception, include_type: bool = False) -> str:
    """
    Sanitize error messages for user display.
    Removes stack traces and overly long payloads.

    Args:
        error: The exception to sanitize
        include_type: Whether to include exception type

    Returns:
        User-friendly error message without stack trace
    """
    error_msg = str(error).strip() or error.__class__.__name__

    # Limit message length
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."

    if include_type:
        return f"{error.__class__.__name__}: {error_msg}"

    return error_msg
