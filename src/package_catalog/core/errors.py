# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Custom exceptions for the package catalog.

All exceptions inherit from PackageCatalogError for consistent error handling.
Only unrecoverable content defects and programming errors are raised; transport
and filesystem outcomes of asynchronous operations are reported as status codes.
"""

from typing import Optional


class PackageCatalogError(Exception):
    """Base exception for all package catalog errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize package catalog error.

        Args:
            message: Human-readable error message
            details: Additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for host-side reporting."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class NotFoundError(PackageCatalogError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str, details: Optional[dict] = None):
        """
        Initialize not found error.

        Args:
            resource: Type of resource (e.g., "Package", "Catalog")
            identifier: Resource identifier
            details: Additional error details
        """
        message = f"{resource} not found: {identifier}"
        super().__init__(message, details=details)
        self.resource = resource
        self.identifier = identifier


class ValidationError(PackageCatalogError):
    """Metadata validation failed."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        """
        Initialize validation error.

        Args:
            message: Validation error message
            field: Field that failed validation
            details: Additional error details
        """
        super().__init__(message, details=details)
        self.field = field


class ConfigurationError(PackageCatalogError):
    """Configuration error."""

    def __init__(self, message: str, config_file: Optional[str] = None, details: Optional[dict] = None):
        """
        Initialize configuration error.

        Args:
            message: Configuration error message
            config_file: Configuration file path
            details: Additional error details
        """
        super().__init__(message, details=details)
        self.config_file = config_file


class DependencyError(PackageCatalogError):
    """Package dependencies cannot be resolved."""

    def __init__(self, package_id: str, message: str, details: Optional[dict] = None):
        """
        Initialize dependency error.

        Args:
            package_id: Qualified id of the package being resolved
            message: Resolution error message
            details: Additional error details
        """
        super().__init__(f"{package_id}: {message}", details=details)
        self.package_id = package_id


class ConflictError(PackageCatalogError):
    """Resource conflict."""

    def __init__(self, message: str, resource: Optional[str] = None, details: Optional[dict] = None):
        """
        Initialize conflict error.

        Args:
            message: Error message
            resource: Conflicting resource
            details: Additional error details
        """
        super().__init__(message, details=details)
        self.resource = resource


class PropertyParseError(PackageCatalogError):
    """A property document could not be parsed."""


class ExtractError(PackageCatalogError):
    """An archive could not be extracted."""
