# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities and shared modules for the package catalog.

This package contains:
- config: Configuration management
- errors: Custom exceptions
- logging: Structured logging
"""

from package_catalog.core.config import get_config, load_config, Config
from package_catalog.core.errors import (
    PackageCatalogError,
    NotFoundError,
    ValidationError,
    DependencyError,
)
from package_catalog.core.logging import get_logger, configure_logging

__all__ = [
    "get_config",
    "load_config",
    "Config",
    "PackageCatalogError",
    "NotFoundError",
    "ValidationError",
    "DependencyError",
    "get_logger",
    "configure_logging",
]
