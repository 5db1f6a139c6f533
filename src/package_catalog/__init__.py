# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Catalog

Discovers remote content catalogs, resolves package metadata and
dependencies, and installs package archives into a local content tree
with revision-based updates.
"""

from package_catalog.catalog import Catalog
from package_catalog.http import HttpxTransport, Request, Transport
from package_catalog.install import Install
from package_catalog.models.catalog_models import StatusCode
from package_catalog.package import Package
from package_catalog.props import PropertyNode, read_properties
from package_catalog.registry import Delegate, Registry

__version__ = "1.0.0"

__all__ = [
    "Catalog",
    "Delegate",
    "HttpxTransport",
    "Install",
    "Package",
    "PropertyNode",
    "Registry",
    "Request",
    "StatusCode",
    "Transport",
    "read_properties",
]
