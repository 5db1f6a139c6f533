# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

from package_catalog.models.catalog_models import (
    StatusCode,
    PackageDependency,
    VariantMetadata,
    PackageMetadata,
    VersionAlternate,
    CatalogMetadata,
    localized_string,
)

__all__ = [
    "StatusCode",
    "PackageDependency",
    "VariantMetadata",
    "PackageMetadata",
    "VersionAlternate",
    "CatalogMetadata",
    "localized_string",
]
