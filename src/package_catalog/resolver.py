# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Dependency Resolver

Single responsibility: Resolve a package's declared dependencies to packages.

Dependency graphs are one level deep: a dependency may not declare
dependencies of its own.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

from package_catalog.core.errors import DependencyError

if TYPE_CHECKING:
    from package_catalog.package import Package
    from package_catalog.registry import Registry

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Resolves package dependencies (minimum revision matching only)"""

    def __init__(self, registry: "Registry"):
        """
        Initialize dependency resolver.

        Args:
            registry: Registry used for lookups outside the owning catalog
        """
        self.registry = registry

    def resolve(self, package: "Package") -> List["Package"]:
        """
        Resolve dependencies for a package.

        Each declared (id, revision) pair is looked up in the package's own
        catalog first, then across the whole registry.

        Args:
            package: Package to resolve dependencies for

        Returns:
            Dependency packages, in declaration order

        Raises:
            DependencyError: If a dependency is unknown, too old, or itself
                has dependencies
        """
        resolved = []
        for dep in package.metadata.depends:
            found = self._find_package(package, dep.id)

            if found is None:
                raise DependencyError(
                    package.qualified_id,
                    f"Required dependency not found: {dep.id}"
                )

            if found is package:
                raise DependencyError(package.qualified_id, "Package depends on itself")

            if found.revision < dep.revision:
                raise DependencyError(
                    package.qualified_id,
                    f"Dependency {found.qualified_id} is at revision {found.revision}, "
                    f"revision {dep.revision} required"
                )

            if found.metadata.depends:
                raise DependencyError(
                    package.qualified_id,
                    f"Dependency {found.qualified_id} declares dependencies of its own; "
                    f"nested dependencies are not supported"
                )

            if found not in resolved:
                resolved.append(found)

        if resolved:
            logger.debug(
                f"Resolved dependencies of {package.qualified_id}: "
                f"{[p.qualified_id for p in resolved]}"
            )
        return resolved

    def _find_package(self, package: "Package", dep_id: str) -> Optional["Package"]:
        """
        Find a dependency by id.

        Args:
            package: Package declaring the dependency
            dep_id: Naked or qualified (catalog.package) id

        Returns:
            Package or None if not found
        """
        catalog = package.catalog
        if catalog is not None:
            found = catalog.get_package_by_id(dep_id)
            if found is not None:
                return found
        return self.registry.get_package_by_id(dep_id)
