# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package

In-memory view of one package declared by a catalog: its properties,
variants, tags and dependencies, plus the filter language used to search
catalogs.

Filters are property trees. Inner nodes `all-of` / `any-of` combine their
children; leaves test one property:

    <any-of>
        <tag>helicopter</tag>
        <rating-FDM>4</rating-FDM>
    </any-of>
    <installed>true</installed>
    <text>cessna</text>
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Set

from package_catalog.core.errors import ExtractError
from package_catalog.extract import safe_member_path
from package_catalog.models.catalog_models import (
    PackageMetadata,
    localized_string,
)
from package_catalog.props import PropertyNode
from package_catalog.install import Install

if TYPE_CHECKING:
    from package_catalog.catalog import Catalog
    from package_catalog.registry import Registry

logger = logging.getLogger(__name__)

RATING_PREFIX = "rating-"
_TRUE_VALUES = {"true", "1", "yes"}


def validate_metadata(metadata: PackageMetadata) -> List[str]:
    """
    Check the fields every installable package needs.

    `dir` must be a single directory name and `archive-path` a relative path
    inside the archive, so neither can reach outside the catalog directory.

    Returns:
        Names of missing or invalid fields (empty when valid)
    """
    missing = []
    if not metadata.id:
        missing.append("id")
    if not metadata.name:
        missing.append("name")
    if not metadata.dir or not _is_safe_path(metadata.dir, single=True):
        missing.append("dir")
    if metadata.archive_path and not _is_safe_path(metadata.archive_path):
        missing.append("archive-path")
    return missing


def _is_safe_path(value: str, single: bool = False) -> bool:
    try:
        relative = safe_member_path(value)
    except ExtractError:
        return False
    if relative is None:
        return False
    return len(relative.parts) == 1 if single else True


class Package:
    """
    One package of a catalog.

    The owning Catalog creates and owns packages; a package keeps a plain,
    non-owning reference back to it. Package objects survive catalog refreshes
    as long as their id stays listed.
    """

    def __init__(self, metadata: PackageMetadata, catalog: "Catalog"):
        self.catalog = catalog
        self.metadata = metadata

    def __repr__(self) -> str:
        return f"Package({self.qualified_id!r}, revision={self.revision})"

    def update_metadata(self, metadata: PackageMetadata):
        """Replace properties after a catalog refresh, keeping identity"""
        if metadata.revision != self.metadata.revision:
            logger.debug(f"{self.qualified_id}: revision {self.metadata.revision} -> {metadata.revision}")
        self.metadata = metadata

    @property
    def registry(self) -> "Registry":
        return self.catalog.registry

    # -- Properties --

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def qualified_id(self) -> str:
        return f"{self.catalog.id}.{self.id}"

    @property
    def name(self) -> str:
        return localized_string(self.metadata.name, self.metadata.localized, self.registry.locale, "name")

    @property
    def description(self) -> str:
        return localized_string(
            self.metadata.description, self.metadata.localized, self.registry.locale, "description"
        )

    @property
    def revision(self) -> int:
        return self.metadata.revision

    @property
    def md5(self) -> str:
        return self.metadata.md5

    @property
    def download_urls(self) -> List[str]:
        return list(self.metadata.urls)

    @property
    def dir_name(self) -> str:
        return self.metadata.dir

    @property
    def archive_path(self) -> str:
        """Directory inside the archive holding the package content"""
        return self.metadata.archive_path or self.metadata.dir

    @property
    def tags(self) -> Set[str]:
        return set(self.metadata.tags)

    @property
    def variants(self) -> List[str]:
        """Variant ids; index 0 is the package itself"""
        return [self.id] + [v.id for v in self.metadata.variants]

    @property
    def install_path(self) -> Path:
        return self.catalog.install_root / self.dir_name

    def index_of_variant(self, variant_id: str) -> int:
        """
        Raises:
            ValueError: If variant_id is not one of this package's variants
        """
        return self.variants.index(variant_id)

    def name_for_variant(self, variant_id: str) -> str:
        index = self.index_of_variant(variant_id)
        if index == 0:
            return self.name
        variant = self.metadata.variants[index - 1]
        return localized_string(variant.name, variant.localized, self.registry.locale, "name")

    def validate(self) -> bool:
        missing = validate_metadata(self.metadata)
        if missing:
            logger.error(f"Package {self.id or '<no id>'} is missing or has invalid: {', '.join(missing)}")
            return False
        return True

    # -- Dependencies --

    def dependencies(self) -> List["Package"]:
        """
        Resolve declared dependencies.

        Raises:
            DependencyError: If any dependency cannot be satisfied
        """
        return self.registry.resolver.resolve(self)

    # -- Install state --

    def existing_install(self) -> Optional[Install]:
        return self.registry.install_for_package(self)

    def is_installed(self) -> bool:
        return self.existing_install() is not None

    def install(self) -> Install:
        """
        Install or update this package, dependencies first.

        Returns:
            The Install record; its download is queued with the registry

        Raises:
            DependencyError: If dependencies cannot be resolved (nothing is scheduled)
        """
        deps = self.dependencies()
        for dep in deps:
            dep.install()

        existing = self.existing_install()
        if existing is not None:
            if existing.has_update():
                self.registry.schedule_to_update(existing)
            return existing

        install = Install(self, self.install_path)
        self.registry.register_install(install)
        self.registry.schedule_to_update(install)
        return install

    def mark_for_install(self) -> Install:
        """
        Create the install directory with revision 0 without downloading.

        The package then reports as installed and needing an update, so the
        next update pass fetches it.
        """
        existing = self.existing_install()
        if existing is not None:
            return existing

        path = self.install_path
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create install directory {path}: {e}")
        install = Install(self, path)
        self.registry.register_install(install)
        logger.info(f"Marked {self.qualified_id} for install at {path}")
        return install

    # -- Filtering --

    def matches(self, filter_node: PropertyNode) -> bool:
        """
        Evaluate a filter tree.

        A root node that is not itself a filter term (for example the
        PropertyList element of a parsed document) requires all of its
        children to match; an empty root matches every package.
        """
        if self._is_filter_term(filter_node.name):
            return self._matches_term(filter_node)
        return all(self._matches_term(child) for child in filter_node.children)

    @staticmethod
    def _is_filter_term(name: str) -> bool:
        return name in {"all-of", "any-of", "tag", "installed", "text", "name", "description"} \
            or name.startswith(RATING_PREFIX)

    def _matches_term(self, node: PropertyNode) -> bool:
        name = node.name
        value = node.value or ""

        if name == "all-of":
            return all(self._matches_term(child) for child in node.children)
        if name == "any-of":
            return any(self._matches_term(child) for child in node.children)
        if name == "tag":
            return value.strip().lower() in self.tags
        if name.startswith(RATING_PREFIX):
            return self._matches_rating(name[len(RATING_PREFIX):], value)
        if name == "installed":
            return (value.strip().lower() in _TRUE_VALUES) == self.is_installed()
        if name == "text":
            return self._matches_strings(value, ("name", "description"))
        if name == "name":
            return self._matches_strings(value, ("name",))
        if name == "description":
            return self._matches_strings(value, ("description",))

        logger.warning(f"Unknown filter term: {name}")
        return False

    def _matches_rating(self, rating: str, value: str) -> bool:
        try:
            threshold = float(value)
        except ValueError:
            logger.warning(f"Invalid rating threshold for {rating}: {value!r}")
            return False
        return self.metadata.ratings.get(rating, 0.0) >= threshold

    def _matches_strings(self, needle: str, keys) -> bool:
        needle = needle.strip().lower()
        if not needle:
            return False

        locale = self.registry.locale
        for entry in [self.metadata] + list(self.metadata.variants):
            for key in keys:
                plain = getattr(entry, key)
                local = localized_string(plain, entry.localized, locale, key)
                if needle in local.lower():
                    return True
                if local != plain and needle in plain.lower():
                    return True
        return False
