# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Catalogs

A Catalog is one remote package source rooted at a metadata document URL.
It downloads and version-checks the document, owns the Packages it
declares, caches the document on disk, and follows alternate-version
entries when the running application is not supported.

Local layout of a catalog directory:

    <root>/<catalog id>/
        catalog.xml       last accepted document, byte for byte
        .timestamp        integer time of the last successful fetch
        _disabled_        present while the user has disabled the catalog
        <package dir>/    one directory per Install
"""

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from package_catalog import version
from package_catalog.core.errors import PropertyParseError
from package_catalog.core.logging import log_event
from package_catalog.http import Request
from package_catalog.install import remove_tree
from package_catalog.models.catalog_models import (
    CatalogMetadata,
    StatusCode,
    VersionAlternate,
    localized_string,
)
from package_catalog.package import Package, validate_metadata
from package_catalog.props import PropertyNode, read_properties

if TYPE_CHECKING:
    from package_catalog.registry import Registry

logger = logging.getLogger(__name__)

CATALOG_FILE = "catalog.xml"
TIMESTAMP_FILE = ".timestamp"
DISABLED_FILE = "_disabled_"

# Same-id alternates followed in one refresh before giving up
MAX_REDIRECTS = 4

# Failure states that make a catalog unusable until the next good refresh
INERT_STATUSES = frozenset({
    StatusCode.FAIL_NOT_FOUND,
    StatusCode.FAIL_EXTRACT,
    StatusCode.FAIL_CHECKSUM,
    StatusCode.FAIL_VALIDATION,
    StatusCode.FAIL_VERSION,
    StatusCode.FAIL_FILESYSTEM,
    StatusCode.FAIL_UNKNOWN,
})


class CatalogRefreshRequest(Request):
    """GET of a catalog document, buffered in memory"""

    def __init__(self, catalog: "Catalog", url: str):
        super().__init__(url)
        self.catalog = catalog
        self._buffer = bytearray()

    def got_body_data(self, data: bytes):
        self._buffer += data

    def on_done(self):
        self.catalog._refresh_finished(self, bytes(self._buffer))

    def on_fail(self, error: Exception):
        logger.warning(f"Catalog download from {self.url} failed: {error}")
        self.catalog._refresh_finished(self, None)


class Catalog:
    """One package source; owns its Packages"""

    def __init__(self, registry: "Registry", url: str = ""):
        self.registry = registry
        self.url = url
        self.status = StatusCode.IN_PROGRESS
        self.install_root: Optional[Path] = None
        self.retrieved_time = 0
        self.metadata = CatalogMetadata()
        self.properties: Optional[PropertyNode] = None

        self._packages: List[Package] = []
        self._variants: Dict[str, Package] = {}
        self._refresh_request: Optional[CatalogRefreshRequest] = None
        self._user_disabled = False
        self._status_before_disable = StatusCode.SUCCESS
        self._migrate_from: Optional["Catalog"] = None
        self._redirects = 0

    def __repr__(self) -> str:
        return f"Catalog({self.id or self.url!r}, status={self.status.value})"

    # -- Construction --

    @classmethod
    def create_from_url(cls, registry: "Registry", url: str) -> "Catalog":
        """New, empty catalog registered with `registry` and refreshing immediately"""
        return registry.add_catalog(url)

    @classmethod
    def create_from_path(cls, registry: "Registry", path: Path) -> Optional["Catalog"]:
        """
        Load a catalog from its local directory without touching the network.

        Returns:
            The catalog, or None if the directory holds no readable catalog.xml
        """
        path = Path(path)
        document = path / CATALOG_FILE
        if not document.is_file():
            return None

        try:
            data = document.read_bytes()
            props = read_properties(data)
        except (OSError, PropertyParseError) as e:
            logger.warning(f"Ignoring catalog at {path}: {e}")
            return None

        catalog = cls(registry)
        catalog.install_root = path
        catalog.retrieved_time = catalog._read_timestamp()
        catalog._user_disabled = (path / DISABLED_FILE).exists()

        status = catalog._process_document(data, props, from_network=False)
        if status == StatusCode.FAIL_VALIDATION and not catalog.metadata.id:
            logger.warning(f"Ignoring invalid catalog at {path}")
            return None

        catalog.url = catalog.metadata.url
        if catalog._user_disabled:
            catalog._status_before_disable = status
            catalog.status = StatusCode.USER_DISABLED
        else:
            catalog.status = status
        logger.info(f"Loaded catalog {catalog.id} from {path}: {catalog.status.value}")
        return catalog

    # -- Properties --

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def description(self) -> str:
        return localized_string(
            self.metadata.description, self.metadata.localized, self.registry.locale, "description"
        )

    @property
    def is_user_disabled(self) -> bool:
        return self._user_disabled

    @property
    def max_age_seconds(self) -> int:
        if self.metadata.max_age_sec is not None:
            return self.metadata.max_age_sec
        return self.registry.max_age_seconds

    def age_in_seconds(self) -> int:
        return max(0, int(time.time() - self.retrieved_time))

    def needs_refresh(self) -> bool:
        if self._refresh_request is not None or self._user_disabled:
            return False
        if self.status in (StatusCode.FAIL_VERSION, StatusCode.FAIL_DOWNLOAD):
            return True
        return self.age_in_seconds() > self.max_age_seconds

    def is_enabled(self) -> bool:
        if self._user_disabled:
            return False
        return self.status not in INERT_STATUSES

    def set_user_enabled(self, enabled: bool):
        """Enable or disable the catalog, persisting the choice as a marker file"""
        if enabled != self._user_disabled:
            return

        marker = self.install_root / DISABLED_FILE if self.install_root is not None else None
        if enabled:
            self._user_disabled = False
            self.status = self._status_before_disable
            if marker is not None:
                marker.unlink(missing_ok=True)
            logger.info(f"Catalog {self.id} enabled")
        else:
            self._user_disabled = True
            self._status_before_disable = self.status
            self.status = StatusCode.USER_DISABLED
            if marker is not None:
                marker.parent.mkdir(parents=True, exist_ok=True)
                marker.touch()
            logger.info(f"Catalog {self.id} disabled")

    # -- Packages --

    def packages(self) -> List[Package]:
        return list(self._packages)

    def get_package_by_id(self, package_id: str) -> Optional[Package]:
        """Look up by package or variant id; `<catalog id>.<id>` is also accepted"""
        found = self._variants.get(package_id)
        if found is None and self.id and package_id.startswith(f"{self.id}."):
            found = self._variants.get(package_id[len(self.id) + 1:])
        return found

    def get_package_by_dir(self, dir_name: str) -> Optional[Package]:
        for package in self._packages:
            if package.dir_name == dir_name:
                return package
        return None

    def packages_matching(self, filter_node: PropertyNode) -> List[Package]:
        return [p for p in self._packages if p.matches(filter_node)]

    def installed_packages(self) -> List[Package]:
        return [p for p in self._packages if p.is_installed()]

    def packages_needing_update(self) -> List[Package]:
        result = []
        for package in self._packages:
            install = package.existing_install()
            if install is not None and install.has_update():
                result.append(package)
        return result

    # -- Refresh --

    def refresh(self):
        """Fetch the catalog document; no-op while a fetch is in flight"""
        if self._refresh_request is not None:
            logger.debug(f"Refresh of {self.url} already in progress")
            return
        if self._user_disabled:
            logger.info(f"Not refreshing disabled catalog {self.id}")
            return
        if not self.url:
            logger.error(f"Catalog {self.id} has no URL to refresh from")
            return

        logger.info(f"Refreshing catalog from {self.url}")
        self._refresh_request = CatalogRefreshRequest(self, self.url)
        self._set_status(StatusCode.IN_PROGRESS)
        self.registry.catalog_refresh_started(self)
        self.registry.make_request(self._refresh_request)

    def set_migrate_from(self, old: "Catalog"):
        """Reinstall `old`'s installed packages here after the next good refresh"""
        self._migrate_from = old

    def _refresh_finished(self, request: CatalogRefreshRequest, data: Optional[bytes]):
        if request is not self._refresh_request:
            return
        self._refresh_request = None

        if data is None:
            status = StatusCode.FAIL_DOWNLOAD
        elif request.response_code == 404:
            logger.warning(f"Catalog not found at {request.url}")
            status = StatusCode.FAIL_NOT_FOUND
        elif request.response_code != 200:
            logger.warning(f"Unexpected response {request.response_code} for catalog {request.url}")
            status = StatusCode.FAIL_DOWNLOAD
        else:
            try:
                props = read_properties(data)
            except PropertyParseError as e:
                logger.error(f"Cannot parse catalog from {request.url}: {e}")
                status = StatusCode.FAIL_EXTRACT
            else:
                status = self._process_document(data, props, from_network=True)

        if status is None:
            # Same catalog, moved: fetch again from the new URL
            self.refresh()
            return

        self._refresh_complete(status)

    def _refresh_complete(self, status: StatusCode):
        self._set_status(status)

        log_event(
            logger, "catalog_refreshed",
            level="INFO" if not status.is_failure else "WARNING",
            catalog_id=self.id,
            catalog_url=self.url,
            status=status.value,
        )

        if status == StatusCode.REFRESHED:
            self._redirects = 0
            if self._migrate_from is not None:
                old, self._migrate_from = self._migrate_from, None
                self.registry.migrate_installs(old, self)

        self.registry.catalog_refresh_complete(self, status)

    def _process_document(self, data: bytes, props: PropertyNode, from_network: bool) -> Optional[StatusCode]:
        """
        Check and accept a parsed document.

        Returns:
            Final status, or None when the catalog moved to a new URL and
            must be fetched again
        """
        try:
            metadata = CatalogMetadata.from_properties(props)
        except ValueError as e:
            logger.error(f"Invalid catalog document from {self.url or self.install_root}: {e}")
            return StatusCode.FAIL_VALIDATION

        if not metadata.id:
            logger.error(f"Catalog document from {self.url or self.install_root} has no id")
            return StatusCode.FAIL_VALIDATION
        if self.metadata.id and metadata.id != self.metadata.id:
            logger.error(f"Catalog id changed from {self.metadata.id} to {metadata.id}; rejecting")
            return StatusCode.FAIL_VALIDATION

        app_version = self.registry.app_version
        compatible = version.matches_any(app_version, metadata.versions)
        if not compatible and from_network:
            alternate = self._find_alternate(metadata, app_version)
            if alternate is None:
                logger.warning(
                    f"Catalog {metadata.id} does not support version {app_version} "
                    f"(supports {metadata.versions})"
                )
                return StatusCode.FAIL_VERSION
            return self._follow_alternate(metadata, alternate)

        if not self._validate_packages(metadata):
            return StatusCode.FAIL_VALIDATION

        try:
            self._apply_metadata(metadata, props)
            if from_network:
                self._persist(data)
        except OSError as e:
            logger.error(f"Cannot write catalog {metadata.id} to {self.install_root}: {e}")
            return StatusCode.FAIL_FILESYSTEM

        if not compatible:
            logger.warning(f"Cached catalog {metadata.id} does not support version {app_version}")
            return StatusCode.FAIL_VERSION
        return StatusCode.REFRESHED if from_network else StatusCode.SUCCESS

    def _find_alternate(self, metadata: CatalogMetadata, app_version: str) -> Optional[VersionAlternate]:
        for alternate in metadata.alternates:
            if alternate.url and version.matches_any(app_version, alternate.versions):
                return alternate
        return None

    def _follow_alternate(self, metadata: CatalogMetadata, alternate: VersionAlternate) -> Optional[StatusCode]:
        if alternate.id is None or alternate.id == metadata.id:
            if alternate.url == self.url or self._redirects >= MAX_REDIRECTS:
                logger.error(f"Catalog {metadata.id} alternate {alternate.url} does not resolve; giving up")
                return StatusCode.FAIL_VERSION

            logger.info(f"Catalog {metadata.id} moved to {alternate.url} for version {self.registry.app_version}")
            self._redirects += 1
            old_url, self.url = self.url, alternate.url
            self.registry.catalog_url_changed(self, old_url)
            return None

        logger.info(f"Catalog {metadata.id} is superseded by {alternate.id} at {alternate.url}")
        self.registry.add_catalog(alternate.url, migrate_from=self)
        return StatusCode.FAIL_VERSION

    def _validate_packages(self, metadata: CatalogMetadata) -> bool:
        seen = set()
        for package in metadata.packages:
            missing = validate_metadata(package)
            if missing:
                logger.error(
                    f"Catalog {metadata.id}: package {package.id or '<no id>'} "
                    f"is missing or has invalid {', '.join(missing)}"
                )
                return False

            ids = [package.id] + [v.id for v in package.variants]
            for package_id in ids:
                if not package_id:
                    logger.error(f"Catalog {metadata.id}: package {package.id} has a variant without id")
                    return False
                if package_id in seen:
                    logger.error(f"Catalog {metadata.id}: duplicate package id {package_id}")
                    return False
                seen.add(package_id)
        return True

    def _apply_metadata(self, metadata: CatalogMetadata, props: PropertyNode):
        previous = {p.id: p for p in self._packages}
        packages = []
        for package_metadata in metadata.packages:
            package = previous.pop(package_metadata.id, None)
            if package is None:
                package = Package(package_metadata, self)
            else:
                package.update_metadata(package_metadata)
            packages.append(package)

        for orphan in previous.values():
            install = orphan.existing_install()
            if install is not None:
                logger.warning(
                    f"Package {orphan.qualified_id} was removed from the catalog; "
                    f"keeping installed copy at {install.path}"
                )
            else:
                logger.info(f"Package {orphan.qualified_id} was removed from the catalog")

        self.metadata = metadata
        self.properties = props
        self._packages = packages
        self._variants = {
            variant_id: package
            for package in packages
            for variant_id in package.variants
        }

        if self.install_root is None:
            self.install_root = self.registry.path / metadata.id
        self.install_root.mkdir(parents=True, exist_ok=True)

    def _persist(self, data: bytes):
        (self.install_root / CATALOG_FILE).write_bytes(data)
        self.retrieved_time = int(time.time())
        (self.install_root / TIMESTAMP_FILE).write_text(f"{self.retrieved_time}\n")

    def _read_timestamp(self) -> int:
        stamp = self.install_root / TIMESTAMP_FILE
        if not stamp.is_file():
            return 0
        try:
            return int(stamp.read_text().strip())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable timestamp {stamp}: {e}")
            return 0

    def _set_status(self, status: StatusCode):
        if self._user_disabled:
            self._status_before_disable = status
        else:
            self.status = status

    # -- Removal --

    def uninstall(self):
        """Remove every Install of this catalog, its directory and its registration"""
        if self._refresh_request is not None:
            self.registry.cancel_request(self._refresh_request)
            self._refresh_request = None

        for install in self.registry.installs_for_catalog(self):
            install.uninstall()

        if self.install_root is not None:
            remove_tree(self.install_root)
        logger.info(f"Uninstalled catalog {self.id}")
        self.registry.remove_catalog(self)
