# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Registry

Owns every Catalog and Install under one root directory, runs all HTTP
requests through its transport, and serializes install downloads through a
bounded queue.

Each Registry is an independent value: catalogs, packages and installs hold
a reference to the registry that created them rather than reaching for
process-global state.
"""

import logging
import os
import random
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional, Set

from package_catalog.catalog import Catalog
from package_catalog.core.config import Config, DEFAULT_MAX_AGE_SECONDS
from package_catalog.core.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from package_catalog.http import HttpxTransport, Request, Transport
from package_catalog.install import (
    BACKUP_PREFIX,
    STAGING_PREFIX,
    Install,
    recover_interrupted_publish,
    remove_tree,
)
from package_catalog.models.catalog_models import StatusCode
from package_catalog.package import Package
from package_catalog.props import PropertyNode
from package_catalog.resolver import DependencyResolver

logger = logging.getLogger(__name__)


class Delegate:
    """Observer of registry activity; override the notifications you need"""

    def catalog_refreshed(self, catalog: Catalog, status: StatusCode):
        pass

    def refresh_complete(self):
        pass

    def start_install(self, install: Install):
        pass

    def install_progress(self, install: Install, bytes_done: int, total: int):
        pass

    def finish_install(self, install: Install):
        pass

    def failed_install(self, install: Install, status: StatusCode):
        pass


def _path_key(path: Path) -> Path:
    return Path(os.path.abspath(path))


class Registry:
    """Root of the package catalog: catalogs, installs and the update queue"""

    def __init__(
        self,
        path: Path,
        transport: Transport,
        app_version: str,
        locale: str = "",
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        max_concurrent_installs: int = 1,
        rng: Optional[random.Random] = None,
        delegates: Iterable[Delegate] = ()
    ):
        """
        Initialize registry and load catalogs already present under `path`.

        Args:
            path: Root directory holding one directory per catalog
            transport: Runs the registry's HTTP requests
            app_version: Running application version for catalog compatibility
            locale: Preferred locale for names and descriptions
            max_age_seconds: Refresh interval for catalogs that declare none
            max_concurrent_installs: Downloads allowed to run at once
            rng: Random source for mirror selection
            delegates: Initial observers

        Raises:
            ValidationError: If max_concurrent_installs is below 1
        """
        if max_concurrent_installs < 1:
            raise ValidationError(
                "At least one concurrent install is required",
                field="max_concurrent_installs"
            )

        self.path = Path(path)
        self.transport = transport
        self.app_version = app_version
        self.locale = locale
        self.max_age_seconds = max_age_seconds
        self.max_concurrent_installs = max_concurrent_installs
        self.rng = rng or random.Random()
        self.resolver = DependencyResolver(self)

        self._catalogs: List[Catalog] = []
        self._catalogs_by_id: Dict[str, Catalog] = {}
        self._catalogs_by_url: Dict[str, Catalog] = {}
        self._installs_by_path: Dict[Path, Install] = {}
        self._installs_by_package: Dict[Package, Install] = {}
        self._update_queue: Deque[Install] = deque()
        self._active_installs: List[Install] = []
        self._refreshing: Set[Catalog] = set()
        self._delegates: List[Delegate] = list(delegates)

        self.path.mkdir(parents=True, exist_ok=True)
        self._load_catalogs()

    @classmethod
    def from_config(cls, config: Config, transport: Optional[Transport] = None, **kwargs) -> "Registry":
        """Build a registry from configuration, with an httpx transport unless one is given"""
        if transport is None:
            transport = HttpxTransport(timeout=config.http_timeout, user_agent=config.user_agent)
        return cls(
            config.root,
            transport,
            app_version=config.app_version,
            locale=config.locale,
            max_age_seconds=config.max_age_seconds,
            max_concurrent_installs=config.max_concurrent_installs,
            **kwargs
        )

    # -- Delegates --

    def add_delegate(self, delegate: Delegate):
        self._delegates.append(delegate)

    def remove_delegate(self, delegate: Delegate):
        if delegate in self._delegates:
            self._delegates.remove(delegate)

    def _notify(self, method: str, *args):
        for delegate in list(self._delegates):
            getattr(delegate, method)(*args)

    # -- Transport --

    def make_request(self, request: Request):
        self.transport.make_request(request)

    def cancel_request(self, request: Request):
        self.transport.cancel_request(request)

    # -- Startup --

    def _load_catalogs(self):
        for entry in sorted(self.path.iterdir()):
            if not entry.is_dir():
                continue
            catalog = Catalog.create_from_path(self, entry)
            if catalog is None:
                continue
            self._register_catalog(catalog)
            self._load_installs(catalog)

    def _load_installs(self, catalog: Catalog):
        root = catalog.install_root
        recover_interrupted_publish(root)

        for entry in sorted(root.iterdir()):
            if not entry.is_dir():
                continue
            if entry.name.startswith(STAGING_PREFIX):
                logger.info(f"Removing stale staging directory {entry}")
                remove_tree(entry)
                continue
            if entry.name.startswith(BACKUP_PREFIX):
                continue

            package = catalog.get_package_by_dir(entry.name)
            if package is None:
                logger.warning(f"No package of catalog {catalog.id} uses directory {entry.name}")
                continue
            self.register_install(Install(package, entry))

    # -- Catalogs --

    def catalogs(self) -> List[Catalog]:
        return list(self._catalogs)

    def enabled_catalogs(self) -> List[Catalog]:
        return [c for c in self._catalogs if c.is_enabled()]

    def get_catalog_by_id(self, catalog_id: str) -> Optional[Catalog]:
        return self._catalogs_by_id.get(catalog_id)

    def get_catalog_by_url(self, url: str) -> Optional[Catalog]:
        return self._catalogs_by_url.get(url)

    def add_catalog(self, url: str, migrate_from: Optional[Catalog] = None) -> Catalog:
        """
        Add the catalog at `url` and start its first refresh.

        Adding a URL that is already registered returns the existing catalog.
        """
        existing = self._catalogs_by_url.get(url)
        if existing is not None:
            logger.info(f"Catalog at {url} is already registered")
            if migrate_from is not None:
                existing.set_migrate_from(migrate_from)
                existing.refresh()
            return existing

        catalog = Catalog(self, url)
        if migrate_from is not None:
            catalog.set_migrate_from(migrate_from)
        self._register_catalog(catalog)
        catalog.refresh()
        return catalog

    def remove_catalog(self, catalog: Catalog):
        if catalog in self._catalogs:
            self._catalogs.remove(catalog)
        if self._catalogs_by_id.get(catalog.id) is catalog:
            del self._catalogs_by_id[catalog.id]
        for url in [u for u, c in self._catalogs_by_url.items() if c is catalog]:
            del self._catalogs_by_url[url]
        self._refreshing.discard(catalog)

    def _register_catalog(self, catalog: Catalog):
        self._catalogs.append(catalog)
        if catalog.url:
            self._catalogs_by_url[catalog.url] = catalog
        self._index_catalog_id(catalog)

    def _index_catalog_id(self, catalog: Catalog):
        if not catalog.id:
            return
        existing = self._catalogs_by_id.get(catalog.id)
        if existing is None:
            self._catalogs_by_id[catalog.id] = catalog
        elif existing is not catalog:
            logger.warning(f"Two catalogs share id {catalog.id}; keeping {existing.url}")

    def catalog_url_changed(self, catalog: Catalog, old_url: str):
        if self._catalogs_by_url.get(old_url) is catalog:
            del self._catalogs_by_url[old_url]
        self._catalogs_by_url[catalog.url] = catalog

    def catalog_refresh_started(self, catalog: Catalog):
        self._refreshing.add(catalog)

    def catalog_refresh_complete(self, catalog: Catalog, status: StatusCode):
        self._index_catalog_id(catalog)
        self._notify("catalog_refreshed", catalog, status)

        self._refreshing.discard(catalog)
        if not self._refreshing:
            self._notify("refresh_complete")

    def refresh(self, force: bool = False):
        """Refresh every catalog that is stale, or all of them when forced"""
        for catalog in self.catalogs():
            if catalog.is_user_disabled:
                continue
            if force or catalog.needs_refresh():
                catalog.refresh()

    def migrate_installs(self, old: Catalog, new: Catalog):
        """Mark for install in `new` every package installed from `old`"""
        for install in self.installs_for_catalog(old):
            package = new.get_package_by_id(install.package.id)
            if package is None:
                logger.warning(f"{install.package.qualified_id} is not available from catalog {new.id}")
                continue
            if package.is_installed():
                continue
            package.mark_for_install()
            logger.info(f"Migrating {install.package.qualified_id} to {package.qualified_id}")

    # -- Packages --

    def get_package_by_id(self, package_id: str) -> Optional[Package]:
        """
        Find a package by qualified (`<catalog id>.<package id>`) or naked id.

        A naked id is searched in every catalog; the first match wins.
        """
        if "." in package_id:
            catalog_id, _, naked_id = package_id.rpartition(".")
            catalog = self._catalogs_by_id.get(catalog_id)
            if catalog is not None:
                found = catalog.get_package_by_id(naked_id)
                if found is not None:
                    return found

        for catalog in self._catalogs:
            found = catalog.get_package_by_id(package_id)
            if found is not None:
                return found
        return None

    def require_package(self, package_id: str) -> Package:
        """
        Like get_package_by_id, but a missing package is an error.

        Raises:
            NotFoundError: If no catalog declares the package
        """
        found = self.get_package_by_id(package_id)
        if found is None:
            raise NotFoundError("Package", package_id)
        return found

    def all_packages(self) -> List[Package]:
        return [p for c in self.enabled_catalogs() for p in c.packages()]

    def packages_matching(self, filter_node: PropertyNode) -> List[Package]:
        return [p for c in self.enabled_catalogs() for p in c.packages_matching(filter_node)]

    def packages_needing_update(self) -> List[Package]:
        return [p for c in self.enabled_catalogs() for p in c.packages_needing_update()]

    # -- Installs --

    def installs(self) -> List[Install]:
        return list(self._installs_by_path.values())

    def installs_for_catalog(self, catalog: Catalog) -> List[Install]:
        return [i for i in self._installs_by_path.values() if i.package.catalog is catalog]

    def install_for_package(self, package: Package) -> Optional[Install]:
        return self._installs_by_package.get(package)

    def install_at_path(self, path: Path) -> Optional[Install]:
        return self._installs_by_path.get(_path_key(path))

    def register_install(self, install: Install):
        """
        Raises:
            ConflictError: If another Install already owns the same directory
        """
        key = _path_key(install.path)
        existing = self._installs_by_path.get(key)
        if existing is not None and existing is not install:
            raise ConflictError(
                f"{key} is already installed by {existing.package.qualified_id}",
                resource=str(key)
            )
        self._installs_by_path[key] = install
        self._installs_by_package[install.package] = install

    def unregister_install(self, install: Install):
        key = _path_key(install.path)
        if self._installs_by_path.get(key) is install:
            del self._installs_by_path[key]
        if self._installs_by_package.get(install.package) is install:
            del self._installs_by_package[install.package]
        if install in self._update_queue:
            self._update_queue.remove(install)

    # -- Update scheduling --

    def is_queued(self, install: Install) -> bool:
        return install in self._update_queue

    def active_installs(self) -> List[Install]:
        return list(self._active_installs)

    def queued_installs(self) -> List[Install]:
        return list(self._update_queue)

    def schedule_to_update(self, install: Install):
        """Queue `install` for download; starts at once while below the concurrency ceiling"""
        if install in self._update_queue or install in self._active_installs:
            return
        install.begin_update_cycle()
        self._update_queue.append(install)
        self._start_queued()

    def schedule_all_updates(self) -> List[Install]:
        """Schedule every installed package with a newer catalog revision"""
        scheduled = []
        for package in self.packages_needing_update():
            try:
                scheduled.append(package.install())
            except DependencyError as e:
                logger.error(f"Cannot update {package.qualified_id}: {e}")
        return scheduled

    def _start_queued(self):
        while self._update_queue and len(self._active_installs) < self.max_concurrent_installs:
            install = self._update_queue.popleft()
            self._active_installs.append(install)
            install.start_update()

    def _install_finished(self, install: Install):
        if install in self._active_installs:
            self._active_installs.remove(install)
        self._start_queued()

    # -- Install notifications --

    def start_install(self, install: Install):
        self._notify("start_install", install)

    def install_progress(self, install: Install, bytes_done: int, total: int):
        self._notify("install_progress", install, bytes_done, total)

    def finish_install(self, install: Install):
        self._notify("finish_install", install)
        self._install_finished(install)

    def failed_install(self, install: Install, status: StatusCode):
        logger.error(f"Install of {install.package.qualified_id} failed: {status.value}")
        self._notify("failed_install", install, status)
        if install.revision == 0 and not install.path.exists():
            self.unregister_install(install)
        self._install_finished(install)

    def cancelled_install(self, install: Install):
        if install in self._update_queue:
            self._update_queue.remove(install)
        if install.revision == 0:
            remove_tree(install.path)
            self.unregister_install(install)
        self._install_finished(install)
