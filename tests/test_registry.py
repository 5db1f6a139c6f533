# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit Tests for the Registry

Tests startup scanning, lookups, install bookkeeping, bulk refresh and
update scheduling.
"""

import pytest

from package_catalog.core.config import Config
from package_catalog.core.errors import ConflictError, NotFoundError, ValidationError
from package_catalog.http import HttpxTransport
from package_catalog.install import BACKUP_PREFIX, REVISION_FILE, STAGING_PREFIX, Install
from package_catalog.models import StatusCode
from package_catalog.props import read_properties
from package_catalog.registry import Registry

from conftest import FakeTransport, add_refreshed_catalog, catalog_xml, make_archive, md5_of, package_xml

URL_A = "http://a.example/catalog.xml"
URL_B = "http://b.example/catalog.xml"


def two_catalogs(registry, transport):
    a = add_refreshed_catalog(registry, transport, URL_A, catalog_xml(id="org.a", url=URL_A, packages=[
        package_xml("shared", name="Shared A", tags=["glider"], urls=["http://a.example/shared.tgz"]),
        package_xml("only-a", tags=["jet"]),
    ]))
    b = add_refreshed_catalog(registry, transport, URL_B, catalog_xml(id="org.b", url=URL_B, packages=[
        package_xml("shared", name="Shared B", tags=["glider"]),
    ]))
    return a, b


class TestConstruction:
    """Test suite for Registry construction"""

    def test_requires_one_concurrent_install(self, root_dir, transport):
        """Test a zero concurrency ceiling is rejected"""
        with pytest.raises(ValidationError):
            Registry(root_dir, transport, app_version="3.0.2", max_concurrent_installs=0)

    def test_from_config(self, tmp_path):
        """Test from_config wires configuration values and an httpx transport"""
        config = Config(
            root_path=str(tmp_path / "root"), app_version="3.0.2", locale="fr",
            max_age_seconds=60, max_concurrent_installs=2,
        )

        registry = Registry.from_config(config)

        assert isinstance(registry.transport, HttpxTransport)
        assert registry.path == tmp_path / "root"
        assert registry.path.is_dir()
        assert registry.locale == "fr"
        assert registry.max_age_seconds == 60
        assert registry.max_concurrent_installs == 2

    def test_independent_registries(self, tmp_path):
        """Test two registries in one process share nothing"""
        first = Registry(tmp_path / "one", FakeTransport(), app_version="3.0.2")
        second = Registry(tmp_path / "two", FakeTransport(), app_version="3.0.2")

        first.add_catalog(URL_A)

        assert len(first.catalogs()) == 1
        assert second.catalogs() == []


class TestStartupScan:
    """Test suite for loading an existing root"""

    def test_installs_loaded_with_revision(self, registry, transport, make_registry):
        """Test installed packages come back with their persisted revision"""
        archive = make_archive({"Glider/readme.txt": b"hello"})
        catalog = add_refreshed_catalog(registry, transport, URL_A, catalog_xml(id="org.a", url=URL_A, packages=[
            package_xml("glider", dir="Glider", revision=3, md5=md5_of(archive), urls=["http://a/g.tgz"]),
        ]))
        catalog.get_package_by_id("glider").install()
        transport.respond_next(archive)

        reloaded = make_registry()
        package = reloaded.get_package_by_id("org.a.glider")
        install = package.existing_install()

        assert install is not None
        assert install.revision == 3
        assert install.status == StatusCode.SUCCESS
        assert not install.has_update()
        assert reloaded.install_at_path(install.path) is install

    def test_scan_cleans_up(self, registry, transport, make_registry):
        """Test stale staging is removed and interrupted publishes are restored"""
        catalog = add_refreshed_catalog(registry, transport, URL_A, catalog_xml(id="org.a", url=URL_A, packages=[
            package_xml("glider", dir="Glider", revision=3),
        ]))
        root = catalog.install_root
        (root / f"{STAGING_PREFIX}deadbeef" / "Glider").mkdir(parents=True)
        backup = root / f"{BACKUP_PREFIX}Glider"
        backup.mkdir()
        (backup / REVISION_FILE).write_text("2\n")
        (root / "Unknown").mkdir()

        reloaded = make_registry()

        assert not (root / f"{STAGING_PREFIX}deadbeef").exists()
        assert not backup.exists()
        install = reloaded.get_package_by_id("org.a.glider").existing_install()
        assert install.path == root / "Glider"
        assert install.revision == 2
        assert install.has_update()
        assert len(reloaded.installs()) == 1

    def test_directory_without_catalog_ignored(self, root_dir, make_registry):
        """Test stray directories in the root are skipped"""
        (root_dir / "stray").mkdir()
        (root_dir / "broken").mkdir()
        (root_dir / "broken" / "catalog.xml").write_text("<PropertyList><id>")

        assert make_registry().catalogs() == []


class TestLookups:
    """Test suite for package and catalog lookups"""

    def test_qualified_and_naked_ids(self, registry, transport):
        """Test qualified ids pick their catalog and naked ids the first catalog"""
        a, b = two_catalogs(registry, transport)

        assert registry.get_package_by_id("org.b.shared") is b.get_package_by_id("shared")
        assert registry.get_package_by_id("org.a.shared") is a.get_package_by_id("shared")
        assert registry.get_package_by_id("shared") is a.get_package_by_id("shared")
        assert registry.get_package_by_id("nope") is None

    def test_require_package(self, registry, transport):
        """Test require_package raises NotFoundError for unknown ids"""
        two_catalogs(registry, transport)

        with pytest.raises(NotFoundError, match="Package not found: org.a.nope"):
            registry.require_package("org.a.nope")
        assert registry.require_package("only-a").id == "only-a"

    def test_add_known_url(self, registry, transport):
        """Test adding a registered URL returns the existing catalog"""
        a, _ = two_catalogs(registry, transport)
        requests_before = len(transport.requests)

        assert registry.add_catalog(URL_A) is a
        assert len(transport.requests) == requests_before

    def test_matching_skips_disabled(self, registry, transport):
        """Test registry queries only cover enabled catalogs"""
        a, b = two_catalogs(registry, transport)
        glider_filter = read_properties(b"<PropertyList><tag>glider</tag></PropertyList>")

        assert registry.packages_matching(glider_filter) == [
            a.get_package_by_id("shared"), b.get_package_by_id("shared"),
        ]

        b.set_user_enabled(False)
        assert registry.packages_matching(glider_filter) == [a.get_package_by_id("shared")]
        assert registry.enabled_catalogs() == [a]


class TestInstallBookkeeping:
    """Test suite for install registration"""

    def test_one_install_per_path(self, registry, transport):
        """Test a second Install for the same directory is a conflict"""
        a, b = two_catalogs(registry, transport)
        a.get_package_by_id("shared").mark_for_install()
        intruder = Install(a.get_package_by_id("only-a"), a.install_root / "shared")

        with pytest.raises(ConflictError):
            registry.register_install(intruder)

    def test_installs_for_catalog(self, registry, transport):
        """Test installs are grouped by owning catalog"""
        a, b = two_catalogs(registry, transport)
        install = a.get_package_by_id("shared").mark_for_install()

        assert registry.installs_for_catalog(a) == [install]
        assert registry.installs_for_catalog(b) == []
        assert registry.install_for_package(a.get_package_by_id("shared")) is install


class TestBulkOperations:
    """Test suite for refresh and update scheduling"""

    def test_refresh_only_stale(self, registry, transport):
        """Test refresh() skips fresh catalogs unless forced"""
        a, b = two_catalogs(registry, transport)
        a.retrieved_time = 0
        requests_before = len(transport.requests)

        registry.refresh()
        assert [r.url for r in transport.requests[requests_before:]] == [URL_A]

        registry.refresh(force=True)
        assert [r.url for r in transport.pending] == [URL_A, URL_B]

    def test_refresh_skips_disabled(self, registry, transport):
        """Test disabled catalogs are never refreshed"""
        a, b = two_catalogs(registry, transport)
        b.set_user_enabled(False)

        registry.refresh(force=True)

        assert [r.url for r in transport.pending] == [URL_A]

    def test_schedule_all_updates(self, registry, transport):
        """Test schedule_all_updates queues installs with newer revisions"""
        a, b = two_catalogs(registry, transport)
        install = a.get_package_by_id("shared").mark_for_install()

        assert registry.packages_needing_update() == [a.get_package_by_id("shared")]
        assert registry.schedule_all_updates() == [install]
        assert registry.active_installs() == [install]
        assert transport.pending[-1].url == "http://a.example/shared.tgz"

    def test_remove_delegate(self, registry, transport):
        """Test removed delegates are no longer notified"""
        calls = []

        class Recorder:
            def catalog_refreshed(self, catalog, status):
                calls.append(status)

            def refresh_complete(self):
                pass

        recorder = Recorder()
        registry.add_delegate(recorder)
        add_refreshed_catalog(registry, transport, URL_A, catalog_xml(id="org.a"))
        registry.remove_delegate(recorder)
        add_refreshed_catalog(registry, transport, URL_B, catalog_xml(id="org.b"))

        assert calls == [StatusCode.REFRESHED]
