# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Installs

An Install is the on-disk copy of one package. Updating it runs the
download pipeline:

    pick mirror -> GET archive -> hash + extract each chunk into a staging
    directory -> verify md5 -> flush extractor -> rename content into place
    -> write .revision

The install path only ever holds a complete tree: content is extracted into
`_extract_<md5>` beside it and published with directory renames.
"""

import hashlib
import logging
import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from package_catalog.callbacks import Completion, Pending, Terminal
from package_catalog.core.errors import ExtractError
from package_catalog.core.logging import log_event
from package_catalog.extract import ArchiveExtractor
from package_catalog.failover import MirrorSelector
from package_catalog.http import Request
from package_catalog.models.catalog_models import StatusCode

if TYPE_CHECKING:
    from package_catalog.package import Package
    from package_catalog.registry import Registry

logger = logging.getLogger(__name__)

REVISION_FILE = ".revision"
STAGING_PREFIX = "_extract_"
BACKUP_PREFIX = "_previous_"

# Failures worth another mirror
RETRYABLE_STATUSES = frozenset({
    StatusCode.FAIL_NOT_FOUND,
    StatusCode.FAIL_DOWNLOAD,
    StatusCode.FAIL_CHECKSUM,
})


def read_revision(path: Path) -> int:
    """Installed revision of the directory at `path` (0 when absent or unreadable)"""
    revision_file = Path(path) / REVISION_FILE
    if not revision_file.is_file():
        return 0
    try:
        return int(revision_file.read_text().strip())
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable revision file {revision_file}: {e}")
        return 0


def write_revision(path: Path, revision: int):
    (Path(path) / REVISION_FILE).write_text(f"{revision}\n")


def remove_tree(path: Path):
    """Best-effort recursive removal"""
    path = Path(path)
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")


def recover_interrupted_publish(catalog_root: Path):
    """
    Put back install directories left aside by an interrupted publish.

    A `_previous_<dir>` entry whose `<dir>` is missing is renamed back;
    one whose `<dir>` exists is a finished publish and is removed.
    """
    for entry in sorted(Path(catalog_root).iterdir()):
        if not entry.is_dir() or not entry.name.startswith(BACKUP_PREFIX):
            continue
        target = entry.with_name(entry.name[len(BACKUP_PREFIX):])
        if target.exists():
            remove_tree(entry)
            continue
        try:
            os.replace(entry, target)
            logger.warning(f"Restored {target} after an interrupted update")
        except OSError as e:
            logger.error(f"Cannot restore {target} from {entry}: {e}")


class PackageArchiveDownloader(Request):
    """One archive GET: hashes and extracts the body as it streams in"""

    def __init__(self, install: "Install", url: str, staging_dir: Path):
        super().__init__(url)
        self.install = install
        self.staging_dir = staging_dir
        self.downloaded_bytes = 0
        self.extractor: Optional[ArchiveExtractor] = None
        self.extract_error: Optional[ExtractError] = None
        self._md5 = None

    @property
    def hexdigest(self) -> Optional[str]:
        return self._md5.hexdigest() if self._md5 is not None else None

    def response_headers_complete(self):
        if self.response_code != 200:
            return
        logger.info(f"Downloading {self.install.package.qualified_id} from {self.url}")
        self._md5 = hashlib.md5(usedforsecurity=False)
        self.extractor = ArchiveExtractor(self.staging_dir)

    def got_body_data(self, data: bytes):
        if self._md5 is None:
            return

        self.downloaded_bytes += len(data)
        self._md5.update(data)
        if self.extract_error is None:
            try:
                self.extractor.feed(data)
            except ExtractError as e:
                # Keep draining the connection; the failure is reported on completion
                logger.warning(f"Extraction of {self.url} failed: {e}")
                self.extract_error = e
                self.extractor.abort()

        self.install._download_progress(self)

    def on_done(self):
        self.install._download_finished(self)

    def on_fail(self, error: Exception):
        logger.warning(f"Download of {self.url} failed: {error}")
        self.install._attempt_failed(self, StatusCode.FAIL_DOWNLOAD)


class Install:
    """
    On-disk instance of a package.

    `revision` 0 means the directory exists but no complete download has
    been published into it yet.
    """

    def __init__(self, package: "Package", path: Path):
        self.package = package
        self.path = Path(path)
        self.revision = read_revision(self.path)
        self.status = StatusCode.SUCCESS if self.revision > 0 else StatusCode.IN_PROGRESS
        self._download: Optional[PackageArchiveDownloader] = None
        self._mirrors: Optional[MirrorSelector] = None
        self._completion = Completion(
            self,
            Terminal(StatusCode.SUCCESS) if self.revision > 0 else Pending()
        )

    def __repr__(self) -> str:
        return f"Install({self.package.qualified_id!r}, path={str(self.path)!r}, revision={self.revision})"

    @property
    def registry(self) -> "Registry":
        return self.package.registry

    @property
    def staging_dir(self) -> Path:
        return self.path.parent / f"{STAGING_PREFIX}{self.package.md5 or self.package.id}"

    @property
    def backup_dir(self) -> Path:
        return self.path.parent / f"{BACKUP_PREFIX}{self.path.name}"

    # -- State --

    def has_update(self) -> bool:
        return self.package.revision > self.revision

    def is_downloading(self) -> bool:
        return self._download is not None

    def downloaded_bytes(self) -> int:
        return self._download.downloaded_bytes if self._download is not None else 0

    def downloaded_percent(self) -> int:
        if self._download is None or self._download.response_length <= 0:
            return 0
        return int(self._download.downloaded_bytes * 100 / self._download.response_length)

    @property
    def mirrors_attempted(self):
        return self._mirrors.attempted if self._mirrors is not None else []

    # -- Subscriptions --

    def done(self, callback) -> "Install":
        self._completion.add_done(callback)
        return self

    def fail(self, callback) -> "Install":
        self._completion.add_fail(callback)
        return self

    def always(self, callback) -> "Install":
        self._completion.add_always(callback)
        return self

    def progress(self, callback) -> "Install":
        self._completion.add_progress(callback)
        return self

    # -- Operations --

    def begin_update_cycle(self):
        """Reset callbacks and status for a new update; subscribers now wait for it"""
        if not self._completion.is_pending:
            self._completion.restart()
        self.status = StatusCode.IN_PROGRESS

    def start_update(self):
        """Begin downloading the package's current revision; no-op while downloading"""
        if self._download is not None:
            logger.debug(f"{self.package.qualified_id} is already downloading")
            return

        self.begin_update_cycle()

        urls = self.package.download_urls
        if not urls:
            logger.error(f"{self.package.qualified_id} has no download URLs")
            self._finish_failure(StatusCode.FAIL_DOWNLOAD)
            return

        self._mirrors = MirrorSelector(urls, rng=self.registry.rng)
        self.registry.start_install(self)
        self._start_attempt()

    def cancel_download(self):
        """
        Abort the running download and clean up synchronously.

        A first install (revision 0) is unregistered, so the package reads as
        not installed again.
        """
        if self._download is None:
            if self.registry.is_queued(self):
                logger.info(f"Removing queued update of {self.package.qualified_id}")
                self._cancelled()
            return

        download = self._download
        self._download = None
        self._mirrors = None
        self.registry.cancel_request(download)
        if download.extractor is not None:
            download.extractor.abort()
        remove_tree(download.staging_dir)
        self._cancelled()

    def uninstall(self):
        self.cancel_download()
        remove_tree(self.path)
        logger.info(f"Uninstalled {self.package.qualified_id} from {self.path}")
        self.registry.unregister_install(self)

    # -- Pipeline --

    def _start_attempt(self):
        url = self._mirrors.next()
        staging = self.staging_dir
        remove_tree(staging)
        try:
            staging.mkdir(parents=True)
        except OSError as e:
            logger.error(f"Cannot create staging directory {staging}: {e}")
            self._mirrors.record_failure(StatusCode.FAIL_FILESYSTEM.value)
            self._finish_failure(StatusCode.FAIL_FILESYSTEM)
            return

        self._download = PackageArchiveDownloader(self, url, staging)
        self.registry.make_request(self._download)

    def _download_progress(self, download: PackageArchiveDownloader):
        if download is not self._download:
            return
        total = download.response_length
        self.registry.install_progress(self, download.downloaded_bytes, total)
        self._completion.report_progress(download.downloaded_bytes, total)

    def _download_finished(self, download: PackageArchiveDownloader):
        if download is not self._download:
            return

        if download.response_code == 404:
            logger.warning(f"Archive not found: {download.url}")
            self._attempt_failed(download, StatusCode.FAIL_NOT_FOUND)
            return
        if download.response_code != 200:
            logger.warning(f"Unexpected response {download.response_code} from {download.url}")
            self._attempt_failed(download, StatusCode.FAIL_DOWNLOAD)
            return

        expected = self.package.md5.lower()
        if expected and download.hexdigest != expected:
            logger.warning(
                f"Checksum mismatch for {download.url}: expected {expected}, got {download.hexdigest}"
            )
            self._attempt_failed(download, StatusCode.FAIL_CHECKSUM)
            return
        if not expected:
            logger.warning(f"{self.package.qualified_id} declares no md5; skipping verification")

        if download.extract_error is None:
            try:
                download.extractor.close()
            except ExtractError as e:
                download.extract_error = e
                download.extractor.abort()
        if download.extract_error is not None:
            logger.error(f"Cannot extract {download.url}: {download.extract_error}")
            self._attempt_failed(download, StatusCode.FAIL_EXTRACT)
            return

        status = self._publish(download.staging_dir)
        if status != StatusCode.SUCCESS:
            self._attempt_failed(download, status)
            return

        remove_tree(download.staging_dir)
        self.revision = self.package.revision
        self._download = None
        self._mirrors = None
        self.status = StatusCode.SUCCESS

        log_event(
            logger, "install_finished",
            package_id=self.package.qualified_id,
            revision=self.revision,
            install_path=str(self.path),
            mirror=download.url,
        )
        self._completion.finish(StatusCode.SUCCESS)
        self.registry.finish_install(self)

    def _publish(self, staging: Path) -> StatusCode:
        """Move the staged content root to the install path"""
        content_root = staging / self.package.archive_path
        if not content_root.is_dir():
            logger.error(
                f"Archive for {self.package.qualified_id} has no '{self.package.archive_path}' directory"
            )
            return StatusCode.FAIL_EXTRACT

        try:
            write_revision(content_root, self.package.revision)
        except OSError as e:
            logger.error(f"Cannot write revision for {self.package.qualified_id}: {e}")
            return StatusCode.FAIL_FILESYSTEM

        backup = None
        try:
            if self.path.exists():
                backup = self.backup_dir
                remove_tree(backup)
                os.replace(self.path, backup)
            os.replace(content_root, self.path)
        except OSError as e:
            logger.error(f"Cannot move {self.package.qualified_id} into {self.path}: {e}")
            if backup is not None and backup.exists() and not self.path.exists():
                try:
                    os.replace(backup, self.path)
                except OSError as restore_error:
                    logger.critical(f"Cannot restore {self.path} from {backup}: {restore_error}")
            return StatusCode.FAIL_FILESYSTEM

        if backup is not None:
            remove_tree(backup)
        return StatusCode.SUCCESS

    def _attempt_failed(self, download: PackageArchiveDownloader, status: StatusCode):
        if download is not self._download:
            return

        if download.extractor is not None:
            download.extractor.abort()
        remove_tree(download.staging_dir)
        self._download = None
        self._mirrors.record_failure(status.value)

        if status in RETRYABLE_STATUSES and self._mirrors.remaining:
            logger.info(f"Retrying {self.package.qualified_id} from another mirror")
            self._start_attempt()
            return

        self._finish_failure(status)

    def _finish_failure(self, status: StatusCode):
        self._download = None
        self.status = status
        log_event(
            logger, "install_failed", level="WARNING",
            package_id=self.package.qualified_id,
            status=status.value,
            mirrors=self.mirrors_attempted,
        )
        self._mirrors = None
        self._completion.finish(status)
        self.registry.failed_install(self, status)

    def _cancelled(self):
        self.status = StatusCode.USER_CANCELLED
        log_event(logger, "install_cancelled", package_id=self.package.qualified_id)
        self._completion.finish(StatusCode.USER_CANCELLED)
        self.registry.cancelled_install(self)
