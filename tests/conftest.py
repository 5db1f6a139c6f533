# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Fixtures and Utilities

Provides a deterministic in-memory transport, registry fixtures, and
builders for catalog documents and package archives.
"""

import hashlib
import io
import os
import sys
import tarfile
from pathlib import Path
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from package_catalog.registry import Registry


# ============================================================================
# Fake Transport
# ============================================================================

class FakeTransport:
    """
    Records requests and lets tests deliver responses synchronously.

    Stands in for the host event loop: nothing happens to a request until
    the test calls respond() or fail().
    """

    def __init__(self):
        self.requests = []
        self.cancelled = []
        self._finished = set()

    def make_request(self, request):
        self.requests.append(request)

    def cancel_request(self, request):
        request.cancelled = True
        self.cancelled.append(request)

    @property
    def urls(self) -> List[str]:
        return [r.url for r in self.requests]

    @property
    def pending(self):
        return [
            r for r in self.requests
            if id(r) not in self._finished and not r.cancelled
        ]

    def next_pending(self):
        pending = self.pending
        assert pending, "no pending request"
        return pending[0]

    def respond(self, request, body: bytes = b"", code: int = 200, chunk_size: Optional[int] = None,
                length: Optional[int] = None):
        """Deliver headers, body chunks and completion for one request"""
        self._finished.add(id(request))
        request.set_response(code, len(body) if length is None else length)
        request.response_headers_complete()

        step = chunk_size or max(len(body), 1)
        for start in range(0, len(body), step):
            if request.cancelled:
                return
            request.got_body_data(body[start:start + step])
        if not request.cancelled:
            request.on_done()

    def fail(self, request, error: Optional[Exception] = None):
        self._finished.add(id(request))
        request.on_fail(error or ConnectionError("connection reset by peer"))

    def respond_next(self, body: bytes = b"", **kwargs):
        request = self.next_pending()
        self.respond(request, body, **kwargs)
        return request

    def fail_next(self, error: Optional[Exception] = None):
        request = self.next_pending()
        self.fail(request, error)
        return request


class FirstChoice:
    """rng stand-in: always picks the first candidate"""

    def choice(self, seq):
        return seq[0]


# ============================================================================
# Builders
# ============================================================================

def md5_of(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def make_archive(files: Dict[str, bytes], compression: str = "gz") -> bytes:
    """Build a tar archive in memory; compression is gz, bz2, xz or '' for none"""
    buffer = io.BytesIO()
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(fileobj=buffer, mode=mode) as archive:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _element(name: str, value) -> str:
    return f"<{name}>{escape(str(value))}</{name}>"


def package_xml(
    id: str,
    name: Optional[str] = None,
    dir: Optional[str] = None,
    revision: int = 1,
    md5: str = "",
    urls: List[str] = (),
    tags: List[str] = (),
    depends: List[tuple] = (),
    variants: List[tuple] = (),
    description: str = "",
    ratings: Optional[Dict[str, float]] = None,
    archive_path: Optional[str] = None,
    localized: Optional[Dict[str, Dict[str, str]]] = None,
) -> str:
    parts = [_element("id", id)]
    if name is not None or id:
        parts.append(_element("name", id if name is None else name))
    if dir is not None or id:
        parts.append(_element("dir", id if dir is None else dir))
    parts.append(_element("revision", revision))
    if md5:
        parts.append(_element("md5", md5))
    if description:
        parts.append(_element("description", description))
    if archive_path:
        parts.append(_element("archive-path", archive_path))
    parts.extend(_element("url", u) for u in urls)
    parts.extend(_element("tag", t) for t in tags)
    if ratings:
        parts.append("<rating>" + "".join(_element(k, v) for k, v in ratings.items()) + "</rating>")
    for dep_id, dep_revision in depends:
        parts.append(f"<depends>{_element('id', dep_id)}{_element('revision', dep_revision)}</depends>")
    for variant_id, variant_name in variants:
        parts.append(f"<variant>{_element('id', variant_id)}{_element('name', variant_name)}</variant>")
    for locale, strings in (localized or {}).items():
        parts.append(f"<{locale}>" + "".join(_element(k, v) for k, v in strings.items()) + f"</{locale}>")
    return "<package>" + "".join(parts) + "</package>"


def catalog_xml(
    id: str = "org.example",
    url: str = "",
    versions: List[str] = ("3.0.*",),
    packages: List[str] = (),
    alternates: List[dict] = (),
    max_age: Optional[int] = None,
    description: str = "",
    extra: str = "",
) -> bytes:
    parts = [_element("id", id)]
    if url:
        parts.append(_element("url", url))
    if description:
        parts.append(_element("description", description))
    if max_age is not None:
        parts.append(_element("max-age-sec", max_age))
    parts.extend(_element("version", v) for v in versions)
    for alternate in alternates:
        inner = ""
        if alternate.get("id"):
            inner += _element("id", alternate["id"])
        inner += _element("url", alternate["url"])
        inner += "".join(_element("version", v) for v in alternate.get("versions", ()))
        parts.append(f"<alternate-version>{inner}</alternate-version>")
    parts.extend(packages)
    parts.append(extra)
    return ("<?xml version=\"1.0\"?>\n<PropertyList>" + "".join(parts) + "</PropertyList>").encode()


def add_refreshed_catalog(registry: Registry, transport: FakeTransport, url: str, document: bytes):
    """Add a catalog and answer its first refresh"""
    catalog = registry.add_catalog(url)
    transport.respond_next(document)
    return catalog


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def transport():
    """In-memory transport"""
    return FakeTransport()


@pytest.fixture
def root_dir(tmp_path) -> Path:
    """Empty package root"""
    root = tmp_path / "packages"
    root.mkdir()
    return root


@pytest.fixture
def make_registry(root_dir, transport):
    """Factory for registries over the shared root and transport"""
    def factory(**kwargs) -> Registry:
        kwargs.setdefault("app_version", "3.0.2")
        kwargs.setdefault("rng", FirstChoice())
        return Registry(root_dir, transport, **kwargs)
    return factory


@pytest.fixture
def registry(make_registry) -> Registry:
    """Registry for application version 3.0.2 with deterministic mirror choice"""
    return make_registry()
