# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit Tests for Streaming Archive Extraction

Tests chunked extraction of tar (plain and compressed) and zip archives,
path safety checks, and truncation / trailing data detection.
"""

import io
import tarfile
import zipfile

import pytest

from package_catalog.core.errors import ExtractError
from package_catalog.extract import ArchiveExtractor, safe_member_path

from conftest import make_archive


FILES = {
    "AcmePlane/plane-set.xml": b"<PropertyList/>",
    "AcmePlane/Models/plane.ac": b"x" * 5000,
}


def feed_in_chunks(extractor: ArchiveExtractor, data: bytes, size: int):
    for start in range(0, len(data), size):
        extractor.feed(data[start:start + size])


class TestSafeMemberPath:
    """Test suite for safe_member_path()"""

    def test_relative_path(self):
        """Test normal relative paths pass through"""
        assert str(safe_member_path("a/b/c.txt")) == "a/b/c.txt"
        assert str(safe_member_path("./a/b")) == "a/b"

    def test_root_entry(self):
        """Test the archive root entry is ignored"""
        assert safe_member_path("./") is None

    @pytest.mark.parametrize("name", ["/etc/passwd", "../escape", "a/../../b", "a\\..\\b"])
    def test_unsafe_paths(self, name):
        """Test absolute and parent-escaping paths are rejected"""
        with pytest.raises(ExtractError):
            safe_member_path(name)


class TestTarExtraction:
    """Test suite for tar archives"""

    @pytest.mark.parametrize("compression,expected_format", [
        ("gz", "gzip"),
        ("bz2", "bzip2"),
        ("xz", "xz"),
        ("", "tar"),
    ])
    def test_extract_compressed(self, tmp_path, compression, expected_format):
        """Test each supported compression extracts identically"""
        data = make_archive(FILES, compression)
        extractor = ArchiveExtractor(tmp_path)

        feed_in_chunks(extractor, data, 1000)
        extractor.close()

        assert extractor.format == expected_format
        assert (tmp_path / "AcmePlane" / "plane-set.xml").read_bytes() == b"<PropertyList/>"
        assert (tmp_path / "AcmePlane" / "Models" / "plane.ac").read_bytes() == b"x" * 5000
        assert "AcmePlane/Models/plane.ac" in extractor.members

    def test_tiny_chunks(self, tmp_path):
        """Test byte-by-byte delivery, including a split magic header"""
        data = make_archive({"a/b.txt": b"hello"}, "gz")
        extractor = ArchiveExtractor(tmp_path)

        feed_in_chunks(extractor, data, 1)
        extractor.close()

        assert (tmp_path / "a" / "b.txt").read_bytes() == b"hello"

    def test_long_member_names(self, tmp_path):
        """Test GNU and pax long names are honoured"""
        long_name = "pkg/" + "d" * 120 + "/file.txt"
        for fmt in (tarfile.GNU_FORMAT, tarfile.PAX_FORMAT):
            buffer = io.BytesIO()
            with tarfile.open(fileobj=buffer, mode="w", format=fmt) as archive:
                info = tarfile.TarInfo(long_name)
                info.size = 3
                archive.addfile(info, io.BytesIO(b"abc"))

            target = tmp_path / str(fmt)
            extractor = ArchiveExtractor(target)
            extractor.feed(buffer.getvalue())
            extractor.close()

            assert (target / long_name).read_bytes() == b"abc"

    def test_symlinks_skipped(self, tmp_path):
        """Test that symbolic link members are not created"""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as archive:
            info = tarfile.TarInfo("pkg/link")
            info.type = tarfile.SYMTYPE
            info.linkname = "/etc/passwd"
            archive.addfile(info)

        extractor = ArchiveExtractor(tmp_path)
        extractor.feed(buffer.getvalue())
        extractor.close()

        assert not (tmp_path / "pkg" / "link").exists()

    def test_hard_links_copied(self, tmp_path):
        """Test that hard link members are extracted as copies of their target"""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            info = tarfile.TarInfo("AcmePlane/plane-set.xml")
            info.size = len(b"<PropertyList/>")
            archive.addfile(info, io.BytesIO(b"<PropertyList/>"))
            link = tarfile.TarInfo("AcmePlane/livery-set.xml")
            link.type = tarfile.LNKTYPE
            link.linkname = "AcmePlane/plane-set.xml"
            archive.addfile(link)

        extractor = ArchiveExtractor(tmp_path)
        feed_in_chunks(extractor, buffer.getvalue(), 64)
        extractor.close()

        assert (tmp_path / "AcmePlane" / "livery-set.xml").read_bytes() == b"<PropertyList/>"
        assert "AcmePlane/livery-set.xml" in extractor.members

    @pytest.mark.parametrize("linkname", ["AcmePlane/missing.xml", "../outside.xml"])
    def test_bad_hard_link_rejected(self, tmp_path, linkname):
        """Test that hard links to missing or unsafe targets raise"""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as archive:
            link = tarfile.TarInfo("AcmePlane/livery-set.xml")
            link.type = tarfile.LNKTYPE
            link.linkname = linkname
            archive.addfile(link)

        extractor = ArchiveExtractor(tmp_path / "target")

        with pytest.raises(ExtractError):
            extractor.feed(buffer.getvalue())
        assert not (tmp_path / "target" / "AcmePlane" / "livery-set.xml").exists()

    def test_unsafe_member_rejected(self, tmp_path):
        """Test that a member escaping the target raises during feed"""
        data = make_archive({"../evil.txt": b"boom"}, "")
        extractor = ArchiveExtractor(tmp_path / "target")

        with pytest.raises(ExtractError):
            extractor.feed(data)
        assert not (tmp_path / "evil.txt").exists()

    def test_truncated_tar(self, tmp_path):
        """Test that a cut-off plain tar fails on close"""
        data = make_archive(FILES, "")
        extractor = ArchiveExtractor(tmp_path)

        extractor.feed(data[:1500])
        with pytest.raises(ExtractError, match="truncated"):
            extractor.close()

    def test_truncated_gzip(self, tmp_path):
        """Test that a cut-off gzip stream fails on close"""
        data = make_archive(FILES, "gz")
        extractor = ArchiveExtractor(tmp_path)

        extractor.feed(data[:len(data) // 2])
        with pytest.raises(ExtractError):
            extractor.close()

    def test_trailing_garbage(self, tmp_path):
        """Test that data after the end of the compressed stream is rejected"""
        data = make_archive(FILES, "gz") + b"garbage"
        extractor = ArchiveExtractor(tmp_path)

        with pytest.raises(ExtractError, match="Unexpected data"):
            extractor.feed(data)

    def test_missing_end_marker_accepted(self, tmp_path):
        """Test that a tar ending on a member boundary without zero blocks is accepted"""
        data = make_archive({"a.txt": b"abc"}, "")
        # header + one data block, no end-of-archive blocks
        extractor = ArchiveExtractor(tmp_path)
        extractor.feed(data[:1024])
        extractor.close()

        assert (tmp_path / "a.txt").read_bytes() == b"abc"

    def test_empty_input(self, tmp_path):
        """Test closing without data fails"""
        with pytest.raises(ExtractError, match="Empty"):
            ArchiveExtractor(tmp_path).close()


class TestZipExtraction:
    """Test suite for zip archives"""

    def test_extract_zip(self, tmp_path):
        """Test zip archives are extracted at close"""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, data in FILES.items():
                archive.writestr(name, data)

        extractor = ArchiveExtractor(tmp_path)
        feed_in_chunks(extractor, buffer.getvalue(), 100)
        assert not (tmp_path / "AcmePlane").exists()
        extractor.close()

        assert extractor.format == "zip"
        assert (tmp_path / "AcmePlane" / "Models" / "plane.ac").read_bytes() == b"x" * 5000

    def test_corrupt_zip(self, tmp_path):
        """Test a damaged zip fails on close"""
        extractor = ArchiveExtractor(tmp_path)
        extractor.feed(b"PK\x03\x04" + b"\x00" * 50)

        with pytest.raises(ExtractError):
            extractor.close()
