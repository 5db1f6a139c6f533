# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Streaming Archive Extraction

Single responsibility: Turn archive bytes, delivered in arbitrary chunks, into
files below a target directory.

Tar archives (plain, gzip, bzip2 or xz compressed) are unpacked member by
member as the bytes arrive. Zip archives keep their directory at the end of
the file, so they are spooled and unpacked when the stream is closed.
"""

import bz2
import logging
import lzma
import os
import shutil
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import List, Optional

from package_catalog.core.errors import ExtractError

logger = logging.getLogger(__name__)

BLOCK_SIZE = tarfile.BLOCKSIZE
MAGIC_LENGTH = 6
ZIP_SPOOL_MEMORY = 8 * 1024 * 1024
ENCODING = "utf-8"

_ZERO_BLOCK = bytes(BLOCK_SIZE)
_FILE_TYPES = (tarfile.REGTYPE, tarfile.AREGTYPE, tarfile.CONTTYPE)


def safe_member_path(member_name: str) -> Optional[PurePosixPath]:
    """
    Validate an archive member path.

    Returns:
        The normalised relative path, or None for the archive root entry ("./")

    Raises:
        ExtractError: For absolute paths or paths escaping the target directory
    """
    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute():
        raise ExtractError(f"Unsafe absolute path in archive: {member_name}")
    if any(part == ".." for part in relative.parts):
        raise ExtractError(f"Unsafe path in archive: {member_name}")
    if not relative.parts:
        return None
    return relative


def _all_zero(data) -> bool:
    return not any(data)


def _parse_pax_records(data: bytes) -> dict:
    """Decode 'length key=value\\n' records of a pax extended header"""
    records = {}
    pos = 0
    while pos < len(data):
        if data[pos] == 0:
            break
        space = data.find(b" ", pos)
        if space < 0:
            raise ExtractError("Malformed pax header")
        try:
            length = int(data[pos:space])
        except ValueError:
            raise ExtractError("Malformed pax header length")
        if length <= 0:
            raise ExtractError("Malformed pax header length")
        record = data[space + 1:pos + length - 1]
        key, _, value = record.partition(b"=")
        records[key.decode(ENCODING, "surrogateescape")] = value.decode(ENCODING, "surrogateescape")
        pos += length
    return records


class _TarStream:
    """Incremental tar reader writing members below target_dir"""

    HEADER, DATA, END = "header", "data", "end"

    def __init__(self, target_dir: Path):
        self.target_dir = target_dir
        self.members: List[str] = []
        self._state = self.HEADER
        self._buffer = bytearray()
        self._zero_blocks = 0

        self._info: Optional[tarfile.TarInfo] = None
        self._remaining = 0
        self._padding = 0
        self._file = None
        self._target: Optional[Path] = None
        self._meta: Optional[bytearray] = None  # body of a longname / pax member

        self._next_path: Optional[str] = None
        self._next_link: Optional[str] = None
        self._next_size: Optional[int] = None

    def feed(self, data: bytes):
        self._buffer += data
        while self._buffer:
            if self._state == self.END:
                if not _all_zero(self._buffer):
                    raise ExtractError("Unexpected data after end-of-archive marker")
                self._buffer.clear()
                return

            if self._state == self.HEADER:
                if len(self._buffer) < BLOCK_SIZE:
                    return
                block = bytes(self._buffer[:BLOCK_SIZE])
                del self._buffer[:BLOCK_SIZE]
                self._read_header(block)
                continue

            # DATA: member body, then padding up to the next block
            if self._remaining:
                count = min(self._remaining, len(self._buffer))
                chunk = bytes(self._buffer[:count])
                del self._buffer[:count]
                self._remaining -= count
                self._consume(chunk)
                if not self._remaining:
                    self._end_member()
            else:
                count = min(self._padding, len(self._buffer))
                del self._buffer[:count]
                self._padding -= count

            if not self._remaining and not self._padding:
                self._state = self.HEADER

    def finish(self):
        """
        Check the stream ended where the archive ends.

        Raises:
            ExtractError: If a member or header was cut short
        """
        if self._state == self.DATA or self._buffer:
            self.abort()
            raise ExtractError("Archive truncated")
        if self._state == self.HEADER and self._zero_blocks == 0:
            logger.debug("Archive has no end-of-archive marker")

    def abort(self):
        if self._file is not None:
            self._file.close()
            self._file = None

    def _read_header(self, block: bytes):
        if block == _ZERO_BLOCK:
            self._zero_blocks += 1
            if self._zero_blocks == 2:
                self._state = self.END
            return
        if self._zero_blocks:
            raise ExtractError("Unexpected header after end-of-archive marker")

        try:
            info = tarfile.TarInfo.frombuf(block, ENCODING, "surrogateescape")
        except tarfile.HeaderError as e:
            raise ExtractError(f"Invalid tar header: {e}")

        size = info.size
        if info.type not in (tarfile.XHDTYPE, tarfile.XGLTYPE, tarfile.GNUTYPE_LONGNAME,
                             tarfile.GNUTYPE_LONGLINK):
            if self._next_path is not None:
                info.name = self._next_path
            if self._next_link is not None:
                info.linkname = self._next_link
            if self._next_size is not None:
                size = self._next_size
            self._next_path = None
            self._next_link = None
            self._next_size = None

        self._info = info
        self._remaining = size
        self._padding = -size % BLOCK_SIZE
        self._state = self.DATA
        self._begin_member(info)
        if not self._remaining:
            self._end_member()
            if not self._padding:
                self._state = self.HEADER

    def _begin_member(self, info: tarfile.TarInfo):
        if info.type in (tarfile.XHDTYPE, tarfile.XGLTYPE, tarfile.GNUTYPE_LONGNAME,
                         tarfile.GNUTYPE_LONGLINK):
            self._meta = bytearray()
            return

        relative = safe_member_path(info.name)
        if relative is None:
            return
        target = self.target_dir.joinpath(*relative.parts)

        try:
            if info.type == tarfile.DIRTYPE:
                target.mkdir(parents=True, exist_ok=True)
                self.members.append(str(relative) + "/")
            elif info.type in _FILE_TYPES:
                target.parent.mkdir(parents=True, exist_ok=True)
                self._file = open(target, "wb")
                self._target = target
                self.members.append(str(relative))
            elif info.type == tarfile.LNKTYPE:
                self._copy_hard_link(info, relative, target)
            else:
                logger.warning(f"Skipping unsupported archive member {info.name} (type {info.type!r})")
        except OSError as e:
            raise ExtractError(f"Cannot create {relative}: {e}")

    def _copy_hard_link(self, info: tarfile.TarInfo, relative: PurePosixPath, target: Path):
        # Hard links name an earlier member; materialise them as copies
        source_relative = safe_member_path(info.linkname)
        if source_relative is None:
            raise ExtractError(f"Hard link {info.name} has no target")
        source = self.target_dir.joinpath(*source_relative.parts)
        if not source.is_file():
            raise ExtractError(f"Hard link {info.name} points at missing member {info.linkname}")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
        self.members.append(str(relative))

    def _consume(self, chunk: bytes):
        if self._meta is not None:
            self._meta += chunk
        elif self._file is not None:
            try:
                self._file.write(chunk)
            except OSError as e:
                self.abort()
                raise ExtractError(f"Cannot write {self._target}: {e}")

    def _end_member(self):
        info = self._info
        if self._meta is not None:
            meta = bytes(self._meta)
            self._meta = None
            if info.type == tarfile.GNUTYPE_LONGNAME:
                self._next_path = meta.rstrip(b"\0").decode(ENCODING, "surrogateescape")
            elif info.type == tarfile.GNUTYPE_LONGLINK:
                self._next_link = meta.rstrip(b"\0").decode(ENCODING, "surrogateescape")
            elif info.type == tarfile.XHDTYPE:
                records = _parse_pax_records(meta)
                if "path" in records:
                    self._next_path = records["path"]
                if "linkpath" in records:
                    self._next_link = records["linkpath"]
                if "size" in records:
                    try:
                        self._next_size = int(records["size"])
                    except ValueError:
                        raise ExtractError("Malformed pax size record")
            return

        if self._file is not None:
            self._file.close()
            self._file = None
            mode = 0o755 if info.mode & 0o111 else 0o644
            try:
                os.chmod(self._target, mode)
            except OSError as e:
                raise ExtractError(f"Cannot set mode on {self._target}: {e}")


class ArchiveExtractor:
    """
    Push-style extractor: feed() chunks as they arrive, then close().

    Any ExtractError leaves the extractor unusable; the caller stops feeding
    and treats the extraction as failed.
    """

    def __init__(self, target_dir: Path):
        self.target_dir = Path(target_dir)
        self.format: Optional[str] = None
        self.bytes_in = 0
        self._head = bytearray()
        self._decompressor = None
        self._tar = _TarStream(self.target_dir)
        self._spool = None
        self._zip_members: List[str] = []

    @property
    def members(self) -> List[str]:
        """Relative paths written so far (directories end with '/')"""
        if self.format == "zip":
            return list(self._zip_members)
        return list(self._tar.members)

    def feed(self, data: bytes):
        """
        Process the next chunk of the archive.

        Raises:
            ExtractError: If the data cannot be part of a valid archive
        """
        if not data:
            return
        self.bytes_in += len(data)

        if self.format is None:
            self._head += data
            if len(self._head) < MAGIC_LENGTH:
                return
            data = bytes(self._head)
            self._head.clear()
            self._detect(data)

        self._process(data)

    def close(self):
        """
        Flush remaining data and verify the archive ended cleanly.

        Raises:
            ExtractError: If the archive is empty, truncated or has trailing data
        """
        if self.format is None:
            if not self._head:
                raise ExtractError("Empty archive")
            data = bytes(self._head)
            self._head.clear()
            self._detect(data)
            self._process(data)

        if self.format == "zip":
            self._extract_zip()
            return

        if self._decompressor is not None:
            if self.format == "gzip":
                self._tar.feed(self._decompressor.flush())
            if not self._decompressor.eof:
                self._tar.abort()
                raise ExtractError(f"Compressed {self.format} stream truncated")

        self._tar.finish()

    def abort(self):
        """Release open handles after a failure"""
        self._tar.abort()
        if self._spool is not None:
            self._spool.close()
            self._spool = None

    def _detect(self, head: bytes):
        if head.startswith(b"\x1f\x8b"):
            self.format = "gzip"
            self._decompressor = zlib.decompressobj(zlib.MAX_WBITS | 16)
        elif head.startswith(b"BZh"):
            self.format = "bzip2"
            self._decompressor = bz2.BZ2Decompressor()
        elif head.startswith(b"\xfd7zXZ\x00"):
            self.format = "xz"
            self._decompressor = lzma.LZMADecompressor()
        elif head.startswith(b"PK\x03\x04") or head.startswith(b"PK\x05\x06"):
            self.format = "zip"
            self._spool = tempfile.SpooledTemporaryFile(max_size=ZIP_SPOOL_MEMORY)
        else:
            self.format = "tar"
        logger.debug(f"Detected {self.format} archive")

    def _process(self, data: bytes):
        if self.format == "zip":
            self._spool.write(data)
            return

        if self._decompressor is None:
            self._tar.feed(data)
            return

        if self._decompressor.eof:
            self._check_trailing(data)
            return

        try:
            output = self._decompressor.decompress(data)
        except (zlib.error, OSError, lzma.LZMAError, EOFError) as e:
            raise ExtractError(f"Corrupt {self.format} stream: {e}")
        self._tar.feed(output)

        if self._decompressor.eof:
            self._check_trailing(self._decompressor.unused_data)

    def _check_trailing(self, data: bytes):
        if not _all_zero(data):
            raise ExtractError(f"Unexpected data after end of {self.format} stream")

    def _extract_zip(self):
        self._spool.seek(0)
        try:
            with zipfile.ZipFile(self._spool) as archive:
                for info in archive.infolist():
                    relative = safe_member_path(info.filename)
                    if relative is None:
                        continue
                    target = self.target_dir.joinpath(*relative.parts)
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        self._zip_members.append(str(relative) + "/")
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(info) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    self._zip_members.append(str(relative))
        except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as e:
            raise ExtractError(f"Corrupt zip archive: {e}")
        finally:
            self._spool.close()
            self._spool = None
