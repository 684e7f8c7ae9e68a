from __future__ import annotations

import gzip
import lzma
import os
import stat
import tarfile
import zipfile
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Iterator, Optional

from .config import normalize_suffix
from .errors import (
    ArchiveTooLarge,
    ExtractionCancelled,
    InvalidInput,
    IOFailure,
    PathTraversal,
    SitedropError,
)
from .logger_config import get_logger
from .security import is_unsafe_member_name, safe_join
from .workspace import Workspace, partial_path

log = get_logger(__name__)

ARCHIVE_SUFFIXES = (
    ".zip",
    ".tar",
    ".tar.gz",
    ".tgz",
    ".tar.bz2",
    ".tbz2",
    ".tar.xz",
    ".txz",
)
CHUNK_SIZE = 64 * 1024

# Raised by the decoders for corrupt or truncated bundles.
_CORRUPT_ARCHIVE_ERRORS = (
    zipfile.BadZipFile,
    tarfile.TarError,
    gzip.BadGzipFile,
    EOFError,
    zlib.error,
    lzma.LZMAError,
)


def is_archive_name(name: str) -> bool:
    return (name or "").lower().endswith(ARCHIVE_SUFFIXES)


def is_zip_name(name: str) -> bool:
    return (name or "").lower().endswith(".zip")


def _suffix_of(name: str) -> str:
    return Path(name.replace("\\", "/")).suffix.lower()


@dataclass(frozen=True)
class ArchiveLimits:
    max_entries: int
    max_total_bytes: int


@dataclass
class ExtractionResult:
    entries_written: int = 0
    bytes_written: int = 0
    skipped: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Entry:
    name: str
    kind: str  # "file", "dir", "link" or "special"
    open: Callable[[], IO[bytes]]


def _zip_entries(archive_path: Path) -> Iterator[_Entry]:
    with zipfile.ZipFile(archive_path) as zf:
        for info in zf.infolist():
            mode = info.external_attr >> 16
            if info.is_dir():
                kind = "dir"
            elif stat.S_ISLNK(mode):
                kind = "link"
            else:
                kind = "file"
            yield _Entry(name=info.filename, kind=kind, open=lambda info=info: zf.open(info))


def _tar_entries(archive_path: Path) -> Iterator[_Entry]:
    # "r|*" is a forward-only stream; each member's data must be consumed
    # before the next member is requested, which the extraction loop does.
    with tarfile.open(archive_path, mode="r|*") as tf:
        for member in tf:
            if member.isdir():
                kind = "dir"
            elif member.issym() or member.islnk():
                kind = "link"
            elif member.isfile():
                kind = "file"
            else:
                kind = "special"
            yield _Entry(name=member.name, kind=kind, open=lambda member=member: tf.extractfile(member))


@contextmanager
def _closing_stream(entry: _Entry):
    try:
        src = entry.open()
    except (RuntimeError, NotImplementedError) as e:
        # zipfile: encrypted entries and unsupported compression methods (e.g. AES).
        raise InvalidInput("Invalid or corrupt archive") from e
    if src is None:
        raise InvalidInput("Invalid or corrupt archive")
    try:
        yield src
    finally:
        src.close()


class ArchiveExtractor:
    """Unpack zip and tar bundles into a workspace, one entry at a time.

    Every entry path is checked before anything is written: parent segments,
    absolute paths and link entries fail the whole extraction with
    PathTraversal. Entry count and decompressed size are counted as the data
    streams (headers are not trusted). There is no rollback: entries written
    before a failure stay in place, and they are all inside the workspace.
    """

    def __init__(self, limits: ArchiveLimits, allowed_suffixes: frozenset[str] = frozenset()) -> None:
        self.limits = limits
        self.allowed_suffixes = frozenset(normalize_suffix(s) for s in allowed_suffixes)

    def extract(
        self,
        archive_path: Path,
        destination: Workspace,
        should_stop: Optional[Callable[[], bool]] = None,
        name: Optional[str] = None,
    ) -> ExtractionResult:
        """Extract `archive_path` into `destination`.

        The decoder follows the declared filename (`name`, defaulting to the
        file's own name), not a content sniff: a tarball whose last member is
        a zip still looks like a zip to zipfile.is_zipfile().
        """
        archive_path = Path(archive_path)
        declared = name if name is not None else archive_path.name
        if not is_archive_name(declared):
            raise InvalidInput("Unsupported archive format")
        result = ExtractionResult()
        try:
            if is_zip_name(declared):
                entries = _zip_entries(archive_path)
            else:
                entries = _tar_entries(archive_path)
            try:
                self._extract_entries(entries, destination, result, should_stop)
            finally:
                entries.close()
        except SitedropError:
            raise
        except _CORRUPT_ARCHIVE_ERRORS as e:
            raise InvalidInput("Invalid or corrupt archive") from e
        except OSError as e:
            log.error("I/O error extracting into %s: %s", destination.project_id, e)
            raise IOFailure("Failed to extract archive") from e

        archive_path.unlink(missing_ok=True)
        log.info(
            "Extracted %d entries (%d bytes) into %s, skipped %d",
            result.entries_written,
            result.bytes_written,
            destination.project_id,
            len(result.skipped),
        )
        return result

    def _extract_entries(
        self,
        entries: Iterator[_Entry],
        destination: Workspace,
        result: ExtractionResult,
        should_stop: Optional[Callable[[], bool]],
    ) -> None:
        root = destination.root
        count = 0
        for entry in entries:
            _check_stop(should_stop)
            count += 1
            if count > self.limits.max_entries:
                raise ArchiveTooLarge("Archive has too many entries")

            if is_unsafe_member_name(entry.name):
                log.warning("Rejected unsafe archive entry %r", entry.name)
                raise PathTraversal("Unsafe path in archive")
            if entry.kind == "link":
                log.warning("Rejected link archive entry %r", entry.name)
                raise PathTraversal("Links are not allowed in archives")
            if entry.kind == "special":
                result.skipped.append(entry.name)
                continue

            target = safe_join(root, entry.name)
            if entry.kind == "dir":
                target.mkdir(parents=True, exist_ok=True)
                continue
            if target == root:
                raise PathTraversal("Unsafe path in archive")

            if self.allowed_suffixes and _suffix_of(entry.name) not in self.allowed_suffixes:
                result.skipped.append(entry.name)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            self._write_entry(entry, destination, target, result, should_stop)
            result.entries_written += 1

    def _write_entry(
        self,
        entry: _Entry,
        destination: Workspace,
        target: Path,
        result: ExtractionResult,
        should_stop: Optional[Callable[[], bool]],
    ) -> None:
        tmp = partial_path(destination)
        try:
            with _closing_stream(entry) as src, open(tmp, "wb") as out:
                while True:
                    _check_stop(should_stop)
                    chunk = src.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    result.bytes_written += len(chunk)
                    if result.bytes_written > self.limits.max_total_bytes:
                        raise ArchiveTooLarge("Archive exceeds decompressed size limit")
                    out.write(chunk)
            os.replace(tmp, target)
        except BaseException:
            # The truncated entry is ours to discard; earlier entries stay.
            tmp.unlink(missing_ok=True)
            raise


def _check_stop(should_stop: Optional[Callable[[], bool]]) -> None:
    if should_stop is not None and should_stop():
        raise ExtractionCancelled()
