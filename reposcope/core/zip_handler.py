"""Streaming zip archive reading with size ceilings and path validation.

Entries are read one at a time straight from the archive; nothing is
extracted to disk. Oversized, unsafe or corrupt entries are reported to the
caller as ``ArchiveEntryError`` so they can be skipped individually.
"""

import io
import logging
import posixpath
import zipfile
from collections.abc import Iterator
from pathlib import Path

from ..constants import (
    ARCHIVE_READ_CHUNK,
    MAX_ARCHIVE_PATH_LENGTH,
    MAX_CUMULATIVE_ARCHIVE_SIZE,
    MAX_ENTRY_SIZE,
)
from .exceptions import ArchiveEntryError, SourceNotFoundError, SourceUnreadableError

logger = logging.getLogger(__name__)


def is_path_traversal(filename: str) -> bool:
    """Check if an archive entry name escapes the archive root.

    Args:
        filename: Entry name as stored in the archive

    Returns:
        True if the name is absolute, names a drive, or climbs above the root
    """
    name = filename.replace("\\", "/")
    normalized = posixpath.normpath(name)
    return (
        normalized == ".."
        or normalized.startswith("../")
        or normalized.startswith("/")
        or ":" in normalized.split("/", 1)[0]  # Windows drive letters
    )


class ArchiveReader:
    """Reads entries from a zip archive under per-entry and cumulative limits.

    Usage::

        with ArchiveReader(path_or_bytes) as reader:
            for info in reader.iter_entries():
                data = reader.read_entry(info)
    """

    def __init__(
        self,
        source: bytes | str | Path,
        max_entry_size: int = MAX_ENTRY_SIZE,
        max_total_size: int = MAX_CUMULATIVE_ARCHIVE_SIZE,
    ):
        """Open the archive eagerly.

        Args:
            source: Path to a zip file, or the raw archive bytes
            max_entry_size: Maximum uncompressed size of one entry
            max_total_size: Maximum bytes read across all entries

        Raises:
            SourceNotFoundError: If the archive path does not exist
            SourceUnreadableError: If the file cannot be read or is not a zip
        """
        self.max_entry_size = max_entry_size
        self.max_total_size = max_total_size
        self.total_read = 0
        self.exhausted = False

        label = "<upload>" if isinstance(source, bytes) else str(source)
        self.label = label

        try:
            if isinstance(source, bytes):
                self._zip = zipfile.ZipFile(io.BytesIO(source), "r")
            else:
                path = Path(source)
                if not path.is_file():
                    raise SourceNotFoundError(f"Archive not found: {path}", locator=label)
                self._zip = zipfile.ZipFile(path, "r")
        except zipfile.BadZipFile:
            raise SourceUnreadableError(
                f"Invalid or corrupted zip file: {label}", locator=label
            ) from None
        except OSError as e:
            raise SourceUnreadableError(
                f"Cannot read archive {label}: {e}", locator=label
            ) from e

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._zip.close()

    def iter_entries(self) -> Iterator[zipfile.ZipInfo]:
        """Yield file entries (directories excluded) in archive order."""
        for info in self._zip.infolist():
            if info.is_dir():
                continue
            yield info

    def check_entry(self, info: zipfile.ZipInfo) -> None:
        """Validate an entry's name and declared size without reading it.

        Raises:
            ArchiveEntryError: If the entry must be skipped
        """
        if is_path_traversal(info.filename):
            raise ArchiveEntryError(f"Path traversal detected: {info.filename}")

        if len(info.filename) > MAX_ARCHIVE_PATH_LENGTH:
            raise ArchiveEntryError(
                f"Path too long: {len(info.filename)} > {MAX_ARCHIVE_PATH_LENGTH}"
            )

        if info.file_size > self.max_entry_size:
            raise ArchiveEntryError(
                f"Entry too large: {info.file_size} > {self.max_entry_size}"
            )

    def read_entry(self, info: zipfile.ZipInfo) -> bytes:
        """Read one entry, enforcing limits while streaming.

        The declared size in the central directory is not trusted; the
        ceiling is also checked against the bytes actually decompressed.

        Raises:
            ArchiveEntryError: If the entry is unsafe, oversized or corrupt
        """
        self.check_entry(info)

        buffer = bytearray()
        try:
            with self._zip.open(info) as source:
                while True:
                    chunk = source.read(ARCHIVE_READ_CHUNK)
                    if not chunk:
                        break

                    buffer.extend(chunk)
                    self.total_read += len(chunk)

                    if len(buffer) > self.max_entry_size:
                        raise ArchiveEntryError(
                            f"Entry size exceeded while reading: {info.filename}"
                        )

                    if self.total_read > self.max_total_size:
                        self.exhausted = True
                        raise ArchiveEntryError("Total archive read limit exceeded")
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
            raise ArchiveEntryError(f"Corrupt entry {info.filename}: {e}") from e
        except (NotImplementedError, RuntimeError) as e:
            # Unsupported compression method or encrypted entry
            raise ArchiveEntryError(f"Unsupported entry {info.filename}: {e}") from e

        return bytes(buffer)
