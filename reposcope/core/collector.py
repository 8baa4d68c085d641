"""Source collection for directory trees, zip archives and single pages.

``SourceCollector.collect`` validates the analysis root eagerly and then
returns a lazy generator of ``SourceRecord`` objects, so the orchestrator can
start analyzing the first files while later ones are still being read.
"""

from __future__ import annotations

import logging
import os
import posixpath
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import httpx

from ..constants import (
    DEFAULT_DENY_DIRS,
    DEFAULT_REQUEST_TIMEOUT,
    MAX_ENTRY_SIZE,
    MAX_FILES,
    USER_AGENT,
)
from ..models import ContentKind, SkippedEntry, SourceKind, SourceRecord, SourceSpec
from .classifier import classify
from .exceptions import (
    ArchiveEntryError,
    SourceNotFoundError,
    SourceUnreadableError,
    UnsupportedSourceError,
)
from .zip_handler import ArchiveReader

logger = logging.getLogger(__name__)

DEFAULT_PAGE_PATH = "page.html"


@dataclass
class CollectorOptions:
    """Per-run collection settings.

    Attributes:
        kind_table: Extension table replacing the default classifier table.
        deny_dirs: Directory names never descended into.
        max_file_size: Per-file (and per-entry) byte ceiling.
        max_files: Maximum number of records produced by one run.
        follow_external_assets: Fetch external scripts and stylesheets
            referenced by a page.
        request_timeout: Timeout in seconds for page and asset requests.
        http_client: Client used for page mode; one is created on demand.
    """

    kind_table: Mapping[str, ContentKind] | None = None
    deny_dirs: frozenset[str] = field(default_factory=lambda: DEFAULT_DENY_DIRS)
    max_file_size: int = MAX_ENTRY_SIZE
    max_files: int = MAX_FILES
    follow_external_assets: bool = False
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    http_client: httpx.Client | None = None


def decode_content(data: bytes) -> str:
    """Decode raw file bytes as UTF-8, dropping a leading byte-order mark.

    Raises:
        UnicodeDecodeError: If the bytes are not valid UTF-8
    """
    return data.decode("utf-8-sig")


def is_remote(locator: str) -> bool:
    return urlparse(locator).scheme in ("http", "https")


class SourceCollector:
    """Produces source records for one analysis root.

    Skipped entries are appended to ``skipped`` as collection proceeds.
    The collector owns its HTTP client unless one was supplied through the
    options; call ``close`` when done.
    """

    def __init__(self, options: CollectorOptions | None = None):
        self.options = options or CollectorOptions()
        self.skipped: list[SkippedEntry] = []
        self.truncated = False
        self._produced = 0
        self._client = self.options.http_client
        self._owns_client = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> SourceCollector:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None
            self._owns_client = False

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.options.request_timeout,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def collect(self, spec: SourceSpec) -> Iterator[SourceRecord]:
        """Validate the root described by *spec* and return a record iterator.

        Raises:
            SourceNotFoundError: If the root does not exist
            SourceUnreadableError: If the root exists but cannot be read
            UnsupportedSourceError: If the source kind is not handled
        """
        if spec.kind == SourceKind.DIRECTORY:
            root = self._open_directory(spec.locator)
            return self._walk_directory(root)

        if spec.kind == SourceKind.ARCHIVE:
            if spec.content is not None:
                data = spec.content
                if isinstance(data, str):
                    raise UnsupportedSourceError("Archive content must be bytes")
                reader = ArchiveReader(data, max_entry_size=self.options.max_file_size)
            else:
                if not spec.locator:
                    raise UnsupportedSourceError("Archive source needs a locator or content")
                reader = ArchiveReader(
                    spec.locator, max_entry_size=self.options.max_file_size
                )
            return self._iter_archive(reader)

        if spec.kind == SourceKind.PAGE:
            record = self._load_page(spec)
            return iter([record])

        raise UnsupportedSourceError(f"Unsupported source kind: {spec.kind!r}")

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _skip(self, path: str, reason: str, detail: str = "") -> None:
        self.skipped.append(SkippedEntry(path=path, reason=reason))
        message = f"Skipping {path}: {reason}"
        if detail:
            message = f"{message} ({detail})"
        logger.warning(
            message,
            extra={"event": "record_skipped", "path": path, "reason": reason},
        )

    def _limit_reached(self) -> bool:
        if self._produced < self.options.max_files:
            return False
        if not self.truncated:
            self.truncated = True
            logger.warning(
                f"File limit of {self.options.max_files} reached, stopping collection",
                extra={"event": "collection_truncated", "records": self._produced},
            )
        return True

    def _make_record(
        self, path: str, data: bytes, kind: ContentKind
    ) -> SourceRecord | None:
        try:
            content = decode_content(data)
        except UnicodeDecodeError as e:
            self._skip(path, "undecodable", str(e))
            return None

        self._produced += 1
        logger.debug(
            f"Collected {path}",
            extra={"event": "record_collected", "path": path,
                   "kind": kind.value, "size_bytes": len(data)},
        )
        return SourceRecord(path=path, content=content, kind=kind, size_bytes=len(data))

    # ------------------------------------------------------------------
    # Directory mode
    # ------------------------------------------------------------------

    def _open_directory(self, locator: str) -> Path:
        root = Path(locator)
        if not root.exists():
            raise SourceNotFoundError(f"Directory not found: {locator}", locator=locator)
        if not root.is_dir():
            raise SourceNotFoundError(f"Not a directory: {locator}", locator=locator)
        try:
            with os.scandir(root):
                pass
        except OSError as e:
            raise SourceUnreadableError(
                f"Cannot read directory {locator}: {e}", locator=locator
            ) from e
        return root

    def _walk_directory(self, root: Path) -> Iterator[SourceRecord]:
        deny = self.options.deny_dirs

        def _on_error(error: OSError) -> None:
            logger.warning(f"Cannot list {error.filename}: {error}")

        for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=_on_error):
            # Prune in place so os.walk never descends into denied directories
            dirnames[:] = sorted(d for d in dirnames if d not in deny)

            for filename in sorted(filenames):
                full_path = Path(dirpath) / filename
                rel_path = full_path.relative_to(root).as_posix()

                kind = classify(rel_path, self.options.kind_table)
                if kind == ContentKind.UNSUPPORTED:
                    logger.debug(f"Ignoring unsupported file {rel_path}")
                    continue

                if self._limit_reached():
                    return

                try:
                    size = full_path.stat().st_size
                    if size > self.options.max_file_size:
                        self._skip(
                            rel_path, "too_large",
                            f"{size} > {self.options.max_file_size} bytes",
                        )
                        continue
                    data = full_path.read_bytes()
                except OSError as e:
                    self._skip(rel_path, "unreadable", str(e))
                    continue

                # The file may have grown between stat and read
                if len(data) > self.options.max_file_size:
                    self._skip(rel_path, "too_large")
                    continue

                record = self._make_record(rel_path, data, kind)
                if record is not None:
                    yield record

    # ------------------------------------------------------------------
    # Archive mode
    # ------------------------------------------------------------------

    def _iter_archive(self, reader: ArchiveReader) -> Iterator[SourceRecord]:
        deny = self.options.deny_dirs
        with reader:
            for info in reader.iter_entries():
                path = posixpath.normpath(info.filename.replace("\\", "/"))

                parts = path.split("/")
                if any(part in deny for part in parts[:-1]):
                    logger.debug(f"Ignoring {path} inside a denied directory")
                    continue

                kind = classify(path, self.options.kind_table)
                if kind == ContentKind.UNSUPPORTED:
                    logger.debug(f"Ignoring unsupported entry {path}")
                    continue

                if self._limit_reached():
                    return

                try:
                    data = reader.read_entry(info)
                except ArchiveEntryError as e:
                    self._skip(path, _archive_skip_reason(str(e)), str(e))
                    if reader.exhausted:
                        logger.warning(
                            "Archive read limit reached, stopping collection",
                            extra={"event": "collection_truncated",
                                   "records": self._produced},
                        )
                        self.truncated = True
                        return
                    continue

                record = self._make_record(path, data, kind)
                if record is not None:
                    yield record

    # ------------------------------------------------------------------
    # Page mode
    # ------------------------------------------------------------------

    def _load_page(self, spec: SourceSpec) -> SourceRecord:
        locator = spec.locator
        metadata: dict[str, str] = {}

        if spec.content is not None:
            raw = spec.content
            data = raw.encode("utf-8") if isinstance(raw, str) else raw
            path = locator or DEFAULT_PAGE_PATH
        elif is_remote(locator):
            data, metadata = self._fetch(locator)
            path = locator
        elif locator:
            page_file = Path(locator)
            if not page_file.is_file():
                raise SourceNotFoundError(f"Page not found: {locator}", locator=locator)
            try:
                data = page_file.read_bytes()
            except OSError as e:
                raise SourceUnreadableError(
                    f"Cannot read page {locator}: {e}", locator=locator
                ) from e
            path = page_file.name
        else:
            raise UnsupportedSourceError("Page source needs a locator or content")

        if len(data) > self.options.max_file_size:
            raise SourceUnreadableError(
                f"Page too large: {len(data)} > {self.options.max_file_size} bytes",
                locator=locator,
            )

        try:
            content = decode_content(data)
        except UnicodeDecodeError as e:
            raise SourceUnreadableError(
                f"Page is not valid UTF-8: {e}", locator=locator
            ) from e

        self._produced += 1
        return SourceRecord(
            path=path,
            content=content,
            kind=ContentKind.MARKUP,
            size_bytes=len(data),
            metadata=metadata,
        )

    def _fetch(self, url: str) -> tuple[bytes, dict[str, str]]:
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise SourceNotFoundError(f"Page not found: {url}", locator=url) from e
            raise SourceUnreadableError(
                f"Page request failed with HTTP {e.response.status_code}: {url}",
                locator=url,
            ) from e
        except httpx.HTTPError as e:
            raise SourceUnreadableError(f"Cannot fetch page {url}: {e}", locator=url) from e

        headers = {key.lower(): value for key, value in response.headers.items()}
        return response.content, headers

    def fetch_asset(self, url: str, kind: ContentKind, origin: str) -> SourceRecord | None:
        """Fetch an external script or stylesheet referenced by a page.

        Failures are logged and recorded as skips; they never abort the run.

        Args:
            url: Absolute asset URL
            kind: Content kind of the asset
            origin: Path of the page that referenced the asset

        Returns:
            A synthetic record, or None if the asset could not be used
        """
        if not is_remote(url):
            logger.debug(f"Not fetching non-HTTP asset {url}")
            return None

        if self._limit_reached():
            return None

        try:
            response = self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self._skip(url, "fetch_failed", str(e))
            return None

        data = response.content
        if len(data) > self.options.max_file_size:
            self._skip(url, "too_large", f"{len(data)} > {self.options.max_file_size} bytes")
            return None

        try:
            content = decode_content(data)
        except UnicodeDecodeError as e:
            self._skip(url, "undecodable", str(e))
            return None

        self._produced += 1
        return SourceRecord(
            path=url,
            content=content,
            kind=kind,
            size_bytes=len(data),
            synthetic=True,
            origin=origin,
            metadata={"embedded": "external"},
        )


def _archive_skip_reason(message: str) -> str:
    lowered = message.lower()
    if "traversal" in lowered:
        return "path_traversal"
    if "too large" in lowered or "exceeded" in lowered:
        return "too_large"
    if "too long" in lowered:
        return "path_too_long"
    return "corrupt"


def collect(spec: SourceSpec, options: CollectorOptions | None = None) -> Iterator[SourceRecord]:
    """Collect records for *spec* with a throwaway collector.

    The root is validated before this function returns; records are then
    produced lazily.
    """
    collector = SourceCollector(options)
    records = collector.collect(spec)

    def _generate() -> Iterator[SourceRecord]:
        try:
            yield from records
        finally:
            collector.close()

    return _generate()
