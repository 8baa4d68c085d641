"""Tests for streamed archive reading."""

import pytest

from reposcope.core.exceptions import (
    ArchiveEntryError,
    SourceNotFoundError,
    SourceUnreadableError,
)
from reposcope.core.zip_handler import ArchiveReader, is_path_traversal


class TestPathTraversal:
    """Test entry name validation."""

    @pytest.mark.parametrize(
        "name",
        ["../evil.js", "a/../../evil.js", "/etc/passwd", "C:/windows/evil.js", "..\\evil.js"],
    )
    def test_rejected(self, name: str) -> None:
        assert is_path_traversal(name)

    @pytest.mark.parametrize("name", ["app.js", "src/app.js", "src/../app.js", ".eslintrc.json"])
    def test_allowed(self, name: str) -> None:
        assert not is_path_traversal(name)


class TestArchiveReader:
    """Test the ArchiveReader class."""

    def test_reads_entries_from_bytes(self, zip_bytes) -> None:
        data = zip_bytes({"src/": "", "src/app.js": "let a = 1;\n", "README.md": "# hi\n"})

        with ArchiveReader(data) as reader:
            entries = {info.filename: reader.read_entry(info) for info in reader.iter_entries()}

        assert entries == {"src/app.js": b"let a = 1;\n", "README.md": b"# hi\n"}

    def test_reads_entries_from_path(self, tmp_path, zip_bytes) -> None:
        archive = tmp_path / "site.zip"
        archive.write_bytes(zip_bytes({"index.html": "<html></html>"}))

        with ArchiveReader(str(archive)) as reader:
            names = [info.filename for info in reader.iter_entries()]

        assert names == ["index.html"]

    def test_missing_archive(self, tmp_path) -> None:
        with pytest.raises(SourceNotFoundError):
            ArchiveReader(tmp_path / "missing.zip")

    def test_not_a_zip(self) -> None:
        with pytest.raises(SourceUnreadableError, match="Invalid or corrupted"):
            ArchiveReader(b"definitely not a zip file")

    def test_oversized_entry(self, zip_bytes) -> None:
        data = zip_bytes({"big.js": "x" * 100})

        with ArchiveReader(data, max_entry_size=10) as reader:
            info = next(reader.iter_entries())
            with pytest.raises(ArchiveEntryError, match="too large"):
                reader.read_entry(info)

    def test_traversal_entry(self, zip_bytes) -> None:
        data = zip_bytes({"../evil.js": "alert(1)"})

        with ArchiveReader(data) as reader:
            info = next(reader.iter_entries())
            with pytest.raises(ArchiveEntryError, match="traversal"):
                reader.read_entry(info)

    def test_cumulative_limit(self, zip_bytes) -> None:
        data = zip_bytes({"a.js": "a" * 10, "b.js": "b" * 10})

        with ArchiveReader(data, max_total_size=15) as reader:
            first, second = list(reader.iter_entries())
            assert reader.read_entry(first) == b"a" * 10
            with pytest.raises(ArchiveEntryError, match="Total archive read limit"):
                reader.read_entry(second)

        assert reader.exhausted
