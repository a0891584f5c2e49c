#tests\test_archive.py

"""Test defensive archive extraction."""

import zipfile

import pytest

from build_engine.core.errors import BuildValidationError
from build_engine.security.archive import ArchiveLimits, check_member_name, extract_archive
from factories import make_zip


@pytest.fixture
def write_archive(tmp_path):
    def write(files, name="source.zip"):
        path = tmp_path / name
        path.write_bytes(make_zip(files))
        return path

    return write


@pytest.fixture
def destination(tmp_path):
    path = tmp_path / "extract" / "source"
    path.mkdir(parents=True)
    return path


class TestMemberNames:
    """Test entry name checks."""

    @pytest.mark.parametrize("name", ["../evil.sh", "a/../../evil.sh", "a\\..\\..\\evil.sh"])
    def test_traversal_rejected(self, name):
        """Test parent-directory segments are rejected."""
        with pytest.raises(BuildValidationError):
            check_member_name(name)

    @pytest.mark.parametrize("name", ["/etc/passwd", "C:/Windows/system.ini", "c:evil"])
    def test_absolute_rejected(self, name):
        """Test absolute and drive-letter paths are rejected."""
        with pytest.raises(BuildValidationError):
            check_member_name(name)

    def test_nested_name_allowed(self):
        """Test an ordinary nested name becomes a relative path."""
        assert str(check_member_name("site/pages/./index.js")) == "site/pages/index.js"


class TestExtractArchive:
    """Test extraction guards and output."""

    def test_extracts_files(self, write_archive, destination):
        """Test a normal archive is extracted with a report."""
        archive = write_archive({
            "package.json": b"{}",
            "pages/index.js": b"export default () => null",
        })

        report = extract_archive(archive, destination)

        assert (destination / "package.json").read_bytes() == b"{}"
        assert (destination / "pages" / "index.js").exists()
        assert report.files_written == 2
        assert report.bytes_written == 2 + len(b"export default () => null")

    def test_traversal_writes_nothing(self, write_archive, destination, tmp_path):
        """Test a traversal entry fails before anything is written."""
        archive = write_archive({
            "package.json": b"{}",
            "../evil.sh": b"rm -rf /",
        })

        with pytest.raises(BuildValidationError):
            extract_archive(archive, destination)

        assert not (destination.parent / "evil.sh").exists()
        assert not (tmp_path / "evil.sh").exists()
        assert list(destination.iterdir()) == []

    def test_too_small(self, tmp_path, destination):
        """Test archives under the minimum size are rejected as corrupted."""
        archive = tmp_path / "tiny.zip"
        archive.write_bytes(b"PK")

        with pytest.raises(BuildValidationError, match="too small"):
            extract_archive(archive, destination)

    def test_not_a_zip(self, tmp_path, destination):
        """Test garbage bytes are a validation error."""
        archive = tmp_path / "garbage.zip"
        archive.write_bytes(b"this is not a zip file at all, just text")

        with pytest.raises(BuildValidationError):
            extract_archive(archive, destination)

    def test_empty_archive(self, write_archive, destination):
        """Test an archive without entries is rejected."""
        archive = write_archive({})

        with pytest.raises(BuildValidationError, match="no entries"):
            extract_archive(archive, destination)

    def test_entry_count_limit(self, write_archive, destination):
        """Test the file count ceiling."""
        archive = write_archive({f"f{i}.txt": b"x" for i in range(6)})

        with pytest.raises(BuildValidationError, match="entries"):
            extract_archive(archive, destination, ArchiveLimits(max_entries=5))

    def test_uncompressed_size_limit(self, write_archive, destination):
        """Test the cumulative uncompressed ceiling stops a zip bomb."""
        archive = write_archive({"bomb.txt": b"0" * 200_000})

        with pytest.raises(BuildValidationError):
            extract_archive(archive, destination, ArchiveLimits(max_uncompressed_bytes=100_000))

        assert not (destination / "bomb.txt").exists()

    def test_suspicious_ratio_reported(self, write_archive, destination):
        """Test highly compressible entries are flagged but extracted."""
        archive = write_archive({"zeros.txt": b"0" * 1_000_000})

        report = extract_archive(archive, destination)

        assert report.suspicious_entries == ["zeros.txt"]
        assert (destination / "zeros.txt").stat().st_size == 1_000_000

    def test_macos_metadata_ignored(self, write_archive, destination):
        """Test __MACOSX entries are skipped."""
        archive = write_archive({
            "package.json": b"{}",
            "__MACOSX/._package.json": b"junk",
        })

        extract_archive(archive, destination)

        assert not (destination / "__MACOSX").exists()

    def test_directory_entries(self, tmp_path, destination):
        """Test explicit directory entries are created."""
        path = tmp_path / "dirs.zip"
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("site/", b"")
            archive.writestr("site/index.html", b"<html></html>")

        report = extract_archive(path, destination)

        assert (destination / "site").is_dir()
        assert report.files_written == 1
