#tests\test_discovery.py

"""Test project root discovery."""

from typing import Dict, List

import pytest

from build_engine.security.discovery import (
    DirectoryReader,
    DirEntry,
    LocalDirectoryReader,
    discover_project,
    find_entry_file,
    find_manifest,
)


class FakeDirectoryReader(DirectoryReader):
    """Directory tree from a flat list of file paths."""

    def __init__(self, files: List[str]):
        self.tree: Dict[str, Dict[str, bool]] = {"": {}}
        for path in files:
            parts = path.split("/")
            for i, name in enumerate(parts):
                parent = "/".join(parts[:i])
                is_dir = i < len(parts) - 1
                self.tree.setdefault(parent, {})[name] = is_dir
                if is_dir:
                    self.tree.setdefault("/".join(parts[:i + 1]), {})
        self.listed: List[str] = []

    def list_entries(self, path):
        self.listed.append(path)
        return [DirEntry(name, is_dir) for name, is_dir in self.tree.get(path, {}).items()]


class TestFindManifest:
    """Test breadth-first manifest search."""

    def test_manifest_at_root(self):
        """Test a root manifest wins."""
        reader = FakeDirectoryReader(["package.json", "site/package.json"])
        assert find_manifest(reader) == ""

    def test_manifest_one_level_down(self):
        """Test the common zipped-folder layout."""
        reader = FakeDirectoryReader(["my-site/package.json", "my-site/pages/index.js"])
        assert find_manifest(reader) == "my-site"

    def test_shallowest_manifest_wins(self):
        """Test breadth-first order picks the shallower project."""
        reader = FakeDirectoryReader([
            "a/b/c/package.json",
            "z/package.json",
        ])
        assert find_manifest(reader) == "z"

    @pytest.mark.parametrize("skipped", ["node_modules", ".git", "__MACOSX", "out", ".next"])
    def test_skipped_directories(self, skipped):
        """Test dependency, hidden and output directories are not searched."""
        reader = FakeDirectoryReader([f"{skipped}/package.json"])

        assert find_manifest(reader) is None
        assert skipped not in reader.listed

    def test_depth_limit(self):
        """Test manifests deeper than max_depth are not found."""
        reader = FakeDirectoryReader(["a/b/c/d/package.json"])

        assert find_manifest(reader, max_depth=3) is None
        assert find_manifest(reader, max_depth=4) == "a/b/c/d"

    def test_directory_named_like_manifest(self):
        """Test a directory called package.json is not a manifest."""
        reader = FakeDirectoryReader(["package.json/readme.md"])
        assert find_manifest(reader) is None


class TestEntryFileSearch:
    """Test the fallback when no manifest exists."""

    def test_pages_router(self):
        """Test a pages/index.js project is recognized."""
        reader = FakeDirectoryReader(["site/pages/index.js"])

        result = find_entry_file(reader)

        assert result.project_dir == "site"
        assert result.entry_file == "pages/index.js"
        assert not result.manifest_found

    def test_app_router(self):
        """Test an app/page.tsx project is recognized."""
        reader = FakeDirectoryReader(["app/page.tsx", "app/layout.tsx"])

        result = find_entry_file(reader)

        assert result.project_dir == ""
        assert result.entry_file == "app/page.tsx"

    def test_nothing_found(self):
        """Test an archive with no project returns None."""
        reader = FakeDirectoryReader(["readme.md", "docs/notes.txt"])
        assert find_entry_file(reader) is None


class TestDiscoverProject:
    """Test manifest-first discovery."""

    def test_prefers_manifest(self):
        """Test the manifest search runs before the entry-file search."""
        reader = FakeDirectoryReader(["pages/index.js", "nested/package.json"])

        result = discover_project(reader)

        assert result.manifest_found
        assert result.project_dir == "nested"

    def test_falls_back_to_entry_file(self):
        """Test discovery without a manifest."""
        reader = FakeDirectoryReader(["src/app/page.js"])

        result = discover_project(reader)

        assert not result.manifest_found
        assert result.entry_file == "src/app/page.js"

    def test_local_reader(self, tmp_path):
        """Test discovery over a real directory."""
        project = tmp_path / "upload" / "my-site"
        project.mkdir(parents=True)
        (project / "package.json").write_text("{}")
        (tmp_path / "upload" / "__MACOSX").mkdir()

        result = discover_project(LocalDirectoryReader(str(tmp_path / "upload")))

        assert result.project_dir == "my-site"
        assert result.manifest_found

    def test_local_reader_missing_path(self, tmp_path):
        """Test listing a missing directory is empty rather than an error."""
        reader = LocalDirectoryReader(str(tmp_path))
        assert reader.list_entries("missing") == []
