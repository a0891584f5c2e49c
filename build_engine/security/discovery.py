# build_engine/security/discovery.py
"""
Project root discovery inside an extracted archive.

Uploads are often zipped one folder too deep (``my-site/package.json``) or
carry macOS metadata next to the project. The search is a breadth-first walk
over an injected directory reader so it can be exercised without a disk.
"""

import logging
import os
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"

SKIPPED_DIRECTORIES = frozenset({
    "node_modules",
    ".next",
    "out",
    "dist",
    "build",
    "__MACOSX",
})

ENTRY_FILES = (
    "pages/index.js",
    "pages/index.jsx",
    "pages/index.tsx",
    "app/page.js",
    "app/page.jsx",
    "app/page.tsx",
    "src/pages/index.js",
    "src/pages/index.tsx",
    "src/app/page.js",
    "src/app/page.tsx",
)


@dataclass(frozen=True)
class DirEntry:
    name: str
    is_dir: bool


class DirectoryReader(ABC):
    """Lists the direct children of a directory, paths relative to the root."""

    @abstractmethod
    def list_entries(self, path: str) -> Iterable[DirEntry]:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        parent = str(PurePosixPath(path).parent)
        name = PurePosixPath(path).name
        if parent == ".":
            parent = ""
        return any(e.name == name for e in self.list_entries(parent))


class LocalDirectoryReader(DirectoryReader):
    def __init__(self, root: str):
        self.root = root

    def list_entries(self, path: str) -> List[DirEntry]:
        full = os.path.join(self.root, path) if path else self.root
        try:
            with os.scandir(full) as it:
                return [DirEntry(e.name, e.is_dir(follow_symlinks=False)) for e in it]
        except (FileNotFoundError, NotADirectoryError):
            return []


@dataclass
class DiscoveryResult:
    project_dir: str
    """Relative to the extraction root; empty string for the root itself."""
    manifest_found: bool
    entry_file: Optional[str] = None


def _is_skipped(name: str) -> bool:
    return name.startswith(".") or name in SKIPPED_DIRECTORIES


def _join(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def find_manifest(reader: DirectoryReader, max_depth: int = 3) -> Optional[str]:
    """
    Breadth-first search for the shallowest directory holding a manifest.

    Depth 0 is the extraction root. Returns the relative directory or None.
    """
    queue = deque([("", 0)])

    while queue:
        current, depth = queue.popleft()
        entries = sorted(reader.list_entries(current), key=lambda e: e.name)

        if any(e.name == MANIFEST_NAME and not e.is_dir for e in entries):
            logger.info(f"[discovery] Found {MANIFEST_NAME} in /{current}")
            return current

        if depth >= max_depth:
            continue

        for entry in entries:
            if entry.is_dir and not _is_skipped(entry.name):
                queue.append((_join(current, entry.name), depth + 1))

    return None


def find_entry_file(reader: DirectoryReader, max_depth: int = 3) -> Optional[DiscoveryResult]:
    """Search candidate directories for a well-known framework entry file."""
    queue = deque([("", 0)])

    while queue:
        current, depth = queue.popleft()

        for candidate in ENTRY_FILES:
            if reader.exists(_join(current, candidate)):
                logger.info(f"[discovery] Found entry file {candidate} in /{current}")
                return DiscoveryResult(
                    project_dir=current,
                    manifest_found=False,
                    entry_file=candidate,
                )

        if depth >= max_depth:
            continue

        for entry in sorted(reader.list_entries(current), key=lambda e: e.name):
            if entry.is_dir and not _is_skipped(entry.name):
                queue.append((_join(current, entry.name), depth + 1))

    return None


def discover_project(reader: DirectoryReader, max_depth: int = 3) -> Optional[DiscoveryResult]:
    """Manifest first, entry-file search second. None when neither is found."""
    project_dir = find_manifest(reader, max_depth)
    if project_dir is not None:
        return DiscoveryResult(project_dir=project_dir, manifest_found=True)

    logger.warning(f"[discovery] No {MANIFEST_NAME} within depth {max_depth}, probing entry files")
    return find_entry_file(reader, max_depth)
