"""Candidate file discovery and loading."""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Protocol

from blocksearch.errors import PathOutsideRootError
from blocksearch.extract.languages import detect_language
from blocksearch.types import SourceFile

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        "__pycache__",
        ".venv",
        "venv",
        "target",
        "build",
        "dist",
        ".mypy_cache",
        ".pytest_cache",
        ".tox",
    }
)
TEST_DIR_NAMES = frozenset({"test", "tests", "__tests__", "spec"})
_TEST_FILE = re.compile(
    r"^(test_.*\.py|.*_test\.(py|go|rs)|.*\.(test|spec)\.(js|jsx|ts|tsx)|.*Tests?\.(java|cs|swift))$"
)
_BINARY_SNIFF_BYTES = 8192


class FileWalker(Protocol):
    def walk(self, root: Path) -> Iterable[Path]:
        """Yield candidate files beneath `root`."""


def confine_path(root: Path, path: str | Path) -> Path:
    """Resolve `path` against `root`, rejecting anything that lands outside it."""
    base = root.resolve()
    location = (base / path).resolve()
    if location != base and base not in location.parents:
        raise PathOutsideRootError(f"Path is outside the search root: {path}")
    return location


def is_test_path(path: Path) -> bool:
    if _TEST_FILE.match(path.name):
        return True
    return any(part in TEST_DIR_NAMES for part in path.parts[:-1])


class PathWalker:
    """Recursive walker with directory exclusions and ignore globs.

    `.gitignore` support covers the root file's plain patterns; negations
    and nested ignore files are not interpreted. The search engine applies
    its own per-request test-file policy, so walkers it owns allow tests.
    """

    def __init__(
        self,
        *,
        ignore_patterns: Sequence[str] = (),
        no_gitignore: bool = False,
        allow_tests: bool = False,
        max_file_bytes: int | None = 1_000_000,
        excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
    ) -> None:
        self.ignore_patterns = list(ignore_patterns)
        self.no_gitignore = no_gitignore
        self.allow_tests = allow_tests
        self.max_file_bytes = max_file_bytes
        self.excluded_dirs = frozenset(excluded_dirs)

    def walk(self, root: Path) -> Iterator[Path]:
        root = Path(root)
        if root.is_file():
            yield root
            return

        patterns = list(self.ignore_patterns)
        if not self.no_gitignore:
            patterns.extend(read_gitignore(root / ".gitignore"))

        for directory, dirnames, filenames in os.walk(root):
            current = Path(directory)
            dirnames[:] = sorted(
                name
                for name in dirnames
                if name not in self.excluded_dirs
                and not _ignored(current.joinpath(name).relative_to(root), patterns, is_dir=True)
            )
            for name in sorted(filenames):
                path = current / name
                relative = path.relative_to(root)
                if _ignored(relative, patterns, is_dir=False):
                    continue
                if not self.allow_tests and is_test_path(relative):
                    continue
                if self.max_file_bytes is not None and path.stat().st_size > self.max_file_bytes:
                    logger.debug(f"Skipping {path}: larger than {self.max_file_bytes} bytes")
                    continue
                yield path


def read_gitignore(path: Path) -> list[str]:
    if not path.is_file():
        return []
    patterns = []
    for raw in path.read_text(encoding="utf-8", errors="ignore").splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", "!")):
            continue
        patterns.append(line)
    return patterns


def _ignored(relative: Path, patterns: Sequence[str], *, is_dir: bool) -> bool:
    posix = relative.as_posix()
    for pattern in patterns:
        dir_only = pattern.endswith("/")
        pattern = pattern.strip("/") if dir_only else pattern.lstrip("/")
        if dir_only and not is_dir:
            continue
        if "/" in pattern:
            if fnmatch.fnmatchcase(posix, pattern):
                return True
        elif fnmatch.fnmatchcase(relative.name, pattern):
            return True
    return False


def load_source(path: Path, display_path: str | None = None) -> SourceFile | None:
    """Read a text file; binary or unreadable files return None."""

    try:
        raw = path.read_bytes()
    except OSError as exc:
        logger.warning(f"Cannot read {path}: {exc}")
        return None
    if b"\x00" in raw[:_BINARY_SNIFF_BYTES]:
        logger.debug(f"Skipping binary file {path}")
        return None
    name = display_path or path.as_posix()
    return SourceFile(
        path=name,
        text=raw.decode("utf-8", errors="replace"),
        language=detect_language(name),
    )
