"""Per-file filter evaluation (`ext:`, `file:`, `dir:`, `type:`, `lang:`)."""

from __future__ import annotations

import fnmatch
from collections.abc import Callable
from pathlib import PurePosixPath

from blocksearch.extract.languages import FILE_TYPES, detect_language, extension_of, normalize_language
from blocksearch.query.plan import Filter, FilterKind, QueryPlan

_GLOB_CHARS = set("*?[")
# `lang:typescript` also covers TSX sources.
_LANGUAGE_FAMILIES = {"typescript": {"typescript", "tsx"}}


def _is_glob(pattern: str) -> bool:
    return any(char in _GLOB_CHARS for char in pattern)


def _glob_match(text: str, pattern: str) -> bool:
    if fnmatch.fnmatchcase(text, pattern):
        return True
    # `src/**/x.py` should also match `src/x.py`.
    return "**/" in pattern and fnmatch.fnmatchcase(text, pattern.replace("**/", ""))


def _ext_matches(path: str, pattern: str) -> bool:
    wanted = {part.strip().lstrip(".").lower() for part in pattern.split(",") if part.strip()}
    return extension_of(path) in wanted


def _file_matches(path: str, pattern: str) -> bool:
    if _is_glob(pattern):
        return _glob_match(path, pattern) or _glob_match(PurePosixPath(path).name, pattern)
    return pattern in path


def _dir_matches(path: str, pattern: str) -> bool:
    parent = PurePosixPath(path).parent
    directories = [part for part in parent.parts if part not in ("/", ".")]
    pattern = pattern.strip("/")
    if _is_glob(pattern):
        prefixes = ["/".join(directories[: index + 1]) for index in range(len(directories))]
        return any(_glob_match(name, pattern) for name in directories + prefixes)
    return f"/{pattern}/" in f"/{'/'.join(directories)}/"


def _type_matches(path: str, pattern: str) -> bool:
    key = pattern.lower()
    extensions = FILE_TYPES.get(key, {key})
    return extension_of(path) in extensions


def _lang_matches(path: str, pattern: str) -> bool:
    wanted = normalize_language(pattern)
    return detect_language(path) in _LANGUAGE_FAMILIES.get(wanted, {wanted})


_PREDICATES: dict[FilterKind, Callable[[str, str], bool]] = {
    FilterKind.EXT: _ext_matches,
    FilterKind.FILE: _file_matches,
    FilterKind.DIR: _dir_matches,
    FilterKind.TYPE: _type_matches,
    FilterKind.LANG: _lang_matches,
}


def filter_matches(item: Filter, path: str) -> bool:
    return _PREDICATES[item.kind](path.replace("\\", "/"), item.pattern)


def file_passes(plan: QueryPlan, path: str) -> bool:
    """Same-kind filters OR together; different kinds AND."""

    grouped: dict[FilterKind, list[Filter]] = {}
    for item in plan.filters:
        grouped.setdefault(item.kind, []).append(item)
    return all(
        any(filter_matches(item, path) for item in items) for items in grouped.values()
    )
