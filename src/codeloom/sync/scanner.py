"""Gitignore-aware workspace walk for the initial index build."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import pathspec

from codeloom.constants import BINARY_DETECTION_BUFFER, MAX_INDEXED_FILE_BYTES
from codeloom.intelligence.parser import is_supported


def load_ignore_spec(
    root: Path, extra_patterns: Iterable[str] = ()
) -> pathspec.PathSpec:
    """Load .gitignore patterns (plus ``extra_patterns``) using pathspec."""
    lines: list[str] = list(extra_patterns)
    gitignore = root / ".gitignore"
    if gitignore.exists():
        try:
            with open(gitignore, encoding="utf-8") as f:
                lines.extend(f.read().splitlines())
        except OSError:
            pass
    return pathspec.PathSpec.from_lines("gitwildmatch", lines)


def is_binary(path: Path) -> bool:
    """Return True if the file appears to be binary (null byte in first N bytes)."""
    try:
        with open(path, "rb") as f:
            chunk = f.read(BINARY_DETECTION_BUFFER)
        return b"\x00" in chunk
    except OSError:
        return True


def should_index(
    path: Path,
    root: Path,
    skip_dirs: set[str],
    ignore_spec: pathspec.PathSpec,
) -> bool:
    """Whether a (possibly deleted) file path belongs in the index."""
    try:
        rel = path.relative_to(root)
    except ValueError:
        return False
    if any(
        part.startswith(".") or part in skip_dirs for part in rel.parts[:-1]
    ):
        return False
    rel_str = rel.as_posix()
    if ignore_spec.match_file(rel_str):
        return False
    return is_supported(rel_str)


def walk_source_files(
    root: Path,
    skip_dirs: set[str],
    ignore_spec: pathspec.PathSpec,
) -> list[Path]:
    """Walk the file tree, respecting skip dirs and gitignore patterns.

    Symlinks that resolve outside the root are skipped to prevent
    directory traversal. Only supported, non-binary files under the
    size cap are returned.
    """
    resolved_root = root.resolve()
    return [
        p
        for p in _walk(root, root, skip_dirs, ignore_spec, resolved_root)
        if is_supported(p.name)
        and p.stat().st_size <= MAX_INDEXED_FILE_BYTES
        and not is_binary(p)
    ]


def _walk(
    current: Path,
    root: Path,
    skip_dirs: set[str],
    ignore_spec: pathspec.PathSpec,
    resolved_root: Path,
) -> list[Path]:
    """Recursive walk helper with symlink protection."""
    files: list[Path] = []
    for item in sorted(current.iterdir()):
        if item.is_symlink():
            resolved = item.resolve()
            if not resolved.is_relative_to(resolved_root):
                continue
        rel = item.relative_to(root).as_posix()
        if item.is_dir():
            if item.name.startswith(".") or item.name in skip_dirs:
                continue
            if ignore_spec.match_file(rel + "/"):
                continue
            files.extend(
                _walk(item, root, skip_dirs, ignore_spec, resolved_root)
            )
        elif item.is_file():
            if not ignore_spec.match_file(rel):
                files.append(item)
    return files
