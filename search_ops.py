"""
Directory listing and search.

Walks never follow symlinks and every entry is validated on its own: being
inside a validated directory does not make a child safe, since the child may
itself be a link pointing elsewhere.
"""

import difflib
import fnmatch
import logging
import os
import re
from pathlib import Path

from access import PathValidator
from file_ops import format_size

logger = logging.getLogger(__name__)


def _excluded(rel_path: str, name: str, patterns: list[str]) -> bool:
    return any(fnmatch.fnmatch(name, p) or fnmatch.fnmatch(rel_path, p) for p in patterns)


def walk_files(validator: PathValidator, base: Path, exclude_patterns: list[str] | None = None):
    """Yield (path, relative posix path) for every allowed file under base."""
    exclude = exclude_patterns or []
    for root, dirs, files in os.walk(base, followlinks=False):
        root_path = Path(root)
        kept = []
        for d in sorted(dirs):
            rel = (root_path / d).relative_to(base).as_posix()
            if not _excluded(rel, d, exclude) and validator.is_allowed(str(root_path / d)):
                kept.append(d)
        dirs[:] = kept
        for name in sorted(files):
            candidate = root_path / name
            rel = candidate.relative_to(base).as_posix()
            if _excluded(rel, name, exclude):
                continue
            if not validator.is_allowed(str(candidate)):
                logger.debug("Skipping entry outside allowed directories: %s", candidate)
                continue
            yield candidate, rel


def list_directory(path: Path) -> str:
    entries = []
    for child in sorted(path.iterdir(), key=lambda p: p.name.lower()):
        prefix = "[DIR]" if child.is_dir() else "[FILE]"
        entries.append(f"{prefix} {child.name}")
    return "\n".join(entries)


def list_directory_with_sizes(path: Path, sort_by: str = "name") -> str:
    rows = []
    for child in path.iterdir():
        is_dir = child.is_dir()
        try:
            size = 0 if is_dir else child.stat().st_size
        except OSError:
            size = 0
        rows.append((child.name, is_dir, size))
    if sort_by == "size":
        rows.sort(key=lambda r: r[2], reverse=True)
    else:
        rows.sort(key=lambda r: r[0].lower())

    lines = [
        f"{'[DIR]' if is_dir else '[FILE]'} {name:<30} {'' if is_dir else format_size(size):>10}"
        for name, is_dir, size in rows
    ]
    files = sum(1 for r in rows if not r[1])
    total = sum(r[2] for r in rows)
    lines.append("")
    lines.append(f"Total: {files} files, {len(rows) - files} directories")
    lines.append(f"Combined size: {format_size(total)}")
    return "\n".join(lines)


def directory_tree(
    validator: PathValidator,
    path: Path,
    exclude_patterns: list[str] | None = None,
    _base: Path | None = None,
) -> list[dict]:
    """Nested [{name, type, children?}] for path."""
    base = _base or path
    exclude = exclude_patterns or []
    tree = []
    for child in sorted(path.iterdir(), key=lambda p: p.name):
        rel = child.relative_to(base).as_posix()
        if _excluded(rel, child.name, exclude) or not validator.is_allowed(str(child)):
            continue
        if child.is_dir() and not child.is_symlink():
            tree.append(
                {
                    "name": child.name,
                    "type": "directory",
                    "children": directory_tree(validator, child, exclude, base),
                }
            )
        else:
            tree.append({"name": child.name, "type": "file"})
    return tree


def search_files(
    validator: PathValidator,
    base: Path,
    pattern: str,
    exclude_patterns: list[str] | None = None,
) -> list[str]:
    """Files whose name or relative path matches a glob (bare words match as substrings)."""
    glob = pattern if any(c in pattern for c in "*?[") else f"*{pattern}*"
    matches = []
    for candidate, rel in walk_files(validator, base, exclude_patterns):
        if fnmatch.fnmatch(candidate.name.lower(), glob.lower()) or fnmatch.fnmatch(rel, glob):
            matches.append(str(candidate))
    return matches


def content_search(
    validator: PathValidator,
    base: Path,
    pattern: str,
    file_pattern: str = "*",
    max_results: int = 100,
    ignore_case: bool = False,
) -> list[str]:
    """Lines matching regex pattern, as 'relpath:lineno: text'."""
    regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    results: list[str] = []
    for candidate, rel in walk_files(validator, base):
        if not fnmatch.fnmatch(candidate.name, file_pattern):
            continue
        try:
            with candidate.open("r", encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    if regex.search(line):
                        results.append(f"{rel}:{lineno}: {line.rstrip()}")
                        if len(results) >= max_results:
                            return results
        except (UnicodeDecodeError, OSError):
            # binary or unreadable
            continue
    return results


def similarity(a: str, b: str) -> float:
    """Case-insensitive similarity in [0, 1] (difflib ratio)."""
    if not a and not b:
        return 1.0
    return difflib.SequenceMatcher(None, a.lower(), b.lower()).ratio()


def fuzzy_search(
    validator: PathValidator,
    base: Path,
    query: str,
    threshold: float = 0.6,
    max_results: int = 50,
) -> list[tuple[str, float]]:
    """Files and directories whose name resembles query, best first, as (relpath, score)."""
    if not 0 <= threshold <= 1:
        raise ValueError("threshold must be between 0 and 1")
    results = []
    for root, dirs, files in os.walk(base, followlinks=False):
        root_path = Path(root)
        dirs[:] = sorted(d for d in dirs if validator.is_allowed(str(root_path / d)))
        for name in dirs + sorted(files):
            candidate = root_path / name
            if name in files and not validator.is_allowed(str(candidate)):
                continue
            score = similarity(name, query)
            if score >= threshold:
                results.append((candidate.relative_to(base).as_posix(), score))
    results.sort(key=lambda r: r[1], reverse=True)
    return results[:max_results]
