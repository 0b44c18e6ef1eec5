"""
File reading, writing and editing helpers for the filesystem tools.

Every function here takes paths that PathValidator has already approved;
none of them check the allow-list themselves.
"""

import base64
import difflib
import os
import re
import secrets
import shutil
from collections import deque
from datetime import datetime
from pathlib import Path

# MIME types by extension (extend as needed)
_MIME = {
    ".py": "text/x-python",
    ".tsx": "text/tsx",
    ".ts": "text/typescript",
    ".js": "text/javascript",
    ".jsx": "text/jsx",
    ".json": "application/json",
    ".toml": "text/x-toml",
    ".yaml": "text/yaml",
    ".yml": "text/yaml",
    ".md": "text/markdown",
    ".svg": "image/svg+xml",
    ".html": "text/html",
    ".css": "text/css",
    ".sh": "text/x-shellscript",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
}


MAX_BINARY_SIZE = 10 * 1024 * 1024

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def get_mime(path: Path) -> str:
    """Infer MIME type from file extension."""
    return _MIME.get(path.suffix.lower(), "text/plain")


def format_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    if size <= 0:
        return f"{size} B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{size} B"
    return f"{value:.2f} {units[unit]}"


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n")


def unified_diff(original: str, modified: str, filepath: str = "file") -> str:
    """Unified diff of two texts, labelled like a git patch."""
    lines = difflib.unified_diff(
        normalize_line_endings(original).splitlines(keepends=True),
        normalize_line_endings(modified).splitlines(keepends=True),
        fromfile=f"{filepath}\toriginal",
        tofile=f"{filepath}\tmodified",
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines)


def read_text(path: Path, head: int | None = None, tail: int | None = None) -> str:
    """
    Read a UTF-8 text file, optionally only its first `head` or last `tail` lines.
    head takes precedence when both are given.
    """
    if head is not None and head < 0 or tail is not None and tail < 0:
        raise ValueError("head and tail must be non-negative")
    with path.open("r", encoding="utf-8", errors="replace") as f:
        if head is not None:
            lines = []
            for idx, line in enumerate(f):
                if idx >= head:
                    break
                lines.append(line)
            return "".join(lines)
        if tail is not None:
            return "".join(deque(f, maxlen=tail))
        return f.read()


def read_base64(path: Path) -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")


def read_binary(path: Path, max_size: int = MAX_BINARY_SIZE) -> tuple[int, str]:
    """Return (size, base64 data); files larger than max_size are refused."""
    size = path.stat().st_size
    if size > max_size:
        raise ValueError(f"File size {size} exceeds maximum {max_size} bytes")
    return size, read_base64(path)


def write_text_atomic(path: Path, content: str) -> None:
    """Write content; an existing file is replaced through a temp file and rename."""
    try:
        with path.open("x", encoding="utf-8") as f:
            f.write(content)
        return
    except FileExistsError:
        pass
    tmp = path.with_name(f"{path.name}.{secrets.token_hex(8)}.tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def _apply_edit(content: str, old_text: str, new_text: str) -> str:
    old = normalize_line_endings(old_text)
    new = normalize_line_endings(new_text)
    if old in content:
        return content.replace(old, new, 1)

    # Fall back to a line match that ignores surrounding whitespace.
    old_lines = old.split("\n")
    content_lines = content.split("\n")
    for i in range(len(content_lines) - len(old_lines) + 1):
        window = content_lines[i : i + len(old_lines)]
        if all(a.strip() == b.strip() for a, b in zip(old_lines, window)):
            indent = content_lines[i][: len(content_lines[i]) - len(content_lines[i].lstrip())]
            replacement = [
                indent + line.lstrip() if j == 0 else line for j, line in enumerate(new.split("\n"))
            ]
            content_lines[i : i + len(old_lines)] = replacement
            return "\n".join(content_lines)
    raise ValueError(f"Could not find exact match for edit:\n{old_text}")


def _apply_regex_edit(content: str, pattern: str, replacement: str, flags: str = "g") -> str:
    """
    re.sub with JavaScript-style flag letters: g replaces every match
    (otherwise only the first), i, m and s map to the re flags.
    """
    re_flags = 0
    for letter in flags:
        if letter == "g":
            continue
        if letter not in _REGEX_FLAGS:
            raise ValueError(f"Unsupported regex flag: {letter}")
        re_flags |= _REGEX_FLAGS[letter]
    count = 0 if "g" in flags else 1
    return re.sub(pattern, replacement, content, count=count, flags=re_flags)


def apply_edits(path: Path, edits: list[dict], dry_run: bool = False) -> str:
    """
    Apply oldText -> newText replacements in order and return a fenced diff.
    An edit with useRegex treats oldText as a pattern (see _apply_regex_edit).
    Nothing is written on dry_run or when any edit fails to match.
    """
    original = normalize_line_endings(path.read_text(encoding="utf-8"))
    modified = original
    for edit in edits:
        if edit.get("useRegex"):
            modified = _apply_regex_edit(
                modified, edit["oldText"], edit["newText"], edit.get("flags") or "g"
            )
        else:
            modified = _apply_edit(modified, edit["oldText"], edit["newText"])

    diff = unified_diff(original, modified, str(path))
    fence = "```"
    while fence in diff:
        fence += "`"
    if not dry_run:
        write_text_atomic(path, modified)
    return f"{fence}diff\n{diff}{fence}\n\n"


def file_info(path: Path) -> dict:
    stats = path.stat()
    created = getattr(stats, "st_birthtime", stats.st_ctime)
    return {
        "path": str(path),
        "size": stats.st_size,
        "created": datetime.fromtimestamp(created).isoformat(),
        "modified": datetime.fromtimestamp(stats.st_mtime).isoformat(),
        "accessed": datetime.fromtimestamp(stats.st_atime).isoformat(),
        "isDirectory": path.is_dir(),
        "isFile": path.is_file(),
        "permissions": oct(stats.st_mode & 0o777)[2:],
    }


def create_backup(path: Path) -> Path:
    """Copy path to <path>.backup.<timestamp> next to it."""
    stamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
    backup = path.with_name(f"{path.name}.backup.{stamp}")
    shutil.copy2(path, backup)
    return backup


def copy_path(source: Path, destination: Path, preserve_timestamps: bool = True) -> None:
    """Copy a file or directory tree; timestamps are kept unless preserve_timestamps is off."""
    copy_function = shutil.copy2 if preserve_timestamps else shutil.copy
    if source.is_dir():
        shutil.copytree(
            source, destination, symlinks=True, dirs_exist_ok=True, copy_function=copy_function
        )
    else:
        copy_function(source, destination)


def delete_path(path: Path, recursive: bool = False) -> None:
    if path.is_dir() and not path.is_symlink():
        if recursive:
            shutil.rmtree(path)
        else:
            path.rmdir()
    else:
        path.unlink()
