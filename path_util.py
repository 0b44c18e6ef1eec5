"""
Path normalization and containment checks for the secure filesystem server.

Every path the server compares is first brought into one canonical string
form (canonical_path, or normalize_path for user-typed text), then tested
against the allow-list with a strict separator-boundary prefix rule
(is_path_within_allowed_directories).

Windows handling depends on the host: a path like /c/Users is POSIX on Linux
but the C: drive on Windows. Functions take an optional ``windows`` flag so
the decision can be forced; by default it follows ``os.name``.
"""

import ntpath
import os
import posixpath
import re

from errors import MalformedPathError

IS_WINDOWS = os.name == "nt"

_QUOTES = re.compile(r"^['\"]|['\"]$")
_WSL_MOUNT = re.compile(r"^/mnt/[a-zA-Z]/")
_SLASH_DRIVE = re.compile(r"^/[a-zA-Z]/")
_DRIVE = re.compile(r"^[a-zA-Z]:")
_BARE_DRIVE_ROOT = re.compile(r"^[a-zA-Z]:\\?$")


def _use_windows(windows: bool | None) -> bool:
    return IS_WINDOWS if windows is None else windows


def expand_home(path: str) -> str:
    """Expand a leading ``~`` or ``~/`` to the user's home directory."""
    if path == "~":
        return os.path.expanduser("~")
    if path.startswith("~/"):
        return os.path.join(os.path.expanduser("~"), path[2:])
    return path


def convert_to_windows_path(path: str, windows: bool | None = None) -> str:
    """
    Convert a /c/... path to C:\\... on a Windows host and give drive-letter
    paths backslash separators. WSL mount paths are left alone.
    """
    if path.startswith("/mnt/"):
        return path
    if _SLASH_DRIVE.match(path) and _use_windows(windows):
        return path[1].upper() + ":" + path[2:].replace("/", "\\")
    if _DRIVE.match(path):
        return path.replace("/", "\\")
    return path


def strip_path_quotes(path: str) -> str:
    """Remove surrounding whitespace and quote characters, however deeply nested."""
    previous = None
    while path != previous:
        previous = path
        path = _QUOTES.sub("", path.strip())
    return path


def normalize_path(path: str, windows: bool | None = None) -> str:
    """
    Return the canonical comparable form of user-typed path text.

    Strips whitespace and surrounding quotes, collapses duplicate separators,
    drops trailing separators (the root keeps its slash) and uppercases the
    drive letter. Best effort: odd input is returned rather than rejected.

    Quote stripping changes which file a string names, so paths that came
    from the filesystem go through canonical_path instead.
    """
    if not isinstance(path, str):
        return path
    previous = None
    while path != previous:
        previous = path
        path = canonical_path(strip_path_quotes(path), windows) if path else "/"
    return path


def canonical_path(path: str, windows: bool | None = None) -> str:
    """
    Separator and drive-letter canonicalization only. The result names the
    same filesystem entry as the input.
    """
    if not isinstance(path, str):
        return path
    win = _use_windows(windows)
    if not path:
        return "/"

    is_posix = path.startswith("/") and (
        bool(_WSL_MOUNT.match(path)) or not win or not _SLASH_DRIVE.match(path)
    )
    if is_posix:
        collapsed = re.sub(r"/+", "/", path).rstrip("/")
        return collapsed or "/"

    path = convert_to_windows_path(path, windows=win)
    unc = path.startswith("\\\\")
    if unc:
        path = "\\\\" + re.sub(r"\\+", r"\\", path.lstrip("\\"))
    else:
        path = re.sub(r"\\+", r"\\", path)

    if win or unc or _DRIVE.match(path):
        normalized = ntpath.normpath(path)
        if unc and not normalized.startswith("\\\\"):
            normalized = "\\\\" + normalized.lstrip("\\")
    else:
        normalized = posixpath.normpath(path)

    if _DRIVE.match(normalized):
        return normalized[0].upper() + normalized[1:]
    return normalized


def _canonical(path, what: str, win: bool) -> str:
    """Type/NUL/absolute checks shared by candidate and allowed directories."""
    if not isinstance(path, str) or not path:
        raise MalformedPathError(f"{what} must be a non-empty string, got {path!r}")
    if "\x00" in path:
        raise MalformedPathError(f"{what} contains a NUL byte: {path!r}")
    flavor = ntpath if win else posixpath
    canonical = flavor.normpath(path)
    if win and re.match(r"^[a-zA-Z]:$", canonical):
        canonical += "\\"
    if not flavor.isabs(canonical):
        raise MalformedPathError(f"{what} must be absolute after normalization: {path}")
    return canonical


def is_path_within_allowed_directories(
    absolute_path: str,
    allowed_directories: list[str],
    windows: bool | None = None,
) -> bool:
    """
    True if absolute_path equals or lies beneath one of allowed_directories.

    A prefix only counts on a separator boundary, so /home/user-evil is not
    inside /home/user. Raises MalformedPathError for inputs that indicate a
    caller bug rather than an outside path.
    """
    win = _use_windows(windows)
    sep = "\\" if win else "/"
    candidate = _canonical(absolute_path, "Path", win)
    if not allowed_directories:
        return False

    for directory in allowed_directories:
        allowed = _canonical(directory, "Allowed directory", win)
        if candidate == allowed:
            return True
        if allowed == sep:
            if candidate.startswith(sep):
                return True
            continue
        if win and _BARE_DRIVE_ROOT.match(allowed):
            if candidate[:1].lower() == allowed[:1].lower() and candidate[1:3] == ":\\":
                return True
            continue
        if candidate.startswith(allowed + sep):
            return True
    return False


def is_absolute(path: str, windows: bool | None = None) -> bool:
    """Absolute test using the same flavor as containment checks."""
    win = _use_windows(windows)
    if win and re.match(r"^[a-zA-Z]:$", path):
        return True
    return (ntpath if win else posixpath).isabs(path)
