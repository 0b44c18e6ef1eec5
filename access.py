"""
Allow-list state and path validation.

AllowedDirectories owns the set of directories the server may touch.
PathValidator is the single gate every tool passes a user-supplied path
through before doing any I/O; it returns the path to actually use.
"""

import logging
import os
import stat
import threading
from pathlib import Path

from errors import (
    AccessDeniedError,
    ConfigurationError,
    MalformedPathError,
    ParentDirectoryMissingError,
)
from path_util import (
    canonical_path,
    expand_home,
    is_absolute,
    is_path_within_allowed_directories,
    strip_path_quotes,
)

logger = logging.getLogger(__name__)


class AllowedDirectories:
    """Allow-list of absolute, normalized directories. Replaced whole, never edited."""

    def __init__(self, directories: list[str] | None = None):
        self._lock = threading.Lock()
        self._dirs: tuple[str, ...] = ()
        if directories:
            self.replace_all(directories)

    def replace_all(self, directories) -> None:
        normalized = []
        for directory in directories:
            entry = canonical_path(os.fspath(directory))
            if "\x00" in entry or not is_absolute(entry):
                raise MalformedPathError(f"Allowed directories must be absolute paths: {directory!r}")
            normalized.append(entry)
        with self._lock:
            self._dirs = tuple(normalized)
        logger.debug("Allowed directories set to %s", normalized)

    def snapshot(self) -> list[str]:
        return list(self._dirs)

    def __len__(self) -> int:
        return len(self._dirs)


class PathValidator:
    """
    Resolve a requested path and check it against the allow-list twice:
    once as written, and once after symlinks are resolved.

    A path outside the allow-list is rejected before any filesystem call.
    Targets that do not exist yet are accepted when their parent resolves
    inside an allowed directory, so tools can create files and directories.
    """

    def __init__(self, allowed: AllowedDirectories):
        self.allowed = allowed

    def validate(self, requested_path: str) -> Path:
        if not isinstance(requested_path, str):
            raise MalformedPathError(f"Path must be a string, got {type(requested_path).__name__}")
        if "\x00" in requested_path:
            raise MalformedPathError(f"Path contains a NUL byte: {requested_path!r}")

        # Quotes and spaces are part of the name here: the string checked is
        # the string returned.
        absolute = os.path.abspath(expand_home(requested_path))
        normalized = canonical_path(absolute)

        allowed = self.allowed.snapshot()
        if not is_path_within_allowed_directories(normalized, allowed):
            logger.warning("Access denied: %s", absolute)
            raise AccessDeniedError(absolute, allowed)

        try:
            real = Path(absolute).resolve(strict=True)
        except FileNotFoundError:
            return self._validate_new_path(absolute, allowed)

        if not is_path_within_allowed_directories(canonical_path(str(real)), allowed):
            logger.warning("Symlink escape denied: %s -> %s", absolute, real)
            raise AccessDeniedError(str(real), allowed, "symlink target outside allowed directories")
        return real

    def _validate_new_path(self, absolute: str, allowed: list[str]) -> Path:
        parent = os.path.dirname(absolute)
        try:
            real_parent = Path(parent).resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise ParentDirectoryMissingError(parent) from e

        if not is_path_within_allowed_directories(canonical_path(str(real_parent)), allowed):
            raise AccessDeniedError(
                str(real_parent), allowed, "parent directory outside allowed directories"
            )
        return Path(absolute)

    def is_allowed(self, requested_path: str) -> bool:
        """Boolean form of validate() for filtering traversal results."""
        try:
            self.validate(requested_path)
        except (AccessDeniedError, ParentDirectoryMissingError, MalformedPathError):
            return False
        return True


def resolve_startup_directories(raw_dirs: list[str]) -> list[str]:
    """
    Turn command-line directories into allow-list entries.

    Symlinks are resolved when possible; a directory that cannot be resolved
    keeps its absolute form. Each entry must then be an existing directory.
    """
    resolved = []
    for raw in raw_dirs:
        absolute = os.path.abspath(expand_home(strip_path_quotes(raw)))
        try:
            entry = canonical_path(str(Path(absolute).resolve(strict=True)))
        except OSError:
            entry = canonical_path(absolute)
        try:
            mode = os.stat(entry).st_mode
        except OSError as e:
            raise ConfigurationError(f"Error accessing directory {entry}: {e}") from e
        if not stat.S_ISDIR(mode):
            raise ConfigurationError(f"Error: {entry} is not a directory")
        resolved.append(entry)
    return resolved
