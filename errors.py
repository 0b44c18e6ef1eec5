"""
Exceptions raised by the path access-control core.

Tools turn PathAccessError (and plain OSError) into "Error: ..." results;
ConfigurationError is fatal for startup or for a client session.
"""


class PathAccessError(Exception):
    """Base class for rejections issued by path validation."""


class MalformedPathError(PathAccessError, ValueError):
    """A path that is not a string, contains NUL, or is not absolute where it must be."""


class AccessDeniedError(PathAccessError, PermissionError):
    """Path (or its symlink target, or its parent) lies outside every allowed directory."""

    def __init__(self, path: str, allowed: list[str], reason: str = "path outside allowed directories"):
        self.path = path
        self.allowed = list(allowed)
        listed = ", ".join(self.allowed) if self.allowed else "(none)"
        super().__init__(f"Access denied - {reason}: {path} not in {listed}")


class ParentDirectoryMissingError(PathAccessError, FileNotFoundError):
    """Target does not exist and neither does its parent directory."""

    def __init__(self, parent: str):
        self.parent = parent
        super().__init__(f"Parent directory does not exist: {parent}")


class ConfigurationError(RuntimeError):
    """The server has no usable allowed directories."""
