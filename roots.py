"""
MCP roots support: turn client-advertised roots into allow-list entries.

A client that supports roots is asked for them when its session starts and
again after it sends notifications/roots/list_changed. Valid directories
replace the allow-list; if none are valid the current allow-list stays.
"""

import asyncio
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

from access import AllowedDirectories
from errors import ConfigurationError
from path_util import canonical_path, expand_home, strip_path_quotes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RootSpec:
    """A root as supplied by the client: file:// URI or bare path, plus a display name."""

    uri: str
    name: str | None = None


def _root_uri(spec) -> str:
    if isinstance(spec, str):
        return spec
    if isinstance(spec, dict):
        return str(spec.get("uri", ""))
    return str(spec.uri)


def parse_root_uri(root_uri: str) -> str | None:
    """
    Resolve a root URI to a canonical real directory path.

    Returns None when the path cannot be resolved (missing, unreadable, loop).
    """
    try:
        if root_uri.startswith("file://"):
            raw_path = unquote(root_uri[len("file://"):])
        else:
            raw_path = strip_path_quotes(root_uri)
        absolute = os.path.abspath(expand_home(raw_path))
        resolved = Path(absolute).resolve(strict=True)
    except (OSError, RuntimeError, ValueError) as e:
        logger.debug("Could not resolve root %s: %s", root_uri, e)
        return None
    return canonical_path(str(resolved))


def get_valid_root_directories(requested_roots) -> list[str]:
    """Return the requested roots that resolve to existing directories, in input order."""
    validated: list[str] = []
    for spec in requested_roots:
        uri = _root_uri(spec)
        resolved = parse_root_uri(uri)
        if not resolved:
            logger.error("Skipping invalid path or inaccessible: %s", uri)
            continue
        try:
            mode = os.stat(resolved).st_mode
        except OSError as e:
            logger.error("Skipping invalid directory: %s due to error: %s", resolved, e)
            continue
        if stat.S_ISDIR(mode):
            validated.append(resolved)
        else:
            logger.error("Skipping non-directory root: %s", resolved)
    return validated


class RootsReconciler:
    """Replace the allow-list with the valid subset of a client's roots."""

    def __init__(self, allowed: AllowedDirectories):
        self.allowed = allowed

    def reconcile(self, requested_roots) -> list[str]:
        validated = get_valid_root_directories(requested_roots)
        if validated:
            self.allowed.replace_all(validated)
            logger.info(
                "Updated allowed directories from MCP roots: %d valid directories", len(validated)
            )
        else:
            logger.warning("No valid root directories provided by client")
        return validated


NO_DIRECTORIES_MESSAGE = "Server cannot operate: No allowed directories available."


def check_startup(supports_roots: bool, allowed: AllowedDirectories) -> None:
    """Raise ConfigurationError if a client without roots meets an empty allow-list."""
    if not supports_roots and not len(allowed):
        raise ConfigurationError(NO_DIRECTORIES_MESSAGE)


class RootsSync:
    """
    Decides when a session needs its roots fetched again.

    The notification handler only calls mark_stale(); the next request in a
    session runs ensure_current(), which talks to the client. Concurrent
    requests of one session wait for a single fetch.
    """

    def __init__(self, reconciler: RootsReconciler):
        self.reconciler = reconciler
        self._session = None
        self._stale = True
        self._lock = asyncio.Lock()

    def mark_stale(self) -> None:
        self._stale = True

    async def ensure_current(self, session, supports_roots: bool, list_roots) -> None:
        """
        Sync roots for session if it is new or roots changed.

        list_roots is an async callable returning the client's roots.
        Raises ConfigurationError when the client cannot supply roots and the
        allow-list is empty. A failed fetch is retried on the next call.
        """
        if session is not self._session:
            self._session = session
            self._stale = True
            self._lock = asyncio.Lock()

        async with self._lock:
            if not self._stale:
                return

            if not supports_roots:
                check_startup(supports_roots, self.reconciler.allowed)
                logger.info(
                    "Client does not support MCP Roots, using allowed directories set from server args: %s",
                    ", ".join(self.reconciler.allowed.snapshot()),
                )
                self._stale = False
                return

            try:
                roots = await list_roots()
            except Exception as e:
                logger.error("Failed to request roots from client: %s", e)
                return
            if roots:
                self.reconciler.reconcile(roots)
            else:
                logger.warning("Client returned no roots set, keeping current settings")
            self._stale = False
