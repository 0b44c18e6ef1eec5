"""
Secure Filesystem MCP Server.

Exposes file, search, compare, hash, compression, git and syntax-check
operations as Tools. Every path argument is validated against the allowed
directories (command line, or the client's MCP roots) before any I/O.
"""

import argparse
import json
import logging
import os
import re
import subprocess
import sys
from pathlib import Path
from typing import Any

import brotli
import mcp.types as mt
from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

import check_ops
import file_ops
import git_ops
import search_ops
import utility_ops
from access import AllowedDirectories, PathValidator, resolve_startup_directories
from errors import ConfigurationError, PathAccessError
from middleware import AuditMiddleware, RateLimiter, RateLimitMiddleware, RootsMiddleware
from roots import RootsReconciler, RootsSync

# Logging: level from env (default INFO); stderr keeps the stdio transport clean
_log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, _log_level, logging.INFO))
logger = logging.getLogger(__name__)

_TOOL_ERRORS = (PathAccessError, OSError, ValueError, re.error, git_ops.GitError)

allowed_directories = AllowedDirectories()
validator = PathValidator(allowed_directories)
roots_sync = RootsSync(RootsReconciler(allowed_directories))
_roots_middleware = RootsMiddleware(roots_sync)

mcp = FastMCP(
    "SecureFilesystem",
    instructions=(
        "Use this server to read, write, search and inspect files inside the allowed "
        "directories (see list_allowed_directories). Paths may be absolute or relative "
        "to the server's working directory; ~ expands to the home directory. "
        "Git and syntax-check tools run against files in the same directories."
    ),
    middleware=[
        AuditMiddleware(),
        RateLimitMiddleware(
            RateLimiter(
                max_calls=int(os.environ.get("FS_MCP_RATE_LIMIT", "100")),
                window=float(os.environ.get("FS_MCP_RATE_WINDOW", "60")),
            )
        ),
        _roots_middleware,
    ],
)
mcp._mcp_server.notification_handlers[mt.RootsListChangedNotification] = (
    _roots_middleware.on_roots_list_changed
)


@mcp.custom_route("/health", methods=["GET"])
async def health(_request: Request) -> Response:
    """Health check for load balancers and k8s probes."""
    return JSONResponse({"status": "ok"})


# ---- Tools: reading ----


@mcp.tool(tags={"files", "read"}, annotations={"readOnlyHint": True})
def read_text_file(path: str, head: int | None = None, tail: int | None = None) -> str:
    """Read a UTF-8 text file. head/tail limit the result to the first/last N lines."""
    try:
        target = validator.validate(path)
        if target.is_dir():
            return f"Error: Cannot read directory as file: {target}"
        return file_ops.read_text(target, head, tail)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"


@mcp.tool(tags={"files", "read"}, annotations={"readOnlyHint": True})
def read_media_file(path: str) -> str:
    """Read an image or audio file. Returns JSON with base64 data and MIME type."""
    try:
        target = validator.validate(path)
        return json.dumps({"mimeType": file_ops.get_mime(target), "data": file_ops.read_base64(target)})
    except _TOOL_ERRORS as e:
        return f"Error: {e}"


@mcp.tool(tags={"files", "read"}, annotations={"readOnlyHint": True})
def read_binary_file(path: str, max_size: int = file_ops.MAX_BINARY_SIZE) -> str:
    """Read any file as base64. Files larger than max_size bytes (default 10MB) are refused."""
    try:
        size, data = file_ops.read_binary(validator.validate(path), max_size)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return f"Binary file ({size} bytes):\nBase64: {data}"


@mcp.tool(tags={"files", "read"}, annotations={"readOnlyHint": True})
def read_multiple_files(paths: list[str]) -> str:
    """Read several files at once; a failing file is reported inline, not fatal."""
    if not paths:
        return "Error: At least one file path must be provided"
    sections = []
    for path in paths:
        try:
            target = validator.validate(path)
            sections.append(f"{path}:\n{file_ops.read_text(target)}\n")
        except _TOOL_ERRORS as e:
            sections.append(f"{path}: Error - {e}")
    return "\n---\n".join(sections)


@mcp.tool(tags={"files", "info"}, annotations={"readOnlyHint": True})
def get_file_info(path: str) -> str:
    """Size, timestamps, type and permissions of a file or directory."""
    try:
        target = validator.validate(path)
        info = file_ops.file_info(target)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return "\n".join(f"{key}: {value}" for key, value in info.items())


@mcp.tool(tags={"info"}, annotations={"readOnlyHint": True})
def list_allowed_directories() -> str:
    """List the directories this server is allowed to access."""
    dirs = allowed_directories.snapshot()
    if not dirs:
        return "No allowed directories configured"
    return "Allowed directories:\n" + "\n".join(dirs)


# ---- Tools: writing and file management ----


@mcp.tool(tags={"files", "write"}, annotations={"destructiveHint": True})
def write_file(path: str, content: str) -> str:
    """Create a file or overwrite it with UTF-8 content."""
    logger.info("write_file path=%s", path)
    try:
        target = validator.validate(path)
        file_ops.write_text_atomic(target, content)
    except _TOOL_ERRORS as e:
        logger.warning("write_file error: %s", e)
        return f"Error: {e}"
    return f"Successfully wrote to {path}"


@mcp.tool(tags={"files", "write"}, annotations={"destructiveHint": True})
def edit_file(
    path: str,
    edits: list[dict[str, Any]],
    dry_run: bool = False,
    backup: bool = False,
) -> str:
    """
    Apply oldText/newText replacements to a text file and return a git-style diff.
    An edit with useRegex=true treats oldText as a regular expression; flags
    (default "g") accepts g, i, m and s. With dry_run the diff is returned
    without changing the file; backup copies the file aside first.
    """
    try:
        target = validator.validate(path)
        backup_path = file_ops.create_backup(target) if backup and not dry_run else None
        result = file_ops.apply_edits(target, edits, dry_run)
        if backup_path:
            return f"{result}Backup created: {backup_path}"
        return result
    except KeyError as e:
        return f"Error: edit is missing {e}"
    except _TOOL_ERRORS as e:
        return f"Error: {e}"


@mcp.tool(tags={"files", "write"}, annotations={"destructiveHint": False})
def create_directory(path: str) -> str:
    """Create a directory (and missing parents); succeeds if it already exists."""
    try:
        target = validator.validate(path)
        target.mkdir(parents=True, exist_ok=True)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return f"Successfully created directory {path}"


@mcp.tool(tags={"files", "write"}, annotations={"destructiveHint": True})
def move_file(source: str, destination: str, overwrite: bool = False) -> str:
    """Move or rename a file or directory."""
    try:
        src = validator.validate(source)
        dst = validator.validate(destination)
        if dst.exists() and not overwrite:
            return f"Error: Destination {destination} already exists. Use overwrite=true to replace."
        os.replace(src, dst)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return f"Successfully moved {source} to {destination}"


@mcp.tool(tags={"files", "write"}, annotations={"destructiveHint": True})
def copy_file(
    source: str, destination: str, overwrite: bool = False, preserve_timestamps: bool = True
) -> str:
    """Copy a file or directory tree; timestamps are preserved unless preserve_timestamps is false."""
    try:
        src = validator.validate(source)
        dst = validator.validate(destination)
        if dst.exists() and not overwrite:
            return f"Error: Destination {destination} already exists. Use overwrite=true to replace."
        file_ops.copy_path(src, dst, preserve_timestamps)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return f"Successfully copied {source} to {destination}"


@mcp.tool(tags={"files", "write"}, annotations={"destructiveHint": True})
def delete_path(path: str, recursive: bool = False) -> str:
    """Delete a file, or a directory (non-empty directories need recursive=true)."""
    try:
        target = validator.validate(path)
        if target in [Path(d) for d in allowed_directories.snapshot()]:
            return f"Error: Refusing to delete allowed directory {target}"
        file_ops.delete_path(target, recursive)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return f"Successfully deleted {path}"


# ---- Tools: listing and search ----


@mcp.tool(tags={"list"}, annotations={"readOnlyHint": True})
def list_directory(path: str) -> str:
    """List directory entries with [DIR]/[FILE] prefixes."""
    try:
        target = validator.validate(path)
        return search_ops.list_directory(target) or "(empty directory)"
    except _TOOL_ERRORS as e:
        return f"Error: {e}"


@mcp.tool(tags={"list"}, annotations={"readOnlyHint": True})
def list_directory_with_sizes(path: str, sort_by: str = "name") -> str:
    """List directory entries with file sizes; sort_by is name or size."""
    if sort_by not in ("name", "size"):
        return "Error: sort_by must be one of: name, size"
    try:
        target = validator.validate(path)
        return search_ops.list_directory_with_sizes(target, sort_by)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"


@mcp.tool(tags={"list"}, annotations={"readOnlyHint": True})
def directory_tree(path: str, exclude_patterns: list[str] | None = None) -> str:
    """Recursive JSON tree of a directory; exclude_patterns are globs."""
    try:
        target = validator.validate(path)
        tree = search_ops.directory_tree(validator, target, exclude_patterns)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return json.dumps(tree, indent=2)


@mcp.tool(tags={"search"}, annotations={"readOnlyHint": True})
def search_files(path: str, pattern: str, exclude_patterns: list[str] | None = None) -> str:
    """Find files under path whose name or relative path matches a glob pattern."""
    try:
        base = validator.validate(path)
        if not base.is_dir():
            return f"Error: Search root must be a directory: {base}"
        matches = search_ops.search_files(validator, base, pattern, exclude_patterns)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return "\n".join(matches) if matches else "No matches found"


@mcp.tool(tags={"search"}, annotations={"readOnlyHint": True})
def content_search(
    path: str,
    pattern: str,
    file_pattern: str = "*",
    max_results: int = 100,
    ignore_case: bool = False,
) -> str:
    """Search file contents under path for a regular expression."""
    try:
        base = validator.validate(path)
        if not base.is_dir():
            return f"Error: Search root must be a directory: {base}"
        results = search_ops.content_search(
            validator, base, pattern, file_pattern, max_results, ignore_case
        )
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return "\n".join(results) if results else "No matches found"



@mcp.tool(tags={"search"}, annotations={"readOnlyHint": True})
def fuzzy_search(path: str, query: str, threshold: float = 0.6, max_results: int = 50) -> str:
    """Find files and directories whose name is similar to query (threshold 0-1)."""
    try:
        base = validator.validate(path)
        if not base.is_dir():
            return f"Error: Search root must be a directory: {base}"
        results = search_ops.fuzzy_search(validator, base, query, threshold, max_results)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    if not results:
        return "No fuzzy matches found"
    return "\n".join(f"{score * 100:.1f}% - {rel}" for rel, score in results)


# ---- Tools: compare, hash, compress, merge ----


@mcp.tool(tags={"compare"}, annotations={"readOnlyHint": True})
def file_compare(path1: str, path2: str) -> str:
    """Unified diff between two text files."""
    try:
        return utility_ops.compare_files(validator.validate(path1), validator.validate(path2))
    except _TOOL_ERRORS as e:
        return f"Error: {e}"


@mcp.tool(tags={"compare"}, annotations={"readOnlyHint": True})
def binary_compare(path1: str, path2: str) -> str:
    """Compare two files byte by byte."""
    try:
        return utility_ops.compare_binary(validator.validate(path1), validator.validate(path2))
    except _TOOL_ERRORS as e:
        return f"Error: {e}"


@mcp.tool(tags={"compare"}, annotations={"readOnlyHint": True})
def directory_compare(path1: str, path2: str) -> str:
    """Compare two directory trees by relative path and content hash."""
    try:
        result = utility_ops.compare_directories(
            validator, validator.validate(path1), validator.validate(path2)
        )
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return json.dumps(result, indent=2)


@mcp.tool(tags={"hash"}, annotations={"readOnlyHint": True})
def file_hash(path: str, algorithm: str = "sha256") -> str:
    """Hash a file with md5, sha1, sha256 or sha512."""
    try:
        digest = utility_ops.file_hash(validator.validate(path), algorithm)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return f"{algorithm.upper()}: {digest}\nFile: {path}"


@mcp.tool(tags={"hash"}, annotations={"readOnlyHint": True})
def batch_hash(paths: list[str], algorithm: str = "sha256") -> str:
    """Hash several files; failures are reported per file."""
    lines = []
    for path in paths:
        try:
            lines.append(f"{utility_ops.file_hash(validator.validate(path), algorithm)}  {path}")
        except _TOOL_ERRORS as e:
            lines.append(f"Error: {e}  {path}")
    return "\n".join(lines)


@mcp.tool(tags={"hash"}, annotations={"readOnlyHint": True})
def verify_hash(path: str, expected_hash: str, algorithm: str = "sha256") -> str:
    """Check a file against an expected hash."""
    try:
        actual = utility_ops.file_hash(validator.validate(path), algorithm)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    if actual.lower() == expected_hash.strip().lower():
        return f"Hash verified: {path} matches ({algorithm})"
    return f"Hash mismatch: {path}\nExpected: {expected_hash}\nActual:   {actual}"


@mcp.tool(tags={"hash"}, annotations={"readOnlyHint": True})
def directory_hash(path: str, algorithm: str = "sha256", include_hidden: bool = False) -> str:
    """Hash every file under a directory; returns JSON [{path, hash}]."""
    try:
        target = validator.validate(path)
        results = utility_ops.directory_hash(validator, target, algorithm, include_hidden)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return json.dumps(results, indent=2)


@mcp.tool(tags={"compress"}, annotations={"destructiveHint": False})
def compress_file(
    path: str, output_path: str | None = None, format: str = "gzip", level: int = 6
) -> str:
    """Compress a file with gzip or brotli; output defaults to <path>.gz or <path>.br."""
    try:
        source = validator.validate(path)
        suffix = ".br" if format == "brotli" else ".gz"
        output = validator.validate(output_path or f"{source}{suffix}")
        original, compressed = utility_ops.compress(source, output, level, format)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    ratio = (1 - compressed / original) * 100 if original else 0.0
    return (
        f"Compressed {path} -> {output}\n"
        f"Format: {format}\n"
        f"Original: {file_ops.format_size(original)}\n"
        f"Compressed: {file_ops.format_size(compressed)}\n"
        f"Ratio: {ratio:.1f}%"
    )


@mcp.tool(tags={"compress"}, annotations={"destructiveHint": False})
def decompress_file(path: str, output_path: str | None = None, format: str | None = None) -> str:
    """
    Decompress a gzip or brotli file. format is detected from a .gz/.br
    extension when omitted; output defaults to the path without it.
    """
    try:
        source = validator.validate(path)
        fmt = format or utility_ops.detect_compression_format(source)
        if fmt is None:
            return "Error: Cannot detect compression format. Please specify format explicitly."
        if output_path is None:
            if utility_ops.detect_compression_format(source) is None:
                return "Error: output_path is required when the file has no .gz or .br extension"
            output_path = str(source.with_suffix(""))
        output = validator.validate(output_path)
        size = utility_ops.decompress(source, output, fmt)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    except brotli.error as e:
        return f"Error: Invalid brotli data: {e}"
    return f"Decompressed {path} -> {output} ({file_ops.format_size(size)})"


@mcp.tool(tags={"merge"}, annotations={"destructiveHint": True})
def file_merge(
    paths: list[str],
    output_path: str,
    separator: str = "\n",
    remove_duplicate_lines: bool = False,
    sort: bool = False,
) -> str:
    """Concatenate text files into output_path, optionally de-duplicating and sorting lines."""
    if len(paths) < 2:
        return "Error: At least two files must be provided"
    try:
        sources = [validator.validate(p) for p in paths]
        output = validator.validate(output_path)
        contents = [s.read_text(encoding="utf-8", errors="replace") for s in sources]
        merged = utility_ops.merge_text(contents, separator, remove_duplicate_lines, sort)
        file_ops.write_text_atomic(output, merged)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return f"Merged {len(paths)} files into {output_path}"


@mcp.tool(tags={"merge"}, annotations={"destructiveHint": True})
def json_merge(paths: list[str], output_path: str, strategy: str = "deep") -> str:
    """Merge JSON objects from several files (deep or shallow) into output_path."""
    if len(paths) < 2:
        return "Error: At least two files must be provided"
    if strategy not in ("deep", "shallow"):
        return "Error: strategy must be one of: deep, shallow"
    try:
        documents = [utility_ops.load_json(validator.validate(p)) for p in paths]
        output = validator.validate(output_path)
        merged = utility_ops.merge_json(documents, strategy)
        file_ops.write_text_atomic(output, json.dumps(merged, indent=2) + "\n")
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return f"Merged {len(paths)} JSON files into {output_path} ({strategy})"


# ---- Tools: git passthrough ----


@mcp.tool(tags={"git"}, annotations={"readOnlyHint": True})
def git_status(path: str = ".", short: bool = False) -> str:
    """git status for the repository at path."""
    try:
        return git_ops.run_git(validator.validate(path), git_ops.status_args(short)) or "No git status output"
    except _TOOL_ERRORS as e:
        return f"Error: {e}"


@mcp.tool(tags={"git"}, annotations={"readOnlyHint": True})
def git_diff(path: str = ".", staged: bool = False, file: str | None = None, unified: int = 3) -> str:
    """git diff (working tree, or staged) for the repository at path."""
    try:
        repo = validator.validate(path)
        if file:
            validator.validate(str(repo / file))
        output = git_ops.run_git(repo, git_ops.diff_args(staged, file, unified))
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return output or "No changes to show"


@mcp.tool(tags={"git"}, annotations={"readOnlyHint": True})
def git_log(
    path: str = ".",
    limit: int = 10,
    oneline: bool = False,
    graph: bool = False,
    author: str | None = None,
    since: str | None = None,
) -> str:
    """Commit history for the repository at path."""
    try:
        output = git_ops.run_git(
            validator.validate(path), git_ops.log_args(limit, oneline, graph, author, since)
        )
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return output or "No commits found"


@mcp.tool(tags={"git"}, annotations={"readOnlyHint": True})
def git_branch_list(path: str = ".", remote: bool = False, all: bool = False) -> str:
    """List branches (local, remote, or all) for the repository at path."""
    try:
        output = git_ops.run_git(validator.validate(path), git_ops.branch_args(remote, all))
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return output or "No branches found"


@mcp.tool(tags={"git"}, annotations={"readOnlyHint": True})
def git_show(path: str = ".", commit: str = "HEAD", stat: bool = False) -> str:
    """Show a commit for the repository at path."""
    try:
        output = git_ops.run_git(validator.validate(path), git_ops.show_args(commit, stat))
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return output or "No commit details found"


@mcp.tool(tags={"git"}, annotations={"readOnlyHint": True})
def git_blame(path: str, line_start: int | None = None, line_end: int | None = None) -> str:
    """git blame for a file, optionally limited to a line range."""
    try:
        target = validator.validate(path)
        output = git_ops.run_git(target.parent, git_ops.blame_args(target, line_start, line_end))
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    return output or "No blame information found"


# ---- Tools: validation passthrough ----


@mcp.tool(tags={"validate"}, annotations={"readOnlyHint": True})
def syntax_check(
    path: str,
    language: str = "auto",
    strict: bool = False,
    config_path: str | None = None,
) -> str:
    """Check syntax of a json, python, javascript or typescript file."""
    try:
        target = validator.validate(path)
        config = validator.validate(config_path) if config_path else None
        return check_ops.syntax_check(target, language, strict, config)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    except subprocess.TimeoutExpired:
        return f"Error: syntax check timed out ({check_ops.CHECK_TIMEOUT}s)"


@mcp.tool(tags={"validate"}, annotations={"readOnlyHint": False})
def lint_file(path: str, fix: bool = False, config_path: str | None = None) -> str:
    """Run eslint on a file (fix=true applies automatic fixes)."""
    try:
        target = validator.validate(path)
        config = validator.validate(config_path) if config_path else None
        return check_ops.lint(target, fix, config)
    except _TOOL_ERRORS as e:
        return f"Error: {e}"
    except subprocess.TimeoutExpired:
        return f"Error: lint timed out ({check_ops.CHECK_TIMEOUT}s)"


def configure_allowed_directories(raw_dirs: list[str]) -> list[str]:
    """Resolve startup directories and install them as the allow-list."""
    dirs = resolve_startup_directories(raw_dirs)
    allowed_directories.replace_all(dirs)
    return dirs


def main(argv: list[str] | None = None) -> None:
    """Entry point for the secure-filesystem-mcp CLI."""
    parser = argparse.ArgumentParser(description="Secure filesystem MCP server.")
    parser.add_argument(
        "directories",
        nargs="*",
        help="Directories the server may access. Clients supporting MCP roots can replace them.",
    )
    args = parser.parse_args(argv)
    raw_dirs = args.directories
    if not raw_dirs:
        env_dirs = os.environ.get("FS_MCP_ALLOWED_DIRS", "")
        raw_dirs = [d for d in env_dirs.split(os.pathsep) if d]

    try:
        dirs = configure_allowed_directories(raw_dirs)
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)
    if dirs:
        logger.info("Allowed directories: %s", ", ".join(dirs))
    else:
        logger.warning(
            "Started without allowed directories - waiting for client to provide roots via MCP protocol"
        )

    transport = os.environ.get("MCP_TRANSPORT", "stdio")
    if transport == "http":
        host = os.environ.get("MCP_HOST", "127.0.0.1")
        port = int(os.environ.get("MCP_PORT", "8000"))
        mcp.run(transport="http", host=host, port=port)
    else:
        mcp.run()


if __name__ == "__main__":
    main()
