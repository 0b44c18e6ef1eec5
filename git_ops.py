"""
Git passthrough: runs the git binary in a validated directory and returns its output.
"""

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60


class GitError(RuntimeError):
    pass


def run_git(cwd: Path, args: list[str]) -> str:
    cmd = ["git", *args]
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git command timed out ({GIT_TIMEOUT}s)") from e
    except FileNotFoundError as e:
        raise GitError("command not found (git)") from e
    if result.returncode != 0:
        raise GitError(f"Git command failed: {result.stderr.strip() or result.stdout.strip()}")
    if result.stderr and "warning:" not in result.stderr:
        logger.warning("Git stderr: %s", result.stderr.strip())
    return result.stdout.strip()


def status_args(short: bool = False) -> list[str]:
    return ["status", "--short", "--branch"] if short else ["status"]


def diff_args(staged: bool = False, file: str | None = None, unified: int = 3) -> list[str]:
    args = ["diff"]
    if staged:
        args.append("--staged")
    args.append(f"--unified={unified}")
    if file:
        args.extend(["--", file])
    return args


def log_args(
    limit: int = 10,
    oneline: bool = False,
    graph: bool = False,
    author: str | None = None,
    since: str | None = None,
) -> list[str]:
    args = ["log"]
    if oneline:
        args.append("--oneline")
    if graph:
        args.append("--graph")
    if author:
        args.append(f"--author={author}")
    if since:
        args.append(f"--since={since}")
    args.extend(["-n", str(limit)])
    return args


def branch_args(remote: bool = False, all_branches: bool = False) -> list[str]:
    if all_branches:
        return ["branch", "-a", "-v"]
    if remote:
        return ["branch", "-r", "-v"]
    return ["branch", "-v"]


def show_args(commit: str = "HEAD", stat: bool = False) -> list[str]:
    if commit.startswith("-"):
        raise GitError(f"Invalid commit reference: {commit}")
    return ["show", "--stat", commit] if stat else ["show", commit]


def blame_args(file_path: Path, line_start: int | None = None, line_end: int | None = None) -> list[str]:
    args = ["blame"]
    if line_start and line_end:
        args.extend(["-L", f"{line_start},{line_end}"])
    args.extend(["--", file_path.name])
    return args
