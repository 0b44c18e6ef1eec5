"""
Syntax checking and linting passthrough.

JSON and Python are parsed in-process; JavaScript goes through
`node --check`, TypeScript through `npx tsc --noEmit`, linting through
`npx eslint`.
"""

import ast
import json
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

CHECK_TIMEOUT = 120

_LANGUAGES = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".json": "json",
    ".py": "python",
}

_TSC_LINE = re.compile(r"(.+)\((\d+),(\d+)\):\s+(error|warning)\s+TS\d+:\s+(.+)")


@dataclass
class Issue:
    message: str
    severity: str = "error"
    line: int | None = None
    column: int | None = None

    def format(self) -> str:
        location = f" [{self.line}:{self.column}]" if self.line and self.column else ""
        return f"{self.severity.upper()}{location}: {self.message}"


def detect_language(path: Path) -> str:
    return _LANGUAGES.get(path.suffix.lower(), "unknown")


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, capture_output=True, text=True, timeout=CHECK_TIMEOUT)


def check_json(content: str) -> list[Issue]:
    try:
        json.loads(content)
    except json.JSONDecodeError as e:
        return [Issue(e.msg, line=e.lineno, column=e.colno)]
    return []


def check_python(content: str, filename: str = "<file>") -> list[Issue]:
    try:
        ast.parse(content, filename=filename)
    except SyntaxError as e:
        return [Issue(e.msg, line=e.lineno, column=e.offset)]
    return []


def check_javascript(path: Path) -> list[Issue]:
    result = _run(["node", "--check", str(path)])
    if result.returncode == 0:
        return []
    return [Issue(result.stderr.strip() or "JavaScript syntax error")]


def check_typescript(path: Path, strict: bool = False, config_path: Path | None = None) -> list[Issue]:
    cmd = ["npx", "tsc", "--noEmit"]
    if strict:
        cmd.append("--strict")
    if config_path:
        cmd.extend(["--project", str(config_path)])
    else:
        cmd.append(str(path))
    result = _run(cmd)
    issues = []
    for line in (result.stdout + "\n" + result.stderr).splitlines():
        m = _TSC_LINE.match(line)
        if m:
            issues.append(Issue(m.group(5), m.group(4), int(m.group(2)), int(m.group(3))))
    return issues


def syntax_check(path: Path, language: str = "auto", strict: bool = False, config_path: Path | None = None) -> str:
    lang = detect_language(path) if language == "auto" else language
    if lang == "json":
        issues = check_json(path.read_text(encoding="utf-8"))
    elif lang == "python":
        issues = check_python(path.read_text(encoding="utf-8"), str(path))
    elif lang == "javascript":
        issues = check_javascript(path)
    elif lang == "typescript":
        issues = check_typescript(path, strict, config_path)
    else:
        raise ValueError(f"Unsupported language: {lang}")

    if not issues:
        return f"Syntax check passed\nLanguage: {lang}\nNo issues found"
    body = "\n".join(issue.format() for issue in issues)
    return f"Syntax check completed\nLanguage: {lang}\nIssues: {len(issues)}\n\n{body}"


def lint(path: Path, fix: bool = False, config_path: Path | None = None) -> str:
    cmd = ["npx", "eslint"]
    if fix:
        cmd.append("--fix")
    if config_path:
        cmd.extend(["--config", str(config_path)])
    cmd.extend(["--format", "stylish", str(path)])
    result = _run(cmd)
    return result.stdout.strip() or result.stderr.strip() or "No linting issues found"
