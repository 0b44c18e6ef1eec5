"""Unit tests for file_ops."""

import base64
import os
from pathlib import Path

import pytest

from file_ops import (
    apply_edits,
    copy_path,
    create_backup,
    delete_path,
    file_info,
    format_size,
    get_mime,
    read_base64,
    read_binary,
    read_text,
    unified_diff,
    write_text_atomic,
)


def test_get_mime():
    """MIME types are inferred from extension."""
    assert get_mime(Path("x.py")) == "text/x-python"
    assert get_mime(Path("x.json")) == "application/json"
    assert get_mime(Path("x.PNG")) == "image/png"
    assert get_mime(Path("x.mp3")) == "audio/mpeg"
    assert get_mime(Path("x.unknown")) == "text/plain"


def test_format_size():
    assert format_size(0) == "0 B"
    assert format_size(512) == "512 B"
    assert format_size(1024) == "1.00 KB"
    assert format_size(1536) == "1.50 KB"
    assert format_size(5 * 1024 * 1024) == "5.00 MB"


def test_read_text_head_and_tail(tmp_path):
    f = tmp_path / "lines.txt"
    f.write_text("1\n2\n3\n4\n5\n")
    assert read_text(f) == "1\n2\n3\n4\n5\n"
    assert read_text(f, head=2) == "1\n2\n"
    assert read_text(f, tail=2) == "4\n5\n"
    assert read_text(f, head=1, tail=3) == "1\n"


def test_read_text_negative_limit(tmp_path):
    f = tmp_path / "x.txt"
    f.write_text("x")
    with pytest.raises(ValueError):
        read_text(f, head=-1)


def test_read_base64(tmp_path):
    f = tmp_path / "img.png"
    f.write_bytes(b"\x89PNG\r\n")
    assert base64.b64decode(read_base64(f)) == b"\x89PNG\r\n"


def test_write_text_atomic_creates_and_replaces(tmp_path):
    f = tmp_path / "out.txt"
    write_text_atomic(f, "first")
    assert f.read_text() == "first"
    write_text_atomic(f, "second")
    assert f.read_text() == "second"
    assert [p.name for p in tmp_path.iterdir()] == ["out.txt"]


def test_unified_diff_labels():
    diff = unified_diff("a\nb\n", "a\nc\n", "f.txt")
    assert "f.txt\toriginal" in diff
    assert "-b" in diff
    assert "+c" in diff


def test_apply_edits_exact(tmp_path):
    f = tmp_path / "code.py"
    f.write_text("x = 1\ny = 2\n")
    diff = apply_edits(f, [{"oldText": "y = 2", "newText": "y = 3"}])
    assert diff.startswith("```diff\n")
    assert "+y = 3" in diff
    assert f.read_text() == "x = 1\ny = 3\n"


def test_apply_edits_whitespace_insensitive_keeps_indent(tmp_path):
    f = tmp_path / "code.py"
    f.write_text("def f():\n    return 1\n")
    apply_edits(f, [{"oldText": "return 1", "newText": "return 2"}])
    assert f.read_text() == "def f():\n    return 2\n"

    f.write_text("if x:\n    a = 1\n    b = 2\n")
    apply_edits(f, [{"oldText": "a = 1\n  b = 2", "newText": "a = 10\n    b = 20"}])
    assert f.read_text() == "if x:\n    a = 10\n    b = 20\n"


def test_apply_edits_dry_run_leaves_file(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("hello\n")
    diff = apply_edits(f, [{"oldText": "hello", "newText": "bye"}], dry_run=True)
    assert "+bye" in diff
    assert f.read_text() == "hello\n"


def test_apply_edits_no_match(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("hello\n")
    with pytest.raises(ValueError) as exc_info:
        apply_edits(f, [{"oldText": "absent", "newText": "x"}])
    assert "Could not find exact match" in str(exc_info.value)
    assert f.read_text() == "hello\n"


def test_apply_edits_fence_grows_with_backticks(tmp_path):
    f = tmp_path / "doc.md"
    f.write_text("```\ncode\n```\n")
    diff = apply_edits(f, [{"oldText": "code", "newText": "more"}], dry_run=True)
    assert diff.startswith("````diff\n")


def test_file_info(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("abc")
    f.chmod(0o640)
    info = file_info(f)
    assert info["size"] == 3
    assert info["isFile"] is True
    assert info["isDirectory"] is False
    assert info["permissions"] == "640"


def test_copy_and_delete(tmp_path):
    src = tmp_path / "src"
    (src / "sub").mkdir(parents=True)
    (src / "sub" / "f.txt").write_text("x")
    dst = tmp_path / "dst"
    copy_path(src, dst)
    assert (dst / "sub" / "f.txt").read_text() == "x"

    with pytest.raises(OSError):
        delete_path(dst)
    delete_path(dst, recursive=True)
    assert not dst.exists()

    delete_path(src / "sub" / "f.txt")
    assert not (src / "sub" / "f.txt").exists()


def test_apply_edits_regex(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("v1 v2\nV3\n")
    apply_edits(f, [{"oldText": r"v(\d)", "newText": r"ver\1", "useRegex": True}])
    assert f.read_text() == "ver1 ver2\nV3\n"

    f.write_text("v1 v2\nV3\n")
    apply_edits(f, [{"oldText": r"v(\d)", "newText": "x", "useRegex": True, "flags": "i"}])
    assert f.read_text() == "x v2\nV3\n"


def test_apply_edits_regex_bad_flag(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("x")
    with pytest.raises(ValueError):
        apply_edits(f, [{"oldText": "x", "newText": "y", "useRegex": True, "flags": "y"}])


def test_create_backup(tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("before")
    backup = create_backup(f)
    assert backup.name.startswith("a.txt.backup.")
    assert backup.read_text() == "before"


def test_read_binary_size_limit(tmp_path):
    f = tmp_path / "blob"
    f.write_bytes(b"abcd")
    assert read_binary(f) == (4, base64.b64encode(b"abcd").decode())
    with pytest.raises(ValueError):
        read_binary(f, max_size=3)


def test_copy_without_timestamps(tmp_path):
    src = tmp_path / "src.txt"
    src.write_text("x")
    os.utime(src, (1_000_000_000, 1_000_000_000))
    dst = tmp_path / "dst.txt"
    copy_path(src, dst, preserve_timestamps=False)
    assert dst.stat().st_mtime != 1_000_000_000
