"""
Compare, hash, compress and merge helpers. Algorithms come from hashlib,
gzip, brotli, difflib and json; this module only wires them to validated paths.
"""

import gzip
import hashlib
import json
import shutil
from pathlib import Path

import brotli

from access import PathValidator
from file_ops import unified_diff
from search_ops import walk_files

HASH_ALGORITHMS = ("md5", "sha1", "sha256", "sha512")
COMPRESSION_FORMATS = ("gzip", "brotli")

_FORMAT_SUFFIXES = {".gz": "gzip", ".gzip": "gzip", ".br": "brotli"}
_CHUNK = 65536


def file_hash(path: Path, algorithm: str = "sha256") -> str:
    if algorithm not in HASH_ALGORITHMS:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")
    digest = hashlib.new(algorithm)
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def directory_hash(
    validator: PathValidator, path: Path, algorithm: str = "sha256", include_hidden: bool = False
) -> list[dict]:
    results = []
    for candidate, rel in walk_files(validator, path):
        if not include_hidden and any(part.startswith(".") for part in rel.split("/")):
            continue
        results.append({"path": rel, "hash": file_hash(candidate, algorithm)})
    return results


def compare_files(left: Path, right: Path) -> str:
    a = left.read_text(encoding="utf-8", errors="replace")
    b = right.read_text(encoding="utf-8", errors="replace")
    if a == b:
        return "Files are identical"
    return unified_diff(a, b, f"{left.name} -> {right.name}")


def compare_binary(left: Path, right: Path) -> str:
    left_size = left.stat().st_size
    right_size = right.stat().st_size
    if left_size != right_size:
        return f"Files are different:\n  {left}: {left_size} bytes\n  {right}: {right_size} bytes"
    with left.open("rb") as a, right.open("rb") as b:
        for chunk in iter(lambda: a.read(_CHUNK), b""):
            if chunk != b.read(len(chunk)):
                return f"Files are different ({left_size} bytes each)"
    return f"Files are identical ({left_size} bytes)"


def compare_directories(validator: PathValidator, left: Path, right: Path) -> dict:
    left_files = {rel: p for p, rel in walk_files(validator, left)}
    right_files = {rel: p for p, rel in walk_files(validator, right)}
    common = sorted(left_files.keys() & right_files.keys())
    return {
        "onlyInFirst": sorted(left_files.keys() - right_files.keys()),
        "onlyInSecond": sorted(right_files.keys() - left_files.keys()),
        "different": [
            rel for rel in common if file_hash(left_files[rel]) != file_hash(right_files[rel])
        ],
        "identical": [
            rel for rel in common if file_hash(left_files[rel]) == file_hash(right_files[rel])
        ],
    }


def detect_compression_format(path: Path) -> str | None:
    return _FORMAT_SUFFIXES.get(path.suffix.lower())


def _check_format(fmt: str) -> None:
    if fmt not in COMPRESSION_FORMATS:
        raise ValueError(f"Unsupported compression format: {fmt}")


def compress(source: Path, output: Path, level: int = 6, fmt: str = "gzip") -> tuple[int, int]:
    """Compress source into output; returns (original size, compressed size)."""
    _check_format(fmt)
    if not 1 <= level <= 9:
        raise ValueError("Compression level must be between 1 and 9")
    if fmt == "brotli":
        compressor = brotli.Compressor(quality=level)
        with source.open("rb") as src, output.open("wb") as dst:
            for chunk in iter(lambda: src.read(_CHUNK), b""):
                dst.write(compressor.process(chunk))
            dst.write(compressor.finish())
    else:
        with source.open("rb") as src, gzip.open(output, "wb", compresslevel=level) as dst:
            shutil.copyfileobj(src, dst)
    return source.stat().st_size, output.stat().st_size


def decompress(source: Path, output: Path, fmt: str = "gzip") -> int:
    _check_format(fmt)
    if fmt == "brotli":
        decompressor = brotli.Decompressor()
        with source.open("rb") as src, output.open("wb") as dst:
            for chunk in iter(lambda: src.read(_CHUNK), b""):
                dst.write(decompressor.process(chunk))
        if not decompressor.is_finished():
            raise ValueError(f"Truncated brotli stream: {source}")
    else:
        with gzip.open(source, "rb") as src, output.open("wb") as dst:
            shutil.copyfileobj(src, dst)
    return output.stat().st_size


def merge_text(
    contents: list[str],
    separator: str = "\n",
    remove_duplicate_lines: bool = False,
    sort: bool = False,
) -> str:
    merged = separator.join(contents)
    if remove_duplicate_lines:
        merged = "\n".join(dict.fromkeys(merged.split("\n")))
    if sort:
        merged = "\n".join(sorted(merged.split("\n")))
    return merged


def deep_merge(target: dict, source: dict) -> dict:
    out = dict(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def merge_json(documents: list, strategy: str = "deep") -> dict:
    merged: dict = {}
    for doc in documents:
        if not isinstance(doc, dict):
            raise ValueError("Only JSON objects can be merged")
        merged = deep_merge(merged, doc) if strategy == "deep" else {**merged, **doc}
    return merged


def load_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))
