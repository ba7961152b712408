"""On-disk layout of the cache and allow/ignore filtering of repo paths.

Everything here is pure path construction; nothing touches the filesystem.
"""

from __future__ import annotations

import fnmatch
import re
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path, PurePosixPath
from typing import TypeVar

from .constants import (
    BLOB_METADATA_SUFFIX,
    BLOBS_DIR,
    REFS_DIR,
    REPO_ID_SEPARATOR,
    REPO_ID_SERIALIZATION_SEPARATOR,
    REPO_TYPES,
    SNAPSHOTS_DIR,
    TEMP_FILE_MARKER,
)
from .errors import FileMetadataError
from .validators import validate_filename, validate_repo_id, validate_repo_type

T = TypeVar("T")

_REPO_FOLDER_PATTERN = re.compile(
    rf"^({'|'.join(REPO_TYPES)})s{REPO_ID_SERIALIZATION_SEPARATOR}(.+)$"
)
_TEMP_NAME_PATTERN = re.compile(rf"{re.escape(TEMP_FILE_MARKER)}\d+-\d+$")


def repo_folder_name(repo_id: str, repo_type: str) -> str:
    """``("acme/widget", "model")`` -> ``"models--acme--widget"``."""
    parts = [f"{repo_type}s", *repo_id.split(REPO_ID_SEPARATOR)]
    return REPO_ID_SERIALIZATION_SEPARATOR.join(parts)


def parse_repo_folder_name(name: str) -> tuple[str, str] | None:
    """Reverse of ``repo_folder_name``; ``None`` when the name is not a repo folder."""
    match = _REPO_FOLDER_PATTERN.match(name)
    if match is None:
        return None

    repo_type, serialized_id = match.groups()
    parts = serialized_id.split(REPO_ID_SERIALIZATION_SEPARATOR)
    if len(parts) > 2 or any(not part for part in parts):
        return None
    return repo_type, REPO_ID_SEPARATOR.join(parts)


def storage_folder(cache_dir: str | Path, repo_id: str, repo_type: str) -> Path:
    repo_id = validate_repo_id(repo_id)
    repo_type = validate_repo_type(repo_type)
    return Path(cache_dir) / repo_folder_name(repo_id, repo_type)


def blobs_dir(storage: Path) -> Path:
    return storage / BLOBS_DIR


def snapshots_dir(storage: Path) -> Path:
    return storage / SNAPSHOTS_DIR


def refs_dir(storage: Path) -> Path:
    return storage / REFS_DIR


def blob_path(storage: Path, etag: str) -> Path:
    if not etag or "/" in etag or "\\" in etag or etag in {".", ".."} or "\0" in etag:
        raise FileMetadataError(etag, "ETag cannot be used as a blob name")
    return blobs_dir(storage) / etag


def blob_metadata_path(blob: Path) -> Path:
    return blob.with_name(f"{blob.name}{BLOB_METADATA_SUFFIX}")


def snapshot_folder(storage: Path, commit_hash: str) -> Path:
    return snapshots_dir(storage) / commit_hash


def snapshot_path(storage: Path, commit_hash: str, filename: str) -> Path:
    filename = validate_filename(filename)
    return snapshot_folder(storage, commit_hash).joinpath(*PurePosixPath(filename).parts)


def ref_path(storage: Path, revision_name: str) -> Path:
    return refs_dir(storage).joinpath(*PurePosixPath(revision_name).parts)


def is_temp_name(name: str) -> bool:
    """Temp files written next to blobs and snapshot links before their rename."""
    return _TEMP_NAME_PATTERN.search(name) is not None


def filter_repo_objects(
    items: Iterable[T],
    *,
    allow_patterns: str | Sequence[str] | None = None,
    ignore_patterns: str | Sequence[str] | None = None,
    key: Callable[[T], str] | None = None,
) -> list[T]:
    """Keep items whose path matches an allow pattern and no ignore pattern.

    Patterns are shell globs matched against the full path, so ``*`` also
    crosses ``/``. A pattern ending with ``/`` matches everything below that
    folder. Ignore patterns always win over allow patterns.
    """
    allow = _normalize_patterns(allow_patterns)
    ignore = _normalize_patterns(ignore_patterns)

    def _path(item: T) -> str:
        if key is not None:
            return key(item)
        if isinstance(item, str):
            return item
        if isinstance(item, Path):
            return item.as_posix()
        raise ValueError(f"Please provide `key` to filter non-string items: {item!r}")

    kept: list[T] = []
    for item in items:
        path = _path(item)
        if allow is not None and not any(fnmatch.fnmatchcase(path, p) for p in allow):
            continue
        if ignore is not None and any(fnmatch.fnmatchcase(path, p) for p in ignore):
            continue
        kept.append(item)
    return kept


def _normalize_patterns(patterns: str | Sequence[str] | None) -> list[str] | None:
    if patterns is None:
        return None
    if isinstance(patterns, str):
        patterns = [patterns]
    return [f"{pattern}*" if pattern.endswith("/") else pattern for pattern in patterns]
