from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def format_size(num_bytes: int | float, *, precision: int = 1) -> str:
    size = float(num_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(_SIZE_UNITS) - 1:
        size /= 1024.0
        unit_index += 1
    return f"{size:.{precision}f} {_SIZE_UNITS[unit_index]}"


class DTOBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class FileMetadata(DTOBase):
    """Result of the metadata probe for one remote file."""

    etag: str | None = None
    size: int | None = Field(default=None, ge=0)
    commit_hash: str | None = None
    location: str


class RepoInfo(DTOBase):
    commit_hash: str
    files: list[str] = Field(default_factory=list)


class BlobMetadata(DTOBase):
    """Sidecar written next to each blob as ``<etag>.metadata.json``."""

    etag: str
    size: int | None = None
    commit_hash: str | None = None
    revision: str | None = None
    filename: str | None = None
    downloaded_at: datetime = Field(default_factory=now_utc)


class CachedFileInfo(DTOBase):
    file_name: str
    file_path: Path
    blob_path: Path | None = None
    snapshot_path: Path | None = None
    size: int = Field(ge=0)
    etag: str | None = None
    commit_hash: str
    last_accessed: datetime | None = None
    last_modified: datetime | None = None

    @property
    def size_str(self) -> str:
        return format_size(self.size, precision=2)


class CachedRevisionInfo(DTOBase):
    commit_hash: str
    snapshot_path: Path
    refs: list[str] = Field(default_factory=list)
    files: list[CachedFileInfo] = Field(default_factory=list)
    size: int = Field(default=0, ge=0)
    last_modified: datetime | None = None

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def size_str(self) -> str:
        return format_size(self.size, precision=2)


class CachedRepoInfo(DTOBase):
    repo_id: str
    repo_type: str
    repo_path: Path
    revisions: list[CachedRevisionInfo] = Field(default_factory=list)
    size: int = Field(default=0, ge=0)
    last_accessed: datetime | None = None
    last_modified: datetime | None = None

    @property
    def revision_count(self) -> int:
        return len(self.revisions)

    @property
    def file_count(self) -> int:
        return sum(revision.file_count for revision in self.revisions)

    @property
    def refs(self) -> dict[str, str]:
        return {
            ref: revision.commit_hash
            for revision in self.revisions
            for ref in revision.refs
        }

    @property
    def size_str(self) -> str:
        return format_size(self.size, precision=2)


class CacheInfo(DTOBase):
    cache_dir: Path
    repos: list[CachedRepoInfo] = Field(default_factory=list)
    size: int = Field(default=0, ge=0)
    warnings: list[str] = Field(default_factory=list)

    @property
    def repo_count(self) -> int:
        return len(self.repos)

    @property
    def revision_count(self) -> int:
        return sum(repo.revision_count for repo in self.repos)

    @property
    def file_count(self) -> int:
        return sum(repo.file_count for repo in self.repos)

    @property
    def size_str(self) -> str:
        return format_size(self.size, precision=2)

    def repos_by_size(self) -> list[CachedRepoInfo]:
        return sorted(self.repos, key=lambda repo: -repo.size)

    def repos_by_last_accessed(self) -> list[CachedRepoInfo]:
        return sorted(self.repos, key=_last_accessed_key, reverse=True)

    def repos_by_last_modified(self) -> list[CachedRepoInfo]:
        return sorted(self.repos, key=_last_modified_key, reverse=True)

    def render_table(self) -> str:
        if not self.repos:
            return "no cached repositories"

        headers = ("repo_id", "repo_type", "size", "revisions", "files", "refs", "last_modified")
        rows = [
            (
                repo.repo_id,
                repo.repo_type,
                repo.size_str,
                str(repo.revision_count),
                str(repo.file_count),
                _truncate(",".join(sorted(repo.refs)) or "-", limit=28),
                repo.last_modified.isoformat(timespec="seconds") if repo.last_modified else "-",
            )
            for repo in self.repos_by_size()
        ]
        return render_table(headers=headers, rows=rows)


def render_table(*, headers: tuple[str, ...], rows: list[tuple[str, ...]]) -> str:
    if not rows:
        return "no rows"

    widths = [
        max(len(headers[column]), *(len(row[column]) for row in rows))
        for column in range(len(headers))
    ]

    def _line(values: tuple[str, ...]) -> str:
        return " | ".join(value.ljust(widths[index]) for index, value in enumerate(values))

    divider = "-+-".join("-" * width for width in widths)
    body = [_line(headers), divider]
    body.extend(_line(row) for row in rows)
    return "\n".join(body)


def _truncate(text: str, *, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[: limit - 3]}..."


_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _last_accessed_key(repo: CachedRepoInfo) -> datetime:
    return repo.last_accessed or _EPOCH


def _last_modified_key(repo: CachedRepoInfo) -> datetime:
    return repo.last_modified or _EPOCH
