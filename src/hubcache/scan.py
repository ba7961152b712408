from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

from .config import HubCacheConfig
from .constants import REPO_TYPE_MODEL
from .paths import is_temp_name, parse_repo_folder_name, snapshots_dir, storage_folder
from .refs import RefStore
from .schemas import CachedFileInfo, CachedRepoInfo, CachedRevisionInfo, CacheInfo

logger = logging.getLogger(__name__)

_ETAG_LIKE = re.compile(r"^[0-9a-f]{40,}$")


class CacheScanner:
    """Rebuilds the cache inventory purely from directory layout and links.

    Nothing is persisted between scans; every call walks the tree again.
    Entries that cannot be read are skipped and reported in
    ``CacheInfo.warnings`` instead of failing the whole scan.
    """

    def __init__(
        self,
        cache_dir: str | Path | None = None,
        *,
        config: HubCacheConfig | None = None,
    ) -> None:
        if cache_dir is None:
            cache_dir = (config or HubCacheConfig.from_env()).hub_cache_dir
        self.cache_dir = Path(cache_dir).expanduser()

    def scan(self) -> CacheInfo:
        if not self.cache_dir.is_dir():
            logger.debug("cache_scanner missing cache_dir=%s", self.cache_dir)
            return CacheInfo(cache_dir=self.cache_dir)

        warnings: list[str] = []
        repos: list[CachedRepoInfo] = []
        for entry in sorted(self.cache_dir.iterdir()):
            if not entry.is_dir() or entry.is_symlink():
                continue
            parsed = parse_repo_folder_name(entry.name)
            if parsed is None:
                continue
            repo = self._scan_repo(entry, repo_type=parsed[0], repo_id=parsed[1], warnings=warnings)
            if repo is not None:
                repos.append(repo)

        info = CacheInfo(
            cache_dir=self.cache_dir,
            repos=repos,
            size=sum(repo.size for repo in repos),
            warnings=warnings,
        )
        logger.info(
            "cache_scanner done cache_dir=%s repos=%s revisions=%s files=%s warnings=%s",
            self.cache_dir,
            info.repo_count,
            info.revision_count,
            info.file_count,
            len(warnings),
        )
        return info

    def _scan_repo(
        self, repo_path: Path, *, repo_type: str, repo_id: str, warnings: list[str]
    ) -> CachedRepoInfo | None:
        snapshots = snapshots_dir(repo_path)
        if not snapshots.is_dir():
            return None

        refs = RefStore(repo_path).read_all()
        revisions: list[CachedRevisionInfo] = []
        for revision_dir in sorted(snapshots.iterdir()):
            if not revision_dir.is_dir():
                continue
            revision = _scan_revision(revision_dir, refs=refs, warnings=warnings)
            if revision is not None:
                revisions.append(revision)

        if not revisions:
            return None

        files = [file for revision in revisions for file in revision.files]
        return CachedRepoInfo(
            repo_id=repo_id,
            repo_type=repo_type,
            repo_path=repo_path,
            revisions=revisions,
            size=sum(revision.size for revision in revisions),
            last_accessed=_latest(file.last_accessed for file in files),
            last_modified=_latest(revision.last_modified for revision in revisions),
        )


def scan_cache_dir(
    cache_dir: str | Path | None = None, *, config: HubCacheConfig | None = None
) -> CacheInfo:
    return CacheScanner(cache_dir, config=config).scan()


def cached_repo_path(
    repo_id: str,
    *,
    repo_type: str = REPO_TYPE_MODEL,
    cache_dir: str | Path | None = None,
    config: HubCacheConfig | None = None,
) -> Path | None:
    """StorageFolder of a repository, or ``None`` when nothing is cached for it."""
    if cache_dir is None:
        cache_dir = (config or HubCacheConfig.from_env()).hub_cache_dir
    path = storage_folder(Path(cache_dir).expanduser(), repo_id, repo_type)
    return path if path.is_dir() else None


def _scan_revision(
    revision_dir: Path, *, refs: dict[str, str], warnings: list[str]
) -> CachedRevisionInfo | None:
    commit_hash = revision_dir.name
    files: list[CachedFileInfo] = []

    for dirpath, _, filenames in os.walk(revision_dir):
        for name in sorted(filenames):
            if is_temp_name(name):
                continue
            path = Path(dirpath) / name
            try:
                files.append(_scan_file(path, revision_dir=revision_dir, commit_hash=commit_hash))
            except OSError as exc:
                logger.warning("cache_scanner skip path=%s error=%s", path, exc)
                warnings.append(f"cannot read {path}: {exc}")

    if not files:
        return None

    return CachedRevisionInfo(
        commit_hash=commit_hash,
        snapshot_path=revision_dir,
        refs=sorted(name for name, value in refs.items() if value == commit_hash),
        files=files,
        size=sum(file.size for file in files),
        last_modified=_latest(file.last_modified for file in files),
    )


def _scan_file(path: Path, *, revision_dir: Path, commit_hash: str) -> CachedFileInfo:
    try:
        stat = path.stat()
    except FileNotFoundError:
        # Broken link: the blob is gone, describe the link itself.
        stat = path.lstat()

    blob: Path | None = None
    etag: str | None = None
    if path.is_symlink():
        target = os.readlink(path)
        blob = Path(os.path.normpath(os.path.join(path.parent, target)))
        if _ETAG_LIKE.match(blob.name):
            etag = blob.name

    return CachedFileInfo(
        file_name=path.relative_to(revision_dir).as_posix(),
        file_path=path,
        blob_path=blob,
        snapshot_path=revision_dir,
        size=stat.st_size,
        etag=etag,
        commit_hash=commit_hash,
        last_accessed=_to_datetime(stat.st_atime),
        last_modified=_to_datetime(stat.st_mtime),
    )


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _latest(values) -> datetime | None:
    present = [value for value in values if value is not None]
    return max(present) if present else None
