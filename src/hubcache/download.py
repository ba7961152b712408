"""Single-file and whole-snapshot download protocols over the local cache."""

from __future__ import annotations

import logging
import os
import shutil
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .blobs import BlobStore
from .client import HubBackend, HubClient, checked_commit_hash
from .config import HubCacheConfig
from .constants import REPO_TYPE_MODEL
from .errors import (
    FileMetadataError,
    HubCacheError,
    LocalEntryNotFoundError,
    RepositoryNotFoundError,
    RevisionNotFoundError,
    is_fatal_error,
)
from .linker import Publisher, select_publisher
from .paths import filter_repo_objects, snapshot_folder, snapshot_path, storage_folder
from .progress import ProgressCallback, ProgressTracker
from .refs import RefStore
from .revision import CommitRevision, Revision, parse_revision
from .schemas import BlobMetadata, FileMetadata
from .validators import validate_filename, validate_repo_id, validate_repo_type

logger = logging.getLogger(__name__)

Patterns = str | Sequence[str] | None


class HubDownloader:
    """Fetches remote files into the cache and returns their snapshot paths.

    The remote side is reached only through ``client`` (metadata probe,
    repo-info fetch, byte transport). Snapshot leaves are published through
    ``publisher``; both default to implementations built from ``config``.
    """

    def __init__(
        self,
        *,
        config: HubCacheConfig | None = None,
        client: HubBackend | None = None,
        publisher: Publisher | None = None,
        token: str | None = None,
    ) -> None:
        self.config = config or HubCacheConfig.from_env()
        self.cache_dir = self.config.hub_cache_dir
        self._client = client
        self._publisher = publisher
        self._token = token
        self._lock = threading.Lock()

    @property
    def client(self) -> HubBackend:
        with self._lock:
            if self._client is None:
                self._client = HubClient.from_config(self.config, token=self._token)
            return self._client

    @property
    def publisher(self) -> Publisher:
        with self._lock:
            if self._publisher is None:
                self._publisher = select_publisher(
                    self.cache_dir, use_symlinks=self.config.use_symlinks
                )
            return self._publisher

    def fetch(
        self,
        repo_id: str,
        filename: str,
        *,
        repo_type: str = REPO_TYPE_MODEL,
        revision: str | Revision | None = None,
        force_download: bool = False,
        local_files_only: bool = False,
        progress: ProgressCallback | None = None,
    ) -> Path:
        repo_id = validate_repo_id(repo_id)
        filename = validate_filename(filename)
        repo_type = validate_repo_type(repo_type)
        parsed = parse_revision(revision)
        storage = storage_folder(self.cache_dir, repo_id, repo_type)

        if local_files_only or self.config.offline:
            cached = find_cached_file(storage, filename, parsed)
            if cached is None:
                raise LocalEntryNotFoundError(
                    f"File {filename} not found in local cache for {repo_id}@{parsed}. "
                    "Cannot download because local_files_only is set."
                )
            return cached

        metadata = self.client.get_file_metadata(
            repo_id=repo_id, filename=filename, repo_type=repo_type, revision=parsed.value
        )
        return self._fetch_with_metadata(
            storage,
            filename=filename,
            revision=parsed,
            metadata=metadata,
            force_download=force_download,
            progress=progress,
        )

    def snapshot(
        self,
        repo_id: str,
        *,
        repo_type: str = REPO_TYPE_MODEL,
        revision: str | Revision | None = None,
        local_dir: str | Path | None = None,
        force_download: bool = False,
        local_files_only: bool = False,
        allow_patterns: Patterns = None,
        ignore_patterns: Patterns = None,
        max_workers: int | None = None,
        progress: ProgressCallback | None = None,
    ) -> Path:
        """Fetch every (filtered) file of one revision and return the snapshot folder.

        When the remote cannot be queried, an already cached snapshot for the
        revision (or a non-empty ``local_dir``) is returned instead. With
        ``local_dir`` set, the snapshot content is copied there and that
        folder is returned.
        """
        repo_id = validate_repo_id(repo_id)
        repo_type = validate_repo_type(repo_type)
        parsed = parse_revision(revision)
        storage = storage_folder(self.cache_dir, repo_id, repo_type)
        local_only = local_files_only or self.config.offline

        repo_info = None
        api_error: HubCacheError | None = None
        if not local_only:
            try:
                repo_info = self.client.get_repo_info(
                    repo_id=repo_id, repo_type=repo_type, revision=parsed.value
                )
            except HubCacheError as exc:
                api_error = exc
                logger.warning(
                    "snapshot repo info failed repo=%s revision=%s error=%s", repo_id, parsed, exc
                )

        if repo_info is None:
            return self._offline_snapshot(
                storage,
                repo_id=repo_id,
                revision=parsed,
                local_dir=local_dir,
                local_only=local_only,
                api_error=api_error,
            )

        commit_hash = checked_commit_hash(repo_info.commit_hash, repo_id)
        RefStore(storage).update(parsed, commit_hash)
        files = filter_repo_objects(
            repo_info.files, allow_patterns=allow_patterns, ignore_patterns=ignore_patterns
        )
        folder = snapshot_folder(storage, commit_hash)
        folder.mkdir(parents=True, exist_ok=True)

        logger.info(
            "snapshot start repo=%s commit=%s files=%s/%s",
            repo_id,
            commit_hash,
            len(files),
            len(repo_info.files),
        )
        self._fetch_all(
            repo_id,
            files,
            repo_type=repo_type,
            revision=CommitRevision(commit_hash=commit_hash),
            force_download=force_download,
            max_workers=max_workers or self.config.max_workers,
            progress=progress,
        )

        if local_dir is None:
            return folder
        target = Path(local_dir).expanduser()
        copy_snapshot_to_local_dir(folder, target)
        return target.resolve()

    def _fetch_with_metadata(
        self,
        storage: Path,
        *,
        filename: str,
        revision: Revision,
        metadata: FileMetadata,
        force_download: bool,
        progress: ProgressCallback | None,
    ) -> Path:
        if not metadata.etag:
            raise FileMetadataError(filename, "remote response carries no ETag")

        commit_hash = metadata.commit_hash
        if commit_hash is None and isinstance(revision, CommitRevision):
            commit_hash = revision.commit_hash
        if commit_hash is None:
            raise FileMetadataError(filename, "remote response carries no commit hash")
        commit_hash = checked_commit_hash(commit_hash, filename)

        blobs = BlobStore(storage, verify_content=self.config.verify_blob_content)
        blob = blobs.path_for(metadata.etag)
        pointer = snapshot_path(storage, commit_hash, filename)
        refs = RefStore(storage)

        if not force_download:
            if blobs.exists_and_valid(metadata.etag):
                self.publisher.publish(blob, pointer)
                refs.update(revision, commit_hash)
                logger.debug("downloader cache hit file=%s etag=%s", filename, metadata.etag)
                return pointer
            if pointer.exists():
                refs.update(revision, commit_hash)
                logger.debug("downloader snapshot hit file=%s commit=%s", filename, commit_hash)
                return pointer

        blobs.write(
            metadata.etag,
            self.client.iter_bytes(metadata.location),
            expected_size=metadata.size,
            metadata=BlobMetadata(
                etag=metadata.etag,
                size=metadata.size,
                commit_hash=commit_hash,
                revision=revision.value,
                filename=filename,
            ),
            progress=progress,
        )
        self.publisher.publish(blob, pointer)
        refs.update(revision, commit_hash)
        logger.info(
            "downloader fetched file=%s etag=%s commit=%s", filename, metadata.etag, commit_hash
        )
        return pointer

    def _fetch_all(
        self,
        repo_id: str,
        files: list[str],
        *,
        repo_type: str,
        revision: CommitRevision,
        force_download: bool,
        max_workers: int,
        progress: ProgressCallback | None,
    ) -> None:
        if not files:
            return

        stop = threading.Event()
        lock = threading.Lock()
        fatal_errors: list[BaseException] = []
        tracker = ProgressTracker(total=len(files), callback=progress)

        def _fetch_one(filename: str) -> None:
            if stop.is_set():
                return
            try:
                self.fetch(
                    repo_id,
                    filename,
                    repo_type=repo_type,
                    revision=revision,
                    force_download=force_download,
                )
            except Exception as exc:
                if is_fatal_error(exc):
                    with lock:
                        fatal_errors.append(exc)
                    stop.set()
                    logger.error(
                        "snapshot aborted repo=%s file=%s error=%s", repo_id, filename, exc
                    )
                    return
                logger.exception("failed to fetch repo=%s file=%s", repo_id, filename)
            with lock:
                tracker.update(1)

        workers = max(1, min(max_workers, len(files)))
        if workers == 1:
            for filename in files:
                _fetch_one(filename)
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                for _ in executor.map(_fetch_one, files):
                    pass

        if fatal_errors:
            raise fatal_errors[0]
        tracker.finish()

    def _offline_snapshot(
        self,
        storage: Path,
        *,
        repo_id: str,
        revision: Revision,
        local_dir: str | Path | None,
        local_only: bool,
        api_error: HubCacheError | None,
    ) -> Path:
        commit_hash = RefStore(storage).resolve(revision)
        if commit_hash and local_dir is None:
            folder = snapshot_folder(storage, commit_hash)
            if folder.is_dir():
                return folder

        if local_dir is not None:
            target = Path(local_dir).expanduser()
            if target.is_dir() and any(target.iterdir()):
                logger.warning(
                    "returning existing local_dir=%s as the remote repo cannot be accessed", target
                )
                return target

        if local_only:
            raise LocalEntryNotFoundError(
                f"Cannot find an appropriate cached snapshot folder for {repo_id}@{revision}. "
                "To enable downloads, unset local_files_only and offline mode."
            )
        if isinstance(api_error, (RepositoryNotFoundError, RevisionNotFoundError)):
            raise api_error
        raise LocalEntryNotFoundError(
            "An error occurred while trying to locate files on the hub, and no cached "
            f"snapshot folder exists for {repo_id}@{revision}. Error: {api_error}"
        ) from api_error


def find_cached_file(storage: Path, filename: str, revision: Revision) -> Path | None:
    """Snapshot folder named after the revision first, then the ref-resolved commit."""
    direct = snapshot_path(storage, revision.value, filename)
    if direct.exists():
        return direct

    commit_hash = RefStore(storage).resolve(revision)
    if commit_hash is None or commit_hash == revision.value:
        return None
    resolved = snapshot_path(storage, commit_hash, filename)
    return resolved if resolved.exists() else None


def copy_snapshot_to_local_dir(folder: Path, local_dir: Path) -> None:
    """Materialize the resolved content of a snapshot tree as plain files."""
    local_dir.mkdir(parents=True, exist_ok=True)
    if not folder.is_dir():
        return

    for dirpath, _, filenames in os.walk(folder):
        for name in filenames:
            source = Path(dirpath) / name
            if not source.exists():
                logger.warning("skip broken snapshot link path=%s", source)
                continue
            dest = local_dir / source.relative_to(folder)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)


def try_to_load_from_cache(
    repo_id: str,
    filename: str,
    *,
    repo_type: str = REPO_TYPE_MODEL,
    revision: str | Revision | None = None,
    cache_dir: str | Path | None = None,
    config: HubCacheConfig | None = None,
) -> Path | None:
    """Cached snapshot path of a file, or ``None``; never touches the network."""
    config = _resolve_config(config, cache_dir)
    storage = storage_folder(config.hub_cache_dir, repo_id, repo_type)
    return find_cached_file(storage, validate_filename(filename), parse_revision(revision))


def download_file(
    repo_id: str,
    filename: str,
    *,
    repo_type: str = REPO_TYPE_MODEL,
    revision: str | Revision | None = None,
    cache_dir: str | Path | None = None,
    config: HubCacheConfig | None = None,
    token: str | None = None,
    force_download: bool = False,
    local_files_only: bool = False,
    progress: ProgressCallback | None = None,
) -> Path:
    downloader = HubDownloader(config=_resolve_config(config, cache_dir), token=token)
    return downloader.fetch(
        repo_id,
        filename,
        repo_type=repo_type,
        revision=revision,
        force_download=force_download,
        local_files_only=local_files_only,
        progress=progress,
    )


def download_snapshot(
    repo_id: str,
    *,
    repo_type: str = REPO_TYPE_MODEL,
    revision: str | Revision | None = None,
    cache_dir: str | Path | None = None,
    local_dir: str | Path | None = None,
    config: HubCacheConfig | None = None,
    token: str | None = None,
    force_download: bool = False,
    local_files_only: bool = False,
    allow_patterns: Patterns = None,
    ignore_patterns: Patterns = None,
    max_workers: int | None = None,
    progress: ProgressCallback | None = None,
) -> Path:
    downloader = HubDownloader(config=_resolve_config(config, cache_dir), token=token)
    return downloader.snapshot(
        repo_id,
        repo_type=repo_type,
        revision=revision,
        local_dir=local_dir,
        force_download=force_download,
        local_files_only=local_files_only,
        allow_patterns=allow_patterns,
        ignore_patterns=ignore_patterns,
        max_workers=max_workers,
        progress=progress,
    )


def _resolve_config(config: HubCacheConfig | None, cache_dir: str | Path | None) -> HubCacheConfig:
    config = config or HubCacheConfig.from_env()
    if cache_dir is None:
        return config
    return config.model_copy(update={"cache_dir": Path(cache_dir).expanduser()})
