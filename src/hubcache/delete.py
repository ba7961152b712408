"""Planning and best-effort execution of cache deletions.

A strategy is built from scan results, can be previewed, and is executed in a
fixed order: single files, then whole revisions, then whole repositories.
Execution never raises; every target ends up in exactly one bucket of the
returned ``DeletionReport``.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .constants import BLOB_METADATA_SUFFIX, SNAPSHOTS_DIR
from .paths import blob_metadata_path, blobs_dir, is_temp_name, snapshots_dir
from .refs import RefStore
from .schemas import (
    BlobMetadata,
    CachedFileInfo,
    CachedRepoInfo,
    CachedRevisionInfo,
    CacheInfo,
    format_size,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeletionReport:
    deleted: list[Path] = field(default_factory=list)
    missing: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)
    removed_refs: list[str] = field(default_factory=list)
    pruned_blobs: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(slots=True)
class DeleteCacheStrategy:
    repos: list[CachedRepoInfo] = field(default_factory=list)
    revisions: list[CachedRevisionInfo] = field(default_factory=list)
    files: list[CachedFileInfo] = field(default_factory=list)
    prune_blobs: bool = True

    @property
    def repo_count(self) -> int:
        return len(self.repos)

    @property
    def revision_count(self) -> int:
        return len(self.revisions)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def size_to_delete(self) -> int:
        """Sum of the sizes of every selected repo, revision and file.

        Overlapping selections (a file inside a selected revision) are counted
        once per list they appear in.
        """
        return (
            sum(repo.size for repo in self.repos)
            + sum(revision.size for revision in self.revisions)
            + sum(file.size for file in self.files)
        )

    @property
    def size_to_delete_str(self) -> str:
        return format_size(self.size_to_delete, precision=2)

    def preview(self) -> str:
        if not (self.repo_count or self.revision_count or self.file_count):
            return "Nothing to delete."

        lines = ["Will delete:"]
        if self.repo_count:
            lines.append(f"  {self.repo_count} repositories")
        if self.revision_count:
            lines.append(f"  {self.revision_count} revisions")
        if self.file_count:
            lines.append(f"  {self.file_count} files")
        lines.append(f"Total size: {self.size_to_delete_str}")

        if self.repos:
            lines.extend(["", "Repositories:"])
            lines.extend(f"  {repo.repo_type}/{repo.repo_id} ({repo.size_str})" for repo in self.repos)
        if self.revisions:
            lines.extend(["", "Revisions:"])
            lines.extend(
                f"  {revision.commit_hash} ({revision.size_str})" for revision in self.revisions
            )
        return "\n".join(lines)

    def execute(self) -> DeletionReport:
        report = DeletionReport()
        touched: set[Path] = set()

        for file in self.files:
            storage = _storage_of_file(file)
            if storage is not None:
                touched.add(storage)
            _delete_file(file.file_path, report)

        for revision in self.revisions:
            storage = _storage_of_revision(revision)
            touched.add(storage)
            if _delete_tree(revision.snapshot_path, report):
                report.removed_refs.extend(
                    RefStore(storage).remove_refs_pointing_at(revision.commit_hash)
                )

        repo_paths = {repo.repo_path for repo in self.repos}
        for repo in self.repos:
            _delete_tree(repo.repo_path, report)

        if self.prune_blobs:
            for storage in sorted(touched - repo_paths):
                if storage.is_dir():
                    prune_unreferenced_blobs(storage, report)

        logger.info(
            "cache_delete done deleted=%s missing=%s failed=%s pruned_blobs=%s",
            len(report.deleted),
            len(report.missing),
            len(report.failed),
            len(report.pruned_blobs),
        )
        return report


def plan_revision_deletion(cache_info: CacheInfo, *commit_hashes: str) -> DeleteCacheStrategy:
    wanted = set(commit_hashes)
    revisions = [
        revision
        for repo in cache_info.repos
        for revision in repo.revisions
        if revision.commit_hash in wanted
    ]

    found = {revision.commit_hash for revision in revisions}
    for commit_hash in sorted(wanted - found):
        logger.warning("cache_delete unknown revision commit=%s", commit_hash)
    return DeleteCacheStrategy(revisions=revisions)


def prune_unreferenced_blobs(storage: Path, report: DeletionReport | None = None) -> list[Path]:
    """Remove blobs (and their sidecars) that no remaining snapshot entry uses.

    A blob is kept when a snapshot link resolves to it, or when its sidecar
    names a snapshot entry that still exists (copied snapshots carry no link).
    """
    report = report if report is not None else DeletionReport()
    directory = blobs_dir(storage)
    if not directory.is_dir():
        return []

    linked = _linked_blobs(storage)
    pruned: list[Path] = []
    for blob in sorted(directory.iterdir()):
        name = blob.name
        if is_temp_name(name) or not blob.is_file():
            continue
        if name.endswith(BLOB_METADATA_SUFFIX):
            if not (directory / name[: -len(BLOB_METADATA_SUFFIX)]).exists():
                _delete_file(blob, report)
            continue
        if Path(os.path.normpath(blob)) in linked or _sidecar_snapshot_exists(storage, blob):
            continue
        if _delete_file(blob, report):
            pruned.append(blob)
            sidecar = blob_metadata_path(blob)
            if sidecar.exists():
                _delete_file(sidecar, report)

    report.pruned_blobs.extend(pruned)
    return pruned


def _linked_blobs(storage: Path) -> set[Path]:
    linked: set[Path] = set()
    for dirpath, _, filenames in os.walk(snapshots_dir(storage)):
        for name in filenames:
            path = Path(dirpath) / name
            if path.is_symlink():
                linked.add(Path(os.path.normpath(os.path.join(dirpath, os.readlink(path)))))
    return linked


def _sidecar_snapshot_exists(storage: Path, blob: Path) -> bool:
    sidecar = blob_metadata_path(blob)
    if not sidecar.is_file():
        return False
    try:
        metadata = BlobMetadata.model_validate_json(sidecar.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return False
    if not metadata.commit_hash or not metadata.filename:
        return False
    entry = snapshots_dir(storage) / metadata.commit_hash / metadata.filename
    return os.path.lexists(entry) and not entry.is_symlink()


def _delete_file(path: Path, report: DeletionReport) -> bool:
    if not os.path.lexists(path):
        report.missing.append(path)
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        report.missing.append(path)
        return False
    except OSError as exc:
        logger.exception("failed to delete file path=%s", path)
        report.failed.append((path, str(exc)))
        return False
    report.deleted.append(path)
    logger.debug("cache_delete file path=%s", path)
    return True


def _delete_tree(path: Path, report: DeletionReport) -> bool:
    if not os.path.lexists(path):
        report.missing.append(path)
        return False
    try:
        if path.is_symlink() or not path.is_dir():
            path.unlink()
        else:
            shutil.rmtree(path)
    except OSError as exc:
        logger.exception("failed to delete tree path=%s", path)
        report.failed.append((path, str(exc)))
        return False
    report.deleted.append(path)
    logger.info("cache_delete tree path=%s", path)
    return True


def _storage_of_revision(revision: CachedRevisionInfo) -> Path:
    return revision.snapshot_path.parent.parent


def _storage_of_file(file: CachedFileInfo) -> Path | None:
    if file.snapshot_path is not None:
        return file.snapshot_path.parent.parent
    # Match on the commit folder; repo files may themselves sit under "snapshots/".
    for parent in file.file_path.parents:
        if parent.name == file.commit_hash and parent.parent.name == SNAPSHOTS_DIR:
            return parent.parent.parent
    return None
