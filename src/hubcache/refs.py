from __future__ import annotations

import logging
import os
from pathlib import Path

from .paths import ref_path, refs_dir
from .revision import CommitRevision, Revision

logger = logging.getLogger(__name__)


class RefStore:
    """Mapping of branch/tag names to commit hashes under ``refs/``."""

    def __init__(self, storage_folder: str | Path) -> None:
        self.storage_folder = Path(storage_folder)

    def resolve(self, revision: Revision) -> str | None:
        if isinstance(revision, CommitRevision):
            return revision.commit_hash

        path = ref_path(self.storage_folder, revision.name)
        if not path.is_file():
            return None
        commit_hash = path.read_text(encoding="utf-8").strip()
        return commit_hash or None

    def update(self, revision: Revision, commit_hash: str) -> None:
        if isinstance(revision, CommitRevision) or revision.name == commit_hash:
            return

        path = ref_path(self.storage_folder, revision.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        current = path.read_text(encoding="utf-8").strip() if path.is_file() else None
        if current == commit_hash:
            return
        path.write_text(commit_hash, encoding="utf-8")
        logger.info(
            "ref_store update ref=%s commit=%s previous=%s", revision.name, commit_hash, current
        )

    def refs_pointing_at(self, commit_hash: str) -> list[str]:
        return sorted(name for name, _ in self._iter_matching(commit_hash))

    def remove_refs_pointing_at(self, commit_hash: str) -> list[str]:
        removed: list[str] = []
        for name, path in self._iter_matching(commit_hash):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            removed.append(name)
            logger.info("ref_store remove ref=%s commit=%s", name, commit_hash)
        return sorted(removed)

    def read_all(self) -> dict[str, str]:
        refs: dict[str, str] = {}
        root = refs_dir(self.storage_folder)
        if not root.is_dir():
            return refs

        for dirpath, _, filenames in os.walk(root):
            for filename in filenames:
                path = Path(dirpath) / filename
                try:
                    refs[path.relative_to(root).as_posix()] = path.read_text(
                        encoding="utf-8"
                    ).strip()
                except (OSError, UnicodeDecodeError):
                    logger.warning("ref_store skip unreadable ref path=%s", path)
        return refs

    def _iter_matching(self, commit_hash: str) -> list[tuple[str, Path]]:
        root = refs_dir(self.storage_folder)
        return [
            (name, root / name)
            for name, value in self.read_all().items()
            if value == commit_hash
        ]
