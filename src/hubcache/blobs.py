from __future__ import annotations

import hashlib
import logging
import os
import threading
from collections.abc import Iterable
from pathlib import Path

from .constants import REGEX_SHA256, TEMP_FILE_MARKER
from .errors import CorruptedCacheError, HubCacheError
from .paths import blob_metadata_path, blob_path, blobs_dir
from .progress import ProgressCallback, ProgressTracker
from .schemas import BlobMetadata

logger = logging.getLogger(__name__)

_HASH_READ_SIZE = 1024 * 1024


class BlobStore:
    """Content-addressed file storage under ``blobs/``, keyed by ETag.

    A blob only becomes visible at its final path through ``os.replace`` of a
    fully written temp file, so readers never observe a partial blob.
    """

    def __init__(self, storage_folder: str | Path, *, verify_content: bool = False) -> None:
        self.storage_folder = Path(storage_folder)
        self.verify_content = verify_content

    @property
    def directory(self) -> Path:
        return blobs_dir(self.storage_folder)

    def path_for(self, etag: str) -> Path:
        return blob_path(self.storage_folder, etag)

    def exists_and_valid(self, etag: str) -> bool:
        path = self.path_for(etag)
        if not path.is_file() or path.name != etag:
            return False
        if self.verify_content and REGEX_SHA256.match(etag):
            digest = _sha256_of(path)
            if digest != etag:
                logger.warning("blob_store content mismatch etag=%s digest=%s", etag, digest)
                return False
        return True

    def write(
        self,
        etag: str,
        chunks: Iterable[bytes],
        *,
        expected_size: int | None = None,
        metadata: BlobMetadata | None = None,
        progress: ProgressCallback | None = None,
    ) -> Path:
        path = self.path_for(etag)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.temp_path_for(path)
        tracker = ProgressTracker(total=expected_size, callback=progress)

        try:
            with temp_path.open("wb") as handle:
                for chunk in chunks:
                    if not chunk:
                        continue
                    handle.write(chunk)
                    tracker.update(len(chunk))

            written = temp_path.stat().st_size
            if expected_size is not None and written != expected_size:
                raise CorruptedCacheError(
                    str(temp_path), f"expected {expected_size} bytes, received {written}"
                )
            if expected_size is None and written == 0:
                raise HubCacheError(f"Download failed: file is empty etag={etag}")

            os.replace(temp_path, path)
            tracker.finish()
        finally:
            if temp_path.exists():
                temp_path.unlink()

        logger.info("blob_store write etag=%s size=%s", etag, written)
        if metadata is not None:
            self.write_metadata(etag, metadata)
        return path

    def write_metadata(self, etag: str, metadata: BlobMetadata) -> None:
        target = blob_metadata_path(self.path_for(etag))
        temp_path = self.temp_path_for(target)
        try:
            temp_path.write_text(metadata.model_dump_json(indent=2), encoding="utf-8")
            os.replace(temp_path, target)
        finally:
            if temp_path.exists():
                temp_path.unlink()

    def read_metadata(self, etag: str) -> BlobMetadata | None:
        target = blob_metadata_path(self.path_for(etag))
        if not target.is_file():
            return None
        try:
            return BlobMetadata.model_validate_json(target.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning("blob_store unreadable metadata path=%s", target)
            return None

    @staticmethod
    def temp_path_for(path: Path) -> Path:
        suffix = f"{os.getpid()}-{threading.get_ident()}"
        return path.with_name(f"{path.name}{TEMP_FILE_MARKER}{suffix}")


def _sha256_of(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for block in iter(lambda: handle.read(_HASH_READ_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()
