"""Publishing blobs into snapshot trees.

Two implementations share one ``publish(source, dest)`` capability: relative
symlinks, or plain copies where the filesystem cannot create links. The
implementation is chosen once per cache directory by ``select_publisher``.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from functools import lru_cache
from pathlib import Path
from typing import Protocol

from .constants import TEMP_FILE_MARKER

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    def publish(self, source: Path, dest: Path) -> None:
        """Make ``dest`` present the content of ``source``, replacing whatever was there."""


class SymlinkPublisher:
    uses_symlinks = True

    def publish(self, source: Path, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        relative_source = os.path.relpath(source, dest.parent)
        if dest.is_symlink() and os.readlink(dest) == relative_source:
            return

        temp_link = _temp_sibling(dest)
        os.symlink(relative_source, temp_link)
        try:
            os.replace(temp_link, dest)
        except OSError:
            temp_link.unlink()
            raise
        logger.debug("snapshot_linker link dest=%s target=%s", dest, relative_source)


class CopyPublisher:
    uses_symlinks = False

    def publish(self, source: Path, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        temp_copy = _temp_sibling(dest)
        try:
            shutil.copyfile(source, temp_copy)
            os.replace(temp_copy, dest)
        finally:
            if temp_copy.exists():
                temp_copy.unlink()
        logger.debug("snapshot_linker copy dest=%s source=%s", dest, source)


def select_publisher(directory: str | Path, *, use_symlinks: bool | None = None) -> Publisher:
    if use_symlinks is None:
        use_symlinks = are_symlinks_supported(directory)
    if use_symlinks:
        return SymlinkPublisher()

    logger.warning(
        "symlinks are not used in cache_dir=%s; snapshot files will be copies of blobs",
        directory,
    )
    return CopyPublisher()


def are_symlinks_supported(directory: str | Path) -> bool:
    target = Path(directory).expanduser()
    target.mkdir(parents=True, exist_ok=True)
    return _probe_symlinks(str(target.resolve()))


@lru_cache(maxsize=16)
def _probe_symlinks(directory: str) -> bool:
    with tempfile.TemporaryDirectory(dir=directory) as scratch:
        source = Path(scratch) / "probe_source"
        source.touch()
        link = Path(scratch) / "probe_link"
        try:
            os.symlink(os.path.relpath(source, scratch), link)
        except (OSError, NotImplementedError):
            return False
        return link.resolve() == source.resolve()


def _temp_sibling(path: Path) -> Path:
    return path.with_name(f".{path.name}{TEMP_FILE_MARKER}{os.getpid()}-{threading.get_ident()}")
