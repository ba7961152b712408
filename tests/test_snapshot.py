from __future__ import annotations

import hashlib
import threading
from pathlib import Path

import pytest

from hubcache.config import HubCacheConfig
from hubcache.download import HubDownloader
from hubcache.errors import (
    EntryNotFoundError,
    FileMetadataError,
    GatedRepoError,
    HubConnectionError,
    HubHTTPError,
    LocalEntryNotFoundError,
    RepositoryNotFoundError,
)
from hubcache.schemas import FileMetadata, RepoInfo

COMMIT = "c0ffee00" * 5
CDN = "https://cdn.example/"


class _FakeHub:
    def __init__(self, files: dict[str, bytes], *, commit: str = COMMIT) -> None:
        self.files = files
        self.commit = commit
        self.errors: dict[str, Exception] = {}
        self.repo_info_error: Exception | None = None
        self.repo_info_calls: list[str] = []
        self.metadata_calls: list[tuple[str, str]] = []
        self.byte_calls: list[str] = []
        self.threads: set[int] = set()
        self._lock = threading.Lock()

    def get_repo_info(self, *, repo_id: str, repo_type: str, revision: str) -> RepoInfo:
        self.repo_info_calls.append(revision)
        if self.repo_info_error is not None:
            raise self.repo_info_error
        return RepoInfo(commit_hash=self.commit, files=list(self.files))

    def get_file_metadata(
        self, *, repo_id: str, filename: str, repo_type: str, revision: str
    ) -> FileMetadata:
        with self._lock:
            self.metadata_calls.append((filename, revision))
            self.threads.add(threading.get_ident())
        if filename in self.errors:
            raise self.errors[filename]
        if filename not in self.files:
            raise EntryNotFoundError(filename, repo_id=repo_id, revision=revision)
        content = self.files[filename]
        return FileMetadata(
            etag=hashlib.sha1(content).hexdigest(),
            size=len(content),
            commit_hash=self.commit,
            location=f"{CDN}{filename}",
        )

    def iter_bytes(self, url: str):
        with self._lock:
            self.byte_calls.append(url)
        yield self.files[url.removeprefix(CDN)]


def _downloader(tmp_path: Path, hub: _FakeHub, **overrides) -> HubDownloader:
    values = {"hf_home": tmp_path, "cache_dir": tmp_path / "hub", "use_symlinks": True}
    values.update(overrides)
    return HubDownloader(config=HubCacheConfig(**values), client=hub)


def _storage(tmp_path: Path) -> Path:
    return tmp_path / "hub" / "models--acme--widget"


def _files(count: int) -> dict[str, bytes]:
    return {f"shard-{index:02d}.bin": f"content {index}".encode() for index in range(count)}


def test_snapshot_downloads_filtered_files_and_writes_ref(tmp_path: Path) -> None:
    hub = _FakeHub({"a.json": b"{}", "secret.json": b"pw", "b.bin": b"\x00\x01"})

    folder = _downloader(tmp_path, hub).snapshot(
        "acme/widget", allow_patterns=["*.json"], ignore_patterns=["secret.json"]
    )

    assert folder == _storage(tmp_path) / "snapshots" / COMMIT
    assert sorted(path.name for path in folder.iterdir()) == ["a.json"]
    assert (_storage(tmp_path) / "refs" / "main").read_text(encoding="utf-8") == COMMIT
    assert hub.metadata_calls == [("a.json", COMMIT)]


def test_snapshot_with_worker_pool_fetches_everything(tmp_path: Path) -> None:
    files = _files(12)
    hub = _FakeHub(files)
    progress: list[tuple[int, int | None, float | None]] = []

    folder = _downloader(tmp_path, hub).snapshot(
        "acme/widget",
        max_workers=4,
        progress=lambda current, total, pct: progress.append((current, total, pct)),
    )

    for name, content in files.items():
        assert (folder / name).read_bytes() == content
    assert len(hub.byte_calls) == 12
    assert len(progress) == 12
    assert progress[-1] == (12, 12, 100.0)


def test_snapshot_with_no_matching_files_returns_empty_folder(tmp_path: Path) -> None:
    hub = _FakeHub({"a.bin": b"1"})

    folder = _downloader(tmp_path, hub).snapshot("acme/widget", allow_patterns=["*.json"])

    assert folder.is_dir()
    assert list(folder.iterdir()) == []


def test_per_file_failures_are_skipped(tmp_path: Path) -> None:
    files = _files(5)
    hub = _FakeHub(files)
    hub.errors["shard-02.bin"] = HubHTTPError("server error", status_code=500)

    folder = _downloader(tmp_path, hub).snapshot("acme/widget", max_workers=3)

    assert not (folder / "shard-02.bin").exists()
    assert sorted(path.name for path in folder.iterdir()) == [
        "shard-00.bin",
        "shard-01.bin",
        "shard-03.bin",
        "shard-04.bin",
    ]


def test_fatal_error_stops_the_batch(tmp_path: Path) -> None:
    hub = _FakeHub(_files(6))
    hub.errors["shard-00.bin"] = GatedRepoError("acme/widget")

    with pytest.raises(GatedRepoError):
        _downloader(tmp_path, hub).snapshot("acme/widget", max_workers=1)

    assert [name for name, _ in hub.metadata_calls] == ["shard-00.bin"]
    assert hub.byte_calls == []


def test_fatal_error_in_worker_pool_is_raised_once_workers_finish(tmp_path: Path) -> None:
    hub = _FakeHub(_files(20))
    for name in hub.files:
        hub.errors[name] = HubHTTPError("unauthorized", status_code=401)

    with pytest.raises(HubHTTPError) as exc_info:
        _downloader(tmp_path, hub).snapshot("acme/widget", max_workers=4)

    assert exc_info.value.status_code == 401
    assert len(hub.metadata_calls) < 20


def test_offline_fallback_returns_cached_snapshot(tmp_path: Path) -> None:
    hub = _FakeHub({"config.json": b"{}"})
    downloader = _downloader(tmp_path, hub)
    folder = downloader.snapshot("acme/widget")

    hub.repo_info_error = HubConnectionError("connection refused")
    assert downloader.snapshot("acme/widget") == folder
    assert downloader.snapshot("acme/widget", revision=COMMIT) == folder

    with pytest.raises(LocalEntryNotFoundError):
        downloader.snapshot("acme/widget", revision="v2")


def test_offline_fallback_reraises_not_found(tmp_path: Path) -> None:
    hub = _FakeHub({"config.json": b"{}"})
    hub.repo_info_error = RepositoryNotFoundError("acme/widget")

    with pytest.raises(RepositoryNotFoundError):
        _downloader(tmp_path, hub).snapshot("acme/widget")


def test_local_files_only_snapshot(tmp_path: Path) -> None:
    hub = _FakeHub({"config.json": b"{}"})
    downloader = _downloader(tmp_path, hub)

    with pytest.raises(LocalEntryNotFoundError):
        downloader.snapshot("acme/widget", local_files_only=True)
    assert hub.repo_info_calls == []

    folder = downloader.snapshot("acme/widget")
    assert downloader.snapshot("acme/widget", local_files_only=True) == folder
    assert hub.repo_info_calls == ["main"]


def test_local_dir_receives_resolved_copies(tmp_path: Path) -> None:
    hub = _FakeHub({"config.json": b"{}", "tokenizer/vocab.txt": b"a b c"})
    out = tmp_path / "out"

    result = _downloader(tmp_path, hub).snapshot("acme/widget", local_dir=out)

    assert result == out.resolve()
    assert not (out / "config.json").is_symlink()
    assert (out / "config.json").read_bytes() == b"{}"
    assert (out / "tokenizer" / "vocab.txt").read_bytes() == b"a b c"


def test_offline_with_populated_local_dir_returns_it(tmp_path: Path) -> None:
    hub = _FakeHub({"config.json": b"{}"})
    out = tmp_path / "out"
    out.mkdir()
    (out / "config.json").write_text("{}", encoding="utf-8")
    hub.repo_info_error = HubConnectionError("connection refused")

    assert _downloader(tmp_path, hub).snapshot("acme/widget", local_dir=out) == out


def test_snapshot_rejects_a_commit_hash_that_is_not_a_folder_name(tmp_path: Path) -> None:
    hub = _FakeHub(_files(1), commit="../../escaped")

    with pytest.raises(FileMetadataError):
        _downloader(tmp_path, hub).snapshot("acme/widget")

    assert hub.metadata_calls == []
    assert not (tmp_path / "escaped").exists()
    assert not (_storage(tmp_path) / "refs").exists()
