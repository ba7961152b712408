from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from hubcache.blobs import BlobStore
from hubcache.delete import DeleteCacheStrategy, plan_revision_deletion, prune_unreferenced_blobs
from hubcache.linker import CopyPublisher, SymlinkPublisher
from hubcache.paths import snapshot_path, storage_folder
from hubcache.refs import RefStore
from hubcache.revision import NamedRevision
from hubcache.scan import scan_cache_dir
from hubcache.schemas import BlobMetadata

COMMIT_A = "a" * 40
COMMIT_B = "b" * 40


def _populate(
    cache_dir: Path,
    repo_id: str,
    commit: str,
    files: dict[str, bytes],
    *,
    refs: tuple[str, ...] = (),
    copies: bool = False,
) -> Path:
    storage = storage_folder(cache_dir, repo_id, "model")
    blobs = BlobStore(storage)
    publisher = CopyPublisher() if copies else SymlinkPublisher()
    for name, content in files.items():
        etag = hashlib.sha256(content).hexdigest()
        blobs.write(
            etag,
            [content],
            metadata=BlobMetadata(etag=etag, commit_hash=commit, filename=name),
        )
        publisher.publish(blobs.path_for(etag), snapshot_path(storage, commit, name))
    for ref in refs:
        RefStore(storage).update(NamedRevision(name=ref), commit)
    return storage


def _blob_names(storage: Path) -> list[str]:
    return sorted(path.name for path in (storage / "blobs").iterdir())


def test_preview_and_size_accounting(tmp_path: Path) -> None:
    _populate(tmp_path, "acme/widget", COMMIT_A, {"a.bin": b"x" * 10, "b.bin": b"y" * 20})
    _populate(tmp_path, "acme/other", COMMIT_A, {"c.bin": b"z" * 30})
    info = scan_cache_dir(tmp_path)
    other = next(repo for repo in info.repos if repo.repo_id == "acme/other")
    widget = next(repo for repo in info.repos if repo.repo_id == "acme/widget")
    revision = widget.revisions[0]
    file = next(file for file in revision.files if file.file_name == "a.bin")

    strategy = DeleteCacheStrategy(repos=[other], revisions=[revision], files=[file])

    assert strategy.size_to_delete == 30 + 30 + 10
    assert strategy.size_to_delete_str == "70.00 B"
    preview = strategy.preview()
    assert "1 repositories" in preview
    assert "1 revisions" in preview
    assert "1 files" in preview
    assert "model/acme/other" in preview
    assert DeleteCacheStrategy().preview() == "Nothing to delete."


def test_delete_file_prunes_its_blob_only(tmp_path: Path) -> None:
    storage = _populate(tmp_path, "acme/widget", COMMIT_A, {"a.bin": b"aaa", "b.bin": b"bbb"})
    revision = scan_cache_dir(tmp_path).repos[0].revisions[0]
    target = next(file for file in revision.files if file.file_name == "a.bin")

    report = DeleteCacheStrategy(files=[target]).execute()

    assert report.ok
    assert not (storage / "snapshots" / COMMIT_A / "a.bin").exists()
    assert (storage / "snapshots" / COMMIT_A / "b.bin").read_bytes() == b"bbb"
    remaining = hashlib.sha256(b"bbb").hexdigest()
    assert _blob_names(storage) == [remaining, f"{remaining}.metadata.json"]
    assert report.pruned_blobs == [storage / "blobs" / hashlib.sha256(b"aaa").hexdigest()]


def test_delete_revision_removes_refs_and_keeps_shared_blobs(tmp_path: Path) -> None:
    storage = _populate(
        tmp_path, "acme/widget", COMMIT_A, {"shared.bin": b"same", "old.bin": b"old"},
        refs=("v1",),
    )
    _populate(tmp_path, "acme/widget", COMMIT_B, {"shared.bin": b"same"}, refs=("main",))

    report = plan_revision_deletion(scan_cache_dir(tmp_path), COMMIT_A, "f" * 40).execute()

    assert report.ok
    assert report.removed_refs == ["v1"]
    assert not (storage / "snapshots" / COMMIT_A).exists()
    assert (storage / "snapshots" / COMMIT_B / "shared.bin").read_bytes() == b"same"
    assert RefStore(storage).read_all() == {"main": COMMIT_B}
    shared = hashlib.sha256(b"same").hexdigest()
    assert _blob_names(storage) == [shared, f"{shared}.metadata.json"]


def test_delete_repo_and_idempotence(tmp_path: Path) -> None:
    storage = _populate(tmp_path, "acme/widget", COMMIT_A, {"a.bin": b"aaa"}, refs=("main",))
    info = scan_cache_dir(tmp_path)
    strategy = DeleteCacheStrategy(repos=info.repos, revisions=info.repos[0].revisions)

    first = strategy.execute()
    assert first.ok
    assert not storage.exists()
    assert scan_cache_dir(tmp_path).repos == []

    second = strategy.execute()
    assert second.ok
    assert second.deleted == []
    assert sorted(second.missing) == sorted([storage, storage / "snapshots" / COMMIT_A])


def test_pruning_keeps_blobs_of_copied_snapshots(tmp_path: Path) -> None:
    storage = _populate(
        tmp_path, "acme/widget", COMMIT_A, {"a.bin": b"aaa", "b.bin": b"bbb"}, copies=True
    )
    (storage / "snapshots" / COMMIT_A / "a.bin").unlink()
    (storage / "blobs" / "orphan.metadata.json").write_text("{}", encoding="utf-8")
    (storage / "blobs" / "inflight.tmp.12-34").write_bytes(b"partial")

    pruned = prune_unreferenced_blobs(storage)

    kept = hashlib.sha256(b"bbb").hexdigest()
    assert pruned == [storage / "blobs" / hashlib.sha256(b"aaa").hexdigest()]
    assert _blob_names(storage) == sorted(["inflight.tmp.12-34", kept, f"{kept}.metadata.json"])


def test_disabling_blob_pruning(tmp_path: Path) -> None:
    storage = _populate(tmp_path, "acme/widget", COMMIT_A, {"a.bin": b"aaa"})
    revision = scan_cache_dir(tmp_path).repos[0].revisions[0]

    report = DeleteCacheStrategy(revisions=[revision], prune_blobs=False).execute()

    assert report.pruned_blobs == []
    assert len(_blob_names(storage)) == 2


@pytest.mark.parametrize("from_scan", [True, False])
def test_delete_file_under_repo_folders_named_like_the_cache_layout(
    tmp_path: Path, from_scan: bool
) -> None:
    storage = _populate(
        tmp_path,
        "acme/widget",
        COMMIT_A,
        {"data/snapshots/x.bin": b"xxxx", "data/blobs/y.bin": b"yy"},
    )
    revision = scan_cache_dir(tmp_path).repos[0].revisions[0]
    target = next(file for file in revision.files if file.file_name == "data/snapshots/x.bin")
    if not from_scan:
        target = target.model_copy(update={"snapshot_path": None})

    report = DeleteCacheStrategy(files=[target]).execute()

    snapshot = storage / "snapshots" / COMMIT_A
    x_blob = storage / "blobs" / hashlib.sha256(b"xxxx").hexdigest()
    assert report.ok
    assert report.deleted == [
        snapshot / "data" / "snapshots" / "x.bin",
        x_blob,
        storage / "blobs" / f"{x_blob.name}.metadata.json",
    ]
    assert report.pruned_blobs == [x_blob]
    assert (snapshot / "data" / "blobs" / "y.bin").read_bytes() == b"yy"
    kept = hashlib.sha256(b"yy").hexdigest()
    assert _blob_names(storage) == [kept, f"{kept}.metadata.json"]


def test_size_to_delete_sums_every_list(tmp_path: Path) -> None:
    _populate(tmp_path, "acme/widget", COMMIT_A, {"a.bin": b"1234", "b.bin": b"5678"})
    repo = scan_cache_dir(tmp_path).repos[0]
    file = repo.revisions[0].files[0]

    strategy = DeleteCacheStrategy(repos=[repo], revisions=repo.revisions, files=[file])

    assert strategy.size_to_delete == 8 + 8 + 4
