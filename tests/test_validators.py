from __future__ import annotations

import pytest

from hubcache.errors import ValidationError
from hubcache.validators import (
    validate_filename,
    validate_repo_id,
    validate_repo_type,
    validate_revision,
)


@pytest.mark.parametrize("repo_id", ["gpt2", "acme/widget", "org-1/model.v2", "a_b/c-d"])
def test_validate_repo_id_accepts_valid_ids(repo_id: str) -> None:
    assert validate_repo_id(repo_id) == repo_id


@pytest.mark.parametrize(
    "repo_id",
    [
        "",
        "a/b/c",
        "acme--widget",
        "acme/../widget",
        "acme/widget.git",
        "acme/widget!",
        "-acme/widget",
        "acme/widget_",
        "/widget",
        "x" * 97,
    ],
)
def test_validate_repo_id_rejects_invalid_ids(repo_id: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        validate_repo_id(repo_id)
    assert exc_info.value.field == "repo_id"


def test_validate_repo_id_rejects_non_string() -> None:
    with pytest.raises(ValidationError):
        validate_repo_id(123)


def test_validate_repo_type_defaults_and_rejects_unknown() -> None:
    assert validate_repo_type(None) == "model"
    assert validate_repo_type("dataset") == "dataset"
    assert validate_repo_type("space") == "space"
    with pytest.raises(ValidationError):
        validate_repo_type("models")


@pytest.mark.parametrize("revision", ["main", "v1.0", "refs/pr/1", "a" * 40, "feature_x-2"])
def test_validate_revision_accepts_branches_tags_and_hashes(revision: str) -> None:
    assert validate_revision(revision) == revision


@pytest.mark.parametrize(
    "revision", ["", "/main", "main/", "refs//pr", "refs/../main", "bad revision", "x" * 256]
)
def test_validate_revision_rejects_invalid_names(revision: str) -> None:
    with pytest.raises(ValidationError):
        validate_revision(revision)


@pytest.mark.parametrize("filename", ["config.json", "sub/dir/model.bin", "CONFIG.txt"])
def test_validate_filename_accepts_relative_paths(filename: str) -> None:
    assert validate_filename(filename) == filename


@pytest.mark.parametrize(
    "filename",
    [
        "",
        "/etc/passwd",
        "\\share\\file",
        "C:\\models\\x.bin",
        "../secret",
        "sub/../../secret",
        "dir/",
        ".",
        "a/.",
        "./a",
        "a//b",
        "file\0name",
        "CON",
        "sub/lpt1",
    ],
)
def test_validate_filename_rejects_unsafe_paths(filename: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        validate_filename(filename)
    assert exc_info.value.field == "filename"
