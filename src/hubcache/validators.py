from __future__ import annotations

import re

from .constants import REGEX_COMMIT_HASH, REPO_TYPES
from .errors import ValidationError

MAX_REPO_ID_LENGTH = 96
MAX_REVISION_LENGTH = 255

_REPO_ID_PATTERN = re.compile(r"^(\b[\w\-.]+\b/)?\b[\w\-.]{1,96}\b$")
_REVISION_PATTERN = re.compile(r"^[a-zA-Z0-9._/-]+$")
_WINDOWS_RESERVED_NAMES = {
    "CON",
    "PRN",
    "AUX",
    "NUL",
    *(f"COM{index}" for index in range(1, 10)),
    *(f"LPT{index}" for index in range(1, 10)),
}
_EDGE_CHARS = (".", "-", "_")


def validate_repo_id(repo_id: object) -> str:
    if not isinstance(repo_id, str):
        raise ValidationError(
            "repo_id", f"Repository ID must be a string, not {type(repo_id).__name__}"
        )
    if not repo_id:
        raise ValidationError("repo_id", "Repository ID cannot be empty")
    if len(repo_id) > MAX_REPO_ID_LENGTH:
        raise ValidationError(
            "repo_id", f"Repository ID is too long (max {MAX_REPO_ID_LENGTH} characters)"
        )
    if repo_id.count("/") > 1:
        raise ValidationError(
            "repo_id",
            f"Repository ID must be in format 'name' or 'namespace/name': '{repo_id}'",
        )
    if "--" in repo_id or ".." in repo_id:
        raise ValidationError("repo_id", f"Cannot have -- or .. in repo_id: '{repo_id}'")
    if repo_id.endswith(".git"):
        raise ValidationError("repo_id", f"Repository ID cannot end with '.git': '{repo_id}'")
    if not _REPO_ID_PATTERN.match(repo_id):
        raise ValidationError(
            "repo_id",
            f"Repository ID must use alphanumeric chars, '-', '_' or '.': '{repo_id}'",
        )

    for part in repo_id.split("/"):
        if not part:
            raise ValidationError("repo_id", "Both namespace and name must be non-empty")
        if part.startswith(_EDGE_CHARS) or part.endswith(_EDGE_CHARS):
            raise ValidationError(
                "repo_id", "Repository name parts cannot start or end with '.', '-', or '_'"
            )
    return repo_id


def validate_repo_type(repo_type: object) -> str:
    if repo_type is None:
        return REPO_TYPES[0]
    if repo_type not in REPO_TYPES:
        valid_types = ", ".join(REPO_TYPES)
        raise ValidationError(
            "repo_type", f"Invalid repository type '{repo_type}'. Must be one of: {valid_types}"
        )
    return str(repo_type)


def validate_revision(revision: object) -> str:
    if not isinstance(revision, str) or not revision:
        raise ValidationError("revision", "Revision cannot be empty")
    if len(revision) > MAX_REVISION_LENGTH:
        raise ValidationError("revision", "Revision name is too long")
    if REGEX_COMMIT_HASH.match(revision):
        return revision
    if not _REVISION_PATTERN.match(revision):
        raise ValidationError("revision", "Revision contains invalid characters")
    if revision.startswith("/") or revision.endswith("/"):
        raise ValidationError("revision", "Revision cannot start or end with '/'")
    if any(segment in {"", ".", ".."} for segment in revision.split("/")):
        raise ValidationError("revision", "Revision cannot contain empty, '.' or '..' segments")
    return revision


def validate_filename(filename: object) -> str:
    if not isinstance(filename, str) or not filename:
        raise ValidationError("filename", "Filename cannot be empty")
    if "\0" in filename:
        raise ValidationError("filename", "Filename cannot contain null bytes")
    if filename.startswith(("/", "\\")) or re.match(r"^[A-Za-z]:", filename):
        raise ValidationError("filename", "Filename cannot be an absolute path")

    segments = re.split(r"[/\\]", filename)
    if any(segment == ".." for segment in segments):
        raise ValidationError("filename", "Filename cannot contain path traversal sequences")
    if not segments[-1]:
        raise ValidationError("filename", "Filename cannot end with a path separator")
    if any(segment in {"", "."} for segment in segments):
        raise ValidationError("filename", "Filename cannot contain empty or '.' segments")

    if segments[-1].upper() in _WINDOWS_RESERVED_NAMES:
        raise ValidationError("filename", "Filename cannot use Windows reserved names")
    return filename
