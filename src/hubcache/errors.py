"""Error taxonomy for the hub cache.

Not-found conditions are split by what is missing (repository, revision,
entry) so callers can tell "does not exist" apart from
``LocalEntryNotFoundError`` ("could not reach the remote and nothing is
cached").
"""

from __future__ import annotations

import json


class HubCacheError(Exception):
    """Base class for every error raised by hubcache."""


class ValidationError(HubCacheError, ValueError):
    def __init__(self, field: str | None, message: str) -> None:
        self.field = field
        if field:
            super().__init__(f"Validation error for '{field}': {message}")
        else:
            super().__init__(f"Validation error: {message}")


class HubHTTPError(HubCacheError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.request_id = request_id
        self.server_message = _parse_server_message(response_body)


class HubConnectionError(HubHTTPError):
    """The remote could not be reached (DNS, refused connection, timeout)."""


class RepositoryNotFoundError(HubHTTPError):
    def __init__(self, repo_id: str, *, message: str | None = None, **kwargs) -> None:
        self.repo_id = repo_id
        kwargs.setdefault("status_code", 404)
        super().__init__(message or f"Repository not found: {repo_id}", **kwargs)


class RevisionNotFoundError(HubHTTPError):
    def __init__(
        self,
        revision: str,
        *,
        repo_id: str | None = None,
        message: str | None = None,
        **kwargs,
    ) -> None:
        self.revision = revision
        self.repo_id = repo_id
        if message is None:
            if repo_id:
                message = f"Revision '{revision}' not found in repository '{repo_id}'"
            else:
                message = f"Revision not found: {revision}"
        kwargs.setdefault("status_code", 404)
        super().__init__(message, **kwargs)


class EntryNotFoundError(HubHTTPError):
    def __init__(
        self,
        path: str,
        *,
        repo_id: str | None = None,
        revision: str | None = None,
        message: str | None = None,
        **kwargs,
    ) -> None:
        self.path = path
        self.repo_id = repo_id
        self.revision = revision
        if message is None:
            parts = [f"Entry not found: {path}"]
            if repo_id:
                parts.append(f"in repository '{repo_id}'")
            if revision:
                parts.append(f"at revision '{revision}'")
            message = " ".join(parts)
        kwargs.setdefault("status_code", 404)
        super().__init__(message, **kwargs)


class GatedRepoError(HubHTTPError):
    def __init__(self, repo_id: str, *, message: str | None = None, **kwargs) -> None:
        self.repo_id = repo_id
        kwargs.setdefault("status_code", 403)
        super().__init__(
            message
            or f"Repository '{repo_id}' is gated. You must be authenticated and have access.",
            **kwargs,
        )


class LocalEntryNotFoundError(HubCacheError):
    """Requested content is not in the local cache and cannot be fetched."""


class FileMetadataError(HubCacheError):
    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"File metadata error for '{path}': {message}")


class CorruptedCacheError(HubCacheError):
    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Corrupted cache file at '{path}': {reason}")


def is_fatal_error(error: BaseException) -> bool:
    """Whether retrying the same request for another file would fail identically."""
    if isinstance(
        error, (RepositoryNotFoundError, RevisionNotFoundError, GatedRepoError)
    ):
        return True
    if isinstance(error, HubHTTPError) and not isinstance(error, EntryNotFoundError):
        return error.status_code in {401, 403}
    return False


def _parse_server_message(body: str | None) -> str | None:
    if not body:
        return None
    try:
        parsed = json.loads(body)
    except ValueError:
        return f"{body[:200]}..." if len(body) > 200 else body
    if isinstance(parsed, dict):
        message = parsed.get("error") or parsed.get("message")
        return str(message) if message is not None else None
    return None
