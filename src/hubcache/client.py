"""Remote hub access over HTTP.

The download protocol only depends on the three narrow protocols below;
``HubClient`` is the ``requests`` implementation of all of them.
"""

from __future__ import annotations

import logging
import platform
from collections.abc import Iterator, Mapping
from typing import Any, Protocol
from urllib.parse import quote, urljoin

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from urllib3.util.retry import Retry

from .auth import get_token
from .config import HubCacheConfig
from .constants import (
    DEFAULT_DOWNLOAD_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_REVISION,
    DOWNLOAD_CHUNK_SIZE,
    ENDPOINT,
    HEADER_X_ERROR_CODE,
    HEADER_X_ERROR_MESSAGE,
    HEADER_X_LINKED_ETAG,
    HEADER_X_LINKED_SIZE,
    HEADER_X_REPO_COMMIT,
    HEADER_X_REQUEST_ID,
    LIBRARY_NAME,
    LIBRARY_VERSION,
    MAX_RELATIVE_REDIRECTS,
    REGEX_COMMIT_HASH,
    REPO_TYPE_MODEL,
    REPO_TYPES_URL_PREFIXES,
    RETRY_STATUS_CODES,
)
from .errors import (
    EntryNotFoundError,
    FileMetadataError,
    GatedRepoError,
    HubConnectionError,
    HubHTTPError,
    RepositoryNotFoundError,
    RevisionNotFoundError,
)
from .schemas import FileMetadata, RepoInfo

logger = logging.getLogger(__name__)

_REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}


class MetadataProbe(Protocol):
    def get_file_metadata(
        self, *, repo_id: str, filename: str, repo_type: str, revision: str
    ) -> FileMetadata: ...


class RepoInfoFetcher(Protocol):
    def get_repo_info(self, *, repo_id: str, repo_type: str, revision: str) -> RepoInfo: ...


class ByteTransport(Protocol):
    def iter_bytes(self, url: str) -> Iterator[bytes]: ...


class HubBackend(MetadataProbe, RepoInfoFetcher, ByteTransport, Protocol):
    """Everything the downloader needs from the remote side."""


class HubClient:
    """``requests`` client for the resolve, revision-info and download endpoints."""

    def __init__(
        self,
        *,
        endpoint: str = ENDPOINT,
        token: str | None = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        download_timeout_seconds: float = DEFAULT_DOWNLOAD_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        headers: Mapping[str, str] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not endpoint.strip():
            raise ValueError("endpoint is empty.")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")
        if download_timeout_seconds <= 0:
            raise ValueError("download_timeout_seconds must be > 0.")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0.")

        self.endpoint = endpoint.strip().rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self.download_timeout_seconds = download_timeout_seconds
        self.extra_headers = dict(headers or {})
        if session is None:
            session = requests.Session()
            _mount_retry_adapter(session, max_retries=max_retries)
        self.session = session

    @classmethod
    def from_config(
        cls,
        config: HubCacheConfig,
        *,
        token: str | None = None,
        session: requests.Session | None = None,
    ) -> HubClient:
        return cls(
            endpoint=config.endpoint,
            token=get_token(token=token or config.token, token_path=config.token_path),
            timeout_seconds=config.request_timeout,
            download_timeout_seconds=config.download_timeout,
            max_retries=config.max_retries,
            session=session,
        )

    def get_file_metadata(
        self,
        *,
        repo_id: str,
        filename: str,
        repo_type: str = REPO_TYPE_MODEL,
        revision: str = DEFAULT_REVISION,
    ) -> FileMetadata:
        url = hub_url(
            repo_id, filename, repo_type=repo_type, revision=revision, endpoint=self.endpoint
        )
        response, url = self._head_following_relative_redirects(url)
        raise_for_hub_status(response, repo_id=repo_id, revision=revision, filename=filename)

        headers = CaseInsensitiveDict(response.headers)
        etag = normalize_etag(headers.get(HEADER_X_LINKED_ETAG) or headers.get("ETag"))
        size = _parse_size(headers.get(HEADER_X_LINKED_SIZE) or headers.get("Content-Length"))
        location = headers.get("Location") if response.status_code in _REDIRECT_STATUS_CODES else None

        logger.debug(
            "hub_client metadata repo=%s file=%s etag=%s size=%s", repo_id, filename, etag, size
        )
        commit_hash = headers.get(HEADER_X_REPO_COMMIT) or None
        if commit_hash is not None:
            commit_hash = checked_commit_hash(commit_hash, filename)
        return FileMetadata(
            etag=etag,
            size=size,
            commit_hash=commit_hash,
            location=urljoin(url, location) if location else url,
        )

    def get_repo_info(
        self,
        *,
        repo_id: str,
        repo_type: str = REPO_TYPE_MODEL,
        revision: str = DEFAULT_REVISION,
    ) -> RepoInfo:
        url = f"{self.endpoint}/api/{repo_type}s/{repo_id}/revision/{quote(revision, safe='')}"
        response = self._request("get", url, headers=self._headers(url), timeout=self.timeout_seconds)
        raise_for_hub_status(response, repo_id=repo_id, revision=revision)

        try:
            payload = response.json()
        except ValueError as exc:
            raise FileMetadataError(repo_id, "repository info is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise FileMetadataError(repo_id, "repository info is not a JSON object")

        commit_hash = payload.get("sha")
        if not isinstance(commit_hash, str) or not commit_hash:
            raise FileMetadataError(repo_id, "repository info has no commit hash")
        commit_hash = checked_commit_hash(commit_hash, repo_id)

        siblings = payload.get("siblings") or []
        files = [
            sibling["rfilename"]
            for sibling in siblings
            if isinstance(sibling, dict) and isinstance(sibling.get("rfilename"), str)
        ]
        return RepoInfo(commit_hash=commit_hash, files=files)

    def iter_bytes(self, url: str) -> Iterator[bytes]:
        headers = self._headers(url)
        headers["Accept-Encoding"] = "identity"
        response = self._request(
            "get", url, headers=headers, stream=True, timeout=self.download_timeout_seconds
        )
        try:
            raise_for_hub_status(response)
            try:
                yield from response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE)
            except requests.RequestException as exc:
                raise HubConnectionError(f"Download interrupted for {url}: {exc}") from exc
        finally:
            response.close()

    def _head_following_relative_redirects(self, url: str) -> tuple[Any, str]:
        for _ in range(MAX_RELATIVE_REDIRECTS + 1):
            response = self._request(
                "head",
                url,
                headers=self._headers(url),
                allow_redirects=False,
                timeout=self.timeout_seconds,
            )
            location = CaseInsensitiveDict(response.headers).get("Location")
            if response.status_code not in _REDIRECT_STATUS_CODES or not location:
                return response, url
            if not location.startswith("/"):
                # Absolute redirect: file storage URL, returned as the download location.
                return response, url
            url = urljoin(url, location)
            logger.debug("hub_client follow relative redirect url=%s", url)
        raise HubHTTPError(f"Too many redirects for {url}")

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            return getattr(self.session, method)(url, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise HubConnectionError(f"Cannot reach {url}: {exc}") from exc

    def _headers(self, url: str) -> dict[str, str]:
        headers = {
            "User-Agent": (
                f"{LIBRARY_NAME}/{LIBRARY_VERSION}; python/{platform.python_version()}"
            ),
            **self.extra_headers,
        }
        if self.token and url.startswith(self.endpoint):
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


def hub_url(
    repo_id: str,
    filename: str,
    *,
    repo_type: str = REPO_TYPE_MODEL,
    revision: str = DEFAULT_REVISION,
    endpoint: str = ENDPOINT,
) -> str:
    """``{endpoint}/{prefix}{repo_id}/resolve/{revision}/{filename}``, path segments quoted."""
    prefix = REPO_TYPES_URL_PREFIXES.get(repo_type, "")
    return (
        f"{endpoint.rstrip('/')}/{prefix}{repo_id}/resolve/"
        f"{quote(revision, safe='')}/{quote(filename)}"
    )


def checked_commit_hash(commit_hash: str, subject: str) -> str:
    """Reject remote commit ids that cannot name a snapshot folder."""
    if not REGEX_COMMIT_HASH.match(commit_hash):
        raise FileMetadataError(subject, f"invalid commit hash {commit_hash!r}")
    return commit_hash


def normalize_etag(etag: str | None) -> str | None:
    """Drop the weak marker and surrounding quotes: ``W/"abc"`` -> ``abc``."""
    if etag is None:
        return None
    value = etag.strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    return value or None


def raise_for_hub_status(
    response: Any,
    *,
    repo_id: str | None = None,
    revision: str | None = None,
    filename: str | None = None,
) -> None:
    status_code = response.status_code
    if status_code < 400:
        return

    headers = CaseInsensitiveDict(response.headers)
    error_code = headers.get(HEADER_X_ERROR_CODE)
    server_message = headers.get(HEADER_X_ERROR_MESSAGE)
    body = getattr(response, "text", None) or None
    details: dict[str, Any] = {
        "status_code": status_code,
        "response_body": body,
        "request_id": headers.get(HEADER_X_REQUEST_ID),
    }

    if error_code == "RepoNotFound":
        raise RepositoryNotFoundError(repo_id or "", message=server_message, **details)
    if error_code == "RevisionNotFound":
        raise RevisionNotFoundError(
            revision or "", repo_id=repo_id, message=server_message, **details
        )
    if error_code == "EntryNotFound":
        raise EntryNotFoundError(
            filename or "", repo_id=repo_id, revision=revision, message=server_message, **details
        )
    if error_code == "GatedRepo":
        raise GatedRepoError(repo_id or "", message=server_message, **details)

    if status_code == 404:
        if filename:
            raise EntryNotFoundError(filename, repo_id=repo_id, revision=revision, **details)
        raise RepositoryNotFoundError(repo_id or "", **details)
    if status_code == 403 and body and "gated" in body.lower() and repo_id:
        raise GatedRepoError(repo_id, **details)

    url = getattr(response, "url", None) or "remote hub"
    message = server_message or f"{status_code} error for {url}"
    raise HubHTTPError(message, **details)


def _mount_retry_adapter(session: requests.Session, *, max_retries: int) -> None:
    retry = Retry(
        total=max_retries,
        connect=max_retries,
        read=max_retries,
        status=max_retries,
        backoff_factor=2.0,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=frozenset({"GET", "HEAD"}),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)


def _parse_size(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        size = int(value)
    except ValueError:
        return None
    return size if size >= 0 else None
