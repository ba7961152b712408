from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .constants import (
    DEFAULT_DOWNLOAD_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WORKERS,
    DEFAULT_REQUEST_TIMEOUT,
    ENDPOINT,
    HF_CACHE_SUBDIR,
    TOKEN_FILENAME,
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class HubCacheConfig(BaseModel):
    """Everything the cache engine needs, passed explicitly to each component."""

    model_config = ConfigDict(extra="forbid")

    hf_home: Path = Field(default_factory=lambda: _default_hf_home())
    cache_dir: Path | None = None
    endpoint: str = ENDPOINT
    token: str | None = Field(default=None, repr=False)
    offline: bool = False
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0.0)
    download_timeout: float = Field(default=DEFAULT_DOWNLOAD_TIMEOUT, gt=0.0)
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, ge=1)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    use_symlinks: bool | None = None
    verify_blob_content: bool = False

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, value: str) -> str:
        normalized = value.strip().rstrip("/")
        if not normalized.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return normalized

    @field_validator("token")
    @classmethod
    def validate_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator("hf_home", "cache_dir")
    @classmethod
    def expand_paths(cls, value: Path | None) -> Path | None:
        if value is None:
            return None
        return Path(os.path.expandvars(str(value))).expanduser()

    @model_validator(mode="after")
    def default_cache_dir(self) -> HubCacheConfig:
        if self.cache_dir is None:
            self.cache_dir = self.hf_home / HF_CACHE_SUBDIR
        return self

    @property
    def hub_cache_dir(self) -> Path:
        if self.cache_dir is None:
            return self.hf_home / HF_CACHE_SUBDIR
        return self.cache_dir

    @property
    def token_path(self) -> Path:
        return self.hf_home / TOKEN_FILENAME

    @classmethod
    def from_env(cls, **overrides: Any) -> HubCacheConfig:
        """Build config from HF_* environment variables plus explicit overrides.

        Environment variables (all optional):
            HF_HOME:                 Root for cache and token file.
            HF_HUB_CACHE:            Cache directory. Defaults to ``$HF_HOME/hub``.
            HUGGINGFACE_HUB_CACHE:   Legacy name for HF_HUB_CACHE.
            HF_ENDPOINT:             Hub endpoint URL.
            HF_TOKEN:                Access token passed through to the hub.
            HUGGING_FACE_HUB_TOKEN:  Legacy name for HF_TOKEN.
            HF_HUB_OFFLINE:          "1" to never touch the network.
            HF_HUB_ETAG_TIMEOUT:     Metadata request timeout in seconds.
            HF_HUB_DOWNLOAD_TIMEOUT: Download request timeout in seconds.
        """
        values: dict[str, Any] = {}
        hf_home = _env("HF_HOME")
        if hf_home:
            values["hf_home"] = Path(hf_home)
        cache_dir = _env("HF_HUB_CACHE") or _env("HUGGINGFACE_HUB_CACHE")
        if cache_dir:
            values["cache_dir"] = Path(cache_dir)
        endpoint = _env("HF_ENDPOINT")
        if endpoint:
            values["endpoint"] = endpoint
        token = _env("HF_TOKEN") or _env("HUGGING_FACE_HUB_TOKEN")
        if token:
            values["token"] = token
        values["offline"] = _parse_bool(_env("HF_HUB_OFFLINE"), default=False)
        values["request_timeout"] = _parse_float(
            _env("HF_HUB_ETAG_TIMEOUT"), default=DEFAULT_REQUEST_TIMEOUT
        )
        values["download_timeout"] = _parse_float(
            _env("HF_HUB_DOWNLOAD_TIMEOUT"), default=DEFAULT_DOWNLOAD_TIMEOUT
        )
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)


def load_config(path: str | Path) -> HubCacheConfig:
    raw = Path(path).read_text(encoding="utf-8")
    payload = _parse_yaml_or_json(raw)
    try:
        return HubCacheConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _default_hf_home() -> Path:
    xdg_cache = _env("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache) / "huggingface"
    return Path.home() / ".cache" / "huggingface"


def _env(key: str) -> str | None:
    value = os.environ.get(key, "").strip()
    return value or None


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def _parse_float(value: str | None, *, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_yaml_or_json(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = _parse_yaml(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed


def _parse_yaml(raw: str) -> dict[str, Any]:
    import yaml

    parsed = yaml.safe_load(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed
