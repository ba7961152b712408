from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ("HF_TOKEN", "HUGGING_FACE_HUB_TOKEN")


def get_token(*, token: str | None = None, token_path: str | Path | None = None) -> str | None:
    """Return the first non-empty token from: explicit value, env vars, token file.

    The token is opaque here; it is only passed through to the remote client.
    """
    if token and token.strip():
        return token.strip()

    for env_var in TOKEN_ENV_VARS:
        value = os.getenv(env_var, "").strip()
        if value:
            return value

    if token_path is None:
        return None
    return _read_token_file(Path(token_path))


def mask_token(token: str | None) -> str:
    if not token:
        return ""
    if len(token) <= 11:
        return "***"
    return f"{token[:7]}...{token[-4:]}"


def _read_token_file(path: Path) -> str | None:
    try:
        value = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError:
        logger.warning("cannot read token file path=%s", path)
        return None
    return value or None
