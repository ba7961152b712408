from __future__ import annotations

import re

ENDPOINT = "https://huggingface.co"
DEFAULT_REVISION = "main"

REPO_TYPE_MODEL = "model"
REPO_TYPE_DATASET = "dataset"
REPO_TYPE_SPACE = "space"
REPO_TYPES = (REPO_TYPE_MODEL, REPO_TYPE_DATASET, REPO_TYPE_SPACE)

# Prefix of the repo id in resolve URLs. Models live at the endpoint root.
REPO_TYPES_URL_PREFIXES = {
    REPO_TYPE_MODEL: "",
    REPO_TYPE_DATASET: "datasets/",
    REPO_TYPE_SPACE: "spaces/",
}

REPO_ID_SEPARATOR = "/"
REPO_ID_SERIALIZATION_SEPARATOR = "--"

REGEX_COMMIT_HASH = re.compile(r"^[0-9a-f]{40}$")
REGEX_SHA256 = re.compile(r"^[0-9a-f]{64}$")

BLOBS_DIR = "blobs"
SNAPSHOTS_DIR = "snapshots"
REFS_DIR = "refs"
BLOB_METADATA_SUFFIX = ".metadata.json"
TEMP_FILE_MARKER = ".tmp."

HF_CACHE_SUBDIR = "hub"
TOKEN_FILENAME = "token"

HEADER_X_REPO_COMMIT = "X-Repo-Commit"
HEADER_X_LINKED_SIZE = "X-Linked-Size"
HEADER_X_LINKED_ETAG = "X-Linked-Etag"
HEADER_X_ERROR_CODE = "X-Error-Code"
HEADER_X_ERROR_MESSAGE = "X-Error-Message"
HEADER_X_REQUEST_ID = "X-Request-Id"

DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_DOWNLOAD_TIMEOUT = 600.0
DEFAULT_MAX_WORKERS = 8
DEFAULT_MAX_RETRIES = 3
DOWNLOAD_CHUNK_SIZE = 10 * 1024 * 1024
RETRY_STATUS_CODES = (408, 429, 500, 502, 503, 504)

LIBRARY_NAME = "hubcache"
LIBRARY_VERSION = "0.1.0"
MAX_RELATIVE_REDIRECTS = 5
