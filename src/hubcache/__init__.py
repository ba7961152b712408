"""Local content cache for versioned hub repositories."""

from .client import HubClient, hub_url
from .config import HubCacheConfig, load_config
from .constants import LIBRARY_VERSION
from .delete import DeleteCacheStrategy, DeletionReport, plan_revision_deletion
from .download import (
    HubDownloader,
    download_file,
    download_snapshot,
    try_to_load_from_cache,
)
from .errors import (
    CorruptedCacheError,
    EntryNotFoundError,
    FileMetadataError,
    GatedRepoError,
    HubCacheError,
    HubConnectionError,
    HubHTTPError,
    LocalEntryNotFoundError,
    RepositoryNotFoundError,
    RevisionNotFoundError,
    ValidationError,
)
from .revision import CommitRevision, NamedRevision, parse_revision
from .scan import CacheScanner, cached_repo_path, scan_cache_dir
from .schemas import CachedFileInfo, CachedRepoInfo, CachedRevisionInfo, CacheInfo

__version__ = LIBRARY_VERSION

__all__ = [
    "CacheInfo",
    "CacheScanner",
    "CachedFileInfo",
    "CachedRepoInfo",
    "CachedRevisionInfo",
    "CommitRevision",
    "CorruptedCacheError",
    "DeleteCacheStrategy",
    "DeletionReport",
    "EntryNotFoundError",
    "FileMetadataError",
    "GatedRepoError",
    "HubCacheConfig",
    "HubCacheError",
    "HubClient",
    "HubConnectionError",
    "HubDownloader",
    "HubHTTPError",
    "LocalEntryNotFoundError",
    "NamedRevision",
    "RepositoryNotFoundError",
    "RevisionNotFoundError",
    "ValidationError",
    "__version__",
    "cached_repo_path",
    "download_file",
    "download_snapshot",
    "hub_url",
    "load_config",
    "parse_revision",
    "plan_revision_deletion",
    "scan_cache_dir",
    "try_to_load_from_cache",
]
