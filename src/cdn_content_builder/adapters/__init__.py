"""外部コラボレータのアダプタ群."""

from .base_adapter import CacheInvalidationBackend, PublishBackend, SourceProvider, StorageSync
from .github_backend import GithubPublishBackend
from .github_source import GithubSourceProvider
from .storage import HttpPurgeInvalidator, LocalMirrorSync

__all__ = [
    "SourceProvider",
    "PublishBackend",
    "StorageSync",
    "CacheInvalidationBackend",
    "GithubSourceProvider",
    "GithubPublishBackend",
    "LocalMirrorSync",
    "HttpPurgeInvalidator",
]
