"""GitHub REST API lookups."""

from stackscan.github.client import (
    GithubClient,
    GithubLookupError,
    InvalidRepoUrlError,
    RateLimit,
    RepoMetadata,
    RepoRef,
    parse_repo_url,
)

__all__ = [
    "GithubClient",
    "GithubLookupError",
    "InvalidRepoUrlError",
    "RateLimit",
    "RepoMetadata",
    "RepoRef",
    "parse_repo_url",
]
