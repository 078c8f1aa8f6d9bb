"""Thin GitHub REST client for repository metadata and rate limits."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from stackscan.config import GithubSettings

logger = logging.getLogger(__name__)

_HTTPS_RE = re.compile(r"^https?://(?:www\.)?github\.com/([\w.-]+)/([\w.-]+?)/?$")
_SSH_RE = re.compile(r"^(?:ssh://)?git@github\.com[:/]([\w.-]+)/([\w.-]+?)/?$")

_STATUS_MESSAGES = {
    404: "Repository not found",
    403: "Access forbidden - repository may be private",
    401: "Authentication failed - check your GitHub token",
}


class InvalidRepoUrlError(ValueError):
    def __init__(self, repo_url: str) -> None:
        super().__init__(f"Invalid GitHub repository URL: {repo_url}")
        self.repo_url = repo_url


class GithubLookupError(RuntimeError):
    """GitHub API call failed; ``status_code`` is 0 for transport errors."""

    def __init__(self, message: str, *, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True, frozen=True)
class RepoRef:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(slots=True, frozen=True)
class RepoMetadata:
    name: str
    full_name: str
    owner: str
    default_branch: str
    description: str | None
    is_private: bool
    language: str | None
    stars: int
    forks: int
    html_url: str
    clone_url: str
    created_at: str | None
    updated_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class RateLimit:
    limit: int
    remaining: int
    reset_at: datetime


def parse_repo_url(repo_url: str) -> RepoRef:
    """Extract owner and repository name from an https or ssh GitHub URL."""

    cleaned = repo_url.strip()
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]
    match = _HTTPS_RE.match(cleaned) or _SSH_RE.match(cleaned)
    if not match:
        raise InvalidRepoUrlError(repo_url)
    return RepoRef(owner=match.group(1), name=match.group(2))


class GithubClient:
    """GitHub API wrapper. Pass ``transport`` to stub the network in tests."""

    def __init__(
        self,
        settings: GithubSettings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or GithubSettings()
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "stackscan",
        }
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"
        self._client = httpx.Client(
            base_url=self.settings.api_url,
            headers=headers,
            timeout=httpx.Timeout(self.settings.timeout_seconds),
            transport=transport,
            follow_redirects=True,
        )

    def get_repo_metadata(self, repo_url: str) -> RepoMetadata:
        ref = parse_repo_url(repo_url)
        data = self._get_json(f"/repos/{ref.owner}/{ref.name}")
        return RepoMetadata(
            name=data["name"],
            full_name=data["full_name"],
            owner=(data.get("owner") or {}).get("login", ref.owner),
            default_branch=data.get("default_branch") or "main",
            description=data.get("description"),
            is_private=bool(data.get("private")),
            language=data.get("language"),
            stars=int(data.get("stargazers_count") or 0),
            forks=int(data.get("forks_count") or 0),
            html_url=data.get("html_url", ""),
            clone_url=data.get("clone_url", ""),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def get_rate_limit(self) -> RateLimit:
        try:
            rate = self._get_json("/rate_limit")["rate"]
            return RateLimit(
                limit=int(rate["limit"]),
                remaining=int(rate["remaining"]),
                reset_at=datetime.fromtimestamp(int(rate["reset"]), tz=UTC),
            )
        except (GithubLookupError, KeyError, TypeError, ValueError) as error:
            raise GithubLookupError("Failed to get rate limit information") from error

    def _get_json(self, path: str) -> dict[str, Any]:
        try:
            response = self._client.get(path)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling GitHub %s", path)
            raise GithubLookupError(f"GitHub request timed out: {path}") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling GitHub %s: %s", path, error)
            raise GithubLookupError(str(error) or "Failed to validate repository") from error

        if not response.is_success:
            message = _STATUS_MESSAGES.get(
                response.status_code,
                f"GitHub API returned HTTP {response.status_code}",
            )
            raise GithubLookupError(message, status_code=response.status_code)
        payload = response.json()
        if not isinstance(payload, dict):
            raise GithubLookupError(f"Unexpected GitHub response for {path}")
        return payload

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GithubClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
