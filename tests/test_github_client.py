from __future__ import annotations

from datetime import UTC, datetime

import allure
import httpx
import pytest

from stackscan.config import GithubSettings
from stackscan.github.client import (
    GithubClient,
    GithubLookupError,
    InvalidRepoUrlError,
    RepoRef,
    parse_repo_url,
)

pytestmark = [
    allure.epic("GitHub"),
    allure.feature("REST Client"),
]

_REPO_PAYLOAD = {
    "name": "widgets",
    "full_name": "acme/widgets",
    "owner": {"login": "acme"},
    "default_branch": "trunk",
    "description": "Widget factory",
    "private": False,
    "language": "Go",
    "stargazers_count": 42,
    "forks_count": 7,
    "html_url": "https://github.com/acme/widgets",
    "clone_url": "https://github.com/acme/widgets.git",
    "created_at": "2020-01-01T00:00:00Z",
    "updated_at": "2026-01-01T00:00:00Z",
}


def _client(handler, *, token: str | None = None) -> GithubClient:
    return GithubClient(GithubSettings(token=token), transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://github.com/acme/widgets", RepoRef("acme", "widgets")),
        ("https://github.com/acme/widgets.git", RepoRef("acme", "widgets")),
        ("https://www.github.com/acme/my.repo/", RepoRef("acme", "my.repo")),
        ("git@github.com:acme/widgets.git", RepoRef("acme", "widgets")),
        ("ssh://git@github.com/acme/widgets", RepoRef("acme", "widgets")),
    ],
)
def test_parse_repo_url_accepts_https_and_ssh(url: str, expected: RepoRef) -> None:
    assert parse_repo_url(url) == expected


@pytest.mark.parametrize(
    "url",
    ["", "https://gitlab.com/acme/widgets", "https://github.com/acme", "not a url"],
)
def test_parse_repo_url_rejects_other_urls(url: str) -> None:
    with pytest.raises(InvalidRepoUrlError, match="Invalid GitHub repository URL"):
        parse_repo_url(url)


def test_get_repo_metadata_maps_payload_and_sends_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_REPO_PAYLOAD)

    with _client(handler, token="ghp_secret") as client:
        metadata = client.get_repo_metadata("https://github.com/acme/widgets.git")

    assert seen[0].url.path == "/repos/acme/widgets"
    assert seen[0].headers["Authorization"] == "Bearer ghp_secret"
    assert seen[0].headers["Accept"] == "application/vnd.github.v3+json"
    assert metadata.full_name == "acme/widgets"
    assert metadata.default_branch == "trunk"
    assert metadata.stars == 42
    assert metadata.to_dict()["is_private"] is False


@pytest.mark.parametrize(
    ("status_code", "message"),
    [
        (404, "Repository not found"),
        (403, "Access forbidden - repository may be private"),
        (401, "Authentication failed - check your GitHub token"),
        (500, "GitHub API returned HTTP 500"),
    ],
)
def test_error_statuses_become_lookup_errors(status_code: int, message: str) -> None:
    with _client(lambda request: httpx.Response(status_code, json={})) as client:
        with pytest.raises(GithubLookupError, match=message) as excinfo:
            client.get_repo_metadata("https://github.com/acme/widgets")

    assert excinfo.value.status_code == status_code


def test_transport_errors_become_lookup_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client:
        with pytest.raises(GithubLookupError, match="connection refused") as excinfo:
            client.get_repo_metadata("https://github.com/acme/widgets")

    assert excinfo.value.status_code == 0


def test_get_rate_limit() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/rate_limit"
        return httpx.Response(
            200,
            json={"rate": {"limit": 60, "remaining": 59, "reset": 1_800_000_000}},
        )

    with _client(handler) as client:
        rate = client.get_rate_limit()

    assert rate.limit == 60
    assert rate.remaining == 59
    assert rate.reset_at == datetime.fromtimestamp(1_800_000_000, tz=UTC)


def test_get_rate_limit_wraps_failures() -> None:
    with _client(lambda request: httpx.Response(200, json={"resources": {}})) as client:
        with pytest.raises(GithubLookupError, match="Failed to get rate limit information"):
            client.get_rate_limit()
