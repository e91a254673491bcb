"""GitHub REST collaborator listing repository tags and branches."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from imagematrix.config.model import VersionFrom
from imagematrix.errors import VersionError, VersionErrorKind

API_URL = "https://api.github.com"
PER_PAGE = 100
MAX_PAGES = 10


def token_from_env(explicit: str | None = None) -> str | None:
    """Prefer an explicit token, then ``GH_TOKEN``, then ``GITHUB_TOKEN``."""
    return explicit or os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN") or None


@dataclass(slots=True)
class GithubClient:
    token: str | None = None
    base_url: str = API_URL
    timeout: float = 30.0
    max_pages: int = MAX_PAGES
    transport: httpx.BaseTransport | None = None
    _client: httpx.Client = field(init=False, repr=False)

    def __post_init__(self) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    def list_refs(self, org: str, project: str, mode: VersionFrom) -> tuple[str, ...]:
        """Return tag or branch names of ``org/project``, in API order."""
        endpoint = "tags" if mode == "tags" else "branches"
        names: list[str] = []
        for page in range(1, self.max_pages + 1):
            items = self._get_page(f"/repos/{org}/{project}/{endpoint}", page=page, org=org, project=project)
            names.extend(_item_name(item, org=org, project=project) for item in items)
            if len(items) < PER_PAGE:
                break
        return tuple(names)

    def close(self) -> None:
        self._client.close()

    def _get_page(self, path: str, *, page: int, org: str, project: str) -> list[Any]:
        context = {"operation": "list_refs", "repository": f"{org}/{project}", "page": str(page)}
        try:
            response = self._client.get(path, params={"per_page": PER_PAGE, "page": page})
        except httpx.TransportError as exc:
            raise VersionError(
                "GitHub request failed.",
                kind=VersionErrorKind.NETWORK_FAILURE,
                hint=str(exc),
                context=context,
            ) from exc

        if _is_rate_limited(response):
            raise VersionError(
                "GitHub rate limit exceeded.",
                kind=VersionErrorKind.RATE_LIMITED,
                hint="Provide --github-token or set GITHUB_TOKEN.",
                context={**context, "reset": response.headers.get("x-ratelimit-reset", "")},
            )
        if response.status_code == 404:
            raise VersionError(
                "GitHub repository not found.",
                kind=VersionErrorKind.NOT_FOUND,
                context=context,
            )
        if response.status_code >= 500:
            raise VersionError(
                "GitHub server error.",
                kind=VersionErrorKind.NETWORK_FAILURE,
                context={**context, "status": str(response.status_code)},
            )
        if response.status_code >= 400:
            raise VersionError(
                "GitHub request was rejected.",
                kind=VersionErrorKind.NOT_FOUND,
                context={**context, "status": str(response.status_code)},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise VersionError(
                "GitHub response is not valid JSON.",
                kind=VersionErrorKind.AMBIGUOUS_OUTPUT,
                context=context,
            ) from exc
        if not isinstance(payload, list):
            raise VersionError(
                "GitHub response has invalid structure.",
                kind=VersionErrorKind.AMBIGUOUS_OUTPUT,
                context=context,
            )
        return payload


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"


def _item_name(item: Any, *, org: str, project: str) -> str:
    name = item.get("name") if isinstance(item, dict) else None
    if not isinstance(name, str):
        raise VersionError(
            "GitHub ref entry has no name.",
            kind=VersionErrorKind.AMBIGUOUS_OUTPUT,
            context={"operation": "list_refs", "repository": f"{org}/{project}"},
        )
    return name
