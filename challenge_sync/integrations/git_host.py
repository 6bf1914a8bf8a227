"""
Git host adapters.

The issue processor talks to the tracker through the ``GitHost`` capability
only; ``get_git_host`` picks the GitHub or GitLab adapter once per event,
authenticated as the repository copilot.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import structlog

from ..config import Settings, get_settings
from ..data.models.events import Provider
from ..data.models.identity import Copilot
from ..errors import convert_git_host_error

logger = structlog.get_logger()

ISSUE_STATES = ("open", "closed")


@dataclass(frozen=True)
class IssueRef:
    """Address of one tracker issue."""

    repository_id: str
    repository_full_name: str
    number: int


class GitHost(ABC):
    """
    Capability set the issue processor needs from a git host.

    Every failure surfaces as ``GitHostError``.
    """

    provider: str = ""

    def __init__(
        self,
        copilot: Copilot,
        base_url: str,
        headers: Dict[str, str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.copilot = copilot
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, headers=headers, transport=transport
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _request(
        self, method: str, path: str, *, error_message: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            logger.error(
                "git_host_request_failed",
                provider=self.provider,
                method=method,
                path=path,
                error=str(e),
            )
            raise convert_git_host_error(e, error_message, self.provider) from e

    @abstractmethod
    async def create_comment(self, ref: IssueRef, body: str) -> None:
        """Post a comment on the issue."""

    @abstractmethod
    async def update_title(self, ref: IssueRef, title: str) -> None:
        """Rename the issue."""

    @abstractmethod
    async def assign(self, ref: IssueRef, username: str) -> None:
        """Assign the issue to ``username``."""

    @abstractmethod
    async def unassign(self, ref: IssueRef, user_id: int) -> None:
        """Remove the user with id ``user_id`` from the issue assignees."""

    @abstractmethod
    async def set_labels(self, ref: IssueRef, labels: List[str]) -> None:
        """Replace the issue labels."""

    @abstractmethod
    async def set_state(self, ref: IssueRef, state: str) -> None:
        """Open or close the issue (``state`` is ``open`` or ``closed``)."""

    @abstractmethod
    async def resolve_username_by_id(self, user_id: int) -> Optional[str]:
        """Username for a numeric user id."""

    @abstractmethod
    async def resolve_id_by_username(self, username: str) -> Optional[int]:
        """Numeric user id for a username, or None when no such user exists."""


class GithubHost(GitHost):
    """GitHub REST v3 adapter."""

    provider = Provider.GITHUB.value

    def __init__(
        self,
        copilot: Copilot,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        super().__init__(
            copilot,
            settings.github_api_url,
            headers={
                "Authorization": f"token {copilot.access_token}",
                "Accept": "application/vnd.github+json",
            },
            timeout=settings.git_request_timeout,
            transport=transport,
        )

    @staticmethod
    def _issue_path(ref: IssueRef) -> str:
        return f"/repos/{ref.repository_full_name}/issues/{ref.number}"

    async def create_comment(self, ref: IssueRef, body: str) -> None:
        await self._request(
            "POST",
            f"{self._issue_path(ref)}/comments",
            json={"body": body},
            error_message="Error occurred during creating comment on issue",
        )
        logger.debug("github_comment_created", issue=ref.number)

    async def update_title(self, ref: IssueRef, title: str) -> None:
        await self._request(
            "PATCH",
            self._issue_path(ref),
            json={"title": title},
            error_message="Error occurred during updating issue title",
        )

    async def assign(self, ref: IssueRef, username: str) -> None:
        await self._request(
            "POST",
            f"{self._issue_path(ref)}/assignees",
            json={"assignees": [username]},
            error_message="Error occurred during assigning issue user",
        )

    async def unassign(self, ref: IssueRef, user_id: int) -> None:
        username = await self.resolve_username_by_id(user_id)
        await self._request(
            "DELETE",
            f"{self._issue_path(ref)}/assignees",
            json={"assignees": [username]},
            error_message="Error occurred during removing assignee from issue",
        )

    async def set_labels(self, ref: IssueRef, labels: List[str]) -> None:
        await self._request(
            "PATCH",
            self._issue_path(ref),
            json={"labels": list(labels)},
            error_message="Error occurred during updating issue labels",
        )

    async def set_state(self, ref: IssueRef, state: str) -> None:
        if state not in ISSUE_STATES:
            raise ValueError(f"Unknown issue state: {state}")
        await self._request(
            "PATCH",
            self._issue_path(ref),
            json={"state": state},
            error_message=f"Error occurred during changing issue state to {state}",
        )

    async def resolve_username_by_id(self, user_id: int) -> Optional[str]:
        response = await self._request(
            "GET",
            f"/user/{user_id}",
            error_message="Error occurred during getting github user by id",
        )
        return response.json().get("login")

    async def resolve_id_by_username(self, username: str) -> Optional[int]:
        try:
            response = await self.client.get(f"/users/{quote(username)}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise convert_git_host_error(
                e, "Error occurred during getting github user by username", self.provider
            ) from e
        return response.json().get("id")


class GitlabHost(GitHost):
    """GitLab REST v4 adapter. ``repository_id`` is the GitLab project id."""

    provider = Provider.GITLAB.value

    def __init__(
        self,
        copilot: Copilot,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        super().__init__(
            copilot,
            f"{settings.gitlab_base_url.rstrip('/')}/api/v4",
            headers={"Authorization": f"Bearer {copilot.access_token}"},
            timeout=settings.git_request_timeout,
            transport=transport,
        )

    @staticmethod
    def _issue_path(ref: IssueRef) -> str:
        return f"/projects/{ref.repository_id}/issues/{ref.number}"

    async def create_comment(self, ref: IssueRef, body: str) -> None:
        await self._request(
            "POST",
            f"{self._issue_path(ref)}/notes",
            json={"body": body},
            error_message="Error occurred during creating comment on issue",
        )
        logger.debug("gitlab_comment_created", issue=ref.number)

    async def update_title(self, ref: IssueRef, title: str) -> None:
        await self._request(
            "PUT",
            self._issue_path(ref),
            json={"title": title},
            error_message="Error occurred during updating issue title",
        )

    async def _assignee_ids(self, ref: IssueRef) -> List[int]:
        response = await self._request(
            "GET",
            self._issue_path(ref),
            error_message="Error occurred during getting issue",
        )
        return [assignee["id"] for assignee in response.json().get("assignees") or []]

    async def assign(self, ref: IssueRef, username: str) -> None:
        user_id = await self.resolve_id_by_username(username)
        if user_id is None:
            logger.warning("gitlab_assignee_not_found", username=username)
            return
        await self._request(
            "PUT",
            self._issue_path(ref),
            json={"assignee_ids": [user_id]},
            error_message="Error occurred during assigning issue user",
        )

    async def unassign(self, ref: IssueRef, user_id: int) -> None:
        remaining = [uid for uid in await self._assignee_ids(ref) if uid != user_id]
        await self._request(
            "PUT",
            self._issue_path(ref),
            json={"assignee_ids": remaining or [0]},
            error_message="Error occurred during removing assignee from issue",
        )

    async def set_labels(self, ref: IssueRef, labels: List[str]) -> None:
        await self._request(
            "PUT",
            self._issue_path(ref),
            json={"labels": ",".join(labels)},
            error_message="Error occurred during updating issue labels",
        )

    async def set_state(self, ref: IssueRef, state: str) -> None:
        if state not in ISSUE_STATES:
            raise ValueError(f"Unknown issue state: {state}")
        await self._request(
            "PUT",
            self._issue_path(ref),
            json={"state_event": "reopen" if state == "open" else "close"},
            error_message=f"Error occurred during changing issue state to {state}",
        )

    async def resolve_username_by_id(self, user_id: int) -> Optional[str]:
        response = await self._request(
            "GET",
            f"/users/{user_id}",
            error_message="Error occurred during getting gitlab user by id",
        )
        return response.json().get("username")

    async def resolve_id_by_username(self, username: str) -> Optional[int]:
        response = await self._request(
            "GET",
            "/users",
            params={"username": username},
            error_message="Error occurred during getting gitlab user by username",
        )
        users = response.json()
        return users[0]["id"] if users else None


def get_git_host(
    provider: str,
    copilot: Copilot,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GitHost:
    """Select the adapter for ``provider``, authenticated as ``copilot``."""
    if provider == Provider.GITHUB.value:
        return GithubHost(copilot, settings=settings, transport=transport)
    if provider == Provider.GITLAB.value:
        return GitlabHost(copilot, settings=settings, transport=transport)
    raise ValueError(f"Unsupported git provider: {provider}")
