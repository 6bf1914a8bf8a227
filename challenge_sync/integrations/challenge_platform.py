"""
Client for the challenge platform REST API.

Challenges, their resources (participants in a role) and member lookups.
Every failure is converted to ``ChallengePlatformError``, which the retry
subsystem treats as transient.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..config import Settings, get_settings
from ..data.models.events import ChallengeStatus
from ..errors import convert_platform_error

logger = structlog.get_logger()


def build_prize_sets(
    prizes: List[int], copilot_fee: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Placement prize set, plus a copilot prize set when a fee is given."""
    prize_sets: List[Dict[str, Any]] = [
        {
            "type": "placement",
            "prizes": [{"type": "USD", "value": prize} for prize in prizes],
        }
    ]
    if copilot_fee is not None:
        prize_sets.append(
            {"type": "copilot", "prizes": [{"type": "USD", "value": copilot_fee}]}
        )
    return prize_sets


class ChallengePlatformClient:
    """
    Integration client for the challenge platform.

    Args:
        settings: Application settings (API URL, M2M token, template ids)
        transport: Optional httpx transport, used to stub the API in tests
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        headers = {"Content-Type": "application/json"}
        if self.settings.platform_m2m_token:
            headers["Authorization"] = f"Bearer {self.settings.platform_m2m_token}"
        self.client = httpx.AsyncClient(
            base_url=self.settings.platform_api_url.rstrip("/"),
            timeout=self.settings.platform_request_timeout,
            headers=headers,
            transport=transport,
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
        except httpx.HTTPError as e:
            logger.error(
                "platform_request_failed", method=method, path=path, error=str(e)
            )
            raise convert_platform_error(e, error_message) from e
        logger.debug(
            "platform_request", method=method, path=path, status=response.status_code
        )
        return response

    async def create_challenge(
        self,
        name: str,
        description: str,
        prizes: List[int],
        project_id: Optional[int],
        tags: Optional[List[str]] = None,
    ) -> str:
        """
        Create a challenge in the configured initial status.

        Returns:
            The challenge uuid assigned by the platform.
        """
        body = {
            "status": self.settings.new_challenge_status,
            "typeId": self.settings.type_id_task,
            "name": name,
            "description": description,
            "prizeSets": build_prize_sets(prizes),
            "timelineTemplateId": self.settings.default_timeline_template_id,
            "projectId": project_id,
            "trackId": self.settings.default_track_id,
            "tags": list(tags or []),
            "legacy": {"pureV5Task": True},
            "startDate": datetime.now(timezone.utc).isoformat(),
        }
        response = await self._request(
            "POST", "/challenges", json=body, error_message="Failed to create challenge."
        )
        return response.json().get("id")

    async def update_challenge(self, challenge_id: str, patch: Dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            f"/challenges/{challenge_id}",
            json=patch,
            error_message="Failed to update challenge.",
        )

    async def get_challenge(self, challenge_id: str) -> Dict[str, Any]:
        response = await self._request(
            "GET",
            f"/challenges/{challenge_id}",
            error_message="Failed to get challenge details by Id",
        )
        return response.json()

    async def activate_challenge(self, challenge_id: str) -> None:
        await self._request(
            "PATCH",
            f"/challenges/{challenge_id}",
            json={"status": ChallengeStatus.ACTIVE.value},
            error_message="Failed to activate challenge.",
        )

    async def close_challenge(
        self, challenge_id: str, winner_id: Any, winner_handle: str
    ) -> None:
        """Complete the challenge with a single first-place winner."""
        await self._request(
            "PATCH",
            f"/challenges/{challenge_id}",
            json={
                "status": ChallengeStatus.COMPLETED.value,
                "winners": [
                    {"userId": winner_id, "handle": winner_handle, "placement": 1}
                ],
            },
            error_message="Failed to close challenge.",
        )

    async def cancel_challenge(self, challenge_id: str) -> None:
        await self._request(
            "PATCH",
            f"/challenges/{challenge_id}",
            json={"status": ChallengeStatus.CANCELLED.value},
            error_message="Failed to cancel challenge.",
        )

    async def add_participant(self, challenge_id: str, handle: str, role_id: str) -> None:
        await self._request(
            "POST",
            "/resources",
            json={"challengeId": challenge_id, "memberHandle": handle, "roleId": role_id},
            error_message="Failed to add resource to the challenge.",
        )

    async def remove_participant(
        self, challenge_id: str, handle: str, role_id: str
    ) -> None:
        await self._request(
            "DELETE",
            "/resources",
            json={"challengeId": challenge_id, "memberHandle": handle, "roleId": role_id},
            error_message="Failed to remove resource from the challenge.",
        )

    async def get_participants(self, challenge_id: str) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            "/resources",
            params={"challengeId": challenge_id},
            error_message="Failed to fetch resource from the challenge.",
        )
        return response.json() or []

    async def is_role_already_set(self, challenge_id: str, role_id: str) -> bool:
        participants = await self.get_participants(challenge_id)
        return any(resource.get("roleId") == role_id for resource in participants)

    async def resolve_platform_user_id(self, handle: str) -> Any:
        response = await self._request(
            "GET", f"/members/{handle}", error_message="Failed to get member id."
        )
        return response.json().get("userId")
