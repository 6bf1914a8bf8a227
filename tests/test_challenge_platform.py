"""Tests for the challenge platform client against a mocked transport."""

import json

import httpx
import pytest

from challenge_sync.errors import ChallengePlatformError, is_retryable
from challenge_sync.integrations.challenge_platform import (
    ChallengePlatformClient,
    build_prize_sets,
)


@pytest.fixture
def platform_settings(settings):
    return settings.model_copy(update={"platform_m2m_token": "m2m-token"})


def make_client(settings, handler):
    requests = []

    def recording_handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = ChallengePlatformClient(settings, transport=httpx.MockTransport(recording_handler))
    return client, requests


def test_build_prize_sets():
    assert build_prize_sets([500, 200]) == [
        {
            "type": "placement",
            "prizes": [{"type": "USD", "value": 500}, {"type": "USD", "value": 200}],
        }
    ]
    assert build_prize_sets([500], copilot_fee=40)[1] == {
        "type": "copilot",
        "prizes": [{"type": "USD", "value": 40}],
    }


class TestChallengePlatformClient:
    """Test cases for ChallengePlatformClient."""

    @pytest.mark.asyncio
    async def test_create_challenge(self, platform_settings):
        client, requests = make_client(
            platform_settings, lambda request: httpx.Response(201, json={"id": "c-1"})
        )

        challenge_id = await client.create_challenge(
            name="Fix login",
            description="Login is broken",
            prizes=[100],
            project_id=1001,
            tags=["python"],
        )
        await client.close()

        assert challenge_id == "c-1"
        request = requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/challenges")
        assert request.headers["Authorization"] == "Bearer m2m-token"
        body = json.loads(request.content)
        assert body["name"] == "Fix login"
        assert body["status"] == platform_settings.new_challenge_status
        assert body["typeId"] == platform_settings.type_id_task
        assert body["projectId"] == 1001
        assert body["tags"] == ["python"]
        assert body["prizeSets"] == build_prize_sets([100])
        assert body["legacy"] == {"pureV5Task": True}

    @pytest.mark.asyncio
    async def test_close_challenge_sets_winner(self, platform_settings):
        client, requests = make_client(
            platform_settings, lambda request: httpx.Response(200, json={})
        )

        await client.close_challenge("c-1", 8547, "alice")

        body = json.loads(requests[0].content)
        assert requests[0].method == "PATCH"
        assert requests[0].url.path.endswith("/challenges/c-1")
        assert body == {
            "status": "Completed",
            "winners": [{"userId": 8547, "handle": "alice", "placement": 1}],
        }

    @pytest.mark.asyncio
    async def test_is_role_already_set(self, platform_settings):
        resources = [{"memberHandle": "copilot1", "roleId": platform_settings.role_id_copilot}]
        client, requests = make_client(
            platform_settings, lambda request: httpx.Response(200, json=resources)
        )

        assert await client.is_role_already_set("c-1", platform_settings.role_id_copilot)
        assert not await client.is_role_already_set("c-1", platform_settings.role_id_submitter)
        assert requests[0].url.params["challengeId"] == "c-1"

    @pytest.mark.asyncio
    async def test_remove_participant_sends_body(self, platform_settings):
        client, requests = make_client(
            platform_settings, lambda request: httpx.Response(200, json={})
        )

        await client.remove_participant("c-1", "alice", "role-1")

        assert requests[0].method == "DELETE"
        assert json.loads(requests[0].content) == {
            "challengeId": "c-1",
            "memberHandle": "alice",
            "roleId": "role-1",
        }

    @pytest.mark.asyncio
    async def test_resolve_platform_user_id(self, platform_settings):
        client, requests = make_client(
            platform_settings, lambda request: httpx.Response(200, json={"userId": 8547})
        )

        assert await client.resolve_platform_user_id("alice") == 8547
        assert requests[0].url.path.endswith("/members/alice")

    @pytest.mark.asyncio
    async def test_errors_are_retryable(self, platform_settings):
        client, _ = make_client(
            platform_settings,
            lambda request: httpx.Response(503, json={"message": "Service unavailable"}),
        )

        with pytest.raises(ChallengePlatformError) as exc_info:
            await client.get_challenge("c-1")

        err = exc_info.value
        assert err.status_code == 503
        assert err.message == "Failed to get challenge details by Id. Service unavailable"
        assert is_retryable(err)

    @pytest.mark.asyncio
    async def test_transport_errors_are_retryable(self, platform_settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(platform_settings, handler)

        with pytest.raises(ChallengePlatformError) as exc_info:
            await client.activate_challenge("c-1")

        assert exc_info.value.status_code == 500
        assert is_retryable(exc_info.value)
