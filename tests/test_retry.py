"""Tests for the retry / reschedule subsystem."""

from datetime import datetime, timedelta, timezone

import pytest

from challenge_sync.core.context import EventContext, WorkingIssue
from challenge_sync.core.retry import RetryScheduler
from challenge_sync.db.services import ScheduledEventService
from challenge_sync.errors import (
    ChallengePlatformError,
    GitHostError,
    InternalDependencyError,
    IssueAlreadyExistsError,
    is_retryable,
)
from challenge_sync.integrations.git_host import IssueRef
from challenge_sync.schemas.issue_event_v1 import IssueEventV1

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
KEY = "github-4242-7"


@pytest.fixture
def retry(db_session, settings):
    return RetryScheduler(db_session, settings, clock=lambda: NOW)


@pytest.fixture
def make_ctx(git_host, make_event):
    def _make_ctx(event_type="issue.created", payment_successful=False, **overrides):
        event = IssueEventV1.model_validate(make_event(event_type, **overrides))
        return EventContext(
            event=event,
            issue=WorkingIssue(
                number=7,
                title="Fix login",
                body="Login is broken",
                provider="github",
                repository_id="4242",
                labels=list(event.labels),
                prizes=[100],
                repo_url="https://github.com/acme/widgets",
            ),
            ref=IssueRef("4242", "acme/widgets", 7),
            git_host=git_host,
            payment_successful=payment_successful,
        )

    return _make_ctx


def test_retryable_sources():
    assert is_retryable(ChallengePlatformError("down"))
    assert is_retryable(InternalDependencyError("still creating"))
    assert not is_retryable(GitHostError("rate limited"))
    assert not is_retryable(IssueAlreadyExistsError("duplicate"))
    assert not is_retryable(ValueError("boom"))


class TestRetryScheduler:
    """Test cases for RetryScheduler.handle_event_gracefully."""

    @pytest.mark.asyncio
    async def test_schedules_redelivery(self, retry, make_ctx, db_session, settings):
        err = ChallengePlatformError("down", status_code=503)

        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(make_ctx(), err)

        pending = ScheduledEventService(db_session).get_pending(KEY)
        assert len(pending) == 1
        assert pending[0].payload["retryCount"] == 1
        assert pending[0].payload["eventType"] == "issue.created"
        assert pending[0].is_retry is True
        expected_due = NOW + timedelta(seconds=settings.retry_interval_seconds)
        assert pending[0].due_at.replace(tzinfo=None) == expected_due.replace(tzinfo=None)
        assert err.retry_handled

    @pytest.mark.asyncio
    async def test_payment_state_travels_with_retry(self, retry, make_ctx, db_session):
        ctx = make_ctx("issue.closed", payment_successful=True)

        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(ctx, ChallengePlatformError("down"))

        payload = ScheduledEventService(db_session).get_pending(KEY)[0].payload
        assert payload["paymentSuccessful"] is True

    @pytest.mark.asyncio
    async def test_git_host_errors_are_not_retried(self, retry, make_ctx, db_session, git_host):
        with pytest.raises(GitHostError):
            await retry.handle_event_gracefully(make_ctx(), GitHostError("forbidden", status_code=403))

        assert ScheduledEventService(db_session).get_pending() == []
        assert git_host.calls == []

    @pytest.mark.asyncio
    async def test_handled_error_is_not_scheduled_twice(self, retry, make_ctx, db_session):
        ctx = make_ctx()
        err = ChallengePlatformError("down")

        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(ctx, err)
        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(ctx, err)

        assert len(ScheduledEventService(db_session).get_pending()) == 1

    @pytest.mark.asyncio
    async def test_exhausted_creation_reports_failure(self, retry, make_ctx, db_session, git_host):
        ctx = make_ctx(retryCount=2)

        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(ctx, ChallengePlatformError("down"))

        assert ScheduledEventService(db_session).get_pending() == []
        assert git_host.comments == [
            "The challenge creation on the Topcoder X platform failed.  "
            "Please contact support to try again"
        ]

    @pytest.mark.asyncio
    async def test_exhausted_payment_reopens_issue(self, retry, make_ctx, git_host):
        ctx = make_ctx("issue.closed", retryCount=2)

        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(
                ctx, ChallengePlatformError("Failed to close challenge.", status_code=503)
            )

        assert git_host.comments == ["Payment failed: [503]: Failed to close challenge."]
        assert ("set_state", "open") in git_host.calls
        assert git_host.labels == ["tcx_ReadyForReview"]

    @pytest.mark.asyncio
    async def test_exhausted_update_comments_error(self, retry, make_ctx, git_host):
        ctx = make_ctx("issue.updated", retryCount=2)

        with pytest.raises(InternalDependencyError):
            await retry.handle_event_gracefully(ctx, InternalDependencyError("still creating"))

        assert git_host.comments == ["[500]: still creating"]

    @pytest.mark.asyncio
    async def test_exhaustion_cancels_pending_redeliveries(self, retry, make_ctx, db_session):
        events = ScheduledEventService(db_session)
        events.schedule(
            KEY, {"eventType": "issue.updated"}, due_at=NOW + timedelta(hours=1), is_retry=True
        )

        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(
                make_ctx("issue.updated", retryCount=2), ChallengePlatformError("down")
            )

        assert events.get_pending(KEY) == []

    @pytest.mark.asyncio
    async def test_fallback_git_host_failure_is_logged(self, retry, make_ctx, git_host):
        git_host.fail_on.add("create_comment")

        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(
                make_ctx("issue.closed", retryCount=2), ChallengePlatformError("down")
            )

        assert git_host.called("set_state") == []

    @pytest.mark.asyncio
    async def test_exhaustion_keeps_queued_intake_events(self, retry, make_ctx, db_session):
        events = ScheduledEventService(db_session)
        intake = events.schedule(KEY, {"eventType": "issue.assigned", "issueNumber": 7})

        with pytest.raises(ChallengePlatformError):
            await retry.handle_event_gracefully(
                make_ctx("issue.updated", retryCount=2), ChallengePlatformError("down")
            )

        assert [row.id for row in events.get_pending(KEY)] == [intake.id]
