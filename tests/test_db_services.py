"""
Tests for the database services.

Verifies:
- IssueService create/update/delete and the one-record-per-issue constraint
- UserMappingService lookups by git user and handle
- CreationLockService leases
- ScheduledEventService scheduling, claiming and cancellation
"""

from datetime import timedelta

import pytest

from challenge_sync.db.models import UserMappingModel, utcnow
from challenge_sync.db.services import (
    CreationLockService,
    IssueService,
    ScheduledEventService,
    UserMappingService,
)
from challenge_sync.errors import InternalDependencyError, IssueAlreadyExistsError


def issue_fields(**overrides) -> dict:
    fields = {
        "provider": "github",
        "repository_id": "4242",
        "number": 7,
        "title": "Fix login",
        "body": "Login is broken",
        "prizes": [100],
        "labels": ["tcx_OpenForPickup"],
        "status": "challenge_creation_pending",
    }
    fields.update(overrides)
    return fields


class TestIssueService:
    """Tests for IssueService."""

    def test_create_and_find(self, db_session):
        issues = IssueService(db_session)

        created = issues.create(**issue_fields())
        found = issues.find_one("github", "4242", 7)

        assert found.id == created.id
        assert found.prizes == [100]
        assert found.updated_at is not None

    def test_duplicate_issue_rejected(self, db_session):
        issues = IssueService(db_session)
        issues.create(**issue_fields())

        with pytest.raises(IssueAlreadyExistsError) as exc_info:
            issues.create(**issue_fields(title="Other"))

        assert exc_info.value.status_code == 409
        assert len(issues.list_issues()) == 1

    def test_same_number_in_other_repository(self, db_session):
        issues = IssueService(db_session)
        issues.create(**issue_fields())
        issues.create(**issue_fields(repository_id="9999"))

        assert len(issues.list_issues()) == 2

    def test_update(self, db_session):
        issues = IssueService(db_session)
        created = issues.create(**issue_fields())

        updated = issues.update(
            created.id, status="challenge_creation_successful", challenge_uuid="c-1"
        )

        assert updated.status == "challenge_creation_successful"
        assert updated.challenge_uuid == "c-1"

    def test_update_missing_record(self, db_session):
        with pytest.raises(InternalDependencyError):
            IssueService(db_session).update("missing", title="x")

    def test_delete(self, db_session):
        issues = IssueService(db_session)
        issues.create(**issue_fields())

        assert issues.delete("github", "4242", 7) is True
        assert issues.find_one("github", "4242", 7) is None
        assert issues.delete("github", "4242", 7) is False

    def test_find_by_project_filters_status(self, db_session):
        issues = IssueService(db_session)
        issues.create(**issue_fields(project_id="p-1"))
        issues.create(
            **issue_fields(number=8, project_id="p-1", status="challenge_cancelled")
        )
        issues.create(**issue_fields(number=9, project_id="p-2"))

        assert len(issues.find_by_project("p-1")) == 2
        cancelled = issues.find_by_project("p-1", status="challenge_cancelled")
        assert [issue.number for issue in cancelled] == [8]


class TestUserMappingService:
    """Tests for UserMappingService."""

    @pytest.fixture
    def mappings(self, db_session):
        db_session.add(
            UserMappingModel(
                platform_handle="Alice",
                github_user_id=101,
                github_username="alice-gh",
                gitlab_user_id=501,
                gitlab_username="alice-gl",
            )
        )
        db_session.commit()
        return UserMappingService(db_session)

    def test_find_by_numeric_id(self, mappings):
        assert mappings.find_by_git_user("github", 101).platform_handle == "Alice"
        assert mappings.find_by_git_user("gitlab", 501).platform_handle == "Alice"

    def test_find_by_username(self, mappings):
        assert mappings.find_by_git_user("gitlab", "alice-gl").platform_handle == "Alice"

    def test_ids_are_per_provider(self, mappings):
        assert mappings.find_by_git_user("gitlab", 101) is None

    def test_find_by_handle_is_case_insensitive(self, mappings):
        assert mappings.find_by_handle("alice").github_user_id == 101


class TestCreationLockService:
    """Tests for CreationLockService leases."""

    def test_acquire_and_release(self, db_session):
        locks = CreationLockService(db_session)

        assert locks.try_acquire("github-4242-7", "worker-a", 600)
        assert locks.is_held("github-4242-7")
        assert not locks.try_acquire("github-4242-7", "worker-b", 600)

        assert locks.release("github-4242-7", "worker-a")
        assert not locks.is_held("github-4242-7")
        assert locks.try_acquire("github-4242-7", "worker-b", 600)

    def test_release_by_other_owner_is_ignored(self, db_session):
        locks = CreationLockService(db_session)
        locks.try_acquire("github-4242-7", "worker-a", 600)

        assert not locks.release("github-4242-7", "worker-b")
        assert locks.is_held("github-4242-7")

    def test_expired_lease_can_be_taken_over(self, db_session):
        locks = CreationLockService(db_session)
        locks.try_acquire("github-4242-7", "worker-a", -60)

        assert not locks.is_held("github-4242-7")
        assert locks.try_acquire("github-4242-7", "worker-b", 600)
        assert not locks.release("github-4242-7", "worker-a")
        assert locks.release("github-4242-7", "worker-b")

    def test_clear(self, db_session):
        locks = CreationLockService(db_session)
        locks.try_acquire("github-4242-7", "worker-a", 600)

        locks.clear("github-4242-7")

        assert not locks.is_held("github-4242-7")


class TestScheduledEventService:
    """Tests for ScheduledEventService."""

    def test_schedule_defaults_to_now(self, db_session):
        events = ScheduledEventService(db_session)

        scheduled = events.schedule("github-4242-7", {"eventType": "issue.created"})

        assert scheduled.status == "pending"
        assert [row.id for row in events.get_pending("github-4242-7")] == [scheduled.id]

    def test_claim_due_skips_future_events(self, db_session):
        events = ScheduledEventService(db_session)
        due = events.schedule("github-4242-7", {"n": 1})
        events.schedule("github-4242-8", {"n": 2}, due_at=utcnow() + timedelta(hours=1))

        claimed = events.claim_due("worker-a")

        assert [row.id for row in claimed] == [due.id]
        assert claimed[0].status == "dispatched"
        assert claimed[0].claimed_by == "worker-a"

    def test_claimed_events_are_not_claimed_again(self, db_session):
        events = ScheduledEventService(db_session)
        events.schedule("github-4242-7", {"n": 1})

        assert len(events.claim_due("worker-a")) == 1
        assert events.claim_due("worker-b") == []

    def test_claim_limit(self, db_session):
        events = ScheduledEventService(db_session)
        for n in range(3):
            events.schedule(f"github-4242-{n}", {"n": n})

        assert len(events.claim_due("worker-a", limit=2)) == 2
        assert len(events.get_pending()) == 1

    def test_cancel_pending_retries_keeps_intake_events(self, db_session):
        events = ScheduledEventService(db_session)
        events.schedule(
            "github-4242-7", {"n": 1}, due_at=utcnow() + timedelta(hours=1), is_retry=True
        )
        events.schedule(
            "github-4242-7", {"n": 2}, due_at=utcnow() + timedelta(hours=2), is_retry=True
        )
        intake = events.schedule("github-4242-7", {"n": 3})
        events.schedule("github-4242-8", {"n": 4}, is_retry=True)

        assert events.cancel_pending_retries("github-4242-7") == 2
        assert [row.id for row in events.get_pending("github-4242-7")] == [intake.id]
        assert len(events.get_pending()) == 2

    def test_complete_marks_claimed_event(self, db_session):
        events = ScheduledEventService(db_session)
        scheduled = events.schedule("github-4242-7", {"n": 1})
        events.claim_due("worker-a")

        assert events.complete(scheduled.id, "worker-a")

        db_session.expire_all()
        row = events.get(scheduled.id)
        assert row.status == "completed"
        assert row.completed_at is not None
        assert events.claim_due("worker-b", claim_timeout_seconds=0) == []

    def test_complete_ignores_other_workers_claim(self, db_session):
        events = ScheduledEventService(db_session)
        scheduled = events.schedule("github-4242-7", {"n": 1})
        events.claim_due("worker-a")

        assert not events.complete(scheduled.id, "worker-b")

    def test_abandoned_claim_is_reclaimed(self, db_session):
        events = ScheduledEventService(db_session)
        scheduled = events.schedule(
            "github-4242-7", {"n": 1}, due_at=utcnow() - timedelta(hours=1)
        )
        events.claim_due("worker-a", now=utcnow() - timedelta(minutes=10))

        reclaimed = events.claim_due("worker-b", claim_timeout_seconds=300)

        assert [row.id for row in reclaimed] == [scheduled.id]
        assert reclaimed[0].claimed_by == "worker-b"
        assert not events.complete(scheduled.id, "worker-a")

    def test_fresh_claim_is_not_reclaimed(self, db_session):
        events = ScheduledEventService(db_session)
        events.schedule("github-4242-7", {"n": 1})
        events.claim_due("worker-a")

        assert events.claim_due("worker-b", claim_timeout_seconds=300) == []
