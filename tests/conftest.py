"""Test configuration and fixtures."""

from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from challenge_sync.config import Settings
from challenge_sync.core.creation_lock import InProcessCreationLock
from challenge_sync.core.issue_processor import IssueProcessor
from challenge_sync.db import models  # noqa: F401
from challenge_sync.db.base import Base
from challenge_sync.db.models import GitUserModel, ProjectModel, UserMappingModel
from challenge_sync.errors import GitHostError

# Git users known to the fake git host (id -> username)
GIT_USERS = {
    1: "copilot-gh",
    101: "alice-gh",
    102: "bob-gh",
    103: "carol-gh",  # never signed up on the platform
}


class FakeGitHost:
    """Records every tracker mutation instead of calling GitHub."""

    provider = "github"

    def __init__(self, users: Optional[Dict[int, str]] = None):
        self.users = dict(users or GIT_USERS)
        self.calls: List[tuple] = []
        self.comments: List[str] = []
        self.labels: Optional[List[str]] = None
        self.fail_on: set = set()
        self.closed = False

    def _record(self, name: str, *args: Any) -> None:
        if name in self.fail_on:
            raise GitHostError(f"{name} failed", status_code=502)
        self.calls.append((name, *args))

    def called(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def create_comment(self, ref, body):
        self._record("create_comment", body)
        self.comments.append(body)

    async def update_title(self, ref, title):
        self._record("update_title", title)

    async def assign(self, ref, username):
        self._record("assign", username)

    async def unassign(self, ref, user_id):
        self._record("unassign", user_id)

    async def set_labels(self, ref, labels):
        self._record("set_labels", list(labels))
        self.labels = list(labels)

    async def set_state(self, ref, state):
        self._record("set_state", state)

    async def resolve_username_by_id(self, user_id):
        return self.users.get(user_id)

    async def resolve_id_by_username(self, username):
        for user_id, name in self.users.items():
            if name == username:
                return user_id
        return None

    async def close(self):
        self.closed = True


class FakeChallengePlatform:
    """In-memory challenge platform."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.challenge_status = "Draft"
        self.participants: List[Dict[str, str]] = []
        self.fail_on: Dict[str, Exception] = {}
        self.fail_for_role: Dict[str, Exception] = {}
        self._created = 0

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise self.fail_on[name]

    def called(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def create_challenge(self, name, description, prizes, project_id, tags=None):
        self._record("create_challenge", name, list(prizes))
        self._created += 1
        return f"challenge-{self._created}"

    async def update_challenge(self, challenge_id, patch):
        self._record("update_challenge", challenge_id, patch)

    async def get_challenge(self, challenge_id):
        self._record("get_challenge", challenge_id)
        return {"id": challenge_id, "status": self.challenge_status}

    async def activate_challenge(self, challenge_id):
        self._record("activate_challenge", challenge_id)
        self.challenge_status = "Active"

    async def close_challenge(self, challenge_id, winner_id, winner_handle):
        self._record("close_challenge", challenge_id, winner_id, winner_handle)
        self.challenge_status = "Completed"

    async def cancel_challenge(self, challenge_id):
        self._record("cancel_challenge", challenge_id)
        self.challenge_status = "Cancelled"

    async def add_participant(self, challenge_id, handle, role_id):
        self._record("add_participant", challenge_id, handle, role_id)
        if role_id in self.fail_for_role:
            raise self.fail_for_role[role_id]
        self.participants.append(
            {"challengeId": challenge_id, "memberHandle": handle, "roleId": role_id}
        )

    async def remove_participant(self, challenge_id, handle, role_id):
        self._record("remove_participant", challenge_id, handle, role_id)
        self.participants = [
            p
            for p in self.participants
            if not (p["memberHandle"] == handle and p["roleId"] == role_id)
        ]

    async def is_role_already_set(self, challenge_id, role_id):
        return any(
            p["challengeId"] == challenge_id and p["roleId"] == role_id
            for p in self.participants
        )

    async def resolve_platform_user_id(self, handle):
        return f"user-{handle}"

    async def close(self):
        pass


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def db_engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def project(db_session) -> ProjectModel:
    """A managed GitHub repository with a copilot and two signed-up workers."""
    db_project = ProjectModel(
        title="Widgets",
        repo_url="https://github.com/acme/widgets",
        direct_project_id=1001,
        tags=["python"],
        owner="owner1",
        copilot="copilot1",
        create_copilot_payments=False,
    )
    db_session.add(db_project)
    db_session.add_all(
        [
            UserMappingModel(
                platform_handle="copilot1", github_user_id=1, github_username="copilot-gh"
            ),
            UserMappingModel(
                platform_handle="alice", github_user_id=101, github_username="alice-gh"
            ),
            UserMappingModel(
                platform_handle="bob", github_user_id=102, github_username="bob-gh"
            ),
            GitUserModel(
                provider="github",
                username="copilot-gh",
                user_provider_id=1,
                access_token="gh-token",
            ),
        ]
    )
    db_session.commit()
    db_session.refresh(db_project)
    return db_project


@pytest.fixture
def git_host() -> FakeGitHost:
    return FakeGitHost()


@pytest.fixture
def platform() -> FakeChallengePlatform:
    return FakeChallengePlatform()


@pytest.fixture
def processor(db_session, platform, git_host, settings, project) -> IssueProcessor:
    """Processor wired to the fakes, with the test project registered."""
    return IssueProcessor(
        db_session,
        platform,
        settings=settings,
        creation_lock=InProcessCreationLock(),
        git_host_factory=lambda provider, copilot: git_host,
    )


@pytest.fixture
def make_event():
    """Build a wire envelope for issue #7 of acme/widgets."""

    def _make_event(event_type: str = "issue.created", **overrides: Any) -> Dict[str, Any]:
        payload = {
            "eventType": event_type,
            "provider": "github",
            "repositoryId": "4242",
            "repositoryFullName": "acme/widgets",
            "issueNumber": 7,
            "title": "[$100] Fix login",
            "body": "Login is broken",
            "labels": ["tcx_OpenForPickup"],
            "assignees": [],
        }
        payload.update(overrides)
        return payload

    return _make_event
