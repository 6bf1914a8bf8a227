"""Tests for UserResolver."""

import pytest

from challenge_sync.core.resolver import UserResolver
from challenge_sync.db.models import ProjectModel
from challenge_sync.errors import RepositoryNotManagedError


@pytest.fixture
def resolver(db_session, settings, project):
    return UserResolver(db_session, settings)


class TestUserResolver:
    """Test cases for identity and project resolution."""

    def test_repo_url(self, resolver):
        assert resolver.get_repo_url("github", "acme/widgets") == "https://github.com/acme/widgets"
        assert resolver.get_repo_url("gitlab", "acme/widgets") == "https://gitlab.com/acme/widgets"

    def test_get_project(self, resolver, project):
        assert resolver.get_project("github", "acme/widgets").id == project.id
        assert resolver.get_project("github", "acme/unknown") is None

    def test_archived_project_is_ignored(self, resolver, db_session, project):
        project.archived = True
        db_session.commit()

        assert resolver.get_project("github", "acme/widgets") is None

    def test_platform_handle_by_id_and_username(self, resolver):
        assert resolver.get_platform_handle("github", 101) == "alice"
        assert resolver.get_platform_handle("github", "bob-gh") == "bob"

    def test_platform_handle_unknown_user(self, resolver):
        assert resolver.get_platform_handle("github", 103) is None
        assert resolver.get_platform_handle("github", None) is None

    def test_repository_copilot(self, resolver):
        copilot = resolver.get_repository_copilot("github", "acme/widgets")

        assert copilot.handle == "copilot1"
        assert copilot.user_provider_id == 1
        assert copilot.access_token == "gh-token"
        assert "gh-token" not in repr(copilot)

    def test_owner_is_used_without_copilot(self, resolver, db_session, project):
        project.copilot = None
        project.owner = "copilot1"
        db_session.commit()

        assert resolver.get_repository_copilot("github", "acme/widgets").handle == "copilot1"

    def test_unmanaged_repository(self, resolver):
        with pytest.raises(RepositoryNotManagedError) as exc_info:
            resolver.get_repository_copilot("github", "acme/unknown")

        assert exc_info.value.status_code == 404
        assert "not managed" in exc_info.value.message

    def test_copilot_without_git_account(self, resolver, db_session):
        db_session.add(
            ProjectModel(
                title="Gadgets",
                repo_url="https://gitlab.com/acme/gadgets",
                owner="owner1",
                copilot="copilot1",
            )
        )
        db_session.commit()

        with pytest.raises(RepositoryNotManagedError) as exc_info:
            resolver.get_repository_copilot("gitlab", "acme/gadgets")

        assert "Couldn't find githost username" in exc_info.value.message

    def test_copilot_without_credentials(self, resolver, db_session, project):
        project.copilot = "alice"
        db_session.commit()

        with pytest.raises(RepositoryNotManagedError) as exc_info:
            resolver.get_repository_copilot("github", "acme/widgets")

        assert "No copilot credentials" in exc_info.value.message
