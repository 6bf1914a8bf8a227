"""
Resolution of git-host identities to platform identities.
"""

from __future__ import annotations

from typing import Optional, Union

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..data.models.events import Provider
from ..data.models.identity import Copilot
from ..db.models import ProjectModel
from ..db.services import GitUserService, ProjectService, UserMappingService
from ..errors import RepositoryNotManagedError

logger = structlog.get_logger()


class UserResolver:
    """Maps git users to platform handles and repositories to their copilot."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.projects = ProjectService(db)
        self.user_mappings = UserMappingService(db)
        self.git_users = GitUserService(db)

    def get_repo_url(self, provider: str, repo_full_name: str) -> str:
        if provider == Provider.GITHUB.value:
            base_url = self.settings.github_base_url
        else:
            base_url = self.settings.gitlab_base_url
        return f"{base_url.rstrip('/')}/{repo_full_name}"

    def get_project(self, provider: str, repo_full_name: str) -> Optional[ProjectModel]:
        """Active project registered for the repository, if any."""
        return self.projects.find_active_by_repo_url(
            self.get_repo_url(provider, repo_full_name)
        )

    def get_platform_handle(
        self, provider: str, git_user: Union[int, str, None]
    ) -> Optional[str]:
        """
        Platform handle of a git user.

        Args:
            provider: ``github`` or ``gitlab``
            git_user: Numeric user id or username

        Returns:
            The handle, or None when the user never signed up.
        """
        if git_user is None:
            return None
        mapping = self.user_mappings.find_by_git_user(provider, git_user)
        return mapping.platform_handle if mapping else None

    def get_repository_copilot(self, provider: str, repo_full_name: str) -> Copilot:
        """
        Credentials of the repository copilot, falling back to the project owner.

        Raises:
            RepositoryNotManagedError: The repository has no active project, or
                the chosen user has no git account mapping or stored credentials.
        """
        project = self.get_project(provider, repo_full_name)
        if project is None or not project.owner:
            raise RepositoryNotManagedError(
                f"This repository '{repo_full_name}' is not managed by "
                f"{self.settings.platform_name}."
            )

        handle = project.copilot or project.owner
        mapping = self.user_mappings.find_by_handle(handle)
        if provider == Provider.GITHUB.value:
            git_user_id = mapping.github_user_id if mapping else None
            git_username = mapping.github_username if mapping else None
        else:
            git_user_id = mapping.gitlab_user_id if mapping else None
            git_username = mapping.gitlab_username if mapping else None

        if mapping is None or not git_user_id:
            raise RepositoryNotManagedError(
                f"Couldn't find githost username for '{provider}' "
                f"for this repository '{repo_full_name}'."
            )

        git_user = self.git_users.find(provider, git_username)
        if git_user is None:
            raise RepositoryNotManagedError(
                f"No {'copilot' if project.copilot else 'owner'} credentials are "
                f"configured for this repository: {provider}"
            )

        logger.debug(
            "copilot_resolved", repository=repo_full_name, handle=mapping.platform_handle
        )
        return Copilot(
            handle=mapping.platform_handle,
            user_provider_id=git_user.user_provider_id,
            access_token=git_user.access_token,
        )
