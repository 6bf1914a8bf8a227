"""
SQLAlchemy models for Challenge Sync.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from ..data.models.events import IssueStatus, ScheduledEventStatus
from .base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _isoformat(value: datetime) -> Any:
    return value.isoformat() if value else None


class IssueModel(Base):
    """A tracker issue mirrored as a challenge on the platform."""

    __tablename__ = "issues"

    id = Column(String(36), primary_key=True, default=_new_id)
    provider = Column(String(20), nullable=False)
    repository_id = Column(String(128), nullable=False)
    number = Column(Integer, nullable=False)

    # Content as last synchronized to the challenge
    title = Column(Text, nullable=False)
    body = Column(Text, nullable=False, default="")
    prizes = Column(JSON, nullable=False, default=list)
    labels = Column(JSON, nullable=False, default=list)

    # Assignment (git username)
    assignee = Column(String(255), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)

    # Challenge linkage
    challenge_id = Column(Integer, nullable=True)
    challenge_uuid = Column(String(64), nullable=True, index=True)
    project_id = Column(String(64), nullable=True, index=True)
    repo_url = Column(String(512), nullable=True)

    status = Column(
        Enum(*[status.value for status in IssueStatus], name="issue_status"),
        nullable=False,
        default=IssueStatus.CHALLENGE_CREATION_PENDING.value,
        index=True,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "provider", "repository_id", "number", name="uq_issues_provider_repo_number"
        ),
        Index("ix_issues_project_status", "project_id", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "provider": self.provider,
            "repository_id": self.repository_id,
            "number": self.number,
            "title": self.title,
            "body": self.body,
            "prizes": self.prizes,
            "labels": self.labels,
            "assignee": self.assignee,
            "assigned_at": _isoformat(self.assigned_at),
            "challenge_id": self.challenge_id,
            "challenge_uuid": self.challenge_uuid,
            "project_id": self.project_id,
            "repo_url": self.repo_url,
            "status": self.status,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


class ProjectModel(Base):
    """A repository registered for challenge synchronization."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=False)
    repo_url = Column(String(512), nullable=False, unique=True, index=True)
    direct_project_id = Column(Integer, nullable=True)
    tags = Column(JSON, nullable=False, default=list)

    # Platform handles
    owner = Column(String(255), nullable=False)
    copilot = Column(String(255), nullable=True)

    create_copilot_payments = Column(Boolean, nullable=False, default=False)
    archived = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "repo_url": self.repo_url,
            "direct_project_id": self.direct_project_id,
            "tags": self.tags,
            "owner": self.owner,
            "copilot": self.copilot,
            "create_copilot_payments": self.create_copilot_payments,
            "archived": self.archived,
            "created_at": _isoformat(self.created_at),
        }


class UserMappingModel(Base):
    """Links a platform handle to its GitHub and GitLab accounts."""

    __tablename__ = "user_mappings"

    id = Column(String(36), primary_key=True, default=_new_id)
    platform_handle = Column(String(255), nullable=False, unique=True, index=True)
    github_user_id = Column(Integer, nullable=True, index=True)
    github_username = Column(String(255), nullable=True, index=True)
    gitlab_user_id = Column(Integer, nullable=True, index=True)
    gitlab_username = Column(String(255), nullable=True, index=True)


class GitUserModel(Base):
    """Git-host credentials of a registered user (owners and copilots)."""

    __tablename__ = "git_users"

    id = Column(String(36), primary_key=True, default=_new_id)
    provider = Column(String(20), nullable=False)
    username = Column(String(255), nullable=False)
    user_provider_id = Column(Integer, nullable=False)
    access_token = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider", "username", name="uq_git_users_provider_username"),
    )


class CreationLockModel(Base):
    """Lease guarding challenge creation for one issue key."""

    __tablename__ = "creation_locks"

    key = Column(String(255), primary_key=True)
    owner = Column(String(100), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


class ScheduledEventModel(Base):
    """An event envelope waiting for (re)delivery."""

    __tablename__ = "scheduled_events"

    id = Column(String(36), primary_key=True, default=_new_id)
    key = Column(String(255), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(
            *[status.value for status in ScheduledEventStatus],
            name="scheduled_event_status",
        ),
        nullable=False,
        default=ScheduledEventStatus.PENDING.value,
    )
    is_retry = Column(Boolean, nullable=False, default=False)
    claimed_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_scheduled_events_status_due", "status", "due_at"),)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "key": self.key,
            "payload": self.payload,
            "due_at": _isoformat(self.due_at),
            "status": self.status,
            "is_retry": self.is_retry,
            "claimed_by": self.claimed_by,
            "created_at": _isoformat(self.created_at),
            "dispatched_at": _isoformat(self.dispatched_at),
            "completed_at": _isoformat(self.completed_at),
        }
