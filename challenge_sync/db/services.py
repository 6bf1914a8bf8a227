"""
Database services for Challenge Sync.

Each service wraps one table behind the narrow operations the issue processor
needs. Services commit their own writes.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

import structlog
from sqlalchemy import and_, delete, func, insert, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..data.models.events import ScheduledEventStatus
from ..errors import InternalDependencyError, IssueAlreadyExistsError
from .models import (
    CreationLockModel,
    GitUserModel,
    IssueModel,
    ProjectModel,
    ScheduledEventModel,
    UserMappingModel,
    utcnow,
)

logger = structlog.get_logger()


class IssueService:
    """Service for the persisted issue records."""

    def __init__(self, db: Session):
        self.db = db

    def find_one(
        self, provider: str, repository_id: str, number: int
    ) -> Optional[IssueModel]:
        """Get the record for a tracker issue, if any."""
        return (
            self.db.query(IssueModel)
            .filter(
                IssueModel.provider == provider,
                IssueModel.repository_id == str(repository_id),
                IssueModel.number == number,
            )
            .first()
        )

    def get(self, issue_id: str) -> Optional[IssueModel]:
        return self.db.query(IssueModel).filter(IssueModel.id == issue_id).first()

    def create(self, **fields: Any) -> IssueModel:
        """
        Insert a new issue record.

        Raises:
            IssueAlreadyExistsError: A record for the same provider, repository
                and number already exists.
        """
        fields.setdefault("updated_at", utcnow())
        db_issue = IssueModel(**fields)
        self.db.add(db_issue)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise IssueAlreadyExistsError(
                f"Issue {fields.get('number')} is already tracked"
            ) from e
        self.db.refresh(db_issue)
        return db_issue

    def update(self, issue_id: str, **patch: Any) -> IssueModel:
        """Apply a partial update and stamp ``updated_at``."""
        db_issue = self.get(issue_id)
        if db_issue is None:
            raise InternalDependencyError(f"Issue record {issue_id} no longer exists")

        for field, value in patch.items():
            setattr(db_issue, field, value)
        db_issue.updated_at = utcnow()

        self.db.commit()
        self.db.refresh(db_issue)
        return db_issue

    def delete(self, provider: str, repository_id: str, number: int) -> bool:
        """Remove the record for a tracker issue. Returns True if one existed."""
        try:
            result = self.db.execute(
                delete(IssueModel).where(
                    IssueModel.provider == provider,
                    IssueModel.repository_id == str(repository_id),
                    IssueModel.number == number,
                )
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return result.rowcount > 0

    def find_by_project(
        self, project_id: str, status: Optional[str] = None, limit: int = 100
    ) -> List[IssueModel]:
        """List the issues billed to a project, newest first."""
        query = self.db.query(IssueModel).filter(IssueModel.project_id == project_id)
        if status:
            query = query.filter(IssueModel.status == status)
        return query.order_by(IssueModel.created_at.desc()).limit(limit).all()

    def list_issues(
        self, status: Optional[str] = None, limit: int = 100, offset: int = 0
    ) -> List[IssueModel]:
        query = self.db.query(IssueModel)
        if status:
            query = query.filter(IssueModel.status == status)
        return (
            query.order_by(IssueModel.updated_at.desc()).offset(offset).limit(limit).all()
        )


class ProjectService:
    """Read-only access to registered projects."""

    def __init__(self, db: Session):
        self.db = db

    def find_active_by_repo_url(self, repo_url: str) -> Optional[ProjectModel]:
        return (
            self.db.query(ProjectModel)
            .filter(ProjectModel.repo_url == repo_url, ProjectModel.archived.is_(False))
            .first()
        )

    def get(self, project_id: str) -> Optional[ProjectModel]:
        return self.db.query(ProjectModel).filter(ProjectModel.id == project_id).first()


class UserMappingService:
    """Read-only access to platform handle <-> git account mappings."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_git_user(
        self, provider: str, git_user: Union[int, str]
    ) -> Optional[UserMappingModel]:
        """
        Find the mapping for a git-host user.

        Args:
            provider: ``github`` or ``gitlab``
            git_user: Numeric user id, or username when given as a string
        """
        if isinstance(git_user, int):
            column = (
                UserMappingModel.github_user_id
                if provider == "github"
                else UserMappingModel.gitlab_user_id
            )
        else:
            column = (
                UserMappingModel.github_username
                if provider == "github"
                else UserMappingModel.gitlab_username
            )
        return self.db.query(UserMappingModel).filter(column == git_user).first()

    def find_by_handle(self, handle: str) -> Optional[UserMappingModel]:
        return (
            self.db.query(UserMappingModel)
            .filter(func.lower(UserMappingModel.platform_handle) == handle.lower())
            .first()
        )


class GitUserService:
    """Read-only access to stored git-host credentials."""

    def __init__(self, db: Session):
        self.db = db

    def find(self, provider: str, username: str) -> Optional[GitUserModel]:
        return (
            self.db.query(GitUserModel)
            .filter(GitUserModel.provider == provider, GitUserModel.username == username)
            .first()
        )


class CreationLockService:
    """Leases over issue keys, shared by every worker using the database."""

    def __init__(self, db: Session):
        self.db = db

    def try_acquire(self, key: str, owner: str, ttl_seconds: int) -> bool:
        """
        Take the lease for ``key`` if it is free or expired.

        Returns:
            True if ``owner`` now holds the lease.
        """
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)

        # Steal an expired lease (optimistic: only if still expired)
        result = self.db.execute(
            update(CreationLockModel)
            .where(CreationLockModel.key == key, CreationLockModel.expires_at < now)
            .values(owner=owner, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 1:
            return True

        try:
            self.db.execute(
                insert(CreationLockModel).values(
                    key=key, owner=owner, expires_at=expires_at
                )
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def release(self, key: str, owner: str) -> bool:
        """Drop the lease if ``owner`` holds it."""
        result = self.db.execute(
            delete(CreationLockModel).where(
                CreationLockModel.key == key, CreationLockModel.owner == owner
            )
        )
        self.db.commit()
        return result.rowcount > 0

    def clear(self, key: str) -> None:
        """Drop the lease regardless of owner."""
        self.db.execute(delete(CreationLockModel).where(CreationLockModel.key == key))
        self.db.commit()

    def is_held(self, key: str) -> bool:
        return (
            self.db.query(CreationLockModel)
            .filter(CreationLockModel.key == key, CreationLockModel.expires_at >= utcnow())
            .first()
            is not None
        )


class ScheduledEventService:
    """Restart-safe delay queue for event (re)deliveries."""

    def __init__(self, db: Session):
        self.db = db

    def schedule(
        self,
        key: str,
        payload: Dict[str, Any],
        due_at: Optional[datetime] = None,
        is_retry: bool = False,
    ) -> ScheduledEventModel:
        """Persist an envelope to be delivered at ``due_at`` (now by default)."""
        db_event = ScheduledEventModel(
            key=key,
            payload=payload,
            due_at=due_at or utcnow(),
            status=ScheduledEventStatus.PENDING.value,
            is_retry=is_retry,
        )
        self.db.add(db_event)
        self.db.commit()
        self.db.refresh(db_event)
        return db_event

    def get(self, event_id: str) -> Optional[ScheduledEventModel]:
        return (
            self.db.query(ScheduledEventModel)
            .filter(ScheduledEventModel.id == event_id)
            .first()
        )

    def get_pending(self, key: Optional[str] = None) -> List[ScheduledEventModel]:
        query = self.db.query(ScheduledEventModel).filter(
            ScheduledEventModel.status == ScheduledEventStatus.PENDING.value
        )
        if key:
            query = query.filter(ScheduledEventModel.key == key)
        return query.order_by(ScheduledEventModel.due_at.asc()).all()

    def claim_due(
        self,
        worker_id: str,
        limit: int = 10,
        now: Optional[datetime] = None,
        claim_timeout_seconds: int = 300,
    ) -> List[ScheduledEventModel]:
        """
        Claim pending events whose due time has passed.

        Rows another worker claimed more than ``claim_timeout_seconds`` ago
        without completing them are claimed again. Each row is claimed with a
        conditional UPDATE; rows another worker claimed first are skipped.
        """
        now = now or utcnow()
        stale_before = now - timedelta(seconds=claim_timeout_seconds)
        claimable = or_(
            and_(
                ScheduledEventModel.status == ScheduledEventStatus.PENDING.value,
                ScheduledEventModel.due_at <= now,
            ),
            and_(
                ScheduledEventModel.status == ScheduledEventStatus.DISPATCHED.value,
                ScheduledEventModel.dispatched_at < stale_before,
            ),
        )
        candidates = (
            self.db.query(ScheduledEventModel)
            .filter(claimable)
            .order_by(ScheduledEventModel.due_at.asc())
            .limit(limit)
            .all()
        )

        claimed = []
        for candidate in candidates:
            if candidate.status == ScheduledEventStatus.DISPATCHED.value:
                logger.warning(
                    "scheduled_event_reclaimed",
                    id=candidate.id,
                    previous_worker=candidate.claimed_by,
                )
            result = self.db.execute(
                update(ScheduledEventModel)
                .where(ScheduledEventModel.id == candidate.id, claimable)
                .values(
                    status=ScheduledEventStatus.DISPATCHED.value,
                    claimed_by=worker_id,
                    dispatched_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            if result.rowcount == 0:
                logger.debug("scheduled_event_claimed_elsewhere", id=candidate.id)
                continue
            self.db.refresh(candidate)
            claimed.append(candidate)
        return claimed

    def complete(self, event_id: str, worker_id: str) -> bool:
        """Mark a claimed delivery as done; a no-op if another worker reclaimed it."""
        result = self.db.execute(
            update(ScheduledEventModel)
            .where(
                ScheduledEventModel.id == event_id,
                ScheduledEventModel.status == ScheduledEventStatus.DISPATCHED.value,
                ScheduledEventModel.claimed_by == worker_id,
            )
            .values(status=ScheduledEventStatus.COMPLETED.value, completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    def cancel_pending_retries(self, key: str) -> int:
        """Cancel still-pending redeliveries for an issue key. Intake events are kept."""
        result = self.db.execute(
            update(ScheduledEventModel)
            .where(
                ScheduledEventModel.key == key,
                ScheduledEventModel.status == ScheduledEventStatus.PENDING.value,
                ScheduledEventModel.is_retry.is_(True),
            )
            .values(status=ScheduledEventStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount
