"""
Database package for Challenge Sync.
"""

from .base import Base, SessionLocal, get_db
from .models import (
    CreationLockModel,
    GitUserModel,
    IssueModel,
    ProjectModel,
    ScheduledEventModel,
    UserMappingModel,
)

__all__ = [
    "Base",
    "SessionLocal",
    "get_db",
    "IssueModel",
    "ProjectModel",
    "UserMappingModel",
    "GitUserModel",
    "CreationLockModel",
    "ScheduledEventModel",
]
