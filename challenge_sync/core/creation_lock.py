"""
Creation lock: at most one challenge creation in flight per issue key.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Set

import structlog
from sqlalchemy.orm import Session

from ..db.services import CreationLockService
from ..errors import CreationLockHeldError

logger = structlog.get_logger()


def lock_key(provider: str, repository_id: str, number: int) -> str:
    return f"{provider}-{repository_id}-{number}"


class CreationLock(ABC):
    """Mutual exclusion over issue keys."""

    @abstractmethod
    def acquire(self, key: str) -> None:
        """Take the lock or raise ``CreationLockHeldError``."""

    @abstractmethod
    def release(self, key: str) -> None:
        """Release a lock this holder took."""

    @abstractmethod
    def clear(self, key: str) -> None:
        """Forcefully drop the lock (issue recreation)."""

    @abstractmethod
    def is_held(self, key: str) -> bool:
        """Whether any holder currently owns a live lock on ``key``."""

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for the duration of the block, on every exit path."""
        self.acquire(key)
        try:
            yield
        finally:
            self.release(key)


class InProcessCreationLock(CreationLock):
    """Lock scoped to one worker process."""

    def __init__(self) -> None:
        self._held: Set[str] = set()

    def acquire(self, key: str) -> None:
        if key in self._held:
            raise CreationLockHeldError(key)
        self._held.add(key)

    def release(self, key: str) -> None:
        self._held.discard(key)

    def clear(self, key: str) -> None:
        self._held.discard(key)

    def is_held(self, key: str) -> bool:
        return key in self._held


class LeasedCreationLock(CreationLock):
    """
    Lock shared by every worker through the ``creation_locks`` table.

    Leases expire after ``ttl_seconds`` so a crashed worker cannot block
    creation forever.
    """

    def __init__(self, db: Session, owner: str, ttl_seconds: int = 600):
        self.service = CreationLockService(db)
        self.owner = owner
        self.ttl_seconds = ttl_seconds

    def acquire(self, key: str) -> None:
        if not self.service.try_acquire(key, self.owner, self.ttl_seconds):
            logger.info("creation_lock_held", key=key, owner=self.owner)
            raise CreationLockHeldError(key)

    def release(self, key: str) -> None:
        if not self.service.release(key, self.owner):
            logger.warning("creation_lock_lost", key=key, owner=self.owner)

    def clear(self, key: str) -> None:
        self.service.clear(key)

    def is_held(self, key: str) -> bool:
        return self.service.is_held(key)
