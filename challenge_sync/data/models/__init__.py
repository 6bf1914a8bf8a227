"""Data models for events, statuses, and resolved identities."""

from .events import (
    ChallengeStatus,
    EventTypes,
    IssueStatus,
    Provider,
    ScheduledEventStatus,
)
from .identity import Copilot

__all__ = [
    "ChallengeStatus",
    "Copilot",
    "EventTypes",
    "IssueStatus",
    "Provider",
    "ScheduledEventStatus",
]
