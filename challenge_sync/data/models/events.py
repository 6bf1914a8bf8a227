"""
Event and status constants for Challenge Sync.
"""

from enum import Enum


class Provider(str, Enum):
    """Supported git hosts."""
    GITHUB = "github"
    GITLAB = "gitlab"


class IssueStatus(str, Enum):
    """Persisted lifecycle status of a tracked issue."""
    CHALLENGE_CREATION_PENDING = "challenge_creation_pending"
    CHALLENGE_CREATION_SUCCESSFUL = "challenge_creation_successful"
    CHALLENGE_CREATION_FAILED = "challenge_creation_failed"
    CHALLENGE_CREATION_RETRIED = "challenge_creation_retried"
    CHALLENGE_PAYMENT_PENDING = "challenge_payment_pending"
    CHALLENGE_PAYMENT_SUCCESSFUL = "challenge_payment_successful"
    CHALLENGE_PAYMENT_FAILED = "challenge_payment_failed"
    CHALLENGE_CANCELLED = "challenge_cancelled"


class ChallengeStatus(str, Enum):
    """Challenge states reported by the challenge platform."""
    DRAFT = "Draft"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ScheduledEventStatus(str, Enum):
    """State of a deferred redelivery."""
    PENDING = "pending"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Issue tracker event types handled by the processor
class EventTypes:
    """Issue and comment event types accepted on the wire."""

    # Issue lifecycle events
    ISSUE_CREATED = "issue.created"
    ISSUE_UPDATED = "issue.updated"
    ISSUE_ASSIGNED = "issue.assigned"
    ISSUE_UNASSIGNED = "issue.unassigned"
    ISSUE_LABEL_UPDATED = "issue.labelUpdated"
    ISSUE_CLOSED = "issue.closed"
    ISSUE_RECREATED = "issue.recreated"

    # Comment events
    COMMENT_CREATED = "comment.created"
    COMMENT_UPDATED = "comment.updated"

    ALL = (
        ISSUE_CREATED,
        ISSUE_UPDATED,
        ISSUE_ASSIGNED,
        ISSUE_UNASSIGNED,
        ISSUE_LABEL_UPDATED,
        ISSUE_CLOSED,
        ISSUE_RECREATED,
        COMMENT_CREATED,
        COMMENT_UPDATED,
    )
