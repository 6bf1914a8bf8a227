from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, conint, constr, field_validator

from ..data.models.events import EventTypes

EventType = Literal[
    "issue.created",
    "issue.updated",
    "issue.assigned",
    "issue.unassigned",
    "issue.labelUpdated",
    "issue.closed",
    "issue.recreated",
    "comment.created",
    "comment.updated",
]


class GitUserRef(BaseModel):
    """A git-host user as referenced by an event (numeric id only)."""

    model_config = ConfigDict(extra="ignore")

    id: int


class IssueComment(BaseModel):
    """Comment attached to comment.* events."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    body: str = ""
    user: Optional[GitUserRef] = None


class IssueEventV1(BaseModel):
    """
    Issue tracker event envelope, version 1.

    Field names are snake_case; the camelCase names used by the producers
    (``repositoryId``, ``issueNumber``, ``retryCount`` ...) are accepted as
    aliases and used when the envelope is serialized for redelivery.

    ``retry_count`` and ``payment_successful`` are the only fields the
    processor itself writes; everything resolved while handling an event
    (copilot, git-host adapter, platform handles) stays out of the envelope.
    """

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "eventType": "issue.created",
                "provider": "github",
                "repositoryId": "123456",
                "repositoryFullName": "acme/widgets",
                "issueNumber": 42,
                "title": "[$500] Fix the thing",
                "body": "Steps to reproduce...",
                "labels": ["tcx_OpenForPickup"],
                "assignees": [],
            }
        },
    )

    event_type: EventType = Field(alias="eventType")
    provider: Literal["github", "gitlab"]
    repository_id: constr(min_length=1, max_length=128) = Field(alias="repositoryId")
    repository_full_name: constr(min_length=1, max_length=512) = Field(
        alias="repositoryFullName"
    )
    issue_number: conint(ge=1) = Field(alias="issueNumber")
    title: constr(min_length=1)
    body: str = ""
    labels: List[str] = Field(default_factory=list)
    assignees: List[GitUserRef] = Field(default_factory=list)
    assignee: Optional[GitUserRef] = None
    comment: Optional[IssueComment] = None

    retry_count: conint(ge=0) = Field(default=0, alias="retryCount")
    payment_successful: bool = Field(default=False, alias="paymentSuccessful")
    challenge_valid: bool = Field(default=False, alias="challengeValid")

    @field_validator("repository_id", mode="before")
    @classmethod
    def normalize_repository_id(cls, value: Any) -> Any:
        """Numeric repository ids are stored as strings."""
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("body", mode="before")
    @classmethod
    def default_body(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def issue_key(self) -> str:
        """Key shared by the creation lock and the retry queue."""
        return f"{self.provider}-{self.repository_id}-{self.issue_number}"

    @property
    def acting_assignee_id(self) -> Optional[int]:
        """User an assignment event refers to, falling back to the first assignee."""
        if self.assignee is not None:
            return self.assignee.id
        if self.assignees:
            return self.assignees[0].id
        return None

    @property
    def is_comment_event(self) -> bool:
        return self.event_type in (EventTypes.COMMENT_CREATED, EventTypes.COMMENT_UPDATED)

    def for_retry(self, *, payment_successful: bool) -> "IssueEventV1":
        """Clone the envelope for the next delivery attempt."""
        return self.model_copy(
            update={
                "retry_count": self.retry_count + 1,
                "payment_successful": payment_successful,
            }
        )

    def to_payload(self) -> Dict[str, Any]:
        """Serialize using the wire (camelCase) field names."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
