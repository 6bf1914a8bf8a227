"""Per-event working state shared by the state machine and the retry subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..data.models.identity import Copilot
from ..db.models import ProjectModel
from ..integrations.git_host import GitHost, IssueRef
from ..schemas.issue_event_v1 import IssueEventV1


@dataclass
class WorkingIssue:
    """The issue as described by the current event, after title parsing."""

    number: int
    title: str
    body: str
    provider: str
    repository_id: str
    labels: List[str]
    prizes: List[int]
    repo_url: str
    project_id: Optional[str] = None
    assignee: Optional[str] = None
    tcx_ready: bool = False

    @property
    def primary_prize(self) -> int:
        return self.prizes[0]


@dataclass
class EventContext:
    """Everything resolved while handling one event. Never serialized."""

    event: IssueEventV1
    issue: WorkingIssue
    ref: IssueRef
    copilot: Optional[Copilot] = None
    git_host: Optional[GitHost] = None
    project: Optional[ProjectModel] = None
    payment_successful: bool = False
    create_copilot_payments: bool = False
    assignee_id: Optional[int] = None
    assignee_handle: Optional[str] = None
    usernames: Dict[int, str] = field(default_factory=dict)
    single_assignee_noted: bool = False
    log: Any = None
