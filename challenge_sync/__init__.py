"""
Challenge Sync

Keeps issue tracker tickets and their paid challenges in step.
"""

import importlib.metadata

__version__ = importlib.metadata.version("challenge-sync")

from .core.issue_processor import IssueProcessor, build_processor
from .data.models import ChallengeStatus, EventTypes, IssueStatus, Provider
from .errors import ProcessorError
from .schemas.issue_event_v1 import IssueEventV1

__all__ = [
    "ChallengeStatus",
    "EventTypes",
    "IssueEventV1",
    "IssueProcessor",
    "IssueStatus",
    "ProcessorError",
    "Provider",
    "build_processor",
]
