"""
Error taxonomy for the issue processor.

Every error raised while handling an event derives from ``ProcessorError`` and
carries the HTTP-like ``status_code`` reported to the tracker, the component
the failure originated from (``error_at``) and a stable ``code``.

Only failures originating from the challenge platform or from the processor
itself are retried; git-host failures and domain rejections are reported
directly.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

RETRYABLE_SOURCES = frozenset({"challenge_platform", "processor"})


class ProcessorError(Exception):
    """
    Base class for errors raised while processing an issue event.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        status_code: Status reported back to the tracker
        error_at: Component the failure originated from
    """

    code = "processor_error"
    default_error_at = "processor"
    retry_handled = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        error_at: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_at = error_at or self.default_error_at
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "error_at": self.error_at,
        }


class GitHostError(ProcessorError):
    """A GitHub or GitLab API call failed."""

    code = "git_host_error"
    default_error_at = "github"


class ChallengePlatformError(ProcessorError):
    """A challenge platform API call failed."""

    code = "challenge_platform_error"
    default_error_at = "challenge_platform"


class InternalDependencyError(ProcessorError):
    """A precondition owned by this service is not met yet (e.g. creation still in flight)."""

    code = "internal_dependency_error"


class IssueAlreadyExistsError(ProcessorError):
    code = "issue_already_exists"
    default_error_at = "state_machine"

    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class CreationLockHeldError(ProcessorError):
    code = "creation_lock_held"
    default_error_at = "creation_lock"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Issue {key} is already being created", status_code=409)


class RepositoryNotManagedError(ProcessorError):
    code = "repository_not_managed"
    default_error_at = "configuration"

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class EventValidationError(ProcessorError):
    code = "event_validation_error"
    default_error_at = "validation"

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class CommentParseError(ProcessorError):
    code = "comment_parse_error"
    default_error_at = "validation"

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


def is_retryable(err: BaseException) -> bool:
    """Return True when the failure should be redelivered later."""
    return isinstance(err, ProcessorError) and err.error_at in RETRYABLE_SOURCES


def _describe_http_error(err: httpx.HTTPError, message: str) -> tuple[int, str]:
    if isinstance(err, httpx.HTTPStatusError):
        response = err.response
        detail = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("message")
        if detail:
            return response.status_code, f"{message}. {detail}"
        return response.status_code, message
    return 500, f"{message}. {err}"


def convert_git_host_error(
    err: httpx.HTTPError, message: str, provider: str
) -> GitHostError:
    """Wrap an httpx failure from a git host call."""
    status_code, text = _describe_http_error(err, message)
    return GitHostError(text, status_code=status_code, error_at=provider)


def convert_platform_error(err: httpx.HTTPError, message: str) -> ChallengePlatformError:
    """Wrap an httpx failure from a challenge platform call."""
    status_code, text = _describe_http_error(err, message)
    return ChallengePlatformError(text, status_code=status_code)
