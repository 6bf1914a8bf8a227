"""
Issue lifecycle state machine.

``IssueProcessor.process`` takes one issue-tracker event envelope, resolves
everything it needs (project, copilot, git host adapter, assignee) and runs
the transition for the event type against the git host, the challenge
platform and the issue store.

Persisted status drives the lifecycle:

    (absent) -> challenge_creation_pending -> challenge_creation_successful
             -> challenge_payment_pending -> challenge_payment_successful

with ``challenge_payment_failed`` and ``challenge_cancelled`` as side exits.
``challenge_creation_pending`` and ``challenge_payment_pending`` are durability
barriers: duplicate deliveries observing them back off instead of acting twice.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

import pydantic
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..data.models.events import ChallengeStatus, EventTypes, IssueStatus
from ..data.models.identity import Copilot
from ..db.models import IssueModel, utcnow
from ..db.services import IssueService
from ..errors import (
    EventValidationError,
    InternalDependencyError,
    IssueAlreadyExistsError,
    ProcessorError,
    RepositoryNotManagedError,
)
from ..integrations.challenge_platform import ChallengePlatformClient, build_prize_sets
from ..integrations.git_host import GitHost, IssueRef, get_git_host
from ..schemas.issue_event_v1 import IssueEventV1
from .context import EventContext, WorkingIssue
from .creation_lock import CreationLock, InProcessCreationLock, lock_key
from .prizes import format_prize_title, parse_comment, parse_prizes
from .resolver import UserResolver
from .retry import RetryScheduler

logger = structlog.get_logger()

GitHostFactory = Callable[[str, Copilot], GitHost]


class IssueProcessor:
    """
    Runs issue events through the challenge lifecycle.

    Args:
        db: Database session used for every store access of this processor
        platform: Challenge platform client
        settings: Application settings
        creation_lock: Lock guarding challenge creation (in-process by default)
        git_host_factory: Builds the git host adapter for a provider and copilot
        retry: Retry subsystem (built from ``db`` by default)
    """

    def __init__(
        self,
        db: Session,
        platform: ChallengePlatformClient,
        *,
        settings: Optional[Settings] = None,
        creation_lock: Optional[CreationLock] = None,
        git_host_factory: Optional[GitHostFactory] = None,
        retry: Optional[RetryScheduler] = None,
    ):
        self.settings = settings or get_settings()
        self.platform = platform
        self.issues = IssueService(db)
        self.resolver = UserResolver(db, self.settings)
        self.creation_lock = creation_lock or InProcessCreationLock()
        self.git_host_factory = git_host_factory or (
            lambda provider, copilot: get_git_host(provider, copilot, self.settings)
        )
        self.retry = retry or RetryScheduler(db, self.settings)

        self._handlers: Dict[str, Callable[[EventContext], Awaitable[None]]] = {
            EventTypes.ISSUE_CREATED: self._handle_issue_create,
            EventTypes.ISSUE_UPDATED: self._handle_issue_update,
            EventTypes.ISSUE_ASSIGNED: self._handle_issue_assignment,
            EventTypes.ISSUE_UNASSIGNED: self._handle_issue_unassignment,
            EventTypes.ISSUE_LABEL_UPDATED: self._handle_issue_label_updated,
            EventTypes.ISSUE_CLOSED: self._handle_issue_close,
            EventTypes.ISSUE_RECREATED: self._handle_issue_recreate,
            EventTypes.COMMENT_CREATED: self._handle_issue_comment,
            EventTypes.COMMENT_UPDATED: self._handle_issue_comment,
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process(self, raw_event: Union[IssueEventV1, Mapping[str, Any]]) -> None:
        """
        Validate and handle one event.

        Raises:
            EventValidationError: The envelope is malformed.
            ProcessorError: The transition failed; retryable failures have
                already been rescheduled or finalized.
        """
        event = self._validate(raw_event)

        repo_url = self.resolver.get_repo_url(event.provider, event.repository_full_name)
        project = self.resolver.get_project(event.provider, event.repository_full_name)
        labels = list(event.labels)
        issue = WorkingIssue(
            number=event.issue_number,
            title=event.title,
            body=event.body or "",
            provider=event.provider,
            repository_id=event.repository_id,
            labels=labels,
            prizes=[],
            repo_url=repo_url,
            project_id=project.id if project else None,
            tcx_ready=any(
                label.startswith(self.settings.issue_label_prefix) for label in labels
            ),
        )
        log = logger.bind(
            event_type=event.event_type,
            provider=event.provider,
            repository=event.repository_full_name,
            issue_number=event.issue_number,
            retry_count=event.retry_count,
        )

        parsed = parse_prizes(event.title)
        if parsed is None:
            log.debug("issue_without_prize_ignored")
            return
        issue.prizes = parsed.prizes
        issue.title = parsed.title

        copilot = self.resolver.get_repository_copilot(
            event.provider, event.repository_full_name
        )
        git_host = self.git_host_factory(event.provider, copilot)
        ctx = EventContext(
            event=event,
            issue=issue,
            ref=IssueRef(
                repository_id=event.repository_id,
                repository_full_name=event.repository_full_name,
                number=event.issue_number,
            ),
            copilot=copilot,
            git_host=git_host,
            project=project,
            payment_successful=event.payment_successful,
            assignee_id=event.acting_assignee_id,
            log=log,
        )

        try:
            if event.assignees:
                issue.assignee = await self._username_for(ctx, event.assignees[0].id)
            log.info("event_processing_started")
            await self._handlers[event.event_type](ctx)
            log.info("event_processed")
        finally:
            await git_host.close()

    @staticmethod
    def _validate(raw_event: Union[IssueEventV1, Mapping[str, Any]]) -> IssueEventV1:
        if isinstance(raw_event, IssueEventV1):
            return raw_event
        try:
            return IssueEventV1.model_validate(raw_event)
        except pydantic.ValidationError as e:
            logger.warning("event_validation_failed", errors=e.errors())
            raise EventValidationError(f"Invalid issue event: {e}") from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _challenge_url(self, record: IssueModel) -> str:
        return f"{self.settings.platform_url.rstrip('/')}/challenges/{record.challenge_uuid}"

    async def _username_for(self, ctx: EventContext, user_id: int) -> str:
        if user_id not in ctx.usernames:
            ctx.usernames[user_id] = await ctx.git_host.resolve_username_by_id(user_id)
        return ctx.usernames[user_id]

    def _find_record(self, ctx: EventContext) -> Optional[IssueModel]:
        issue = ctx.issue
        return self.issues.find_one(issue.provider, issue.repository_id, issue.number)

    def _delete_record(self, ctx: EventContext) -> None:
        issue = ctx.issue
        self.issues.delete(issue.provider, issue.repository_id, issue.number)

    def _lock_key(self, ctx: EventContext) -> str:
        issue = ctx.issue
        return lock_key(issue.provider, issue.repository_id, issue.number)

    def _pays_copilot(self, ctx: EventContext, winner_handle: str) -> bool:
        return bool(
            ctx.project is not None
            and ctx.project.create_copilot_payments
            and ctx.copilot.handle.lower() != winner_handle.lower()
        )

    def _is_abandoned_creation(self, ctx: EventContext, record: IssueModel) -> bool:
        """A pending creation whose lock expired or was never taken by a live holder."""
        return (
            record.status == IssueStatus.CHALLENGE_CREATION_PENDING.value
            and not self.creation_lock.is_held(self._lock_key(ctx))
        )

    def _missing_record_error(self, ctx: EventContext) -> InternalDependencyError:
        return InternalDependencyError(
            f"Can't find the issue in DB. It's not found or not accessible to user "
            f"{ctx.copilot.handle}"
        )

    async def _ensure_challenge_exists(
        self, ctx: EventContext, create: bool = True
    ) -> Optional[IssueModel]:
        """
        Load the record behind the event, creating the challenge when allowed.

        Raises:
            InternalDependencyError: Creation is still in flight for this issue.
        """
        record = self._find_record(ctx)

        if record is not None and record.status == IssueStatus.CHALLENGE_CREATION_PENDING.value:
            if not self._is_abandoned_creation(ctx, record):
                raise InternalDependencyError(
                    f"Challenge for the updated issue {ctx.issue.number} is creating, "
                    "rescheduling this event"
                )
            # Restarted by _handle_issue_create when creation is allowed
            record = None
        if (
            record is not None
            and record.status == IssueStatus.CHALLENGE_CREATION_FAILED.value
            and self.settings.open_for_pickup_issue_label in ctx.issue.labels
        ):
            # Give failed creations another chance once the issue is open for pickup
            self._delete_record(ctx)
            record = None
        if record is not None and record.status == IssueStatus.CHALLENGE_CANCELLED.value:
            record = None

        if record is None and create:
            await self._handle_issue_create(ctx)
            record = self._find_record(ctx)
        return record

    async def _rollback_assignee(
        self,
        ctx: EventContext,
        assignee_id: int,
        reopen: bool = False,
        comment: Optional[str] = None,
    ) -> None:
        """Undo a tracker assignment the platform cannot honor."""
        username = await self._username_for(ctx, assignee_id)
        if not comment:
            comment = f"@{username}, please sign-up with {self.settings.platform_name} tool"
        await ctx.git_host.create_comment(ctx.ref, comment)
        await ctx.git_host.unassign(ctx.ref, assignee_id)
        if reopen:
            await ctx.git_host.set_state(ctx.ref, "open")
        ctx.log.info("assignee_rolled_back", assignee=username, reopened=reopen)

    async def _comment_single_assignee(self, ctx: EventContext) -> None:
        if ctx.single_assignee_noted:
            return
        ctx.single_assignee_noted = True
        await ctx.git_host.create_comment(
            ctx.ref,
            f"{self.settings.platform_name} only supports a single assignee on a "
            "ticket to avoid issues with payment",
        )

    # ------------------------------------------------------------------
    # issue.created
    # ------------------------------------------------------------------

    async def _handle_issue_create(
        self, ctx: EventContext, assign_from_event: bool = True
    ) -> None:
        issue = ctx.issue
        log = ctx.log
        if ctx.project is None:
            raise RepositoryNotManagedError(
                "There is no project associated with this repository"
            )

        record = self._find_record(ctx)
        if record is not None and self._is_failed_forced_assignment(ctx, record):
            log.info("forced_assignment_redelivered")
            await self._assign_from_event(ctx)
            return
        if (
            record is not None
            and record.status != IssueStatus.CHALLENGE_CANCELLED.value
            and not self._is_abandoned_creation(ctx, record)
        ):
            raise IssueAlreadyExistsError(
                f"Issue {issue.number} is already in {record.status}"
            )

        if not issue.tcx_ready:
            log.debug("issue_not_ready_ignored")
            return

        with self.creation_lock.hold(self._lock_key(ctx)):
            # Another holder may have finished while the lock was free
            record = self._find_record(ctx)
            if record is not None and record.status not in (
                IssueStatus.CHALLENGE_CANCELLED.value,
                IssueStatus.CHALLENGE_CREATION_PENDING.value,
            ):
                raise IssueAlreadyExistsError(
                    f"Issue {issue.number} is already in {record.status}"
                )
            if record is not None and record.status == IssueStatus.CHALLENGE_CREATION_PENDING.value:
                log.warning("abandoned_creation_restarted")

            log.info("issue_create_start")
            if record is None:
                record = self.issues.create(
                    provider=issue.provider,
                    repository_id=issue.repository_id,
                    number=issue.number,
                    title=issue.title,
                    body=issue.body,
                    prizes=issue.prizes,
                    labels=issue.labels,
                    project_id=issue.project_id,
                    repo_url=issue.repo_url,
                    status=IssueStatus.CHALLENGE_CREATION_PENDING.value,
                )
            else:
                record = self.issues.update(
                    record.id,
                    title=issue.title,
                    body=issue.body,
                    prizes=issue.prizes,
                    labels=issue.labels,
                    assignee=None,
                    assigned_at=None,
                    status=IssueStatus.CHALLENGE_CREATION_PENDING.value,
                )

            try:
                challenge_uuid = await self.platform.create_challenge(
                    name=issue.title,
                    description=issue.body,
                    prizes=issue.prizes,
                    project_id=ctx.project.direct_project_id,
                    tags=ctx.project.tags,
                )
                record = self.issues.update(
                    record.id,
                    challenge_uuid=challenge_uuid,
                    status=IssueStatus.CHALLENGE_CREATION_SUCCESSFUL.value,
                )
                log.info("challenge_created", challenge_uuid=challenge_uuid)

                await self.platform.add_participant(
                    challenge_uuid, ctx.copilot.handle, self.settings.role_id_copilot
                )
                await self.platform.add_participant(
                    challenge_uuid,
                    ctx.copilot.handle,
                    self.settings.role_id_iterative_reviewer,
                )
            except Exception as err:
                log.error("challenge_creation_failed", error=str(err))
                self._delete_record(ctx)
                await self.retry.handle_event_gracefully(ctx, err)

            try:
                await ctx.git_host.create_comment(
                    ctx.ref,
                    f"Challenge {self._challenge_url(record)} has been created for this ticket.",
                )
                if assign_from_event and ctx.event.assignees:
                    await self._assign_from_event(ctx)
            except ProcessorError as err:
                # The challenge exists; follow-ups must not undo the creation
                log.error("post_creation_followup_failed", error=str(err))

    async def _assign_from_event(self, ctx: EventContext) -> None:
        ctx.assignee_id = ctx.event.assignees[0].id
        await self._handle_issue_assignment(ctx, force=True)

    def _is_failed_forced_assignment(self, ctx: EventContext, record: IssueModel) -> bool:
        """
        A redelivered issue.created whose challenge exists but whose assignee
        was never registered: only the forced assignment is left to run.
        """
        event = ctx.event
        return (
            event.event_type == EventTypes.ISSUE_CREATED
            and event.retry_count > 0
            and bool(event.assignees)
            and record.status == IssueStatus.CHALLENGE_CREATION_SUCCESSFUL.value
            and not record.assignee
        )

    # ------------------------------------------------------------------
    # issue.updated
    # ------------------------------------------------------------------

    async def _handle_issue_update(self, ctx: EventContext) -> None:
        issue = ctx.issue
        try:
            record = await self._ensure_challenge_exists(ctx)
            if record is None:
                if issue.tcx_ready:
                    await self.retry.handle_event_gracefully(
                        ctx, self._missing_record_error(ctx)
                    )
                return

            if record.status == IssueStatus.CHALLENGE_PAYMENT_SUCCESSFUL.value:
                ctx.log.debug("update_after_payment_ignored")
                return

            prizes = record.prizes or []
            if (
                record.title == issue.title
                and record.body == issue.body
                and len(prizes) == len(issue.prizes)
                and prizes
                and prizes[0] == issue.primary_prize
            ):
                ctx.log.debug("issue_unchanged")
                return

            await self.platform.update_challenge(
                record.challenge_uuid,
                {
                    "name": issue.title,
                    "description": issue.body,
                    "prizeSets": build_prize_sets(issue.prizes),
                },
            )
            self.issues.update(
                record.id,
                title=issue.title,
                body=issue.body,
                prizes=issue.prizes,
                labels=issue.labels,
                assignee=issue.assignee,
            )
            ctx.log.info("challenge_updated", challenge_uuid=record.challenge_uuid)
        except Exception as err:
            await self.retry.handle_event_gracefully(ctx, err)

    # ------------------------------------------------------------------
    # issue.assigned
    # ------------------------------------------------------------------

    async def _handle_issue_assignment(self, ctx: EventContext, force: bool = False) -> None:
        issue = ctx.issue
        event = ctx.event
        log = ctx.log
        assignee_id = ctx.assignee_id
        if assignee_id is None:
            log.debug("assignment_without_assignee_ignored")
            return

        handle = self.resolver.get_platform_handle(issue.provider, assignee_id)
        if not handle:
            log.info("assignee_not_signed_up", assignee_id=assignee_id)
            await self._rollback_assignee(ctx, assignee_id)
            return

        try:
            record = await self._ensure_challenge_exists(ctx)
            if record is None:
                if issue.tcx_ready:
                    await self.retry.handle_event_gracefully(
                        ctx, self._missing_record_error(ctx)
                    )
                return

            if record.status == IssueStatus.CHALLENGE_PAYMENT_SUCCESSFUL.value:
                log.debug("assignment_after_payment_ignored")
                return

            if len(event.assignees) > 1:
                await self._comment_single_assignee(ctx)
                return

            assignee_username = await self._username_for(ctx, assignee_id)
            if record.assignee == assignee_username:
                log.debug("assignee_already_registered", handle=handle)
                return

            has_assigned_label = self.settings.assigned_issue_label in issue.labels
            # GitLab sends a single hook when one assignee replaces another
            if record.assignee and issue.provider == "gitlab" and has_assigned_label:
                await self._handle_issue_unassignment(ctx)
                return

            # A different assignee is registered; the unassignment event handles the swap
            if record.assignee:
                return

            if self.settings.open_for_pickup_issue_label not in issue.labels and not force:
                await self._reject_not_ready_assignment(ctx, record, handle, assignee_id)
                return

            await self.platform.add_participant(
                record.challenge_uuid, handle, self.settings.role_id_submitter
            )
            labels = [
                label
                for label in issue.labels
                if label != self.settings.open_for_pickup_issue_label
            ]
            labels.append(self.settings.assigned_issue_label)
            record = self.issues.update(
                record.id,
                assignee=assignee_username,
                assigned_at=utcnow(),
                labels=labels,
            )
            issue.labels = labels
            await ctx.git_host.set_labels(ctx.ref, labels)
            log.info("assignee_registered", handle=handle)
        except Exception as err:
            await self.retry.handle_event_gracefully(ctx, err)

        await ctx.git_host.create_comment(
            ctx.ref, f"Challenge {self._challenge_url(record)} has been assigned to {handle}."
        )

    async def _reject_not_ready_assignment(
        self, ctx: EventContext, record: IssueModel, handle: str, assignee_id: int
    ) -> None:
        issue = ctx.issue
        open_label = self.settings.open_for_pickup_issue_label
        not_ready = self.settings.not_ready_issue_label
        not_ready_comment = (
            "This ticket isn't quite ready to be worked on yet. "
            f"Please wait until it has the {open_label} label"
        )
        ctx.log.info("assignment_rejected_not_open_for_pickup", handle=handle)

        if not issue.assignee:
            labels = issue.labels + ([not_ready] if not_ready not in issue.labels else [])
            await ctx.git_host.set_labels(ctx.ref, labels)
            issue.labels = labels
            await self._rollback_assignee(ctx, assignee_id, comment=not_ready_comment)
        elif not_ready not in issue.labels:
            await self._rollback_assignee(
                ctx,
                assignee_id,
                comment=f"Challenge {self._challenge_url(record)} {handle} has been unassigned.",
            )
            await ctx.git_host.create_comment(
                ctx.ref,
                f"{handle} has been unassigned because this ticket doesn't have "
                f"the {open_label} label.",
            )
        else:
            await self._rollback_assignee(ctx, assignee_id, comment=not_ready_comment)

    # ------------------------------------------------------------------
    # issue.unassigned
    # ------------------------------------------------------------------

    async def _handle_issue_unassignment(self, ctx: EventContext) -> None:
        issue = ctx.issue
        event = ctx.event
        remaining = event.assignees
        try:
            record = await self._ensure_challenge_exists(ctx, create=False)
            if record is None:
                ctx.log.debug("unassignment_without_record_ignored")
                return
            if record.status == IssueStatus.CHALLENGE_PAYMENT_SUCCESSFUL.value:
                ctx.log.debug("unassignment_after_payment_ignored")
                return

            if record.assignee:
                stored_id = await ctx.git_host.resolve_id_by_username(record.assignee)
                if stored_id is None:
                    ctx.log.warning("stored_assignee_unknown", assignee=record.assignee)
                    return
                remaining_names = [await self._username_for(ctx, a.id) for a in remaining]
                if record.assignee in remaining_names:
                    # The stored assignee is still assigned on the tracker
                    return

                handle = self.resolver.get_platform_handle(issue.provider, stored_id)
                if handle:
                    labels = [
                        label
                        for label in issue.labels
                        if label != self.settings.assigned_issue_label
                    ]
                    labels.append(self.settings.open_for_pickup_issue_label)
                    issue.labels = labels
                    await self.platform.remove_participant(
                        record.challenge_uuid, handle, self.settings.role_id_submitter
                    )
                    await ctx.git_host.create_comment(
                        ctx.ref,
                        f"Challenge {self._challenge_url(record)} {handle} has been unassigned.",
                    )
                    await ctx.git_host.set_labels(ctx.ref, labels)
                    ctx.log.info("assignee_unregistered", handle=handle)
            else:
                if len(remaining) > 1:
                    await self._comment_single_assignee(ctx)
                    return
                if len(remaining) == 1:
                    ctx.assignee_id = remaining[0].id
                    await self._handle_issue_assignment(ctx)
                    return
        except Exception as err:
            await self.retry.handle_event_gracefully(ctx, err)

        self.issues.update(
            record.id, assignee=None, assigned_at=None, labels=issue.labels
        )
        if len(remaining) == 1:
            ctx.assignee_id = remaining[0].id
            await self._handle_issue_assignment(ctx)

    # ------------------------------------------------------------------
    # issue.labelUpdated
    # ------------------------------------------------------------------

    async def _handle_issue_label_updated(self, ctx: EventContext) -> None:
        # Label events can race ahead of issue.created; they never create the challenge
        try:
            record = await self._ensure_challenge_exists(ctx, create=False)
        except Exception as err:
            await self.retry.handle_event_gracefully(ctx, err)

        if record is None:
            ctx.log.debug("label_update_without_record_ignored")
            return
        if record.status == IssueStatus.CHALLENGE_PAYMENT_SUCCESSFUL.value:
            ctx.log.debug("label_update_after_payment_ignored")
            return
        self.issues.update(record.id, labels=ctx.issue.labels)

    # ------------------------------------------------------------------
    # issue.closed
    # ------------------------------------------------------------------

    async def _handle_issue_close(self, ctx: EventContext) -> None:
        issue = ctx.issue
        event = ctx.event
        log = ctx.log
        settings = self.settings
        record: Optional[IssueModel] = None
        try:
            record = await self._ensure_challenge_exists(ctx)
            if record is None:
                if issue.tcx_ready:
                    await self.retry.handle_event_gracefully(
                        ctx, self._missing_record_error(ctx)
                    )
                return

            if record.status == IssueStatus.CHALLENGE_PAYMENT_SUCCESSFUL.value:
                log.debug("close_after_payment_ignored")
                return
            if (
                record.status == IssueStatus.CHALLENGE_PAYMENT_PENDING.value
                and not ctx.payment_successful
            ):
                log.debug("payment_in_progress_ignored")
                return

            if not ctx.payment_successful:
                paid = await self._pay_challenge(ctx, record)
                if not paid:
                    return
        except Exception as err:
            if not ctx.payment_successful and record is not None:
                self.issues.update(
                    record.id, status=IssueStatus.CHALLENGE_PAYMENT_FAILED.value
                )
            await self.retry.handle_event_gracefully(ctx, err)

        try:
            labels = [
                label
                for label in (record.labels or [])
                if label
                not in (settings.open_for_pickup_issue_label, settings.assigned_issue_label)
            ]
            labels.append(settings.assigned_issue_label)
            record = self.issues.update(
                record.id,
                labels=labels,
                status=IssueStatus.CHALLENGE_PAYMENT_SUCCESSFUL.value,
            )
            log.info("challenge_paid", challenge_uuid=record.challenge_uuid)

            tracker_labels = [l for l in labels if l != settings.fix_accepted_issue_label]
            tracker_labels += [settings.fix_accepted_issue_label, settings.paid_issue_label]
            await ctx.git_host.set_labels(ctx.ref, tracker_labels)

            winner = ctx.assignee_handle or self.resolver.get_platform_handle(
                issue.provider, ctx.assignee_id
            )
            if ctx.assignee_handle is None and winner:
                # Payment happened on an earlier delivery
                ctx.create_copilot_payments = self._pays_copilot(ctx, winner)

            comment = (
                f"Payment task has been updated: {self._challenge_url(record)}\n\n"
                "*Payments Complete*\n\n"
                f"Winner: {winner}\n\n"
            )
            if ctx.create_copilot_payments:
                comment += f"Copilot: {ctx.copilot.handle}\n\n"
            comment += f"Challenge `{record.challenge_uuid}` has been paid and closed."
            await ctx.git_host.create_comment(ctx.ref, comment)
        except Exception as err:
            await self.retry.handle_event_gracefully(ctx, err)

    async def _pay_challenge(self, ctx: EventContext, record: IssueModel) -> bool:
        """
        Drive the challenge to Completed with the assignee as winner.

        Returns:
            True once the challenge is closed; False when the close was not a
            payment (cancelled, unpaid, already handled).
        """
        issue = ctx.issue
        log = ctx.log
        settings = self.settings
        labels = ctx.event.labels

        if (
            settings.fix_accepted_issue_label not in labels
            and settings.canceled_issue_label not in labels
        ):
            await ctx.git_host.create_comment(
                ctx.ref,
                "This ticket was not processed for payment. If you would like to "
                "process it for payment, please reopen it, add the "
                f"```{settings.fix_accepted_issue_label}``` label, and then close it again",
            )
            return False

        if settings.canceled_issue_label in labels:
            await self.platform.cancel_challenge(record.challenge_uuid)
            await ctx.git_host.create_comment(
                ctx.ref, f"Challenge {record.challenge_uuid} has been cancelled"
            )
            self.issues.update(record.id, status=IssueStatus.CHALLENGE_CANCELLED.value)
            log.info("challenge_cancelled", challenge_uuid=record.challenge_uuid)
            return False

        if issue.primary_prize == 0:
            self.issues.update(record.id, status=IssueStatus.CHALLENGE_CANCELLED.value)
            log.info("zero_prize_challenge_cancelled")
            return False

        if ctx.assignee_id is None:
            log.debug("close_without_assignee_ignored")
            return False

        if settings.paid_issue_label in labels:
            log.debug("issue_already_paid")
            return False

        previous_status = record.status
        record = self.issues.update(
            record.id, status=IssueStatus.CHALLENGE_PAYMENT_PENDING.value
        )

        handle = self.resolver.get_platform_handle(issue.provider, ctx.assignee_id)
        if not handle:
            await self._rollback_assignee(ctx, ctx.assignee_id, reopen=True)
            self.issues.update(record.id, status=previous_status)
            return False
        ctx.assignee_handle = handle

        challenge = await self.platform.get_challenge(record.challenge_uuid)
        if challenge.get("status") == ChallengeStatus.COMPLETED.value:
            log.info("challenge_already_completed", challenge_uuid=record.challenge_uuid)
            self.issues.update(record.id, status=previous_status)
            return False

        await self.platform.update_challenge(
            record.challenge_uuid, {"prizeSets": build_prize_sets(issue.prizes)}
        )

        ctx.create_copilot_payments = self._pays_copilot(ctx, handle)
        if ctx.create_copilot_payments:
            await self.platform.update_challenge(
                record.challenge_uuid,
                {
                    "prizeSets": build_prize_sets(
                        issue.prizes, copilot_fee=settings.copilot_payment_amount
                    )
                },
            )

        winner_id = await self.platform.resolve_platform_user_id(handle)
        if not await self.platform.is_role_already_set(
            record.challenge_uuid, settings.role_id_submitter
        ):
            await self.platform.add_participant(
                record.challenge_uuid, handle, settings.role_id_submitter
            )
        if ctx.create_copilot_payments and not await self.platform.is_role_already_set(
            record.challenge_uuid, settings.role_id_copilot
        ):
            await self.platform.add_participant(
                record.challenge_uuid, ctx.copilot.handle, settings.role_id_copilot
            )

        if challenge.get("status") == ChallengeStatus.DRAFT.value:
            await self.platform.activate_challenge(record.challenge_uuid)

        await self.platform.close_challenge(record.challenge_uuid, winner_id, handle)
        ctx.payment_successful = True
        log.info("challenge_closed", winner=handle, challenge_uuid=record.challenge_uuid)
        return True

    # ------------------------------------------------------------------
    # issue.recreated
    # ------------------------------------------------------------------

    async def _handle_issue_recreate(self, ctx: EventContext) -> None:
        issue = ctx.issue
        event = ctx.event
        log = ctx.log

        labels = [
            label
            for label in issue.labels
            if not label.startswith(self.settings.issue_label_prefix)
        ]
        await ctx.git_host.set_labels(ctx.ref, labels)

        original_assignee_id = event.assignees[0].id if event.assignees else None
        if original_assignee_id is not None:
            await ctx.git_host.unassign(ctx.ref, original_assignee_id)

        if self._find_record(ctx) is not None:
            try:
                self._delete_record(ctx)
            except SQLAlchemyError as err:
                log.error("recreate_delete_failed", error=str(err))

        labels.append(self.settings.open_for_pickup_issue_label)
        await ctx.git_host.set_labels(ctx.ref, labels)
        issue.labels = labels
        issue.tcx_ready = any(
            label.startswith(self.settings.issue_label_prefix) for label in labels
        )

        self.creation_lock.clear(self._lock_key(ctx))
        await self._handle_issue_create(ctx, assign_from_event=False)

        if original_assignee_id is not None:
            username = await self._username_for(ctx, original_assignee_id)
            await ctx.git_host.assign(ctx.ref, username)
        log.info("issue_recreated")

    # ------------------------------------------------------------------
    # comment.created / comment.updated
    # ------------------------------------------------------------------

    async def _handle_issue_comment(self, ctx: EventContext) -> None:
        comment = ctx.event.comment
        if comment is None:
            ctx.log.debug("comment_event_without_comment_ignored")
            return

        parsed = parse_comment(comment.body)
        if parsed.is_bid:
            ctx.log.info("bid_received", amount=parsed.bid_amount)
        if parsed.is_accept_bid:
            new_title = format_prize_title(parsed.accepted_bid_amount, ctx.issue.title)
            await ctx.git_host.update_title(ctx.ref, new_title)
            await ctx.git_host.assign(ctx.ref, parsed.assigned_user)
            ctx.log.info(
                "bid_accepted",
                assignee=parsed.assigned_user,
                amount=parsed.accepted_bid_amount,
            )


def build_processor(
    db: Session,
    platform: ChallengePlatformClient,
    settings: Optional[Settings] = None,
    creation_lock: Optional[CreationLock] = None,
) -> IssueProcessor:
    """Processor wired with the production git host adapters."""
    return IssueProcessor(
        db, platform, settings=settings, creation_lock=creation_lock
    )
