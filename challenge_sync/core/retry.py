"""
Retry / reschedule subsystem.

Transient failures (challenge platform or processor) are redelivered through
the ``scheduled_events`` table after a fixed interval, up to
``RETRY_COUNT`` times. When the budget is spent the failure is reported on
the tracker issue instead. The original error is always re-raised so the
caller sees the attempt as failed.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, NoReturn, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..data.models.events import EventTypes
from ..db.models import utcnow
from ..db.services import ScheduledEventService
from ..errors import GitHostError, ProcessorError, is_retryable
from .context import EventContext

logger = structlog.get_logger()


class RetryScheduler:
    """Reschedules or finalizes failed events."""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.scheduled_events = ScheduledEventService(db)
        self.clock = clock

    @property
    def max_retries(self) -> int:
        return self.settings.retry_count

    async def handle_event_gracefully(self, ctx: EventContext, err: Exception) -> NoReturn:
        """
        Schedule a redelivery or run the terminal fallback, then re-raise ``err``.

        An error that already went through this handler (nested transitions)
        is re-raised untouched so it is never scheduled twice.
        """
        if is_retryable(err) and not getattr(err, "retry_handled", False):
            event = ctx.event
            log = logger.bind(key=event.issue_key, event_type=event.event_type)

            if event.retry_count < self.max_retries:
                self._schedule_retry(ctx, log)

            if event.retry_count == self.max_retries:
                log.warning("retries_exhausted", retry_count=event.retry_count)
                await self._finalize(ctx, err, log)

            err.retry_handled = True

        raise err

    def _schedule_retry(self, ctx: EventContext, log) -> None:
        retry_event = ctx.event.for_retry(payment_successful=ctx.payment_successful)
        due_at = self.clock() + timedelta(seconds=self.settings.retry_interval_seconds)
        scheduled = self.scheduled_events.schedule(
            key=retry_event.issue_key,
            payload=retry_event.to_payload(),
            due_at=due_at,
            is_retry=True,
        )
        log.info(
            "event_retry_scheduled",
            scheduled_event_id=scheduled.id,
            retry_count=retry_event.retry_count,
            due_at=due_at.isoformat(),
        )

    async def _finalize(self, ctx: EventContext, err: Exception, log) -> None:
        event = ctx.event
        cancelled = self.scheduled_events.cancel_pending_retries(event.issue_key)
        if cancelled:
            log.info("pending_retries_cancelled", count=cancelled)

        status_code = err.status_code if isinstance(err, ProcessorError) else 500
        message = err.message if isinstance(err, ProcessorError) else str(err)
        comment = f"[{status_code}]: {message}"
        if event.event_type == EventTypes.ISSUE_CLOSED:
            if not ctx.payment_successful:
                comment = f"Payment failed: {comment}"
        elif event.event_type == EventTypes.ISSUE_CREATED:
            comment = (
                f"The challenge creation on the {self.settings.platform_name} "
                "platform failed.  Please contact support to try again"
            )

        if ctx.git_host is None:
            log.error("retry_fallback_without_git_host", comment=comment)
            return

        try:
            await ctx.git_host.create_comment(ctx.ref, comment)
            if event.event_type == EventTypes.ISSUE_CLOSED:
                await ctx.git_host.set_state(ctx.ref, "open")
                await ctx.git_host.set_labels(
                    ctx.ref, [self.settings.ready_for_review_issue_label]
                )
        except GitHostError as cleanup_err:
            log.error("retry_fallback_failed", error=str(cleanup_err))
