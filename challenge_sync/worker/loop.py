"""
Worker loop - delivers issue events to the issue processor.

Flow:
1. Claim: Atomically move due rows of ``scheduled_events`` from 'pending' to
   'dispatched' (intake events and retries alike)
2. Enqueue: Put the claimed envelopes on the in-process event queue
3. Process: Run each envelope through a fresh IssueProcessor
4. Complete: Mark the row 'completed' once the processor returns; rows left
   'dispatched' past the claim timeout are claimed again
5. Sleep: When nothing was due, wait one poll interval
"""
from __future__ import annotations

import asyncio
import signal
import uuid
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..core.creation_lock import LeasedCreationLock
from ..core.issue_processor import build_processor
from ..db.base import get_session_local
from ..db.services import ScheduledEventService
from ..errors import EventValidationError, ProcessorError
from ..integrations.challenge_platform import ChallengePlatformClient
from ..log_config import setup_logging
from .queue import AsyncioEventQueue, EventQueue

logger = structlog.get_logger()


class WorkerLoop:
    """Main worker loop for processing issue events."""

    def __init__(
        self,
        poll_interval: Optional[float] = None,
        claim_limit: Optional[int] = None,
        queue: Optional[EventQueue] = None,
        platform: Optional[ChallengePlatformClient] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        settings: Optional[Settings] = None,
        processor_factory: Optional[Callable[..., Any]] = None,
    ):
        """Initialize worker loop.

        Args:
            poll_interval: Seconds between poll cycles (default from config)
            claim_limit: Max scheduled events to claim per cycle (default from config)
            queue: Event transport (in-process asyncio queue by default)
            platform: Challenge platform client shared by every event
            session_factory: Callable returning a new database session
            settings: Application settings
            processor_factory: Builds the processor for one session
        """
        self.settings = settings or get_settings()
        self.poll_interval = poll_interval or self.settings.worker_poll_interval
        self.claim_limit = claim_limit or self.settings.worker_claim_limit
        self.queue = queue or AsyncioEventQueue()
        self.platform = platform or ChallengePlatformClient(self.settings)
        self.session_factory = session_factory or get_session_local()
        self.processor_factory = processor_factory or self._default_processor
        self.running = False
        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"

        logger.info(
            "worker_initialized",
            worker_id=self.worker_id,
            poll_interval=self.poll_interval,
            claim_limit=self.claim_limit,
        )

    def _default_processor(self, db: Session):
        return build_processor(
            db,
            self.platform,
            settings=self.settings,
            creation_lock=LeasedCreationLock(
                db, self.worker_id, self.settings.creation_lock_ttl_seconds
            ),
        )

    async def start(self) -> None:
        """Start the worker loop. Runs until stopped."""
        self.running = True
        logger.info("worker_starting", worker_id=self.worker_id)

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        try:
            while self.running:
                try:
                    processed = await self.run_once()
                    if processed == 0:
                        await asyncio.sleep(self.poll_interval)
                except Exception:
                    logger.exception("worker_loop_error", worker_id=self.worker_id)
                    # Sleep on error to avoid tight loop
                    await asyncio.sleep(self.poll_interval)
        finally:
            await self.platform.close()
            logger.info("worker_stopped", worker_id=self.worker_id)

    def stop(self) -> None:
        """Signal the worker to stop after the current event."""
        logger.info("worker_stopping", worker_id=self.worker_id)
        self.running = False

    def _signal_handler(self, signum, frame) -> None:
        logger.info("worker_signal_received", signum=signum)
        self.stop()

    async def run_once(self) -> int:
        """Claim due events and drain the queue.

        Returns:
            Number of events processed
        """
        await self._enqueue_due_events()

        processed = 0
        while not self.queue.empty():
            delivery = await self.queue.get()
            await self._process_event(delivery["payload"])
            self._mark_completed(delivery["scheduled_event_id"])
            processed += 1
        return processed

    async def _enqueue_due_events(self) -> int:
        db = self.session_factory()
        try:
            claimed = ScheduledEventService(db).claim_due(
                self.worker_id,
                limit=self.claim_limit,
                claim_timeout_seconds=self.settings.worker_claim_timeout_seconds,
            )
            for scheduled in claimed:
                await self.queue.put(
                    {"scheduled_event_id": scheduled.id, "payload": scheduled.payload}
                )
            if claimed:
                logger.debug("scheduled_events_claimed", count=len(claimed))
            return len(claimed)
        finally:
            db.close()

    def _mark_completed(self, scheduled_event_id: str) -> None:
        # Rows left dispatched by a crashed worker are reclaimed after the claim timeout
        db = self.session_factory()
        try:
            if not ScheduledEventService(db).complete(scheduled_event_id, self.worker_id):
                logger.warning(
                    "scheduled_event_claim_lost",
                    worker_id=self.worker_id,
                    scheduled_event_id=scheduled_event_id,
                )
        finally:
            db.close()

    async def _process_event(self, payload: Dict[str, Any]) -> None:
        """Process one envelope in its own session. Failures are logged, never raised."""
        db = self.session_factory()
        log = logger.bind(
            worker_id=self.worker_id,
            event_type=payload.get("eventType"),
            issue_number=payload.get("issueNumber"),
        )
        try:
            processor = self.processor_factory(db)
            await processor.process(payload)
        except EventValidationError as e:
            log.error("event_rejected", **e.to_dict())
        except ProcessorError as e:
            log.warning("event_failed", **e.to_dict())
        except Exception:
            log.exception("event_processing_crashed")
        finally:
            db.close()


def run_worker(
    poll_interval: Optional[float] = None,
    claim_limit: Optional[int] = None,
) -> None:
    """Run the worker loop.

    Args:
        poll_interval: Seconds between poll cycles
        claim_limit: Max scheduled events to claim per cycle
    """
    setup_logging()

    worker = WorkerLoop(poll_interval=poll_interval, claim_limit=claim_limit)
    asyncio.run(worker.start())
