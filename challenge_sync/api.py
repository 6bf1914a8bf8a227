"""
FastAPI intake application.

Issue events posted here are persisted as due ``scheduled_events`` rows; the
worker claims and processes them, so accepted events survive restarts.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from .config import get_settings
from .db.base import get_db, init_database
from .db.services import IssueService, ScheduledEventService
from .log_config import setup_logging
from .schemas.issue_event_v1 import IssueEventV1

logger = structlog.get_logger()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    logger.info("api_starting", app_name=settings.app_name)

    try:
        await init_database()
    except Exception as e:
        logger.error("api_startup_failed", error=str(e))
        raise

    yield

    logger.info("api_stopped")


app = FastAPI(
    title="Challenge Sync",
    description="Synchronizes issue tracker tickets with platform challenges",
    version=importlib.metadata.version("challenge-sync"),
    lifespan=lifespan,
)


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/version", tags=["system"])
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("challenge-sync")}


@app.post("/events", status_code=202, tags=["events"])
async def enqueue_event(
    event: IssueEventV1, db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Accept an issue event for asynchronous processing.

    The envelope is validated here (422 on malformed input) and stored for
    immediate delivery to the worker.
    """
    scheduled = ScheduledEventService(db).schedule(
        key=event.issue_key, payload=event.to_payload()
    )
    logger.info(
        "event_accepted",
        scheduled_event_id=scheduled.id,
        event_type=event.event_type,
        key=event.issue_key,
    )
    return {
        "status": "accepted",
        "scheduled_event_id": scheduled.id,
        "key": event.issue_key,
    }


@app.get("/events/pending", tags=["events"])
async def list_pending_events(
    key: Optional[str] = None, db: Session = Depends(get_db)
) -> List[Dict[str, Any]]:
    """List events waiting for (re)delivery, optionally for one issue key."""
    return [row.to_dict() for row in ScheduledEventService(db).get_pending(key)]


@app.get("/issues", tags=["issues"])
async def list_issues(
    status: Optional[str] = None,
    project_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """List tracked issues, by project when ``project_id`` is given."""
    issue_service = IssueService(db)
    if project_id:
        issues = issue_service.find_by_project(project_id, status=status, limit=limit)
    else:
        issues = issue_service.list_issues(status=status, limit=limit, offset=offset)
    return [issue.to_dict() for issue in issues]


@app.get("/issues/{provider}/{repository_id}/{number}", tags=["issues"])
async def get_issue(
    provider: str, repository_id: str, number: int, db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Get the tracked state of one issue."""
    issue = IssueService(db).find_one(provider, repository_id, number)
    if not issue:
        raise HTTPException(status_code=404, detail="Issue not found")
    return issue.to_dict()
