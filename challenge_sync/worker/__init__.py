"""
Challenge Sync worker - delivers queued and rescheduled issue events.

Usage:
    python -m challenge_sync.worker

Components:
    - loop: Main worker loop (claim due events, enqueue, process)
    - queue: In-process event transport
"""

from .loop import WorkerLoop, run_worker
from .queue import AsyncioEventQueue, EventQueue

__all__ = [
    "AsyncioEventQueue",
    "EventQueue",
    "WorkerLoop",
    "run_worker",
]
