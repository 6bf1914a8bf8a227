"""
Challenge Sync worker entry point.

Usage:
    python -m challenge_sync.worker [OPTIONS]

Options:
    --poll-interval N   Seconds between polls (default: from config)
    --claim-limit N     Scheduled events to claim per poll (default: from config)
"""
from __future__ import annotations

import argparse
import sys

from .loop import run_worker


def main() -> int:
    """Main entry point for worker CLI."""
    parser = argparse.ArgumentParser(
        description="Challenge Sync worker - processes issue events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with default settings
    python -m challenge_sync.worker

    # Poll every 10 seconds
    python -m challenge_sync.worker --poll-interval 10
        """,
    )

    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between poll cycles (default: from config)",
    )
    parser.add_argument(
        "--claim-limit",
        type=int,
        default=None,
        help="Max scheduled events to claim per poll cycle (default: from config)",
    )

    args = parser.parse_args()

    try:
        run_worker(poll_interval=args.poll_interval, claim_limit=args.claim_limit)
        return 0
    except KeyboardInterrupt:
        print("\nWorker stopped by user")
        return 0
    except Exception as e:
        print(f"Worker error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
