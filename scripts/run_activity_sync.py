#!/usr/bin/env python3
"""
Run the activity sync and snapshot regeneration once, outside the API server.

Usage:
    # Full sync followed by a snapshot regeneration
    python scripts/run_activity_sync.py

    # Sync only
    python scripts/run_activity_sync.py --skip-snapshots

    # Regenerate snapshots from the current ledger
    python scripts/run_activity_sync.py --snapshots-only

Ctrl+C cancels the sync after the entity being fetched; batches already
committed are kept.
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

import logging
import signal

from api.services.activity_jobs import cancel_all, run_snapshot_job, run_sync_job
from api.services.resilience import StoreWriteFailure, SyncAlreadyRunningError
from config.settings import settings

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)


def _handle_sigint(signum, frame):
    logger.warning("Interrupt received, cancelling after the current entity...")
    cancel_all()


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser(
        description='Sync GitHub activity for all tracked entities'
    )
    parser.add_argument(
        '--skip-snapshots',
        action='store_true',
        help='Do not regenerate snapshots after the sync'
    )
    parser.add_argument(
        '--snapshots-only',
        action='store_true',
        help='Only regenerate snapshots from the current ledger'
    )
    args = parser.parse_args()

    if not settings.github_enabled and not args.snapshots_only:
        logger.error("GITHUB_TOKEN is not set. Add it to the environment or .env")
        return 1

    signal.signal(signal.SIGINT, _handle_sigint)

    if not args.snapshots_only:
        try:
            summary = run_sync_job(trigger="cli")
        except SyncAlreadyRunningError as e:
            logger.error(str(e))
            return 1
        except StoreWriteFailure as e:
            partial = e.summary
            logger.error(f"Sync aborted: {e.message}")
            if partial:
                logger.error(f"Committed before abort: processed={partial.processed}, failed={partial.failed}")
            return 1

        logger.info(f"\n=== Sync {'Cancelled' if summary.cancelled else 'Complete'} ===")
        logger.info(f"Processed: {summary.processed}")
        logger.info(f"Failed: {summary.failed}")
        logger.info(f"Elapsed: {summary.elapsed_seconds:.1f}s")
        if summary.cancelled:
            return 130

    if args.skip_snapshots:
        return 0

    regen = run_snapshot_job(trigger="cli")
    logger.info(f"\n=== Snapshots ===")
    logger.info(f"Generated: {regen.generated}")
    if regen.failed:
        logger.warning(f"Failed: {', '.join(regen.failed_keys)}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
