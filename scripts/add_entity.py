#!/usr/bin/env python3
"""
Register GitHub accounts to track.

Usage:
    # One account
    python scripts/add_entity.py octocat --external-id U2024001 --email octo@example.edu

    # Many accounts from a file with one handle per line
    python scripts/add_entity.py --file handles.txt
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

import logging

from api.services.activity_store import get_activity_store

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def read_handles(path: Path) -> list[str]:
    """Handles from a text file, skipping blank lines and # comments."""
    handles = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            handles.append(line)
    return handles


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser(description='Add entities to the activity monitor')
    parser.add_argument('handle', nargs='?', help='GitHub login to track')
    parser.add_argument('--external-id', default='', help='External identifier, e.g. university id')
    parser.add_argument('--email', default='', help='Contact email')
    parser.add_argument('--file', type=Path, help='File with one handle per line')
    args = parser.parse_args()

    if not args.handle and not args.file:
        parser.error('either a handle or --file is required')

    store = get_activity_store()
    if args.handle:
        entries = [(args.handle, args.external_id, args.email)]
    else:
        entries = [(handle, "", "") for handle in read_handles(args.file)]

    added = 0
    skipped = 0
    for handle, external_id, email in entries:
        try:
            store.add_entity(handle, external_id=external_id, email=email)
            added += 1
        except ValueError as e:
            logger.warning(f"Skipping {handle}: {e}")
            skipped += 1

    logger.info(f"Added {added} entities, skipped {skipped}")
    return 0 if added or not skipped else 1


if __name__ == '__main__':
    sys.exit(main())
