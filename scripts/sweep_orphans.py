#!/usr/bin/env python3
"""
Remove stored files that no catalog row points at.

A file becomes orphaned when the process stops between writing it to the
content store and inserting its Document or unindexed queue row. Files
younger than the grace period are left alone so that in-flight filings
are never touched.

Usage:
    python scripts/sweep_orphans.py [--dry-run] [--grace-seconds N] [--storage-dir DIR]
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import settings
from src.database.connection import init_database
from src.imaging.document_filer import sweep_orphaned_blobs
from src.imaging.storage import LocalContentStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Delete unreferenced files from the content store")
    parser.add_argument("--dry-run", action="store_true", help="List orphans without deleting them")
    parser.add_argument("--grace-seconds", type=int, default=settings.orphan_grace_seconds,
                        help=f"Minimum file age before deletion (default: {settings.orphan_grace_seconds})")
    parser.add_argument("--storage-dir", default=settings.storage_dir,
                        help=f"Content store root (default: {settings.storage_dir})")
    args = parser.parse_args()

    init_database()
    store = LocalContentStore(Path(args.storage_dir))

    removed = sweep_orphaned_blobs(store, args.grace_seconds, dry_run=args.dry_run)
    for blob in removed:
        logger.info(f"{'Would remove' if args.dry_run else 'Removed'}: {blob}")

    print(f"\n{len(removed)} orphaned file(s) {'found' if args.dry_run else 'removed'}")


if __name__ == "__main__":
    main()
