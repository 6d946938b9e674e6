#!/usr/bin/env python3
"""
One-shot bootstrap: load an existing clubs.json into the store.

Safe to re-run; clubs already present with the same content are skipped.
"""

import argparse
import json
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent))

from clubmap.core.db import init_db
from clubmap.core.snapshot import SnapshotSynchronizer, migrate


def main():
    parser = argparse.ArgumentParser(
        description="Import a clubs.json snapshot into the store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Import SNAPSHOT_PATH
  %(prog)s legacy/clubs.json --rebuild  # Import, then regenerate SNAPSHOT_PATH
        """
    )
    parser.add_argument("source", nargs="?", help="Snapshot to import (default: SNAPSHOT_PATH)")
    parser.add_argument("--actor", default="migration", help="Recorded as verified_by on imported clubs")
    parser.add_argument("--rebuild", action="store_true", help="Rebuild the snapshot after importing")
    args = parser.parse_args()

    init_db()
    try:
        summary = migrate(args.source, actor=args.actor)
    except (OSError, ValueError) as e:
        print(f"Migration failed: {e}")
        sys.exit(1)

    print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))

    if args.rebuild:
        result = SnapshotSynchronizer().rebuild()
        print(f"Snapshot rebuilt: {result.record_count} clubs -> {result.path}")


if __name__ == "__main__":
    main()
