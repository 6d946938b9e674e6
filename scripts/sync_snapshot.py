#!/usr/bin/env python3
"""
Rebuild clubs.json from the published clubs in the store.
"""

import argparse
import json
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent))

from clubmap.core.db import init_db
from clubmap.core.snapshot import SnapshotSynchronizer


def main():
    parser = argparse.ArgumentParser(description="Regenerate the published clubs snapshot")
    parser.add_argument("--output", help="Snapshot path (default: SNAPSHOT_PATH)")
    parser.add_argument("--backup", help="Backup path (default: SNAPSHOT_BACKUP_PATH)")
    args = parser.parse_args()

    init_db()
    result = SnapshotSynchronizer(snapshot_path=args.output, backup_path=args.backup).rebuild()
    print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    main()
