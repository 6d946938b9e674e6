#!/usr/bin/env python3
"""
Replay intake buffer records that never reached the store.

One sweep by default; --loop keeps sweeping on the heartbeat schedule
(RECONCILE_INTERVAL_SEC) and requires RECONCILE_ENABLED=true.
"""

import argparse
import json
import sys
from pathlib import Path

# Load environment variables from .env file first
import dotenv
dotenv.load_dotenv()

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clubmap.core import heartbeat
from clubmap.core.config import get_reconcile_interval, is_reconcile_enabled
from clubmap.core.db import init_db
from clubmap.core.reconcile import reconciler


def main():
    parser = argparse.ArgumentParser(
        description="Replay buffered submissions into the store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                  # One sweep, default grace period
  %(prog)s --grace 0        # Include records written just now
  %(prog)s --loop           # Sweep every RECONCILE_INTERVAL_SEC seconds
        """
    )
    parser.add_argument("--grace", type=float, default=None,
                        help="Skip records younger than this many seconds (default: RECONCILE_GRACE_SEC)")
    parser.add_argument("--loop", action="store_true",
                        help="Keep sweeping on the heartbeat schedule")
    args = parser.parse_args()

    init_db()

    if not args.loop:
        summary = reconciler.sweep(args.grace)
        print(json.dumps(summary.to_dict(), indent=2))
        sys.exit(1 if summary.aborted or summary.failed else 0)

    if not is_reconcile_enabled():
        print("Reconciliation loop requires RECONCILE_ENABLED=true")
        sys.exit(1)

    try:
        heartbeat.register_task("intake_reconcile", get_reconcile_interval(),
                                lambda: reconciler.sweep(args.grace))
        heartbeat.start()
    except KeyboardInterrupt:
        heartbeat.stop()
    except Exception as e:
        print(f"Critical error: {e}")
        heartbeat.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
