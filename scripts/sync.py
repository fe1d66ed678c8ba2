#!/usr/bin/env python3
"""Manually sync the local replica with the remote store.

Usage:
    python scripts/sync.py
    python scripts/sync.py --verbose
    python scripts/sync.py --status
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.local_store import LocalStore
from core.remote_store import RemoteStoreError, create_remote_store
from core.sync_manager import SyncManager
from utils.config import Config

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "alphatyper" / "alphatyper.db"


def setup_logging(verbose: bool = False) -> None:
    """Setup logging for sync script."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def print_status(store: LocalStore) -> None:
    envelope = store.load()
    data = envelope.local_data
    updated = (
        datetime.fromtimestamp(envelope.updated_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
        if envelope.updated_at
        else "never"
    )
    print(f"Last change:  {updated}")
    print(f"Runs:         {len(data.history)}")
    print(f"Profiles:     {', '.join(data.profiles)} (current: {data.current_profile})")
    print(f"Devices:      {', '.join(data.devices)} (current: {data.current_device})")
    print(f"Patterns:     {len(data.finger_patterns or [])} finger, {len(data.rhythm_patterns or [])} rhythm")
    print()
    print("Recent syncs:")
    for entry in store.get_sync_log(limit=5):
        when = datetime.fromtimestamp(entry["timestamp"] / 1000).strftime("%Y-%m-%d %H:%M:%S")
        status = "error" if entry["error"] else "ok"
        print(
            f"  {when} {entry['machine_name']}: {status}, pushed={entry['pushed']}, "
            f"pulled={entry['pulled']}, merged={entry['merged']}"
        )


def main():
    parser = argparse.ArgumentParser(
        description="Manually sync the local replica with the remote store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s
  %(prog)s --verbose
  %(prog)s --status
        """,
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--status", action="store_true", help="Show local snapshot summary and sync log"
    )
    parser.add_argument(
        "--db", type=Path, default=DEFAULT_DB_PATH, help="Path to the local database"
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    if not args.db.exists():
        print(f"Error: Database not found at {args.db}")
        sys.exit(1)

    config = Config(args.db)
    store = LocalStore(args.db)

    if args.status:
        print_status(store)
        sys.exit(0)

    settings = config.app_settings()
    if not settings.user_id:
        print("Error: user_id is not configured")
        sys.exit(1)

    try:
        remote = create_remote_store(settings)
    except (RemoteStoreError, ImportError) as e:
        print(f"Error creating remote store: {e}")
        sys.exit(1)

    manager = SyncManager(
        store,
        remote,
        user_id=settings.user_id,
        overwrite_malformed_remote=settings.overwrite_malformed_remote,
    )

    print("=" * 70)
    print("Starting sync...")
    print("=" * 70)

    try:
        result = manager.sync()
    finally:
        remote.close()

    print()
    print("=" * 70)
    if result.success:
        print(f"✓ Sync completed successfully in {result.duration_ms / 1000:.2f}s")
        print(f"  Pushed: {'yes' if result.pushed else 'no'}")
        print(f"  New runs pulled: {result.pulled}")
        print(f"  Merged: {'yes' if result.merged else 'no'}")
    else:
        print("✗ Sync failed")
        print(f"  Error: {result.error or 'Unknown error'}")
    print("=" * 70)

    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
