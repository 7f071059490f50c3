#!/usr/bin/env python3
"""Utility script to inspect or force-release the run lock lease."""
import sqlite3
import sys
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from salesmail.config import STATE_DB
from salesmail.jobs.run_lock import LOCK_NAME


def show_lease() -> None:
    """Show who holds the lease and for how long."""
    if not STATE_DB.exists():
        print(f"No state database at {STATE_DB}")
        return
    conn = sqlite3.connect(STATE_DB)
    cursor = conn.cursor()
    cursor.execute("SELECT holder, acquired_at FROM run_lease WHERE name = ?", (LOCK_NAME,))
    row = cursor.fetchone()
    if row is None:
        print("Run lock is free")
    else:
        holder, acquired_at = row
        print(f"Run lock held by {holder} for {(time.time() - acquired_at) / 60:.1f} minutes")
    conn.close()


def force_release() -> None:
    """Delete the lease regardless of holder."""
    if not STATE_DB.exists():
        print(f"No state database at {STATE_DB}")
        return
    conn = sqlite3.connect(STATE_DB)
    cursor = conn.cursor()
    cursor.execute("DELETE FROM run_lease WHERE name = ?", (LOCK_NAME,))
    conn.commit()
    print(f"Released {cursor.rowcount} lease(s)")
    conn.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage:")
        print("  python scripts/release_lock.py show       # Show the current holder")
        print("  python scripts/release_lock.py release    # Force-release the lease")
        sys.exit(1)

    command = sys.argv[1]

    if command == "show":
        show_lease()
    elif command == "release":
        confirm = input("Force-release the run lock? A running scan may overlap. (yes/no): ")
        if confirm.lower() == "yes":
            force_release()
        else:
            print("Cancelled")
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)
