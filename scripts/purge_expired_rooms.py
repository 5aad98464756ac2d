#!/usr/bin/env python3
"""
Delete room records whose TTL has passed.
Expired rooms already read as absent; this only reclaims the space.
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from reviewroom.core.config import get_db_path
from reviewroom.core.store import get_room_count, purge_expired


def main():
    parser = argparse.ArgumentParser(description="Purge expired review rooms")
    parser.add_argument("--db-path", help="SQLite file (defaults to DB_PATH)")
    args = parser.parse_args()

    if args.db_path:
        import os
        os.environ["DB_PATH"] = args.db_path

    print(f"🧹 Purging expired rooms from {get_db_path()}")
    removed = purge_expired()
    print(f"✓ Removed {removed} expired room(s); {get_room_count()} live room(s) remain")
    return 0


if __name__ == "__main__":
    sys.exit(main())
