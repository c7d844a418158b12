#!/usr/bin/env python3
"""Collapse duplicate recommendations, keeping the newest row per (user, type, title, company).

Rows written before the live-key index existed can share a dedup key. Deleting a
row also deletes its interaction history.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from healthstore import RecommendationStore, SQLiteHealthDB


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--db-path",
        default=os.getenv("CAREHUB_DB_PATH", str(BACKEND_DIR / "carehub.sqlite")),
        help="SQLite database file",
    )
    parser.add_argument("--user-id", default=None, help="Limit cleanup to one user")
    parser.add_argument("--verbose", action="store_true", help="List every deleted id")
    args = parser.parse_args()

    store = RecommendationStore(SQLiteHealthDB(args.db_path))
    removed = store.cleanup_duplicates(args.user_id)

    scope = f"user {args.user_id}" if args.user_id else "all users"
    print(f"Removed {len(removed)} duplicate recommendations for {scope}")
    if args.verbose:
        for recommendation_id in removed:
            print(f"  {recommendation_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
