#!/usr/bin/env python3
"""Seed the marketplace with partner companies.

Usage:
    python scripts/seed_companies.py                      # uses CAREHUB_DB_PATH or backend/carehub.sqlite
    python scripts/seed_companies.py --db-path /tmp/x.sqlite
    python scripts/seed_companies.py --city Pittsburgh    # only that city's partners

Company ids are stable, so re-running the script updates rows in place.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from healthstore import CompanyStore, SQLiteHealthDB

PARTNERS: list[dict[str, Any]] = [
    {"company_id": "pgh-lab-quest", "name": "Quest Diagnostics Oakland", "company_type": "LABORATORY",
     "city": "Pittsburgh", "rating": 4.6, "is_verified": True},
    {"company_id": "pgh-lab-labcorp", "name": "Labcorp Shadyside", "company_type": "LABORATORY",
     "city": "Pittsburgh", "rating": 4.4, "is_verified": True},
    {"company_id": "pgh-clinic-upmc", "name": "UPMC Primary Care Squirrel Hill", "company_type": "CLINIC",
     "city": "Pittsburgh", "rating": 4.8, "is_verified": True},
    {"company_id": "pgh-clinic-ahn", "name": "AHN Family Medicine", "company_type": "CLINIC",
     "city": "Pittsburgh", "rating": 4.5, "is_verified": False},
    {"company_id": "pgh-pharmacy-giant-eagle", "name": "Giant Eagle Pharmacy", "company_type": "PHARMACY",
     "city": "Pittsburgh", "rating": 4.3, "is_verified": True},
    {"company_id": "pgh-store-vitamin-shoppe", "name": "The Vitamin Shoppe", "company_type": "HEALTH_STORE",
     "city": "Pittsburgh", "rating": 4.2, "is_verified": False},
    {"company_id": "pgh-nutrition-steel-city", "name": "Steel City Nutrition", "company_type": "NUTRITIONIST",
     "city": "Pittsburgh", "rating": 4.7, "is_verified": True},
    {"company_id": "pgh-fitness-ymca", "name": "YMCA Downtown", "company_type": "FITNESS_CENTER",
     "city": "Pittsburgh", "rating": 4.4, "is_verified": True},
    {"company_id": "nyc-lab-quest", "name": "Quest Diagnostics Midtown", "company_type": "LABORATORY",
     "city": "New York", "rating": 4.3, "is_verified": True},
    {"company_id": "nyc-clinic-onemedical", "name": "One Medical Flatiron", "company_type": "CLINIC",
     "city": "New York", "rating": 4.6, "is_verified": True},
    {"company_id": "nyc-pharmacy-duane-reade", "name": "Duane Reade Pharmacy", "company_type": "PHARMACY",
     "city": "New York", "rating": 3.9, "is_verified": False},
    {"company_id": "nyc-fitness-equinox", "name": "Equinox Hudson Yards", "company_type": "FITNESS_CENTER",
     "city": "New York", "rating": 4.5, "is_verified": False},
]


def _default_db_path() -> str:
    return os.getenv("CAREHUB_DB_PATH", str(BACKEND_DIR / "carehub.sqlite"))


def seed(db_path: str, city: str | None = None) -> list[dict[str, Any]]:
    companies = CompanyStore(SQLiteHealthDB(db_path))
    wanted = [item for item in PARTNERS if city is None or item["city"].lower() == city.lower()]
    return [companies.upsert_company(**item) for item in wanted]


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed partner companies into the CareHub database.")
    parser.add_argument("--db-path", default=_default_db_path(), help="SQLite database file")
    parser.add_argument("--city", default=None, help="Only seed partners in this city")
    args = parser.parse_args()

    seeded = seed(args.db_path, args.city)
    by_type: dict[str, int] = {}
    for row in seeded:
        by_type[row["company_type"]] = by_type.get(row["company_type"], 0) + 1
    print(f"Seeded {len(seeded)} companies into {args.db_path}")
    for company_type, count in sorted(by_type.items()):
        print(f"  {company_type}: {count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
