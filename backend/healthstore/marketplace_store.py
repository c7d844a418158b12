from __future__ import annotations

import uuid
from typing import Any

from .database import SQLiteHealthDB
from .time_utils import to_iso, utc_now

_COLUMNS = "id, name, company_type, city, rating, is_verified, is_active"


class CompanyStore:
    def __init__(self, db: SQLiteHealthDB) -> None:
        self._db = db

    def upsert_company(
        self,
        *,
        name: str,
        company_type: str,
        city: str | None = None,
        rating: float = 0.0,
        is_verified: bool = False,
        is_active: bool = True,
        company_id: str | None = None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        record_id = company_id or uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO companies (id, name, company_type, city, rating, is_verified, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  name = excluded.name,
                  company_type = excluded.company_type,
                  city = excluded.city,
                  rating = excluded.rating,
                  is_verified = excluded.is_verified,
                  is_active = excluded.is_active,
                  updated_at = excluded.updated_at
                """,
                (record_id, name, company_type, city, float(rating), int(is_verified), int(is_active), now, now),
            )
            row = conn.execute(f"SELECT {_COLUMNS} FROM companies WHERE id = ?", (record_id,)).fetchone()
        return dict(row)

    def best_partner(self, company_type: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM companies
                WHERE company_type = ? AND is_active = 1
                ORDER BY is_verified DESC, rating DESC, created_at ASC, id ASC
                LIMIT 1
                """,
                (company_type,),
            ).fetchone()
        return dict(row) if row else None

    def list_companies(self, company_type: str | None = None) -> list[dict[str, Any]]:
        sql = f"SELECT {_COLUMNS} FROM companies WHERE is_active = 1"
        params: list[Any] = []
        if company_type:
            sql += " AND company_type = ?"
            params.append(company_type)
        sql += " ORDER BY is_verified DESC, rating DESC, name ASC"
        with self._db.connection() as conn:
            return [dict(row) for row in conn.execute(sql, tuple(params)).fetchall()]
