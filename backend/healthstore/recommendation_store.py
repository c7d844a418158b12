from __future__ import annotations

import json
import sqlite3
from typing import Any

from .database import LIVE_STATUSES, SQLiteHealthDB

_COLUMNS = (
    "id, user_id, type, title, description, reason, priority, company_id, product_id, "
    "analysis_id, status, metadata_json, created_at, updated_at"
)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _is_live_key_violation(exc: sqlite3.IntegrityError) -> bool:
    return "UNIQUE" in str(exc).upper()


class RecommendationStore:
    """Reads and administrative writes for recommendations.

    Status changes are not made here; the interaction lifecycle owns them.
    """

    def __init__(self, db: SQLiteHealthDB) -> None:
        self._db = db

    def insert_if_absent(self, record: dict[str, Any]) -> dict[str, Any] | None:
        """Insert a new live recommendation, or return None when its dedup key is already live."""
        row = {
            "id": record["id"],
            "user_id": record["user_id"],
            "type": record["type"],
            "title": record["title"],
            "description": record.get("description"),
            "reason": record.get("reason"),
            "priority": int(record.get("priority", 1)),
            "company_id": record.get("company_id"),
            "product_id": record.get("product_id"),
            "analysis_id": record.get("analysis_id"),
            "status": record.get("status", "ACTIVE"),
            "metadata_json": _json_dumps(record.get("metadata") or {}),
            "created_at": record["created_at"],
            "updated_at": record["created_at"],
        }
        with self._db.connection() as conn:
            try:
                conn.execute(
                    f"""
                    INSERT INTO recommendations ({_COLUMNS})
                    VALUES (
                      :id, :user_id, :type, :title, :description, :reason, :priority, :company_id, :product_id,
                      :analysis_id, :status, :metadata_json, :created_at, :updated_at
                    )
                    """,
                    row,
                )
            except sqlite3.IntegrityError as exc:
                if not _is_live_key_violation(exc):
                    raise
                return None
        return row

    def live_keys(self, user_id: str) -> set[tuple[str, str, str | None]]:
        placeholders = ", ".join("?" for _ in LIVE_STATUSES)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT type, title, company_id
                FROM recommendations
                WHERE user_id = ? AND status IN ({placeholders})
                """,
                (user_id, *LIVE_STATUSES),
            ).fetchall()
        return {(row["type"], row["title"], row["company_id"]) for row in rows}

    def get(self, recommendation_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM recommendations WHERE id = ?", (recommendation_id,)).fetchone()
        return dict(row) if row else None

    def get_for_user(self, recommendation_id: str, user_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"""
                SELECT {_COLUMNS},
                       (SELECT COUNT(*) FROM recommendation_interactions i WHERE i.recommendation_id = r.id)
                         AS interaction_count
                FROM recommendations r
                WHERE id = ? AND user_id = ?
                """,
                (recommendation_id, user_id),
            ).fetchone()
        return dict(row) if row else None

    def count_for_user(self, user_id: str) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM recommendations WHERE user_id = ?", (user_id,)).fetchone()
        return int(row["count"])

    def list_for_user(
        self,
        user_id: str,
        *,
        status: str | None = None,
        rec_type: str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        sql = f"""
            SELECT {_COLUMNS},
                   (SELECT COUNT(*) FROM recommendation_interactions i WHERE i.recommendation_id = r.id)
                     AS interaction_count
            FROM recommendations r
            WHERE user_id = ?
        """
        params: list[Any] = [user_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        if rec_type:
            sql += " AND type = ?"
            params.append(rec_type)
        sql += " ORDER BY priority DESC, created_at DESC LIMIT ?"
        params.append(max(1, min(100, limit)))
        with self._db.connection() as conn:
            return [dict(row) for row in conn.execute(sql, tuple(params)).fetchall()]

    def list_interactions(self, recommendation_id: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT id, recommendation_id, action, metadata_json, created_at
                    FROM recommendation_interactions
                    WHERE recommendation_id = ?
                    ORDER BY created_at ASC, rowid ASC
                    """,
                    (recommendation_id,),
                ).fetchall()
            ]

    def purge(self, recommendation_id: str) -> bool:
        with self._db.connection() as conn:
            return conn.execute("DELETE FROM recommendations WHERE id = ?", (recommendation_id,)).rowcount > 0

    def cleanup_duplicates(self, user_id: str | None = None) -> list[str]:
        """Delete all but the newest recommendation per dedup key; returns the deleted ids."""
        sql = "SELECT id, user_id, type, title, company_id FROM recommendations"
        params: tuple[Any, ...] = ()
        if user_id:
            sql += " WHERE user_id = ?"
            params = (user_id,)
        sql += " ORDER BY created_at DESC, rowid DESC"
        seen: set[tuple[str, str, str, str]] = set()
        doomed: list[str] = []
        with self._db.connection() as conn:
            for row in conn.execute(sql, params).fetchall():
                key = (row["user_id"], row["type"], row["title"], row["company_id"] or "")
                if key in seen:
                    doomed.append(row["id"])
                else:
                    seen.add(key)
            conn.executemany("DELETE FROM recommendations WHERE id = ?", [(item,) for item in doomed])
        return doomed
