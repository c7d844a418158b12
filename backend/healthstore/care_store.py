from __future__ import annotations

import json
import uuid
from typing import Any

from .database import SQLiteHealthDB
from .time_utils import to_iso, utc_now

_COLUMNS = "id, caretaker_id, patient_id, permissions_json, created_at, updated_at"


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


class CareStore:
    def __init__(self, db: SQLiteHealthDB) -> None:
        self._db = db

    def upsert_relationship(
        self,
        *,
        caretaker_id: str,
        patient_id: str,
        permissions: dict[str, Any],
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO care_relationships (id, caretaker_id, patient_id, permissions_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(caretaker_id, patient_id) DO UPDATE SET
                  permissions_json = excluded.permissions_json,
                  updated_at = excluded.updated_at
                """,
                (uuid.uuid4().hex, caretaker_id, patient_id, _json_dumps(permissions), now, now),
            )
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM care_relationships WHERE caretaker_id = ? AND patient_id = ?",
                (caretaker_id, patient_id),
            ).fetchone()
        return dict(row)

    def get_by_pair(self, caretaker_id: str, patient_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM care_relationships WHERE caretaker_id = ? AND patient_id = ?",
                (caretaker_id, patient_id),
            ).fetchone()
        return dict(row) if row else None

    def get(self, relationship_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM care_relationships WHERE id = ?",
                (relationship_id,),
            ).fetchone()
        return dict(row) if row else None

    def update_permissions(self, relationship_id: str, permissions: dict[str, Any]) -> dict[str, Any] | None:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            updated = conn.execute(
                "UPDATE care_relationships SET permissions_json = ?, updated_at = ? WHERE id = ?",
                (_json_dumps(permissions), now, relationship_id),
            ).rowcount
            if not updated:
                return None
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM care_relationships WHERE id = ?",
                (relationship_id,),
            ).fetchone()
        return dict(row)

    def delete(self, relationship_id: str) -> bool:
        with self._db.connection() as conn:
            return conn.execute("DELETE FROM care_relationships WHERE id = ?", (relationship_id,)).rowcount > 0

    def list_as_caretaker(self, caretaker_id: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM care_relationships
                    WHERE caretaker_id = ?
                    ORDER BY created_at DESC
                    """,
                    (caretaker_id,),
                ).fetchall()
            ]

    def list_as_patient(self, patient_id: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM care_relationships
                    WHERE patient_id = ?
                    ORDER BY created_at DESC
                    """,
                    (patient_id,),
                ).fetchall()
            ]
