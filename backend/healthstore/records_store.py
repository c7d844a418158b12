from __future__ import annotations

import uuid
from typing import Any

from .database import SQLiteHealthDB
from .time_utils import to_iso, utc_now


class PatientRecordsStore:
    """Diary, medication and reminder rows, always keyed by the resolved patient id.

    ``created_by`` keeps the acting user, which differs from ``user_id`` when a
    caretaker writes on a patient's behalf.
    """

    def __init__(self, db: SQLiteHealthDB) -> None:
        self._db = db

    def add_diary_entry(
        self,
        *,
        user_id: str,
        created_by: str,
        entry_date: str | None = None,
        mood: int | None = None,
        pain_score: int | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        record = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "entry_date": entry_date or now,
            "mood": mood,
            "pain_score": pain_score,
            "notes": notes,
            "created_by": created_by,
            "created_at": now,
        }
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO diary_entries (id, user_id, entry_date, mood, pain_score, notes, created_by, created_at)
                VALUES (:id, :user_id, :entry_date, :mood, :pain_score, :notes, :created_by, :created_at)
                """,
                record,
            )
        return record

    def list_diary_entries(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT id, user_id, entry_date, mood, pain_score, notes, created_by, created_at
                    FROM diary_entries
                    WHERE user_id = ?
                    ORDER BY entry_date DESC
                    LIMIT ?
                    """,
                    (user_id, max(1, limit)),
                ).fetchall()
            ]

    def add_medication(
        self,
        *,
        user_id: str,
        created_by: str,
        name: str,
        dosage: str | None = None,
        frequency_per_day: int | None = None,
        is_supplement: bool = False,
        notes: str | None = None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        if frequency_per_day is not None:
            frequency_per_day = max(1, min(6, int(frequency_per_day)))
        record = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "name": name,
            "dosage": dosage,
            "frequency_per_day": frequency_per_day,
            "is_supplement": is_supplement,
            "notes": notes,
            "created_by": created_by,
            "created_at": now,
        }
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO medications (
                  id, user_id, name, dosage, frequency_per_day, is_supplement, notes, created_by, created_at
                )
                VALUES (:id, :user_id, :name, :dosage, :frequency_per_day, :is_supplement, :notes, :created_by, :created_at)
                """,
                record | {"is_supplement": int(is_supplement)},
            )
        return record

    def list_medications(self, user_id: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, name, dosage, frequency_per_day, is_supplement, notes, created_by, created_at
                FROM medications
                WHERE user_id = ?
                ORDER BY created_at DESC
                """,
                (user_id,),
            ).fetchall()
        return [dict(row) | {"is_supplement": bool(row["is_supplement"])} for row in rows]

    def add_reminder(
        self,
        *,
        user_id: str,
        created_by: str,
        title: str,
        remind_at: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        record = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "title": title,
            "remind_at": remind_at,
            "notes": notes,
            "created_by": created_by,
            "created_at": now,
        }
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO reminders (id, user_id, title, remind_at, notes, created_by, created_at)
                VALUES (:id, :user_id, :title, :remind_at, :notes, :created_by, :created_at)
                """,
                record,
            )
        return record

    def list_reminders(self, user_id: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT id, user_id, title, remind_at, notes, created_by, created_at
                    FROM reminders
                    WHERE user_id = ?
                    ORDER BY remind_at ASC
                    """,
                    (user_id,),
                ).fetchall()
            ]
