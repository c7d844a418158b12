from __future__ import annotations

import uuid
from typing import Any

from .database import SQLiteHealthDB
from .time_utils import to_iso, utc_now


def _coerce_optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _derive_is_normal(value: float, reference_min: float | None, reference_max: float | None) -> bool:
    if reference_min is not None and value < reference_min:
        return False
    if reference_max is not None and value > reference_max:
        return False
    return True


def normalize_indicator(raw: dict[str, Any]) -> dict[str, Any]:
    value = float(raw["value"])
    reference_min = _coerce_optional_float(raw.get("reference_min"))
    reference_max = _coerce_optional_float(raw.get("reference_max"))
    is_normal = raw.get("is_normal")
    if not isinstance(is_normal, bool):
        is_normal = _derive_is_normal(value, reference_min, reference_max)
    return {
        "name": str(raw["name"]).strip(),
        "value": value,
        "unit": raw.get("unit"),
        "reference_min": reference_min,
        "reference_max": reference_max,
        "is_normal": is_normal,
    }


class LabStore:
    def __init__(self, db: SQLiteHealthDB) -> None:
        self._db = db

    def record_analysis(
        self,
        *,
        user_id: str,
        title: str,
        analysis_type: str,
        indicators: list[dict[str, Any]],
        analyzed_at: str | None = None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        analysis_id = uuid.uuid4().hex
        normalized = [normalize_indicator(item) for item in indicators]
        status = "abnormal" if any(not item["is_normal"] for item in normalized) else "normal"
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO lab_analyses (id, user_id, title, analysis_type, status, analyzed_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (analysis_id, user_id, title, analysis_type, status, analyzed_at or now, now),
            )
            conn.executemany(
                """
                INSERT INTO lab_indicators (
                  id, analysis_id, position, name, value, unit, reference_min, reference_max, is_normal
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        uuid.uuid4().hex,
                        analysis_id,
                        position,
                        item["name"],
                        item["value"],
                        item["unit"],
                        item["reference_min"],
                        item["reference_max"],
                        int(item["is_normal"]),
                    )
                    for position, item in enumerate(normalized)
                ],
            )
        return {
            "id": analysis_id,
            "user_id": user_id,
            "title": title,
            "analysis_type": analysis_type,
            "status": status,
            "analyzed_at": analyzed_at or now,
            "created_at": now,
            "indicators": normalized,
        }

    def recent_analyses(self, user_id: str, limit: int = 5) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            analyses = [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT id, user_id, title, analysis_type, status, analyzed_at, created_at
                    FROM lab_analyses
                    WHERE user_id = ?
                    ORDER BY analyzed_at DESC, created_at DESC
                    LIMIT ?
                    """,
                    (user_id, max(1, limit)),
                ).fetchall()
            ]
            for analysis in analyses:
                analysis["indicators"] = [
                    {
                        "name": row["name"],
                        "value": row["value"],
                        "unit": row["unit"],
                        "reference_min": row["reference_min"],
                        "reference_max": row["reference_max"],
                        "is_normal": bool(row["is_normal"]),
                    }
                    for row in conn.execute(
                        """
                        SELECT name, value, unit, reference_min, reference_max, is_normal
                        FROM lab_indicators
                        WHERE analysis_id = ?
                        ORDER BY position
                        """,
                        (analysis["id"],),
                    ).fetchall()
                ]
        return analyses
