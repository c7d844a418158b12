from __future__ import annotations

import logging
from typing import Any

from healthstore.recommendation_store import RecommendationStore

from .errors import InvalidFilterError, NotFoundError
from .generator import RecommendationGenerator
from .models import Recommendation, RecommendationStatus, RecommendationType

logger = logging.getLogger(__name__)


def _parse_filter(value: str | None, enum_cls: type, label: str) -> str | None:
    if value is None or not str(value).strip():
        return None
    try:
        return enum_cls(str(value).strip().upper()).value
    except ValueError:
        raise InvalidFilterError(f"Unknown {label}: {value!r}") from None


class RecommendationService:
    def __init__(
        self,
        store: RecommendationStore,
        generator: RecommendationGenerator,
        *,
        auto_materialize: bool = True,
    ) -> None:
        self._store = store
        self._generator = generator
        self._auto_materialize = auto_materialize

    def list_for_patient(
        self,
        patient_id: str,
        *,
        status: str | None = None,
        rec_type: str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        status_value = _parse_filter(status, RecommendationStatus, "status")
        type_value = _parse_filter(rec_type, RecommendationType, "recommendation type")
        if self._auto_materialize and self._store.count_for_user(patient_id) == 0:
            logger.info("no recommendations stored for %s; generating on first read", patient_id)
            self._generator.generate_for_patient(patient_id)
        rows = self._store.list_for_user(patient_id, status=status_value, rec_type=type_value, limit=limit)
        return [self._serialize(row) for row in rows]

    def get_for_patient(self, recommendation_id: str, patient_id: str) -> dict[str, Any]:
        row = self._store.get_for_user(recommendation_id, patient_id)
        if not row:
            raise NotFoundError("Recommendation not found.")
        return self._serialize(row)

    def generate(self, patient_id: str) -> list[dict[str, Any]]:
        return [recommendation.as_dict() for recommendation in self._generator.generate_for_patient(patient_id)]

    def purge_recommendation(self, recommendation_id: str) -> None:
        if not self._store.purge(recommendation_id):
            raise NotFoundError("Recommendation not found.")
        logger.info("recommendation %s purged with its interaction history", recommendation_id)

    def cleanup_duplicates(self, user_id: str | None = None) -> list[str]:
        removed = self._store.cleanup_duplicates(user_id)
        if removed:
            logger.info("removed %d duplicate recommendations", len(removed))
        return removed

    @staticmethod
    def _serialize(row: dict[str, Any]) -> dict[str, Any]:
        payload = Recommendation.from_row(row).as_dict()
        payload["interaction_count"] = int(row.get("interaction_count") or 0)
        return payload
