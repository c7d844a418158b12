from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any

from healthstore.lab_store import LabStore
from healthstore.marketplace_store import CompanyStore
from healthstore.recommendation_store import RecommendationStore
from healthstore.time_utils import to_iso, utc_now

from .errors import InternalError
from .models import CompanyType, LabAnalysis, LabIndicator, Recommendation, RecommendationStatus
from .rules import MAX_FALLBACK_ANALYSES, CandidateSpec, candidates_for, detect_findings, fallback_candidates

logger = logging.getLogger(__name__)

DedupKey = tuple[str, str, str | None]


@dataclass(frozen=True)
class Candidate:
    spec: CandidateSpec
    analysis_id: str
    company_id: str | None

    @property
    def key(self) -> DedupKey:
        return (self.spec.type.value, self.spec.title, self.company_id)


def _analysis_from_row(row: dict[str, Any]) -> LabAnalysis:
    return LabAnalysis(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        analysis_type=row["analysis_type"],
        status=row["status"],
        analyzed_at=row["analyzed_at"],
        created_at=row.get("created_at", ""),
        indicators=[LabIndicator(**indicator) for indicator in row.get("indicators", [])],
    )


class RecommendationGenerator:
    def __init__(
        self,
        *,
        labs: LabStore,
        companies: CompanyStore,
        recommendations: RecommendationStore,
        recent_analyses: int = 5,
    ) -> None:
        self._labs = labs
        self._companies = companies
        self._recommendations = recommendations
        self._recent_analyses = max(1, int(recent_analyses))

    def collect_candidates(self, patient_id: str) -> list[Candidate]:
        """Map the patient's recent abnormal findings to candidates, deduplicated within the batch."""
        analyses = [_analysis_from_row(row) for row in self._labs.recent_analyses(patient_id, self._recent_analyses)]
        partners: dict[tuple[CompanyType, ...], str | None] = {}
        candidates: list[Candidate] = []

        matched = [
            (analysis, [spec for finding in detect_findings(analysis) for spec in candidates_for(finding)])
            for analysis in analyses
        ]
        # Fallback only applies when no rule matched in any recent analysis.
        if not any(specs for _, specs in matched):
            abnormal = [analysis for analysis in analyses if analysis.status == "abnormal"]
            matched = [(analysis, fallback_candidates(analysis)) for analysis in abnormal[:MAX_FALLBACK_ANALYSES]]

        for analysis, specs in matched:
            for spec in specs:
                if spec.company_types not in partners:
                    partners[spec.company_types] = self._pick_partner(spec.company_types)
                candidates.append(
                    Candidate(spec=spec, analysis_id=analysis.id, company_id=partners[spec.company_types])
                )

        # sorted() is stable: equal priorities keep newest-analysis-first rule order.
        ordered = sorted(candidates, key=lambda candidate: -candidate.spec.priority)
        unique: list[Candidate] = []
        seen: set[DedupKey] = set()
        for candidate in ordered:
            if candidate.key in seen:
                continue
            seen.add(candidate.key)
            unique.append(candidate)
        return unique

    def _pick_partner(self, company_types: tuple[CompanyType, ...]) -> str | None:
        for company_type in company_types:
            partner = self._companies.best_partner(company_type.value)
            if partner:
                return partner["id"]
        return None

    def generate_for_patient(self, patient_id: str) -> list[Recommendation]:
        try:
            candidates = self.collect_candidates(patient_id)
            live = self._recommendations.live_keys(patient_id)
            created: list[Recommendation] = []
            skipped = 0
            for candidate in candidates:
                if candidate.key in live:
                    skipped += 1
                    continue
                now = to_iso(utc_now())
                row = self._recommendations.insert_if_absent(
                    {
                        "id": uuid.uuid4().hex,
                        "user_id": patient_id,
                        "type": candidate.spec.type.value,
                        "title": candidate.spec.title,
                        "description": candidate.spec.description,
                        "reason": candidate.spec.reason,
                        "priority": candidate.spec.priority,
                        "company_id": candidate.company_id,
                        "analysis_id": candidate.analysis_id,
                        "status": RecommendationStatus.ACTIVE.value,
                        "metadata": dict(candidate.spec.metadata),
                        "created_at": now,
                    }
                )
                if row is None:
                    logger.debug("recommendation %r for %s went live concurrently; skipping", candidate.key, patient_id)
                    skipped += 1
                    continue
                created.append(Recommendation.from_row(row))
        except sqlite3.Error as exc:
            raise InternalError("Storage failure while generating recommendations.") from exc

        logger.info(
            "generated recommendations for %s: candidates=%d created=%d skipped=%d",
            patient_id,
            len(candidates),
            len(created),
            skipped,
        )
        return created
