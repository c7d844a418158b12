from __future__ import annotations

import logging
import sqlite3

import pytest

from carehub_core.errors import InternalError, InvalidFilterError
from carehub_core.generator import RecommendationGenerator
from carehub_core.lifecycle import RecommendationLifecycle
from carehub_core.models import LabAnalysis, LabIndicator, RecommendationStatus
from carehub_core.rules import detect_findings
from carehub_core.service import RecommendationService
from lab_fixtures import (
    CHOLESTEROL_HIGH,
    FERRITIN_LOW,
    GLUCOSE_HIGH,
    GLUCOSE_NORMAL,
    HEMOGLOBIN_LOW,
    TSH_HIGH,
    VITAMIN_D_LOW,
)


@pytest.fixture
def generator(store) -> RecommendationGenerator:
    return RecommendationGenerator(
        labs=store.labs,
        companies=store.companies,
        recommendations=store.recommendations,
    )


def _titles(recommendations) -> list[str]:
    return [item.title for item in recommendations]


def test_vitamin_d_finding_maps_to_rule_candidates(record_analysis, generator):
    record_analysis("patient-1", VITAMIN_D_LOW, GLUCOSE_NORMAL)

    created = generator.generate_for_patient("patient-1")

    assert _titles(created) == [
        "Vitamin D follow-up test",
        "Vitamin D3 supplement",
        "Vitamin D: why it matters and how to correct a deficiency",
    ]
    assert [item.priority for item in created] == [5, 5, 3]
    assert all(item.status == RecommendationStatus.ACTIVE for item in created)
    assert created[0].metadata["indicator"] == "Vitamin D (25-OH)"
    assert created[0].reason == "Low vitamin D (12 ng/mL)"


def test_regeneration_with_unchanged_input_creates_nothing(record_analysis, generator, store):
    record_analysis("patient-1", VITAMIN_D_LOW, CHOLESTEROL_HIGH)

    first = generator.generate_for_patient("patient-1")
    second = generator.generate_for_patient("patient-1")

    assert len(first) == 6
    assert second == []
    assert store.recommendations.count_for_user("patient-1") == 6


def test_same_finding_in_two_analyses_is_deduplicated_in_batch(record_analysis, generator):
    record_analysis("patient-1", VITAMIN_D_LOW, analyzed_at="2026-01-10T08:00:00Z")
    record_analysis("patient-1", VITAMIN_D_LOW, analyzed_at="2026-03-10T08:00:00Z")

    created = generator.generate_for_patient("patient-1")

    assert len(created) == 3
    assert len({(item.type, item.title, item.company_id) for item in created}) == 3


def test_terminal_recommendation_is_recreated(record_analysis, generator, store, db):
    record_analysis("patient-1", VITAMIN_D_LOW)
    created = generator.generate_for_patient("patient-1")
    lifecycle = RecommendationLifecycle(db)
    supplement = next(item for item in created if item.title == "Vitamin D3 supplement")
    lifecycle.record_interaction(supplement.id, "patient-1", "purchase")

    recreated = generator.generate_for_patient("patient-1")

    assert _titles(recreated) == ["Vitamin D3 supplement"]
    assert recreated[0].id != supplement.id
    assert store.recommendations.get(supplement.id)["status"] == "PURCHASED"


def test_live_recommendation_in_any_live_status_blocks_recreation(record_analysis, generator, db):
    record_analysis("patient-1", VITAMIN_D_LOW)
    created = generator.generate_for_patient("patient-1")
    lifecycle = RecommendationLifecycle(db)
    lifecycle.record_interaction(created[0].id, "patient-1", "view")
    lifecycle.record_interaction(created[1].id, "patient-1", "click")

    assert generator.generate_for_patient("patient-1") == []


def test_best_partner_is_assigned_by_company_type(record_analysis, generator, store):
    store.companies.upsert_company(name="Budget Lab", company_type="LABORATORY", rating=4.9, company_id="lab-cheap")
    store.companies.upsert_company(
        name="Certified Lab", company_type="LABORATORY", rating=4.1, is_verified=True, company_id="lab-verified"
    )
    store.companies.upsert_company(
        name="Closed Lab", company_type="LABORATORY", rating=5.0, is_verified=True, is_active=False, company_id="lab-x"
    )
    store.companies.upsert_company(name="Vita Store", company_type="HEALTH_STORE", rating=4.0, company_id="store-1")
    record_analysis("patient-1", VITAMIN_D_LOW)

    created = {item.title: item for item in generator.generate_for_patient("patient-1")}

    assert created["Vitamin D follow-up test"].company_id == "lab-verified"
    # No pharmacy exists, so the supplement falls through to the health store.
    assert created["Vitamin D3 supplement"].company_id == "store-1"
    assert created["Vitamin D: why it matters and how to correct a deficiency"].company_id is None


def test_no_partner_keeps_candidate_without_company(record_analysis, generator):
    record_analysis("patient-1", GLUCOSE_HIGH)

    created = generator.generate_for_patient("patient-1")

    assert _titles(created) == ["Endocrinologist consultation", "Glycated hemoglobin (HbA1c) test"]
    assert all(item.company_id is None for item in created)


def test_anemia_findings_share_candidates(record_analysis, generator):
    record_analysis("patient-1", HEMOGLOBIN_LOW, FERRITIN_LOW)

    created = generator.generate_for_patient("patient-1")

    assert sorted(_titles(created)) == ["General practitioner consultation", "Iron supplements for anemia"]


def test_three_abnormal_indicators_add_comprehensive_checkup(record_analysis, generator):
    record_analysis("patient-1", VITAMIN_D_LOW, CHOLESTEROL_HIGH, GLUCOSE_HIGH)

    created = generator.generate_for_patient("patient-1")
    checkup = next(item for item in created if item.title == "Comprehensive medical checkup")

    assert checkup.metadata["abnormal_count"] == 3
    assert [item.priority for item in created] == sorted((item.priority for item in created), reverse=True)


def test_unmatched_abnormal_analysis_falls_back(record_analysis, generator):
    record_analysis("patient-1", TSH_HIGH, title="Thyroid panel")

    created = generator.generate_for_patient("patient-1")

    assert _titles(created) == ["Follow-up test: Thyroid panel", "Doctor consultation on test results"]
    assert [item.type for item in created] == ["LAB_RETEST", "CLINIC_VISIT"]


def test_fallback_is_skipped_when_another_analysis_matches_a_rule(record_analysis, generator):
    record_analysis("patient-1", VITAMIN_D_LOW, analyzed_at="2026-01-10T08:00:00Z")
    record_analysis("patient-1", TSH_HIGH, title="Thyroid panel", analyzed_at="2026-03-10T08:00:00Z")

    created = generator.generate_for_patient("patient-1")

    assert "Follow-up test: Thyroid panel" not in _titles(created)
    assert "Doctor consultation on test results" not in _titles(created)
    assert len(created) == 3


def test_fallback_covers_at_most_two_analyses(record_analysis, generator):
    record_analysis("patient-1", TSH_HIGH, title="Thyroid panel", analyzed_at="2026-01-10T08:00:00Z")
    record_analysis("patient-1", TSH_HIGH, title="Thyroid recheck", analyzed_at="2026-02-10T08:00:00Z")
    record_analysis("patient-1", TSH_HIGH, title="Thyroid third", analyzed_at="2026-03-10T08:00:00Z")

    retests = [title for title in _titles(generator.generate_for_patient("patient-1")) if title.startswith("Follow-up")]

    assert sorted(retests) == ["Follow-up test: Thyroid recheck", "Follow-up test: Thyroid third"]


def test_normal_analysis_generates_nothing(record_analysis, generator):
    record_analysis("patient-1", GLUCOSE_NORMAL)

    assert generator.generate_for_patient("patient-1") == []


def test_only_recent_analyses_are_considered(record_analysis, store):
    record_analysis("patient-1", VITAMIN_D_LOW, analyzed_at="2025-01-01T00:00:00Z")
    record_analysis("patient-1", GLUCOSE_NORMAL, analyzed_at="2026-01-01T00:00:00Z")
    generator = RecommendationGenerator(
        labs=store.labs,
        companies=store.companies,
        recommendations=store.recommendations,
        recent_analyses=1,
    )

    assert generator.generate_for_patient("patient-1") == []


def test_hba1c_is_treated_as_glucose_not_hemoglobin():
    analysis = LabAnalysis(
        id="a1",
        user_id="patient-1",
        title="Panel",
        analysis_type="blood",
        status="abnormal",
        analyzed_at="2026-01-01T00:00:00Z",
        indicators=[
            LabIndicator(name="HbA1c (glycated hemoglobin)", value=7.2, reference_max=6.0, is_normal=False),
        ],
    )

    assert [finding.issue for finding in detect_findings(analysis)] == ["high_glucose"]


def test_concurrent_duplicate_insert_is_benign(record_analysis, store, caplog):
    record_analysis("patient-1", VITAMIN_D_LOW)

    class _StaleLiveKeys(RecommendationGenerator):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self._recommendations = _BlindStore(store.recommendations)

    class _BlindStore:
        # Pretends nothing is live, like a second request that read before the first one committed.
        def __init__(self, inner):
            self._inner = inner

        def live_keys(self, user_id):
            return set()

        def insert_if_absent(self, record):
            return self._inner.insert_if_absent(record)

    first = RecommendationGenerator(
        labs=store.labs, companies=store.companies, recommendations=store.recommendations
    ).generate_for_patient("patient-1")
    caplog.set_level(logging.DEBUG, logger="carehub_core.generator")
    racing = _StaleLiveKeys(labs=store.labs, companies=store.companies, recommendations=store.recommendations)

    assert racing.generate_for_patient("patient-1") == []
    assert len(first) == 3
    assert store.recommendations.count_for_user("patient-1") == 3
    assert "went live concurrently" in caplog.text


def test_storage_failure_is_wrapped(store, generator, monkeypatch):
    def _boom(user_id, limit=5):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store.labs, "recent_analyses", _boom)

    with pytest.raises(InternalError) as excinfo:
        generator.generate_for_patient("patient-1")
    assert isinstance(excinfo.value.__cause__, sqlite3.OperationalError)


def test_listing_materializes_once_for_empty_patient(record_analysis, store, generator):
    service = RecommendationService(store.recommendations, generator)
    record_analysis("patient-1", CHOLESTEROL_HIGH)

    listed = service.list_for_patient("patient-1")

    assert {item["title"] for item in listed[:2]} == {
        "Cardiologist consultation",
        "Nutritionist consultation for diet correction",
    }
    assert listed[2]["title"] == "Regular physical activity"
    assert all(item["interaction_count"] == 0 for item in listed)
    assert service.list_for_patient("patient-1", status="dismissed") == []
    assert len(service.list_for_patient("patient-1", rec_type="service")) == 2


def test_unknown_listing_filter_is_rejected_before_materializing(record_analysis, store, generator):
    service = RecommendationService(store.recommendations, generator)
    record_analysis("patient-1", CHOLESTEROL_HIGH)

    with pytest.raises(InvalidFilterError):
        service.list_for_patient("patient-1", status="archived")
    with pytest.raises(InvalidFilterError):
        service.list_for_patient("patient-1", rec_type="massage")

    assert store.recommendations.count_for_user("patient-1") == 0


def test_cleanup_duplicates_keeps_newest(store, generator, db):
    service = RecommendationService(store.recommendations, generator)
    for index, status in enumerate(("PURCHASED", "DISMISSED", "ACTIVE")):
        store.recommendations.insert_if_absent(
            {
                "id": f"rec-{index}",
                "user_id": "patient-1",
                "type": "SUPPLEMENT",
                "title": "Vitamin D3 supplement",
                "status": status,
                "created_at": f"2026-01-0{index + 1}T00:00:00+00:00",
            }
        )

    removed = service.cleanup_duplicates("patient-1")

    assert sorted(removed) == ["rec-0", "rec-1"]
    assert store.recommendations.get("rec-2") is not None
